"""Test suite for core/graph.py."""

import pytest

from yakuza.core import (
    CyclicDependencyError,
    NotFoundError,
    ScraperDefinition,
    TaskState,
    UnresolvedDependencyError,
)
from yakuza.core.graph import TaskGraph


@pytest.fixture
def scraper():
    return ScraperDefinition(id="foo")


def build(scraper, agent_name, task_names=None):
    return TaskGraph.build(scraper, scraper.get_agent(agent_name), task_names)


class TestGraphConstruction:
    """Test instance creation and wiring."""

    def test_one_instance_per_task(self, scraper, constant):
        agent = scraper.agent("bar")
        agent.task("t1", constant(1))
        agent.task("t2", constant(2), depends_on=["t1"])
        agent.task("t3", constant(3), depends_on=["t1", "t2"])

        graph = build(scraper, "bar")

        assert len(graph) == 3
        assert [i.key for i in graph] == ["bar.t1", "bar.t2", "bar.t3"]
        t1, t2, t3 = (graph.get("bar", n) for n in ("t1", "t2", "t3"))
        assert t3.dependencies == (t1, t2)
        assert t1.dependents == (t2, t3)
        assert t2.dependents == (t3,)

    def test_initial_states(self, scraper, constant):
        agent = scraper.agent("bar")
        agent.task("t1", constant(1))
        agent.task("t2", constant(2), depends_on=["t1"])

        graph = build(scraper, "bar")

        assert graph.get("bar", "t1").state is TaskState.READY
        assert graph.get("bar", "t2").state is TaskState.PENDING
        assert graph.counts()["ready"] == 1
        assert graph.counts()["pending"] == 1
        assert graph.counts()["succeeded"] == 0
        assert graph.has_active()

    def test_cross_agent_dependencies_are_pulled_in(self, scraper, constant):
        scraper.agent("auth").task("login", constant("token"))
        scraper.agent("auth").task("logout", constant(None))
        scraper.agent("bar").task("list", constant([]), depends_on=["auth.login"])

        graph = build(scraper, "bar")

        assert "auth.login" in graph
        assert "auth.logout" not in graph
        assert graph.agents == ["auth", "bar"]
        assert [i.key for i in graph.targets] == ["bar.list"]

    def test_targets_limited_to_routine_tasks(self, scraper, constant):
        agent = scraper.agent("bar")
        agent.task("t1", constant(1))
        agent.task("t2", constant(2), depends_on=["t1"])
        agent.task("t3", constant(3))

        graph = build(scraper, "bar", ["t2"])

        assert [i.key for i in graph] == ["bar.t1", "bar.t2"]
        assert [i.key for i in graph.targets] == ["bar.t2"]

    def test_unknown_target_raises(self, scraper, constant):
        scraper.agent("bar").task("t1", constant(1))

        with pytest.raises(NotFoundError, match="Unknown task 'nope'"):
            build(scraper, "bar", ["nope"])

    def test_graphs_are_independent(self, scraper, constant):
        scraper.agent("bar").task("t1", constant(1))

        first = build(scraper, "bar")
        second = build(scraper, "bar")
        first.get("bar", "t1").state = TaskState.SUCCEEDED

        assert second.get("bar", "t1").state is TaskState.READY


class TestGraphValidation:
    """Test that invalid graphs are rejected before any instance exists."""

    def test_self_dependency(self, scraper, constant):
        scraper.agent("bar").task("t1", constant(1), depends_on=["t1"])

        with pytest.raises(CyclicDependencyError) as exc_info:
            build(scraper, "bar")

        assert exc_info.value.cycle == ["bar.t1", "bar.t1"]

    def test_three_task_cycle(self, scraper, constant):
        agent = scraper.agent("bar")
        agent.task("a", constant(1), depends_on=["c"])
        agent.task("b", constant(2), depends_on=["a"])
        agent.task("c", constant(3), depends_on=["b"])

        with pytest.raises(CyclicDependencyError) as exc_info:
            build(scraper, "bar")

        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"bar.a", "bar.b", "bar.c"}
        assert "->" in str(exc_info.value)

    def test_cross_agent_cycle(self, scraper, constant):
        scraper.agent("auth").task("login", constant(1), depends_on=["bar.list"])
        scraper.agent("bar").task("list", constant(2), depends_on=["auth.login"])

        with pytest.raises(CyclicDependencyError):
            build(scraper, "bar")

    def test_ordered_agent_backward_dependency_is_a_cycle(self, scraper, constant):
        """Test depending on a later task of an ordered agent can never run."""
        agent = scraper.agent("bar", ordered=True)
        agent.task("first", constant(1), depends_on=["second"])
        agent.task("second", constant(2))

        with pytest.raises(CyclicDependencyError):
            build(scraper, "bar")

    def test_ordered_agent_forward_dependency_is_fine(self, scraper, constant):
        agent = scraper.agent("bar", ordered=True)
        agent.task("first", constant(1))
        agent.task("second", constant(2), depends_on=["first"])

        assert len(build(scraper, "bar")) == 2

    def test_unresolved_dependency(self, scraper, constant):
        scraper.agent("bar").task("t1", constant(1), depends_on=["auth.login"])

        with pytest.raises(UnresolvedDependencyError, match="auth.login") as exc_info:
            build(scraper, "bar")

        assert exc_info.value.task == "bar.t1"

    def test_no_instances_created_for_invalid_graph(
        self, scraper, constant, monkeypatch
    ):
        created = []

        class RecordingInstance:
            def __init__(self, definition):
                created.append(definition)

        monkeypatch.setattr("yakuza.core.graph.TaskInstance", RecordingInstance)
        agent = scraper.agent("bar")
        agent.task("t1", constant(1), depends_on=["t2"])
        agent.task("t2", constant(2), depends_on=["t1"])

        with pytest.raises(CyclicDependencyError):
            build(scraper, "bar")

        assert created == []

    def test_long_chain_builds(self, scraper, constant):
        agent = scraper.agent("bar")
        for i in range(1200):
            depends_on = [f"t{i + 1}"] if i < 1199 else []
            agent.task(f"t{i}", constant(i), depends_on=depends_on)

        assert len(build(scraper, "bar")) == 1200

    def test_cycle_through_long_chain(self, scraper, constant):
        agent = scraper.agent("bar")
        for i in range(1200):
            agent.task(f"t{i}", constant(i), depends_on=[f"t{(i + 1) % 1200}"])

        with pytest.raises(CyclicDependencyError) as exc_info:
            build(scraper, "bar")

        cycle = exc_info.value.cycle
        assert len(cycle) == 1201
        assert cycle[0] == cycle[-1]


class TestAgentPolicySnapshot:
    """Test that agent policy is fixed when the graph is built."""

    def test_policy_snapshot(self, scraper, constant):
        agent = scraper.agent("bar", concurrency=2)
        agent.task("t1", constant(1))

        graph = build(scraper, "bar")
        agent.concurrency = 5

        assert graph.policy("bar").concurrency == 2

    def test_ordered_policy_has_single_slot(self, scraper, constant):
        scraper.agent("bar", concurrency=4, ordered=True).task("t1", constant(1))

        policy = build(scraper, "bar").policy("bar")

        assert policy.ordered is True
        assert policy.concurrency == 1

    def test_agent_order(self, scraper, constant):
        agent = scraper.agent("bar")
        agent.task("b", constant(1))
        agent.task("a", constant(2))

        graph = build(scraper, "bar")

        assert [i.name for i in graph.agent_order("bar")] == ["b", "a"]
