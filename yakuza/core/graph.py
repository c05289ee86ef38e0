"""Per-job task dependency graph.

A ``TaskGraph`` is built from an entry agent (or one of its routines) and the
owning scraper. Every task reachable through ``depends_on`` references, in any
agent, gets exactly one ``TaskInstance``. The graph is validated before any
instance is created: unresolved references and cycles abort construction.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Iterator

from pydantic import BaseModel, ConfigDict

from .definitions import AgentDefinition, ScraperDefinition, TaskDefinition
from .exceptions import CyclicDependencyError, UnresolvedDependencyError
from .state import TaskInstance, TaskState


logger = logging.getLogger(__name__)


class AgentPolicy(BaseModel):
    """Snapshot of an agent's scheduling settings taken when a graph is built."""

    model_config = ConfigDict(frozen=True)

    name: str
    concurrency: int | None = None
    ordered: bool = False
    halt_on_failure: bool = False

    @classmethod
    def from_definition(cls, agent: AgentDefinition) -> "AgentPolicy":
        return cls(
            name=agent.name,
            concurrency=agent.effective_concurrency,
            ordered=agent.ordered,
            halt_on_failure=agent.halt_on_failure,
        )


class TaskGraph:
    """Resolved, acyclic dependency structure of one job's task instances."""

    def __init__(
        self,
        instances: list[TaskInstance],
        policies: dict[str, AgentPolicy],
        targets: list[TaskInstance],
    ):
        self._instances: dict[str, TaskInstance] = {i.key: i for i in instances}
        self._policies = policies
        self._targets = tuple(targets)
        self._agent_order: dict[str, tuple[TaskInstance, ...]] = {
            name: tuple(i for i in instances if i.agent == name) for name in policies
        }

    @classmethod
    def build(
        cls,
        scraper: ScraperDefinition,
        agent: AgentDefinition,
        task_names: Iterable[str] | None = None,
    ) -> "TaskGraph":
        """Build the graph for a job entering at ``agent``.

        Args:
            scraper: Scraper owning every referenced agent
            agent: Entry agent
            task_names: Subset of the entry agent's tasks to target; all of
                its tasks when omitted

        Raises:
            NotFoundError: If a targeted task name is not defined on ``agent``
            UnresolvedDependencyError: If a reference points to a missing task
            CyclicDependencyError: If the dependencies form a cycle

        """
        if task_names is None:
            entry = list(agent.tasks.values())
        else:
            entry = [agent.get_task(name) for name in task_names]

        definitions = _collect_reachable(scraper, entry)
        prerequisites = _prerequisites(scraper, definitions)
        _check_acyclic(definitions, prerequisites)

        instances = {key: TaskInstance(d) for key, d in definitions.items()}
        for instance in instances.values():
            instance.dependencies = tuple(
                instances[ref.key] for ref in sorted(instance.definition.depends_on)
            )
        dependents: dict[str, list[TaskInstance]] = {key: [] for key in instances}
        for instance in instances.values():
            for dependency in instance.dependencies:
                dependents[dependency.key].append(instance)
        for key, instance in instances.items():
            instance.dependents = tuple(dependents[key])
            if not instance.dependencies:
                instance.state = TaskState.READY

        policies = {
            name: AgentPolicy.from_definition(scraper.agents[name])
            for name in dict.fromkeys(d.agent for d in definitions.values())
        }
        targets = [instances[d.key] for d in entry]

        logger.debug(
            f"Built task graph for {scraper.id}.{agent.name}: "
            f"{len(instances)} tasks across {len(policies)} agents"
        )
        return cls(list(instances.values()), policies, targets)

    def __iter__(self) -> Iterator[TaskInstance]:
        return iter(self._instances.values())

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, key: object) -> bool:
        return key in self._instances

    def get(self, agent: str, task: str) -> TaskInstance | None:
        return self._instances.get(f"{agent}.{task}")

    @property
    def targets(self) -> tuple[TaskInstance, ...]:
        """Instances the job was created for (the entry agent's tasks)."""
        return self._targets

    @property
    def agents(self) -> list[str]:
        return list(self._policies)

    def policy(self, agent: str) -> AgentPolicy:
        return self._policies[agent]

    def agent_order(self, agent: str) -> tuple[TaskInstance, ...]:
        """This graph's instances of ``agent`` in declaration order."""
        return self._agent_order[agent]

    def in_state(self, *states: TaskState) -> list[TaskInstance]:
        return [i for i in self._instances.values() if i.state in states]

    def has_active(self) -> bool:
        """Whether any instance is still ready or running."""
        return any(
            i.state in (TaskState.READY, TaskState.RUNNING)
            for i in self._instances.values()
        )

    def counts(self) -> dict[str, int]:
        """Number of instances per state."""
        counter = Counter(i.state.value for i in self._instances.values())
        return {state.value: counter.get(state.value, 0) for state in TaskState}


def _collect_reachable(
    scraper: ScraperDefinition, entry: list[TaskDefinition]
) -> dict[str, TaskDefinition]:
    """Follow dependency references from the entry tasks across agents.

    The result is ordered by agent then task declaration order so that
    dispatch order is deterministic.
    """
    found: dict[str, TaskDefinition] = {}
    pending = list(entry)
    while pending:
        definition = pending.pop()
        if definition.key in found:
            continue
        found[definition.key] = definition
        for ref in definition.depends_on:
            target = scraper.resolve(ref)
            if target is None:
                raise UnresolvedDependencyError(definition.key, ref.key)
            pending.append(target)

    agent_index = {name: i for i, name in enumerate(scraper.agents)}
    task_index = {
        d.key: i
        for agent in scraper.agents.values()
        for i, d in enumerate(agent.tasks.values())
    }
    ordered = sorted(
        found.values(), key=lambda d: (agent_index[d.agent], task_index[d.key])
    )
    return {d.key: d for d in ordered}


def _prerequisites(
    scraper: ScraperDefinition, definitions: dict[str, TaskDefinition]
) -> dict[str, list[str]]:
    """Edges a task must wait for: its dependencies plus, for ordered agents,
    the previous task in declaration order.
    """
    edges = {key: sorted(r.key for r in d.depends_on) for key, d in definitions.items()}
    previous: dict[str, str] = {}
    for key, definition in definitions.items():
        if not scraper.agents[definition.agent].ordered:
            continue
        before = previous.get(definition.agent)
        if before is not None:
            edges[key].append(before)
        previous[definition.agent] = key
    return edges


def _check_acyclic(
    definitions: dict[str, TaskDefinition], edges: dict[str, list[str]]
) -> None:
    """Iterative depth-first search with a recursion-stack marker.

    ``path`` holds the keys currently on the stack; ``on_stack`` maps each of
    them to its position so a back edge yields the cycle directly.
    """
    done: set[str] = set()
    for root in definitions:
        if root in done:
            continue

        path = [root]
        on_stack = {root: 0}
        stack = [iter(edges[root])]
        while stack:
            for prerequisite in stack[-1]:
                if prerequisite in on_stack:
                    cycle = path[on_stack[prerequisite] :] + [prerequisite]
                    raise CyclicDependencyError(cycle)
                if prerequisite not in done:
                    on_stack[prerequisite] = len(path)
                    path.append(prerequisite)
                    stack.append(iter(edges[prerequisite]))
                    break
            else:
                stack.pop()
                key = path.pop()
                del on_stack[key]
                done.add(key)
