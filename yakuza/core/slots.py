"""Per-agent concurrency slot accounting.

Slots are counted per agent within a single job. They never bound tasks of
other agents or of other jobs.
"""

from .graph import AgentPolicy, TaskGraph
from .state import TaskInstance


class AgentSlots:
    """Tracks which of one agent's instances are running.

    Ordered agents expose at most one slot, and only to the first task in
    declaration order that has not reached a terminal state.
    """

    __slots__ = ("_policy", "_order", "_running")

    def __init__(self, policy: AgentPolicy, order: tuple[TaskInstance, ...]):
        self._policy = policy
        self._order = order
        self._running: set[str] = set()

    @property
    def policy(self) -> AgentPolicy:
        return self._policy

    @property
    def running(self) -> int:
        return len(self._running)

    @property
    def available(self) -> int | None:
        """Free slots, or None when the agent is unbounded."""
        if self._policy.concurrency is None:
            return None
        return max(self._policy.concurrency - len(self._running), 0)

    def head(self) -> TaskInstance | None:
        """First instance in declaration order that is not terminal."""
        for instance in self._order:
            if not instance.is_terminal:
                return instance
        return None

    def can_acquire(self, instance: TaskInstance) -> bool:
        if self._policy.ordered:
            return not self._running and self.head() is instance
        available = self.available
        return available is None or available > 0

    def acquire(self, instance: TaskInstance) -> None:
        if instance.key in self._running:
            raise RuntimeError(f"Task already holds a slot: {instance.key}")
        if not self.can_acquire(instance):
            raise RuntimeError(f"No free slot for task: {instance.key}")
        self._running.add(instance.key)

    def release(self, instance: TaskInstance) -> None:
        if instance.key not in self._running:
            raise RuntimeError(f"Task does not hold a slot: {instance.key}")
        self._running.remove(instance.key)

    def clear(self) -> None:
        self._running.clear()

    def after(self, instance: TaskInstance) -> tuple[TaskInstance, ...]:
        """Instances declared after ``instance`` in this agent."""
        index = self._order.index(instance)
        return self._order[index + 1 :]


class SlotTable:
    """Slot accounting for every agent taking part in a job."""

    __slots__ = ("_agents",)

    def __init__(self, graph: TaskGraph):
        self._agents: dict[str, AgentSlots] = {
            name: AgentSlots(graph.policy(name), graph.agent_order(name))
            for name in graph.agents
        }

    def __getitem__(self, agent: str) -> AgentSlots:
        return self._agents[agent]

    def can_acquire(self, instance: TaskInstance) -> bool:
        return self._agents[instance.agent].can_acquire(instance)

    def acquire(self, instance: TaskInstance) -> None:
        self._agents[instance.agent].acquire(instance)

    def release(self, instance: TaskInstance) -> None:
        self._agents[instance.agent].release(instance)

    def clear(self) -> None:
        """Release every slot, as when a job is aborted."""
        for slots in self._agents.values():
            slots.clear()

    def running(self) -> dict[str, int]:
        return {name: slots.running for name, slots in self._agents.items()}
