"""Runtime state for jobs and task instances."""

from enum import StrEnum
from typing import Any

from .definitions import TaskDefinition, TaskRef
from .exceptions import TaskExecutionError


class TaskState(StrEnum):
    """Finite-state machine for a task instance."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


class JobState(StrEnum):
    """Lifecycle of a job."""

    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


class TaskInstance:
    """One run of a task definition inside a single job.

    Only the owning job's scheduler mutates an instance. ``dependencies`` and
    ``dependents`` are wired once by the task graph and never change.
    """

    __slots__ = (
        "definition",
        "state",
        "attempt",
        "result",
        "error",
        "dependencies",
        "dependents",
        "available_at",
    )

    def __init__(self, definition: TaskDefinition):
        self.definition: TaskDefinition = definition
        self.state: TaskState = TaskState.PENDING
        self.attempt: int = 0
        self.result: Any = None
        self.error: TaskExecutionError | None = None
        self.dependencies: tuple[TaskInstance, ...] = ()
        self.dependents: tuple[TaskInstance, ...] = ()
        # Event loop time before which a retried instance may not be dispatched
        self.available_at: float = 0.0

    @property
    def ref(self) -> TaskRef:
        return self.definition.ref

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def agent(self) -> str:
        return self.definition.agent

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def can_retry(self) -> bool:
        return self.definition.retryable and self.attempt < self.definition.max_retries

    def dependency_results(self) -> dict[str, Any]:
        """Results of succeeded dependencies, keyed as work functions receive them.

        Same-agent dependencies are keyed by task name, others by
        ``"agent.task"``. Skipped dependencies are absent.
        """
        results = {}
        for dependency in self.dependencies:
            if dependency.state is not TaskState.SUCCEEDED:
                continue
            key = dependency.name if dependency.agent == self.agent else dependency.key
            results[key] = dependency.result
        return results

    def __repr__(self) -> str:
        return (
            f"TaskInstance({self.key}, state={self.state.value}, "
            f"attempt={self.attempt})"
        )
