"""Exception hierarchy for the Yakuza engine.

Construction-time errors (unknown names, bad graphs) are raised immediately.
Task execution errors are never raised out of ``Job.run``; they are wrapped in
``TaskExecutionError`` and collected on the job outcome.
"""


class YakuzaError(Exception):
    """Base class for every error raised by the engine."""


class DefinitionError(YakuzaError, ValueError):
    """Raised when a scraper, agent or task definition is invalid."""


class NotFoundError(YakuzaError, LookupError):
    """Raised when a scraper, agent, routine or task name is unknown."""

    def __init__(self, kind: str, name: str, scope: str | None = None):
        """Initialize with the kind of thing that was looked up."""
        self.kind = kind
        self.name = name
        self.scope = scope
        where = f" in {scope}" if scope else ""
        super().__init__(f"Unknown {kind} '{name}'{where}")


class GraphError(YakuzaError):
    """Base class for task graph construction errors."""


class CyclicDependencyError(GraphError):
    """Raised when task dependencies form a cycle."""

    def __init__(self, cycle: list[str]):
        """Initialize with the task keys forming the cycle, first repeated last."""
        self.cycle = cycle
        super().__init__(f"Cyclic task dependency: {' -> '.join(cycle)}")


class UnresolvedDependencyError(GraphError):
    """Raised when a task depends on an (agent, task) pair that does not exist."""

    def __init__(self, task: str, ref: str):
        """Initialize with the dependent task key and the missing reference."""
        self.task = task
        self.ref = ref
        super().__init__(f"Task {task} depends on unknown task {ref}")


class TaskExecutionError(YakuzaError):
    """Wraps an error raised by a task's work function.

    The original error is available as ``__cause__``.
    """

    def __init__(self, agent: str, task: str, attempt: int, cause: BaseException):
        """Initialize with the failing instance identity and attempt number."""
        self.agent = agent
        self.task = task
        self.attempt = attempt
        self.cause = cause
        super().__init__(
            f"Task {agent}.{task} failed on attempt {attempt + 1}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.__cause__ = cause


class TaskTimeoutError(YakuzaError, TimeoutError):
    """Raised inside the engine when a work function exceeds its timeout."""

    def __init__(self, task: str, timeout: float):
        """Initialize with the task key and the exceeded timeout."""
        self.task = task
        self.timeout = timeout
        super().__init__(f"Task {task} timed out after {timeout}s")


class TaskSkipped(YakuzaError):
    """Raised by a work function to mark its own task as skipped.

    A voluntary skip is not a failure: the job can still succeed.
    """

    def __init__(self, reason: str = ""):
        """Initialize with an optional human-readable reason."""
        self.reason = reason
        super().__init__(reason or "Task skipped")


class AlreadyRunningError(YakuzaError, RuntimeError):
    """Raised when ``Job.run`` is called on a job that already started."""


class TaskNotCompleteError(YakuzaError):
    """Raised when reading the result of a task that did not succeed."""

    def __init__(self, agent: str, task: str, state: str):
        """Initialize with the task identity and its current state."""
        self.agent = agent
        self.task = task
        self.state = state
        super().__init__(f"Task {agent}.{task} has not succeeded (state: {state})")


class JobCancelledError(YakuzaError):
    """Recorded on a job outcome when the job was cancelled."""

    def __init__(self, job_id: str):
        """Initialize with the cancelled job's id."""
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")
