"""Scraper, agent and task definitions.

Definitions are the static templates a job is instantiated from. A
``ScraperDefinition`` owns its ``AgentDefinition`` objects, which own their
``TaskDefinition`` objects. Task definitions are frozen once created; agent
settings are snapshotted into each job's task graph, so editing a definition
never affects a job that was already built.
"""

import inspect
from collections.abc import Callable, Iterable
from typing import Any, NamedTuple, Protocol, runtime_checkable

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationInfo,
    field_validator,
)

from .exceptions import DefinitionError, NotFoundError


class TaskRef(NamedTuple):
    """Reference to a task by ``(agent, task)`` name pair."""

    agent: str
    task: str

    @property
    def key(self) -> str:
        return f"{self.agent}.{self.task}"

    @classmethod
    def parse(cls, value: "str | tuple[str, str] | TaskRef", agent: str) -> "TaskRef":
        """Normalize a dependency reference declared by a task of ``agent``.

        A bare task name refers to the same agent. ``"agent.task"`` and
        ``(agent, task)`` refer to a task of any agent in the scraper.
        """
        if isinstance(value, str):
            if "." in value:
                other_agent, _, task = value.partition(".")
                return cls(other_agent, task)
            return cls(agent, value)

        if isinstance(value, tuple) and len(value) == 2:
            return cls(str(value[0]), str(value[1]))

        raise DefinitionError(f"Invalid task reference: {value!r}")


@runtime_checkable
class Executable(Protocol):
    """Capability every unit of task work must implement.

    The scheduler only ever calls ``execute``; it never depends on the
    concrete type supplied by the caller.
    """

    async def execute(
        self, params: dict[str, Any], dependencies: dict[str, Any]
    ) -> Any:
        """Run the task.

        Args:
            params: Job parameters supplied by the caller
            dependencies: Results of the task's dependencies, keyed by task
                name for same-agent dependencies and ``"agent.task"`` otherwise

        Returns:
            The task result, handed to dependent tasks

        """
        ...


class CallableWork:
    """Adapts a coroutine function to the ``Executable`` capability."""

    __slots__ = ("func",)

    def __init__(self, func: Callable[..., Any]):
        self.func = func

    async def execute(
        self, params: dict[str, Any], dependencies: dict[str, Any]
    ) -> Any:
        return await self.func(params, dependencies)

    def __repr__(self) -> str:
        name = getattr(self.func, "__qualname__", repr(self.func))
        return f"CallableWork({name})"


def as_executable(work: Any) -> Executable:
    """Coerce caller-supplied work into an ``Executable``.

    Raises:
        DefinitionError: If ``work`` is neither an ``Executable`` nor a
            coroutine function

    """
    if isinstance(work, Executable):
        return work

    if inspect.iscoroutinefunction(work) or inspect.iscoroutinefunction(
        getattr(work, "__call__", None)
    ):
        return CallableWork(work)

    raise DefinitionError(
        f"Task work must be a coroutine function or define async execute(), "
        f"got {work!r}"
    )


def normalize_refs(refs: Any, agent: str) -> frozenset[TaskRef]:
    """Normalize one reference or an iterable of references into TaskRefs."""
    if isinstance(refs, (str, TaskRef)):
        refs = [refs]
    return frozenset(TaskRef.parse(ref, agent) for ref in refs)


class TaskDefaults(BaseModel):
    """Defaults applied to tasks that do not set a policy explicitly."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(0, ge=0)
    timeout: float | None = Field(None, gt=0)


class TaskDefinition(BaseModel):
    """Immutable description of a single task."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    name: str = Field(min_length=1, description="Task name, unique within its agent")
    agent: str = Field(min_length=1, description="Owning agent name")
    work: Executable
    depends_on: frozenset[TaskRef] = Field(default_factory=frozenset)
    retryable: bool = False
    max_retries: int = Field(0, ge=0)
    timeout: float | None = Field(
        None, gt=0, description="Seconds before an attempt is failed"
    )
    allow_skipped_dependencies: bool = Field(
        False, description="Treat skipped dependencies as satisfied"
    )

    @field_validator("work", mode="before")
    @classmethod
    def validate_work(cls, v: Any) -> Executable:
        return as_executable(v)

    @field_validator("depends_on", mode="before")
    @classmethod
    def validate_depends_on(cls, v: Any, info: ValidationInfo) -> frozenset[TaskRef]:
        """Normalize dependency references relative to the owning agent."""
        agent = info.data.get("agent", "")
        return normalize_refs(v, agent)

    @property
    def ref(self) -> TaskRef:
        return TaskRef(self.agent, self.name)

    @property
    def key(self) -> str:
        return self.ref.key


class AgentDefinition(BaseModel):
    """Group of tasks sharing a concurrency and ordering policy.

    ``concurrency`` bounds how many of this agent's tasks run at once within a
    single job (``None`` means unbounded). ``ordered`` agents run their tasks
    one at a time in declaration order; ``halt_on_failure`` makes a terminal
    failure skip every later task of an ordered agent.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    name: str = Field(min_length=1)
    scraper_id: str
    concurrency: int | None = Field(
        None, ge=1, description="Max tasks of this agent running simultaneously"
    )
    ordered: bool = False
    halt_on_failure: bool = False
    tasks: dict[str, TaskDefinition] = Field(default_factory=dict)
    routines: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    _task_defaults: TaskDefaults = PrivateAttr(default_factory=TaskDefaults)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if "." in v:
            raise ValueError("Agent names cannot contain '.'")
        return v

    def task(
        self,
        name: str,
        work: Any = None,
        *,
        depends_on: Iterable[str | tuple[str, str]] | str = (),
        retryable: bool = False,
        max_retries: int | None = None,
        timeout: float | None = None,
        allow_skipped_dependencies: bool = False,
    ) -> Any:
        """Define a task of this agent.

        Can be called directly with ``work`` or used as a decorator::

            @agent.task("detail", depends_on=["list"])
            async def detail(params, deps): ...

        Args:
            name: Task name, unique within this agent
            work: Coroutine function or ``Executable``
            depends_on: A single reference or an iterable of references. A
                reference is a bare task name, ``"agent.task"`` or an
                ``(agent, task)`` tuple; a tuple reference must be wrapped in
                a list, since a bare tuple is read as an iterable of names

        Returns:
            The new ``TaskDefinition``, or a decorator when ``work`` is omitted

        Raises:
            DefinitionError: If the task name is already defined on this agent

        """
        if work is None:

            def decorator(func: Any) -> Any:
                self.task(
                    name,
                    func,
                    depends_on=depends_on,
                    retryable=retryable,
                    max_retries=max_retries,
                    timeout=timeout,
                    allow_skipped_dependencies=allow_skipped_dependencies,
                )
                return func

            return decorator

        if name in self.tasks:
            raise DefinitionError(
                f"Task '{name}' is already defined on agent '{self.name}'"
            )

        # Coerced here so bad work or refs raise DefinitionError, not ValidationError
        defaults = self._task_defaults
        definition = TaskDefinition(
            name=name,
            agent=self.name,
            work=as_executable(work),
            depends_on=normalize_refs(depends_on, self.name),
            retryable=retryable,
            max_retries=defaults.max_retries if max_retries is None else max_retries,
            timeout=defaults.timeout if timeout is None else timeout,
            allow_skipped_dependencies=allow_skipped_dependencies,
        )
        self.tasks[name] = definition
        return definition

    def routine(self, name: str, task_names: Iterable[str]) -> tuple[str, ...]:
        """Define a named subset of this agent's tasks to use as a job entry set."""
        if name in self.routines:
            raise DefinitionError(
                f"Routine '{name}' is already defined on agent '{self.name}'"
            )
        names = tuple(task_names)
        if not names:
            raise DefinitionError(f"Routine '{name}' must name at least one task")
        self.routines[name] = names
        return names

    def get_task(self, name: str) -> TaskDefinition:
        try:
            return self.tasks[name]
        except KeyError:
            raise NotFoundError("task", name, f"agent '{self.name}'") from None

    @property
    def effective_concurrency(self) -> int | None:
        return 1 if self.ordered else self.concurrency


class ScraperDefinition(BaseModel):
    """Named collection of agents; the template a job is built from."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    agents: dict[str, AgentDefinition] = Field(default_factory=dict)

    _task_defaults: TaskDefaults = PrivateAttr(default_factory=TaskDefaults)

    def agent(
        self,
        name: str,
        *,
        concurrency: int | None = None,
        ordered: bool = False,
        halt_on_failure: bool = False,
    ) -> AgentDefinition:
        """Return the agent called ``name``, creating it on first use.

        Policy arguments only apply when the agent is created; use attribute
        assignment to change the policy of an existing agent.
        """
        existing = self.agents.get(name)
        if existing is not None:
            return existing

        agent = AgentDefinition(
            name=name,
            scraper_id=self.id,
            concurrency=concurrency,
            ordered=ordered,
            halt_on_failure=halt_on_failure,
        )
        agent._task_defaults = self._task_defaults
        self.agents[name] = agent
        return agent

    def get_agent(self, name: str) -> AgentDefinition:
        try:
            return self.agents[name]
        except KeyError:
            raise NotFoundError("agent", name, f"scraper '{self.id}'") from None

    def resolve(self, ref: TaskRef) -> TaskDefinition | None:
        """Return the task a reference points to, or None if it does not exist."""
        agent = self.agents.get(ref.agent)
        if agent is None:
            return None
        return agent.tasks.get(ref.task)
