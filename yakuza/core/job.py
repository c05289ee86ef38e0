"""Jobs: live runs of a scraper against concrete parameters."""

import asyncio
import logging
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..utils.retry import RetryHook, no_delay
from .definitions import AgentDefinition, ScraperDefinition
from .events import EventEmitter, EventHandler, EventName, LifecycleEvent
from .exceptions import (
    AlreadyRunningError,
    JobCancelledError,
    NotFoundError,
    TaskNotCompleteError,
)
from .graph import TaskGraph
from .scheduler import Scheduler
from .state import JobState, TaskState


logger = logging.getLogger(__name__)


class JobOutcome(BaseModel):
    """Terminal state of a job with every result and originating error."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    job_id: str
    state: JobState
    results: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Results of succeeded tasks by agent and task"
    )
    errors: list[Exception] = Field(
        default_factory=list,
        description="Exhausted task errors, cancellation and any scheduler error",
    )

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.SUCCEEDED


class Job:
    """One run of a scraper, entering at a single agent.

    The task graph is built (and validated) on construction; nothing runs
    until ``run`` is awaited.
    """

    def __init__(
        self,
        scraper: ScraperDefinition,
        agent: AgentDefinition,
        params: dict[str, Any] | None = None,
        *,
        routine: str | None = None,
        retry_hook: RetryHook | None = None,
    ):
        """Build the job's task graph.

        Raises:
            NotFoundError: If ``routine`` or one of its tasks is unknown
            CyclicDependencyError: If the reachable tasks form a cycle
            UnresolvedDependencyError: If a dependency reference is missing

        """
        task_names = None
        if routine is not None:
            if routine not in agent.routines:
                raise NotFoundError("routine", routine, f"agent '{agent.name}'")
            task_names = agent.routines[routine]

        self.id: str = uuid4().hex
        self.scraper_id = scraper.id
        self.agent_name = agent.name
        self.routine = routine
        self.params: dict[str, Any] = dict(params or {})
        self.graph = TaskGraph.build(scraper, agent, task_names)
        self.state = JobState.CREATED

        self._events = EventEmitter()
        self._scheduler = Scheduler(
            self.id, self.graph, self.params, self._events, retry_hook or no_delay
        )
        self._outcome: JobOutcome | None = None

    def __repr__(self) -> str:
        return (
            f"Job({self.id[:8]}, {self.scraper_id}.{self.agent_name}, "
            f"state={self.state.value})"
        )

    @property
    def outcome(self) -> JobOutcome | None:
        """Outcome once the job is terminal, else None."""
        return self._outcome

    def on(self, event: EventName | str, handler: EventHandler | None = None) -> Any:
        """Subscribe to a lifecycle event; usable as a decorator."""
        if handler is None:

            def decorator(func: EventHandler) -> EventHandler:
                return self._events.on(event, func)

            return decorator

        return self._events.on(event, handler)

    def off(self, event: EventName | str, handler: EventHandler) -> bool:
        return self._events.off(event, handler)

    async def run(self) -> JobOutcome:
        """Run every task of the job and wait for a terminal state.

        Task failures are reported on the returned outcome, never raised. An
        unexpected scheduler error is re-raised after in-flight work is
        cancelled and the job has settled as failed.

        Raises:
            AlreadyRunningError: If the job was already started or settled

        """
        if self.state is not JobState.CREATED:
            raise AlreadyRunningError(f"Job {self.id} is already {self.state.value}")

        self.state = JobState.RUNNING
        logger.info(
            f"Starting job {self.id} for {self.scraper_id}.{self.agent_name} "
            f"with {len(self.graph)} tasks"
        )
        self._events.emit(LifecycleEvent(name=EventName.JOB_START, job_id=self.id))

        try:
            await self._scheduler.run()
        except asyncio.CancelledError:
            self._settle()
            raise
        except Exception as e:
            self._settle(fatal=e)
            raise

        return self._settle()

    def cancel(self) -> bool:
        """Cancel the job.

        Unfinished tasks are marked skipped and in-flight work is cancelled
        cooperatively. A job that was never started settles immediately.

        Returns:
            False if the job had already settled, True otherwise

        """
        if self.state.is_terminal:
            return False

        logger.info(f"Cancelling job {self.id}")
        self._scheduler.cancel()
        if self.state is JobState.CREATED:
            self._settle()
        return True

    def result(self, agent: str, task: str) -> Any:
        """Return the stored result of a succeeded task.

        Raises:
            NotFoundError: If the task is not part of this job
            TaskNotCompleteError: If the task has not succeeded

        """
        instance = self.graph.get(agent, task)
        if instance is None:
            raise NotFoundError("task", f"{agent}.{task}", f"job {self.id}")
        if instance.state is not TaskState.SUCCEEDED:
            raise TaskNotCompleteError(agent, task, instance.state.value)
        return instance.result

    def task_states(self) -> dict[str, TaskState]:
        """Current state of every task, keyed by ``"agent.task"``."""
        return {instance.key: instance.state for instance in self.graph}

    def _settle(self, fatal: Exception | None = None) -> JobOutcome:
        errors: list[Exception] = list(self._scheduler.errors)
        if self._scheduler.cancelled:
            errors.append(JobCancelledError(self.id))
        if fatal is not None:
            errors.append(fatal)

        results: dict[str, dict[str, Any]] = {}
        for instance in self.graph.in_state(TaskState.SUCCEEDED):
            results.setdefault(instance.agent, {})[instance.name] = instance.result

        self.state = JobState.FAILED if errors else JobState.SUCCEEDED
        self._outcome = JobOutcome(
            job_id=self.id, state=self.state, results=results, errors=errors
        )

        if errors:
            logger.error(
                f"Job {self.id} failed with {len(errors)} error(s); "
                f"task states: {self.graph.counts()}"
            )
            event = LifecycleEvent(
                name=EventName.JOB_FAIL, job_id=self.id, error=errors[0]
            )
        else:
            logger.info(f"Job {self.id} succeeded; task states: {self.graph.counts()}")
            event = LifecycleEvent(name=EventName.JOB_SUCCESS, job_id=self.id)
        self._events.emit(event)
        return self._outcome
