"""Dependency-aware task scheduler.

The scheduler drives one job's task graph to completion. It runs a single
control loop: every dispatched work function runs as its own asyncio task and
reports back through a queue, and only the control loop mutates task
instances. The loop never blocks on anything but that queue (or a retry delay).
"""

import asyncio
import logging
from enum import Enum
from typing import Any, NamedTuple

from ..utils.retry import RetryHook, no_delay
from .events import EventEmitter, EventName, LifecycleEvent
from .exceptions import TaskExecutionError, TaskSkipped, TaskTimeoutError
from .graph import TaskGraph
from .slots import SlotTable
from .state import TaskInstance, TaskState


logger = logging.getLogger(__name__)


class Outcome(Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class Completion(NamedTuple):
    """Message a finished work unit sends to the control loop."""

    instance: TaskInstance
    attempt: int
    outcome: Outcome
    value: Any = None
    error: BaseException | None = None


_CANCEL = object()


class Scheduler:
    """Runs the ready tasks of a graph within per-agent concurrency limits.

    Failures of one branch never stop independent branches: the scheduler
    only returns once no instance is ready or running.
    """

    def __init__(
        self,
        job_id: str,
        graph: TaskGraph,
        params: dict[str, Any],
        events: EventEmitter,
        retry_hook: RetryHook = no_delay,
    ):
        self._job_id = job_id
        self._graph = graph
        self._params = params
        self._events = events
        self._retry_hook = retry_hook
        self._slots = SlotTable(graph)
        self._inbox: asyncio.Queue[Completion | object] = asyncio.Queue()
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._errors: list[TaskExecutionError] = []
        self._running = False
        self._cancelled = False

    @property
    def errors(self) -> list[TaskExecutionError]:
        """Errors of every instance that failed with no retries left."""
        return list(self._errors)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def slots(self) -> SlotTable:
        return self._slots

    async def run(self) -> None:
        """Run until no task is ready or running."""
        loop = asyncio.get_running_loop()
        self._running = True
        try:
            while True:
                self._dispatch(loop.time())
                if not self._in_flight and not self._graph.has_active():
                    break

                message = await self._next_message(loop)
                if message is _CANCEL:
                    self._cancelled = True
                    await self._abort("job cancelled")
                    break
                if message is not None:
                    self._apply(message)
        except asyncio.CancelledError:
            self._cancelled = True
            await self._abort("job cancelled")
            raise
        except Exception as e:
            logger.exception(f"Job {self._job_id}: scheduler failed, aborting")
            await self._abort(f"scheduler error: {e}")
            raise
        finally:
            self._running = False

    def cancel(self) -> None:
        """Skip every unfinished task and cancel in-flight work.

        In-flight work functions receive ``asyncio.CancelledError`` at their
        next await; work that never awaits cannot be interrupted.
        """
        if self._running:
            self._inbox.put_nowait(_CANCEL)
            return
        self._cancelled = True
        for instance in self._graph:
            if not instance.is_terminal:
                self._mark_skipped(instance, "job cancelled")

    # ---- dispatch ----

    def _dispatch(self, now: float) -> None:
        for instance in self._graph.in_state(TaskState.READY):
            if instance.available_at > now:
                continue
            if not self._slots.can_acquire(instance):
                continue

            self._slots.acquire(instance)
            instance.state = TaskState.RUNNING
            logger.debug(
                f"Job {self._job_id}: starting {instance.key} "
                f"(attempt {instance.attempt + 1})"
            )
            self._emit(EventName.TASK_START, instance)
            self._in_flight[instance.key] = asyncio.create_task(
                self._execute(instance, instance.attempt, instance.dependency_results()),
                name=f"yakuza:{self._job_id}:{instance.key}",
            )

    async def _execute(
        self, instance: TaskInstance, attempt: int, dependencies: dict[str, Any]
    ) -> None:
        definition = instance.definition
        try:
            work = definition.work.execute(self._params, dependencies)
            if definition.timeout is None:
                result = await work
            else:
                try:
                    result = await asyncio.wait_for(work, definition.timeout)
                except TimeoutError as e:
                    raise TaskTimeoutError(definition.key, definition.timeout) from e
        except asyncio.CancelledError as e:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Raised by the work itself rather than by cancelling this attempt
            self._inbox.put_nowait(Completion(instance, attempt, Outcome.FAILED, error=e))
        except TaskSkipped as e:
            self._inbox.put_nowait(Completion(instance, attempt, Outcome.SKIPPED, error=e))
        except Exception as e:
            self._inbox.put_nowait(Completion(instance, attempt, Outcome.FAILED, error=e))
        else:
            self._inbox.put_nowait(
                Completion(instance, attempt, Outcome.SUCCEEDED, value=result)
            )

    async def _next_message(
        self, loop: asyncio.AbstractEventLoop
    ) -> Completion | object | None:
        """Wait for the next completion, or until a delayed retry becomes due."""
        delay = self._next_wake(loop.time())
        if delay is None:
            if not self._in_flight:
                raise RuntimeError(
                    f"Job {self._job_id} stalled with ready tasks and nothing running"
                )
            return await self._inbox.get()

        try:
            return await asyncio.wait_for(self._inbox.get(), delay)
        except TimeoutError:
            return None

    def _next_wake(self, now: float) -> float | None:
        delays = [
            i.available_at - now
            for i in self._graph.in_state(TaskState.READY)
            if i.available_at > now
        ]
        return max(min(delays), 0.0) if delays else None

    # ---- completion handling ----

    def _apply(self, message: Completion) -> None:
        instance = message.instance
        self._in_flight.pop(instance.key, None)
        if instance.state is not TaskState.RUNNING or message.attempt != instance.attempt:
            logger.debug(f"Job {self._job_id}: ignoring stale completion of {instance.key}")
            return

        self._slots.release(instance)

        if message.outcome is Outcome.SUCCEEDED:
            instance.state = TaskState.SUCCEEDED
            instance.result = message.value
            logger.info(f"Job {self._job_id}: {instance.key} succeeded")
            self._emit(EventName.TASK_SUCCESS, instance, result=message.value)
            self._settle_dependents(instance)
        elif message.outcome is Outcome.SKIPPED:
            self._mark_skipped(instance, str(message.error))
        else:
            self._handle_failure(instance, message.error)

    def _handle_failure(self, instance: TaskInstance, cause: BaseException) -> None:
        error = TaskExecutionError(instance.agent, instance.name, instance.attempt, cause)

        delay = self._retry_delay(instance, error) if instance.can_retry else None
        if delay is not None:
            loop = asyncio.get_running_loop()
            instance.available_at = loop.time() + delay if delay > 0 else 0.0
            instance.state = TaskState.READY
            logger.warning(
                f"Job {self._job_id}: {instance.key} failed, retry "
                f"{instance.attempt}/{instance.definition.max_retries} "
                f"in {delay:.2f}s: {cause}"
            )
            self._emit(EventName.TASK_RETRY, instance, error=error)
            return

        instance.state = TaskState.FAILED
        instance.error = error
        self._errors.append(error)
        logger.error(f"Job {self._job_id}: {error}")
        self._emit(EventName.TASK_FAIL, instance, error=error)
        self._settle_dependents(instance)

        policy = self._graph.policy(instance.agent)
        if policy.ordered and policy.halt_on_failure:
            for later in self._slots[instance.agent].after(instance):
                if not later.is_terminal:
                    self._mark_skipped(later, f"{instance.key} failed")

    def _retry_delay(
        self, instance: TaskInstance, error: TaskExecutionError
    ) -> float | None:
        """Advance to the next attempt and ask the retry hook for its delay.

        Returns None, leaving the attempt unchanged, when the hook raises; the
        hook error is attached to ``error`` as a note.
        """
        instance.attempt += 1
        try:
            return self._retry_hook(instance, error)
        except Exception as e:
            instance.attempt -= 1
            logger.exception(
                f"Job {self._job_id}: retry hook failed for {instance.key}, not retrying"
            )
            error.add_note(f"Retry hook failed: {type(e).__name__}: {e}")
            return None

    def _settle_dependents(self, instance: TaskInstance) -> None:
        """Re-evaluate pending dependents after ``instance`` reached a terminal state.

        Skips cascade through a worklist so long chains never recurse.
        """
        settled = [instance]
        while settled:
            for dependent in settled.pop().dependents:
                if dependent.state is not TaskState.PENDING:
                    continue

                allow_skipped = dependent.definition.allow_skipped_dependencies
                blocked_by = None
                waiting = False
                for dependency in dependent.dependencies:
                    state = dependency.state
                    if state is TaskState.FAILED or (
                        state is TaskState.SKIPPED and not allow_skipped
                    ):
                        blocked_by = dependency
                        break
                    if not state.is_terminal:
                        waiting = True

                if blocked_by is not None:
                    self._skip(
                        dependent,
                        f"dependency {blocked_by.key} {blocked_by.state.value}",
                    )
                    settled.append(dependent)
                elif not waiting:
                    dependent.state = TaskState.READY
                    logger.debug(f"Job {self._job_id}: {dependent.key} is ready")

    def _skip(self, instance: TaskInstance, reason: str) -> None:
        instance.state = TaskState.SKIPPED
        logger.info(f"Job {self._job_id}: skipping {instance.key} ({reason})")
        self._emit(EventName.TASK_SKIP, instance)

    def _mark_skipped(self, instance: TaskInstance, reason: str) -> None:
        self._skip(instance, reason)
        self._settle_dependents(instance)

    async def _abort(self, reason: str) -> None:
        """Cancel in-flight work and skip every unfinished task."""
        tasks = list(self._in_flight.values())
        self._in_flight.clear()
        for task in tasks:
            task.cancel()

        self._slots.clear()
        for instance in self._graph:
            if not instance.is_terminal:
                self._mark_skipped(instance, reason)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.warning(
            f"Job {self._job_id} aborted ({reason}) with {len(tasks)} task(s) in flight"
        )

    def _emit(
        self,
        name: EventName,
        instance: TaskInstance,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        self._events.emit(
            LifecycleEvent(
                name=name,
                job_id=self._job_id,
                agent=instance.agent,
                task=instance.name,
                attempt=instance.attempt,
                result=result,
                error=error,
            )
        )
