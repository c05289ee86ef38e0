"""Job and task lifecycle events."""

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


logger = logging.getLogger(__name__)


class EventName(StrEnum):
    """Names of the events a job emits."""

    JOB_START = "job:start"
    JOB_SUCCESS = "job:success"
    JOB_FAIL = "job:fail"
    TASK_START = "task:start"
    TASK_SUCCESS = "task:success"
    TASK_RETRY = "task:retry"
    TASK_FAIL = "task:fail"
    TASK_SKIP = "task:skip"


ALL_EVENTS = "*"


class LifecycleEvent(BaseModel):
    """Payload handed to event handlers."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: EventName
    job_id: str
    agent: str | None = None
    task: str | None = None
    attempt: int = 0
    result: Any = None
    error: BaseException | None = None


EventHandler = Callable[[LifecycleEvent], Any]


class EventEmitter:
    """Synchronous publish/subscribe hub owned by a single job.

    Handlers run inline on the job's control loop. A handler that raises is
    logged and does not affect scheduling or other handlers.
    """

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event: EventName | str, handler: EventHandler) -> EventHandler:
        """Subscribe ``handler`` to ``event`` (or ``"*"`` for every event).

        Raises:
            ValueError: If ``event`` is not a known event name

        """
        if event != ALL_EVENTS:
            event = EventName(event)
        self._handlers[str(event)].append(handler)
        return handler

    def off(self, event: EventName | str, handler: EventHandler) -> bool:
        """Unsubscribe a handler. Returns False if it was not subscribed."""
        handlers = self._handlers.get(str(event), [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def emit(self, event: LifecycleEvent) -> None:
        for handler in [*self._handlers[event.name.value], *self._handlers[ALL_EVENTS]]:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    f"Event handler {handler!r} failed for {event.name.value} "
                    f"(job {event.job_id})"
                )
