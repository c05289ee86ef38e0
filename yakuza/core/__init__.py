"""Core scheduling engine.

This package holds the definitions, task graph, scheduler and job state
machine of the Yakuza orchestration engine.
"""

from .definitions import (
    AgentDefinition,
    CallableWork,
    Executable,
    ScraperDefinition,
    TaskDefinition,
    TaskRef,
)
from .events import EventEmitter, EventName, LifecycleEvent
from .exceptions import (
    AlreadyRunningError,
    CyclicDependencyError,
    DefinitionError,
    GraphError,
    JobCancelledError,
    NotFoundError,
    TaskExecutionError,
    TaskNotCompleteError,
    TaskSkipped,
    TaskTimeoutError,
    UnresolvedDependencyError,
    YakuzaError,
)
from .graph import AgentPolicy, TaskGraph
from .job import Job, JobOutcome
from .registry import Yakuza
from .scheduler import Scheduler
from .state import JobState, TaskInstance, TaskState


__all__ = [
    "AgentDefinition",
    "AgentPolicy",
    "AlreadyRunningError",
    "CallableWork",
    "CyclicDependencyError",
    "DefinitionError",
    "EventEmitter",
    "EventName",
    "Executable",
    "GraphError",
    "Job",
    "JobCancelledError",
    "JobOutcome",
    "JobState",
    "LifecycleEvent",
    "NotFoundError",
    "Scheduler",
    "ScraperDefinition",
    "TaskDefinition",
    "TaskExecutionError",
    "TaskGraph",
    "TaskInstance",
    "TaskNotCompleteError",
    "TaskRef",
    "TaskSkipped",
    "TaskState",
    "TaskTimeoutError",
    "UnresolvedDependencyError",
    "Yakuza",
    "YakuzaError",
]
