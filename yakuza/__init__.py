"""Yakuza - job orchestration for multi-step scraping workflows.

Scrapers are named workflow templates made of agents, which group tasks with
declared dependencies, concurrency limits and ordering rules. A job binds a
scraper's entry agent to parameters and runs the resulting task graph.

Typical usage example:
    yakuza = Yakuza()
    agent = yakuza.scraper("shop").agent("catalog", concurrency=4)
    agent.task("pages", fetch_pages)
    agent.task("items", fetch_items, depends_on=["pages"], retryable=True, max_retries=2)
    outcome = await yakuza.job("shop", "catalog", {"query": "shoes"}).run()
"""

from .config import SchedulerSettings, YakuzaSettings, get_settings
from .core import (
    AgentDefinition,
    AlreadyRunningError,
    CyclicDependencyError,
    DefinitionError,
    EventName,
    Executable,
    Job,
    JobCancelledError,
    JobOutcome,
    JobState,
    LifecycleEvent,
    NotFoundError,
    ScraperDefinition,
    TaskDefinition,
    TaskExecutionError,
    TaskNotCompleteError,
    TaskRef,
    TaskSkipped,
    TaskState,
    TaskTimeoutError,
    UnresolvedDependencyError,
    Yakuza,
    YakuzaError,
)


__version__ = "0.1.0"

__all__ = [
    "AgentDefinition",
    "AlreadyRunningError",
    "CyclicDependencyError",
    "DefinitionError",
    "EventName",
    "Executable",
    "Job",
    "JobCancelledError",
    "JobOutcome",
    "JobState",
    "LifecycleEvent",
    "NotFoundError",
    "SchedulerSettings",
    "ScraperDefinition",
    "TaskDefinition",
    "TaskExecutionError",
    "TaskNotCompleteError",
    "TaskRef",
    "TaskSkipped",
    "TaskState",
    "TaskTimeoutError",
    "UnresolvedDependencyError",
    "Yakuza",
    "YakuzaError",
    "YakuzaSettings",
    "get_settings",
]
