"""Retry delay hooks.

A retry hook decides how long a failed task waits before it may be dispatched
again. It receives the instance (with ``attempt`` already incremented) and the
error of the failed attempt, and returns a delay in seconds.
"""

from collections.abc import Callable
from typing import TYPE_CHECKING

from ..config import SchedulerSettings


if TYPE_CHECKING:
    from ..core.exceptions import TaskExecutionError
    from ..core.state import TaskInstance


RetryHook = Callable[["TaskInstance", "TaskExecutionError"], float]


def no_delay(instance: "TaskInstance", error: "TaskExecutionError") -> float:
    """Retry immediately."""
    return 0.0


def constant_delay(seconds: float) -> RetryHook:
    """Wait the same number of seconds before every retry."""
    if seconds < 0:
        raise ValueError("Retry delay cannot be negative")

    def hook(instance: "TaskInstance", error: "TaskExecutionError") -> float:
        return seconds

    return hook


def exponential_backoff(
    base: float = 1.0, factor: float = 2.0, maximum: float = 60.0
) -> RetryHook:
    """Delay ``base * factor ** (attempt - 1)`` seconds, capped at ``maximum``.

    Args:
        base: Delay before the first retry
        factor: Multiplier applied for every further retry
        maximum: Upper bound on any single delay

    """
    if base < 0 or maximum < 0:
        raise ValueError("Retry delays cannot be negative")
    if factor < 1:
        raise ValueError("Backoff factor must be >= 1")

    def hook(instance: "TaskInstance", error: "TaskExecutionError") -> float:
        return min(base * factor ** max(instance.attempt - 1, 0), maximum)

    return hook


def retry_hook_from_settings(settings: SchedulerSettings) -> RetryHook:
    """Build the default retry hook for a registry from scheduler settings."""
    if settings.retry_base_delay == 0:
        return no_delay
    return exponential_backoff(
        base=settings.retry_base_delay,
        factor=settings.retry_backoff_factor,
        maximum=settings.retry_max_delay,
    )
