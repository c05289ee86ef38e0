"""Utility modules for the engine."""

from .retry import (
    RetryHook,
    constant_delay,
    exponential_backoff,
    no_delay,
    retry_hook_from_settings,
)

__all__ = [
    "RetryHook",
    "constant_delay",
    "exponential_backoff",
    "no_delay",
    "retry_hook_from_settings",
]
