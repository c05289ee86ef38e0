"""Yakuza registry: scraper definitions and job factory.

A ``Yakuza`` instance is an explicit context object. Create one per process
(or per test) and pass it around; there is no module-level registry.
"""

import logging
from typing import Any

from ..config import YakuzaSettings, get_settings
from ..utils.retry import RetryHook, retry_hook_from_settings
from .definitions import ScraperDefinition, TaskDefaults
from .exceptions import NotFoundError
from .job import Job


logger = logging.getLogger(__name__)


class Yakuza:
    """Process-wide map of scraper id to ``ScraperDefinition``.

    The map is append-only: ``scraper`` creates a definition on first use and
    returns the same instance afterwards. Jobs only read definitions.
    """

    def __init__(self, settings: YakuzaSettings | None = None):
        """Initialize an empty registry.

        Args:
            settings: Settings providing task and retry defaults; the cached
                process settings are used when omitted

        """
        self.settings = settings or get_settings()
        self._scrapers: dict[str, ScraperDefinition] = {}
        self._task_defaults = TaskDefaults(
            max_retries=self.settings.scheduler.default_max_retries,
            timeout=self.settings.scheduler.default_task_timeout,
        )
        self._retry_hook = retry_hook_from_settings(self.settings.scheduler)

    def __contains__(self, scraper_id: object) -> bool:
        return scraper_id in self._scrapers

    def __len__(self) -> int:
        return len(self._scrapers)

    @property
    def scrapers(self) -> list[str]:
        return list(self._scrapers)

    def scraper(self, scraper_id: str) -> ScraperDefinition:
        """Return the scraper called ``scraper_id``, creating it on first use."""
        existing = self._scrapers.get(scraper_id)
        if existing is not None:
            return existing

        scraper = ScraperDefinition(id=scraper_id)
        scraper._task_defaults = self._task_defaults
        self._scrapers[scraper_id] = scraper
        logger.debug(f"Registered scraper '{scraper_id}'")
        return scraper

    def get_scraper(self, scraper_id: str) -> ScraperDefinition:
        try:
            return self._scrapers[scraper_id]
        except KeyError:
            raise NotFoundError("scraper", scraper_id) from None

    def job(
        self,
        scraper_id: str,
        agent_id: str,
        params: dict[str, Any] | None = None,
        *,
        routine: str | None = None,
        retry_hook: RetryHook | None = None,
    ) -> Job:
        """Create a job for ``agent_id`` of ``scraper_id`` without starting it.

        Args:
            scraper_id: Registered scraper id
            agent_id: Entry agent whose tasks the job targets
            params: Parameters handed to every work function
            routine: Restrict the entry tasks to a routine of the agent
            retry_hook: Retry delay hook; defaults to the settings' policy

        Raises:
            NotFoundError: If the scraper, agent or routine is unknown
            GraphError: If the task graph cannot be built

        """
        scraper = self.get_scraper(scraper_id)
        agent = scraper.get_agent(agent_id)
        job = Job(
            scraper,
            agent,
            params,
            routine=routine,
            retry_hook=retry_hook or self._retry_hook,
        )
        logger.debug(f"Created job {job.id} for {scraper_id}.{agent_id}")
        return job

    def clear(self) -> None:
        """Drop every registered scraper."""
        self._scrapers.clear()
        logger.debug("Registry cleared")
