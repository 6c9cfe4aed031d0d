"""Periodic detection of new tickets and status transitions in one project."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from jsm_stats.core import endpoints
from jsm_stats.core.data_models import sanitize_project_key
from jsm_stats.core.errors import JiraAPIError
from jsm_stats.core.jira_client import JiraClient

logger = logging.getLogger(__name__)

POLL_INTERVAL = 60.0  # seconds
POLL_MAX_RESULTS = 50


class ChangeKind(Enum):
    NEW_TICKET = "new_ticket"
    STATUS_CHANGED = "status_changed"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    issue_key: str
    summary: str
    detail: str


class ChangePoller:
    """Compares recently updated issues against the statuses seen so far.

    The first poll only records what it sees; later polls report issues
    that were not known before and issues whose status name changed.
    """

    def __init__(
        self,
        client: JiraClient,
        project_key: str,
        poll_interval: float = POLL_INTERVAL,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.project_key = sanitize_project_key(project_key)
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._known: dict[str, str] = {}
        self._primed = False
        self._on_change: Callable[[ChangeEvent], None] | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def known_statuses(self) -> dict[str, str]:
        return dict(self._known)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_change: Callable[[ChangeEvent], None]) -> None:
        self._on_change = on_change
        self.stop()
        self._task = asyncio.ensure_future(self._run())
        logger.info("Polling %s every %.0fs", self.project_key, self.poll_interval)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await self._sleep(self.poll_interval)
            await self.poll()

    async def poll(self) -> list[ChangeEvent]:
        """Run one poll and deliver its events; failures yield no events."""
        minutes = int(self.poll_interval / 60) + 1
        jql = endpoints.recently_updated_jql(self.project_key, minutes)
        try:
            result = await self.client.search_issues(jql, max_results=POLL_MAX_RESULTS)
        except JiraAPIError as exc:
            logger.warning("Change poll for %s failed: %s", self.project_key, exc)
            return []

        primed, self._primed = self._primed, True
        events: list[ChangeEvent] = []
        for issue in result.issues:
            status = issue.fields.status.name if issue.fields.status else "Unknown"
            summary = issue.fields.summary or issue.key
            previous = self._known.get(issue.key)
            if previous is not None:
                if previous != status:
                    events.append(ChangeEvent(
                        ChangeKind.STATUS_CHANGED, issue.key, summary, f"{previous} -> {status}"
                    ))
            elif primed:
                events.append(ChangeEvent(
                    ChangeKind.NEW_TICKET, issue.key, summary, "New ticket created"
                ))
            self._known[issue.key] = status

        for event in events:
            logger.debug("%s %s: %s", event.kind.value, event.issue_key, event.detail)
            if self._on_change is not None:
                self._on_change(event)
        return events
