"""Reference-metadata bootstrap run after connecting to a site."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from jsm_stats.core.data_models import (
    IssueType,
    JiraField,
    JiraUser,
    Priority,
    RequestType,
    ServiceDesk,
    Status,
    StatusCategory,
)
from jsm_stats.core.errors import JiraAPIError
from jsm_stats.core.jira_client import JiraClient

logger = logging.getLogger(__name__)

LIST_KINDS = (
    "service_desks",
    "issue_types",
    "statuses",
    "status_categories",
    "priorities",
    "fields",
)


class DiscoveryCache:
    """Thread-safe store of discovered metadata.

    Entity lists are keyed by kind (see ``LIST_KINDS``); request types are
    keyed by service desk id and assignable users by project key.  Writers
    replace whole entries; readers always get copies and must expect a
    partially populated cache.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lists: dict[str, list[Any]] = {kind: [] for kind in LIST_KINDS}
        self._request_types: dict[str, list[RequestType]] = {}
        self._users: dict[str, list[JiraUser]] = {}

    def get(self, kind: str) -> list[Any]:
        with self._lock:
            return list(self._lists[kind])

    def put(self, kind: str, values: list[Any]) -> None:
        if kind not in self._lists:
            raise KeyError(kind)
        with self._lock:
            self._lists[kind] = list(values)

    @property
    def service_desks(self) -> list[ServiceDesk]:
        return self.get("service_desks")

    @property
    def issue_types(self) -> list[IssueType]:
        return self.get("issue_types")

    @property
    def statuses(self) -> list[Status]:
        return self.get("statuses")

    @property
    def status_categories(self) -> list[StatusCategory]:
        return self.get("status_categories")

    @property
    def priorities(self) -> list[Priority]:
        return self.get("priorities")

    @property
    def fields(self) -> list[JiraField]:
        return self.get("fields")

    @property
    def is_populated(self) -> bool:
        with self._lock:
            return bool(self._lists["service_desks"])

    def request_types(self, service_desk_id: str) -> list[RequestType]:
        with self._lock:
            return list(self._request_types.get(service_desk_id, ()))

    def set_request_types(self, service_desk_id: str, values: list[RequestType]) -> None:
        with self._lock:
            self._request_types[service_desk_id] = list(values)

    @property
    def request_types_by_desk(self) -> dict[str, list[RequestType]]:
        with self._lock:
            return {k: list(v) for k, v in self._request_types.items()}

    def users(self, project_key: str) -> list[JiraUser]:
        with self._lock:
            return list(self._users.get(project_key, ()))

    def set_users(self, project_key: str, values: list[JiraUser]) -> None:
        with self._lock:
            self._users[project_key] = list(values)

    @property
    def users_by_project(self) -> dict[str, list[JiraUser]]:
        with self._lock:
            return {k: list(v) for k, v in self._users.items()}

    def clear(self) -> None:
        with self._lock:
            for kind in self._lists:
                self._lists[kind] = []
            self._request_types.clear()
            self._users.clear()


class DiscoveryManager:
    """Populates a :class:`DiscoveryCache` from the API.

    Per-desk lookups run as background tasks owned by the manager: call
    :meth:`wait_pending` to join them or :meth:`close` to cancel them.
    """

    def __init__(self, client: JiraClient, cache: DiscoveryCache | None = None) -> None:
        self.client = client
        self.cache = cache if cache is not None else DiscoveryCache()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def discover_all(self) -> list[ServiceDesk]:
        """Refill the cache; only the service-desk fetch may fail the call."""
        self._cancel_pending()
        self.cache.clear()

        desks = await self.client.get_service_desks()
        self.cache.put("service_desks", desks)
        logger.info("Discovered %d service desk(s)", len(desks))

        optional: list[tuple[str, Callable[[], Awaitable[list[Any]]]]] = [
            ("issue_types", self.client.get_issue_types),
            ("statuses", self.client.get_statuses),
            ("status_categories", self.client.get_status_categories),
            ("priorities", self.client.get_priorities),
            ("fields", self.client.get_fields),
        ]
        for kind, fetch in optional:
            try:
                values = await fetch()
            except JiraAPIError as exc:
                logger.warning("Skipping %s: %s", kind.replace("_", " "), exc)
                continue
            self.cache.put(kind, values)
            logger.debug("Cached %d %s", len(values), kind)

        for desk in desks:
            self._spawn(self._load_request_types(desk.id))
            self._spawn(self._load_users(desk.project_key))
        return desks

    async def wait_pending(self) -> None:
        """Wait until every per-desk lookup has finished."""
        while self._tasks:
            results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Discovery task failed: %s", result)

    def close(self) -> None:
        self._cancel_pending()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_pending(self) -> None:
        if self._tasks:
            logger.debug("Cancelling %d pending discovery task(s)", len(self._tasks))
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def _load_request_types(self, service_desk_id: str) -> None:
        try:
            values = await self.client.get_request_types(service_desk_id)
        except JiraAPIError as exc:
            logger.info("No request types for desk %s: %s", service_desk_id, exc)
            return
        self.cache.set_request_types(service_desk_id, values)

    async def _load_users(self, project_key: str) -> None:
        try:
            values = await self.client.get_assignable_users(project_key)
        except JiraAPIError as exc:
            logger.info("No assignable users for %s: %s", project_key, exc)
            return
        self.cache.set_users(project_key, values)
