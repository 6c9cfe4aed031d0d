"""Async Jira Service Management REST client with throttling, retry and pagination."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import math
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import requests

from jsm_stats.core import endpoints
from jsm_stats.core.data_models import (
    ConnectionConfig,
    Issue,
    IssueType,
    JiraField,
    JiraUser,
    Priority,
    RequestType,
    SearchResult,
    ServiceDesk,
    SLAMetric,
    Status,
    StatusCategory,
    decode_list,
    decode_values,
)
from jsm_stats.core.errors import (
    ConnectionNotConfiguredError,
    DecodingError,
    InvalidURLError,
    JiraAPIError,
    NetworkError,
    NoDataError,
    NotFoundError,
    ServerError,
    UnauthorizedError,
)
from jsm_stats.core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
MAX_PAGES = 50
PAGE_SIZE = 100
_DEFAULT_RETRY_AFTER = 10.0  # seconds, when 429 carries no usable header
_REQUEST_TIMEOUT = 30  # seconds
_BACKOFF_BASE = 1.0  # seconds
_BACKOFF_CAP = 30.0  # seconds


def retry_delay(
    attempt: int, *, jitter: Callable[[float, float], float] = random.uniform
) -> float:
    """Exponential backoff for *attempt* (0-based) with +/-25% jitter."""
    delay = _BACKOFF_BASE * (2**attempt)
    delay += delay * jitter(-0.25, 0.25)
    return min(delay, _BACKOFF_CAP)


def is_retryable(error: JiraAPIError) -> bool:
    """Transport failures and 5xx responses are worth another attempt.

    429 is excluded: it is retried by the rate limiter inside the request
    itself and never reaches the outer retry loop.
    """
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, ServerError):
        return 500 <= error.status_code <= 599
    return False


def _parse_retry_after(value: str | None) -> float:
    if value is None:
        return _DEFAULT_RETRY_AFTER
    try:
        seconds = float(value)
    except ValueError:
        return _DEFAULT_RETRY_AFTER
    if not math.isfinite(seconds):
        return _DEFAULT_RETRY_AFTER
    return seconds


class JiraClient:
    """Authenticated transport shared by discovery, metrics and polling.

    Each blocking ``requests`` call runs in the default thread pool, so many
    requests can be in flight while the event loop stays responsive.  All of
    them share one :class:`RateLimiter`.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = _REQUEST_TIMEOUT,
    ) -> None:
        self.max_retries = max_retries
        self.timeout = timeout
        self._sleep = sleep
        self.rate_limiter = rate_limiter or RateLimiter(sleep=sleep)
        self._config: ConnectionConfig | None = None
        if session is None:
            session = requests.Session()
            session.headers.update(
                {"Accept": "application/json", "Content-Type": "application/json"}
            )
        self._session = session

    # -- connection -----------------------------------------------------------

    def configure(self, config: ConnectionConfig) -> None:
        """Install credentials, replacing any previous configuration."""
        self._config = config
        logger.info("Client configured for %s", config.base_url or config.site_url)

    @property
    def is_configured(self) -> bool:
        return self._config is not None

    def close(self) -> None:
        self._session.close()

    def _base_url(self) -> str:
        if self._config is None:
            raise ConnectionNotConfiguredError()
        base = self._config.base_url
        if base is None:
            raise InvalidURLError(self._config.site_url)
        return base

    def _auth_header(self) -> str:
        if self._config is None:
            raise ConnectionNotConfiguredError()
        credentials = f"{self._config.email}:{self._config.api_token}".encode()
        return "Basic " + base64.b64encode(credentials).decode("ascii")

    # -- single request -------------------------------------------------------

    async def request(self, url: str, decode: Callable[[Any], T]) -> T:
        """GET *url* and decode its JSON body with *decode*."""
        raw = await self._send("GET", url)
        return self._decode(url, raw, decode)

    async def post_request(self, url: str, body: Any, decode: Callable[[Any], T]) -> T:
        """POST *body* as JSON to *url* and decode the JSON response."""
        raw = await self._send("POST", url, body)
        return self._decode(url, raw, decode)

    async def request_raw(self, url: str) -> bytes:
        """GET *url* and return the undecoded body."""
        return await self._send("GET", url)

    async def _send(self, method: str, url: str, body: Any = None) -> bytes:
        data = json.dumps(body) if body is not None else None
        while True:
            await self.rate_limiter.wait_if_needed()
            headers = {"Authorization": self._auth_header()}

            logger.debug("%s %s", method, url)
            response = await self._perform(method, url, headers, data)
            status = response.status_code
            logger.debug("%s %s -> %d", method, url, status)

            if 200 <= status < 300:
                self.rate_limiter.record_success()
                return response.content or b""
            if status == 401:
                raise UnauthorizedError()
            if status == 404:
                raise NotFoundError(url)
            if status == 429:
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                await self.rate_limiter.handle_rate_limited(retry_after)
                continue
            raise ServerError(status, url, response.content)

    async def _perform(
        self, method: str, url: str, headers: dict[str, str], data: str | None
    ) -> requests.Response:
        try:
            return await asyncio.to_thread(
                self._session.request,
                method,
                url,
                headers=headers,
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkError(exc) from exc

    @staticmethod
    def _decode(url: str, raw: bytes, decode: Callable[[Any], T]) -> T:
        if not raw.strip():
            raise NoDataError(url)
        try:
            return decode(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise DecodingError(exc, raw) from exc

    # -- retry ----------------------------------------------------------------

    async def _with_retry(self, url: str, call: Callable[[], Awaitable[T]]) -> T:
        last_error: JiraAPIError | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return await call()
            except JiraAPIError as exc:
                last_error = exc
                if not is_retryable(exc) or attempt >= self.max_retries:
                    raise
                delay = retry_delay(attempt)
                logger.warning(
                    "Retryable error on attempt %d/%d for %s: %s. Retrying in %.1fs",
                    attempt + 1, self.max_retries + 1, url, exc, delay,
                )
                try:
                    await self._sleep(delay)
                except asyncio.CancelledError:
                    logger.info("Retry of %s cancelled; last error: %s", url, last_error)
                    raise
        # Only reachable with a negative max_retries.
        raise last_error or NetworkError(RuntimeError("no attempts made"))

    async def _get(self, url: str, decode: Callable[[Any], T]) -> T:
        return await self._with_retry(url, lambda: self.request(url, decode))

    async def _post(self, url: str, body: Any, decode: Callable[[Any], T]) -> T:
        return await self._with_retry(url, lambda: self.post_request(url, body, decode))

    async def _get_raw(self, url: str) -> bytes:
        return await self._with_retry(url, lambda: self.request_raw(url))

    async def _get_either(self, url: str, *decoders: Callable[[Any], T]) -> T:
        """One network call, several decode attempts in order."""
        raw = await self._get_raw(url)
        if not raw.strip():
            raise NoDataError(url)
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise DecodingError(exc, raw) from exc
        errors: list[Exception] = []
        for decode in decoders:
            try:
                return decode(payload)
            except (ValueError, KeyError, TypeError) as exc:
                errors.append(exc)
        raise DecodingError(
            ValueError(f"response matched none of {len(decoders)} shapes: {errors}"), raw
        )

    # -- Service Desk API -----------------------------------------------------

    async def get_service_desks(self) -> list[ServiceDesk]:
        url = endpoints.service_desks(self._base_url())
        return await self._get(url, decode_values(ServiceDesk.from_dict))

    async def get_request_types(self, service_desk_id: str) -> list[RequestType]:
        url = endpoints.request_types(self._base_url(), service_desk_id)
        return await self._get(url, decode_values(RequestType.from_dict))

    async def get_sla(self, issue_key: str) -> list[SLAMetric]:
        url = endpoints.sla(self._base_url(), issue_key)
        return await self._get(url, decode_values(SLAMetric.from_dict))

    # -- search ---------------------------------------------------------------

    async def search_issues(
        self,
        jql: str,
        max_results: int = PAGE_SIZE,
        fields: Sequence[str] | None = None,
        next_page_token: str | None = None,
    ) -> SearchResult:
        """Fetch one page of JQL results."""
        url = endpoints.search_jql(self._base_url())
        body: dict[str, Any] = {
            "jql": jql,
            "maxResults": max_results,
            "fields": list(fields if fields is not None else endpoints.SEARCH_FIELDS),
        }
        if next_page_token is not None:
            body["nextPageToken"] = next_page_token
        return await self._post(url, body, SearchResult.from_dict)

    async def search_all_issues(
        self,
        jql: str,
        fields: Sequence[str] | None = None,
        *,
        stop: asyncio.Event | None = None,
    ) -> list[Issue]:
        """Follow continuation tokens until exhausted, capped at ``MAX_PAGES``.

        Setting *stop* ends pagination after the current page and returns what
        has been accumulated so far.
        """
        issues: list[Issue] = []
        token: str | None = None
        for page in range(1, MAX_PAGES + 1):
            result = await self.search_issues(
                jql, max_results=PAGE_SIZE, fields=fields, next_page_token=token
            )
            issues.extend(result.issues)
            if not result.next_page_token or not result.issues:
                break
            token = result.next_page_token
            if stop is not None and stop.is_set():
                logger.info("Search stopped after %d page(s), %d issues", page, len(issues))
                break
        else:
            logger.warning(
                "Search hit the %d-page limit with %d issues: %s", MAX_PAGES, len(issues), jql
            )
        return issues

    # -- Platform metadata ----------------------------------------------------

    async def get_statuses(self) -> list[Status]:
        url = endpoints.statuses(self._base_url())
        return await self._get_either(
            url, decode_values(Status.from_dict), decode_list(Status.from_dict)
        )

    async def get_status_categories(self) -> list[StatusCategory]:
        url = endpoints.status_categories(self._base_url())
        return await self._get(url, decode_list(StatusCategory.from_dict))

    async def get_issue_types(self) -> list[IssueType]:
        url = endpoints.issue_types(self._base_url())
        return await self._get(url, decode_list(IssueType.from_dict))

    async def get_priorities(self) -> list[Priority]:
        url = endpoints.priorities(self._base_url())
        return await self._get_either(
            url, decode_list(Priority.from_dict), decode_values(Priority.from_dict)
        )

    async def get_fields(self) -> list[JiraField]:
        url = endpoints.fields(self._base_url())
        return await self._get(url, decode_list(JiraField.from_dict))

    async def get_assignable_users(self, project_key: str) -> list[JiraUser]:
        url = endpoints.assignable_users(self._base_url(), project_key)
        return await self._get(url, decode_list(JiraUser.from_dict))
