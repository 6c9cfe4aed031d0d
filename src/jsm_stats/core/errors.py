"""Exception hierarchy for the Jira Service Management client."""

from __future__ import annotations

import errno

import requests


class JiraAPIError(Exception):
    """Base exception for every failure produced by the API client."""


class UnauthorizedError(JiraAPIError):
    """The server rejected the credentials (HTTP 401)."""

    def __init__(self) -> None:
        super().__init__("Authentication failed. Check your email and API token.")


class RateLimitedError(JiraAPIError):
    """The server kept throttling (HTTP 429) past the rate limiter's budget."""

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after {int(retry_after)} seconds.")


class NetworkError(JiraAPIError):
    """The transport failed before an HTTP status was received."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Network error: {cause}")


class DecodingError(JiraAPIError):
    """A 2xx response body did not have the expected shape."""

    def __init__(self, cause: BaseException, raw: bytes) -> None:
        self.cause = cause
        self.raw = raw
        super().__init__(f"Failed to parse response: {cause}")


class NotFoundError(JiraAPIError):
    """The requested resource does not exist (HTTP 404)."""

    def __init__(self, url: str = "") -> None:
        self.url = url
        super().__init__("Resource not found.")


class ServerError(JiraAPIError):
    """Any other non-2xx status."""

    def __init__(self, status_code: int, url: str, body: bytes | None = None) -> None:
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(f"Server error (HTTP {status_code})")


class InvalidURLError(JiraAPIError):
    """A request URL could not be built from the configured site."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"Invalid URL: {url}")


class NoDataError(JiraAPIError):
    """A 2xx response arrived with an empty body where JSON was expected."""

    def __init__(self, url: str = "") -> None:
        self.url = url
        super().__init__("No data received.")


class ConnectionNotConfiguredError(JiraAPIError):
    """A request was attempted before ``JiraClient.configure()``."""

    def __init__(self) -> None:
        super().__init__(
            "No connection configured. Please set up your Jira credentials."
        )


# -- user-facing messages -----------------------------------------------------

_RESOLUTION_MARKERS = (
    "nameresolution",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "connection refused",
)
_OFFLINE_MARKERS = ("network is unreachable", "no route to host")


def friendly_message(exc: BaseException) -> str:
    """Return a sentence suitable for an error banner."""
    if isinstance(exc, NetworkError):
        return _network_message(exc.cause)
    if isinstance(exc, UnauthorizedError):
        return "Authentication failed. Check your email and API token in settings."
    if isinstance(exc, RateLimitedError):
        return "Rate limited by Jira. Will retry automatically."
    if isinstance(exc, ServerError):
        return (
            f"Jira server error (HTTP {exc.status_code}). "
            "The server may be experiencing issues."
        )
    if isinstance(exc, ConnectionNotConfiguredError):
        return "No connection configured. Set up your Jira credentials in settings."
    return str(exc) or exc.__class__.__name__


def _network_message(cause: BaseException) -> str:
    if isinstance(cause, (TimeoutError, requests.Timeout)):
        return "Request timed out. The server may be slow or unreachable."

    text = str(cause).lower()
    os_errno = getattr(cause, "errno", None)
    if os_errno in (errno.ENETUNREACH, errno.EHOSTUNREACH) or any(
        marker in text for marker in _OFFLINE_MARKERS
    ):
        return "No internet connection. Check your network and try again."
    if isinstance(cause, requests.ConnectionError) and any(
        marker in text for marker in _RESOLUTION_MARKERS
    ):
        return "Cannot reach the Jira server. Check the site URL in settings."
    return f"Network error: {cause}"
