"""Request URL and JQL builders.

Every function here is pure.  URL builders raise
:class:`~jsm_stats.core.errors.InvalidURLError` when the result is not a
usable absolute URL; JQL builders only ever interpolate the sanitized
project key.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from urllib.parse import quote, urlencode, urlparse

from jsm_stats.core.data_models import sanitize_project_key
from jsm_stats.core.errors import InvalidURLError

SEARCH_FIELDS: tuple[str, ...] = (
    "summary",
    "status",
    "priority",
    "assignee",
    "reporter",
    "issuetype",
    "created",
    "updated",
    "resolutiondate",
    "resolution",
)


def _url(base_url: str, path: str, query: dict[str, str] | None = None) -> str:
    url = base_url.rstrip("/") + path
    if query:
        url = f"{url}?{urlencode(query)}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidURLError(url)
    return url


def _segment(value: str) -> str:
    return quote(str(value), safe="")


# -- Service Desk API ---------------------------------------------------------


def service_desks(base_url: str) -> str:
    return _url(base_url, "/rest/servicedeskapi/servicedesk")


def service_desk(base_url: str, desk_id: str) -> str:
    return _url(base_url, f"/rest/servicedeskapi/servicedesk/{_segment(desk_id)}")


def request_types(base_url: str, service_desk_id: str) -> str:
    return _url(
        base_url,
        f"/rest/servicedeskapi/servicedesk/{_segment(service_desk_id)}/requesttype",
    )


def sla(base_url: str, issue_key: str) -> str:
    return _url(base_url, f"/rest/servicedeskapi/request/{_segment(issue_key)}/sla")


# -- Platform API v3 ----------------------------------------------------------


def search_jql(base_url: str) -> str:
    return _url(base_url, "/rest/api/3/search/jql")


def search_url(
    base_url: str,
    jql: str,
    start_at: int = 0,
    max_results: int = 100,
    fields: Sequence[str] | None = None,
) -> str:
    """Legacy offset-paginated ``GET /rest/api/3/search`` URL."""
    query = {"jql": jql, "startAt": str(start_at), "maxResults": str(max_results)}
    if fields is not None:
        query["fields"] = ",".join(fields)
    return _url(base_url, "/rest/api/3/search", query)


def statuses(base_url: str) -> str:
    return _url(base_url, "/rest/api/3/statuses/search")


def status_categories(base_url: str) -> str:
    return _url(base_url, "/rest/api/3/statuscategory")


def issue_types(base_url: str) -> str:
    return _url(base_url, "/rest/api/3/issuetype")


def priorities(base_url: str) -> str:
    return _url(base_url, "/rest/api/3/priority")


def fields(base_url: str) -> str:
    return _url(base_url, "/rest/api/3/field")


def assignable_users(base_url: str, project_key: str) -> str:
    return _url(
        base_url,
        "/rest/api/3/user/assignable/search",
        {"project": project_key, "maxResults": "1000"},
    )


# -- JQL ----------------------------------------------------------------------


def jql_date(value: date | datetime) -> str:
    """``YYYY-MM-DD`` as accepted by JQL date comparisons."""
    return value.strftime("%Y-%m-%d")


def open_issues_jql(project_key: str) -> str:
    key = sanitize_project_key(project_key)
    return f"project = {key} AND statusCategory != Done ORDER BY created DESC"


def closed_issues_jql(
    project_key: str, since: date | datetime, until: date | datetime | None = None
) -> str:
    """Issues resolved on/after *since* (and before *until*, if given)."""
    key = sanitize_project_key(project_key)
    jql = f'project = {key} AND statusCategory = Done AND resolved >= "{jql_date(since)}"'
    if until is not None:
        jql += f' AND resolved < "{jql_date(until)}"'
    return jql + " ORDER BY resolved DESC"


def created_issues_jql(
    project_key: str, since: date | datetime, until: date | datetime | None = None
) -> str:
    """Issues created on/after *since* (and before *until*, if given)."""
    key = sanitize_project_key(project_key)
    jql = f'project = {key} AND created >= "{jql_date(since)}"'
    if until is not None:
        jql += f' AND created < "{jql_date(until)}"'
    return jql + " ORDER BY created DESC"


def recently_updated_jql(project_key: str, minutes: int) -> str:
    key = sanitize_project_key(project_key)
    return f"project = {key} AND updated >= -{int(minutes)}m ORDER BY updated DESC"
