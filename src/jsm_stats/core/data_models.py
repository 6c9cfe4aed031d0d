"""Data models decoded from Jira Service Management responses."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar
from urllib.parse import urlparse

from dateutil.parser import isoparse

T = TypeVar("T")

INVALID_PROJECT_KEY = "INVALID"
_PROJECT_KEY_RE = re.compile(r"[A-Za-z0-9_-]{1,20}")


def sanitize_project_key(key: str) -> str:
    """Return *key* if it is safe to interpolate into JQL, else ``"INVALID"``."""
    if isinstance(key, str) and _PROJECT_KEY_RE.fullmatch(key):
        return key
    return INVALID_PROJECT_KEY


def parse_datetime(value: Any) -> datetime | None:
    """Parse a Jira ISO-8601 timestamp; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _obj(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _array(data: Any, key: str | None = None) -> list[Any]:
    if key is not None:
        data = _obj(data)[key]
    if not isinstance(data, list):
        raise TypeError(f"expected a JSON array, got {type(data).__name__}")
    return data


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


# -- connection ---------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """Site URL and credentials for one Jira Cloud site."""

    site_url: str
    email: str
    api_token: str = field(repr=False)

    @property
    def base_url(self) -> str | None:
        """Normalised ``https://`` site root without a trailing slash."""
        url = self.site_url.strip()
        if url.startswith("http://"):
            url = "https://" + url[len("http://"):]
        elif not url.startswith("https://"):
            url = f"https://{url}"
        if url.endswith("/"):
            url = url[:-1]
        if any(ch.isspace() for ch in url):
            return None
        try:
            parsed = urlparse(url)
        except ValueError:
            return None
        if not parsed.netloc:
            return None
        return url

    @property
    def is_valid(self) -> bool:
        if not (self.site_url.strip() and self.email.strip() and self.api_token.strip()):
            return False
        return self.base_url is not None

    @property
    def site_name(self) -> str:
        """Host name without the ``.atlassian.net`` suffix."""
        base = self.base_url
        if base is None:
            return self.site_url.strip()
        return urlparse(base).netloc.removesuffix(".atlassian.net")


# -- reference metadata -------------------------------------------------------


@dataclass(frozen=True)
class ServiceDesk:
    """A project-scoped request queue."""

    id: str
    project_id: str
    project_name: str
    project_key: str

    @property
    def sanitized_project_key(self) -> str:
        """The only form of the project key that may appear in JQL."""
        return sanitize_project_key(self.project_key)

    @classmethod
    def from_dict(cls, data: Any) -> ServiceDesk:
        d = _obj(data)
        return cls(
            id=str(d["id"]),
            project_id=str(d["projectId"]),
            project_name=str(d["projectName"]),
            project_key=str(d["projectKey"]),
        )


@dataclass(frozen=True, eq=False)
class JiraUser:
    """A Jira account; equality is by ``account_id``."""

    account_id: str
    display_name: str | None = None
    email_address: str | None = None
    active: bool | None = None
    avatar_url: str | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.email_address or self.account_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JiraUser):
            return NotImplemented
        return self.account_id == other.account_id

    def __hash__(self) -> int:
        return hash(self.account_id)

    @classmethod
    def from_dict(cls, data: Any) -> JiraUser:
        d = _obj(data)
        avatars = d.get("avatarUrls") or {}
        return cls(
            account_id=str(d["accountId"]),
            display_name=d.get("displayName"),
            email_address=d.get("emailAddress"),
            active=d.get("active"),
            avatar_url=avatars.get("48x48") if isinstance(avatars, dict) else None,
        )


@dataclass(frozen=True)
class StatusCategory:
    id: int
    key: str
    name: str
    color_name: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> StatusCategory:
        d = _obj(data)
        return cls(
            id=int(d["id"]),
            key=str(d["key"]),
            name=str(d["name"]),
            color_name=d.get("colorName"),
        )


@dataclass(frozen=True)
class Status:
    id: str
    name: str
    status_category: StatusCategory | None = None

    @property
    def category_key(self) -> str:
        """``"new"``, ``"indeterminate"``, ``"done"`` or ``"undefined"``."""
        return self.status_category.key if self.status_category else "undefined"

    @classmethod
    def from_dict(cls, data: Any) -> Status:
        d = _obj(data)
        category = d.get("statusCategory")
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            status_category=StatusCategory.from_dict(category) if category else None,
        )


@dataclass(frozen=True)
class Priority:
    id: str
    name: str
    icon_url: str | None = None
    status_color: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Priority:
        d = _obj(data)
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            icon_url=d.get("iconUrl"),
            status_color=d.get("statusColor"),
        )


@dataclass(frozen=True)
class IssueType:
    id: str
    name: str
    description: str | None = None
    subtask: bool | None = None
    icon_url: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> IssueType:
        d = _obj(data)
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            description=d.get("description"),
            subtask=d.get("subtask"),
            icon_url=d.get("iconUrl"),
        )


@dataclass(frozen=True)
class RequestType:
    """A customer-facing request form of a service desk."""

    id: str
    name: str
    description: str | None = None
    service_desk_id: str | None = None
    issue_type_id: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RequestType:
        d = _obj(data)
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            description=d.get("description"),
            service_desk_id=_opt_str(d.get("serviceDeskId")),
            issue_type_id=_opt_str(d.get("issueTypeId")),
        )


@dataclass(frozen=True)
class FieldSchema:
    type: str
    custom: str | None = None
    custom_id: int | None = None
    system: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> FieldSchema:
        d = _obj(data)
        return cls(
            type=str(d["type"]),
            custom=d.get("custom"),
            custom_id=d.get("customId"),
            system=d.get("system"),
        )


@dataclass(frozen=True)
class JiraField:
    """A system or custom issue field."""

    id: str
    name: str
    custom: bool
    navigable: bool | None = None
    searchable: bool | None = None
    orderable: bool | None = None
    schema: FieldSchema | None = None
    clause_names: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> JiraField:
        d = _obj(data)
        schema = d.get("schema")
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            custom=bool(d.get("custom", False)),
            navigable=d.get("navigable"),
            searchable=d.get("searchable"),
            orderable=d.get("orderable"),
            schema=FieldSchema.from_dict(schema) if schema else None,
            clause_names=tuple(d.get("clauseNames") or ()),
        )


# -- issues -------------------------------------------------------------------


@dataclass(frozen=True)
class Resolution:
    id: str | None = None
    name: str | None = None
    description: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Resolution:
        d = _obj(data)
        return cls(
            id=_opt_str(d.get("id")),
            name=d.get("name"),
            description=d.get("description"),
        )


@dataclass(frozen=True)
class IssueFields:
    """The subset of issue fields requested by searches.

    Timestamps are kept as the raw ISO-8601 strings; the ``*_date``
    properties parse them on demand.
    """

    summary: str | None = None
    status: Status | None = None
    priority: Priority | None = None
    assignee: JiraUser | None = None
    reporter: JiraUser | None = None
    issue_type: IssueType | None = None
    created: str | None = None
    updated: str | None = None
    resolution_date: str | None = None
    resolution: Resolution | None = None

    @property
    def created_date(self) -> datetime | None:
        return parse_datetime(self.created)

    @property
    def updated_date(self) -> datetime | None:
        return parse_datetime(self.updated)

    @property
    def resolved_date(self) -> datetime | None:
        return parse_datetime(self.resolution_date)

    @property
    def resolution_time_hours(self) -> float | None:
        """Hours from creation to resolution, if both timestamps parse."""
        created, resolved = self.created_date, self.resolved_date
        if created is None or resolved is None:
            return None
        return (resolved - created).total_seconds() / 3600.0

    @classmethod
    def from_dict(cls, data: Any) -> IssueFields:
        d = _obj(data)

        def nested(key: str, factory: Any) -> Any:
            value = d.get(key)
            return factory(value) if value else None

        return cls(
            summary=d.get("summary"),
            status=nested("status", Status.from_dict),
            priority=nested("priority", Priority.from_dict),
            assignee=nested("assignee", JiraUser.from_dict),
            reporter=nested("reporter", JiraUser.from_dict),
            issue_type=nested("issuetype", IssueType.from_dict),
            created=d.get("created"),
            updated=d.get("updated"),
            resolution_date=d.get("resolutiondate"),
            resolution=nested("resolution", Resolution.from_dict),
        )


@dataclass(frozen=True, eq=False)
class Issue:
    """Point-in-time snapshot of one issue; equality is by ``id``."""

    id: str
    key: str
    fields: IssueFields = field(default_factory=IssueFields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Issue):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def from_dict(cls, data: Any) -> Issue:
        d = _obj(data)
        return cls(
            id=str(d["id"]),
            key=str(d["key"]),
            fields=IssueFields.from_dict(d.get("fields") or {}),
        )


@dataclass(frozen=True)
class SearchResult:
    """One page of ``/rest/api/3/search/jql``."""

    issues: tuple[Issue, ...]
    next_page_token: str | None = None
    # Legacy offset pagination fields of the old /search endpoint.
    start_at: int | None = None
    max_results: int | None = None
    total: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> SearchResult:
        d = _obj(data)
        return cls(
            issues=tuple(Issue.from_dict(i) for i in _array(d, "issues")),
            next_page_token=d.get("nextPageToken"),
            start_at=d.get("startAt"),
            max_results=d.get("maxResults"),
            total=d.get("total"),
        )


# -- SLA ----------------------------------------------------------------------


@dataclass(frozen=True)
class SLADuration:
    millis: int | None = None
    friendly: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> SLADuration:
        d = _obj(data)
        return cls(millis=d.get("millis"), friendly=d.get("friendly"))


@dataclass(frozen=True)
class SLACycle:
    breached: bool | None = None
    goal_duration: SLADuration | None = None
    elapsed_time: SLADuration | None = None
    remaining_time: SLADuration | None = None

    @classmethod
    def from_dict(cls, data: Any) -> SLACycle:
        d = _obj(data)

        def duration(key: str) -> SLADuration | None:
            value = d.get(key)
            return SLADuration.from_dict(value) if value else None

        return cls(
            breached=d.get("breached"),
            goal_duration=duration("goalDuration"),
            elapsed_time=duration("elapsedTime"),
            remaining_time=duration("remainingTime"),
        )


@dataclass(frozen=True)
class SLAMetric:
    """One named SLA on an issue; counts are derived from its cycles."""

    name: str
    id: int | None = None
    completed_cycles: tuple[SLACycle, ...] = ()
    ongoing_cycle: SLACycle | None = None

    @property
    def total_cycles(self) -> int:
        return len(self.completed_cycles) + (1 if self.ongoing_cycle is not None else 0)

    @property
    def breached_count(self) -> int:
        count = sum(1 for c in self.completed_cycles if c.breached is True)
        if self.ongoing_cycle is not None and self.ongoing_cycle.breached is True:
            count += 1
        return count

    @property
    def compliance_percent(self) -> float:
        if self.total_cycles == 0:
            return 100.0
        return (self.total_cycles - self.breached_count) / self.total_cycles * 100.0

    @classmethod
    def from_dict(cls, data: Any) -> SLAMetric:
        d = _obj(data)
        ongoing = d.get("ongoingCycle")
        return cls(
            name=str(d["name"]),
            id=d.get("id"),
            completed_cycles=tuple(
                SLACycle.from_dict(c) for c in (d.get("completedCycles") or ())
            ),
            ongoing_cycle=SLACycle.from_dict(ongoing) if ongoing else None,
        )


# -- list decoders ------------------------------------------------------------
# Used as ``decode=`` callables by the client.


def decode_values(item: Callable[[Any], T]) -> Callable[[Any], list[T]]:
    """Build a decoder for ``{"values": [...]}`` wrapped lists."""

    def _decode(data: Any) -> list[T]:
        return [item(v) for v in _array(data, "values")]

    return _decode


def decode_list(item: Callable[[Any], T]) -> Callable[[Any], list[T]]:
    """Build a decoder for bare JSON arrays."""

    def _decode(data: Any) -> list[T]:
        return [item(v) for v in _array(data)]

    return _decode
