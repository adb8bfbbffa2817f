"""Models for audit-log event lookup and per-user activity rollups."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lookup API shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LookupAttribute:
    """One ``{key, value}`` filter of a lookup request."""

    key: str
    value: str

    def to_api(self) -> dict[str, str]:
        return {"AttributeKey": self.key, "AttributeValue": self.value}


@dataclass(frozen=True)
class LookupRequest:
    """
    One page request to the paginated event lookup API.

    Attributes:
        start_time: Window start (inclusive)
        end_time: Window end (inclusive)
        filters: Ordered lookup attributes
        cursor: Continuation token from the previous page, None for the first
        max_results: Page size
    """

    start_time: datetime
    end_time: datetime
    filters: tuple[LookupAttribute, ...] = ()
    cursor: str | None = None
    max_results: int = 50


@dataclass(frozen=True)
class EventResource:
    """Structured resource reference attached to an event summary."""

    resource_type: str | None = None
    resource_name: str | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> EventResource:
        return cls(resource_type=d.get("ResourceType"), resource_name=d.get("ResourceName"))


@dataclass(frozen=True)
class RawEvent:
    """
    Event summary returned by the lookup API.

    ``payload`` holds the embedded raw JSON document with actor and
    resource detail; it is parsed lazily by the extraction functions.
    """

    event_name: str | None = None
    event_source: str | None = None
    event_time: datetime | None = None
    event_id: str | None = None
    username: str | None = None
    resources: tuple[EventResource, ...] = ()
    payload: str | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> RawEvent:
        """Build from a ``LookupEvents`` response entry."""
        event_time = d.get("EventTime")
        if isinstance(event_time, datetime) and event_time.tzinfo is None:
            event_time = event_time.replace(tzinfo=UTC)
        return cls(
            event_name=d.get("EventName"),
            event_source=d.get("EventSource"),
            event_time=event_time if isinstance(event_time, datetime) else None,
            event_id=d.get("EventId"),
            username=d.get("Username"),
            resources=tuple(EventResource.from_api(r) for r in d.get("Resources") or ()),
            payload=d.get("CloudTrailEvent"),
        )


@dataclass(frozen=True)
class LookupPage:
    """
    One page of lookup results.

    ``raw_count`` is the number of events the API returned before any
    client-side filtering; None means ``events`` is unfiltered.
    """

    events: tuple[RawEvent, ...] = ()
    next_cursor: str | None = None
    raw_count: int | None = None

    @property
    def returned_count(self) -> int:
        return self.raw_count if self.raw_count is not None else len(self.events)


# ---------------------------------------------------------------------------
# Embedded payload schema
# ---------------------------------------------------------------------------


def _opt_str(d: dict[str, Any], key: str) -> str | None:
    """Return d[key] if it is a non-empty string, None if missing; reject other types."""
    value = d.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _opt_dict(d: dict[str, Any], key: str) -> dict[str, Any]:
    value = d.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"{key} must be an object, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class SessionIssuer:
    """Role that issued an assumed-role session."""

    user_name: str | None = None
    arn: str | None = None
    type: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionIssuer:
        return cls(
            user_name=_opt_str(d, "userName"),
            arn=_opt_str(d, "arn"),
            type=_opt_str(d, "type"),
        )


@dataclass(frozen=True)
class UserIdentity:
    """
    Actor of an event.

    Two shapes are handled:
    - Assumed role (``type == "AssumedRole"``): ``principal_id`` is
      ``"{roleId}:{sessionName}"`` and ``session_issuer`` names the role
    - Direct user: ``user_name`` and/or a ``user/`` ARN
    """

    type: str | None = None
    principal_id: str | None = None
    arn: str | None = None
    user_name: str | None = None
    session_issuer: SessionIssuer | None = None

    @property
    def is_assumed_role(self) -> bool:
        return self.type == "AssumedRole"

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> UserIdentity:
        issuer = _opt_dict(_opt_dict(d, "sessionContext"), "sessionIssuer")
        return cls(
            type=_opt_str(d, "type"),
            principal_id=_opt_str(d, "principalId"),
            arn=_opt_str(d, "arn"),
            user_name=_opt_str(d, "userName"),
            session_issuer=SessionIssuer.from_dict(issuer) if issuer else None,
        )


def _user_identity(d: dict[str, Any]) -> UserIdentity | None:
    try:
        identity = _opt_dict(d, "userIdentity")
        return UserIdentity.from_dict(identity) if identity else None
    except TypeError as e:
        logger.debug("Ignoring malformed userIdentity: %s", e)
        return None


def _resource_names(d: dict[str, Any]) -> tuple[str, ...]:
    raw = d.get("resources") or []
    if not isinstance(raw, list):
        logger.debug("Ignoring resources of type %s", type(raw).__name__)
        return ()
    names: list[str] = []
    for r in raw:
        if not isinstance(r, dict):
            continue
        try:
            name = _opt_str(r, "resourceName") or _opt_str(r, "ARN")
        except TypeError as e:
            logger.debug("Ignoring malformed resource entry: %s", e)
            continue
        if name:
            names.append(name)
    return tuple(names)


def _request_parameters(d: dict[str, Any]) -> dict[str, Any]:
    try:
        return _opt_dict(d, "requestParameters")
    except TypeError as e:
        logger.debug("Ignoring malformed requestParameters: %s", e)
        return {}


@dataclass(frozen=True)
class EventPayload:
    """
    Validated subset of the embedded raw event document.

    Each section is validated on its own: a malformed ``userIdentity``
    yields no identity, a malformed ``resources`` list or entry yields no
    resource name for it, and non-object ``requestParameters`` yield ``{}``.
    """

    user_identity: UserIdentity | None = None
    resource_names: tuple[str, ...] = ()
    request_parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> EventPayload:
        return cls(
            user_identity=_user_identity(d),
            resource_names=_resource_names(d),
            request_parameters=_request_parameters(d),
        )

    def request_parameter(self, *keys: str) -> str | None:
        """First non-empty string among ``requestParameters[key]`` for ``keys``."""
        for key in keys:
            value = self.request_parameters.get(key)
            if isinstance(value, str) and value:
                return value
        return None


# ---------------------------------------------------------------------------
# Activity rollups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityEntry:
    """One tracked activity of a user."""

    event_name: str
    event_time: datetime
    resource_name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "event_name": self.event_name,
            "event_time": self.event_time.isoformat(),
        }
        if self.resource_name is not None:
            result["resource_name"] = self.resource_name
        return result


@dataclass
class UserActivityRecord:
    """
    Activity rollup for one user during one aggregation run.

    ``activity_count`` is exact; ``activities`` keeps only the first
    ``max_activities`` entries tracked.
    """

    user_arn: str
    user_name: str
    max_activities: int = 100
    last_activity_time: datetime | None = None
    activity_count: int = 0
    activities: list[ActivityEntry] = field(default_factory=list)

    def record(self, entry: ActivityEntry, event_time: datetime | None) -> None:
        """Fold one event into the rollup."""
        self.activity_count += 1
        if event_time is not None and (
            self.last_activity_time is None or event_time > self.last_activity_time
        ):
            self.last_activity_time = event_time
        if len(self.activities) < self.max_activities:
            self.activities.append(entry)

    def merge(self, other: UserActivityRecord) -> None:
        """Fold another rollup for the same user into this one."""
        self.activity_count += other.activity_count
        if other.last_activity_time is not None and (
            self.last_activity_time is None or other.last_activity_time > self.last_activity_time
        ):
            self.last_activity_time = other.last_activity_time
        room = self.max_activities - len(self.activities)
        if room > 0:
            self.activities.extend(other.activities[:room])

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_arn": self.user_arn,
            "user_name": self.user_name,
            "last_activity_time": (
                self.last_activity_time.isoformat() if self.last_activity_time else None
            ),
            "activity_count": self.activity_count,
            "activities": [a.as_dict() for a in self.activities],
        }


@dataclass
class QueryResult:
    """Rollups and accounting for one event-name query."""

    event_name: str
    pages: int = 0
    events_seen: int = 0
    events_folded: int = 0
    truncated: bool = False
    users: dict[str, UserActivityRecord] = field(default_factory=dict, repr=False)

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_name": self.event_name,
            "pages": self.pages,
            "events_seen": self.events_seen,
            "events_folded": self.events_folded,
            "truncated": self.truncated,
        }


@dataclass
class ActivityReport:
    """
    Result of a user activity aggregation run.

    When ``truncated`` is True, at least one query hit its page or event
    cap and all totals are lower bounds.
    """

    run_id: str
    start_time: datetime
    end_time: datetime
    users: dict[str, UserActivityRecord] = field(default_factory=dict)
    queries: list[QueryResult] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return any(q.truncated for q in self.queries)

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "truncated": self.truncated,
            "user_count": len(self.users),
            "users": {name: rec.as_dict() for name, rec in sorted(self.users.items())},
            "queries": [q.as_dict() for q in self.queries],
        }
