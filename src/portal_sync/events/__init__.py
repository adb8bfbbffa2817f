"""Event aggregation: paginated audit-log lookup folded into user activity."""

from typing import TYPE_CHECKING

from .engine import EventAggregator, EventLookupProtocol
from .extract import (
    ExtractedEvent,
    extract_event,
    extract_resource_name,
    extract_user_arn,
    extract_user_name,
    parse_payload,
)
from .models import (
    ActivityEntry,
    ActivityReport,
    EventPayload,
    EventResource,
    LookupAttribute,
    LookupPage,
    LookupRequest,
    QueryResult,
    RawEvent,
    SessionIssuer,
    UserActivityRecord,
    UserIdentity,
)

if TYPE_CHECKING:
    from .cloudtrail import CloudTrailLookup as CloudTrailLookup

__all__ = [
    "EventAggregator",
    "EventLookupProtocol",
    "CloudTrailLookup",
    # Extraction
    "ExtractedEvent",
    "extract_event",
    "extract_resource_name",
    "extract_user_arn",
    "extract_user_name",
    "parse_payload",
    # Models
    "ActivityEntry",
    "ActivityReport",
    "EventPayload",
    "EventResource",
    "LookupAttribute",
    "LookupPage",
    "LookupRequest",
    "QueryResult",
    "RawEvent",
    "SessionIssuer",
    "UserActivityRecord",
    "UserIdentity",
]


def __getattr__(name: str) -> type:
    """Lazy import for the aioboto3-backed lookup adapter."""
    if name == "CloudTrailLookup":
        from .cloudtrail import CloudTrailLookup

        return CloudTrailLookup
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
