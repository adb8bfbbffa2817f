"""
Actor and resource extraction from raw audit-log events.

The embedded payload is validated into ``EventPayload`` before anything is
read from it. Every function here is total: a malformed or partial event
yields ``None`` instead of raising, so one bad event never affects the rest
of its page. A malformed resource or request section only loses that
section; the actor is still resolved.

User name precedence (grouping of activity depends on it staying stable):

1. Assumed role with a session issuer name and a ``roleId:session``
   principal id: ``"{issuer}/{session}"``
2. ``userName``
3. ARN containing ``user/``: the part after ``user/<namespace>/``, else the
   last path segment
4. ``principalId``
5. Otherwise the event has no user
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from .models import EventPayload, RawEvent

logger = logging.getLogger(__name__)

RESOURCE_ARN_PATTERN = re.compile(r"/(dashboard|analysis|dataset)/([^/]+)$")
USER_ARN_PATTERN = re.compile(r"user/[^/]+/(.+)$")


@dataclass(frozen=True)
class ExtractedEvent:
    """Fields of one event needed for activity folding."""

    user_name: str
    user_arn: str
    event_name: str
    event_time: datetime | None
    resource_name: str | None


def parse_payload(raw: str | None) -> EventPayload | None:
    """Parse and validate an embedded event document; None if absent or malformed."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise TypeError("event document must be an object")
        return EventPayload.from_dict(data)
    except (ValueError, TypeError) as e:
        logger.debug("Discarding malformed event payload: %s", e)
        return None


def extract_user_name(payload: EventPayload) -> str | None:
    """Resolve the display user name following the fixed precedence."""
    identity = payload.user_identity
    if identity is None:
        return None

    issuer = identity.session_issuer
    if identity.is_assumed_role and issuer is not None and issuer.user_name:
        parts = (identity.principal_id or "").split(":")
        if len(parts) > 1 and parts[1]:
            return f"{issuer.user_name}/{parts[1]}"

    if identity.user_name:
        return identity.user_name

    if identity.arn and "user/" in identity.arn:
        match = USER_ARN_PATTERN.search(identity.arn)
        if match:
            return match.group(1)
        last = identity.arn.rsplit("/", 1)[-1]
        if last:
            return last

    return identity.principal_id


def extract_user_arn(payload: EventPayload) -> str | None:
    """ARN of the actor, falling back to the principal id."""
    identity = payload.user_identity
    if identity is None:
        return None
    return identity.arn or identity.principal_id


def extract_resource_name(event: RawEvent, payload: EventPayload | None) -> str | None:
    """
    Resource touched by the event.

    Prefers the structured resource reference (reduced to the asset id when
    it is a dashboard/analysis/dataset path), then the payload's own
    resource list.
    """
    if event.resources:
        name = event.resources[0].resource_name
        if name:
            match = RESOURCE_ARN_PATTERN.search(name)
            return match.group(2) if match else name

    if payload is not None and payload.resource_names:
        return payload.resource_names[0]

    return None


def extract_requested_id(event: RawEvent, keys: tuple[str, ...]) -> str | None:
    """Asset id the event's request named under the first matching key, if any."""
    payload = parse_payload(event.payload)
    if payload is None:
        return None
    return payload.request_parameter(*keys)


def extract_event(event: RawEvent) -> ExtractedEvent | None:
    """Extract everything activity folding needs, or None if the event has no user."""
    payload = parse_payload(event.payload)
    if payload is None:
        return None

    user_name = extract_user_name(payload)
    if not user_name:
        return None

    return ExtractedEvent(
        user_name=user_name,
        user_arn=extract_user_arn(payload) or user_name,
        event_name=event.event_name or "Unknown",
        event_time=event.event_time,
        resource_name=extract_resource_name(event, payload),
    )
