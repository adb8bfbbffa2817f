"""CloudTrail ``LookupEvents`` adapter for the event aggregation engine."""

import logging
from typing import Any

import aioboto3  # type: ignore[import-untyped]

from .models import LookupAttribute, LookupPage, LookupRequest, RawEvent

logger = logging.getLogger(__name__)


def _matches(event: RawEvent, attribute: LookupAttribute) -> bool:
    """Client-side evaluation of a lookup attribute the API could not apply."""
    if attribute.key == "EventName":
        return event.event_name == attribute.value
    if attribute.key == "EventSource":
        return event.event_source == attribute.value
    if attribute.key == "Username":
        return event.username == attribute.value
    if attribute.key == "EventId":
        return event.event_id == attribute.value
    if attribute.key == "ResourceName":
        return any(r.resource_name == attribute.value for r in event.resources)
    if attribute.key == "ResourceType":
        return any(r.resource_type == attribute.value for r in event.resources)
    return True


class CloudTrailLookup:
    """
    Async CloudTrail client implementing the paginated lookup contract.

    LookupEvents accepts a single lookup attribute per call, so the first
    filter of a request is sent to the API and any remaining filters are
    applied to the returned page. Cursors and page sizes pass through
    unchanged, so pagination is unaffected by the client-side filtering.

    Args:
        region: AWS region (default: use boto3 defaults)
        endpoint_url: Optional endpoint URL (for LocalStack or other
            AWS-compatible services)
    """

    def __init__(
        self,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create the CloudTrail client."""
        if self._client is not None:
            return self._client

        if self._session is None:
            self._session = aioboto3.Session()

        kwargs: dict[str, Any] = {}
        if self.region:
            kwargs["region_name"] = self.region
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url

        session = self._session
        self._client = await session.client("cloudtrail", **kwargs).__aenter__()
        return self._client

    async def lookup_events(self, request: LookupRequest) -> LookupPage:
        """Fetch one page of events."""
        client = await self._get_client()

        params: dict[str, Any] = {
            "StartTime": request.start_time,
            "EndTime": request.end_time,
            "MaxResults": request.max_results,
        }
        server_side = request.filters[:1]
        client_side = request.filters[1:]
        if server_side:
            params["LookupAttributes"] = [a.to_api() for a in server_side]
        if request.cursor:
            params["NextToken"] = request.cursor

        response = await client.lookup_events(**params)

        events = [RawEvent.from_api(e) for e in response.get("Events", [])]
        raw_count = len(events)
        if client_side:
            events = [e for e in events if all(_matches(e, a) for a in client_side)]

        return LookupPage(
            events=tuple(events),
            next_cursor=response.get("NextToken") or None,
            raw_count=raw_count,
        )

    async def close(self) -> None:
        """Close the CloudTrail client."""
        if self._client is not None:
            try:
                await self._client.__aexit__(None, None, None)
            finally:
                self._client = None
        self._session = None

    async def __aenter__(self) -> "CloudTrailLookup":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
