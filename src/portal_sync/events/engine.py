"""Paginated event lookup folded into per-user activity rollups."""

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

from ulid import ULID

from ..config import EventsConfig
from ..exceptions import EventQueryError, ValidationError
from ..ratelimit import RateLimiterProtocol
from ..retry import RetryOptions, RetryPolicyProtocol
from .extract import extract_event, extract_requested_id
from .models import (
    ActivityEntry,
    ActivityReport,
    LookupAttribute,
    LookupPage,
    LookupRequest,
    QueryResult,
    RawEvent,
    UserActivityRecord,
)

logger = logging.getLogger(__name__)

EVENT_NAME_ATTRIBUTE = "EventName"
EVENT_SOURCE_ATTRIBUTE = "EventSource"
LOOKUP_OPERATION = "CloudTrail.LookupEvents"

# Asset type -> (view event name, request parameter keys naming the asset)
VIEW_EVENTS: dict[str, tuple[str, tuple[str, ...]]] = {
    "dashboard": ("GetDashboard", ("dashboardId", "DashboardId")),
    "analysis": ("GetAnalysis", ("analysisId", "AnalysisId")),
}


@runtime_checkable
class EventLookupProtocol(Protocol):
    """Paginated, filterable event lookup API."""

    async def lookup_events(self, request: LookupRequest) -> LookupPage: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def merge_users(
    target: dict[str, UserActivityRecord], source: dict[str, UserActivityRecord]
) -> None:
    """Fold per-user records from ``source`` into ``target``."""
    for user_name, record in source.items():
        existing = target.get(user_name)
        if existing is None:
            target[user_name] = replace(record, activities=list(record.activities))
        else:
            existing.merge(record)


class EventAggregator:
    """
    Folds paginated event lookups into per-user activity records.

    Each query covers one event name and one time window and fetches pages
    strictly in cursor order, one at a time. A query stops when the API
    returns no cursor, or when ``max_pages_per_query`` pages or
    ``max_events_per_type`` events have been read; stopping at a cap marks
    the query ``truncated`` and its totals become lower bounds. The event
    cap counts events as returned by the API, before any client-side
    filtering by the lookup.

    A page whose fetch exhausts its retries aborts the query with
    EventQueryError. Nothing folded from earlier pages of that query is
    returned.

    Args:
        lookup: Event lookup API
        rate_limiter: Gate acquired before every page request attempt
        retry_policy: Wraps each page request with bounded retries
        config: Source filter and safety caps
        retry_options: Options passed to the retry policy
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        lookup: EventLookupProtocol,
        rate_limiter: RateLimiterProtocol,
        retry_policy: RetryPolicyProtocol,
        config: EventsConfig | None = None,
        retry_options: RetryOptions | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.lookup = lookup
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.config = config or EventsConfig()
        self.retry_options = retry_options
        self._clock = clock

    def build_time_range(self, days: int) -> tuple[datetime, datetime]:
        """Window ending now, at most ``max_lookback_days`` long."""
        if days < 1:
            raise ValidationError("days", days, "must be at least 1")
        end_time = self._clock()
        start_time = end_time - timedelta(days=min(days, self.config.max_lookback_days))
        return start_time, end_time

    def _filters(self, event_name: str) -> tuple[LookupAttribute, ...]:
        return (
            LookupAttribute(EVENT_NAME_ATTRIBUTE, event_name),
            LookupAttribute(EVENT_SOURCE_ATTRIBUTE, self.config.event_source),
        )

    async def _fetch_page(self, request: LookupRequest, event_name: str, page: int) -> LookupPage:
        """Gated, retried fetch of one page; raises EventQueryError once retries run out."""

        async def attempt() -> LookupPage:
            await self.rate_limiter.acquire()
            return await self.lookup.lookup_events(request)

        try:
            return await self.retry_policy.run(attempt, LOOKUP_OPERATION, self.retry_options)
        except Exception as e:
            logger.error(
                "Error fetching %s events on page %d: %s",
                event_name,
                page,
                e,
                exc_info=True,
            )
            raise EventQueryError(event_name, page, e) from e

    # -------------------------------------------------------------------------
    # Folding
    # -------------------------------------------------------------------------

    def fold_event(self, event: RawEvent, users: dict[str, UserActivityRecord]) -> bool:
        """
        Fold one event into ``users``.

        Returns:
            True if the event was attributed to a user, False if skipped
        """
        if event.event_source != self.config.event_source:
            return False

        extracted = extract_event(event)
        if extracted is None:
            return False

        record = users.get(extracted.user_name)
        if record is None:
            record = UserActivityRecord(
                user_arn=extracted.user_arn,
                user_name=extracted.user_name,
                max_activities=self.config.max_activities_per_user,
            )
            users[extracted.user_name] = record

        entry = ActivityEntry(
            event_name=extracted.event_name,
            event_time=extracted.event_time or self._clock(),
            resource_name=extracted.resource_name,
        )
        record.record(entry, extracted.event_time)
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def aggregate_event_name(
        self,
        event_name: str,
        start_time: datetime,
        end_time: datetime,
        users: dict[str, UserActivityRecord] | None = None,
    ) -> QueryResult:
        """
        Run one paginated query and fold its events.

        Events are folded into ``result.users``. When ``users`` is given,
        the query's records are merged into it only after the last page
        succeeded.

        Raises:
            EventQueryError: If any page fails after retries
        """
        result = QueryResult(event_name=event_name)
        filters = self._filters(event_name)
        cursor: str | None = None

        while True:
            request = LookupRequest(
                start_time=start_time,
                end_time=end_time,
                filters=filters,
                cursor=cursor,
                max_results=self.config.max_results_per_page,
            )
            page = await self._fetch_page(request, event_name, result.pages)
            result.pages += 1
            result.events_seen += page.returned_count

            for event in page.events:
                if self.fold_event(event, result.users):
                    result.events_folded += 1

            cursor = page.next_cursor
            if not cursor:
                break
            if (
                result.pages >= self.config.max_pages_per_query
                or result.events_seen >= self.config.max_events_per_type
            ):
                result.truncated = True
                logger.warning(
                    "Stopping %s query after %d events across %d pages to prevent throttling",
                    event_name,
                    result.events_seen,
                    result.pages,
                )
                break

        logger.debug(
            "Query %s finished: pages=%d events=%d folded=%d users=%d",
            event_name,
            result.pages,
            result.events_seen,
            result.events_folded,
            len(result.users),
        )
        if users is not None:
            merge_users(users, result.users)
        return result

    async def get_user_activity(
        self,
        days: int | None = None,
        event_names: Iterable[str] | None = None,
    ) -> ActivityReport:
        """
        Aggregate user activity over the last ``days`` days.

        Queries run one after another, one per event name. If any query
        fails the error propagates and no report is returned.

        Args:
            days: Lookback in days (capped at max_lookback_days)
            event_names: Event names to query (default: configured list)

        Raises:
            EventQueryError: If a page fetch fails after retries
        """
        start_time, end_time = self.build_time_range(
            days if days is not None else self.config.max_lookback_days
        )
        names = list(event_names) if event_names is not None else list(self.config.event_names)
        report = ActivityReport(run_id=str(ULID()), start_time=start_time, end_time=end_time)

        for name in names:
            query = await self.aggregate_event_name(name, start_time, end_time, report.users)
            report.queries.append(query)

        logger.info(
            "Completed event lookup: found %d users with activity across %d queries%s",
            len(report.users),
            len(report.queries),
            " (truncated)" if report.truncated else "",
            extra={"run_id": report.run_id},
        )
        return report

    async def _collect_events(
        self,
        event_name: str,
        start_time: datetime,
        end_time: datetime,
        max_pages: int,
        keep: Callable[[RawEvent], bool] | None = None,
    ) -> tuple[list[RawEvent], int]:
        """Page through one event name up to ``max_pages``, keeping matching events."""
        filters = self._filters(event_name)
        events: list[RawEvent] = []
        cursor: str | None = None
        pages = 0

        while True:
            request = LookupRequest(
                start_time=start_time,
                end_time=end_time,
                filters=filters,
                cursor=cursor,
                max_results=self.config.max_results_per_page,
            )
            page = await self._fetch_page(request, event_name, pages)
            pages += 1
            events.extend(e for e in page.events if keep is None or keep(e))
            cursor = page.next_cursor
            if not cursor or pages >= max_pages:
                break

        return events, pages

    async def fetch_events_by_name(
        self,
        event_name: str,
        start_time: datetime,
        end_time: datetime,
    ) -> list[RawEvent]:
        """
        Collect raw events for one event name.

        Uses a page cap of ``max_pages_per_query * raw_page_multiplier`` and
        no event cap.

        Raises:
            EventQueryError: If any page fails after retries
        """
        max_pages = self.config.max_pages_per_query * self.config.raw_page_multiplier
        events, pages = await self._collect_events(event_name, start_time, end_time, max_pages)
        logger.info("Found total of %d %s events across %d pages", len(events), event_name, pages)
        return events

    async def fetch_view_events(
        self,
        asset_type: str,
        asset_ids: Iterable[str],
        days: int | None = None,
    ) -> list[RawEvent]:
        """
        Collect view events for a set of dashboards or analyses.

        Queries the asset type's view event name (``GetDashboard`` or
        ``GetAnalysis``) for up to ``max_pages_per_query`` pages and keeps
        events whose request named one of ``asset_ids``.

        Args:
            asset_type: "dashboard" or "analysis"
            asset_ids: Asset ids to keep events for
            days: Lookback in days (default and cap: max_lookback_days)

        Raises:
            ValidationError: If asset_type has no view event or days < 1
            EventQueryError: If any page fails after retries
        """
        view = VIEW_EVENTS.get(asset_type)
        if view is None:
            raise ValidationError("asset_type", asset_type, f"must be one of {sorted(VIEW_EVENTS)}")
        if isinstance(asset_ids, str):
            raise ValidationError(
                "asset_ids", asset_ids, "must be an iterable of ids, not a string"
            )
        start_time, end_time = self.build_time_range(
            days if days is not None else self.config.max_lookback_days
        )
        wanted = set(asset_ids)
        if not wanted:
            return []

        event_name, keys = view
        events, pages = await self._collect_events(
            event_name,
            start_time,
            end_time,
            self.config.max_pages_per_query,
            keep=lambda e: extract_requested_id(e, keys) in wanted,
        )
        logger.info(
            "Found %d %s view events for %d ids across %d pages",
            len(events),
            asset_type,
            len(wanted),
            pages,
        )
        return events
