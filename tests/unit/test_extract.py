"""Unit tests for actor and resource extraction from raw events."""

import json
from datetime import UTC, datetime

import pytest

from portal_sync.events.extract import (
    extract_event,
    extract_requested_id,
    extract_resource_name,
    extract_user_arn,
    extract_user_name,
    parse_payload,
)
from portal_sync.events.models import EventPayload, EventResource, RawEvent, UserIdentity

EVENT_TIME = datetime(2025, 7, 20, 9, 30, tzinfo=UTC)


def _payload(identity: dict | None = None, **extra) -> EventPayload:
    data = dict(extra)
    if identity is not None:
        data["userIdentity"] = identity
    return EventPayload.from_dict(data)


def _event(payload: dict | str | None, **kwargs) -> RawEvent:
    raw = payload if isinstance(payload, str) or payload is None else json.dumps(payload)
    kwargs.setdefault("event_name", "GetDashboard")
    kwargs.setdefault("event_source", "quicksight.amazonaws.com")
    kwargs.setdefault("event_time", EVENT_TIME)
    return RawEvent(payload=raw, **kwargs)


ASSUMED_ROLE = {
    "type": "AssumedRole",
    "principalId": "AROAEXAMPLE:jane.doe",
    "arn": "arn:aws:sts::123456789012:assumed-role/Analysts/jane.doe",
    "sessionContext": {"sessionIssuer": {"userName": "Analysts", "type": "Role"}},
}


class TestParsePayload:
    def test_none_and_empty(self) -> None:
        assert parse_payload(None) is None
        assert parse_payload("") is None

    def test_malformed_json(self) -> None:
        assert parse_payload("{not json") is None

    def test_non_object_document(self) -> None:
        assert parse_payload("[1, 2]") is None

    @pytest.mark.parametrize("identity", [{"userName": 42}, "alice", {"sessionContext": []}])
    def test_malformed_identity_gives_no_identity(self, identity) -> None:
        payload = parse_payload(json.dumps({"userIdentity": identity, "resources": [{"ARN": "x"}]}))
        assert payload is not None
        assert payload.user_identity is None
        assert payload.resource_names == ("x",)

    @pytest.mark.parametrize(
        "resources",
        [{"ARN": "x"}, "x", [{"resourceName": 123}], [{"ARN": ["x"]}]],
    )
    def test_malformed_resources_keep_identity(self, resources) -> None:
        payload = parse_payload(
            json.dumps({"userIdentity": {"userName": "alice"}, "resources": resources})
        )
        assert payload is not None
        assert payload.user_identity is not None
        assert payload.resource_names == ()

    def test_malformed_resource_entry_skips_only_that_entry(self) -> None:
        payload = parse_payload(
            json.dumps({"resources": [{"resourceName": 123}, {"resourceName": "d-2"}]})
        )
        assert payload is not None
        assert payload.resource_names == ("d-2",)

    @pytest.mark.parametrize("params", ["redacted", ["dashboardId"], 7])
    def test_non_object_request_parameters(self, params) -> None:
        payload = parse_payload(
            json.dumps({"userIdentity": {"userName": "alice"}, "requestParameters": params})
        )
        assert payload is not None
        assert payload.request_parameters == {}
        assert payload.user_identity is not None

    def test_valid(self) -> None:
        payload = parse_payload(
            json.dumps(
                {
                    "userIdentity": ASSUMED_ROLE,
                    "resources": [{"ARN": "arn:aws:quicksight:::dashboard/d-1"}, "junk"],
                    "requestParameters": {"dashboardId": "d-1"},
                }
            )
        )
        assert payload is not None
        assert payload.user_identity is not None
        assert payload.user_identity.is_assumed_role
        assert payload.resource_names == ("arn:aws:quicksight:::dashboard/d-1",)
        assert payload.request_parameters == {"dashboardId": "d-1"}


class TestExtractUserName:
    """User name precedence."""

    def test_assumed_role_with_session(self) -> None:
        assert extract_user_name(_payload(ASSUMED_ROLE)) == "Analysts/jane.doe"

    def test_assumed_role_without_session_falls_through(self) -> None:
        identity = dict(ASSUMED_ROLE, principalId="AROAEXAMPLE")
        # no user name, ARN has no "user/": falls back to the principal id
        assert extract_user_name(_payload(identity)) == "AROAEXAMPLE"

    def test_assumed_role_empty_session_falls_through(self) -> None:
        identity = dict(ASSUMED_ROLE, principalId="AROAEXAMPLE:", userName="fallback")
        assert extract_user_name(_payload(identity)) == "fallback"

    def test_assumed_role_without_issuer_name(self) -> None:
        identity = {
            "type": "AssumedRole",
            "principalId": "AROAEXAMPLE:jane.doe",
            "sessionContext": {"sessionIssuer": {"type": "Role"}},
        }
        assert extract_user_name(_payload(identity)) == "AROAEXAMPLE:jane.doe"

    def test_user_name(self) -> None:
        identity = {"type": "IAMUser", "userName": "alice", "arn": "arn:aws:iam::1:user/bob"}
        assert extract_user_name(_payload(identity)) == "alice"

    def test_user_arn_with_namespace(self) -> None:
        identity = {"arn": "arn:aws:quicksight:us-east-1:1:user/default/carol@example.com"}
        assert extract_user_name(_payload(identity)) == "carol@example.com"

    def test_user_arn_last_segment(self) -> None:
        identity = {"arn": "arn:aws:iam::123456789012:user/dave"}
        assert extract_user_name(_payload(identity)) == "dave"

    def test_principal_id_fallback(self) -> None:
        identity = {"principalId": "AIDAEXAMPLE", "arn": "arn:aws:iam::1:root"}
        assert extract_user_name(_payload(identity)) == "AIDAEXAMPLE"

    def test_no_identity(self) -> None:
        assert extract_user_name(_payload()) is None
        assert extract_user_name(_payload({"type": "Unknown"})) is None


class TestExtractUserArn:
    def test_arn_preferred(self) -> None:
        assert extract_user_arn(_payload(ASSUMED_ROLE)) == ASSUMED_ROLE["arn"]

    def test_principal_fallback(self) -> None:
        assert extract_user_arn(_payload({"principalId": "AIDA1"})) == "AIDA1"

    def test_none(self) -> None:
        assert extract_user_arn(_payload()) is None


class TestExtractResourceName:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("qs/us-east-1/dashboard/sales-2025", "sales-2025"),
            ("qs/us-east-1/analysis/a-7", "a-7"),
            ("qs/us-east-1/dataset/ds-9", "ds-9"),
            ("qs/us-east-1/datasource/src-1", "qs/us-east-1/datasource/src-1"),
            ("qs/us-east-1/dashboard/d-1/extra", "qs/us-east-1/dashboard/d-1/extra"),
            ("Plain Name", "Plain Name"),
        ],
    )
    def test_structured_resource(self, name: str, expected: str) -> None:
        event = RawEvent(resources=(EventResource("AWS::QuickSight::Dashboard", name),))
        assert extract_resource_name(event, None) == expected

    def test_payload_fallback(self) -> None:
        payload = _payload(resources=[{"resourceName": "from-payload"}])
        event = RawEvent(resources=(EventResource("AWS::QuickSight::Dashboard", None),))
        assert extract_resource_name(event, payload) == "from-payload"

    def test_absent(self) -> None:
        assert extract_resource_name(RawEvent(), _payload()) is None
        assert extract_resource_name(RawEvent(), None) is None


class TestExtractEvent:
    def test_full_event(self) -> None:
        resource = EventResource("AWS::QuickSight::Dashboard", "qs/us-east-1/dashboard/d-1")
        event = _event({"userIdentity": ASSUMED_ROLE}, resources=(resource,))

        extracted = extract_event(event)

        assert extracted is not None
        assert extracted.user_name == "Analysts/jane.doe"
        assert extracted.user_arn == ASSUMED_ROLE["arn"]
        assert extracted.event_name == "GetDashboard"
        assert extracted.event_time == EVENT_TIME
        assert extracted.resource_name == "d-1"

    def test_unknown_event_name(self) -> None:
        extracted = extract_event(_event({"userIdentity": {"userName": "alice"}}, event_name=None))
        assert extracted is not None
        assert extracted.event_name == "Unknown"
        assert extracted.user_arn == "alice"

    def test_malformed_payload_is_skipped(self) -> None:
        assert extract_event(_event("not-json")) is None

    def test_missing_payload_is_skipped(self) -> None:
        assert extract_event(_event(None)) is None

    def test_no_user_is_skipped(self) -> None:
        assert extract_event(_event({"eventName": "GetDashboard"})) is None

    @pytest.mark.parametrize(
        "extra",
        [
            {"resources": [{"resourceName": 123}]},
            {"resources": {"ARN": "x"}},
            {"requestParameters": "redacted"},
        ],
    )
    def test_bad_resource_sections_keep_the_user(self, extra) -> None:
        extracted = extract_event(_event({"userIdentity": {"userName": "alice"}, **extra}))

        assert extracted is not None
        assert extracted.user_name == "alice"
        assert extracted.resource_name is None

    def test_malformed_identity_is_skipped(self) -> None:
        assert extract_event(_event({"userIdentity": {"userName": 42}})) is None


class TestExtractRequestedId:
    def test_first_matching_key(self) -> None:
        event = _event({"requestParameters": {"DashboardId": "d-1"}})
        assert extract_requested_id(event, ("dashboardId", "DashboardId")) == "d-1"

    def test_lower_camel_key_preferred(self) -> None:
        event = _event({"requestParameters": {"dashboardId": "d-1", "DashboardId": "d-2"}})
        assert extract_requested_id(event, ("dashboardId", "DashboardId")) == "d-1"

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            "not-json",
            {},
            {"requestParameters": {"dashboardId": 5}},
            {"requestParameters": "x"},
        ],
    )
    def test_absent_or_malformed(self, payload) -> None:
        assert extract_requested_id(_event(payload), ("dashboardId",)) is None


class TestModels:
    def test_user_identity_from_dict(self) -> None:
        identity = UserIdentity.from_dict(ASSUMED_ROLE)
        assert identity.session_issuer is not None
        assert identity.session_issuer.user_name == "Analysts"
        assert identity.principal_id == "AROAEXAMPLE:jane.doe"

    def test_raw_event_from_api(self) -> None:
        raw = RawEvent.from_api(
            {
                "EventId": "e-1",
                "EventName": "GetDashboard",
                "EventSource": "quicksight.amazonaws.com",
                "EventTime": datetime(2025, 7, 20, 9, 30),
                "Username": "jane.doe",
                "Resources": [
                    {"ResourceType": "AWS::QuickSight::Dashboard", "ResourceName": "d-1"}
                ],
                "CloudTrailEvent": "{}",
            }
        )
        assert raw.event_time == EVENT_TIME
        assert raw.resources[0].resource_name == "d-1"
        assert raw.payload == "{}"
        assert raw.event_id == "e-1"
