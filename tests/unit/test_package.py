"""Tests for the public package surface."""

import pytest

import portal_sync
from portal_sync import events


def test_version() -> None:
    assert portal_sync.__version__ == "0.1.0"


def test_all_exports_resolve() -> None:
    for name in portal_sync.__all__:
        assert hasattr(portal_sync, name), name


def test_cloudtrail_lookup_is_lazy() -> None:
    from portal_sync.events.cloudtrail import CloudTrailLookup

    assert events.CloudTrailLookup is CloudTrailLookup


def test_unknown_attribute() -> None:
    with pytest.raises(AttributeError):
        events.NoSuchThing  # noqa: B018
