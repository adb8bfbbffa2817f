"""Shared test fixtures and fakes for portal-sync tests."""
