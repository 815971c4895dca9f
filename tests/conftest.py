"""Shared test fixtures for the appointment assistant test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("STATIC_PASSWORD", "test-password")
    os.environ.setdefault("SESSION_SECRET", "test-session-secret")
    os.environ.setdefault("SALESFORCE_ACCESS_TOKEN", "test-sf-token")
    os.environ.setdefault("SALESFORCE_INSTANCE_URL", "https://example.my.salesforce.com")
    os.environ.setdefault("METRICS_ENABLED", "false")


@pytest.fixture
def mock_sf_response():
    """Factory fixture for creating mock Salesforce API responses."""

    def _make(data: dict | None, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = "" if data is None else str(data)
        return mock

    return _make


@pytest.fixture
def tenant():
    from appointment_assistant.catalog import TenantContext

    return TenantContext(contact_id="003dM000005H5A7QAK", static_username="Jack Rogers")
