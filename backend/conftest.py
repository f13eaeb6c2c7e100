"""Shared pytest configuration and fixtures."""

import pytest
from rest_framework.test import APIClient

pytest_plugins = [
    "bookings.tests.conftest",
]


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture(autouse=True)
def _media_root(settings, tmp_path):
    """Write generated PDFs under a per-test directory."""
    settings.MEDIA_ROOT = tmp_path / "media"
