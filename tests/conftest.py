"""
tests/conftest.py

Shared pytest fixtures used by both unit and integration test suites.
Providers are in-memory and all HTTP fixtures use respx.mock, so no test
talks to a real DNS provider, Docker daemon or network service.
"""

from __future__ import annotations

import pytest
import respx

from kelpie_dns.provider.inmemory import InMemoryProvider
from kelpie_dns.registry.txt_registry import TXTRegistry


@pytest.fixture()
def provider():
    """An in-memory provider serving the example.com zone."""
    return InMemoryProvider(["example.com"])


@pytest.fixture()
def registry(provider):
    """A TXT registry owned by 'owner-a' on top of the in-memory provider."""
    return TXTRegistry(provider, txt_owner_id="owner-a")


@pytest.fixture()
def mock_http():
    """
    Yields a respx router that intercepts all httpx.AsyncClient calls.

    No real network traffic is allowed during tests.
    """
    with respx.mock(assert_all_called=False) as router:
        yield router
