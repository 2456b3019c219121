"""
tests/unit/test_static_source.py

Unit tests for kelpie_dns/source/static.py.
"""

from __future__ import annotations

import pytest

from kelpie_dns.models.models import Endpoint
from kelpie_dns.source.static import StaticSource


@pytest.mark.asyncio
async def test_endpoints_carry_resource_label():
    source = StaticSource([Endpoint("www.example.com", ["1.2.3.4"], "A")], name="office")
    [endpoint] = await source.endpoints()
    assert endpoint.resource == "static/office"


@pytest.mark.asyncio
async def test_explicit_resource_label_is_kept():
    source = StaticSource(
        [Endpoint("www.example.com", ["1.2.3.4"], "A", labels={"resource": "custom"})]
    )
    [endpoint] = await source.endpoints()
    assert endpoint.resource == "custom"


@pytest.mark.asyncio
async def test_endpoints_are_copies():
    original = Endpoint("www.example.com", ["1.2.3.4"], "A")
    source = StaticSource([original])
    [endpoint] = await source.endpoints()
    endpoint.targets.append("5.6.7.8")
    assert original.targets == ["1.2.3.4"]
    assert original.labels == {}


def test_set_endpoints_notifies_handlers():
    source = StaticSource()
    calls = []
    source.add_event_handler(lambda: calls.append(1))
    source.set_endpoints([Endpoint("www.example.com", ["1.2.3.4"], "A")])
    assert calls == [1]
