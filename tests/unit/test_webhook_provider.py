"""
tests/unit/test_webhook_provider.py

Unit tests for kelpie_dns/provider/webhook.py and webhook_models.py.
All webhook calls are intercepted by respx, no real network traffic.
"""

from __future__ import annotations

import json

import httpx
import pytest

from kelpie_dns.exceptions import ProviderError
from kelpie_dns.models.models import Changes, Endpoint
from kelpie_dns.provider.webhook import WebhookProvider
from kelpie_dns.provider.webhook_models import (
    MEDIA_TYPE,
    ChangesModel,
    dump_endpoints,
    load_endpoints,
)

_URL = "http://webhook.test"


def _ep(name="www.example.com", targets=("1.2.3.4",), record_type="A", **kwargs):
    return Endpoint(dnsname=name, targets=list(targets), record_type=record_type, **kwargs)


def _wire(name="www.example.com", targets=("1.2.3.4",), record_type="A"):
    return {"dnsName": name, "targets": list(targets), "recordType": record_type}


def _response(status, body=None):
    if body is None:
        return httpx.Response(status)
    return httpx.Response(status, json=body, headers={"Content-Type": MEDIA_TYPE})


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


def test_dump_uses_wire_field_names():
    endpoint = _ep(record_ttl=300, set_identifier="eu", labels={"owner": "owner-a"})
    endpoint.set_provider_specific("cloudflare-proxied", "true")

    assert dump_endpoints([endpoint]) == [
        {
            "dnsName": "www.example.com",
            "targets": ["1.2.3.4"],
            "recordType": "A",
            "setIdentifier": "eu",
            "recordTTL": 300,
            "labels": {"owner": "owner-a"},
            "providerSpecific": [{"name": "cloudflare-proxied", "value": "true"}],
        }
    ]


def test_dump_omits_unset_ttl():
    assert "recordTTL" not in dump_endpoints([_ep()])[0]


def test_load_fills_defaults():
    [endpoint] = load_endpoints([_wire()])
    assert endpoint == _ep()


def test_changes_model_round_trip():
    changes = Changes(
        create=[_ep("a.example.com")],
        update_old=[_ep("b.example.com")],
        update_new=[_ep("b.example.com", ["5.6.7.8"])],
        delete=[_ep("c.example.com")],
    )
    body = ChangesModel.from_changes(changes).model_dump(by_alias=True, exclude_none=True)
    assert set(body) == {"create", "updateOld", "updateNew", "delete"}
    assert ChangesModel.model_validate(body).to_changes() == changes


def test_changes_model_accepts_missing_lists():
    changes = ChangesModel.model_validate({"create": [_wire()]}).to_changes()
    assert [ep.id for ep in changes.create] == ["www.example.com:A"]
    assert changes.delete == []


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_negotiate_reads_domain_filter(mock_http):
    mock_http.get(f"{_URL}/").mock(
        return_value=_response(200, {"filters": ["example.com"], "exclude": ["internal.example.com"]})
    )
    provider = WebhookProvider(_URL)

    domain_filter = await provider.negotiate()

    assert domain_filter.include == ["example.com"]
    assert not domain_filter.match("db.internal.example.com")
    assert mock_http.calls.last.request.headers["Accept"] == MEDIA_TYPE
    await provider.close()


@pytest.mark.asyncio
async def test_records_parses_endpoints(mock_http):
    mock_http.get(f"{_URL}/records").mock(return_value=_response(200, [_wire()]))
    provider = WebhookProvider(_URL)

    assert await provider.records() == [_ep()]
    await provider.close()


@pytest.mark.asyncio
async def test_records_retries_with_backoff(mock_http):
    route = mock_http.get(f"{_URL}/records").mock(
        side_effect=[_response(503), _response(503), _response(200, [_wire()])]
    )
    provider = WebhookProvider(_URL, read_retries=3, retry_backoff=0)

    assert await provider.records() == [_ep()]
    assert route.call_count == 3
    await provider.close()


@pytest.mark.asyncio
async def test_records_gives_up_after_retries(mock_http):
    route = mock_http.get(f"{_URL}/records").mock(return_value=_response(500))
    provider = WebhookProvider(_URL, read_retries=2, retry_backoff=0)

    with pytest.raises(ProviderError):
        await provider.records()
    assert route.call_count == 2
    await provider.close()


@pytest.mark.asyncio
async def test_apply_changes_posts_changes(mock_http):
    route = mock_http.post(f"{_URL}/records").mock(return_value=_response(204))
    provider = WebhookProvider(_URL)

    await provider.apply_changes(Changes(create=[_ep()]))

    request = route.calls.last.request
    assert request.headers["Content-Type"] == MEDIA_TYPE
    body = json.loads(request.content)
    assert body["create"][0]["dnsName"] == "www.example.com"
    assert body["updateOld"] == body["updateNew"] == body["delete"] == []
    await provider.close()


@pytest.mark.asyncio
async def test_apply_changes_failure_raises_provider_error(mock_http):
    mock_http.post(f"{_URL}/records").mock(return_value=httpx.Response(500, text="boom"))
    provider = WebhookProvider(_URL)

    with pytest.raises(ProviderError, match="500"):
        await provider.apply_changes(Changes(create=[_ep()]))
    await provider.close()


@pytest.mark.asyncio
async def test_adjust_endpoints_round_trips_through_server(mock_http):
    adjusted = dict(_wire(), providerSpecific=[{"name": "cloudflare-proxied", "value": "false"}])
    mock_http.post(f"{_URL}/adjustendpoints").mock(return_value=_response(200, [adjusted]))
    provider = WebhookProvider(_URL)

    [endpoint] = await provider.adjust_endpoints([_ep()])

    assert endpoint.get_provider_specific("cloudflare-proxied") == "false"
    await provider.close()


@pytest.mark.asyncio
async def test_connection_error_raises_provider_error(mock_http):
    mock_http.post(f"{_URL}/records").mock(side_effect=httpx.ConnectError("connection refused"))
    provider = WebhookProvider(_URL)

    with pytest.raises(ProviderError):
        await provider.apply_changes(Changes(create=[_ep()]))
    await provider.close()
