"""
tests/unit/test_main.py

Unit tests for the factory wiring in kelpie_dns/__main__.py.
"""

from __future__ import annotations

import pytest

from kelpie_dns.__main__ import build_controller, start_webhook_server
from kelpie_dns.config.config import Config
from kelpie_dns.exceptions import ConfigError
from kelpie_dns.provider.inmemory import InMemoryProvider
from kelpie_dns.provider.webhook import WebhookProvider
from kelpie_dns.registry.noop_registry import NoopRegistry
from kelpie_dns.registry.txt_registry import TXTRegistry
from kelpie_dns.source.static import StaticSource

_STATIC = {
    "sources": [
        {
            "name": "office",
            "type": "static",
            "endpoints": [
                {
                    "dnsname": "www.example.com",
                    "targets": ["10.0.0.1"],
                    "provider_specific": {"cloudflare-proxied": "true"},
                }
            ],
        }
    ],
    "provider": {"name": "inmemory", "inmemory": {"zones": ["example.com"]}},
    "registry": {"txt_owner_id": "owner-a"},
    "domains": {"include": ["example.com"]},
}


@pytest.mark.asyncio
async def test_build_controller_from_config():
    controller = await build_controller(Config.from_dict(_STATIC))

    assert isinstance(controller.sources["office"], StaticSource)
    assert isinstance(controller.registry, TXTRegistry)
    assert isinstance(controller.registry.provider, InMemoryProvider)
    assert controller.registry.owner_id == "owner-a"
    assert controller.domain_filter.include == ["example.com"]

    changes = await controller.run_once()
    [endpoint] = changes.create
    assert endpoint.resource == "static/office"
    assert endpoint.get_provider_specific("cloudflare-proxied") == "true"


@pytest.mark.asyncio
async def test_noop_registry_selected():
    config = Config.from_dict(dict(_STATIC, registry={"type": "noop"}))
    controller = await build_controller(config)
    assert isinstance(controller.registry, NoopRegistry)


@pytest.mark.asyncio
async def test_unknown_source_type_rejected():
    config = Config.from_dict(dict(_STATIC, sources=[{"name": "x", "type": "kubernetes"}]))
    with pytest.raises(ConfigError, match="kubernetes"):
        await build_controller(config)


@pytest.mark.asyncio
async def test_duplicate_source_names_rejected():
    sources = [{"name": "x", "type": "static"}, {"name": "x", "type": "static"}]
    with pytest.raises(ConfigError, match="Duplicate"):
        await build_controller(Config.from_dict(dict(_STATIC, sources=sources)))


@pytest.mark.asyncio
async def test_unknown_provider_rejected():
    config = Config.from_dict(dict(_STATIC, provider={"name": "route53"}))
    with pytest.raises(ConfigError, match="route53"):
        await build_controller(config)


@pytest.mark.asyncio
async def test_cloudflare_requires_token():
    config = Config.from_dict(dict(_STATIC, provider={"name": "cloudflare"}))
    with pytest.raises(ConfigError, match="api_token"):
        await build_controller(config)


@pytest.mark.asyncio
async def test_custom_factories_are_used():
    built = []

    def fake_source(config, source_config):
        built.append(source_config.name)
        return StaticSource(name=source_config.name)

    config = Config.from_dict(dict(_STATIC, sources=[{"name": "custom", "type": "fake"}]))
    controller = await build_controller(config, source_factories={"fake": fake_source})

    assert built == ["custom"]
    assert list(controller.sources) == ["custom"]


@pytest.mark.asyncio
async def test_webhook_server_disabled_by_default():
    controller = await build_controller(Config.from_dict(_STATIC))
    assert start_webhook_server(Config.from_dict(_STATIC), controller) is None


@pytest.mark.asyncio
async def test_webhook_server_serves_configured_provider():
    config = Config.from_dict(dict(_STATIC, webhook_server={"enabled": True, "port": 0}))
    controller = await build_controller(config)
    await controller.run_once()

    server = start_webhook_server(config, controller)
    client = WebhookProvider(server.url, read_retries=1)
    try:
        domain_filter = await client.negotiate()
        records = await client.records()
    finally:
        await client.close()
        server.stop()

    assert domain_filter.include == ["example.com"]
    assert "www.example.com:A" in [ep.id for ep in records]
