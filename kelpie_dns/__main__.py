"""
Main entry point for Kelpie-DNS.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Dict, Optional

from kelpie_dns.config.config import Config, SourceConfig
from kelpie_dns.controller.controller import Controller
from kelpie_dns.exceptions import ConfigError, KelpieDNSError
from kelpie_dns.models.domain_filter import DomainFilter, ZoneIDFilter
from kelpie_dns.models.models import Endpoint
from kelpie_dns.provider.cloudflare import CloudflareProvider
from kelpie_dns.provider.inmemory import InMemoryProvider
from kelpie_dns.provider.webhook import WebhookProvider
from kelpie_dns.provider.webhook_server import WebhookServer
from kelpie_dns.registry.noop_registry import NoopRegistry
from kelpie_dns.registry.txt_registry import TXTRegistry
from kelpie_dns.source.docker_container import DockerContainerSource
from kelpie_dns.source.static import StaticSource
from kelpie_dns.utils.duration import parse_duration
from kelpie_dns.utils.health import HealthCheckServer

# Define the path to the version file within the container
VERSION_FILE_PATH = Path("/app/VERSION")


def _docker_source(config: Config, source_config: SourceConfig):
    return DockerContainerSource(
        label_prefix=source_config.label_prefix,
        label_filter=source_config.label_filter or None,
    )


def _static_source(config: Config, source_config: SourceConfig):
    endpoints = []
    for item in source_config.endpoints:
        endpoint = Endpoint(
            dnsname=item.dnsname,
            targets=list(item.targets),
            record_type=item.record_type.upper(),
            record_ttl=item.ttl,
            set_identifier=item.set_identifier,
        )
        for name, value in item.provider_specific.items():
            endpoint.set_provider_specific(name, value)
        endpoints.append(endpoint)
    return StaticSource(endpoints, name=source_config.name)


def _cloudflare_provider(config: Config, domain_filter: DomainFilter):
    if not config.cloudflare_api_token:
        raise ConfigError("Cloudflare provider requires provider.cloudflare.api_token")
    return CloudflareProvider(
        config.cloudflare_api_token,
        domain_filter=domain_filter,
        zone_id_filter=ZoneIDFilter(config.zone_id_filter),
        proxied_by_default=config.cloudflare_proxied_by_default,
    )


def _webhook_provider(config: Config, domain_filter: DomainFilter):
    return WebhookProvider(
        config.webhook_url,
        timeout=parse_duration(config.webhook_timeout, default=30),
        read_retries=config.webhook_read_retries,
    )


def _inmemory_provider(config: Config, domain_filter: DomainFilter):
    return InMemoryProvider(config.inmemory_zones, domain_filter=domain_filter)


def _txt_registry(config: Config, provider):
    return TXTRegistry(
        provider,
        txt_owner_id=config.txt_owner_id,
        txt_prefix=config.txt_prefix,
        txt_suffix=config.txt_suffix,
        txt_wildcard_replacement=config.txt_wildcard_replacement,
        txt_new_format_only=config.txt_new_format_only,
        cache_interval=parse_duration(config.txt_cache_interval, default=0),
        encryption_key=config.encryption_key if config.encrypt_txt else None,
    )


def _noop_registry(config: Config, provider):
    return NoopRegistry(provider, owner_id=config.txt_owner_id)


SOURCE_FACTORIES: Dict[str, Callable] = {
    "docker": _docker_source,
    "static": _static_source,
}

PROVIDER_FACTORIES: Dict[str, Callable] = {
    "cloudflare": _cloudflare_provider,
    "webhook": _webhook_provider,
    "inmemory": _inmemory_provider,
}

REGISTRY_FACTORIES: Dict[str, Callable] = {
    "txt": _txt_registry,
    "noop": _noop_registry,
}


async def build_controller(
    config: Config,
    source_factories: Optional[Dict[str, Callable]] = None,
    provider_factories: Optional[Dict[str, Callable]] = None,
    registry_factories: Optional[Dict[str, Callable]] = None,
) -> Controller:
    """
    Build the controller and its components from configuration.

    Args:
        config: Loaded configuration
        source_factories: Source type to factory
        provider_factories: Provider name to factory
        registry_factories: Registry type to factory

    Returns:
        Controller: Controller wired to the configured sources, registry and provider

    Raises:
        ConfigError: If a component name is unknown or a component cannot be built
    """
    source_factories = source_factories or SOURCE_FACTORIES
    provider_factories = provider_factories or PROVIDER_FACTORIES
    registry_factories = registry_factories or REGISTRY_FACTORIES

    domain_filter = DomainFilter(
        config.domain_filter,
        config.exclude_domains,
        regex=config.regex_domain_filter,
        regex_exclusion=config.regex_domain_exclusion,
    )

    sources = {}
    for source_config in config.sources:
        if source_config.name in sources:
            raise ConfigError(f"Duplicate source name '{source_config.name}'")
        factory = source_factories.get(source_config.type)
        if factory is None:
            raise ConfigError(
                f"Unknown source type '{source_config.type}', expected one of {sorted(source_factories)}"
            )
        sources[source_config.name] = factory(config, source_config)

    factory = provider_factories.get(config.provider)
    if factory is None:
        raise ConfigError(
            f"Unknown provider '{config.provider}', expected one of {sorted(provider_factories)}"
        )
    provider = factory(config, domain_filter)

    if isinstance(provider, WebhookProvider):
        # The remote provider decides which domains it serves unless configured locally
        negotiated = await provider.negotiate()
        if not domain_filter.is_configured():
            domain_filter = negotiated

    factory = registry_factories.get(config.registry)
    if factory is None:
        raise ConfigError(
            f"Unknown registry '{config.registry}', expected one of {sorted(registry_factories)}"
        )
    registry = factory(config, provider)

    return Controller(
        sources,
        registry,
        policy=config.policy,
        domain_filter=domain_filter,
        managed_types=config.managed_record_types,
        interval=config.interval,
        min_event_sync_interval=config.min_event_sync_interval,
        once=config.once,
        dry_run=config.dry_run,
        cycle_timeout=config.cycle_timeout,
        fail_on_source_error=config.fail_on_source_error,
    )


def start_webhook_server(config: Config, controller: Controller) -> Optional[WebhookServer]:
    """
    Serve the configured provider over the webhook protocol when enabled, so
    other processes can share it. Must be called from the running event loop.
    """
    if not config.webhook_server_enabled:
        return None
    server = WebhookServer(
        controller.registry.provider,
        domain_filter=controller.domain_filter,
        host=config.webhook_server_host,
        port=config.webhook_server_port,
    )
    server.start()
    return server


def setup_logging(log_level_name: str = "info") -> None:
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # Set httpx logger level to WARNING unless root is DEBUG
    httpx_log_level = logging.DEBUG if log_level == logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(httpx_log_level)


async def run(config_path: Optional[Path] = None) -> int:
    """Main entry point running all components concurrently."""
    app_version = "unknown"
    try:
        if VERSION_FILE_PATH.is_file():
            app_version = VERSION_FILE_PATH.read_text().strip()
    except OSError as e:
        logging.warning(f"Could not read version file {VERSION_FILE_PATH}: {e}")

    setup_logging()
    logger = logging.getLogger("kelpie-dns")
    logger.info(f"Starting Kelpie-DNS v{app_version}")

    try:
        config = Config.from_yaml(config_path)
        setup_logging(config.log_level)
        controller = await build_controller(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except KelpieDNSError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    if config.once:
        try:
            await controller.run()
        except KelpieDNSError as e:
            logger.error(f"Reconciliation failed: {e}")
            return 1
        return 0

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, controller.stop)

    health_server = None
    if config.health_enabled:
        health_server = HealthCheckServer(controller, config.health_host, config.health_port)
        health_server.start()
    webhook_server = start_webhook_server(config, controller)

    watchers = [
        asyncio.create_task(source.watch_events())
        for source in controller.sources.values()
        if isinstance(source, DockerContainerSource)
    ]
    logger.debug(f"Starting reconciliation loop with {len(watchers)} event watchers")

    try:
        await controller.run()
    finally:
        for source in controller.sources.values():
            if isinstance(source, DockerContainerSource):
                source.close()
        for watcher in watchers:
            watcher.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)
        if health_server:
            health_server.stop()
        if webhook_server:
            webhook_server.stop()
        if isinstance(controller.registry.provider, WebhookProvider):
            await controller.registry.provider.close()
    logger.info("Kelpie-DNS stopped")
    return 0


def main() -> None:
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    try:
        exit_code = asyncio.run(run(config_path))
    except KeyboardInterrupt:
        print("\nShutting down Kelpie-DNS")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
