"""
Docker container source module for Kelpie-DNS.

This module is responsible for fetching metadata from Docker containers and
extracting DNS configuration from labels.
"""

import asyncio
import ipaddress
import logging
from typing import Callable, Dict, List, Optional, Set

import docker
from docker.models.containers import Container

from kelpie_dns.exceptions import SourceError
from kelpie_dns.models.models import CLOUDFLARE_PROXIED, RESOURCE_LABEL_KEY, Endpoint

WATCHED_EVENTS = ("start", "die", "stop", "kill", "pause", "unpause")


class DockerContainerSource:
    """
    Source that fetches metadata from Docker containers.
    """

    def __init__(
        self,
        label_prefix: str = "kelpie.dns",
        label_filter: Optional[str] = None,
        docker_client=None,
    ):
        """
        Initialize a DockerContainerSource.

        Args:
            label_prefix: Prefix for DNS labels
            label_filter: Filter for container labels ("key" or "key=value")
            docker_client: Preconfigured Docker client
        """
        self.label_prefix = label_prefix
        self.label_filter = label_filter
        self.docker_client = docker_client
        self.logger = logging.getLogger("kelpie-dns.source.docker")
        self._handlers: List[Callable[[], None]] = []
        self._events = None
        self._closed = False

    def add_event_handler(self, handler: Callable[[], None]) -> None:
        self._handlers.append(handler)

    async def endpoints(self) -> List[Endpoint]:
        """
        Returns a list of endpoint objects representing desired DNS records
        based on running containers with appropriate labels.

        Returns:
            List[Endpoint]: List of endpoints

        Raises:
            SourceError: If the Docker daemon cannot be reached
        """
        loop = asyncio.get_running_loop()
        try:
            client = self._client()
            containers = await loop.run_in_executor(
                None, lambda: client.containers.list(filters={"status": "running"})
            )
        except docker.errors.DockerException as e:
            self.docker_client = None
            raise SourceError(f"Error fetching containers: {e}") from e

        endpoints = []
        for container in containers:
            if self.label_filter and not self._matches_filter(
                container.labels, self.label_filter
            ):
                continue
            endpoints.extend(self._endpoints_from_container(container))
        return endpoints

    def _client(self):
        if self.docker_client is None:
            self.logger.info("Connecting to Docker daemon")
            self.docker_client = docker.from_env()
        return self.docker_client

    def _notify(self) -> None:
        for handler in self._handlers:
            handler()

    def _blocking_event_listener(self, loop: asyncio.AbstractEventLoop):
        """
        Runs in a separate thread to listen for Docker events.
        This method should not be async as it runs in an executor thread.
        """
        try:
            self._events = self._client().events(decode=True, filters={"type": "container"})
            for event in self._events:
                event_type = event.get("status")
                if event_type in WATCHED_EVENTS:
                    self.logger.debug(
                        f"Event listener thread: {event_type} - {event.get('id', '')[:12]}"
                    )
                    loop.call_soon_threadsafe(self._notify)
        except (docker.errors.DockerException, OSError) as e:
            if not self._closed:
                self.logger.error(f"Event listener thread: {e}. Listener stopping.")
                self.docker_client = None
        finally:
            self._events = None
            self.logger.info("Event listener thread finished.")

    async def watch_events(self) -> None:
        """
        Watch Docker events non-blockingly using a separate thread,
        restarting the listener whenever it exits.
        """
        self.logger.debug("Docker source event watcher task started.")
        loop = asyncio.get_running_loop()
        while not self._closed:
            await loop.run_in_executor(None, self._blocking_event_listener, loop)
            if self._closed:
                break
            self.logger.info("Waiting 10 seconds before restarting listener thread...")
            await asyncio.sleep(10)

    def _endpoints_from_container(self, container: Container) -> List[Endpoint]:
        """
        Generate endpoints from a single container's labels.

        Args:
            container: Docker container

        Returns:
            List[Endpoint]: List of endpoints
        """
        endpoints = []
        labels = container.labels

        for hostname in sorted(self._get_hostnames_from_labels(labels)):
            record_type = self._get_label_value(labels, hostname, "type", "A").upper()
            ttl_str = self._get_label_value(labels, hostname, "ttl")
            proxied = self._get_label_value(labels, hostname, "proxied")
            target = self._get_label_value(labels, hostname, "target")
            network_name = self._get_label_value(labels, hostname, "network")
            set_identifier = self._get_label_value(labels, hostname, "set-identifier", "")

            targets = []
            if target:
                targets = [t.strip() for t in target.split(",") if t.strip()]
            elif record_type in ("A", "AAAA"):
                container_ip = self._get_container_ip(container, network_name)
                if container_ip:
                    version = ipaddress.ip_address(container_ip).version
                    if (record_type == "A") == (version == 4):
                        targets = [container_ip]
                    else:
                        self.logger.warning(
                            f"IP address {container_ip} type mismatch for record type {record_type} on container {container.name}. Skipping."
                        )

            if not targets:
                self.logger.warning(
                    f"No suitable target found for hostname {hostname} (Type: {record_type}, Network: {network_name or 'default'}) in container {container.name}"
                )
                continue

            endpoint = Endpoint(
                dnsname=hostname,
                targets=targets,
                record_type=record_type,
                record_ttl=int(ttl_str) if ttl_str and ttl_str.isdigit() else None,
                set_identifier=set_identifier,
                labels={RESOURCE_LABEL_KEY: f"docker/{container.name}"},
            )
            if proxied is not None:
                endpoint.set_provider_specific(CLOUDFLARE_PROXIED, proxied.lower())
            endpoints.append(endpoint)
            self.logger.debug(f"Created endpoint: {endpoint}")

        return endpoints

    def _get_hostnames_from_labels(self, labels: Dict[str, str]) -> Set[str]:
        """
        Get all hostnames defined in container labels using the configured prefix.
        Handles both single 'hostname' label and multiple 'hostname.alias' labels.

        Args:
            labels: Container labels dictionary

        Returns:
            Set[str]: A set of unique hostnames found in labels.
        """
        hostnames = set()
        # Example: kelpie.dns/hostname=app.example.com
        hostname_label = f"{self.label_prefix}/hostname"
        if hostname_label in labels:
            hostnames.update(
                name.strip() for name in labels[hostname_label].split(",") if name.strip()
            )

        # Example: kelpie.dns/hostname.web=web.example.com
        hostname_prefix = f"{self.label_prefix}/hostname."
        for label, value in labels.items():
            if label.startswith(hostname_prefix):
                hostnames.update(name.strip() for name in value.split(",") if name.strip())

        return hostnames

    def _get_label_value(
        self,
        labels: Dict[str, str],
        hostname: str,
        key: str,
        default: Optional[str] = None,
    ) -> Optional[str]:
        """
        Get a label value for a specific hostname and key. Looks for
        ``<prefix>/<key>.<alias>`` when the hostname was declared through an
        alias label, then for the generic ``<prefix>/<key>``.

        Args:
            labels: Container labels
            hostname: Hostname
            key: Label key (e.g., 'ttl', 'type')
            default: Default value

        Returns:
            Optional[str]: Label value or default.
        """
        hostname_alias_prefix = f"{self.label_prefix}/hostname."
        for label, value in labels.items():
            if not label.startswith(hostname_alias_prefix):
                continue
            defined_hostnames = {name.strip() for name in value.split(",") if name.strip()}
            if hostname in defined_hostnames:
                alias_key = f"{self.label_prefix}/{key}.{label[len(hostname_alias_prefix):]}"
                if alias_key in labels:
                    return labels[alias_key]
                break

        return labels.get(f"{self.label_prefix}/{key}", default)

    def _get_container_ip(
        self, container: Container, network_name: Optional[str] = None
    ) -> Optional[str]:
        """
        Get the IP address of a container, optionally specifying a network.
        Prefers IPv4 if available on the selected network.

        Args:
            container: Docker container object.
            network_name: Optional name of the Docker network.

        Returns:
            Optional[str]: IP address or None if not found.
        """
        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {})
        if not networks:
            self.logger.warning(f"No network settings found for container {container.name}")
            return None

        if network_name:
            if network_name not in networks:
                self.logger.warning(
                    f"Network '{network_name}' not found for container {container.name}. Available: {list(networks.keys())}"
                )
                return None
            target_network = networks[network_name]
        elif "bridge" in networks or len(networks) == 1:
            target_network = networks.get("bridge") or next(iter(networks.values()))
        else:
            first_network_name = sorted(networks.keys())[0]
            target_network = networks[first_network_name]
            self.logger.debug(
                f"Multiple networks found for {container.name}, using first network '{first_network_name}'. Specify label '{self.label_prefix}/network' if needed."
            )

        for field in ("IPAddress", "GlobalIPv6Address"):
            ip_address = target_network.get(field)
            if ip_address and self._is_valid_ip(ip_address):
                return ip_address
        return None

    @staticmethod
    def _is_valid_ip(ip: str) -> bool:
        """Check if the string is a valid non-empty IP address."""
        try:
            ipaddress.ip_address(ip)
            return True
        except ValueError:
            return False

    @staticmethod
    def _matches_filter(labels: Dict[str, str], label_filter: str) -> bool:
        """
        Check if container labels match the filter expression.
        Filter format: "key=value" or "key".
        """
        if "=" in label_filter:
            key, value = label_filter.split("=", 1)
            return labels.get(key) == value
        return label_filter in labels

    def close(self) -> None:
        """Stop the event listener thread by closing its event stream."""
        self._closed = True
        if self._events is not None:
            self._events.close()
