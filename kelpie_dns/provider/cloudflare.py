"""
Cloudflare provider module for Kelpie-DNS.

This module is responsible for interfacing with the Cloudflare API to manage DNS records.
"""

import logging
from typing import Dict, List, Optional, Tuple

import cloudflare

from kelpie_dns.exceptions import ProviderError
from kelpie_dns.models.domain_filter import DomainFilter, ZoneIDFilter, find_zone
from kelpie_dns.models.models import (
    RECORD_TYPE_A,
    RECORD_TYPE_AAAA,
    RECORD_TYPE_CNAME,
    CLOUDFLARE_PROXIED,
    Changes,
    Endpoint,
)

PROXIED_PROPERTY = CLOUDFLARE_PROXIED
PROXIABLE_TYPES = (RECORD_TYPE_A, RECORD_TYPE_AAAA, RECORD_TYPE_CNAME)
# Cloudflare uses TTL 1 for "automatic"
AUTO_TTL = 1


class CloudflareProvider:
    """
    Provider that interfaces with the Cloudflare API.
    """

    provider_specific_ordered = False

    def __init__(
        self,
        api_token: str,
        domain_filter: Optional[DomainFilter] = None,
        zone_id_filter: Optional[ZoneIDFilter] = None,
        proxied_by_default: bool = False,
        client=None,
    ):
        """
        Initialize a CloudflareProvider.

        Args:
            api_token: Cloudflare API token
            domain_filter: Zones outside this filter are ignored
            zone_id_filter: Zone IDs to restrict to
            proxied_by_default: Whether to proxy records by default
            client: Preconfigured AsyncCloudflare client
        """
        self.domain_filter = domain_filter or DomainFilter()
        self.zone_id_filter = zone_id_filter or ZoneIDFilter()
        self.proxied_by_default = proxied_by_default
        self.logger = logging.getLogger("kelpie-dns.provider.cloudflare")
        self.cf = client or cloudflare.AsyncCloudflare(api_token=api_token)

        # Zone ID to zone name, refreshed on every zones() call
        self.zone_cache: Dict[str, str] = {}
        # (zone ID, name, type) to Cloudflare records, refreshed on every records() call
        self.record_cache: Dict[Tuple[str, str, str], list] = {}

    async def zones(self) -> Dict[str, str]:
        """
        Returns the managed zones that match the domain and zone ID filters.

        Returns:
            Dict[str, str]: Zone ID to zone name
        """
        self.logger.debug("Fetching zones from Cloudflare API...")
        zones = {}
        try:
            async for zone in self.cf.zones.list(per_page=50):
                zone_id = getattr(zone, "id", None)
                zone_name = getattr(zone, "name", None)
                if not zone_name or not zone_id:
                    self.logger.warning(f"Skipping zone object missing name or id: {zone}")
                    continue
                if not self.zone_id_filter.match(zone_id):
                    self.logger.debug(f"Zone '{zone_name}' ({zone_id}) is not in zone_id_filter, skipping.")
                    continue
                if not self.domain_filter.match(zone_name):
                    self.logger.debug(f"Zone '{zone_name}' is not in domain_filter, skipping.")
                    continue
                zones[zone_id] = zone_name
        except cloudflare.APIError as e:
            raise ProviderError(f"Cloudflare API Error fetching zones: {e}") from e
        except cloudflare.CloudflareError as e:
            raise ProviderError(f"General Cloudflare Error fetching zones: {e}") from e

        self.logger.debug(f"Found {len(zones)} managed zones: {sorted(zones.values())}")
        self.zone_cache = zones
        return zones

    async def records(self) -> List[Endpoint]:
        """
        Returns a list of all DNS records in managed zones. Records sharing a name
        and type are grouped into one endpoint with several targets.

        Returns:
            List[Endpoint]: List of endpoints
        """
        zones = await self.zones()
        grouped: Dict[Tuple[str, str, str], list] = {}

        for zone_id, zone_name in zones.items():
            try:
                async for record in self.cf.dns.records.list(zone_id=zone_id, per_page=100):
                    record_type = getattr(record, "type", None)
                    record_name = getattr(record, "name", None)
                    if not record_type or not record_name or getattr(record, "content", None) is None:
                        self.logger.warning(
                            f"Skipping record object due to missing type, name, or content: {record}"
                        )
                        continue
                    grouped.setdefault((zone_id, record_name.lower(), record_type), []).append(record)
            except cloudflare.APIError as e:
                raise ProviderError(
                    f"Cloudflare API Error fetching records for zone {zone_name}: {e}"
                ) from e
            except cloudflare.CloudflareError as e:
                raise ProviderError(
                    f"General Cloudflare Error fetching records for zone {zone_name}: {e}"
                ) from e

        self.record_cache = grouped
        endpoints = []
        for (_, name, record_type), records in sorted(grouped.items()):
            first = records[0]
            ttl = getattr(first, "ttl", None)
            endpoint = Endpoint(
                dnsname=name,
                targets=[record.content for record in records],
                record_type=record_type,
                record_ttl=None if ttl in (None, AUTO_TTL) else int(ttl),
            )
            if record_type in PROXIABLE_TYPES:
                proxied = bool(getattr(first, "proxied", False))
                endpoint.set_provider_specific(PROXIED_PROPERTY, str(proxied).lower())
            endpoints.append(endpoint)
        return endpoints

    async def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        """
        Sets the proxied flag on proxiable records and drops it everywhere else.
        Proxied records always use the automatic TTL.
        """
        adjusted = []
        for endpoint in endpoints:
            endpoint = endpoint.copy()
            if endpoint.record_type in PROXIABLE_TYPES:
                proxied = self._is_proxied(endpoint)
                endpoint.set_provider_specific(PROXIED_PROPERTY, str(proxied).lower())
                if proxied:
                    endpoint.record_ttl = None
            else:
                endpoint.delete_provider_specific(PROXIED_PROPERTY)
            adjusted.append(endpoint)
        return adjusted

    def _is_proxied(self, endpoint: Endpoint) -> bool:
        value = endpoint.get_provider_specific(PROXIED_PROPERTY)
        if value is None:
            return self.proxied_by_default
        return value.lower() == "true"

    async def apply_changes(self, changes: Changes) -> None:
        """
        Applies the specified changes to DNS records. When a call fails, the calls
        already made for this batch are reverted before the error is raised.

        Args:
            changes: Changes to apply

        Raises:
            ProviderError: If the batch could not be applied
        """
        if not self.zone_cache:
            await self.zones()

        # Undo operations for everything done so far, most recent last
        journal: List[Tuple] = []
        try:
            for endpoint in changes.delete:
                await self._delete_endpoint(endpoint, journal)
            for old_endpoint, new_endpoint in changes.updates():
                await self._update_endpoint(old_endpoint, new_endpoint, journal)
            for endpoint in changes.create:
                await self._create_endpoint(endpoint, journal)
        except (cloudflare.CloudflareError, ProviderError) as e:
            self.logger.error(f"Applying changes failed: {e}. Reverting {len(journal)} operations.")
            await self._rollback(journal)
            raise ProviderError(f"Cloudflare apply failed: {e}") from e

    def zone_for(self, dnsname: str) -> Optional[str]:
        """Returns the ID of the managed zone holding dnsname, as of the last zone listing."""
        return find_zone(self.zone_cache, dnsname)

    def _zone_id_for(self, endpoint: Endpoint) -> str:
        zone_id = self.zone_for(endpoint.dnsname)
        if not zone_id:
            raise ProviderError(f"Could not find zone ID for endpoint {endpoint.dnsname}")
        return zone_id

    def _record_data(self, endpoint: Endpoint, content: str) -> dict:
        data = {
            "name": endpoint.normalized_name,
            "type": endpoint.record_type,
            "content": content,
            "ttl": endpoint.record_ttl or AUTO_TTL,
        }
        if endpoint.record_type in PROXIABLE_TYPES:
            data["proxied"] = self._is_proxied(endpoint)
        return data

    def _existing(self, zone_id: str, endpoint: Endpoint) -> list:
        return self.record_cache.get((zone_id, endpoint.normalized_name, endpoint.record_type), [])

    async def _create_endpoint(self, endpoint: Endpoint, journal: List[Tuple]) -> None:
        zone_id = self._zone_id_for(endpoint)
        for target in endpoint.targets:
            data = self._record_data(endpoint, target)
            self.logger.info(
                f"Creating DNS record: {endpoint.record_type} {data['name']} -> {target} (TTL: {data['ttl']})"
            )
            record = await self.cf.dns.records.create(zone_id=zone_id, **data)
            journal.append(("delete", zone_id, record.id, None))

    async def _delete_endpoint(self, endpoint: Endpoint, journal: List[Tuple]) -> None:
        zone_id = self._zone_id_for(endpoint)
        existing = self._existing(zone_id, endpoint)
        if not existing:
            self.logger.warning(f"Could not find records for deleting {endpoint.id}. Skipping deletion.")
            return
        for record in existing:
            self.logger.info(f"Deleting DNS record: {endpoint.record_type} {endpoint.normalized_name} (ID: {record.id})")
            await self.cf.dns.records.delete(dns_record_id=record.id, zone_id=zone_id)
            journal.append(("create", zone_id, None, self._snapshot(record)))

    async def _update_endpoint(
        self, old_endpoint: Endpoint, new_endpoint: Endpoint, journal: List[Tuple]
    ) -> None:
        zone_id = self._zone_id_for(new_endpoint)
        existing = {record.content: record for record in self._existing(zone_id, old_endpoint)}
        wanted = list(new_endpoint.targets)

        for content, record in existing.items():
            if content in wanted:
                data = self._record_data(new_endpoint, content)
                self.logger.info(f"Updating DNS record: {record.id} ({new_endpoint.id}) -> {content}")
                await self.cf.dns.records.update(dns_record_id=record.id, zone_id=zone_id, **data)
                journal.append(("update", zone_id, record.id, self._snapshot(record)))
            else:
                self.logger.info(f"Deleting DNS record: {record.id} ({old_endpoint.id}) -> {content}")
                await self.cf.dns.records.delete(dns_record_id=record.id, zone_id=zone_id)
                journal.append(("create", zone_id, None, self._snapshot(record)))

        for content in wanted:
            if content in existing:
                continue
            data = self._record_data(new_endpoint, content)
            self.logger.info(f"Creating DNS record: {new_endpoint.id} -> {content}")
            record = await self.cf.dns.records.create(zone_id=zone_id, **data)
            journal.append(("delete", zone_id, record.id, None))

    @staticmethod
    def _snapshot(record) -> dict:
        data = {
            "name": record.name,
            "type": record.type,
            "content": record.content,
            "ttl": getattr(record, "ttl", None) or AUTO_TTL,
        }
        if record.type in PROXIABLE_TYPES:
            data["proxied"] = bool(getattr(record, "proxied", False))
        return data

    async def _rollback(self, journal: List[Tuple]) -> None:
        for operation, zone_id, record_id, data in reversed(journal):
            try:
                if operation == "delete":
                    await self.cf.dns.records.delete(dns_record_id=record_id, zone_id=zone_id)
                elif operation == "create":
                    await self.cf.dns.records.create(zone_id=zone_id, **data)
                else:
                    await self.cf.dns.records.update(dns_record_id=record_id, zone_id=zone_id, **data)
            except cloudflare.CloudflareError as e:
                # The next reconciliation re-converges from whatever state is left
                self.logger.error(f"Could not revert {operation} in zone {zone_id}: {e}")
