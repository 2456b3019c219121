"""
In-memory provider module for Kelpie-DNS.

Keeps zones in a dictionary. Useful for dry experiments and as the provider
behind tests and the webhook server.
"""

import logging
from typing import Dict, Iterable, List, Optional

from kelpie_dns.exceptions import ProviderError
from kelpie_dns.models.domain_filter import DomainFilter, find_zone
from kelpie_dns.models.models import Changes, Endpoint, EndpointKey


class InMemoryProvider:
    """
    Provider storing records in memory. A batch is validated as a whole before
    anything is written, so a failed batch leaves the zones untouched.
    """

    provider_specific_ordered = False

    def __init__(
        self,
        zones: Optional[Iterable[str]] = None,
        domain_filter: Optional[DomainFilter] = None,
    ):
        """
        Initialize an InMemoryProvider.

        Args:
            zones: Names of the zones to create
            domain_filter: Only zones matching this filter are served
        """
        self.domain_filter = domain_filter or DomainFilter()
        self.logger = logging.getLogger("kelpie-dns.provider.inmemory")
        self.zones: Dict[str, Dict[EndpointKey, Endpoint]] = {}
        for zone in zones or []:
            self.create_zone(zone)

    def create_zone(self, zone: str) -> None:
        zone = zone.lower().rstrip(".")
        if zone in self.zones:
            raise ProviderError(f"Zone {zone} already exists")
        self.zones[zone] = {}

    def zone_for(self, dnsname: str) -> Optional[str]:
        return find_zone({zone: zone for zone in self.zones}, dnsname)

    async def records(self) -> List[Endpoint]:
        """
        Returns a list of all DNS records in managed zones.

        Returns:
            List[Endpoint]: List of endpoints
        """
        endpoints = []
        for zone in sorted(self.zones):
            if not self.domain_filter.match(zone):
                continue
            for key in sorted(self.zones[zone]):
                endpoints.append(self.zones[zone][key].copy())
        return endpoints

    async def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        return endpoints

    async def apply_changes(self, changes: Changes) -> None:
        """
        Applies the specified changes to DNS records.

        Args:
            changes: Changes to apply

        Raises:
            ProviderError: If any change in the batch is invalid
        """
        self._validate(changes)

        for endpoint in changes.delete + changes.update_old:
            del self.zones[self.zone_for(endpoint.dnsname)][endpoint.key]
        for endpoint in changes.create + changes.update_new:
            stored = endpoint.copy()
            self.zones[self.zone_for(endpoint.dnsname)][endpoint.key] = stored
            self.logger.debug(f"Stored {stored}")

    def _validate(self, changes: Changes) -> None:
        if not changes.is_valid():
            raise ProviderError("update_old and update_new have different lengths")

        seen = set()
        for endpoint in changes.create + changes.update_new + changes.delete:
            zone = self.zone_for(endpoint.dnsname)
            if zone is None:
                raise ProviderError(f"No zone found for {endpoint.id}")
            if endpoint.key in seen:
                raise ProviderError(f"{endpoint.id} appears more than once in the batch")
            seen.add(endpoint.key)

        for endpoint in changes.create:
            if endpoint.key in self.zones[self.zone_for(endpoint.dnsname)]:
                raise ProviderError(f"Cannot create {endpoint.id}: record already exists")
        for old_endpoint, new_endpoint in changes.updates():
            if old_endpoint.key != new_endpoint.key:
                raise ProviderError(
                    f"Cannot update {old_endpoint.id} to {new_endpoint.id}: keys differ"
                )
        for endpoint in changes.update_old + changes.delete:
            zone = self.zone_for(endpoint.dnsname)
            if zone is None or endpoint.key not in self.zones[zone]:
                raise ProviderError(f"Cannot change {endpoint.id}: record does not exist")
