"""
Provider interface for Kelpie-DNS.

Every DNS backend is an independent adapter exposing these methods. Providers
are selected by configuration, never subclassed.
"""

from typing import List, Optional, Protocol

from kelpie_dns.models.models import Changes, Endpoint


class Provider(Protocol):
    # Whether the order of provider-specific properties is meaningful
    provider_specific_ordered: bool

    async def records(self) -> List[Endpoint]:
        """Returns every record in the zones this provider manages."""
        ...

    async def apply_changes(self, changes: Changes) -> None:
        """Applies a batch of changes, all or nothing. Raises ProviderError on failure."""
        ...

    async def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        """Rewrites or drops desired endpoints before they are planned."""
        ...

    def zone_for(self, dnsname: str) -> Optional[str]:
        """Identifies the zone holding dnsname, None when no managed zone holds it."""
        ...
