"""
No-op registry module for Kelpie-DNS.

Used when ownership tracking is disabled: every record inside the domain filter
is treated as owned by this instance.
"""

import logging
from typing import List

from kelpie_dns.models.models import OWNER_LABEL_KEY, Changes, Endpoint


class NoopRegistry:
    """
    Registry that keeps no ownership records.
    """

    def __init__(self, provider, owner_id: str = "default"):
        """
        Initialize a NoopRegistry.

        Args:
            provider: DNS provider
            owner_id: Owner ID every record is attributed to
        """
        self.provider = provider
        self._owner_id = owner_id
        self.errors: list = []
        self.logger = logging.getLogger("kelpie-dns.registry.noop")

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def provider_specific_ordered(self) -> bool:
        return getattr(self.provider, "provider_specific_ordered", False)

    async def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        return await self.provider.adjust_endpoints(endpoints)

    async def records(self) -> List[Endpoint]:
        """
        Returns all provider records, each attributed to this instance.

        Returns:
            List[Endpoint]: List of endpoints
        """
        return [
            record.with_labels({OWNER_LABEL_KEY: self._owner_id})
            for record in await self.provider.records()
        ]

    async def apply_changes(self, changes: Changes) -> None:
        await self.provider.apply_changes(changes)
