"""
Static source module for Kelpie-DNS.

Endpoints declared directly in the configuration file.
"""

import logging
from typing import Callable, List, Optional

from kelpie_dns.models.models import RESOURCE_LABEL_KEY, Endpoint


class StaticSource:
    """
    Source returning a fixed list of endpoints.
    """

    def __init__(self, endpoints: Optional[List[Endpoint]] = None, name: str = "static"):
        """
        Initialize a StaticSource.

        Args:
            endpoints: Endpoints to serve
            name: Name used in the resource label of every endpoint
        """
        self.name = name
        self._endpoints = list(endpoints or [])
        self._handlers: List[Callable[[], None]] = []
        self.logger = logging.getLogger("kelpie-dns.source.static")

    async def endpoints(self) -> List[Endpoint]:
        endpoints = []
        for endpoint in self._endpoints:
            endpoint = endpoint.copy()
            endpoint.labels.setdefault(RESOURCE_LABEL_KEY, f"static/{self.name}")
            endpoints.append(endpoint)
        return endpoints

    def add_event_handler(self, handler: Callable[[], None]) -> None:
        self._handlers.append(handler)

    def set_endpoints(self, endpoints: List[Endpoint]) -> None:
        """Replace the served endpoints and notify every handler."""
        self._endpoints = list(endpoints)
        self.logger.debug(f"Static source '{self.name}' now serves {len(self._endpoints)} endpoints")
        for handler in self._handlers:
            handler()
