"""
Source interface for Kelpie-DNS.
"""

from typing import Callable, List, Protocol

from kelpie_dns.models.models import Endpoint


class Source(Protocol):
    async def endpoints(self) -> List[Endpoint]:
        """Returns the endpoints this source wants to exist. Raises SourceError on failure."""
        ...

    def add_event_handler(self, handler: Callable[[], None]) -> None:
        """Registers a callback invoked whenever the source's endpoints may have changed."""
        ...
