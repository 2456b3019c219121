"""
Webhook provider module for Kelpie-DNS.

This module is responsible for talking to an out-of-process provider over the
external-dns webhook protocol.
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from kelpie_dns.exceptions import ProviderError
from kelpie_dns.models.domain_filter import DomainFilter, find_zone
from kelpie_dns.models.models import Changes, Endpoint
from kelpie_dns.provider.webhook_models import (
    MEDIA_TYPE,
    ChangesModel,
    FiltersModel,
    dump_endpoints,
    load_endpoints,
)


class WebhookProvider:
    """
    Provider that forwards every call to a webhook server.
    """

    provider_specific_ordered = False

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        read_retries: int = 5,
        retry_backoff: float = 1.0,
    ):
        """
        Initialize a WebhookProvider.

        Args:
            url: Base URL of the webhook server
            client: Preconfigured httpx client
            timeout: Request timeout in seconds
            read_retries: Attempts for reading records before giving up
            retry_backoff: Initial delay between read attempts, doubled each time
        """
        self.url = url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.read_retries = max(1, read_retries)
        self.retry_backoff = retry_backoff
        self.domain_filter = DomainFilter()
        self.logger = logging.getLogger("kelpie-dns.provider.webhook")

    async def negotiate(self) -> DomainFilter:
        """
        Fetches the domain filter served by the webhook server.

        Returns:
            DomainFilter: Domain filter of the remote provider
        """
        response = await self._request("GET", "/")
        filters = FiltersModel.model_validate(response.json())
        self.domain_filter = DomainFilter(filters.filters, filters.exclude)
        self.logger.info(f"Webhook provider at {self.url} serves {self.domain_filter}")
        return self.domain_filter

    async def records(self) -> List[Endpoint]:
        """
        Returns the current records of the remote provider.

        Returns:
            List[Endpoint]: List of endpoints
        """
        last_error = None
        for attempt in range(self.read_retries):
            try:
                response = await self._request("GET", "/records")
                return load_endpoints(response.json())
            except ProviderError as e:
                last_error = e
                if attempt + 1 < self.read_retries:
                    delay = self.retry_backoff * (2**attempt)
                    self.logger.warning(
                        f"Fetching records failed (attempt {attempt + 1}/{self.read_retries}): {e}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
        raise last_error

    async def apply_changes(self, changes: Changes) -> None:
        """
        Sends the changes to the remote provider.

        Args:
            changes: Changes to apply
        """
        body = ChangesModel.from_changes(changes).model_dump(by_alias=True, exclude_none=True)
        await self._request("POST", "/records", json=body)

    async def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        response = await self._request(
            "POST", "/adjustendpoints", json=dump_endpoints(endpoints)
        )
        return load_endpoints(response.json())

    def zone_for(self, dnsname: str) -> Optional[str]:
        """
        Returns the negotiated domain holding dnsname. None when nothing was
        negotiated or no domain matches.
        """
        domains = [domain.lstrip(".") for domain in self.domain_filter.include]
        return find_zone({domain: domain for domain in domains}, dnsname)

    async def _request(self, method: str, path: str, json=None) -> httpx.Response:
        headers = {"Accept": MEDIA_TYPE}
        if json is not None:
            headers["Content-Type"] = MEDIA_TYPE
        try:
            response = await self.client.request(
                method, f"{self.url}{path}", json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Webhook request {method} {path} failed: {e}") from e
        if not response.is_success:
            raise ProviderError(
                f"Webhook request {method} {path} failed with status {response.status_code}: "
                f"{response.text[:200]}"
            )
        return response

    async def close(self) -> None:
        await self.client.aclose()
