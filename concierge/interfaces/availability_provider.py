# interfaces/availability_provider.py
"""
External streaming-availability provider (JustWatch / Watchmode style HTTP
lookup). Returns the same AvailabilityResult shape as the local catalog.
"""

from typing import List, Optional

import httpx
from loguru import logger

from concierge.schemas import AvailabilityResult


class AvailabilityProviderError(Exception):
    """Provider lookup failed"""


class AvailabilityProvider:
    """Interface: title name + region (+ services) -> availability rows"""

    source = "LOCAL"

    async def lookup(self, title: str, region: str, services: Optional[List[str]] = None) -> List[AvailabilityResult]:
        raise NotImplementedError


class HttpAvailabilityProvider(AvailabilityProvider):
    """
    GET {base_url}/availability?title=..&region=..&providers=a,b

    Expects a JSON list (or {"items": [...]}) of availability objects.
    """

    def __init__(self, base_url: str, source: str, api_key: str = "", timeout: float = 3.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.source = source
        self.api_key = api_key
        self.timeout = timeout
        self.client = client

    async def lookup(self, title: str, region: str, services: Optional[List[str]] = None) -> List[AvailabilityResult]:
        params = {"title": title, "region": region}
        if services:
            params["providers"] = ",".join(services)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.base_url}/availability"

        try:
            if self.client is not None:
                response = await self.client.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AvailabilityProviderError(f"{self.source} lookup failed for {title!r}: {e}") from e

        items = payload.get("items", []) if isinstance(payload, dict) else payload
        results = [AvailabilityResult.model_validate(item) for item in items or []]
        logger.debug(f"{self.source} returned {len(results)} offers for {title!r} in {region}")
        return results
