"""
Client for the route query service.

The service indexes on-chain account relationships and answers which routes
connect an initiator to an avatar. Responses are lists of routes in the JSON
shape handled by :meth:`Route.from_dict`.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import aiohttp

from .addresses import normalize_address, normalize_prefixed_address
from .errors import RouteQueryError
from .models import Route

DEFAULT_ROUTES_API = "https://ser.gnosisguild.org"
DEFAULT_TIMEOUT_SECONDS = 30


class RouteQueryClient:
    """Async client for the route query service."""

    def __init__(
        self,
        base_url: str = DEFAULT_ROUTES_API,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._logger = logger or logging.getLogger(__name__)

    async def _fetch_routes(self, path: str) -> List[Route]:
        url = f"{self.base_url}{path}"
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.get(url) as resp:
                try:
                    body: Any = await resp.json(content_type=None)
                except ValueError:
                    body = None
                if resp.status >= 300:
                    message = (body or {}).get("error") if isinstance(body, dict) else None
                    self._logger.error("Route query %s failed with status %s", url, resp.status)
                    raise RouteQueryError(
                        f"Failed to fetch routes: {message or resp.reason or resp.status}"
                    )
        routes = [Route.from_dict(item) for item in body or []]
        self._logger.info("Fetched %d route(s) from %s", len(routes), path)
        return routes

    async def query_routes(self, initiator: str, avatar: str) -> List[Route]:
        """Routes from an initiator (plain address) to an avatar (prefixed address)."""
        return await self._fetch_routes(
            f"/routes/{normalize_address(initiator)}/{normalize_prefixed_address(avatar)}"
        )

    async def query_avatars(self, initiator: str) -> List[Route]:
        """Routes from an initiator to every avatar it can control."""
        return await self._fetch_routes(f"/safes/{normalize_address(initiator)}")

    async def query_initiators(self, avatar: str) -> List[Route]:
        """Routes from every initiator able to control an avatar."""
        return await self._fetch_routes(f"/initiators/{normalize_prefixed_address(avatar)}")
