"""
Environment-based configuration.

Values are read from the process environment after loading a ``.env`` file:

- ``ZODIAC_RPC_URLS``: JSON object mapping chain ids to RPC URLs
- ``ZODIAC_RPC_URL_<CHAINID>``: RPC URL for a single chain
- ``ZODIAC_SAFE_SERVICE_URLS``: JSON object mapping chain ids to Safe
  transaction service base URLs
- ``ZODIAC_ROUTES_API``: base URL of the route query service
- ``ZODIAC_ORIGIN``: origin attached to proposed Safe transactions
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from .chains import DEFAULT_RPC, PREFIXES_BY_CHAIN_ID
from .options import Options
from .query import DEFAULT_ROUTES_API, RouteQueryClient
from .safe_service import SafeTransactionService

logger = logging.getLogger(__name__)


def _parse_url_mapping(env_name: str, raw: Optional[str]) -> Dict[int, str]:
    """Parse a JSON ``{chainId: url}`` object, ignoring malformed input."""
    if not raw or not raw.strip():
        return {}
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse %s: %s", env_name, exc)
        return {}
    if not isinstance(mapping, dict):
        logger.error("%s must be a JSON object", env_name)
        return {}
    parsed: Dict[int, str] = {}
    for chain, url in mapping.items():
        if not url or not str(url).strip():
            continue
        try:
            parsed[int(str(chain), 0)] = str(url).strip()
        except ValueError:
            logger.warning("Ignoring %s entry with invalid chain id %r", env_name, chain)
    return parsed


@dataclass
class Settings:
    rpc_urls: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_RPC))
    safe_service_urls: Dict[int, str] = field(default_factory=dict)
    routes_api: str = DEFAULT_ROUTES_API
    origin: Optional[str] = None

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "Settings":
        """Build settings from the environment, loading ``.env`` first."""
        if dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ

        rpc_urls = dict(DEFAULT_RPC)
        rpc_urls.update(_parse_url_mapping("ZODIAC_RPC_URLS", env.get("ZODIAC_RPC_URLS")))
        for chain_id in PREFIXES_BY_CHAIN_ID:
            value = env.get(f"ZODIAC_RPC_URL_{chain_id}")
            if value and value.strip():
                rpc_urls[chain_id] = value.strip()

        return cls(
            rpc_urls=rpc_urls,
            safe_service_urls=_parse_url_mapping(
                "ZODIAC_SAFE_SERVICE_URLS", env.get("ZODIAC_SAFE_SERVICE_URLS")
            ),
            routes_api=(env.get("ZODIAC_ROUTES_API") or DEFAULT_ROUTES_API).strip(),
            origin=env.get("ZODIAC_ORIGIN") or None,
        )

    def safe_service(self) -> SafeTransactionService:
        return SafeTransactionService(urls=self.safe_service_urls)

    def route_query_client(self) -> RouteQueryClient:
        return RouteQueryClient(base_url=self.routes_api)

    def to_options(self, **overrides) -> Options:
        """Planner options using the configured RPC endpoints and Safe service."""
        params = {"providers": dict(self.rpc_urls), "safe_service": self.safe_service()}
        params.update(overrides)
        return Options(**params)
