"""
Route normalization.

Brings a route received from a service or built by hand into the canonical
form the planner relies on: lower-case addresses, registered chains only, the
connection invariant checked once, and every Safe threshold known.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from .addresses import (
    format_prefixed_address,
    normalize_address,
    normalize_prefixed_address,
)
from .chains import is_supported_chain
from .encoding import encode_call
from .errors import UnsupportedChain
from .models import AnyWaypoint, Eoa, Roles, Route, Safe, Waypoint
from .options import Options
from .routes import validate_route
from .rpc import read_uint

logger = logging.getLogger(__name__)


async def fetch_threshold(chain_id: int, safe: str, options: Options) -> int:
    provider = options.provider_for(chain_id)
    threshold = await read_uint(provider, safe, encode_call("getThreshold"))
    logger.info("Fetched threshold %s for Safe %s", threshold, safe)
    return threshold


async def normalize_waypoint(
    waypoint: AnyWaypoint, options: Optional[Options] = None
) -> AnyWaypoint:
    account = waypoint.account
    address = normalize_address(account.address)
    if isinstance(account, Eoa):
        account = replace(
            account, address=address, prefixed_address=format_prefixed_address(None, address)
        )
    else:
        if not is_supported_chain(account.chain):
            raise UnsupportedChain(account.chain)
        account = replace(
            account,
            address=address,
            prefixed_address=format_prefixed_address(account.chain, address),
        )
        if isinstance(account, Roles):
            account = replace(
                account,
                multisend=tuple(normalize_address(a) for a in account.multisend),
                default_role={
                    normalize_address(module): role
                    for module, role in account.default_role.items()
                },
            )
        if isinstance(account, Safe) and account.threshold is None:
            account = replace(
                account,
                threshold=await fetch_threshold(account.chain, address, options or Options()),
            )

    if isinstance(waypoint, Waypoint):
        connection = replace(
            waypoint.connection,
            from_=normalize_prefixed_address(waypoint.connection.from_),
        )
        return Waypoint(account=account, connection=connection)
    return replace(waypoint, account=account)


async def normalize_route(route: Route, options: Optional[Options] = None) -> Route:
    """Return a normalized copy of the route; thresholds are fetched concurrently."""
    waypoints = await asyncio.gather(
        *(normalize_waypoint(waypoint, options) for waypoint in route.waypoints)
    )
    normalized = Route(id=route.id, waypoints=tuple(waypoints))
    validate_route(normalized)
    return normalized
