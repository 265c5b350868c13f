"""
Route builder.

Assembles a route on a single chain from a compact description::

    await build_route(1, [
        {"EOA": "0x..."},
        {"ROLES": "0x...", "version": 2, "roles": ["0x..."], "multisend": []},
        {"SAFE": "0x..."},
    ])

Connections are derived from the neighbouring entries: Roles hops are
reached through role membership, Delay hops as enabled modules, and Safes by
ownership when the predecessor is an EOA or a Safe and as a module
otherwise. A Safe entry may force its connection with ``"connection"``.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Mapping, Optional, Sequence

from .addresses import format_prefixed_address, normalize_address
from .chains import is_supported_chain
from .errors import MalformedRoute, UnsupportedChain
from .models import (
    AnyWaypoint,
    Delay,
    Eoa,
    IsEnabledConnection,
    IsMemberConnection,
    OwnsConnection,
    Roles,
    Route,
    Safe,
    StartingPoint,
    Waypoint,
)
from .normalize import normalize_waypoint
from .options import Options
from .routes import make_route


def _safe_connection(entry: Mapping[str, Any], previous: AnyWaypoint, from_: str):
    kind = entry.get("connection")
    if kind is None:
        kind = "OWNS" if isinstance(previous.account, (Eoa, Safe)) else "IS_ENABLED"
    if kind == "OWNS":
        return OwnsConnection(from_=from_)
    if kind == "IS_ENABLED":
        return IsEnabledConnection(from_=from_)
    raise MalformedRoute(f"Invalid Safe connection: {kind!r}")


def _waypoint(chain: int, entry: Mapping[str, Any], previous: Optional[AnyWaypoint]) -> AnyWaypoint:
    if "EOA" in entry:
        if previous is not None:
            raise MalformedRoute("An EOA can only be the starting point of a route")
        return StartingPoint(account=Eoa.at(entry["EOA"]))
    if previous is None:
        raise MalformedRoute("A route must start with an EOA")

    from_ = previous.account.prefixed_address
    if "SAFE" in entry:
        address = normalize_address(entry["SAFE"])
        threshold = entry.get("threshold")
        account = Safe(
            address=address,
            prefixed_address=format_prefixed_address(chain, address),
            chain=chain,
            threshold=None if threshold is None else int(threshold),
        )
        return Waypoint(account=account, connection=_safe_connection(entry, previous, from_))
    if "ROLES" in entry:
        address = normalize_address(entry["ROLES"])
        account = Roles(
            address=address,
            prefixed_address=format_prefixed_address(chain, address),
            chain=chain,
            version=int(entry.get("version", 2)),
            multisend=tuple(normalize_address(a) for a in entry.get("multisend") or ()),
        )
        connection = IsMemberConnection(from_=from_, roles=tuple(entry.get("roles") or ()))
        return Waypoint(account=account, connection=connection)
    if "DELAY" in entry:
        address = normalize_address(entry["DELAY"])
        account = Delay(
            address=address,
            prefixed_address=format_prefixed_address(chain, address),
            chain=chain,
        )
        return Waypoint(account=account, connection=IsEnabledConnection(from_=from_))
    raise MalformedRoute(f"Unknown waypoint entry: {dict(entry)!r}")


async def build_route(
    chain: int, entries: Sequence[Mapping[str, Any]], options: Optional[Options] = None
) -> Route:
    """Build a normalized route; missing Safe thresholds are read from chain."""
    if len(entries) < 2:
        raise MalformedRoute("At least two waypoints are required")
    if not is_supported_chain(chain):
        raise UnsupportedChain(chain)

    waypoints: List[AnyWaypoint] = []
    for entry in entries:
        waypoints.append(_waypoint(chain, entry, waypoints[-1] if waypoints else None))

    normalized = await asyncio.gather(
        *(normalize_waypoint(waypoint, options) for waypoint in waypoints)
    )
    return make_route(normalized)
