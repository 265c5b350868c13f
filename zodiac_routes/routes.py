"""
Route canonicalization and waypoint policies.

A route is identified by a digest of its waypoints so that callers can
deduplicate and cache routes without comparing structures.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import replace
from typing import List, Sequence, Tuple

from .errors import MalformedRoute, MissingDefaultRole
from .models import (
    AccountType,
    AnyWaypoint,
    ConnectionType,
    IsEnabledConnection,
    Route,
    StartingPoint,
    Waypoint,
)

logger = logging.getLogger(__name__)

CONNECTION_TYPE_IDS: Tuple[ConnectionType, ...] = (
    ConnectionType.OWNS,
    ConnectionType.IS_ENABLED,
    ConnectionType.IS_MEMBER,
)
MODULE_ACCOUNT_TYPES = (AccountType.ROLES, AccountType.DELAY)


def _chain_id_bytes(chain_id: int) -> bytes:
    # Registered chain ids fit four bytes; wider ids get eight.
    width = 4 if chain_id < 2**32 else 8
    return chain_id.to_bytes(width, "big")


def calculate_route_id(waypoints: Sequence[AnyWaypoint]) -> str:
    """Derive the route id as the sha256 of a byte representation of the waypoints."""
    payload = bytearray()
    for waypoint in waypoints:
        if waypoint.connection is not None:
            payload.append(CONNECTION_TYPE_IDS.index(waypoint.connection.type))
        payload += _chain_id_bytes(waypoint.account.chain or 0)
        payload += bytes.fromhex(waypoint.account.address[2:])
    return hashlib.sha256(bytes(payload)).hexdigest()


def make_route(waypoints: Sequence[AnyWaypoint]) -> Route:
    """Create a route with a freshly derived id and validate it."""
    route = Route(id=calculate_route_id(waypoints), waypoints=tuple(waypoints))
    validate_route(route)
    return route


def validate_route(route: Route) -> None:
    """Check the structural invariants linking consecutive waypoints."""
    waypoints = route.waypoints
    if len(waypoints) < 2:
        raise MalformedRoute("A route needs at least two waypoints")
    if not isinstance(waypoints[0], StartingPoint):
        raise MalformedRoute("A route must begin with a starting point")
    for index in range(1, len(waypoints)):
        waypoint = waypoints[index]
        if not isinstance(waypoint, Waypoint):
            raise MalformedRoute(f"Waypoint #{index} has no connection")
        expected = waypoints[index - 1].account.prefixed_address
        if waypoint.connection.from_ != expected:
            raise MalformedRoute(
                f"Waypoint #{index} is connected from {waypoint.connection.from_}, "
                f"expected {expected}"
            )


def collapse_pass_through(waypoints: Sequence[AnyWaypoint]) -> Tuple[AnyWaypoint, ...]:
    """Drop module hops that merely forward to another module.

    An IS_ENABLED waypoint followed by another IS_ENABLED waypoint performs no
    wrapping of its own. Only the last node of such a chain is kept and is
    reconnected to the node preceding the chain.
    """
    result: List[AnyWaypoint] = []
    for index, waypoint in enumerate(waypoints):
        following = waypoints[index + 1] if index + 1 < len(waypoints) else None
        if (
            index > 0
            and waypoint.connection is not None
            and waypoint.connection.type is ConnectionType.IS_ENABLED
            and following is not None
            and following.connection is not None
            and following.connection.type is ConnectionType.IS_ENABLED
        ):
            logger.debug("Collapsing pass-through waypoint %s", waypoint.account.prefixed_address)
            continue
        if result and waypoint.connection is not None:
            upstream = result[-1].account.prefixed_address
            if waypoint.connection.from_ != upstream:
                connection = replace(waypoint.connection, from_=upstream)
                waypoint = replace(waypoint, connection=connection)
        result.append(waypoint)
    return tuple(result)


def use_default_roles_for_modules(waypoints: Sequence[AnyWaypoint]) -> Tuple[AnyWaypoint, ...]:
    """Turn role memberships of zodiac modules into module connections.

    A module calling into a Roles modifier cannot pick a role itself, so the
    modifier must have a default role registered for that module. The call
    then passes through the standard ``execTransactionFromModule`` entry point.
    """
    result: List[AnyWaypoint] = []
    for index, waypoint in enumerate(waypoints):
        previous = waypoints[index - 1].account if index > 0 else None
        if (
            previous is None
            or previous.type not in MODULE_ACCOUNT_TYPES
            or waypoint.account.type is not AccountType.ROLES
            or waypoint.connection is None
            or waypoint.connection.type is not ConnectionType.IS_MEMBER
        ):
            result.append(waypoint)
            continue

        if not waypoint.account.default_role.get(previous.address):
            raise MissingDefaultRole(
                f"Roles module at waypoint #{index} does not have a default role set "
                f"for module {previous.address}"
            )
        result.append(
            replace(waypoint, connection=IsEnabledConnection(from_=waypoint.connection.from_))
        )
    return tuple(result)


def can_sign_off_chain(waypoints: Sequence[AnyWaypoint]) -> bool:
    """Return True if the (sub) route is executable with off-chain signatures only."""
    return all(
        waypoint.connection is None or waypoint.connection.type is ConnectionType.OWNS
        for waypoint in waypoints
    )
