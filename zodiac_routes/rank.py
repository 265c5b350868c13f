"""Ordering of candidate routes by execution friction."""

from __future__ import annotations

from typing import List, Sequence

from .models import ConnectionType, Route, Safe


def count_extra_signatures(route: Route) -> int:
    """Number of co-owner signatures needed beyond the route's own signer."""
    extra = 0
    for waypoint in route.waypoints:
        if (
            isinstance(waypoint.account, Safe)
            and waypoint.connection is not None
            and waypoint.connection.type is ConnectionType.OWNS
        ):
            extra += (waypoint.account.threshold or 1) - 1
    return extra


def rank_routes(routes: Sequence[Route]) -> List[Route]:
    """Return the routes ordered from the most to the least frictionless.

    Routes needing fewer extra signatures come first; ties are broken by
    path length. The sort is stable.
    """
    return sorted(routes, key=lambda route: (count_extra_signatures(route), len(route.waypoints)))
