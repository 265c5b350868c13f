"""Shared builders for unit tests."""

from unittest.mock import AsyncMock, MagicMock

from zodiac_routes.addresses import format_prefixed_address
from zodiac_routes.models import (
    ConnectionType,
    Delay,
    Eoa,
    IsEnabledConnection,
    IsMemberConnection,
    OwnsConnection,
    Roles,
    Safe,
    StartingPoint,
    Waypoint,
)
from zodiac_routes.routes import make_route

CHAIN = 1

EOA = "0x" + "11" * 20
SAFE = "0x" + "22" * 20
SAFE_2 = "0x" + "33" * 20
ROLES = "0x" + "44" * 20
DELAY = "0x" + "55" * 20
TARGET = "0x" + "66" * 20
OTHER_EOA = "0x" + "77" * 20

ROLE_KEY = "0x" + "ab" * 32
OTHER_ROLE_KEY = "0x" + "cd" * 32


def eoa(address=EOA):
    return Eoa.at(address)


def safe(address=SAFE, threshold=1, chain=CHAIN):
    return Safe(
        address=address,
        prefixed_address=format_prefixed_address(chain, address),
        chain=chain,
        threshold=threshold,
    )


def roles(address=ROLES, version=2, multisend=(), default_role=None, chain=CHAIN):
    return Roles(
        address=address,
        prefixed_address=format_prefixed_address(chain, address),
        chain=chain,
        version=version,
        multisend=tuple(multisend),
        default_role=default_role or {},
    )


def delay(address=DELAY, chain=CHAIN):
    return Delay(
        address=address, prefixed_address=format_prefixed_address(chain, address), chain=chain
    )


def connect(connection_type, from_, member_roles=(ROLE_KEY,), default_role=None):
    if connection_type is ConnectionType.OWNS:
        return OwnsConnection(from_=from_)
    if connection_type is ConnectionType.IS_ENABLED:
        return IsEnabledConnection(from_=from_)
    return IsMemberConnection(from_=from_, roles=tuple(member_roles), default_role=default_role)


def linear_waypoints(first, *steps):
    """Waypoints from a starting account and ``(account, connection_type)`` steps."""
    waypoints = [StartingPoint(account=first)]
    for account, connection_type, *extra in steps:
        connection = connect(
            connection_type, waypoints[-1].account.prefixed_address, *extra
        )
        waypoints.append(Waypoint(account=account, connection=connection))
    return tuple(waypoints)


def linear_route(first, *steps):
    return make_route(linear_waypoints(first, *steps))


def mock_provider(**results):
    """A provider whose ``request`` returns ``results[method]``."""
    provider = MagicMock()

    async def request(method, params=None):
        value = results[method]
        if isinstance(value, BaseException):
            raise value
        return value(params) if callable(value) else value

    provider.request = AsyncMock(side_effect=request)
    return provider
