"""
Exceptions raised while building, planning and executing routes.

Malformed input and unsupported configuration are always fatal. Collaborator
failures (JSON-RPC, transaction service, route service) are raised by the
respective client and propagate unchanged; nothing here retries.
"""

from typing import Any, Optional


class RouteError(Exception):
    """Base class for every error raised by zodiac_routes."""


# Malformed input


class MalformedRoute(RouteError):
    """A route violates one of its structural invariants."""


class UnknownChainPrefix(RouteError, ValueError):
    """A prefixed address uses a prefix that is not in the chain registry."""

    def __init__(self, prefix: str) -> None:
        super().__init__(f"Unknown chain prefix: {prefix}")
        self.prefix = prefix


class UnsupportedChain(RouteError, ValueError):
    """A chain id is not part of the chain registry."""

    def __init__(self, chain_id: Any) -> None:
        super().__init__(f"Unsupported chain ID: {chain_id}")
        self.chain_id = chain_id


class InvalidConnection(MalformedRoute):
    """A waypoint is connected to its predecessor in an unsupported way."""


class InvalidUpstreamConnection(InvalidConnection):
    """A Roles waypoint is not reached through an IS_MEMBER connection."""


class InvalidDownstreamConnection(InvalidConnection):
    """A Roles waypoint is not enabled as a module on a Safe or Delay."""


# Unsupported configuration


class EmptyBatch(RouteError, ValueError):
    """No transactions were given for batching."""


class IncompatibleBatchTarget(RouteError):
    """A batch with delegate calls was routed through a call-only multisend."""


class MissingDefaultRole(RouteError):
    """A module role member has no default role on the Roles modifier."""


class MissingSignature(RouteError):
    """A Safe transaction reached execution without any signature."""


# Collaborator failures


class RpcRequestError(RouteError):
    """A JSON-RPC request returned an error object."""

    def __init__(
        self, code: Optional[int], message: str, data: Optional[Any] = None
    ) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class SafeServiceError(RouteError):
    """The Safe transaction service rejected a request."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Safe transaction service error {status}: {body}")
        self.status = status
        self.body = body


class RouteQueryError(RouteError):
    """The route query service returned an error."""
