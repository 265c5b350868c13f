"""
Data model for routes, transactions and execution plans.

Accounts, connections and execution actions are closed sets of frozen
dataclasses discriminated by their ``type`` attribute. Every value object has a
``to_dict``/``from_dict`` pair producing the JSON shape exchanged with route
services and callers: integers as decimal strings, bytes as ``0x`` hex and
addresses lower-case.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from hexbytes import HexBytes

from .addresses import (
    ZERO_ADDRESS,
    format_prefixed_address,
    normalize_address,
    normalize_prefixed_address,
)
from .errors import MalformedRoute


class OperationType(IntEnum):
    """Safe operation type."""

    CALL = 0
    DELEGATE_CALL = 1


class AccountType(str, Enum):
    """Kinds of accounts a route may pass through."""

    EOA = "EOA"
    SAFE = "SAFE"
    ROLES = "ROLES"
    DELAY = "DELAY"


class ConnectionType(str, Enum):
    """How a waypoint is connected to its predecessor."""

    # The predecessor is an owner of this Safe.
    OWNS = "OWNS"
    # The predecessor is enabled as a module on this account.
    IS_ENABLED = "IS_ENABLED"
    # The predecessor is a role member on this Roles modifier.
    IS_MEMBER = "IS_MEMBER"


class ExecutionActionType(str, Enum):
    """Kinds of actions an execution plan is made of."""

    EXECUTE_TRANSACTION = "EXECUTE_TRANSACTION"
    SAFE_TRANSACTION = "SAFE_TRANSACTION"
    PROPOSE_TRANSACTION = "PROPOSE_TRANSACTION"
    SIGN_TYPED_DATA = "SIGN_TYPED_DATA"


def to_hex_data(value: Union[str, bytes, None]) -> str:
    """Normalise calldata to a lower-case ``0x`` prefixed hex string."""
    if value is None or value == "":
        return "0x"
    return "0x" + HexBytes(value).hex().removeprefix("0x")


def to_int(value: Union[int, str, None], default: int = 0) -> int:
    """Parse integers given as ints, decimal strings or ``0x`` hex strings."""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    return int(str(value), 0)


# Accounts


@dataclass(frozen=True)
class Eoa:
    """An externally-owned account; only valid as the starting point."""

    address: str
    prefixed_address: str

    type: ClassVar[AccountType] = AccountType.EOA
    chain: ClassVar[None] = None

    @classmethod
    def at(cls, address: str) -> "Eoa":
        return cls(
            address=normalize_address(address),
            prefixed_address=format_prefixed_address(None, address),
        )


@dataclass(frozen=True)
class Safe:
    """A Safe multi-signature account.

    ``threshold`` may be None for routes received from a service; the
    normalizer fills it in from chain state before planning.
    """

    address: str
    prefixed_address: str
    chain: int
    threshold: Optional[int] = None

    type: ClassVar[AccountType] = AccountType.SAFE


@dataclass(frozen=True)
class Roles:
    """A Roles permission modifier."""

    address: str
    prefixed_address: str
    chain: int
    version: int = 2
    # Batching contracts registered as allowed targets on this modifier.
    multisend: Tuple[str, ...] = ()
    # Default role per module address calling into this modifier.
    default_role: Mapping[str, str] = field(default_factory=dict)

    type: ClassVar[AccountType] = AccountType.ROLES


@dataclass(frozen=True)
class Delay:
    """A Delay timelock modifier."""

    address: str
    prefixed_address: str
    chain: int

    type: ClassVar[AccountType] = AccountType.DELAY


Account = Union[Eoa, Safe, Roles, Delay]
ContractAccount = Union[Safe, Roles, Delay]


# Connections


@dataclass(frozen=True)
class OwnsConnection:
    from_: str

    type: ClassVar[ConnectionType] = ConnectionType.OWNS


@dataclass(frozen=True)
class IsEnabledConnection:
    from_: str

    type: ClassVar[ConnectionType] = ConnectionType.IS_ENABLED


@dataclass(frozen=True)
class IsMemberConnection:
    from_: str
    roles: Tuple[str, ...] = ()
    default_role: Optional[str] = None

    type: ClassVar[ConnectionType] = ConnectionType.IS_MEMBER


Connection = Union[OwnsConnection, IsEnabledConnection, IsMemberConnection]


@dataclass(frozen=True)
class StartingPoint:
    """First element of a route: the signer or initiating account."""

    account: Account
    connection: ClassVar[None] = None


@dataclass(frozen=True)
class Waypoint:
    """A contract hop and how it is connected to the previous hop."""

    account: ContractAccount
    connection: Connection


AnyWaypoint = Union[StartingPoint, Waypoint]


@dataclass(frozen=True)
class Route:
    """An ordered path from an initiator to the controlled avatar.

    The initiator and avatar are derived from the first and last waypoints.
    """

    id: str
    waypoints: Tuple[AnyWaypoint, ...]

    @property
    def initiator(self) -> str:
        return self.waypoints[0].account.prefixed_address

    @property
    def avatar(self) -> str:
        return self.waypoints[-1].account.prefixed_address

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Route":
        raw_waypoints = data.get("waypoints") or []
        if len(raw_waypoints) < 2:
            raise MalformedRoute("A route needs at least two waypoints")
        waypoints: List[AnyWaypoint] = [waypoint_from_dict(raw_waypoints[0], True)]
        waypoints.extend(waypoint_from_dict(w, False) for w in raw_waypoints[1:])
        route_id = data.get("id")
        if not route_id:
            from .routes import calculate_route_id  # routes imports this module

            route_id = calculate_route_id(waypoints)
        route = cls(id=str(route_id), waypoints=tuple(waypoints))
        for key, derived in (("initiator", route.initiator), ("avatar", route.avatar)):
            given = data.get(key)
            if given and normalize_prefixed_address(given) != derived:
                raise MalformedRoute(
                    f"Route {key} {given} does not match waypoint address {derived}"
                )
        return route

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "initiator": self.initiator,
            "avatar": self.avatar,
            "waypoints": [waypoint_to_dict(w) for w in self.waypoints],
        }


def account_from_dict(data: Mapping[str, Any]) -> Account:
    account_type = AccountType(data["type"])
    address = normalize_address(data["address"])
    prefixed = data.get("prefixedAddress")
    if account_type is AccountType.EOA:
        return Eoa(
            address=address,
            prefixed_address=normalize_prefixed_address(prefixed)
            if prefixed
            else format_prefixed_address(None, address),
        )
    chain = to_int(data.get("chain"), default=0)
    if not prefixed:
        prefixed = format_prefixed_address(chain, address)
    prefixed = normalize_prefixed_address(prefixed)
    if account_type is AccountType.SAFE:
        threshold = data.get("threshold")
        return Safe(
            address=address,
            prefixed_address=prefixed,
            chain=chain,
            threshold=None if threshold is None else int(threshold),
        )
    if account_type is AccountType.ROLES:
        raw_defaults = data.get("defaultRole") or {}
        return Roles(
            address=address,
            prefixed_address=prefixed,
            chain=chain,
            version=int(data.get("version", 2)),
            multisend=tuple(normalize_address(a) for a in data.get("multisend") or ()),
            default_role={
                normalize_address(module): role for module, role in raw_defaults.items()
            },
        )
    return Delay(address=address, prefixed_address=prefixed, chain=chain)


def account_to_dict(account: Account) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "type": account.type.value,
        "address": account.address,
        "prefixedAddress": account.prefixed_address,
    }
    if isinstance(account, Eoa):
        return result
    result["chain"] = account.chain
    if isinstance(account, Safe):
        result["threshold"] = account.threshold
    elif isinstance(account, Roles):
        result["version"] = account.version
        result["multisend"] = list(account.multisend)
        if account.default_role:
            result["defaultRole"] = dict(account.default_role)
    return result


def connection_from_dict(data: Mapping[str, Any]) -> Connection:
    connection_type = ConnectionType(data["type"])
    from_ = normalize_prefixed_address(data["from"])
    if connection_type is ConnectionType.OWNS:
        return OwnsConnection(from_=from_)
    if connection_type is ConnectionType.IS_ENABLED:
        return IsEnabledConnection(from_=from_)
    return IsMemberConnection(
        from_=from_,
        roles=tuple(data.get("roles") or ()),
        default_role=data.get("defaultRole"),
    )


def connection_to_dict(connection: Connection) -> Dict[str, Any]:
    result: Dict[str, Any] = {"type": connection.type.value, "from": connection.from_}
    if isinstance(connection, IsMemberConnection):
        result["roles"] = list(connection.roles)
        if connection.default_role is not None:
            result["defaultRole"] = connection.default_role
    return result


def waypoint_from_dict(data: Mapping[str, Any], is_start: bool) -> AnyWaypoint:
    account = account_from_dict(data["account"])
    if is_start:
        if data.get("connection"):
            raise MalformedRoute("The starting point of a route has no connection")
        return StartingPoint(account=account)
    if isinstance(account, Eoa):
        raise MalformedRoute("An EOA can only be the starting point of a route")
    if not data.get("connection"):
        raise MalformedRoute(f"Waypoint {account.prefixed_address} has no connection")
    return Waypoint(account=account, connection=connection_from_dict(data["connection"]))


def waypoint_to_dict(waypoint: AnyWaypoint) -> Dict[str, Any]:
    result: Dict[str, Any] = {"account": account_to_dict(waypoint.account)}
    if waypoint.connection is not None:
        result["connection"] = connection_to_dict(waypoint.connection)
    return result


# Transactions


@dataclass(frozen=True)
class MetaTransaction:
    """A call to be executed by an account, optionally as a delegate call."""

    to: str
    value: int = 0
    data: str = "0x"
    operation: OperationType = OperationType.CALL

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MetaTransaction":
        return cls(
            to=normalize_address(data["to"]),
            value=to_int(data.get("value")),
            data=to_hex_data(data.get("data")),
            operation=OperationType(to_int(data.get("operation"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "value": str(self.value),
            "data": self.data,
            "operation": int(self.operation),
        }


@dataclass(frozen=True)
class SafeTransactionRequest:
    """A meta transaction extended with the Safe's execution parameters."""

    to: str
    value: int = 0
    data: str = "0x"
    operation: OperationType = OperationType.CALL
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = ZERO_ADDRESS
    refund_receiver: str = ZERO_ADDRESS
    nonce: int = 0

    @classmethod
    def from_meta(cls, transaction: MetaTransaction, **params: Any) -> "SafeTransactionRequest":
        return cls(
            to=transaction.to,
            value=transaction.value,
            data=transaction.data,
            operation=transaction.operation,
            **params,
        )

    @property
    def meta(self) -> MetaTransaction:
        return MetaTransaction(
            to=self.to, value=self.value, data=self.data, operation=self.operation
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SafeTransactionRequest":
        return cls(
            to=normalize_address(data["to"]),
            value=to_int(data.get("value")),
            data=to_hex_data(data.get("data")),
            operation=OperationType(to_int(data.get("operation"))),
            safe_tx_gas=to_int(data.get("safeTxGas")),
            base_gas=to_int(data.get("baseGas")),
            gas_price=to_int(data.get("gasPrice")),
            gas_token=normalize_address(data.get("gasToken") or ZERO_ADDRESS),
            refund_receiver=normalize_address(data.get("refundReceiver") or ZERO_ADDRESS),
            nonce=to_int(data.get("nonce")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "value": str(self.value),
            "data": self.data,
            "operation": int(self.operation),
            "safeTxGas": str(self.safe_tx_gas),
            "baseGas": str(self.base_gas),
            "gasPrice": str(self.gas_price),
            "gasToken": self.gas_token,
            "refundReceiver": self.refund_receiver,
            "nonce": self.nonce,
        }


# Execution actions


@dataclass(frozen=True)
class ExecuteTransactionAction:
    """Send ``transaction`` from the account ``from_`` on ``chain``."""

    chain: int
    from_: str
    transaction: MetaTransaction

    type: ClassVar[ExecutionActionType] = ExecutionActionType.EXECUTE_TRANSACTION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "chain": self.chain,
            "from": self.from_,
            "transaction": self.transaction.to_dict(),
        }


@dataclass(frozen=True)
class SafeTransactionAction:
    """Execute a signed Safe transaction through ``execTransaction``.

    A None ``proposer`` or ``signature`` is pending: the executor fills it
    with the output of the preceding action.
    """

    chain: int
    safe: str
    safe_transaction: SafeTransactionRequest
    proposer: Optional[str] = None
    signature: Optional[str] = None

    type: ClassVar[ExecutionActionType] = ExecutionActionType.SAFE_TRANSACTION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "chain": self.chain,
            "safe": self.safe,
            "safeTransaction": self.safe_transaction.to_dict(),
            "proposer": self.proposer,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class ProposeTransactionAction(SafeTransactionAction):
    """Propose a Safe transaction to the Safe transaction service."""

    type: ClassVar[ExecutionActionType] = ExecutionActionType.PROPOSE_TRANSACTION


@dataclass(frozen=True)
class SignTypedDataAction:
    """Produce an EIP-712 signature from the account ``from_``."""

    chain: int
    from_: str
    typed_data: Dict[str, Any]

    type: ClassVar[ExecutionActionType] = ExecutionActionType.SIGN_TYPED_DATA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "chain": self.chain,
            "from": self.from_,
            "typedData": self.typed_data,
        }


ExecutionAction = Union[
    ExecuteTransactionAction,
    SafeTransactionAction,
    ProposeTransactionAction,
    SignTypedDataAction,
]
ExecutionPlan = List[ExecutionAction]
# Outputs (transaction hashes, signatures, Safe transaction hashes) in plan order.
ExecutionState = List[str]

PENDING_SAFE_ACTION_TYPES = (
    ExecutionActionType.SAFE_TRANSACTION,
    ExecutionActionType.PROPOSE_TRANSACTION,
)


def action_from_dict(data: Mapping[str, Any]) -> ExecutionAction:
    action_type = ExecutionActionType(data["type"])
    chain = to_int(data.get("chain"))
    if action_type is ExecutionActionType.EXECUTE_TRANSACTION:
        return ExecuteTransactionAction(
            chain=chain,
            from_=normalize_address(data["from"]),
            transaction=MetaTransaction.from_dict(data["transaction"]),
        )
    if action_type is ExecutionActionType.SIGN_TYPED_DATA:
        return SignTypedDataAction(
            chain=chain,
            from_=normalize_address(data["from"]),
            typed_data=dict(data["typedData"]),
        )
    action_cls = (
        ProposeTransactionAction
        if action_type is ExecutionActionType.PROPOSE_TRANSACTION
        else SafeTransactionAction
    )
    proposer = data.get("proposer")
    return action_cls(
        chain=chain,
        safe=normalize_address(data["safe"]),
        safe_transaction=SafeTransactionRequest.from_dict(data["safeTransaction"]),
        proposer=normalize_address(proposer) if proposer else None,
        signature=data.get("signature"),
    )


def plan_to_json(plan: ExecutionPlan) -> List[Dict[str, Any]]:
    return [action.to_dict() for action in plan]


def plan_from_json(data: List[Mapping[str, Any]]) -> ExecutionPlan:
    return [action_from_dict(item) for item in data]


def with_signature(
    action: SafeTransactionAction, proposer: Optional[str], signature: Optional[str]
) -> SafeTransactionAction:
    """Return a copy of a Safe transaction action with proposer/signature set."""
    return replace(action, proposer=proposer, signature=signature)
