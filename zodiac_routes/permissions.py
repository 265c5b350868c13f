"""
Permission checking against a route's first Roles modifier.

Instead of submitting a transaction, the call a role member would send to the
Roles modifier is simulated with ``eth_estimateGas``. A revert carrying one of
the Roles permission errors is reported as a violation. Any other revert, or a
successful simulation, counts as allowed: the check only answers whether the
Roles modifier itself rejects the call, not whether the call would succeed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .addresses import split_prefixed_address
from .encoding import encode_exec_transaction_with_role
from .errors import MalformedRoute, RouteError, RpcRequestError
from .models import (
    AccountType,
    Eoa,
    ExecutionActionType,
    MetaTransaction,
    Route,
    Safe,
    StartingPoint,
)
from .normalize import normalize_route
from .options import Options
from .plan import plan_execution

logger = logging.getLogger(__name__)


class PermissionViolation(str, Enum):
    """Reasons a Roles modifier rejects a call."""

    # v1 and v2
    NO_MEMBERSHIP = "NoMembership"
    NOT_AUTHORIZED = "NotAuthorized"
    DELEGATE_CALL_NOT_ALLOWED = "DelegateCallNotAllowed"
    TARGET_ADDRESS_NOT_ALLOWED = "TargetAddressNotAllowed"
    FUNCTION_NOT_ALLOWED = "FunctionNotAllowed"
    SEND_NOT_ALLOWED = "SendNotAllowed"
    PARAMETER_NOT_ALLOWED = "ParameterNotAllowed"
    PARAMETER_LESS_THAN_ALLOWED = "ParameterLessThanAllowed"
    PARAMETER_GREATER_THAN_ALLOWED = "ParameterGreaterThanAllowed"

    # v1 only
    PARAMETER_NOT_ONE_OF_ALLOWED = "ParameterNotOneOfAllowed"

    # v2 only
    OR_VIOLATION = "OrViolation"
    NOR_VIOLATION = "NorViolation"
    PARAMETER_NOT_A_MATCH = "ParameterNotAMatch"
    NOT_EVERY_ARRAY_ELEMENT_PASSES = "NotEveryArrayElementPasses"
    NO_ARRAY_ELEMENT_PASSES = "NoArrayElementPasses"
    PARAMETER_NOT_SUBSET_OF_ALLOWED = "ParameterNotSubsetOfAllowed"
    BITMASK_OVERFLOW = "BitmaskOverflow"
    BITMASK_NOT_ALLOWED = "BitmaskNotAllowed"
    CUSTOM_CONDITION_VIOLATION = "CustomConditionViolation"
    ALLOWANCE_EXCEEDED = "AllowanceExceeded"
    CALL_ALLOWANCE_EXCEEDED = "CallAllowanceExceeded"
    ETHER_ALLOWANCE_EXCEEDED = "EtherAllowanceExceeded"


class ConditionViolationStatus(IntEnum):
    """Status codes carried by the v2 ``ConditionViolation`` error."""

    OK = 0
    DELEGATE_CALL_NOT_ALLOWED = 1
    TARGET_ADDRESS_NOT_ALLOWED = 2
    FUNCTION_NOT_ALLOWED = 3
    SEND_NOT_ALLOWED = 4
    OR_VIOLATION = 5
    NOR_VIOLATION = 6
    PARAMETER_NOT_ALLOWED = 7
    PARAMETER_LESS_THAN_ALLOWED = 8
    PARAMETER_GREATER_THAN_ALLOWED = 9
    PARAMETER_NOT_A_MATCH = 10
    NOT_EVERY_ARRAY_ELEMENT_PASSES = 11
    NO_ARRAY_ELEMENT_PASSES = 12
    PARAMETER_NOT_SUBSET_OF_ALLOWED = 13
    BITMASK_OVERFLOW = 14
    BITMASK_NOT_ALLOWED = 15
    CUSTOM_CONDITION_VIOLATION = 16
    ALLOWANCE_EXCEEDED = 17
    CALL_ALLOWANCE_EXCEEDED = 18
    ETHER_ALLOWANCE_EXCEEDED = 19


_VIOLATING_STATUSES = frozenset(
    int(status)
    for status in ConditionViolationStatus
    if status is not ConditionViolationStatus.OK
)


def _selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


CONDITION_VIOLATION_SELECTOR = _selector("ConditionViolation(uint8,bytes32)")
NOT_AUTHORIZED_SELECTOR = _selector("NotAuthorized(address)")

# Parameterless errors shared by both Roles versions
PERMISSION_ERROR_SELECTORS: Dict[bytes, PermissionViolation] = {
    _selector(f"{violation.value}()"): violation
    for violation in (
        PermissionViolation.NO_MEMBERSHIP,
        PermissionViolation.DELEGATE_CALL_NOT_ALLOWED,
        PermissionViolation.TARGET_ADDRESS_NOT_ALLOWED,
        PermissionViolation.FUNCTION_NOT_ALLOWED,
        PermissionViolation.SEND_NOT_ALLOWED,
        PermissionViolation.PARAMETER_NOT_ALLOWED,
        PermissionViolation.PARAMETER_LESS_THAN_ALLOWED,
        PermissionViolation.PARAMETER_GREATER_THAN_ALLOWED,
        PermissionViolation.PARAMETER_NOT_ONE_OF_ALLOWED,
    )
}


class PermissionDenied(RouteError):
    """Raised by :func:`simulate_role_call` when the Roles modifier rejects a call."""

    def __init__(self, violation: PermissionViolation) -> None:
        super().__init__(f"Permission violation: {violation.value}")
        self.violation = violation


def _revert_data(error: RpcRequestError) -> Optional[bytes]:
    data = error.data
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str) and data.startswith("0x"):
        return bytes(HexBytes(data))
    return None


def decode_roles_error(error: BaseException) -> Optional[PermissionViolation]:
    """Map a failed simulation to a permission violation.

    Returns None for reverts that are not Roles permission errors. Errors
    that are not RPC errors are re-raised.
    """
    if not isinstance(error, RpcRequestError):
        raise error

    data = _revert_data(error)
    if not data or len(data) < 4:
        return None

    selector, payload = data[:4], data[4:]
    if selector == CONDITION_VIOLATION_SELECTOR:
        try:
            status, _info = decode(["uint8", "bytes32"], payload)
        except DecodingError as exc:
            logger.debug("Malformed ConditionViolation payload: %s", exc)
            return None
        if status not in _VIOLATING_STATUSES:
            logger.debug("Unknown ConditionViolation status %s", status)
            return None
        return PermissionViolation[ConditionViolationStatus(status).name]
    if selector == NOT_AUTHORIZED_SELECTOR:
        return PermissionViolation.NOT_AUTHORIZED
    return PERMISSION_ERROR_SELECTORS.get(selector)


async def simulate_role_call(
    chain_id: int, to: str, data: str, from_: str, options: Optional[Options] = None
) -> bool:
    """Simulate a call to a Roles modifier.

    Returns True if the modifier does not reject the call; raises
    :class:`PermissionDenied` if it does.
    """
    provider = (options or Options()).provider_for(chain_id)
    try:
        await provider.request(
            "eth_estimateGas",
            [{"to": to, "data": data, "from": from_, "value": "0x0"}],
        )
    except RpcRequestError as error:
        violation = decode_roles_error(error)
        if violation is not None:
            raise PermissionDenied(violation) from error
        logger.debug("Simulation reverted without a permission error: %s", error)
    return True


async def check_permissions(
    transactions: Sequence[MetaTransaction],
    route: Route,
    options: Optional[Options] = None,
) -> Dict[str, Any]:
    """Check whether the first Roles modifier on the route allows the transactions.

    Returns ``{"success": True}`` or ``{"success": False, "error": violation}``.
    """
    options = options or Options()
    route = await normalize_route(route, options)

    index = next(
        (
            i
            for i, waypoint in enumerate(route.waypoints)
            if waypoint.account.type is AccountType.ROLES
        ),
        -1,
    )
    if index == -1:
        return {"success": True}
    if index == 0:
        raise MalformedRoute("A Roles modifier cannot be the starting point of a route")

    # Start the sub route at the role member, acting as if it were an EOA.
    roles_waypoint = route.waypoints[index]
    member = roles_waypoint.connection.from_
    _chain, member_address = split_prefixed_address(member)
    start = StartingPoint(account=Eoa.at(member_address))
    entry = replace(
        roles_waypoint,
        connection=replace(roles_waypoint.connection, from_=start.account.prefixed_address),
    )
    sub_route = Route(
        id=f"{route.id}-{index}",
        waypoints=(start, entry) + tuple(route.waypoints[index + 1 :]),
    )

    # The plan is only simulated, so Safe nonces need not be looked up.
    safes = [w.account.prefixed_address for w in sub_route.waypoints if isinstance(w.account, Safe)]
    action = (await plan_execution(transactions, sub_route, options.with_safe_nonces(safes, 1)))[0]
    assert action.type is ExecutionActionType.EXECUTE_TRANSACTION, (
        "Expected first action to be an EXECUTE_TRANSACTION"
    )

    try:
        await simulate_role_call(
            roles_waypoint.account.chain,
            action.transaction.to,
            action.transaction.data,
            member_address,
            options,
        )
    except PermissionDenied as error:
        logger.warning(
            "Roles modifier %s rejects the call: %s",
            roles_waypoint.account.prefixed_address,
            error.violation.value,
        )
        return {"success": False, "error": error.violation}
    return {"success": True}


async def determine_role(
    roles_mod: str,
    version: int,
    member: str,
    roles: Sequence[str],
    transaction: MetaTransaction,
    options: Optional[Options] = None,
) -> Optional[str]:
    """Return the first candidate role allowed to execute ``transaction``, or None.

    Candidates are simulated concurrently; the remaining simulations are
    cancelled as soon as one role passes.
    """
    chain_id, to = split_prefixed_address(roles_mod)
    if chain_id is None:
        raise MalformedRoute(f"Invalid Roles modifier address: {roles_mod}")
    _member_chain, member_address = split_prefixed_address(member)

    async def attempt(role: str) -> str:
        await simulate_role_call(
            chain_id,
            to,
            encode_exec_transaction_with_role(transaction, role, version),
            member_address,
            options,
        )
        return role

    pending = {asyncio.ensure_future(attempt(role)) for role in roles}
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            # Read every outcome so that no task exception is left unretrieved.
            outcomes = [(task, task.exception()) for task in done]
            for task, error in outcomes:
                if error is None:
                    return task.result()
            for _task, error in outcomes:
                if not isinstance(error, PermissionDenied):
                    raise error
    finally:
        for task in pending:
            task.cancel()
    logger.info("No role on %s allows the transaction for %s", roles_mod, member)
    return None
