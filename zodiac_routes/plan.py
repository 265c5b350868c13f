"""
Execution planner.

Walks a route from the avatar back to the initiator and rewrites the head of
the plan at every hop, so that the resulting sequence of actions delivers the
batched call to the avatar with the right authorization at each step.

Network I/O happens only before the walk (route normalization and Safe nonce
resolution); the walk itself is a pure fold over the reversed waypoints.
"""

from __future__ import annotations

import asyncio
import logging
from functools import reduce
from typing import Dict, List, Optional, Sequence

from .addresses import split_prefixed_address
from .eip712 import safe_transaction_hash, typed_data_for_safe_transaction
from .encoding import (
    decode_module_call,
    encode_approve_hash,
    encode_exec_transaction,
    encode_exec_transaction_from_module,
    encode_exec_transaction_with_role,
    encode_execute_next_tx,
    pre_approved_signature,
)
from .errors import (
    InvalidConnection,
    InvalidDownstreamConnection,
    InvalidUpstreamConnection,
    MalformedRoute,
)
from .models import (
    PENDING_SAFE_ACTION_TYPES,
    AccountType,
    AnyWaypoint,
    ConnectionType,
    ExecuteTransactionAction,
    ExecutionAction,
    ExecutionActionType,
    ExecutionPlan,
    MetaTransaction,
    ProposeTransactionAction,
    Roles,
    Route,
    Safe,
    SafeTransactionAction,
    SafeTransactionRequest,
    SignTypedDataAction,
    with_signature,
)
from .multisend import encode_multi_send_batch
from .normalize import normalize_route
from .options import Options
from .routes import MODULE_ACCOUNT_TYPES, use_default_roles_for_modules
from .safe_transaction import prepare_safe_transaction, resolve_nonce

logger = logging.getLogger(__name__)


async def plan_execution(
    transactions: Sequence[MetaTransaction],
    route: Route,
    options: Optional[Options] = None,
) -> ExecutionPlan:
    """Plan the actions needed to execute ``transactions`` from the route's avatar.

    The route is normalized first; Safe thresholds and nonces are resolved
    before the walk. The returned plan is a fresh list; the route is not
    modified.
    """
    options = options or Options()
    route = await normalize_route(route, options)
    waypoints = use_default_roles_for_modules(route.waypoints)

    transaction = batch_for_route(transactions, waypoints, options)
    nonces = await resolve_safe_nonces(waypoints, options)
    plan = build_plan(transaction, waypoints, options, nonces)
    logger.info("Planned %d action(s) for route %s", len(plan), route.id)
    return plan


def batch_for_route(
    transactions: Sequence[MetaTransaction], waypoints: Sequence[AnyWaypoint], options: Options
) -> MetaTransaction:
    """Batch the transactions, preferring the multisend contracts of the last Roles hop."""
    if options.multi_send:
        preferred: Sequence[str] = [options.multi_send]
    else:
        last_roles = next(
            (w.account for w in reversed(waypoints) if isinstance(w.account, Roles)),
            None,
        )
        preferred = last_roles.multisend if last_roles else ()
    return encode_multi_send_batch(transactions, preferred)


def should_propose(waypoint: AnyWaypoint, options: Options) -> bool:
    """A Safe transaction is proposed unless a single signature can execute it."""
    account = waypoint.account
    assert isinstance(account, Safe)
    properties = options.safe_properties(account.prefixed_address)
    return properties.propose_only or account.threshold != 1


async def resolve_safe_nonces(
    waypoints: Sequence[AnyWaypoint], options: Options
) -> Dict[str, int]:
    """Resolve nonces for every Safe whose transaction will be proposed."""
    safes = [
        w.account
        for w in waypoints
        if isinstance(w.account, Safe)
        and w.connection is not None
        and w.connection.type is ConnectionType.OWNS
        and should_propose(w, options)
    ]
    nonces = await asyncio.gather(
        *(resolve_nonce(safe.chain, safe.address, options) for safe in safes)
    )
    return {safe.prefixed_address: nonce for safe, nonce in zip(safes, nonces)}


def build_plan(
    transaction: MetaTransaction,
    waypoints: Sequence[AnyWaypoint],
    options: Options,
    nonces: Optional[Dict[str, int]] = None,
) -> ExecutionPlan:
    """Fold the reversed waypoints into an execution plan.

    The accumulator starts as a single pending Safe transaction delivering
    ``transaction`` to the avatar. Every hop replaces the head of the
    accumulator with the actions that realize it from the hop's account.
    """
    chain_id, avatar = split_prefixed_address(waypoints[-1].account.prefixed_address)
    if chain_id is None:
        raise MalformedRoute(f"Invalid route avatar: {waypoints[-1].account.prefixed_address}")

    seed: ExecutionPlan = [
        SafeTransactionAction(
            chain=chain_id,
            safe=avatar,
            safe_transaction=SafeTransactionRequest.from_meta(transaction),
        )
    ]
    hop_planner = _HopPlanner(waypoints, options, nonces or {})
    return reduce(hop_planner.fold, reversed(range(len(waypoints))), seed)


class _HopPlanner:
    """Rewrites the head of a plan for one waypoint at a time."""

    def __init__(
        self, waypoints: Sequence[AnyWaypoint], options: Options, nonces: Dict[str, int]
    ) -> None:
        self._waypoints = waypoints
        self._options = options
        self._nonces = nonces

    def fold(self, plan: ExecutionPlan, index: int) -> ExecutionPlan:
        head, rest = plan[0], plan[1:]
        account_type = self._waypoints[index].account.type
        logger.debug(
            "Planning hop #%d (%s) with head %s", index, account_type.value, head.type.value
        )
        if account_type is AccountType.EOA:
            actions = self._plan_as_eoa(head, index)
        elif account_type is AccountType.SAFE:
            actions = self._plan_as_safe(head, index)
        elif account_type is AccountType.ROLES:
            actions = self._plan_as_roles(head, index)
        else:
            actions = self._plan_as_delay(head, index)
        return actions + rest

    def _neighbours(self, index: int):
        left = self._waypoints[index - 1] if index > 0 else None
        right = self._waypoints[index + 1] if index + 1 < len(self._waypoints) else None
        return left, self._waypoints[index], right

    def _plan_as_eoa(self, head: ExecutionAction, index: int) -> List[ExecutionAction]:
        left, waypoint, right = self._neighbours(index)
        if left is not None or right is None:
            raise MalformedRoute("An EOA can only be the starting point of a route")
        eoa = waypoint.account.address

        if head.type not in PENDING_SAFE_ACTION_TYPES or head.signature is not None:
            assert head.type is ExecutionActionType.EXECUTE_TRANSACTION
            return [head]

        safe = right.account
        assert isinstance(safe, Safe) and safe.address == head.safe
        if self._options.safe_properties(safe.prefixed_address).onchain_signature:
            # Approve the hash on-chain; the EOA is then a pre-approved signer.
            approve = ExecuteTransactionAction(
                chain=safe.chain,
                from_=eoa,
                transaction=MetaTransaction(
                    to=safe.address,
                    data=encode_approve_hash(
                        safe_transaction_hash(safe.chain, safe.address, head.safe_transaction)
                    ),
                ),
            )
            return [approve, with_signature(head, eoa, pre_approved_signature(eoa))]

        sign = SignTypedDataAction(
            chain=safe.chain,
            from_=eoa,
            typed_data=typed_data_for_safe_transaction(
                safe.chain, safe.address, head.safe_transaction
            ),
        )
        return [sign, head]

    def _plan_as_safe(self, head: ExecutionAction, index: int) -> List[ExecutionAction]:
        left, waypoint, right = self._neighbours(index)
        safe = waypoint.account
        assert isinstance(safe, Safe)
        connection = waypoint.connection
        if connection is not None and connection.type not in (
            ConnectionType.OWNS,
            ConnectionType.IS_ENABLED,
        ):
            raise InvalidConnection(
                f"Safe {safe.prefixed_address} cannot be reached through {connection.type.value}"
            )

        # IN: approve the hash of a pending transaction of a downstream Safe we own.
        result: List[ExecutionAction] = []
        if head.type in PENDING_SAFE_ACTION_TYPES:
            transaction = head.safe_transaction.meta
            if head.safe != safe.address:
                downstream = right.account if right is not None else None
                assert isinstance(downstream, Safe) and downstream.address == head.safe
                safe_tx_hash = safe_transaction_hash(
                    downstream.chain, downstream.address, head.safe_transaction
                )
                transaction = MetaTransaction(
                    to=downstream.address, data=encode_approve_hash(safe_tx_hash)
                )
                result = [
                    with_signature(head, safe.address, pre_approved_signature(safe.address))
                ]
        else:
            assert head.type is ExecutionActionType.EXECUTE_TRANSACTION
            assert head.from_ == safe.address
            transaction = head.transaction

        # OUT: wrap the transaction for the upstream relationship.
        if left is None:
            return [
                ExecuteTransactionAction(
                    chain=safe.chain, from_=safe.address, transaction=transaction
                )
            ] + result

        upstream = left.account.address
        if connection.type is ConnectionType.IS_ENABLED:
            module_call = ExecuteTransactionAction(
                chain=safe.chain,
                from_=upstream,
                transaction=MetaTransaction(
                    to=safe.address, data=encode_exec_transaction_from_module(transaction)
                ),
            )
            return [module_call] + result

        if should_propose(waypoint, self._options):
            safe_transaction = prepare_safe_transaction(
                safe.chain,
                safe.address,
                transaction,
                self._nonces.get(safe.prefixed_address, 0),
                self._options,
            )
            # proposer and signature are filled upstream
            return [
                ProposeTransactionAction(
                    chain=safe.chain, safe=safe.address, safe_transaction=safe_transaction
                )
            ] + result

        # Threshold 1: the owner executes directly, approving by being the sender.
        safe_transaction = prepare_safe_transaction(
            safe.chain, safe.address, transaction, 0, self._options
        )
        execute = ExecuteTransactionAction(
            chain=safe.chain,
            from_=upstream,
            transaction=MetaTransaction(
                to=safe.address,
                data=encode_exec_transaction(safe_transaction, pre_approved_signature(upstream)),
            ),
        )
        return [execute] + result

    def _plan_as_roles(self, head: ExecutionAction, index: int) -> List[ExecutionAction]:
        left, waypoint, right = self._neighbours(index)
        roles = waypoint.account
        assert isinstance(roles, Roles)
        connection = waypoint.connection

        from_module = (
            left is not None
            and left.account.type in MODULE_ACCOUNT_TYPES
            and connection.type is ConnectionType.IS_ENABLED
        )
        if left is None or (connection.type is not ConnectionType.IS_MEMBER and not from_module):
            raise InvalidUpstreamConnection(
                f"Invalid Roles upstream relationship at {roles.prefixed_address}"
            )
        if not (
            right is not None
            and right.connection.type is ConnectionType.IS_ENABLED
            and right.account.type in (AccountType.SAFE, AccountType.DELAY)
        ):
            raise InvalidDownstreamConnection(
                f"Invalid Roles downstream relationship at {roles.prefixed_address}"
            )

        assert head.type is ExecutionActionType.EXECUTE_TRANSACTION
        transaction = decode_module_call(head.transaction.data)

        if from_module:
            # The modifier applies the module's default role.
            data = encode_exec_transaction_from_module(transaction)
        else:
            role = (
                self._options.role_for(roles.prefixed_address)
                or connection.default_role
                or (connection.roles[0] if connection.roles else None)
            )
            if role is None:
                raise MalformedRoute(
                    f"No role available for member {connection.from_} at {roles.prefixed_address}"
                )
            data = encode_exec_transaction_with_role(transaction, role, roles.version)

        return [
            ExecuteTransactionAction(
                chain=roles.chain,
                from_=left.account.address,
                transaction=MetaTransaction(to=roles.address, data=data),
            )
        ]

    def _plan_as_delay(self, head: ExecutionAction, index: int) -> List[ExecutionAction]:
        left, waypoint, _right = self._neighbours(index)
        delay = waypoint.account
        if left is None:
            raise MalformedRoute("A Delay modifier cannot be the starting point of a route")

        assert head.type is ExecutionActionType.EXECUTE_TRANSACTION
        transaction = decode_module_call(head.transaction.data)

        # Queue the call, then release it once the cooldown has passed.
        return [
            ExecuteTransactionAction(
                chain=delay.chain,
                from_=left.account.address,
                transaction=MetaTransaction(
                    to=delay.address, data=encode_exec_transaction_from_module(transaction)
                ),
            ),
            ExecuteTransactionAction(
                chain=delay.chain,
                from_=left.account.address,
                transaction=MetaTransaction(
                    to=delay.address, data=encode_execute_next_tx(transaction)
                ),
            ),
        ]
