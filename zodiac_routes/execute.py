"""
Plan executor.

Drives an execution plan action by action against a JSON-RPC provider (the
wallet) and the Safe transaction service. Progress is recorded in the
caller's ``state`` list, one output per completed action, so a run that fails
half-way can be resumed by calling :func:`execute` again with the same state.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from hexbytes import HexBytes

from .addresses import to_checksum
from .eip712 import safe_transaction_hash
from .encoding import encode_exec_transaction
from .errors import MissingSignature, RouteError
from .models import (
    ExecuteTransactionAction,
    ExecutionActionType,
    ExecutionPlan,
    ExecutionState,
    MetaTransaction,
    SafeTransactionAction,
    SignTypedDataAction,
    to_hex_data,
)
from .rpc import Provider
from .safe_service import SafeTransactionService

logger = logging.getLogger(__name__)


def normalize_signature(signature: str) -> str:
    """Shift a 0/1 recovery byte to 27/28 as the Safe contracts expect."""
    raw = bytearray(HexBytes(signature))
    if len(raw) == 65 and raw[-1] in (0, 1):
        raw[-1] += 27
    return to_hex_data(bytes(raw))


def _transaction_params(from_: str, transaction: MetaTransaction) -> Dict[str, Any]:
    return {
        "from": to_checksum(from_),
        "to": to_checksum(transaction.to),
        "data": transaction.data,
        "value": hex(transaction.value),
    }


async def _send_transaction(
    provider: Provider, from_: str, transaction: MetaTransaction
) -> str:
    tx_hash = await provider.request(
        "eth_sendTransaction", [_transaction_params(from_, transaction)]
    )
    logger.info("Sent transaction %s from %s", tx_hash, from_)
    return to_hex_data(tx_hash)


async def _relayer(provider: Provider) -> str:
    # Signed Safe transactions can be relayed by any account.
    accounts = await provider.request("eth_accounts", [])
    if not accounts:
        raise RouteError("The provider exposes no account to relay the Safe transaction")
    return accounts[0]


class Executor:
    """Executes plan actions against a wallet provider."""

    def __init__(
        self,
        provider: Provider,
        safe_service: Optional[SafeTransactionService] = None,
        origin: Optional[str] = None,
    ) -> None:
        self.provider = provider
        self.safe_service = safe_service
        self.origin = origin

    async def run(self, plan: ExecutionPlan, state: ExecutionState) -> ExecutionState:
        for index in range(len(state), len(plan)):
            action = plan[index]
            logger.debug("Executing action #%d (%s)", index, action.type.value)
            if action.type is ExecutionActionType.EXECUTE_TRANSACTION:
                output = await self._execute_transaction(action)
            elif action.type is ExecutionActionType.SIGN_TYPED_DATA:
                output = await self._sign_typed_data(action)
            elif action.type is ExecutionActionType.SAFE_TRANSACTION:
                output = await self._safe_transaction(action, state, index)
            else:
                output = await self._propose_transaction(action, plan, state, index)
            state.append(output)
        return state

    async def _execute_transaction(self, action: ExecuteTransactionAction) -> str:
        return await _send_transaction(self.provider, action.from_, action.transaction)

    async def _sign_typed_data(self, action: SignTypedDataAction) -> str:
        signature = await self.provider.request(
            "eth_signTypedData_v4",
            [to_checksum(action.from_), json.dumps(action.typed_data)],
        )
        logger.info("Collected typed data signature from %s", action.from_)
        return normalize_signature(signature)

    @staticmethod
    def _signature(
        action: SafeTransactionAction, state: ExecutionState, index: int
    ) -> str:
        signature = action.signature or (state[index - 1] if index > 0 else None)
        if not signature:
            raise MissingSignature(
                f"A signature is required for the Safe transaction at action #{index}"
            )
        return signature

    async def _safe_transaction(
        self,
        action: SafeTransactionAction,
        state: ExecutionState,
        index: int,
    ) -> str:
        signature = self._signature(action, state, index)
        relayer = await _relayer(self.provider)
        transaction = MetaTransaction(
            to=action.safe,
            data=encode_exec_transaction(action.safe_transaction, signature),
        )
        return await _send_transaction(self.provider, relayer, transaction)

    async def _propose_transaction(
        self,
        action: SafeTransactionAction,
        plan: ExecutionPlan,
        state: ExecutionState,
        index: int,
    ) -> str:
        signature = self._signature(action, state, index)
        proposer = action.proposer
        if proposer is None and index > 0:
            # Signed off-chain by the account of the preceding signing action.
            previous = plan[index - 1]
            if previous.type is ExecutionActionType.SIGN_TYPED_DATA:
                proposer = previous.from_
        if proposer is None:
            proposer = await _relayer(self.provider)

        safe_tx_hash = safe_transaction_hash(action.chain, action.safe, action.safe_transaction)
        service = self.safe_service or SafeTransactionService()
        await service.propose_transaction(
            action.chain,
            action.safe,
            action.safe_transaction,
            safe_tx_hash,
            proposer,
            signature,
            origin=self.origin,
        )
        return safe_tx_hash


async def execute(
    plan: ExecutionPlan,
    state: Optional[List[str]] = None,
    provider: Optional[Provider] = None,
    safe_service: Optional[SafeTransactionService] = None,
    origin: Optional[str] = None,
) -> ExecutionState:
    """Execute ``plan`` starting after the outputs already recorded in ``state``.

    ``state`` is appended to in place. When an action fails the exception
    propagates and ``state`` holds the outputs of every completed action, so
    the same call can be repeated to resume.
    """
    if provider is None:
        raise ValueError("A provider is required to execute a plan")
    state = [] if state is None else state
    return await Executor(provider, safe_service, origin).run(plan, state)
