"""
Multisend batching.

Several meta transactions are folded into a single delegate call into a
multisend contract. Each transaction is packed as
``operation (1) | to (20) | value (32) | data length (32) | data`` in input
order.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from hexbytes import HexBytes

from .encoding import encode_multi_send
from .errors import EmptyBatch, IncompatibleBatchTarget
from .models import MetaTransaction, OperationType

logger = logging.getLogger(__name__)

MULTI_SEND_141 = "0x38869bf66a61cf6bdb996a6ae40d5853fd43b526"
MULTI_SEND_CALL_ONLY_141 = "0x9641d764fc13c8b624c04430c7356c1c7c8102e2"

KNOWN_MULTI_SEND_ADDRESSES = (
    MULTI_SEND_141,
    "0xa238cbeb142c10ef7ad8442c6d1f9e89e07e7761",  # MultiSend 1.3.0
    "0x998739bfdaadde7c933b942a68053933098f9eda",  # MultiSend 1.3.0 alternative
    "0x8d29be29923b68abfdd21e541b9374737b49cdad",  # MultiSend 1.1.1
)
KNOWN_MULTI_SEND_CALL_ONLY_ADDRESSES = (
    MULTI_SEND_CALL_ONLY_141,
    "0x40a2accbd92bca938b02010e17a5b8929b49130d",  # MultiSendCallOnly 1.3.0
    "0xa1dabef33b3b82c7814b6d82a79e50f4ac44102b",  # MultiSendCallOnly 1.3.0 alternative
)


def pack_transactions(transactions: Sequence[MetaTransaction]) -> bytes:
    packed = b""
    for tx in transactions:
        data = bytes(HexBytes(tx.data))
        packed += (
            int(tx.operation).to_bytes(1, "big")
            + bytes(HexBytes(tx.to))
            + tx.value.to_bytes(32, "big")
            + len(data).to_bytes(32, "big")
            + data
        )
    return packed


def multi_send_address(
    transactions: Sequence[MetaTransaction],
    preferred_addresses: Optional[Sequence[str]] = None,
) -> str:
    """Pick the batching contract for the given transactions.

    The first preferred address from the applicable known set wins, then the
    first preferred address, then the built-in default. Delegate calls may
    never go through a call-only multisend.
    """
    preferred = [address.lower() for address in preferred_addresses or ()]
    call_only = all(tx.operation == OperationType.CALL for tx in transactions)
    known = KNOWN_MULTI_SEND_CALL_ONLY_ADDRESSES if call_only else KNOWN_MULTI_SEND_ADDRESSES

    address = next((a for a in preferred if a in known), None)
    if address is None and preferred:
        address = preferred[0]

    if not call_only and address in KNOWN_MULTI_SEND_CALL_ONLY_ADDRESSES:
        raise IncompatibleBatchTarget(
            "Cannot use MultiSendCallOnly for a batch with DelegateCall transactions"
        )

    return address or (MULTI_SEND_CALL_ONLY_141 if call_only else MULTI_SEND_141)


def encode_multi_send_batch(
    transactions: Sequence[MetaTransaction],
    preferred_addresses: Optional[Sequence[str]] = None,
) -> MetaTransaction:
    """Batch transactions into one meta transaction; a single transaction is returned as is."""
    if not transactions:
        raise EmptyBatch("No transactions to encode")

    if len(transactions) == 1:
        return transactions[0]

    to = multi_send_address(transactions, preferred_addresses)
    logger.debug("Batching %d transactions through multisend %s", len(transactions), to)
    return MetaTransaction(
        to=to,
        value=0,
        data=encode_multi_send(pack_transactions(transactions)),
        operation=OperationType.DELEGATE_CALL,
    )
