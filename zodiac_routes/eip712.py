"""EIP-712 typed data for Safe transactions."""

from __future__ import annotations

from typing import Any, Dict

from eth_account.messages import encode_typed_data
from web3 import Web3

from .models import SafeTransactionRequest, to_hex_data

SAFE_TX_TYPES = {
    "EIP712Domain": [
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "SafeTx": [
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "data", "type": "bytes"},
        {"name": "operation", "type": "uint8"},
        {"name": "safeTxGas", "type": "uint256"},
        {"name": "baseGas", "type": "uint256"},
        {"name": "gasPrice", "type": "uint256"},
        {"name": "gasToken", "type": "address"},
        {"name": "refundReceiver", "type": "address"},
        {"name": "nonce", "type": "uint256"},
    ],
}


def typed_data_for_safe_transaction(
    chain_id: int, safe: str, safe_transaction: SafeTransactionRequest
) -> Dict[str, Any]:
    """Build the ``SafeTx`` typed data signed by Safe owners."""
    return {
        "types": SAFE_TX_TYPES,
        "primaryType": "SafeTx",
        "domain": {
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(safe),
        },
        "message": {
            "to": Web3.to_checksum_address(safe_transaction.to),
            "value": safe_transaction.value,
            "data": safe_transaction.data,
            "operation": int(safe_transaction.operation),
            "safeTxGas": safe_transaction.safe_tx_gas,
            "baseGas": safe_transaction.base_gas,
            "gasPrice": safe_transaction.gas_price,
            "gasToken": Web3.to_checksum_address(safe_transaction.gas_token),
            "refundReceiver": Web3.to_checksum_address(safe_transaction.refund_receiver),
            "nonce": safe_transaction.nonce,
        },
    }


def hash_typed_data(typed_data: Dict[str, Any]) -> str:
    signable = encode_typed_data(full_message=typed_data)
    digest = Web3.keccak(b"\x19" + signable.version + signable.header + signable.body)
    return to_hex_data(digest)


def safe_transaction_hash(
    chain_id: int, safe: str, safe_transaction: SafeTransactionRequest
) -> str:
    """Return the Safe transaction hash (the EIP-712 digest owners sign)."""
    return hash_typed_data(typed_data_for_safe_transaction(chain_id, safe, safe_transaction))
