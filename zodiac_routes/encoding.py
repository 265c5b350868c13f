"""
Calldata encoders for the contracts a route passes through.

Minimal ABI fragments for the Safe, the zodiac modifiers (Roles v1/v2, Delay)
and the multisend contracts. Encoding goes through web3 contract functions;
web3 only accepts checksummed addresses so every address is checksummed on
the way in.
"""

from __future__ import annotations

from typing import Any, Dict, List, Union

from hexbytes import HexBytes
from web3 import Web3

from .models import MetaTransaction, OperationType, SafeTransactionRequest, to_hex_data

# Minimal ABI for the Safe functions the planner wraps calls into
SAFE_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"internalType": "bytes32", "name": "hashToApprove", "type": "bytes32"}],
        "name": "approveHash",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
            {"internalType": "bytes", "name": "data", "type": "bytes"},
            {"internalType": "uint8", "name": "operation", "type": "uint8"},
            {"internalType": "uint256", "name": "safeTxGas", "type": "uint256"},
            {"internalType": "uint256", "name": "baseGas", "type": "uint256"},
            {"internalType": "uint256", "name": "gasPrice", "type": "uint256"},
            {"internalType": "address", "name": "gasToken", "type": "address"},
            {
                "internalType": "address payable",
                "name": "refundReceiver",
                "type": "address",
            },
            {"internalType": "bytes", "name": "signatures", "type": "bytes"},
        ],
        "name": "execTransaction",
        "outputs": [{"internalType": "bool", "name": "success", "type": "bool"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
            {"internalType": "bytes", "name": "data", "type": "bytes"},
            {"internalType": "uint8", "name": "operation", "type": "uint8"},
        ],
        "name": "execTransactionFromModule",
        "outputs": [{"internalType": "bool", "name": "success", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "nonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getThreshold",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

DELAY_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
            {"internalType": "bytes", "name": "data", "type": "bytes"},
            {"internalType": "uint8", "name": "operation", "type": "uint8"},
        ],
        "name": "executeNextTx",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def _exec_with_role_abi(role_type: str, role_name: str) -> List[Dict[str, Any]]:
    return [
        {
            "inputs": [
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "value", "type": "uint256"},
                {"internalType": "bytes", "name": "data", "type": "bytes"},
                {"internalType": "uint8", "name": "operation", "type": "uint8"},
                {"internalType": role_type, "name": role_name, "type": role_type},
                {"internalType": "bool", "name": "shouldRevert", "type": "bool"},
            ],
            "name": "execTransactionWithRole",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function",
        }
    ]


ROLES_V1_ABI = _exec_with_role_abi("uint16", "role")
ROLES_V2_ABI = _exec_with_role_abi("bytes32", "roleKey")

MULTI_SEND_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"internalType": "bytes", "name": "transactions", "type": "bytes"}],
        "name": "multiSend",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]

_w3 = Web3()
_safe = _w3.eth.contract(abi=SAFE_ABI)
_delay = _w3.eth.contract(abi=DELAY_ABI)
_roles_v1 = _w3.eth.contract(abi=ROLES_V1_ABI)
_roles_v2 = _w3.eth.contract(abi=ROLES_V2_ABI)
_multi_send = _w3.eth.contract(abi=MULTI_SEND_ABI)


def _checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def _bytes(value: Union[str, bytes]) -> bytes:
    return bytes(HexBytes(value))


def _encoded(fn: Any) -> str:
    return to_hex_data(fn._encode_transaction_data())


def encode_approve_hash(hash_to_approve: Union[str, bytes]) -> str:
    return _encoded(_safe.functions.approveHash(_bytes(hash_to_approve)))


def encode_exec_transaction(
    safe_transaction: SafeTransactionRequest, signature: Union[str, bytes, None]
) -> str:
    """Encode ``execTransaction`` for a Safe transaction and its signatures."""
    return _encoded(
        _safe.functions.execTransaction(
            _checksum(safe_transaction.to),
            safe_transaction.value,
            _bytes(safe_transaction.data),
            int(safe_transaction.operation),
            safe_transaction.safe_tx_gas,
            safe_transaction.base_gas,
            safe_transaction.gas_price,
            _checksum(safe_transaction.gas_token),
            _checksum(safe_transaction.refund_receiver),
            _bytes(signature or "0x"),
        )
    )


def encode_exec_transaction_from_module(transaction: MetaTransaction) -> str:
    return _encoded(
        _safe.functions.execTransactionFromModule(
            _checksum(transaction.to),
            transaction.value,
            _bytes(transaction.data),
            int(transaction.operation),
        )
    )


def encode_execute_next_tx(transaction: MetaTransaction) -> str:
    return _encoded(
        _delay.functions.executeNextTx(
            _checksum(transaction.to),
            transaction.value,
            _bytes(transaction.data),
            int(transaction.operation),
        )
    )


def encode_exec_transaction_with_role(
    transaction: MetaTransaction, role: Union[str, int], version: int
) -> str:
    """Encode a role-scoped call; v1 takes a uint16 role, v2 a bytes32 role key.

    ``shouldRevert`` is always set so that a failing inner call reverts the
    whole transaction instead of failing silently.
    """
    args = (
        _checksum(transaction.to),
        transaction.value,
        _bytes(transaction.data),
        int(transaction.operation),
    )
    if version == 1:
        role_index = role if isinstance(role, int) else int(str(role), 0)
        return _encoded(_roles_v1.functions.execTransactionWithRole(*args, role_index, True))
    role_key = _bytes(role).ljust(32, b"\0")
    return _encoded(_roles_v2.functions.execTransactionWithRole(*args, role_key, True))


def encode_multi_send(packed_transactions: bytes) -> str:
    return _encoded(_multi_send.functions.multiSend(packed_transactions))


def decode_module_call(data: str) -> MetaTransaction:
    """Recover the inner call from ``execTransactionFromModule`` or ``execTransaction`` calldata."""
    _fn, params = _safe.decode_function_input(data)
    return MetaTransaction(
        to=str(params["to"]).lower(),
        value=int(params["value"]),
        data=to_hex_data(params["data"]),
        operation=OperationType(int(params["operation"])),
    )


def decode_role_call(data: str, version: int) -> Dict[str, Any]:
    """Decode ``execTransactionWithRole`` calldata into its parameters."""
    contract = _roles_v1 if version == 1 else _roles_v2
    _fn, params = contract.decode_function_input(data)
    return {
        "transaction": MetaTransaction(
            to=str(params["to"]).lower(),
            value=int(params["value"]),
            data=to_hex_data(params["data"]),
            operation=OperationType(int(params["operation"])),
        ),
        "role": params["role"] if version == 1 else to_hex_data(params["roleKey"]),
        "should_revert": bool(params["shouldRevert"]),
    }


def encode_call(function_name: str) -> str:
    """Encode a parameterless Safe view call such as ``nonce`` or ``getThreshold``."""
    return _encoded(getattr(_safe.functions, function_name)())


def pre_approved_signature(approver: str) -> str:
    """Signature meaning "``approver`` already approved this hash on-chain".

    Layout: 32-byte left-padded approver address, 32 zero bytes, ``v = 1``.
    A Safe accepts it when the approver is the transaction sender or has
    called ``approveHash`` before.
    """
    r = bytes(HexBytes(approver)).rjust(32, b"\0")
    s = b"\0" * 32
    return to_hex_data(r + s + b"\x01")
