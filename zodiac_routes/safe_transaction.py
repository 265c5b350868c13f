"""
Preparation of Safe transactions, including nonce resolution.

The nonce strategy is chosen per Safe through ``SafeTransactionProperties``:
``"enqueue"`` (default) takes the next nonce from the Safe transaction service,
``"override"`` reads the on-chain counter, and an integer is used literally.
"""

from __future__ import annotations

import logging

from .addresses import format_prefixed_address, normalize_address
from .encoding import encode_call
from .models import MetaTransaction, SafeTransactionRequest
from .options import NONCE_ENQUEUE, NONCE_OVERRIDE, NonceStrategy, Options
from .rpc import read_uint
from .safe_service import SafeTransactionService

logger = logging.getLogger(__name__)


def nonce_config(chain_id: int, safe: str, options: Options) -> NonceStrategy:
    return options.safe_properties(format_prefixed_address(chain_id, safe)).nonce


async def fetch_on_chain_nonce(chain_id: int, safe: str, options: Options) -> int:
    provider = options.provider_for(chain_id)
    nonce = await read_uint(provider, safe, encode_call("nonce"))
    logger.info("On-chain nonce for Safe %s: %s", safe, nonce)
    return nonce


async def fetch_queue_nonce(chain_id: int, safe: str, options: Options) -> int:
    service = options.safe_service or SafeTransactionService()
    return await service.get_next_nonce(chain_id, safe)


async def resolve_nonce(chain_id: int, safe: str, options: Options) -> int:
    """Resolve the nonce for the next Safe transaction according to the Safe's strategy."""
    config = nonce_config(chain_id, safe, options)
    if config == NONCE_ENQUEUE:
        return await fetch_queue_nonce(chain_id, safe, options)
    if config == NONCE_OVERRIDE:
        return await fetch_on_chain_nonce(chain_id, safe, options)
    if isinstance(config, bool) or not isinstance(config, int):
        raise ValueError(f"Invalid nonce strategy for Safe {safe}: {config!r}")
    return config


def prepare_safe_transaction(
    chain_id: int, safe: str, transaction: MetaTransaction, nonce: int, options: Options
) -> SafeTransactionRequest:
    """Extend a meta transaction with the Safe's gas parameters and the given nonce."""
    defaults = options.safe_properties(format_prefixed_address(chain_id, safe))
    return SafeTransactionRequest.from_meta(
        transaction,
        safe_tx_gas=defaults.safe_tx_gas,
        base_gas=defaults.base_gas,
        gas_price=defaults.gas_price,
        gas_token=normalize_address(defaults.gas_token),
        refund_receiver=normalize_address(defaults.refund_receiver),
        nonce=nonce,
    )
