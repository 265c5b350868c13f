"""
Chain-qualified ("prefixed") address codec.

A prefixed address has the form ``<shortname>:0x<40 hex>``. Externally-owned
accounts are chain-agnostic and use the ``eoa`` pseudo-prefix. Addresses are
stored lower-case; comparisons normalise case at the boundary.
"""

from __future__ import annotations

from typing import Optional, Tuple

from web3 import Web3

from .chains import CHAIN_IDS_BY_PREFIX, EOA_PREFIX, PREFIXES_BY_CHAIN_ID
from .errors import MalformedRoute, UnknownChainPrefix, UnsupportedChain

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_address(address: str) -> str:
    """Validate a bare address and return it lower-cased."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise MalformedRoute(f"Invalid address: {address!r}")
    return address.lower()


def format_prefixed_address(chain_id: Optional[int], address: str) -> str:
    """Join a chain id (None for EOAs) and an address into a prefixed address."""
    if chain_id is None:
        prefix = EOA_PREFIX
    else:
        prefix = PREFIXES_BY_CHAIN_ID.get(chain_id)
        if prefix is None:
            raise UnsupportedChain(chain_id)
    return f"{prefix}:{normalize_address(address)}"


def split_prefixed_address(prefixed_address: str) -> Tuple[Optional[int], str]:
    """Split a prefixed address into ``(chain_id, address)``.

    The chain id is None for the ``eoa`` prefix. Unknown prefixes raise
    :class:`UnknownChainPrefix`.
    """
    if not isinstance(prefixed_address, str) or ":" not in prefixed_address:
        raise MalformedRoute(f"Invalid prefixed address: {prefixed_address!r}")
    prefix, address = prefixed_address.split(":", 1)
    prefix = prefix.lower()
    if prefix == EOA_PREFIX:
        return None, normalize_address(address)
    chain_id = CHAIN_IDS_BY_PREFIX.get(prefix)
    if chain_id is None:
        raise UnknownChainPrefix(prefix)
    return chain_id, normalize_address(address)


def normalize_prefixed_address(prefixed_address: str) -> str:
    """Return the canonical (lower-case, validated) form of a prefixed address."""
    chain_id, address = split_prefixed_address(prefixed_address)
    return format_prefixed_address(chain_id, address)


def parse_prefixed_address(value: str) -> str:
    """Return the address part of a prefixed address; bare addresses pass through."""
    if ":" not in value:
        return normalize_address(value)
    return split_prefixed_address(value)[1]


# Alias matching the vocabulary used by route services.
unprefix_address = parse_prefixed_address


def to_checksum(address: str) -> str:
    """Checksum an address for services that require EIP-55 casing."""
    return Web3.to_checksum_address(address)
