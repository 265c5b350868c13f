"""
Chain registry shared by every component.

A prefixed address carries a chain short name; this module is the single
source of truth for the mapping between short names and chain ids, as well as
for the default JSON-RPC endpoints and Safe transaction-service URLs.
"""

from typing import Dict, List, Optional, Tuple

# Short name used for externally-owned accounts, which live on no chain.
EOA_PREFIX = "eoa"

CHAINS: List[Tuple[int, str]] = [
    (1, "eth"),
    (100, "gno"),
    (11155111, "sep"),
    (137, "matic"),
    (42161, "arb1"),
    (43114, "avax"),
    (8453, "base"),
]

CHAIN_IDS_BY_PREFIX: Dict[str, int] = {name: chain_id for chain_id, name in CHAINS}
PREFIXES_BY_CHAIN_ID: Dict[int, str] = {chain_id: name for chain_id, name in CHAINS}

DEFAULT_RPC: Dict[int, str] = {
    1: "https://eth.llamarpc.com",
    100: "https://rpc.gnosischain.com",
    11155111: "https://ethereum-sepolia-rpc.publicnode.com",
    137: "https://polygon-rpc.com",
    42161: "https://arb1.arbitrum.io/rpc",
    43114: "https://api.avax.network/ext/bc/C/rpc",
    8453: "https://mainnet.base.org",
}

SAFE_TRANSACTION_SERVICE_URLS: Dict[int, str] = {
    1: "https://safe-transaction-mainnet.safe.global",
    100: "https://safe-transaction-gnosis-chain.safe.global",
    11155111: "https://safe-transaction-sepolia.safe.global",
    137: "https://safe-transaction-polygon.safe.global",
    42161: "https://safe-transaction-arbitrum.safe.global",
    43114: "https://safe-transaction-avalanche.safe.global",
    8453: "https://safe-transaction-base.safe.global",
}


def is_supported_chain(chain_id: Optional[int]) -> bool:
    """Return True when the chain id is part of the registry."""
    return chain_id is not None and chain_id in PREFIXES_BY_CHAIN_ID


def chain_short_name(chain_id: int) -> Optional[str]:
    """Return the short name for a chain id, None for unknown chains."""
    return PREFIXES_BY_CHAIN_ID.get(chain_id)
