"""
Planning and execution options.

Options are keyed by prefixed address (looked up case-insensitively) and by
chain id for providers. A provider entry is either an RPC URL or an object with
an async ``request(method, params)`` coroutine.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Union

from .addresses import ZERO_ADDRESS, normalize_prefixed_address
from .chains import DEFAULT_RPC, is_supported_chain
from .errors import UnsupportedChain
from .rpc import JsonRpcProvider, Provider

# Take the next nonce from the Safe transaction service queue.
NONCE_ENQUEUE = "enqueue"
# Read the current nonce from chain, replacing any queued transaction.
NONCE_OVERRIDE = "override"

NonceStrategy = Union[str, int]


@dataclass(frozen=True)
class SafeTransactionProperties:
    """Per-Safe overrides for transactions prepared at that Safe."""

    # Only approve/propose the transaction, even if it could be executed.
    propose_only: bool = False
    # Approve the Safe transaction hash on-chain instead of signing off-chain.
    onchain_signature: bool = False
    nonce: NonceStrategy = NONCE_ENQUEUE
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = ZERO_ADDRESS
    refund_receiver: str = ZERO_ADDRESS


@dataclass
class Options:
    """Caller-supplied options for planning, permission checks and execution."""

    # Role to use at a Roles modifier, keyed by the modifier's prefixed address.
    roles: Dict[str, str] = field(default_factory=dict)
    safe_transaction_properties: Dict[str, SafeTransactionProperties] = field(
        default_factory=dict
    )
    providers: Dict[int, Union[str, Provider]] = field(default_factory=dict)
    # Multisend contract overriding the candidates registered on the route.
    multi_send: Optional[str] = None
    # Safe transaction service used for queue nonces and proposals.
    safe_service: Optional[Any] = None

    def __post_init__(self) -> None:
        self.roles = {normalize_prefixed_address(k): v for k, v in self.roles.items()}
        self.safe_transaction_properties = {
            normalize_prefixed_address(k): v
            for k, v in self.safe_transaction_properties.items()
        }
        self._provider_cache: Dict[int, Provider] = {}

    def role_for(self, roles_mod: str) -> Optional[str]:
        return self.roles.get(roles_mod.lower())

    def safe_properties(self, safe: str) -> SafeTransactionProperties:
        return self.safe_transaction_properties.get(
            safe.lower(), SafeTransactionProperties()
        )

    def with_safe_nonces(self, safes: Any, nonce: NonceStrategy) -> "Options":
        """Return a copy with the nonce strategy replaced for the given Safes."""
        properties = dict(self.safe_transaction_properties)
        for safe in safes:
            properties[safe] = replace(self.safe_properties(safe), nonce=nonce)
        copy = replace(self, safe_transaction_properties=properties)
        copy._provider_cache = self._provider_cache
        return copy

    def provider_for(self, chain_id: Optional[int]) -> Provider:
        """Resolve the provider for a chain, falling back to the default RPC."""
        if not is_supported_chain(chain_id):
            raise UnsupportedChain(chain_id)
        assert chain_id is not None
        if chain_id in self._provider_cache:
            return self._provider_cache[chain_id]
        url_or_provider = self.providers.get(chain_id) or DEFAULT_RPC[chain_id]
        if isinstance(url_or_provider, str):
            provider: Provider = JsonRpcProvider(url_or_provider)
        else:
            provider = url_or_provider
        self._provider_cache[chain_id] = provider
        return provider
