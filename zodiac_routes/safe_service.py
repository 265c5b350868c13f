"""
Client for the Safe transaction service.

The service keeps the queue of proposed (not yet executed) Safe transactions.
It is used for the "enqueue" nonce strategy and for proposing transactions that
still need more owner signatures.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import aiohttp

from .addresses import to_checksum
from .chains import SAFE_TRANSACTION_SERVICE_URLS
from .errors import SafeServiceError, UnsupportedChain
from .models import SafeTransactionRequest, to_int

DEFAULT_TIMEOUT_SECONDS = 20


class SafeTransactionService:
    """Async client for the Safe transaction service API (v1)."""

    def __init__(
        self,
        urls: Optional[Dict[int, str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._urls = dict(SAFE_TRANSACTION_SERVICE_URLS)
        self._urls.update(urls or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._logger = logger or logging.getLogger(__name__)

    def base_url(self, chain_id: int) -> str:
        url = self._urls.get(chain_id)
        if not url:
            raise UnsupportedChain(chain_id)
        return url.rstrip("/")

    async def _request(
        self, method: str, url: str, payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.request(method, url, json=payload) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    self._logger.error(
                        "Safe transaction service error %s for %s %s: %s",
                        resp.status,
                        method,
                        url,
                        text,
                    )
                    raise SafeServiceError(resp.status, text)
                if resp.status == 204 or resp.content_length == 0:
                    return None
                return await resp.json()

    async def get_next_nonce(self, chain_id: int, safe: str) -> int:
        """Return the nonce following the last queued transaction of the Safe."""
        base = f"{self.base_url(chain_id)}/api/v1/safes/{to_checksum(safe)}"
        info = await self._request("GET", f"{base}/")
        current = to_int((info or {}).get("nonce"))
        queued = await self._request(
            "GET",
            f"{base}/multisig-transactions/?executed=false&nonce__gte={current}"
            "&ordering=-nonce&limit=1",
        )
        results = (queued or {}).get("results") or []
        next_nonce = to_int(results[0].get("nonce")) + 1 if results else current
        self._logger.info("Next queue nonce for Safe %s: %s", safe, next_nonce)
        return next_nonce

    async def propose_transaction(
        self,
        chain_id: int,
        safe: str,
        safe_transaction: SafeTransactionRequest,
        safe_tx_hash: str,
        sender: str,
        signature: str,
        origin: Optional[str] = None,
    ) -> None:
        """Propose a Safe transaction together with the first owner signature."""
        payload = {
            # The service requires checksummed addresses and decimal strings
            "to": to_checksum(safe_transaction.to),
            "value": str(safe_transaction.value),
            "data": safe_transaction.data if safe_transaction.data != "0x" else None,
            "operation": int(safe_transaction.operation),
            "safeTxGas": str(safe_transaction.safe_tx_gas),
            "baseGas": str(safe_transaction.base_gas),
            "gasPrice": str(safe_transaction.gas_price),
            "gasToken": to_checksum(safe_transaction.gas_token),
            "refundReceiver": to_checksum(safe_transaction.refund_receiver),
            "nonce": safe_transaction.nonce,
            "contractTransactionHash": safe_tx_hash,
            "sender": to_checksum(sender),
            "signature": signature,
            "origin": origin,
        }
        url = f"{self.base_url(chain_id)}/api/v1/safes/{to_checksum(safe)}/multisig-transactions/"
        await self._request("POST", url, payload)
        self._logger.info("Proposed Safe transaction %s for Safe %s", safe_tx_hash, safe)
