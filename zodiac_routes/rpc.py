"""
JSON-RPC transport.

Providers expose a single coroutine ``request(method, params)`` returning the
JSON-RPC result or raising :class:`RpcRequestError`. The default provider wraps
a synchronous web3 ``HTTPProvider`` and runs requests in the default executor.
Timeouts and retries are left to the transport.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Protocol

from web3 import Web3

from .errors import RpcRequestError
from .models import to_int


class Provider(Protocol):
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        ...


class JsonRpcProvider:
    """Async JSON-RPC provider backed by ``web3.HTTPProvider``."""

    def __init__(self, rpc_url: str, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._rpc_url = rpc_url
        self._w3 = Web3(Web3.HTTPProvider(rpc_url))

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, self._w3.provider.make_request, method, params or []
        )
        error = response.get("error")
        if error:
            if isinstance(error, str):
                raise RpcRequestError(None, error)
            self._logger.debug("RPC %s failed: %s", method, error)
            raise RpcRequestError(error.get("code"), error.get("message", ""), error.get("data"))
        return response.get("result")

    def __repr__(self) -> str:
        return f"JsonRpcProvider({self._rpc_url!r})"


async def eth_call(provider: Provider, to: str, data: str) -> Any:
    """Perform a read-only call against the latest block."""
    return await provider.request(
        "eth_call",
        [{"to": Web3.to_checksum_address(to), "data": data}, "latest"],
    )


async def read_uint(provider: Provider, to: str, data: str) -> int:
    """Perform a read-only call and decode a single ``uint256`` result."""
    result = await eth_call(provider, to, data)
    if isinstance(result, (bytes, bytearray)):
        return int.from_bytes(result, "big")
    if result in (None, "", "0x"):
        return 0
    return to_int(result)
