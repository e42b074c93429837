"""
inclusion_probe/rpc/async_client.py

trio facade over ChainClient.

Each call runs the blocking request on a worker thread. When the calling
task is cancelled the thread is abandoned: trio returns immediately and the
late response is dropped when the request finishes.
"""

import functools
import logging
from typing import Any, Callable, Dict, Optional

import trio

from .client import ChainClient

logger = logging.getLogger("inclusion_probe.rpc.async_client")


class AsyncChainClient:
    """
    Async wrapper exposing the ChainClient API to trio tasks.

    Usage:
        client = AsyncChainClient(ChainClient(url, name="builder"))

        async with trio.open_nursery() as nursery:
            nursery.start_soon(client.block_number)
    """

    def __init__(self, client: ChainClient, limiter: Optional[trio.CapacityLimiter] = None):
        self._client = client
        self._limiter = limiter

    @classmethod
    def for_url(cls, url: str, timeout: float, name: str = "") -> "AsyncChainClient":
        return cls(ChainClient(url, timeout=timeout, name=name))

    @property
    def name(self) -> str:
        return self._client.name

    @property
    def url(self) -> str:
        return self._client.url

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await trio.to_thread.run_sync(
            functools.partial(fn, *args),
            abandon_on_cancel=True,
            limiter=self._limiter,
        )

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return await self._run(self._client.get_transaction_count, address, block)

    async def send_raw_transaction(self, raw_tx: str) -> Any:
        return await self._run(self._client.send_raw_transaction, raw_tx)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._client.get_transaction_receipt, tx_hash)

    async def block_number(self) -> int:
        return await self._run(self._client.block_number)

    def __repr__(self) -> str:
        return f"AsyncChainClient({self._client!r})"
