"""
inclusion_probe/rpc - JSON-RPC clients for builder, sequencer and ingress nodes.

Provides nonce lookups, raw transaction submission, receipt lookups and
block height queries, in blocking and trio flavours.
"""

from .async_client import AsyncChainClient
from .client import ChainClient, is_tx_hash, parse_quantity
from .connection import JsonRpcConnection

__all__ = [
    "AsyncChainClient",
    "ChainClient",
    "JsonRpcConnection",
    "is_tx_hash",
    "parse_quantity",
]
