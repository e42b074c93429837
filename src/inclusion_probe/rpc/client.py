"""
inclusion_probe/rpc/client.py

Ethereum JSON-RPC client for builder, sequencer and ingress endpoints.

Provides methods for:
- Account nonce lookups (for transaction building)
- Raw transaction submission
- Receipt lookups
- Block height queries
"""

import itertools
import logging
import re
from typing import Any, Dict, Optional

from ..errors import RpcResponseError, RpcTransportError
from .connection import JsonRpcConnection

logger = logging.getLogger("inclusion_probe.rpc.client")


JSONRPC_VERSION = "2.0"

_QUANTITY_RE = re.compile(r"^0x[0-9a-fA-F]+$")
_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def parse_quantity(value: Any) -> int:
    """
    Decode a JSON-RPC hex quantity ("0x1a") into an int.

    Raises:
        ValueError: If value is not a 0x-prefixed hex string
    """
    if not isinstance(value, str) or not _QUANTITY_RE.match(value):
        raise ValueError(f"Not a hex quantity: {value!r}")
    return int(value, 16)


def is_tx_hash(value: Any) -> bool:
    """Check for a 0x-prefixed 32-byte hex string."""
    return isinstance(value, str) and bool(_HASH_RE.match(value))


# ============================================================================
# CHAIN CLIENT
# ============================================================================

class ChainClient:
    """
    Blocking JSON-RPC client for one chain endpoint.

    Example:
        client = ChainClient("http://localhost:2222")

        nonce = client.get_transaction_count("0xf39F...")
        tx_hash = client.send_raw_transaction("0x02f8...")
        receipt = client.get_transaction_receipt(tx_hash)
    """

    def __init__(self, url: str, timeout: float = JsonRpcConnection.DEFAULT_TIMEOUT, name: str = ""):
        """
        Initialize the client.

        Args:
            url: Endpoint URL
            timeout: Per-request timeout in seconds
            name: Label used in logs (builder, sequencer, ingress)
        """
        self.name = name or url
        self._connection = JsonRpcConnection(url, timeout=timeout)
        self._ids = itertools.count(1)

    @property
    def url(self) -> str:
        return self._connection.url

    def call(self, method: str, *params: Any) -> Any:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name
            *params: Method parameters

        Returns:
            The "result" member of the response (may be None)

        Raises:
            RpcTransportError: On HTTP failure or a malformed envelope
            RpcResponseError: When the server returns an error object
        """
        request = {
            "jsonrpc": JSONRPC_VERSION,
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }

        response = self._connection.post(request)

        error = response.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcResponseError(
                    f"{self.name} {method}: {error.get('message', error)}",
                    url=self.url,
                    method=method,
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcResponseError(f"{self.name} {method}: {error}", url=self.url, method=method)

        if "result" not in response:
            raise RpcTransportError(
                f"{self.name} {method}: response has neither result nor error",
                url=self.url,
                method=method,
            )

        return response["result"]

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """
        Get the next nonce for an address.

        Raises:
            ValueError: If the endpoint returns a malformed quantity
        """
        return parse_quantity(self.call("eth_getTransactionCount", address, block))

    def send_raw_transaction(self, raw_tx: str) -> Any:
        """
        Submit a signed transaction.

        Returns:
            The raw "result" member; normally the transaction hash
        """
        return self.call("eth_sendRawTransaction", raw_tx)

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """
        Look up a receipt.

        Returns:
            The receipt object, or None if the transaction is not included yet
        """
        result = self.call("eth_getTransactionReceipt", tx_hash)
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RpcTransportError(
                f"{self.name} eth_getTransactionReceipt returned {type(result).__name__}",
                url=self.url,
                method="eth_getTransactionReceipt",
            )
        return result

    def block_number(self) -> int:
        """Get the current block height."""
        return parse_quantity(self.call("eth_blockNumber"))

    def __repr__(self) -> str:
        return f"ChainClient(name={self.name!r}, url={self.url!r})"
