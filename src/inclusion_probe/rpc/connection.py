"""
inclusion_probe/rpc/connection.py

Low-level HTTP transport for JSON-RPC endpoints.

Every request opens its own connection and releases it as soon as the
response (or error) is in, so nothing is held between polls.
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

from ..errors import RpcTransportError

logger = logging.getLogger("inclusion_probe.rpc.connection")


class JsonRpcConnection:
    """
    Posts JSON-RPC envelopes to a single HTTP endpoint.

    The connection object is cheap and stateless apart from its settings;
    it is safe to share between threads.
    """

    DEFAULT_TIMEOUT = 5.0  # seconds
    HEADERS = {"Content-Type": "application/json"}

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT):
        """
        Initialize connection parameters.

        Args:
            url: Endpoint URL, e.g. http://localhost:8547
            timeout: Per-request timeout in seconds (connect and read)
        """
        self.url = url
        self.timeout = timeout

    def post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one JSON-RPC request and return the decoded response envelope.

        Args:
            payload: JSON-RPC request object

        Returns:
            The response object (contains "result" or "error")

        Raises:
            RpcTransportError: On connection failure, timeout, non-2xx status,
                or a body that is not a JSON object
        """
        method = payload.get("method", "")

        try:
            with requests.Session() as session:
                response = session.post(
                    self.url,
                    data=json.dumps(payload),
                    headers=self.HEADERS,
                    timeout=self.timeout,
                )
                response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise RpcTransportError(
                f"{method} timed out after {self.timeout}s", url=self.url, method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise RpcTransportError(f"{method} failed: {e}", url=self.url, method=method) from e

        try:
            body = response.json()
        except ValueError as e:
            raise RpcTransportError(
                f"{method} returned invalid JSON: {e}", url=self.url, method=method
            ) from e

        if not isinstance(body, dict):
            raise RpcTransportError(
                f"{method} returned a non-object response", url=self.url, method=method
            )

        logger.debug(f"{self.url} {method} -> {_summarize(body)}")
        return body

    def __repr__(self) -> str:
        return f"JsonRpcConnection({self.url!r}, timeout={self.timeout})"


def _summarize(body: Dict[str, Any], limit: int = 120) -> Optional[str]:
    text = json.dumps(body.get("result", body.get("error")))
    return text if len(text) <= limit else text[:limit] + "..."
