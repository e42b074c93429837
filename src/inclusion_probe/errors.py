"""
inclusion_probe/errors.py

Exception taxonomy for the inclusion verification workflow.

Transport failures (RpcError and the errors wrapping it) are terminal for a
run. InclusionTimeout and DivergenceError are outcomes that get reported,
never retried inside the library.
"""

from typing import Any, Optional


class ProbeError(Exception):
    """Base class for all inclusion_probe errors."""
    pass


# ============================================================================
# TRANSPORT
# ============================================================================

class RpcError(ProbeError):
    """Exception raised for JSON-RPC communication errors."""

    def __init__(self, message: str, url: str = "", method: str = ""):
        super().__init__(message)
        self.url = url
        self.method = method


class RpcTransportError(RpcError):
    """HTTP failure, timeout, or a body that is not a JSON-RPC response."""
    pass


class RpcResponseError(RpcError):
    """The endpoint answered with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        url: str = "",
        method: str = "",
        code: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(message, url=url, method=method)
        self.code = code
        self.data = data


# ============================================================================
# WORKFLOW
# ============================================================================

class NonceFetchError(ProbeError):
    """The nonce source was unreachable or returned a malformed nonce."""
    pass


class SigningError(ProbeError):
    """The signing key is invalid or does not control the sender."""
    pass


class SubmissionError(ProbeError):
    """The ingress endpoint did not return a usable transaction hash."""
    pass


class ReceiptQueryError(ProbeError):
    """A receipt lookup failed for a reason other than 'not found yet'."""

    def __init__(self, message: str, endpoint: str = ""):
        super().__init__(message)
        self.endpoint = endpoint


class InclusionTimeout(ProbeError):
    """No receipt appeared before the deadline."""

    def __init__(self, message: str, endpoint: str = "", timeout: float = 0.0, polls: int = 0):
        super().__init__(message)
        self.endpoint = endpoint
        self.timeout = timeout
        self.polls = polls


class DivergenceError(ProbeError):
    """Builder and sequencer disagree on the outcome of the same transaction."""

    def __init__(self, message: str, tx_hash: str = ""):
        super().__init__(message)
        self.tx_hash = tx_hash
