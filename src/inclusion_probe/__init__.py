"""
inclusion_probe - Transaction inclusion verifier for rollup block builders

Submits a signed transfer through an ingress endpoint, waits for the builder
and the sequencer to include it, and checks that both agree on the outcome:
- Deterministic EIP-1559 transfer signing (eth-account)
- JSON-RPC over HTTP (requests)
- Concurrent receipt polling with a shared deadline (trio)
- Prometheus metrics for run outcomes and receipt latency

Usage:
    import trio
    from inclusion_probe import InclusionVerifier, ProbeConfig

    config = ProbeConfig.from_env()
    verifier = InclusionVerifier(config)

    report = trio.run(verifier.run)
    print(report.verdict)          # Verdict.CONSISTENT
    report.raise_for_verdict()     # DivergenceError on mismatch

CLI Usage:
    inclusion-probe send-txn
    inclusion-probe get-blocks
"""

from .config import ProbeConfig
from .errors import (
    ProbeError,
    RpcError,
    RpcTransportError,
    RpcResponseError,
    NonceFetchError,
    SigningError,
    SubmissionError,
    ReceiptQueryError,
    InclusionTimeout,
    DivergenceError,
)
from .metrics import ProbeMetrics
from .rpc import AsyncChainClient, ChainClient
from .transaction import (
    SignedTransaction,
    TransactionRequest,
    TransferFees,
    build_transaction,
)
from .verifier import (
    BlockHeights,
    BlockReference,
    Endpoint,
    InclusionStatus,
    InclusionVerifier,
    ReceiptStatus,
    Verdict,
    VerificationReport,
    await_receipt,
    submit,
    verify,
)

__version__ = "0.1.0"
__all__ = [
    # Config
    "ProbeConfig",
    # Errors
    "ProbeError",
    "RpcError",
    "RpcTransportError",
    "RpcResponseError",
    "NonceFetchError",
    "SigningError",
    "SubmissionError",
    "ReceiptQueryError",
    "InclusionTimeout",
    "DivergenceError",
    # RPC
    "ChainClient",
    "AsyncChainClient",
    # Transactions
    "TransactionRequest",
    "SignedTransaction",
    "TransferFees",
    "build_transaction",
    # Verification
    "InclusionVerifier",
    "Endpoint",
    "InclusionStatus",
    "Verdict",
    "BlockReference",
    "ReceiptStatus",
    "VerificationReport",
    "BlockHeights",
    "submit",
    "await_receipt",
    "verify",
    # Metrics
    "ProbeMetrics",
]
