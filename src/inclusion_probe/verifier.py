"""
inclusion_probe/verifier.py

Transaction inclusion verification.

A run submits a signed transfer through the ingress endpoint, then polls the
builder and the sequencer concurrently until both show a receipt, and
compares the two receipt statuses:

    Unsubmitted -> Submitted -> (AwaitingBuilder & AwaitingSequencer)
                -> Consistent | Divergent | Incomplete

Only the polling loop retries. A failed nonce fetch, submission or receipt
query ends the run with an exception; a deadline ends it as Incomplete.

Usage:
    import trio
    from inclusion_probe import InclusionVerifier, ProbeConfig

    verifier = InclusionVerifier(ProbeConfig.from_env())
    report = trio.run(verifier.run)
    report.raise_for_verdict()
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import trio

from .config import ProbeConfig
from .errors import (
    DivergenceError,
    InclusionTimeout,
    ReceiptQueryError,
    RpcError,
    SubmissionError,
)
from .metrics import ProbeMetrics
from .rpc import AsyncChainClient, is_tx_hash, parse_quantity
from .transaction import SignedTransaction, TransferFees, build_transaction

logger = logging.getLogger("inclusion_probe.verifier")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class Endpoint(Enum):
    BUILDER = "builder"
    SEQUENCER = "sequencer"


class InclusionStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_FOUND = "not-yet-found"

    @classmethod
    def from_receipt_field(cls, value: Any) -> "InclusionStatus":
        """Map a receipt "status" field ("0x1" / "0x0") to a status."""
        try:
            code = parse_quantity(value)
        except ValueError as e:
            raise ValueError(f"Unrecognized receipt status: {value!r}") from e
        if code == 1:
            return cls.SUCCESS
        if code == 0:
            return cls.FAILURE
        raise ValueError(f"Unrecognized receipt status: {value!r}")


class Verdict(Enum):
    CONSISTENT = "consistent"
    DIVERGENT = "divergent"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class BlockReference:
    """Block a receipt points at."""
    number: Optional[int]
    hash: Optional[str]

    def __str__(self) -> str:
        return f"#{self.number} ({self.hash})"


@dataclass(frozen=True)
class ReceiptStatus:
    """
    One endpoint's view of a transaction.

    Never mutated: each poll that finds something produces a new value.
    elapsed is the number of seconds from the start of polling until the
    receipt was seen (or until the endpoint was given up on).
    """
    endpoint: str
    status: InclusionStatus
    block: Optional[BlockReference] = None
    polls: int = 0
    elapsed: Optional[float] = None

    @property
    def found(self) -> bool:
        return self.status is not InclusionStatus.NOT_FOUND

    @classmethod
    def not_found(cls, endpoint: str, polls: int = 0, elapsed: Optional[float] = None) -> "ReceiptStatus":
        return cls(endpoint=endpoint, status=InclusionStatus.NOT_FOUND, polls=polls, elapsed=elapsed)

    @classmethod
    def from_receipt(
        cls,
        endpoint: str,
        receipt: Dict[str, Any],
        polls: int = 0,
        elapsed: Optional[float] = None,
    ) -> "ReceiptStatus":
        """
        Build a ReceiptStatus from an eth_getTransactionReceipt result.

        Raises:
            ReceiptQueryError: If the receipt has no usable status field
        """
        try:
            status = InclusionStatus.from_receipt_field(receipt.get("status"))
        except ValueError as e:
            raise ReceiptQueryError(f"{endpoint}: {e}", endpoint=endpoint) from e

        number = receipt.get("blockNumber")
        try:
            block_number = parse_quantity(number) if number is not None else None
        except ValueError as e:
            raise ReceiptQueryError(
                f"{endpoint}: malformed blockNumber {number!r}", endpoint=endpoint
            ) from e

        return cls(
            endpoint=endpoint,
            status=status,
            block=BlockReference(number=block_number, hash=receipt.get("blockHash")),
            polls=polls,
            elapsed=elapsed,
        )

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "status": self.status.value,
            "block_number": self.block.number if self.block else None,
            "block_hash": self.block.hash if self.block else None,
            "polls": self.polls,
            "elapsed": self.elapsed,
        }


@dataclass(frozen=True)
class VerificationReport:
    """Outcome of one verification run."""
    tx_hash: str
    builder: ReceiptStatus
    sequencer: ReceiptStatus
    verdict: Verdict

    @property
    def ok(self) -> bool:
        return self.verdict is Verdict.CONSISTENT

    def raise_for_verdict(self) -> "VerificationReport":
        """
        Turn a non-consistent verdict into an exception.

        Raises:
            DivergenceError: If builder and sequencer disagree
            InclusionTimeout: If either side never showed a receipt
        """
        if self.verdict is Verdict.DIVERGENT:
            raise DivergenceError(
                f"Builder reports {self.builder.status.value} but sequencer reports "
                f"{self.sequencer.status.value} for {self.tx_hash}",
                tx_hash=self.tx_hash,
            )
        if self.verdict is Verdict.INCOMPLETE:
            missing = [s.endpoint for s in (self.builder, self.sequencer) if not s.found]
            raise InclusionTimeout(
                f"No receipt for {self.tx_hash} from {', '.join(missing)}",
                endpoint=",".join(missing),
            )
        return self

    def to_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "verdict": self.verdict.value,
            "builder": self.builder.to_dict(),
            "sequencer": self.sequencer.to_dict(),
        }


@dataclass(frozen=True)
class BlockHeights:
    """Block heights of both nodes taken at the same moment."""
    sequencer: int
    builder: int

    @property
    def lag(self) -> int:
        """Blocks the builder is behind the sequencer (negative if ahead)."""
        return self.sequencer - self.builder


# ============================================================================
# WORKFLOW STEPS
# ============================================================================

async def submit(
    ingress: AsyncChainClient,
    signed_transaction: Union[SignedTransaction, str],
) -> str:
    """
    Send a signed transaction to the ingress endpoint.

    Args:
        ingress: Ingress endpoint client
        signed_transaction: SignedTransaction or raw 0x-hex encoding

    Returns:
        Transaction hash reported by the ingress endpoint

    Raises:
        SubmissionError: On HTTP failure, timeout, JSON-RPC error, or a
            result that is not a transaction hash
    """
    if isinstance(signed_transaction, SignedTransaction):
        raw, local_hash = signed_transaction.raw, signed_transaction.tx_hash
    else:
        raw, local_hash = signed_transaction, None

    try:
        result = await ingress.send_raw_transaction(raw)
    except RpcError as e:
        raise SubmissionError(f"Ingress rejected transaction: {e}") from e

    if not is_tx_hash(result):
        raise SubmissionError(f"Ingress returned no transaction hash: {result!r}")

    if local_hash and result.lower() != local_hash.lower():
        logger.warning(f"Ingress hash {result} differs from local hash {local_hash}")

    logger.info(f"Submitted {result} via {ingress.url}")
    return result


async def await_receipt(
    endpoint: AsyncChainClient,
    tx_hash: str,
    poll_interval: float,
    timeout: float,
    *,
    name: Optional[str] = None,
    error_tolerance: int = 0,
) -> ReceiptStatus:
    """
    Poll an endpoint until it returns a receipt for tx_hash.

    At most floor(timeout / poll_interval) + 1 lookups are issued, and the
    whole loop runs under a deadline of exactly timeout seconds.

    Args:
        endpoint: Builder or sequencer client
        tx_hash: Hash returned by submit()
        poll_interval: Seconds between lookups
        timeout: Overall time budget in seconds
        name: Label for logs and the returned status (defaults to endpoint.name)
        error_tolerance: Consecutive query errors tolerated before giving up

    Returns:
        ReceiptStatus with SUCCESS or FAILURE

    Raises:
        InclusionTimeout: If no receipt appears within timeout
        ReceiptQueryError: If lookups keep failing
    """
    if poll_interval <= 0 or timeout <= 0:
        raise ValueError("poll_interval and timeout must be positive")

    label = name or getattr(endpoint, "name", str(endpoint))
    max_polls = int(timeout // poll_interval) + 1
    start = trio.current_time()
    polls = 0
    consecutive_errors = 0

    with trio.move_on_at(start + timeout):
        while polls < max_polls:
            polls += 1
            try:
                receipt = await endpoint.get_transaction_receipt(tx_hash)
            except RpcError as e:
                consecutive_errors += 1
                if consecutive_errors > error_tolerance:
                    raise ReceiptQueryError(
                        f"{label}: receipt lookup for {tx_hash} failed: {e}", endpoint=label
                    ) from e
                logger.warning(
                    f"{label}: receipt lookup failed "
                    f"({consecutive_errors}/{error_tolerance} tolerated): {e}"
                )
                receipt = None
            else:
                consecutive_errors = 0

            if receipt is not None:
                elapsed = trio.current_time() - start
                status = ReceiptStatus.from_receipt(label, receipt, polls=polls, elapsed=elapsed)
                logger.info(
                    f"{label}: {tx_hash} included in block {status.block} "
                    f"status={status.status.value} after {elapsed:.2f}s ({polls} polls)"
                )
                return status

            logger.debug(f"{label}: no receipt for {tx_hash} yet (poll {polls}/{max_polls})")
            await trio.sleep(poll_interval)

        # Poll budget spent; hold until the deadline
        await trio.sleep_forever()

    raise InclusionTimeout(
        f"{label}: no receipt for {tx_hash} after {timeout}s ({polls} polls)",
        endpoint=label,
        timeout=timeout,
        polls=polls,
    )


def verify(
    builder_receipt: Optional[ReceiptStatus],
    sequencer_receipt: Optional[ReceiptStatus],
) -> Verdict:
    """
    Compare builder and sequencer receipt statuses.

    Returns:
        CONSISTENT if both report the same status, DIVERGENT if they differ,
        INCOMPLETE if either receipt is missing
    """
    if builder_receipt is None or sequencer_receipt is None:
        return Verdict.INCOMPLETE
    if not builder_receipt.found or not sequencer_receipt.found:
        return Verdict.INCOMPLETE
    if builder_receipt.status is sequencer_receipt.status:
        return Verdict.CONSISTENT

    logger.error(
        f"DIVERGENT RECEIPTS: builder={builder_receipt.status.value} "
        f"(block {builder_receipt.block}) sequencer={sequencer_receipt.status.value} "
        f"(block {sequencer_receipt.block})"
    )
    return Verdict.DIVERGENT


# ============================================================================
# VERIFIER
# ============================================================================

class InclusionVerifier:
    """
    Runs the submit / await / compare workflow against one network.

    All endpoints and the sender identity come from the ProbeConfig given at
    construction, so independent verifiers can target different networks
    concurrently.

    Example:
        verifier = InclusionVerifier(ProbeConfig(builder_url="http://b:2222"))

        async with trio.open_nursery() as nursery:
            nursery.start_soon(verifier.run)
    """

    def __init__(
        self,
        config: ProbeConfig,
        builder: Optional[AsyncChainClient] = None,
        sequencer: Optional[AsyncChainClient] = None,
        ingress: Optional[AsyncChainClient] = None,
        metrics: Optional[ProbeMetrics] = None,
    ):
        """
        Initialize the verifier.

        Args:
            config: Network and sender configuration
            builder: Builder client (created from config if None)
            sequencer: Sequencer client (created from config if None)
            ingress: Ingress client (created from config if None)
            metrics: Optional metrics collector
        """
        self.config = config.validate()
        timeout = config.request_timeout

        self.builder = builder or AsyncChainClient.for_url(config.builder_url, timeout, name="builder")
        self.sequencer = sequencer or AsyncChainClient.for_url(
            config.sequencer_url, timeout, name="sequencer"
        )
        self.ingress = ingress or AsyncChainClient.for_url(config.ingress_url, timeout, name="ingress")
        self.metrics = metrics

    async def build(self) -> SignedTransaction:
        """Build and sign the probe transfer using the builder's nonce."""
        config = self.config
        return await build_transaction(
            sender=config.sender_address,
            recipient=config.recipient_address,
            value=config.value_wei,
            chain_id=config.chain_id,
            signing_key=config.sender_key,
            nonce_source=self.builder,
            fees=TransferFees(
                gas_limit=config.gas_limit,
                max_fee_per_gas=config.max_fee_per_gas,
                max_priority_fee_per_gas=config.max_priority_fee_per_gas,
            ),
        )

    async def submit(self, signed: SignedTransaction) -> str:
        try:
            tx_hash = await submit(self.ingress, signed)
        except SubmissionError:
            if self.metrics:
                self.metrics.record_submission(success=False)
            raise
        if self.metrics:
            self.metrics.record_submission(success=True)
        return tx_hash

    async def run(self) -> VerificationReport:
        """
        Execute one full verification run.

        Returns:
            VerificationReport with a CONSISTENT, DIVERGENT or INCOMPLETE verdict

        Raises:
            NonceFetchError, SigningError, SubmissionError, ReceiptQueryError
            InclusionTimeout: If the run deadline passes before submission completes
        """
        deadline = trio.current_time() + self.config.run_timeout
        signed: Optional[SignedTransaction] = None
        tx_hash: Optional[str] = None

        with trio.move_on_at(deadline):
            signed = await self.build()
            tx_hash = await self.submit(signed)

        if tx_hash is None:
            if signed is None:
                message = "Run deadline passed while building the transaction; nothing was submitted"
                endpoint = Endpoint.BUILDER.value
            else:
                message = f"Run deadline passed while submitting {signed.tx_hash}; outcome unknown"
                endpoint = "ingress"
            logger.warning(message)
            raise InclusionTimeout(message, endpoint=endpoint, timeout=self.config.run_timeout)

        return await self.await_inclusion(tx_hash, deadline=deadline)

    async def await_inclusion(self, tx_hash: str, deadline: Optional[float] = None) -> VerificationReport:
        """
        Poll builder and sequencer concurrently and compare their receipts.

        Both polls share one cancel scope: when the run deadline passes, or
        when one side times out or fails, the other side's in-flight request
        is cancelled.

        Args:
            tx_hash: Hash returned by submit()
            deadline: trio clock deadline (defaults to now + run_timeout)

        Raises:
            ReceiptQueryError: If either endpoint fails
        """
        start = trio.current_time()
        if deadline is None:
            deadline = start + self.config.run_timeout

        results: Dict[Endpoint, ReceiptStatus] = {}
        failures: List[ReceiptQueryError] = []

        with trio.move_on_at(deadline) as run_scope:
            async with trio.open_nursery() as nursery:
                nursery.start_soon(
                    self._poll, Endpoint.BUILDER, self.builder, tx_hash, run_scope, results, failures
                )
                nursery.start_soon(
                    self._poll, Endpoint.SEQUENCER, self.sequencer, tx_hash, run_scope, results, failures
                )

        if failures:
            raise failures[0]

        if run_scope.cancelled_caught and len(results) < 2:
            logger.warning(f"Stopped polling before both receipts for {tx_hash} were seen")

        waited = trio.current_time() - start
        builder = results.get(Endpoint.BUILDER) or ReceiptStatus.not_found(
            Endpoint.BUILDER.value, elapsed=waited
        )
        sequencer = results.get(Endpoint.SEQUENCER) or ReceiptStatus.not_found(
            Endpoint.SEQUENCER.value, elapsed=waited
        )

        verdict = verify(builder, sequencer)
        report = VerificationReport(tx_hash=tx_hash, builder=builder, sequencer=sequencer, verdict=verdict)

        if self.metrics:
            self.metrics.record_verdict(verdict.value)
            for status in (builder, sequencer):
                self.metrics.record_polls(status.endpoint, status.polls)
                if status.found and status.elapsed is not None:
                    self.metrics.record_receipt_latency(status.endpoint, status.elapsed)

        logger.info(f"Run for {tx_hash} finished: {verdict.value}")
        return report

    async def _poll(
        self,
        role: Endpoint,
        client: AsyncChainClient,
        tx_hash: str,
        run_scope: trio.CancelScope,
        results: Dict[Endpoint, ReceiptStatus],
        failures: List[ReceiptQueryError],
    ) -> None:
        config = self.config
        try:
            results[role] = await await_receipt(
                client,
                tx_hash,
                config.poll_interval,
                config.receipt_timeout,
                name=role.value,
                error_tolerance=config.error_tolerance,
            )
        except InclusionTimeout as e:
            logger.warning(str(e))
            results[role] = ReceiptStatus.not_found(role.value, polls=e.polls, elapsed=e.timeout)
            run_scope.cancel()
        except ReceiptQueryError as e:
            logger.error(str(e))
            failures.append(e)
            run_scope.cancel()

    async def block_heights(self) -> BlockHeights:
        """
        Read the current block number of the sequencer and the builder.

        Raises:
            RpcError: If either endpoint cannot be queried
        """
        heights: Dict[Endpoint, int] = {}
        failures: List[RpcError] = []

        async def fetch(role: Endpoint, client: AsyncChainClient, scope: trio.CancelScope) -> None:
            try:
                heights[role] = await client.block_number()
            except (RpcError, ValueError) as e:
                failures.append(e if isinstance(e, RpcError) else RpcError(f"{role.value}: {e}"))
                scope.cancel()

        with trio.CancelScope() as scope:
            async with trio.open_nursery() as nursery:
                nursery.start_soon(fetch, Endpoint.SEQUENCER, self.sequencer, scope)
                nursery.start_soon(fetch, Endpoint.BUILDER, self.builder, scope)

        if failures:
            raise failures[0]

        result = BlockHeights(sequencer=heights[Endpoint.SEQUENCER], builder=heights[Endpoint.BUILDER])
        logger.info(f"Sequencer at block {result.sequencer}, builder at block {result.builder}")
        if self.metrics:
            self.metrics.record_block_lag(result.lag)
        return result
