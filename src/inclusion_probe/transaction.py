"""
inclusion_probe/transaction.py

Probe transaction construction and signing.

Builds a plain EIP-1559 value transfer client-side:
- the nonce is read from the nonce source right before construction
- signing uses deterministic ECDSA, so the same request always yields the
  same raw bytes

No locking protects the nonce against concurrent external submissions from
the same sender; callers serialize those themselves.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

from eth_account import Account
from eth_utils import is_address, to_checksum_address

from .errors import NonceFetchError, RpcError, SigningError

logger = logging.getLogger("inclusion_probe.transaction")


EIP1559_TX_TYPE = 2
TRANSFER_GAS = 21_000


class NonceSource(Protocol):
    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        ...


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class TransferFees:
    """Gas settings for a plain transfer."""
    gas_limit: int = TRANSFER_GAS
    max_fee_per_gas: int = 10_000_000_000
    max_priority_fee_per_gas: int = 1_000_000_000


@dataclass(frozen=True)
class TransactionRequest:
    """A fully specified, not yet signed transfer."""
    sender: str
    recipient: str
    value: int  # wei
    nonce: int
    chain_id: int
    signing_key: str = field(repr=False)
    fees: TransferFees = field(default_factory=TransferFees)

    def to_tx_dict(self) -> Dict[str, Any]:
        """Transaction fields in the form eth_account expects."""
        return {
            "type": EIP1559_TX_TYPE,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "to": to_checksum_address(self.recipient),
            "value": self.value,
            "gas": self.fees.gas_limit,
            "maxFeePerGas": self.fees.max_fee_per_gas,
            "maxPriorityFeePerGas": self.fees.max_priority_fee_per_gas,
            "data": b"",
        }


@dataclass(frozen=True)
class SignedTransaction:
    """Signed transfer ready for eth_sendRawTransaction."""
    raw: str      # 0x-prefixed signed encoding
    tx_hash: str  # locally computed hash
    request: TransactionRequest

    def to_dict(self) -> dict:
        return {
            "raw": self.raw,
            "tx_hash": self.tx_hash,
            "sender": self.request.sender,
            "recipient": self.request.recipient,
            "value": self.request.value,
            "nonce": self.request.nonce,
            "chain_id": self.request.chain_id,
        }


# ============================================================================
# BUILDING AND SIGNING
# ============================================================================

async def fetch_nonce(nonce_source: NonceSource, sender: str) -> int:
    """
    Read the next nonce for sender.

    Raises:
        NonceFetchError: If the source is unreachable, answers with an
            error, or returns something that is not a non-negative integer
    """
    try:
        nonce = await nonce_source.get_transaction_count(sender)
    except RpcError as e:
        raise NonceFetchError(f"Nonce lookup for {sender} failed: {e}") from e
    except ValueError as e:
        raise NonceFetchError(f"Malformed nonce for {sender}: {e}") from e

    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
        raise NonceFetchError(f"Malformed nonce for {sender}: {nonce!r}")
    return nonce


def sign_transaction(request: TransactionRequest) -> SignedTransaction:
    """
    Sign a transfer request.

    Raises:
        SigningError: If the key is unusable, does not belong to the sender,
            or the transaction fields are rejected by the signer
    """
    try:
        account = Account.from_key(request.signing_key)
    except Exception as e:
        raise SigningError(f"Invalid signing key: {e}") from e

    if not is_address(request.sender) or account.address.lower() != request.sender.lower():
        raise SigningError(
            f"Signing key controls {account.address}, not sender {request.sender}"
        )

    try:
        signed = account.sign_transaction(request.to_tx_dict())
    except Exception as e:
        raise SigningError(f"Failed to sign transaction: {e}") from e

    return SignedTransaction(
        raw="0x" + bytes(signed.raw_transaction).hex(),
        tx_hash="0x" + bytes(signed.hash).hex(),
        request=request,
    )


async def build_transaction(
    sender: str,
    recipient: str,
    value: int,
    chain_id: int,
    signing_key: str,
    nonce_source: NonceSource,
    fees: TransferFees = TransferFees(),
) -> SignedTransaction:
    """
    Fetch the sender's nonce and build a signed transfer with it.

    Args:
        sender: Sender address (must match signing_key)
        recipient: Recipient address
        value: Transfer value in wei
        chain_id: Chain id to sign for
        signing_key: Hex private key
        nonce_source: Endpoint answering eth_getTransactionCount
        fees: Gas settings

    Returns:
        SignedTransaction

    Raises:
        NonceFetchError: If the nonce cannot be obtained
        SigningError: If the key is invalid
    """
    if not is_address(recipient):
        raise SigningError(f"Invalid recipient address: {recipient!r}")

    nonce = await fetch_nonce(nonce_source, sender)

    request = TransactionRequest(
        sender=sender,
        recipient=recipient,
        value=value,
        nonce=nonce,
        chain_id=chain_id,
        signing_key=signing_key,
        fees=fees,
    )
    signed = sign_transaction(request)

    logger.info(
        f"Built transfer {signed.tx_hash} from {sender} nonce={nonce} "
        f"value={value} chain_id={chain_id}"
    )
    return signed
