"""
inclusion_probe/config.py

Configuration constants and the ProbeConfig data class for inclusion_probe.

Defaults match the local playground devnet. Every value can be overridden
through INCLUSION_PROBE_* environment variables or on the command line.

Usage:
    from inclusion_probe.config import ProbeConfig

    config = ProbeConfig.from_env()
    config = config.with_overrides(chain_id=901, run_timeout=30.0)
"""

from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional
import logging
import os

from eth_utils import is_address

logger = logging.getLogger("inclusion_probe.config")


# Playground endpoints
DEFAULT_SEQUENCER_URL = "http://localhost:8547"
DEFAULT_BUILDER_URL = "http://localhost:2222"
DEFAULT_INGRESS_URL = "http://localhost:8080"

# Well-known dev account (first account of the test mnemonic)
DEFAULT_SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
DEFAULT_SENDER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

DEFAULT_CHAIN_ID = 13
DEFAULT_RECIPIENT = "0x0000000000000000000000000000000000000000"
DEFAULT_VALUE_ETHER = "0.01"

# Plain transfer fee settings
DEFAULT_GAS_LIMIT = 21_000
DEFAULT_MAX_FEE_PER_GAS = 10_000_000_000          # 10 gwei
DEFAULT_MAX_PRIORITY_FEE_PER_GAS = 1_000_000_000  # 1 gwei

# Polling settings (seconds)
DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_RECEIPT_TIMEOUT = 5.0
DEFAULT_RUN_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 5.0

ENV_PREFIX = "INCLUSION_PROBE_"


@dataclass(frozen=True)
class ProbeConfig:
    """
    Everything a verifier needs to reach one network.

    Instances are immutable; build variants with with_overrides() so that
    several verifiers can target different networks side by side.
    """

    # Endpoints
    sequencer_url: str = DEFAULT_SEQUENCER_URL
    builder_url: str = DEFAULT_BUILDER_URL
    ingress_url: str = DEFAULT_INGRESS_URL

    # Sender identity
    sender_address: str = DEFAULT_SENDER
    sender_key: str = DEFAULT_SENDER_KEY
    chain_id: int = DEFAULT_CHAIN_ID

    # Probe transfer
    recipient_address: str = DEFAULT_RECIPIENT
    value_ether: str = DEFAULT_VALUE_ETHER
    gas_limit: int = DEFAULT_GAS_LIMIT
    max_fee_per_gas: int = DEFAULT_MAX_FEE_PER_GAS
    max_priority_fee_per_gas: int = DEFAULT_MAX_PRIORITY_FEE_PER_GAS

    # Timing
    poll_interval: float = DEFAULT_POLL_INTERVAL
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT
    run_timeout: float = DEFAULT_RUN_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Consecutive receipt query errors tolerated before giving up
    error_tolerance: int = 0

    @property
    def value_wei(self) -> int:
        """Transfer value converted from ether to wei."""
        return ether_to_wei(self.value_ether)

    def validate(self) -> "ProbeConfig":
        """
        Check the configuration for obviously broken values.

        Returns:
            self, so calls can be chained

        Raises:
            ValueError: If any field is out of range
        """
        for name in ("sender_address", "recipient_address"):
            value = getattr(self, name)
            if not is_address(value):
                raise ValueError(f"{name} is not a valid (checksummed) address: {value!r}")

        for name in ("sequencer_url", "builder_url", "ingress_url"):
            if not getattr(self, name).startswith(("http://", "https://")):
                raise ValueError(f"{name} must be an http(s) URL")

        for name in ("poll_interval", "receipt_timeout", "run_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if self.chain_id <= 0:
            raise ValueError("chain_id must be positive")
        if self.gas_limit <= 0:
            raise ValueError("gas_limit must be positive")
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas cannot exceed max_fee_per_gas")
        if self.error_tolerance < 0:
            raise ValueError("error_tolerance cannot be negative")

        ether_to_wei(self.value_ether)
        return self

    def with_overrides(self, **overrides: Any) -> "ProbeConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)

    def to_dict(self, redact_key: bool = True) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if redact_key:
            data["sender_key"] = "<redacted>"
        return data

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProbeConfig":
        """
        Build a config from INCLUSION_PROBE_* environment variables.

        Variable names are the upper-cased field names, e.g.
        INCLUSION_PROBE_BUILDER_URL or INCLUSION_PROBE_CHAIN_ID.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            ProbeConfig with defaults for unset variables
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            values[f.name] = _coerce(f.name, f.type, raw.strip())

        if values:
            logger.debug(f"Config overrides from environment: {sorted(values)}")
        return cls(**values)


def ether_to_wei(value: str) -> int:
    """
    Convert a decimal ether amount (e.g. "0.01") to wei.

    Raises:
        ValueError: If the amount is not a non-negative decimal or has
            more precision than one wei
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid ether amount: {value!r}") from e

    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid ether amount: {value!r}")

    wei = amount * (10 ** 18)
    if wei != wei.to_integral_value():
        raise ValueError(f"Ether amount has sub-wei precision: {value!r}")
    return int(wei)


def _coerce(name: str, type_hint: Any, raw: str) -> Any:
    kind = type_hint if isinstance(type_hint, type) else {
        "int": int, "float": float, "str": str,
    }.get(str(type_hint), str)

    if kind is int:
        try:
            return int(raw, 0)
        except ValueError as e:
            raise ValueError(f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}") from e
    if kind is float:
        try:
            return float(raw)
        except ValueError as e:
            raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a number, got {raw!r}") from e
    return raw
