"""Pure validation helpers for addresses, calldata, values, gas and endpoints.

Every validator returns a result object instead of raising, so callers can
collect all field errors before deciding what to do.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional
from urllib.parse import urlsplit

from eth_utils import is_address, to_checksum_address

from ..config import settings

_HEX_DATA_RE = re.compile(r"^0x[0-9a-fA-F]*$")
_DECIMAL_RE = re.compile(r"^-?[0-9]+$")
_HEX_INT_RE = re.compile(r"^0x[0-9a-fA-F]+$")

_DEFAULT_PORTS = {"http": 80, "https": 443}

WEI_PER_ETH = 10**18
WEI_PER_GWEI = 10**9

INVALID_ADDRESS = "Invalid Ethereum address"
INVALID_NETWORK = "Network not supported"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single-field check; ``value`` holds the normalized form."""

    valid: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Any = None) -> "ValidationResult":
        return cls(True, value=value)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(False, error=error)


@dataclass
class TransactionValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _parse_int(raw: Any) -> Optional[int]:
    """Parse an int, a decimal string or a 0x-prefixed hex string."""

    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if _HEX_INT_RE.match(text):
        return int(text, 16)
    if _DECIMAL_RE.match(text):
        return int(text)
    return None


def validate_address(address: Any, max_length: Optional[int] = None) -> ValidationResult:
    if not address or not isinstance(address, str):
        return ValidationResult.fail(INVALID_ADDRESS)

    limit = max_length if max_length is not None else settings.address_max_length
    if len(address) > limit:
        return ValidationResult.fail("Address exceeds maximum length")

    # eth_utils rejects mixed-case input whose checksum does not match.
    if not is_address(address):
        return ValidationResult.fail("Invalid Ethereum address format")

    return ValidationResult.ok(to_checksum_address(address))


def addresses_equal(left: str, right: str) -> bool:
    """Compare two addresses by their canonical checksummed form."""

    a = validate_address(left)
    b = validate_address(right)
    if not (a.valid and b.valid):
        return False
    return a.value.lower() == b.value.lower()


def validate_hex_data(data: Any, max_length: Optional[int] = None) -> ValidationResult:
    if data is None or data == "":
        return ValidationResult.ok("")

    if not isinstance(data, str):
        return ValidationResult.fail("Data must be a string")

    if not data.startswith("0x"):
        return ValidationResult.fail("Data must start with 0x")

    limit = max_length if max_length is not None else settings.max_transaction_data_length
    if len(data) > limit:
        return ValidationResult.fail(f"Data exceeds maximum length ({limit} bytes)")

    if not _HEX_DATA_RE.match(data):
        return ValidationResult.fail("Data contains invalid hex characters")

    return ValidationResult.ok(data)


def max_transaction_value_wei() -> int:
    return settings.max_transaction_value_eth * WEI_PER_ETH


def validate_value(value: Any, max_value: Optional[int] = None) -> ValidationResult:
    if value is None or value == "" or value == 0:
        return ValidationResult.ok(0)

    parsed = _parse_int(value)
    if parsed is None:
        return ValidationResult.fail("Invalid value format")

    if parsed < 0:
        return ValidationResult.fail("Value cannot be negative")

    ceiling = max_value if max_value is not None else max_transaction_value_wei()
    if parsed > ceiling:
        return ValidationResult.fail(
            f"Value exceeds maximum allowed ({ceiling // WEI_PER_ETH} ETH)"
        )

    return ValidationResult.ok(parsed)


def validate_gas_limit(gas_limit: Any, max_gas: Any = None) -> ValidationResult:
    limit = _parse_int(gas_limit)
    ceiling = _parse_int(max_gas) if max_gas is not None else settings.max_gas_limit
    if limit is None or ceiling is None:
        return ValidationResult.fail("Invalid gas limit format")

    if limit < settings.min_gas_limit:
        return ValidationResult.fail(f"Gas limit too low (minimum {settings.min_gas_limit})")

    if limit > ceiling:
        return ValidationResult.fail(f"Gas limit exceeds maximum ({ceiling})")

    return ValidationResult.ok(limit)


def validate_gas_price(gas_price: Any) -> ValidationResult:
    price = _parse_int(gas_price)
    if price is None:
        return ValidationResult.fail("Invalid gas price format")

    if price < settings.min_gas_price_gwei * WEI_PER_GWEI:
        return ValidationResult.fail("Gas price too low")

    if price > settings.max_gas_price_gwei * WEI_PER_GWEI:
        return ValidationResult.fail("Gas price too high")

    return ValidationResult.ok(price)


def validate_network_id(
    network_id: Any,
    supported: Optional[Iterable[int]] = None,
) -> ValidationResult:
    if isinstance(network_id, bool) or not isinstance(network_id, int) or network_id < 1:
        return ValidationResult.fail(INVALID_NETWORK)

    allowed = set(supported) if supported is not None else set(settings.supported_network_ids)
    if network_id not in allowed:
        return ValidationResult.fail(f"Network {network_id} is not supported")

    return ValidationResult.ok(network_id)


def validate_rpc_url(url: Any, allow_local_http: bool = False) -> ValidationResult:
    if not url or not isinstance(url, str):
        return ValidationResult.fail("RPC URL must be a non-empty string")

    try:
        parts = urlsplit(url)
    except ValueError:
        return ValidationResult.fail("Invalid RPC URL format")

    if parts.scheme not in ("http", "https") or not parts.hostname:
        return ValidationResult.fail("Invalid RPC URL format")

    if parts.scheme != "https":
        if allow_local_http and parts.hostname in ("localhost", "127.0.0.1"):
            return ValidationResult.ok(url)
        return ValidationResult.fail("RPC URL must use HTTPS")

    return ValidationResult.ok(url)


def normalize_origin(url: Any) -> Optional[str]:
    """Reduce a URL to ``scheme://host[:port]``; None if it has no origin."""

    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None

    origin = f"{parts.scheme}://{parts.hostname.lower()}"
    if port is not None and port != _DEFAULT_PORTS[parts.scheme]:
        origin = f"{origin}:{port}"
    return origin


def validate_message_origin(origin: Any, allowed_origins: Iterable[str]) -> bool:
    """True iff ``origin`` matches one allowed origin on scheme, host and port."""

    normalized = normalize_origin(origin)
    if normalized is None:
        return False
    return any(normalize_origin(allowed) == normalized for allowed in allowed_origins)


def generate_secure_id() -> str:
    return secrets.token_hex(16)


def validate_transaction_request(tx: Mapping[str, Any]) -> TransactionValidation:
    """Check from/to/value/data together and report every failing field."""

    errors: List[str] = []

    sender = tx.get("from")
    if not sender:
        errors.append("Missing 'from' address")
    else:
        result = validate_address(sender)
        if not result.valid:
            errors.append(f"Invalid 'from' address: {result.error}")

    recipient = tx.get("to")
    if not recipient:
        errors.append("Missing 'to' address")
    else:
        result = validate_address(recipient)
        if not result.valid:
            errors.append(f"Invalid 'to' address: {result.error}")

    if tx.get("value"):
        result = validate_value(tx["value"])
        if not result.valid:
            errors.append(f"Invalid value: {result.error}")

    if tx.get("data"):
        result = validate_hex_data(tx["data"])
        if not result.valid:
            errors.append(f"Invalid data: {result.error}")

    return TransactionValidation(valid=not errors, errors=errors)
