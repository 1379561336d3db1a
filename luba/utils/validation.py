"""
Input Validation - Security-focused input sanitization.

Provides validation for all external inputs to the engine to prevent:
- Integer overflows of the packed auction record
- Invalid format attacks (short addresses, short salts)
- Ambiguous escrow derivations
"""

from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

# Sizes
ADDRESS_SIZE = 20
HASH_SIZE = 32
SALT_SIZE = 32

# Field bounds (widths of the packed auction record)
MIN_AMOUNT = 0
MAX_AMOUNT = 2**128 - 1
MAX_BID_VALUE = 2**48 - 1          # uint48 bid values
MAX_TIMESTAMP = 2**32 - 1          # uint32 deadlines
MAX_GENERATION_INDEX = 2**64 - 1   # uint64 generation counter
MAX_TOKEN_ID = 2**256 - 1


# =============================================================================
# Validation Functions
# =============================================================================


def validate_bytes(
    data: Any,
    name: str,
    expected_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> Tuple[bool, str]:
    """
    Validate bytes input.

    Args:
        data: Data to validate
        name: Field name for error messages
        expected_length: Exact expected length
        max_length: Maximum allowed length

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(data, (bytes, bytearray)):
        return False, f"{name} must be bytes, got {type(data).__name__}"

    if expected_length is not None and len(data) != expected_length:
        return False, f"{name} must be {expected_length} bytes, got {len(data)}"

    if max_length is not None and len(data) > max_length:
        return False, f"{name} exceeds max length {max_length}, got {len(data)}"

    return True, ""


def validate_address(address: Any, name: str = "address") -> Tuple[bool, str]:
    """Validate an address."""
    return validate_bytes(address, name, expected_length=ADDRESS_SIZE)


def validate_hash(hash_value: Any, name: str = "hash") -> Tuple[bool, str]:
    """Validate a hash value."""
    return validate_bytes(hash_value, name, expected_length=HASH_SIZE)


def validate_salt(salt: Any) -> Tuple[bool, str]:
    """Validate a bid commitment salt."""
    return validate_bytes(salt, "salt", expected_length=SALT_SIZE)


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any) -> Tuple[bool, str]:
    """Validate a ledger amount."""
    return validate_integer(amount, "amount", MIN_AMOUNT, MAX_AMOUNT)


def validate_bid_value(value: Any, name: str = "bid_value") -> Tuple[bool, str]:
    """Validate a bid value (fits the uint48 slots of the auction record)."""
    return validate_integer(value, name, 0, MAX_BID_VALUE)


def validate_duration(seconds: Any, name: str = "duration") -> Tuple[bool, str]:
    """Validate a period length in seconds."""
    return validate_integer(seconds, name, 0, MAX_TIMESTAMP)


def validate_token_id(token_id: Any) -> Tuple[bool, str]:
    """Validate an asset item identity."""
    return validate_integer(token_id, "token_id", 0, MAX_TOKEN_ID)


def validate_hex_string(value: Any, name: str, expected_bytes: Optional[int] = None) -> Tuple[bool, str]:
    """
    Validate a hex string (with or without 0x prefix).

    Args:
        value: Value to validate
        name: Field name
        expected_bytes: Expected byte length when decoded

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    hex_str = value[2:] if value.startswith("0x") else value

    if len(hex_str) % 2 != 0:
        return False, f"{name} has odd length, invalid hex"

    try:
        bytes.fromhex(hex_str)
    except ValueError:
        return False, f"{name} contains invalid hex characters"

    if expected_bytes is not None:
        actual_bytes = len(hex_str) // 2
        if actual_bytes != expected_bytes:
            return False, f"{name} must be {expected_bytes} bytes, got {actual_bytes}"

    return True, ""


# =============================================================================
# Composite Validators
# =============================================================================


def validate_bid(bidder: Any, bid_value: Any, salt: Any) -> Tuple[bool, str]:
    """Validate the (bidder, value, salt) tuple that identifies an escrow."""
    for valid, err in (
        validate_address(bidder, "bidder"),
        validate_bid_value(bid_value),
        validate_salt(salt),
    ):
        if not valid:
            return False, err
    return True, ""


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_bytes",
    "validate_address",
    "validate_hash",
    "validate_salt",
    "validate_integer",
    "validate_amount",
    "validate_bid_value",
    "validate_duration",
    "validate_token_id",
    "validate_hex_string",
    "validate_bid",
    "ADDRESS_SIZE",
    "HASH_SIZE",
    "SALT_SIZE",
    "MAX_AMOUNT",
    "MAX_BID_VALUE",
    "MAX_TIMESTAMP",
    "MAX_GENERATION_INDEX",
    "MAX_TOKEN_ID",
]
