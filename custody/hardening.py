"""
Custody Validation and Hardening Module

Error taxonomy, input validators and bounded arithmetic for the custody
ledger processor. Every failure the processor can surface to the host is
a subclass of CustodyError and carries a stable error code.

Security Model:
    - All instruction payloads and account buffers are untrusted until validated
    - Identity comparisons use constant-time comparison
    - All balance arithmetic is checked against the u64 range
    - Errors abort the invocation; nothing is retried locally

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import hmac
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union


U64_MAX = (1 << 64) - 1
IDENTITY_SIZE = 32


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class CustodyError(Exception):
    """Base exception for every failure surfaced by the processor."""

    code = "custody_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class OwnershipError(CustodyError):
    """Account is not owned by the expected processor identity."""
    code = "ownership"

    def __init__(self, account_key: bytes, actual_owner: bytes, expected_owner: bytes):
        self.account_key = account_key
        self.actual_owner = actual_owner
        self.expected_owner = expected_owner
        super().__init__(
            f"account {account_key.hex()} is owned by {actual_owner.hex()}, "
            f"expected {expected_owner.hex()}"
        )


class NotEnoughAccountsError(CustodyError):
    """Caller supplied fewer accounts than the operation requires."""
    code = "not_enough_accounts"

    def __init__(self, required: int, supplied: int, operation: str = ""):
        self.required = required
        self.supplied = supplied
        self.operation = operation
        label = f"{operation} " if operation else ""
        super().__init__(f"{label}requires {required} accounts, got {supplied}")


class InvalidInstructionError(CustodyError):
    """Unknown opcode or malformed instruction payload."""
    code = "invalid_instruction"


class MalformedRecordError(CustodyError):
    """Stored bytes cannot be decoded as a record."""
    code = "malformed_record"


class BalanceOverflowError(CustodyError):
    """Balance would exceed the u64 range."""
    code = "balance_overflow"

    def __init__(self, balance: int, amount: int):
        self.balance = balance
        self.amount = amount
        super().__init__(f"adding {amount} to {balance} overflows u64")


class BalanceUnderflowError(CustodyError):
    """Release amount exceeds the funds held in custody."""
    code = "balance_underflow"

    def __init__(self, balance: int, amount: int):
        self.balance = balance
        self.amount = amount
        super().__init__(f"cannot release {amount}, only {balance} locked")


class TransferFailedError(CustodyError):
    """The host value-transfer primitive reported failure."""
    code = "transfer_failed"


class AuthorizationError(CustodyError):
    """Release authorization is missing or does not verify."""
    code = "unauthorized"


class ReleaseStateError(CustodyError):
    """Release request is not in a state that permits the operation."""
    code = "release_state"


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self, exc_type: type = InvalidInstructionError) -> None:
        """Raise the given CustodyError subclass if validation failed."""
        if not self.is_valid:
            raise exc_type("; ".join(self.errors))

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, *errors: str) -> 'ValidationResult':
        return cls(is_valid=False, errors=list(errors))


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX_PATTERN = re.compile(r'^[a-f0-9]*$')

    @classmethod
    def validate_identity(cls, value: Any, field_name: str = "identity") -> ValidationResult:
        """Validate a 32-byte identity given as bytes or hex string."""
        if isinstance(value, str):
            text = value.strip().lower()
            if text.startswith("0x"):
                text = text[2:]
            if not cls.HEX_PATTERN.match(text) or len(text) % 2:
                return ValidationResult.failure(f"{field_name}: not a hex string")
            value = bytes.fromhex(text)
        if not isinstance(value, (bytes, bytearray)):
            return ValidationResult.failure(
                f"{field_name}: expected bytes, got {type(value).__name__}"
            )
        if len(value) != IDENTITY_SIZE:
            return ValidationResult.failure(
                f"{field_name}: must be {IDENTITY_SIZE} bytes, got {len(value)}"
            )
        return ValidationResult.success(bytes(value))

    @classmethod
    def validate_u64(cls, value: Any, field_name: str = "amount") -> ValidationResult:
        """Validate an unsigned 64-bit integer."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure(
                f"{field_name}: expected int, got {type(value).__name__}"
            )
        if value < 0 or value > U64_MAX:
            return ValidationResult.failure(f"{field_name}: {value} outside u64 range")
        return ValidationResult.success(value)


def parse_identity(value: Union[str, bytes], field_name: str = "identity") -> bytes:
    """Parse an identity or raise InvalidInstructionError."""
    result = Validators.validate_identity(value, field_name)
    result.raise_if_invalid()
    return result.sanitized_value


# =============================================================================
# CHECKED ARITHMETIC
# =============================================================================

def checked_add_u64(balance: int, amount: int) -> int:
    """Add within u64 or raise BalanceOverflowError."""
    total = balance + amount
    if total > U64_MAX:
        raise BalanceOverflowError(balance, amount)
    return total


def checked_sub_u64(balance: int, amount: int) -> int:
    """Subtract within u64 or raise BalanceUnderflowError."""
    if amount > balance:
        raise BalanceUnderflowError(balance, amount)
    return balance - amount


# =============================================================================
# CRYPTO UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def sha256(*parts: bytes) -> bytes:
        """SHA256 over the concatenation of parts."""
        digest = hashlib.sha256()
        for part in parts:
            digest.update(part)
        return digest.digest()

    @staticmethod
    def short_hex(value: Optional[bytes], length: int = 8) -> str:
        """Abbreviated hex for log lines."""
        if not value:
            return ""
        return value.hex()[:length]
