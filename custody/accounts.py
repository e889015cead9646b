"""
Account views and the Account Validator.

The host hands the processor an ordered list of AccountInfo views. The
processor reads ownership metadata from them and writes only the data
buffers of accounts it owns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from custody.hardening import (
    CryptoUtils,
    NotEnoughAccountsError,
    OwnershipError,
)


@dataclass
class AccountInfo:
    """
    A host-supplied account.

    `data` is the mutable storage buffer; `balance` is the native value
    held by the account and only changes through the host transfer
    primitive.
    """
    key: bytes
    owner: bytes
    balance: int = 0
    data: bytearray = field(default_factory=bytearray)
    is_writable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.hex(),
            "owner": self.owner.hex(),
            "balance": self.balance,
            "data": bytes(self.data).hex(),
            "is_writable": self.is_writable,
        }


def validate_ownership(account: AccountInfo, program_id: bytes) -> None:
    """Raise OwnershipError unless `account` is owned by `program_id`."""
    if not CryptoUtils.secure_compare(account.owner, program_id):
        raise OwnershipError(account.key, account.owner, program_id)


def require_accounts(accounts: Sequence[AccountInfo], count: int, operation: str = "") -> None:
    """Raise NotEnoughAccountsError when fewer than `count` accounts were supplied."""
    if len(accounts) < count:
        raise NotEnoughAccountsError(count, len(accounts), operation)
