"""
In-Memory Host

A deterministic stand-in for the execution environment that runs the
custody processor. It owns the account space, provides the value-transfer
primitive, and runs each invocation as an all-or-nothing unit:

    1. snapshot every account passed to the invocation
    2. run the processor entry point
    3. on any exception, restore the snapshots and re-raise
    4. reject data writes to accounts the program does not own

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from custody.accounts import AccountInfo
from custody.hardening import IDENTITY_SIZE, CryptoUtils, Validators
from custody.observability import LedgerLayer, get_logger

logger = get_logger("host", LedgerLayer.HOST)

SYSTEM_PROGRAM_ID = b'\x00' * IDENTITY_SIZE


# =============================================================================
# HOST ERRORS
# =============================================================================

class HostError(Exception):
    """Failure raised by the host itself, not by the processor."""
    pass


class UnknownAccountError(HostError):
    """No account with the given key exists."""
    pass


class InsufficientBalanceError(HostError):
    """Transfer source cannot cover the amount."""
    pass


class AccountNotWritableError(HostError):
    """An account was modified without write permission."""
    pass


@dataclass
class TransferRecord:
    """One executed call of the transfer primitive."""
    source: bytes
    destination: bytes
    amount: int


def key_for(name: str) -> bytes:
    """Deterministic 32-byte account key for a human-readable name."""
    return hashlib.sha256(name.encode("utf-8")).digest()


# =============================================================================
# HOST
# =============================================================================

class InMemoryHost:
    """
    Account space plus the transfer primitive.

    Example:
        host = InMemoryHost()
        program_id = key_for("custody-program")
        custody = host.create_account(key_for("vault"), owner=program_id, space=40)
        alice = host.create_account(key_for("alice"), balance=1_000)
        processor = CustodyProcessor(program_id, transfer=host.transfer)
        host.invoke(processor, [custody.key, alice.key], InstructionCodec.lock(500))
    """

    def __init__(self):
        self._accounts: Dict[bytes, AccountInfo] = {}
        self.transfers: List[TransferRecord] = []

    # -- account space --------------------------------------------------------

    def create_account(
        self,
        key: bytes,
        owner: bytes = SYSTEM_PROGRAM_ID,
        balance: int = 0,
        space: int = 0,
        data: Optional[bytes] = None,
        is_writable: bool = True,
    ) -> AccountInfo:
        """Allocate an account with zero-filled storage of `space` bytes."""
        Validators.validate_identity(key, "key").raise_if_invalid(ValueError)
        Validators.validate_identity(owner, "owner").raise_if_invalid(ValueError)
        Validators.validate_u64(balance, "balance").raise_if_invalid(ValueError)
        if key in self._accounts:
            raise HostError(f"account {key.hex()} already exists")

        storage = bytearray(data) if data is not None else bytearray(space)
        account = AccountInfo(
            key=key,
            owner=owner,
            balance=balance,
            data=storage,
            is_writable=is_writable,
        )
        self._accounts[key] = account
        logger.debug(
            "Account created",
            operation="create_account",
            key=CryptoUtils.short_hex(key),
            owner=CryptoUtils.short_hex(owner),
            space=len(storage),
        )
        return account

    def account(self, key: bytes) -> AccountInfo:
        try:
            return self._accounts[key]
        except KeyError:
            raise UnknownAccountError(f"unknown account {key.hex()}") from None

    def accounts(self) -> Iterable[AccountInfo]:
        return list(self._accounts.values())

    def close_account(self, key: bytes) -> AccountInfo:
        """Reclaim an account; the record it held is gone with it."""
        account = self.account(key)
        del self._accounts[key]
        return account

    # -- transfer primitive -----------------------------------------------------

    def transfer(self, source: AccountInfo, destination: AccountInfo, amount: int) -> None:
        """Move `amount` of native balance between two accounts."""
        if not source.is_writable or not destination.is_writable:
            raise AccountNotWritableError("transfer accounts must be writable")
        if amount < 0:
            raise HostError(f"negative transfer amount {amount}")
        if source.balance < amount:
            raise InsufficientBalanceError(
                f"account {source.key.hex()} holds {source.balance}, needs {amount}"
            )
        source.balance -= amount
        destination.balance += amount
        self.transfers.append(TransferRecord(source.key, destination.key, amount))

    # -- invocation ------------------------------------------------------------

    def invoke(self, processor: Any, keys: Sequence[bytes], data: bytes) -> Any:
        """Run one instruction against the accounts named by `keys`."""
        return self._run_atomically(
            processor.program_id,
            keys,
            lambda accounts: processor.process_instruction(processor.program_id, accounts, data),
        )

    def invoke_release(self, processor: Any, keys: Sequence[bytes], authorization: Any) -> Any:
        """Run the second phase of a release against the accounts named by `keys`."""
        return self._run_atomically(
            processor.program_id,
            keys,
            lambda accounts: processor.finalize_release(processor.program_id, accounts, authorization),
        )

    def _run_atomically(
        self,
        program_id: bytes,
        keys: Sequence[bytes],
        entry_point: Callable[[List[AccountInfo]], Any],
    ) -> Any:
        accounts = [self.account(k) for k in keys]
        snapshots = self._snapshot(accounts)
        transfer_mark = len(self.transfers)

        try:
            result = entry_point(accounts)
            self._enforce_data_ownership(program_id, accounts, snapshots)
        except Exception:
            self._restore(snapshots)
            del self.transfers[transfer_mark:]
            raise

        return result

    @staticmethod
    def _snapshot(accounts: Sequence[AccountInfo]) -> Dict[bytes, Tuple[AccountInfo, int, bytes]]:
        return {a.key: (a, a.balance, bytes(a.data)) for a in accounts}

    @staticmethod
    def _restore(snapshots: Dict[bytes, Tuple[AccountInfo, int, bytes]]) -> None:
        for account, balance, data in snapshots.values():
            account.balance = balance
            account.data[:] = data

    @staticmethod
    def _enforce_data_ownership(
        program_id: bytes,
        accounts: Sequence[AccountInfo],
        snapshots: Dict[bytes, Tuple[AccountInfo, int, bytes]],
    ) -> None:
        for account in accounts:
            _, _, before = snapshots[account.key]
            if bytes(account.data) == before:
                continue
            if account.owner != program_id or not account.is_writable:
                raise AccountNotWritableError(
                    f"program {program_id.hex()} may not write account {account.key.hex()}"
                )
