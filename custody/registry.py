"""
Custody Registry

An explicit index of custody records keyed by custody account identity,
for tooling that needs to enumerate or aggregate many custody accounts.
The registry is a read model: it never writes account storage.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from custody.accounts import AccountInfo, validate_ownership
from custody.codec import RECORD_SIZE, CustodyRecord, decode_record
from custody.hardening import CryptoUtils, parse_identity
from custody.observability import LedgerLayer, get_logger

logger = get_logger("registry", LedgerLayer.REGISTRY)


class CustodyRegistry:
    """Arena of CustodyRecords owned by one processor identity."""

    def __init__(self, program_id: bytes):
        self.program_id = parse_identity(program_id, "program_id")
        self._records: Dict[bytes, CustodyRecord] = {}

    def track(self, account: AccountInfo) -> CustodyRecord:
        """Validate and index one custody account. Raises on foreign or corrupt accounts."""
        validate_ownership(account, self.program_id)
        record = decode_record(account.data)
        self._records[account.key] = record
        return record

    def refresh(self, accounts: Iterable[AccountInfo]) -> int:
        """
        Re-index every custody account in `accounts`.

        Accounts owned by other programs, or whose storage is not a custody
        record, are skipped. Returns the number of records indexed.
        """
        records: Dict[bytes, CustodyRecord] = {}
        for account in accounts:
            if account.owner != self.program_id or len(account.data) != RECORD_SIZE:
                continue
            records[account.key] = decode_record(account.data)
        self._records = records
        logger.debug("Registry refreshed", operation="refresh", records=len(records))
        return len(records)

    def forget(self, key: bytes) -> bool:
        return self._records.pop(key, None) is not None

    def get(self, key: bytes) -> Optional[CustodyRecord]:
        return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __iter__(self) -> Iterator[Tuple[bytes, CustodyRecord]]:
        return iter(sorted(self._records.items()))

    def by_owner(self, owner: bytes) -> List[bytes]:
        """Custody account keys whose record names `owner`."""
        return sorted(
            key for key, record in self._records.items()
            if CryptoUtils.secure_compare(record.owner, owner)
        )

    def total_locked(self) -> int:
        """Sum of locked funds across indexed accounts (unbounded int)."""
        return sum(record.locked_funds for record in self._records.values())

    def snapshot(self) -> List[Dict[str, object]]:
        return [
            {"custody": key.hex(), **record.to_dict()}
            for key, record in self
        ]
