"""
Custody State and Instruction Codecs

Binary layouts owned by the processor:

    CustodyRecord (40 bytes, unversioned):

        ┌──────────────────────────────┬──────────────┐
        │ owner (32)                   │ locked (8 LE)│
        └──────────────────────────────┴──────────────┘

    ReleaseRequest (50 bytes, versioned):

        ┌─────┬────────┬──────────────────────┬────────────┬───────────┐
        │ ver │ status │ beneficiary (32)     │ amount (8) │ nonce (8) │
        └─────┴────────┴──────────────────────┴────────────┴───────────┘

    Instruction payload:

        0x00 LOCK     [opcode][amount u64 LE]
        0x01 UNLOCK   [opcode]                               (notify only)
        0x01 UNLOCK   [opcode][amount u64 LE][beneficiary]   (release request)
        0x02 CHECK    [opcode]

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from custody.hardening import (
    IDENTITY_SIZE,
    InvalidInstructionError,
    MalformedRecordError,
    Validators,
)


# =============================================================================
# CUSTODY RECORD
# =============================================================================

_RECORD_STRUCT = struct.Struct("<32sQ")
RECORD_SIZE = _RECORD_STRUCT.size  # 40


@dataclass(frozen=True)
class CustodyRecord:
    """
    The custody state persisted in a custody account.

    `owner` is set when the host allocates the account and is never
    rewritten by the processor. `locked_funds` is the balance held in
    custody.
    """
    owner: bytes
    locked_funds: int = 0

    def __post_init__(self):
        Validators.validate_identity(self.owner, "owner").raise_if_invalid(MalformedRecordError)
        Validators.validate_u64(self.locked_funds, "locked_funds").raise_if_invalid(MalformedRecordError)

    @classmethod
    def empty(cls) -> 'CustodyRecord':
        """The zero-initialized record the host allocates."""
        return cls(owner=b'\x00' * IDENTITY_SIZE)

    def with_locked_funds(self, locked_funds: int) -> 'CustodyRecord':
        return CustodyRecord(owner=self.owner, locked_funds=locked_funds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner.hex(),
            "locked_funds": self.locked_funds,
        }


def encode_record(record: CustodyRecord) -> bytes:
    """Serialize a record into exactly RECORD_SIZE bytes."""
    return _RECORD_STRUCT.pack(record.owner, record.locked_funds)


def decode_record(data: Union[bytes, bytearray, memoryview]) -> CustodyRecord:
    """Deserialize a record, rejecting any buffer that is not RECORD_SIZE bytes."""
    if len(data) != RECORD_SIZE:
        raise MalformedRecordError(
            f"custody record must be {RECORD_SIZE} bytes, got {len(data)}"
        )
    owner, locked_funds = _RECORD_STRUCT.unpack(bytes(data))
    return CustodyRecord(owner=owner, locked_funds=locked_funds)


# =============================================================================
# RELEASE REQUEST
# =============================================================================

RELEASE_REQUEST_VERSION = 1
_RELEASE_STRUCT = struct.Struct("<BB32sQQ")
RELEASE_REQUEST_SIZE = _RELEASE_STRUCT.size  # 50


class ReleaseStatus(IntEnum):
    """Lifecycle of a release request slot."""
    EMPTY = 0
    PENDING = 1
    RELEASED = 2


@dataclass(frozen=True)
class ReleaseRequest:
    """A recorded request to release custody funds to a beneficiary."""
    status: ReleaseStatus = ReleaseStatus.EMPTY
    beneficiary: bytes = b'\x00' * IDENTITY_SIZE
    amount: int = 0
    nonce: int = 0

    def __post_init__(self):
        Validators.validate_identity(self.beneficiary, "beneficiary").raise_if_invalid(MalformedRecordError)
        Validators.validate_u64(self.amount, "amount").raise_if_invalid(MalformedRecordError)
        Validators.validate_u64(self.nonce, "nonce").raise_if_invalid(MalformedRecordError)

    @property
    def is_open_for_new_request(self) -> bool:
        return self.status in (ReleaseStatus.EMPTY, ReleaseStatus.RELEASED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.name.lower(),
            "beneficiary": self.beneficiary.hex(),
            "amount": self.amount,
            "nonce": self.nonce,
        }


def encode_release_request(request: ReleaseRequest) -> bytes:
    """Serialize a release request with its version byte."""
    return _RELEASE_STRUCT.pack(
        RELEASE_REQUEST_VERSION,
        int(request.status),
        request.beneficiary,
        request.amount,
        request.nonce,
    )


def decode_release_request(data: Union[bytes, bytearray, memoryview]) -> ReleaseRequest:
    """
    Deserialize a release request.

    A zero-filled buffer is a freshly allocated slot and decodes as an
    empty request.
    """
    if len(data) != RELEASE_REQUEST_SIZE:
        raise MalformedRecordError(
            f"release request must be {RELEASE_REQUEST_SIZE} bytes, got {len(data)}"
        )
    raw = bytes(data)
    if not any(raw):
        return ReleaseRequest()
    version, status, beneficiary, amount, nonce = _RELEASE_STRUCT.unpack(raw)
    if version != RELEASE_REQUEST_VERSION:
        raise MalformedRecordError(f"unsupported release request version {version}")
    try:
        status = ReleaseStatus(status)
    except ValueError:
        raise MalformedRecordError(f"unknown release status {status}") from None
    return ReleaseRequest(status=status, beneficiary=beneficiary, amount=amount, nonce=nonce)


# =============================================================================
# INSTRUCTIONS
# =============================================================================

class OpCode(IntEnum):
    """Custody processor opcodes."""
    LOCK = 0x00
    UNLOCK = 0x01
    CHECK = 0x02


_AMOUNT_STRUCT = struct.Struct("<Q")
LOCK_PAYLOAD_SIZE = 1 + _AMOUNT_STRUCT.size  # 9
UNLOCK_REQUEST_PAYLOAD_SIZE = LOCK_PAYLOAD_SIZE + IDENTITY_SIZE  # 41


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction payload."""
    opcode: OpCode
    amount: Optional[int] = None
    beneficiary: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"opcode": self.opcode.name.lower()}
        if self.amount is not None:
            data["amount"] = self.amount
        if self.beneficiary is not None:
            data["beneficiary"] = self.beneficiary.hex()
        return data


class InstructionCodec:
    """Builds and parses opcode-prefixed instruction payloads."""

    @staticmethod
    def lock(amount: int) -> bytes:
        Validators.validate_u64(amount).raise_if_invalid()
        return bytes([OpCode.LOCK]) + _AMOUNT_STRUCT.pack(amount)

    @staticmethod
    def unlock(amount: Optional[int] = None, beneficiary: Optional[bytes] = None) -> bytes:
        """
        Build an UNLOCK payload.

        Without arguments this is the bare notification form. With both an
        amount and a beneficiary it records a release request.
        """
        if amount is None and beneficiary is None:
            return bytes([OpCode.UNLOCK])
        if amount is None or beneficiary is None:
            raise InvalidInstructionError("release request needs both amount and beneficiary")
        Validators.validate_u64(amount).raise_if_invalid()
        Validators.validate_identity(beneficiary, "beneficiary").raise_if_invalid()
        return bytes([OpCode.UNLOCK]) + _AMOUNT_STRUCT.pack(amount) + bytes(beneficiary)

    @staticmethod
    def check() -> bytes:
        return bytes([OpCode.CHECK])

    @staticmethod
    def opcode(data: bytes) -> OpCode:
        """Read the opcode byte."""
        if not data:
            raise InvalidInstructionError("empty instruction payload")
        try:
            return OpCode(data[0])
        except ValueError:
            raise InvalidInstructionError(f"unknown opcode {data[0]}") from None

    @staticmethod
    def read_amount(data: bytes) -> int:
        """Read the u64 LE amount at bytes 1..9."""
        if len(data) < LOCK_PAYLOAD_SIZE:
            raise InvalidInstructionError(
                f"amount needs {LOCK_PAYLOAD_SIZE} payload bytes, got {len(data)}"
            )
        (amount,) = _AMOUNT_STRUCT.unpack_from(data, 1)
        return amount

    @classmethod
    def parse(cls, data: bytes, allow_trailing_bytes: bool = True) -> Instruction:
        """Decode a full instruction payload."""
        opcode = cls.opcode(data)

        if opcode == OpCode.LOCK:
            if not allow_trailing_bytes and len(data) > LOCK_PAYLOAD_SIZE:
                raise InvalidInstructionError(
                    f"lock payload must be {LOCK_PAYLOAD_SIZE} bytes, got {len(data)}"
                )
            return Instruction(opcode, amount=cls.read_amount(data))

        if opcode == OpCode.UNLOCK:
            if len(data) == 1:
                return Instruction(opcode)
            if len(data) != UNLOCK_REQUEST_PAYLOAD_SIZE:
                raise InvalidInstructionError(
                    f"unlock payload must be 1 or {UNLOCK_REQUEST_PAYLOAD_SIZE} bytes, got {len(data)}"
                )
            return Instruction(
                opcode,
                amount=cls.read_amount(data),
                beneficiary=bytes(data[LOCK_PAYLOAD_SIZE:]),
            )

        return Instruction(opcode)

    @classmethod
    def describe(cls, data: bytes) -> Dict[str, Any]:
        """Human-readable decoding for tooling."""
        described = cls.parse(data).to_dict()
        described["size"] = len(data)
        return described
