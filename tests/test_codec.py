"""
Custody codec tests: record layout, release request layout and
instruction payloads.

Run with: pytest tests/test_codec.py -v
"""

import struct

import pytest

from custody.codec import (
    LOCK_PAYLOAD_SIZE,
    RECORD_SIZE,
    RELEASE_REQUEST_SIZE,
    UNLOCK_REQUEST_PAYLOAD_SIZE,
    CustodyRecord,
    InstructionCodec,
    OpCode,
    ReleaseRequest,
    ReleaseStatus,
    decode_record,
    decode_release_request,
    encode_record,
    encode_release_request,
)
from custody.hardening import U64_MAX, InvalidInstructionError, MalformedRecordError

OWNER = bytes(range(32))
BENEFICIARY = b'\xbb' * 32


class TestCustodyRecord:
    """Tests for the 40-byte custody record."""

    def test_layout_is_owner_then_little_endian_u64(self):
        encoded = encode_record(CustodyRecord(owner=OWNER, locked_funds=0x0102030405060708))
        assert len(encoded) == RECORD_SIZE == 40
        assert encoded[:32] == OWNER
        assert encoded[32:] == bytes([8, 7, 6, 5, 4, 3, 2, 1])

    @pytest.mark.parametrize("locked", [0, 1, 500, U64_MAX])
    def test_round_trip(self, locked):
        record = CustodyRecord(owner=OWNER, locked_funds=locked)
        assert decode_record(encode_record(record)) == record

    def test_zero_filled_storage_decodes_as_empty_record(self):
        assert decode_record(bytes(RECORD_SIZE)) == CustodyRecord.empty()

    @pytest.mark.parametrize("size", [0, 39, 41, 80])
    def test_wrong_length_is_malformed(self, size):
        with pytest.raises(MalformedRecordError):
            decode_record(bytes(size))

    def test_decode_accepts_bytearray(self):
        data = bytearray(encode_record(CustodyRecord(owner=OWNER, locked_funds=9)))
        assert decode_record(data).locked_funds == 9

    def test_out_of_range_values_rejected(self):
        with pytest.raises(MalformedRecordError):
            CustodyRecord(owner=OWNER, locked_funds=-1)
        with pytest.raises(MalformedRecordError):
            CustodyRecord(owner=OWNER, locked_funds=U64_MAX + 1)
        with pytest.raises(MalformedRecordError):
            CustodyRecord(owner=b'\x00' * 31)

    def test_with_locked_funds_keeps_owner(self):
        record = CustodyRecord(owner=OWNER, locked_funds=5).with_locked_funds(10)
        assert record.owner == OWNER
        assert record.locked_funds == 10


class TestReleaseRequest:
    """Tests for the versioned release request slot."""

    def test_zero_filled_slot_is_empty(self):
        request = decode_release_request(bytes(RELEASE_REQUEST_SIZE))
        assert request.status == ReleaseStatus.EMPTY
        assert request.is_open_for_new_request

    def test_round_trip_with_version_byte(self):
        request = ReleaseRequest(
            status=ReleaseStatus.PENDING,
            beneficiary=BENEFICIARY,
            amount=250,
            nonce=3,
        )
        encoded = encode_release_request(request)
        assert len(encoded) == RELEASE_REQUEST_SIZE == 50
        assert encoded[0] == 1
        assert encoded[1] == ReleaseStatus.PENDING
        assert decode_release_request(encoded) == request
        assert not request.is_open_for_new_request

    def test_unknown_version_rejected(self):
        raw = bytes([2, 1]) + BENEFICIARY + struct.pack("<QQ", 1, 1)
        with pytest.raises(MalformedRecordError):
            decode_release_request(raw)

    def test_unknown_status_rejected(self):
        raw = bytes([1, 9]) + bytes(48)
        with pytest.raises(MalformedRecordError):
            decode_release_request(raw)

    def test_wrong_length_rejected(self):
        with pytest.raises(MalformedRecordError):
            decode_release_request(bytes(RECORD_SIZE))


class TestInstructionCodec:
    """Tests for instruction payload building and parsing."""

    def test_lock_payload(self):
        payload = InstructionCodec.lock(500)
        assert payload == b'\x00' + (500).to_bytes(8, "little")
        assert len(payload) == LOCK_PAYLOAD_SIZE

    def test_lock_rejects_out_of_range_amount(self):
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.lock(-1)
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.lock(U64_MAX + 1)

    def test_simple_payloads(self):
        assert InstructionCodec.unlock() == b'\x01'
        assert InstructionCodec.check() == b'\x02'

    def test_release_request_payload(self):
        payload = InstructionCodec.unlock(200, BENEFICIARY)
        assert len(payload) == UNLOCK_REQUEST_PAYLOAD_SIZE
        instruction = InstructionCodec.parse(payload)
        assert instruction.opcode == OpCode.UNLOCK
        assert instruction.amount == 200
        assert instruction.beneficiary == BENEFICIARY

    def test_release_request_needs_both_fields(self):
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.unlock(amount=200)
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.unlock(beneficiary=BENEFICIARY)

    @pytest.mark.parametrize("opcode", [3, 4, 127, 255])
    def test_unknown_opcode(self, opcode):
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.opcode(bytes([opcode]))

    def test_empty_payload(self):
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.parse(b'')

    @pytest.mark.parametrize("size", [1, 2, 8])
    def test_short_lock_payload(self, size):
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.parse(InstructionCodec.lock(7)[:size])

    def test_trailing_bytes_policy(self):
        payload = InstructionCodec.lock(7) + b'\xff\xff'
        assert InstructionCodec.parse(payload).amount == 7
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.parse(payload, allow_trailing_bytes=False)

    @pytest.mark.parametrize("size", [2, 9, 40, 42])
    def test_unlock_accepts_only_two_lengths(self, size):
        payload = b'\x01' + bytes(size - 1)
        with pytest.raises(InvalidInstructionError):
            InstructionCodec.parse(payload)

    def test_describe(self):
        described = InstructionCodec.describe(InstructionCodec.lock(42))
        assert described == {"opcode": "lock", "amount": 42, "size": 9}
        assert InstructionCodec.describe(b'\x02') == {"opcode": "check", "size": 1}
