"""
Two-phase release tests.

Phase 1: UNLOCK with an amount and beneficiary records a pending
ReleaseRequest in a processor-owned slot and notifies the bridge.
Phase 2: finalize_release moves funds only with a token the release
authority accepts.

Run with: pytest tests/test_release.py -v
"""

import pytest

from custody.bridge import (
    AuthorizationToken,
    BridgeSigner,
    Ed25519ReleaseAuthority,
    release_digest,
)
from custody.codec import (
    InstructionCodec,
    ReleaseRequest,
    ReleaseStatus,
    decode_record,
    decode_release_request,
    encode_release_request,
)
from custody.events import ReleaseAuthorized, ReleaseRequested
from custody.hardening import (
    AuthorizationError,
    InvalidInstructionError,
    NotEnoughAccountsError,
    OwnershipError,
    ReleaseStateError,
)
from custody.host import key_for
from custody.processor import CustodyProcessor


@pytest.fixture
def signer():
    return BridgeSigner()


@pytest.fixture
def release_processor(host, program_id, bus, signer):
    return CustodyProcessor(
        program_id,
        transfer=host.transfer,
        bus=bus,
        release_authority=signer.authority(),
    )


@pytest.fixture
def funded(host, release_processor, custody_account, depositor):
    """Custody account holding 600 locked by the depositor."""
    host.invoke(release_processor, [custody_account.key, depositor.key], InstructionCodec.lock(600))
    return custody_account


def _request(host, processor, custody, bridge, slot, beneficiary, amount):
    return host.invoke(
        processor,
        [custody.key, bridge.key, slot.key],
        InstructionCodec.unlock(amount, beneficiary.key),
    )


def _locked(account):
    return decode_record(account.data).locked_funds


class TestReleaseRequest:
    """Phase 1: recording a release request."""

    def test_records_pending_request(self, host, release_processor, funded, bridge_account, release_slot, depositor, recorder):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)

        request = decode_release_request(release_slot.data)
        assert request.status == ReleaseStatus.PENDING
        assert request.amount == 200
        assert request.beneficiary == depositor.key
        assert request.nonce == 1
        assert _locked(funded) == 600

        events = recorder.of_type(ReleaseRequested)
        assert events[-1].amount == 200
        assert events[-1].beneficiary == depositor.key.hex()
        assert events[-1].nonce == 1

    def test_one_pending_request_at_a_time(self, host, release_processor, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 100)
        before = bytes(release_slot.data)

        with pytest.raises(ReleaseStateError):
            _request(host, release_processor, funded, bridge_account, release_slot, depositor, 50)
        assert bytes(release_slot.data) == before

    @pytest.mark.parametrize("amount", [0, 601])
    def test_amount_must_be_covered(self, host, release_processor, funded, bridge_account, release_slot, depositor, amount):
        with pytest.raises(InvalidInstructionError):
            _request(host, release_processor, funded, bridge_account, release_slot, depositor, amount)
        assert decode_release_request(release_slot.data).status == ReleaseStatus.EMPTY

    def test_custody_cannot_be_beneficiary(self, host, release_processor, funded, bridge_account, release_slot):
        with pytest.raises(InvalidInstructionError):
            _request(host, release_processor, funded, bridge_account, release_slot, funded, 100)
        assert decode_release_request(release_slot.data).status == ReleaseStatus.EMPTY

    def test_requires_slot_account(self, host, release_processor, funded, bridge_account, depositor):
        with pytest.raises(NotEnoughAccountsError):
            host.invoke(
                release_processor,
                [funded.key, bridge_account.key],
                InstructionCodec.unlock(10, depositor.key),
            )

    def test_slot_must_be_owned_by_processor(self, host, release_processor, funded, bridge_account, depositor):
        foreign_slot = host.create_account(key_for("foreign-slot"), space=50)
        with pytest.raises(OwnershipError):
            _request(host, release_processor, funded, bridge_account, foreign_slot, depositor, 10)


class TestFinalizeRelease:
    """Phase 2: authorized release."""

    def test_authorized_release_moves_funds(self, host, release_processor, signer, funded, bridge_account, release_slot, depositor, recorder):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)
        token = signer.authorize(funded.key, decode_release_request(release_slot.data))

        record = host.invoke_release(release_processor, [funded.key, release_slot.key, depositor.key], token)

        assert record.locked_funds == 400
        assert _locked(funded) == 400
        assert depositor.balance == 600
        assert funded.balance == 400
        assert decode_release_request(release_slot.data).status == ReleaseStatus.RELEASED

        authorized = recorder.of_type(ReleaseAuthorized)
        assert len(authorized) == 1
        assert authorized[0].amount == 200
        assert authorized[0].locked_funds == 400
        assert authorized[0].nonce == 1

    def test_replayed_token_rejected(self, host, release_processor, signer, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)
        token = signer.authorize(funded.key, decode_release_request(release_slot.data))
        keys = [funded.key, release_slot.key, depositor.key]
        host.invoke_release(release_processor, keys, token)

        with pytest.raises(ReleaseStateError):
            host.invoke_release(release_processor, keys, token)
        assert _locked(funded) == 400

    def test_next_request_gets_new_nonce(self, host, release_processor, signer, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 100)
        first = decode_release_request(release_slot.data)
        host.invoke_release(
            release_processor,
            [funded.key, release_slot.key, depositor.key],
            signer.authorize(funded.key, first),
        )

        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 100)
        second = decode_release_request(release_slot.data)
        assert second.nonce == 2
        assert release_digest(funded.key, first) != release_digest(funded.key, second)

        with pytest.raises(AuthorizationError):
            host.invoke_release(
                release_processor,
                [funded.key, release_slot.key, depositor.key],
                signer.authorize(funded.key, first),
            )

    def test_untrusted_signer_rejected(self, host, release_processor, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)
        forged = BridgeSigner().authorize(funded.key, decode_release_request(release_slot.data))
        before = (bytes(funded.data), bytes(release_slot.data), depositor.balance)

        with pytest.raises(AuthorizationError):
            host.invoke_release(release_processor, [funded.key, release_slot.key, depositor.key], forged)

        assert (bytes(funded.data), bytes(release_slot.data), depositor.balance) == before

    def test_token_bound_to_request_amount(self, host, release_processor, signer, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)
        pending = decode_release_request(release_slot.data)
        inflated = ReleaseRequest(
            status=pending.status,
            beneficiary=pending.beneficiary,
            amount=500,
            nonce=pending.nonce,
        )
        token = signer.authorize(funded.key, inflated)

        with pytest.raises(AuthorizationError):
            host.invoke_release(release_processor, [funded.key, release_slot.key, depositor.key], token)

    def test_token_bound_to_custody_account(self, host, release_processor, signer, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)
        token = signer.authorize(key_for("another-vault"), decode_release_request(release_slot.data))

        with pytest.raises(AuthorizationError):
            host.invoke_release(release_processor, [funded.key, release_slot.key, depositor.key], token)

    def test_beneficiary_must_match(self, host, release_processor, signer, funded, bridge_account, release_slot, depositor):
        _request(host, release_processor, funded, bridge_account, release_slot, depositor, 200)
        token = signer.authorize(funded.key, decode_release_request(release_slot.data))
        mallory = host.create_account(key_for("mallory"))

        with pytest.raises(ReleaseStateError):
            host.invoke_release(release_processor, [funded.key, release_slot.key, mallory.key], token)
        assert mallory.balance == 0

    def test_release_to_custody_account_rejected(self, host, release_processor, signer, funded, release_slot):
        pending = ReleaseRequest(status=ReleaseStatus.PENDING, beneficiary=funded.key, amount=100, nonce=1)
        release_slot.data[:] = encode_release_request(pending)
        token = signer.authorize(funded.key, pending)

        with pytest.raises(InvalidInstructionError):
            host.invoke_release(release_processor, [funded.key, release_slot.key, funded.key], token)

        assert _locked(funded) == 600
        assert decode_release_request(release_slot.data) == pending

    def test_nothing_pending(self, host, release_processor, signer, funded, release_slot, depositor):
        token = signer.authorize(funded.key, decode_release_request(release_slot.data))
        with pytest.raises(ReleaseStateError):
            host.invoke_release(release_processor, [funded.key, release_slot.key, depositor.key], token)

    def test_ownership_is_not_authority(self, host, processor, signer, custody_account, bridge_account, release_slot, depositor):
        host.invoke(processor, [custody_account.key, depositor.key], InstructionCodec.lock(300))
        _request(host, processor, custody_account, bridge_account, release_slot, depositor, 100)
        token = signer.authorize(custody_account.key, decode_release_request(release_slot.data))

        with pytest.raises(AuthorizationError):
            host.invoke_release(processor, [custody_account.key, release_slot.key, depositor.key], token)
        assert _locked(custody_account) == 300

    def test_requires_three_accounts(self, host, release_processor, signer, funded, release_slot):
        token = signer.authorize(funded.key, decode_release_request(release_slot.data))
        with pytest.raises(NotEnoughAccountsError):
            host.invoke_release(release_processor, [funded.key, release_slot.key], token)


class TestAuthority:
    """Release authority and token helpers."""

    def test_authority_from_hex(self, signer):
        authority = Ed25519ReleaseAuthority.from_hex(signer.public_key.hex())
        request = ReleaseRequest(status=ReleaseStatus.PENDING, beneficiary=b'\x01' * 32, amount=5, nonce=1)
        authority.verify(b'\x02' * 32, request, signer.authorize(b'\x02' * 32, request))

    def test_token_dict_round_trip(self, signer):
        request = ReleaseRequest(status=ReleaseStatus.PENDING, beneficiary=b'\x01' * 32, amount=5, nonce=1)
        token = signer.authorize(b'\x02' * 32, request)
        assert AuthorizationToken.from_dict(token.to_dict()) == token

    def test_corrupted_signature(self, signer):
        request = ReleaseRequest(status=ReleaseStatus.PENDING, beneficiary=b'\x01' * 32, amount=5, nonce=1)
        token = signer.authorize(b'\x02' * 32, request)
        corrupted = AuthorizationToken(
            signer=token.signer,
            signature=bytes([token.signature[0] ^ 0xFF]) + token.signature[1:],
        )
        with pytest.raises(AuthorizationError):
            signer.authority().verify(b'\x02' * 32, request, corrupted)
