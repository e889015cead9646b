"""
Custody Instruction Processor

The single entry point the host invokes once per external call.

Pipeline:

    accounts[0] ──▶ validate_ownership ──▶ decode_record ──▶ opcode dispatch
                                                               │
                  ┌────────────────────┬───────────────────────┤
                  ▼                    ▼                       ▼
                LOCK                 UNLOCK                  CHECK
          transfer adapter      bridge notifier         balance report
                  │                    │                       │
                  └────────────────────┴───────────┬───────────┘
                                                   ▼
                                 encode + commit ──▶ notifications

Nothing is written until every check and external call of the invocation
has succeeded; notifications are published only after the commit.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from custody.accounts import AccountInfo, require_accounts, validate_ownership
from custody.bridge import (
    AuthorizationToken,
    BridgeNotifier,
    Ed25519ReleaseAuthority,
    ReleaseAuthority,
)
from custody.codec import (
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
from custody.events import BalanceReported, EventBus, FundsLocked, ReleaseAuthorized
from custody.hardening import (
    AuthorizationError,
    CryptoUtils,
    CustodyError,
    InvalidInstructionError,
    ReleaseStateError,
    checked_add_u64,
    checked_sub_u64,
    parse_identity,
)
from custody.observability import (
    LedgerLayer,
    correlation_id_var,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
    timed_operation,
)
from custody.transfer import FundTransferAdapter, TransferPrimitive

logger = get_logger("processor", LedgerLayer.PROCESSOR)


@dataclass
class _Effects:
    """Pending writes and deferred notifications of one invocation."""
    record: CustodyRecord
    writes: List[Tuple[AccountInfo, bytes]] = field(default_factory=list)
    notifications: List[Callable[[], object]] = field(default_factory=list)


class CustodyProcessor:
    """
    Opcode-dispatched custody state machine.

    Example:
        host = InMemoryHost()
        processor = CustodyProcessor(program_id, transfer=host.transfer)
        host.invoke(processor, [custody_key, depositor_key], InstructionCodec.lock(500))

    `release_authority` is the capability that gates the second phase of a
    release. Without it, finalize_release always raises AuthorizationError.
    """

    def __init__(
        self,
        program_id: bytes,
        transfer: TransferPrimitive,
        bus: Optional[EventBus] = None,
        release_authority: Optional[ReleaseAuthority] = None,
        allow_trailing_bytes: bool = True,
    ):
        self.program_id = parse_identity(program_id, "program_id")
        self.bus = bus or EventBus()
        self._transfer = FundTransferAdapter(transfer)
        self._notifier = BridgeNotifier(self.bus)
        self._release_authority = release_authority
        self._allow_trailing_bytes = allow_trailing_bytes
        self._handlers: Dict[OpCode, Callable[..., _Effects]] = {
            OpCode.LOCK: self._lock,
            OpCode.UNLOCK: self._unlock,
            OpCode.CHECK: self._check,
        }

    @classmethod
    def from_config(
        cls,
        transfer: TransferPrimitive,
        bus: Optional[EventBus] = None,
    ) -> 'CustodyProcessor':
        """Build a processor from the active custody configuration."""
        from custody.config import get_config

        config = get_config()
        authority_key = config.bridge.authority_public_key.get()
        return cls(
            program_id=config.processor.program_id.get(),
            transfer=transfer,
            bus=bus,
            release_authority=Ed25519ReleaseAuthority.from_hex(authority_key) if authority_key else None,
            allow_trailing_bytes=config.processor.allow_trailing_bytes.get(),
        )

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    @timed_operation(logger, "process_instruction")
    def process_instruction(
        self,
        program_id: bytes,
        accounts: Sequence[AccountInfo],
        data: bytes,
    ) -> CustodyRecord:
        """
        Validate, decode, dispatch and commit one instruction.

        Returns the committed custody record. Raises a CustodyError subclass
        with no account modified on any failure.
        """
        token = set_correlation_id(generate_correlation_id())
        try:
            require_accounts(accounts, 1, "instruction")
            custody = accounts[0]
            validate_ownership(custody, program_id)
            record = decode_record(custody.data)

            opcode = InstructionCodec.opcode(data)
            effects = self._handlers[opcode](program_id, accounts, record, data)

            self._commit(custody, effects)
            return effects.record
        except CustodyError as e:
            logger.warning(
                f"Instruction rejected: {e.message}",
                operation="process_instruction",
                error_code=e.code,
                custody=CryptoUtils.short_hex(accounts[0].key) if accounts else "",
            )
            raise
        finally:
            correlation_id_var.reset(token)

    @timed_operation(logger, "finalize_release")
    def finalize_release(
        self,
        program_id: bytes,
        accounts: Sequence[AccountInfo],
        authorization: AuthorizationToken,
    ) -> CustodyRecord:
        """
        Second phase of a release.

        Accounts: [custody, release request, beneficiary]. The pending request
        must name the beneficiary account and the release authority must
        accept `authorization` for that request.
        """
        token = set_correlation_id(generate_correlation_id())
        try:
            require_accounts(accounts, 3, "release")
            custody, slot, beneficiary = accounts[0], accounts[1], accounts[2]
            if CryptoUtils.secure_compare(beneficiary.key, custody.key):
                raise InvalidInstructionError("beneficiary must differ from the custody account")
            validate_ownership(custody, program_id)
            validate_ownership(slot, program_id)
            record = decode_record(custody.data)
            request = decode_release_request(slot.data)

            if self._release_authority is None:
                raise AuthorizationError("no release authority configured")
            if request.status != ReleaseStatus.PENDING:
                raise ReleaseStateError(f"release request is {request.status.name.lower()}, not pending")
            if not CryptoUtils.secure_compare(beneficiary.key, request.beneficiary):
                raise ReleaseStateError("beneficiary account does not match the release request")

            self._release_authority.verify(custody.key, request, authorization)
            remaining = checked_sub_u64(record.locked_funds, request.amount)
            self._transfer.transfer(custody, beneficiary, request.amount)

            released = replace(request, status=ReleaseStatus.RELEASED)
            effects = _Effects(
                record=record.with_locked_funds(remaining),
                writes=[(slot, encode_release_request(released))],
            )
            effects.notifications.append(lambda: self.bus.publish(ReleaseAuthorized(
                custody=custody.key.hex(),
                beneficiary=beneficiary.key.hex(),
                amount=request.amount,
                nonce=request.nonce,
                locked_funds=remaining,
            )))
            self._commit(custody, effects)
            logger.info(
                "Release finalized",
                operation="finalize_release",
                custody=CryptoUtils.short_hex(custody.key),
                amount=request.amount,
                locked_funds=remaining,
            )
            return effects.record
        except CustodyError as e:
            logger.warning(
                f"Release rejected: {e.message}",
                operation="finalize_release",
                error_code=e.code,
            )
            raise
        finally:
            correlation_id_var.reset(token)

    def _commit(self, custody: AccountInfo, effects: _Effects) -> None:
        """Write every pending buffer, then publish notifications."""
        custody.data[:] = encode_record(effects.record)
        for account, data in effects.writes:
            account.data[:] = data
        for notify in effects.notifications:
            notify()

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def _lock(
        self,
        program_id: bytes,
        accounts: Sequence[AccountInfo],
        record: CustodyRecord,
        data: bytes,
    ) -> _Effects:
        require_accounts(accounts, 2, "lock")
        custody, depositor = accounts[0], accounts[1]
        if CryptoUtils.secure_compare(depositor.key, custody.key):
            raise InvalidInstructionError("depositor must differ from the custody account")
        amount = InstructionCodec.parse(data, self._allow_trailing_bytes).amount

        locked_funds = checked_add_u64(record.locked_funds, amount)
        self._transfer.transfer(depositor, custody, amount)

        logger.info(
            "Funds locked",
            operation="lock",
            custody=CryptoUtils.short_hex(custody.key),
            depositor=CryptoUtils.short_hex(depositor.key),
            amount=amount,
            locked_funds=locked_funds,
        )
        effects = _Effects(record=record.with_locked_funds(locked_funds))
        effects.notifications.append(lambda: self.bus.publish(FundsLocked(
            custody=custody.key.hex(),
            depositor=depositor.key.hex(),
            amount=amount,
            locked_funds=locked_funds,
        )))
        return effects

    def _unlock(
        self,
        program_id: bytes,
        accounts: Sequence[AccountInfo],
        record: CustodyRecord,
        data: bytes,
    ) -> _Effects:
        require_accounts(accounts, 2, "unlock")
        custody, bridge = accounts[0], accounts[1]
        instruction = InstructionCodec.parse(data)
        effects = _Effects(record=record)
        request: Optional[ReleaseRequest] = None

        if instruction.amount is not None:
            require_accounts(accounts, 3, "unlock")
            slot = accounts[2]
            validate_ownership(slot, program_id)
            current = decode_release_request(slot.data)
            if not current.is_open_for_new_request:
                raise ReleaseStateError("a release request is already pending")
            if CryptoUtils.secure_compare(instruction.beneficiary, custody.key):
                raise InvalidInstructionError("beneficiary must differ from the custody account")
            if instruction.amount == 0 or instruction.amount > record.locked_funds:
                raise InvalidInstructionError(
                    f"release amount {instruction.amount} must be in 1..{record.locked_funds}"
                )
            request = ReleaseRequest(
                status=ReleaseStatus.PENDING,
                beneficiary=instruction.beneficiary,
                amount=instruction.amount,
                nonce=checked_add_u64(current.nonce, 1),
            )
            effects.writes.append((slot, encode_release_request(request)))

        effects.notifications.append(
            lambda: self._notifier.notify_release_requested(custody, bridge, record, request)
        )
        return effects

    def _check(
        self,
        program_id: bytes,
        accounts: Sequence[AccountInfo],
        record: CustodyRecord,
        data: bytes,
    ) -> _Effects:
        custody = accounts[0]
        logger.info(
            "Balance reported",
            operation="check",
            custody=CryptoUtils.short_hex(custody.key),
            locked_funds=record.locked_funds,
        )
        effects = _Effects(record=record)
        effects.notifications.append(lambda: self.bus.publish(BalanceReported(
            custody=custody.key.hex(),
            locked_funds=record.locked_funds,
        )))
        return effects
