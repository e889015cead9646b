"""
Custody — Ledger Processor for Locked Funds

An on-ledger state machine that holds funds in custody on behalf of a
cross-chain bridge. Depositors lock value into a custody account; release
is requested from, and authorized by, an external bridge service.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          CUSTODY PROCESSOR                               │
    │                                                                          │
    │  ENTRY POINTS                                                            │
    │    processor.py   Opcode dispatch, two-phase release, atomic commit      │
    │                                                                          │
    │  COLLABORATORS                                                           │
    │    transfer.py    Adapter over the host value-transfer primitive        │
    │    bridge.py      Release notifications and release authorization       │
    │    events.py      Typed notifications and the synchronous event bus     │
    │                                                                          │
    │  STATE                                                                   │
    │    codec.py       CustodyRecord, ReleaseRequest and instruction layouts │
    │    accounts.py    Account view and ownership validation                 │
    │    registry.py    Index of custody records for tooling                  │
    │                                                                          │
    │  INFRASTRUCTURE                                                          │
    │    hardening.py   Error taxonomy, validators, checked u64 arithmetic    │
    │    observability.py  Structured logging and correlation IDs             │
    │    config.py      YAML + environment configuration                      │
    │    host.py        In-memory host with all-or-nothing invocations        │
    │    scenario.py    YAML scenarios validated with JSON Schema             │
    │    cli.py         `custody` command line                                │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fail Closed: Every failure aborts the invocation with a typed error and
    leaves every account exactly as it was.

    Ownership Is Not Authority: Owning a custody account lets the processor
    write it. Moving funds out of it additionally requires a release
    authority capability.

    Checked Arithmetic: Locked funds never leave the u64 range.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"
__author__ = "Momentum"


def __getattr__(name):
    """Lazy import custody modules on first access."""

    # Codec exports
    if name in ("CustodyRecord", "ReleaseRequest", "ReleaseStatus", "OpCode",
                "Instruction", "InstructionCodec", "encode_record", "decode_record",
                "encode_release_request", "decode_release_request", "RECORD_SIZE"):
        from custody import codec
        return getattr(codec, name)

    # Error exports
    if name in ("CustodyError", "OwnershipError", "NotEnoughAccountsError",
                "InvalidInstructionError", "MalformedRecordError", "BalanceOverflowError",
                "BalanceUnderflowError", "TransferFailedError", "AuthorizationError",
                "ReleaseStateError"):
        from custody import hardening
        return getattr(hardening, name)

    # Processor exports
    if name in ("AccountInfo", "validate_ownership"):
        from custody import accounts
        return getattr(accounts, name)

    if name == "CustodyProcessor":
        from custody.processor import CustodyProcessor
        return CustodyProcessor

    if name in ("AuthorizationToken", "ReleaseAuthority", "Ed25519ReleaseAuthority",
                "BridgeSigner", "BridgeNotifier"):
        from custody import bridge
        return getattr(bridge, name)

    if name in ("EventBus", "FundsLocked", "ReleaseRequested", "BalanceReported",
                "ReleaseAuthorized"):
        from custody import events
        return getattr(events, name)

    # Tooling exports
    if name in ("InMemoryHost", "key_for"):
        from custody import host
        return getattr(host, name)

    if name == "CustodyRegistry":
        from custody.registry import CustodyRegistry
        return CustodyRegistry

    raise AttributeError(f"module 'custody' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Codec
    "CustodyRecord", "ReleaseRequest", "ReleaseStatus", "OpCode", "Instruction",
    "InstructionCodec", "encode_record", "decode_record", "encode_release_request",
    "decode_release_request", "RECORD_SIZE",
    # Errors
    "CustodyError", "OwnershipError", "NotEnoughAccountsError", "InvalidInstructionError",
    "MalformedRecordError", "BalanceOverflowError", "BalanceUnderflowError",
    "TransferFailedError", "AuthorizationError", "ReleaseStateError",
    # Processor
    "AccountInfo", "validate_ownership", "CustodyProcessor",
    "AuthorizationToken", "ReleaseAuthority", "Ed25519ReleaseAuthority",
    "BridgeSigner", "BridgeNotifier",
    "EventBus", "FundsLocked", "ReleaseRequested", "BalanceReported", "ReleaseAuthorized",
    # Tooling
    "InMemoryHost", "key_for", "CustodyRegistry",
]
