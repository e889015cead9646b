"""
Custody Bridge Protocol

Release of custody funds is a two-phase protocol between the processor
and an external bridge service:

    ┌──────────┐  UNLOCK (phase 1)   ┌──────────────┐
    │ Custody  │────────────────────▶│   Bridge     │
    │ account  │  ReleaseRequested   │   service    │
    └──────────┘                     └──────┬───────┘
         ▲                                  │ signs release digest
         │  finalize_release (phase 2)      │
         └──────────────────────────────────┘
                 AuthorizationToken

Phase 1 records a ReleaseRequest and notifies the bridge. Phase 2 only
proceeds when a ReleaseAuthority, handed to the processor as an explicit
capability, accepts the token for that exact request. Ownership of the
custody account never implies authority to release from it.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from custody.accounts import AccountInfo
from custody.codec import CustodyRecord, ReleaseRequest, encode_release_request
from custody.events import EventBus, ReleaseRequested
from custody.hardening import AuthorizationError, CryptoUtils, parse_identity
from custody.observability import LedgerLayer, get_logger

logger = get_logger("bridge", LedgerLayer.BRIDGE)

RELEASE_DOMAIN_TAG = b"custody-release-v1"


# =============================================================================
# BRIDGE NOTIFIER
# =============================================================================

class BridgeNotifier:
    """Signals the bridge service that a release was requested."""

    def __init__(self, bus: EventBus):
        self._bus = bus

    def notify_release_requested(
        self,
        custody: AccountInfo,
        bridge: AccountInfo,
        record: CustodyRecord,
        request: Optional[ReleaseRequest] = None,
    ) -> ReleaseRequested:
        event = ReleaseRequested(
            custody=custody.key.hex(),
            bridge=bridge.key.hex(),
            locked_funds=record.locked_funds,
        )
        if request is not None:
            event.amount = request.amount
            event.beneficiary = request.beneficiary.hex()
            event.nonce = request.nonce

        logger.info(
            "Release requested",
            operation="unlock",
            custody=CryptoUtils.short_hex(custody.key),
            bridge=CryptoUtils.short_hex(bridge.key),
            amount=event.amount,
            nonce=event.nonce,
        )
        self._bus.publish(event)
        return event


# =============================================================================
# AUTHORIZATION
# =============================================================================

@dataclass(frozen=True)
class AuthorizationToken:
    """
    Proof from the bridge service that a specific release is approved.

    The processor treats it as opaque; only a ReleaseAuthority interprets it.
    """
    signer: bytes
    signature: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"signer": self.signer.hex(), "signature": self.signature.hex()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthorizationToken':
        return cls(
            signer=bytes.fromhex(data["signer"]),
            signature=bytes.fromhex(data["signature"]),
        )


def release_digest(custody_key: bytes, request: ReleaseRequest) -> bytes:
    """Digest that binds an authorization to one custody account and one request."""
    return CryptoUtils.sha256(RELEASE_DOMAIN_TAG, custody_key, encode_release_request(request))


class ReleaseAuthority(ABC):
    """Capability that decides whether a release may proceed."""

    @abstractmethod
    def verify(self, custody_key: bytes, request: ReleaseRequest, token: AuthorizationToken) -> None:
        """Raise AuthorizationError unless `token` authorizes `request`."""


class Ed25519ReleaseAuthority(ReleaseAuthority):
    """Accepts tokens signed by one trusted bridge Ed25519 key."""

    def __init__(self, public_key: bytes):
        self.public_key_bytes = parse_identity(public_key, "authority_public_key")
        self._public_key = Ed25519PublicKey.from_public_bytes(self.public_key_bytes)

    @classmethod
    def from_hex(cls, public_key_hex: str) -> 'Ed25519ReleaseAuthority':
        return cls(parse_identity(public_key_hex, "authority_public_key"))

    def verify(self, custody_key: bytes, request: ReleaseRequest, token: AuthorizationToken) -> None:
        if not CryptoUtils.secure_compare(token.signer, self.public_key_bytes):
            raise AuthorizationError(f"token signed by untrusted key {token.signer.hex()}")
        try:
            self._public_key.verify(token.signature, release_digest(custody_key, request))
        except InvalidSignature:
            raise AuthorizationError("release signature does not verify") from None


class BridgeSigner:
    """Bridge-side helper that issues tokens; used by tooling and tests."""

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None):
        self._private_key = private_key or Ed25519PrivateKey.generate()

    @property
    def public_key(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def authority(self) -> Ed25519ReleaseAuthority:
        return Ed25519ReleaseAuthority(self.public_key)

    def authorize(self, custody_key: bytes, request: ReleaseRequest) -> AuthorizationToken:
        signature = self._private_key.sign(release_digest(custody_key, request))
        return AuthorizationToken(signer=self.public_key, signature=signature)
