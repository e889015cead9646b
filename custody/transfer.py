"""
Fund Transfer Adapter

Wraps the host value-transfer primitive. The primitive is assumed atomic
and failure-reporting: it signals failure by raising or by returning
False; any other return value, None included, is success. Every failure
surfaces as TransferFailedError.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from custody.accounts import AccountInfo
from custody.hardening import CryptoUtils, TransferFailedError
from custody.observability import LedgerLayer, get_logger

logger = get_logger("transfer", LedgerLayer.TRANSFER)

TransferPrimitive = Callable[[AccountInfo, AccountInfo, int], Optional[Any]]


class FundTransferAdapter:
    """Moves value between accounts through the host primitive."""

    def __init__(self, primitive: TransferPrimitive):
        self._primitive = primitive

    def transfer(self, source: AccountInfo, destination: AccountInfo, amount: int) -> None:
        context = dict(
            source=CryptoUtils.short_hex(source.key),
            destination=CryptoUtils.short_hex(destination.key),
            amount=amount,
        )
        try:
            result = self._primitive(source, destination, amount)
        except TransferFailedError:
            raise
        except Exception as e:
            logger.error("Transfer primitive failed", error_code=TransferFailedError.code, **context)
            raise TransferFailedError(f"transfer of {amount} failed: {e}") from e

        if result is False:
            logger.error("Transfer primitive rejected", error_code=TransferFailedError.code, **context)
            raise TransferFailedError(f"transfer of {amount} rejected by host")

        logger.debug("Transfer executed", operation="transfer", **context)
