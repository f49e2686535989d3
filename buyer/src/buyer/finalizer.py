"""
Finalize and broadcast seller-signed swap PSBTs.
"""

from __future__ import annotations

from hvcore.errors import (
    FinalizationError,
    IntentMismatch,
    InvalidRequest,
    PsbtSanityError,
)
from hvcore.models import SwapPolicy
from hvwallet.backends.base import UTXOSource
from hvwallet.wallet.psbt import Psbt, PsbtError
from hvwallet.wallet.signing import finalize_inputs
from loguru import logger

from buyer.verification import ReceiptSigner, SwapReceipt, verify_psbt_against_receipt


def check_psbt_sanity(psbt: Psbt, max_total_output_sats: int) -> None:
    """Structural limits every swap transaction must meet before it is broadcast."""
    if psbt.input_count < 1:
        raise PsbtSanityError("PSBT has no inputs")
    if psbt.output_count < 2:
        raise PsbtSanityError(f"PSBT must have at least 2 outputs, has {psbt.output_count}")
    total = psbt.total_output_value
    if total > max_total_output_sats:
        raise PsbtSanityError(
            f"Total output value {total} sats exceeds the limit of {max_total_output_sats} sats"
        )


class Finalizer:
    def __init__(
        self,
        source: UTXOSource,
        policy: SwapPolicy,
        receipt_signer: ReceiptSigner | None = None,
        require_receipt: bool = False,
    ):
        self.source = source
        self.policy = policy
        self.receipt_signer = receipt_signer
        self.require_receipt = require_receipt

    async def finalize_and_broadcast(
        self,
        psbt_base64: str,
        receipt: SwapReceipt | None = None,
        commitment: str | None = None,
    ) -> str:
        """
        Validate a fully signed PSBT, finalize every input and broadcast it.

        Returns the txid. Nothing is broadcast unless every check passes, and a
        rejected broadcast is never retried here.
        """
        try:
            psbt = Psbt.from_base64(psbt_base64)
        except PsbtError as e:
            raise FinalizationError(f"Could not decode PSBT: {e}") from e

        check_psbt_sanity(psbt, self.policy.max_total_output_sats)
        logger.info(
            f"PSBT details: {psbt.input_count} inputs, {psbt.output_count} outputs, "
            f"total: {psbt.total_output_value} sats"
        )

        self._verify_receipt(psbt, receipt, commitment)
        finalize_inputs(psbt)

        try:
            tx = psbt.extract_transaction()
        except PsbtError as e:
            raise FinalizationError(str(e)) from e
        txid = tx.txid().hex()
        broadcast_txid = await self.source.broadcast(tx.serialize().hex())
        if broadcast_txid and broadcast_txid != txid:
            logger.warning(f"Broadcast returned txid {broadcast_txid}, expected {txid}")
        logger.info(f"Transaction broadcast: {txid}")
        return txid

    def _verify_receipt(
        self, psbt: Psbt, receipt: SwapReceipt | None, commitment: str | None
    ) -> None:
        if receipt is None and commitment is None:
            if self.require_receipt:
                raise IntentMismatch("A build receipt is required to finalize")
            logger.warning("Finalizing without a build receipt; outputs are not checked")
            return
        if receipt is None or commitment is None:
            raise InvalidRequest("Receipt and commitment must be supplied together")
        if self.receipt_signer is None:
            raise IntentMismatch("Cannot verify receipts without an operator key")

        self.receipt_signer.verify(receipt, commitment)
        verify_psbt_against_receipt(psbt, receipt)
