"""
Build receipts and pre-broadcast verification.

When a swap PSBT is built the operator records exactly which inputs it spends
and which outputs it creates, and authenticates that record with an HMAC keyed
from the operator secret. Before broadcasting, the signed PSBT that comes back
from the seller is checked against the receipt: same inputs in the same order,
same spent amounts, and byte-identical outputs. Anything else is refused.
"""

from __future__ import annotations

import hashlib
import hmac
import json

from hvcore.errors import IntentMismatch
from hvwallet.wallet.keys import OperatorKey
from hvwallet.wallet.psbt import Psbt, PsbtError
from loguru import logger
from pydantic import BaseModel, ConfigDict

RECEIPT_KEY_CONTEXT = b"harvy/swap-receipt/v1"


class ReceiptInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    txid: str
    vout: int
    value: int


class ReceiptOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    script_pubkey: str  # hex
    value: int


class SwapReceipt(BaseModel):
    """The inputs and outputs a built swap PSBT commits to."""

    model_config = ConfigDict(frozen=True)

    network: str
    inputs: list[ReceiptInput]
    outputs: list[ReceiptOutput]
    operator_sign_indices: list[int]
    seller_sign_indices: list[int]

    @classmethod
    def from_psbt(
        cls,
        psbt: Psbt,
        network: str,
        operator_sign_indices: list[int],
        seller_sign_indices: list[int],
    ) -> SwapReceipt:
        return cls(
            network=network,
            inputs=[
                ReceiptInput(
                    txid=psbt.outpoint(i)[0],
                    vout=psbt.outpoint(i)[1],
                    value=psbt.spent_output(i).value,
                )
                for i in range(psbt.input_count)
            ],
            outputs=[
                ReceiptOutput(script_pubkey=out.script_pubkey.data.hex(), value=out.value)
                for out in psbt.outputs
            ],
            operator_sign_indices=operator_sign_indices,
            seller_sign_indices=seller_sign_indices,
        )

    def canonical_bytes(self) -> bytes:
        return json.dumps(
            self.model_dump(mode="json"), sort_keys=True, separators=(",", ":")
        ).encode()


class ReceiptSigner:
    """HMAC-SHA256 commitments over receipts."""

    def __init__(self, key: bytes):
        self._key = key

    @classmethod
    def from_operator_key(cls, operator_key: OperatorKey) -> ReceiptSigner:
        secret = operator_key.private_key.secret
        return cls(hmac.new(secret, RECEIPT_KEY_CONTEXT, hashlib.sha256).digest())

    def commit(self, receipt: SwapReceipt) -> str:
        return hmac.new(self._key, receipt.canonical_bytes(), hashlib.sha256).hexdigest()

    def verify(self, receipt: SwapReceipt, commitment: str) -> None:
        expected = self.commit(receipt)
        if not hmac.compare_digest(expected, commitment.lower()):
            raise IntentMismatch("Receipt commitment is not valid for this operator")


def verify_psbt_against_receipt(psbt: Psbt, receipt: SwapReceipt) -> None:
    """
    Check that a PSBT spends and pays exactly what the receipt says.

    Raises IntentMismatch on the first difference.
    """
    if psbt.input_count != len(receipt.inputs):
        raise IntentMismatch(
            f"Input count {psbt.input_count} does not match receipt ({len(receipt.inputs)})"
        )
    if psbt.output_count != len(receipt.outputs):
        raise IntentMismatch(
            f"Output count {psbt.output_count} does not match receipt ({len(receipt.outputs)})"
        )

    for index, expected_in in enumerate(receipt.inputs):
        txid, vout = psbt.outpoint(index)
        if (txid, vout) != (expected_in.txid, expected_in.vout):
            raise IntentMismatch(
                f"Input {index} spends {txid}:{vout}, "
                f"receipt expects {expected_in.txid}:{expected_in.vout}"
            )
        try:
            spent_value = psbt.spent_output(index).value
        except PsbtError as e:
            raise IntentMismatch(f"Input {index} has no UTXO information") from e
        if spent_value != expected_in.value:
            raise IntentMismatch(
                f"Input {index} value {spent_value} does not match receipt ({expected_in.value})"
            )

    for index, (out, expected_out) in enumerate(zip(psbt.outputs, receipt.outputs)):
        if out.script_pubkey.data.hex() != expected_out.script_pubkey:
            raise IntentMismatch(f"Output {index} pays an unexpected script")
        if out.value != expected_out.value:
            raise IntentMismatch(
                f"Output {index} value {out.value} does not match receipt ({expected_out.value})"
            )

    logger.debug(
        f"PSBT matches receipt: {psbt.input_count} inputs, {psbt.output_count} outputs"
    )
