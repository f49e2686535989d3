"""
Tests for operator signing, seller signature checks and finalization.
"""

from __future__ import annotations

import pytest
from coincurve import PrivateKey
from embit.script import Script, Witness
from embit.transaction import Transaction, TransactionInput, TransactionOutput

from hvcore.errors import FinalizationError, SignatureValidationFailed
from hvcore.models import NetworkType
from hvwallet.wallet.keys import OperatorKey
from hvwallet.wallet.psbt import PSBT_IN_TAP_KEY_SIG, InputState, Psbt, input_state
from hvwallet.wallet.signing import (
    SIGHASH_ALL,
    SIGHASH_DEFAULT,
    finalize_inputs,
    sign_operator_inputs,
    sign_p2wpkh_input,
    verify_p2wpkh_signature,
    verify_taproot_signature,
)

OPERATOR = OperatorKey(PrivateKey(b"\x11" * 32), NetworkType.TESTNET)
SELLER = PrivateKey(b"\x22" * 32)
SELLER_SCRIPT = b"\x51\x20" + SELLER.public_key.format()[1:]


def prev_tx(script: bytes, value: int, seed: int) -> Transaction:
    return Transaction(
        vin=[TransactionInput(bytes.fromhex(f"{seed:064x}"), 0)],
        vout=[TransactionOutput(value, Script(script))],
    )


def swap_psbt() -> Psbt:
    """Operator input 0, seller Taproot input 1."""
    psbt = Psbt()
    for tx in (prev_tx(OPERATOR.script_pubkey, 50_000, 1), prev_tx(SELLER_SCRIPT, 546, 2)):
        psbt.add_input(tx.txid().hex(), 0, tx.serialize())
    psbt.add_output(SELLER_SCRIPT, 600)
    psbt.add_output(OPERATOR.script_pubkey, 546)
    psbt.add_output(OPERATOR.script_pubkey, 6_000)
    psbt.add_output(OPERATOR.script_pubkey, 41_900)
    return psbt


def sign_seller(psbt: Psbt, index: int, sighash_type: int = SIGHASH_DEFAULT) -> bytes:
    signature = SELLER.sign_schnorr(psbt.sighash(index, sighash_type))
    if sighash_type != SIGHASH_DEFAULT:
        signature += bytes([sighash_type])
    return signature


class TestSighash:
    def test_p2wpkh_commits_to_spent_value(self) -> None:
        psbt = swap_psbt()
        before = psbt.sighash(0, SIGHASH_ALL)
        psbt.inputs[0].witness_utxo = TransactionOutput(50_001, Script(OPERATOR.script_pubkey))
        assert psbt.sighash(0, SIGHASH_ALL) != before

    def test_taproot_default_and_all_differ(self) -> None:
        psbt = swap_psbt()
        assert psbt.sighash(1, SIGHASH_DEFAULT) != psbt.sighash(1, SIGHASH_ALL)


class TestOperatorSigning:
    def test_signs_only_requested_inputs(self) -> None:
        psbt = swap_psbt()
        sign_operator_inputs(psbt, OPERATOR, [0])

        signature = psbt.partial_signatures(0)[OPERATOR.pubkey]
        assert signature[-1] == SIGHASH_ALL
        assert verify_p2wpkh_signature(psbt, 0, OPERATOR.pubkey, signature)
        assert input_state(psbt.inputs[0]) == InputState.SIGNED
        assert input_state(psbt.inputs[1]) == InputState.UNSIGNED

    def test_signature_commits_to_outputs(self) -> None:
        psbt = swap_psbt()
        signature = sign_p2wpkh_input(psbt, 0, OPERATOR)

        psbt.outputs[0].value += 1
        assert not verify_p2wpkh_signature(psbt, 0, OPERATOR.pubkey, signature)

    def test_requires_sighash_all_byte(self) -> None:
        psbt = swap_psbt()
        signature = sign_p2wpkh_input(psbt, 0, OPERATOR)
        assert not verify_p2wpkh_signature(psbt, 0, OPERATOR.pubkey, signature[:-1] + b"\x03")
        assert not verify_p2wpkh_signature(psbt, 0, OPERATOR.pubkey, b"")

    def test_refuses_foreign_input(self) -> None:
        psbt = swap_psbt()
        with pytest.raises(SignatureValidationFailed):
            sign_operator_inputs(psbt, OPERATOR, [1])

    def test_wrong_key_refused(self) -> None:
        psbt = swap_psbt()
        other = OperatorKey(PrivateKey(b"\x33" * 32), NetworkType.TESTNET)
        with pytest.raises(SignatureValidationFailed):
            sign_operator_inputs(psbt, other, [0])


class TestTaprootVerification:
    def test_default_sighash(self) -> None:
        psbt = swap_psbt()
        signature = sign_seller(psbt, 1)
        assert len(signature) == 64
        assert verify_taproot_signature(psbt, 1, signature)

    def test_sighash_all(self) -> None:
        psbt = swap_psbt()
        signature = sign_seller(psbt, 1, SIGHASH_ALL)
        assert len(signature) == 65
        assert verify_taproot_signature(psbt, 1, signature)

    def test_explicit_default_byte_rejected(self) -> None:
        psbt = swap_psbt()
        signature = sign_seller(psbt, 1) + b"\x00"
        assert not verify_taproot_signature(psbt, 1, signature)

    def test_wrong_key(self) -> None:
        psbt = swap_psbt()
        signature = PrivateKey(b"\x44" * 32).sign_schnorr(psbt.sighash(1, SIGHASH_DEFAULT))
        assert not verify_taproot_signature(psbt, 1, signature)

    def test_not_a_taproot_input(self) -> None:
        psbt = swap_psbt()
        assert not verify_taproot_signature(psbt, 0, b"\x01" * 64)


class TestFinalizeInputs:
    def test_finalize_fully_signed(self) -> None:
        psbt = swap_psbt()
        sign_operator_inputs(psbt, OPERATOR, [0])
        psbt.inputs[1].unknown[PSBT_IN_TAP_KEY_SIG] = sign_seller(psbt, 1)

        finalize_inputs(psbt)
        operator_witness = psbt.final_witness(0) or []
        assert len(operator_witness) == 2
        assert operator_witness[1] == OPERATOR.pubkey
        assert psbt.tap_key_sig(1) is None
        assert len(psbt.final_witness(1) or []) == 1

        tx = psbt.extract_transaction()
        assert tx.is_segwit
        assert tx.txid().hex() == psbt.txid()

    def test_accepts_wallet_finalized_taproot_input(self) -> None:
        psbt = swap_psbt()
        sign_operator_inputs(psbt, OPERATOR, [0])
        psbt.inputs[1].final_scriptwitness = Witness([sign_seller(psbt, 1)])

        finalize_inputs(psbt)
        assert input_state(psbt.inputs[1]) == InputState.FINALIZED

    def test_unsigned_seller_input(self) -> None:
        psbt = swap_psbt()
        sign_operator_inputs(psbt, OPERATOR, [0])
        with pytest.raises(FinalizationError, match="Input 1"):
            finalize_inputs(psbt)

    def test_invalid_seller_signature(self) -> None:
        psbt = swap_psbt()
        sign_operator_inputs(psbt, OPERATOR, [0])
        psbt.inputs[1].unknown[PSBT_IN_TAP_KEY_SIG] = b"\x01" * 64
        with pytest.raises(FinalizationError, match="invalid Taproot signature"):
            finalize_inputs(psbt)

    def test_missing_operator_signature(self) -> None:
        psbt = swap_psbt()
        psbt.inputs[1].unknown[PSBT_IN_TAP_KEY_SIG] = sign_seller(psbt, 1)
        with pytest.raises(FinalizationError, match="Input 0: missing signature"):
            finalize_inputs(psbt)

    def test_malformed_operator_witness(self) -> None:
        psbt = swap_psbt()
        psbt.set_final_witness(0, [b"\x30\x01"])
        with pytest.raises(FinalizationError, match="malformed P2WPKH witness"):
            finalize_inputs(psbt)

    def test_script_path_witness_rejected(self) -> None:
        psbt = swap_psbt()
        sign_operator_inputs(psbt, OPERATOR, [0])
        psbt.inputs[1].final_scriptwitness = Witness([b"\x01", b"\x02", b"\x03"])
        with pytest.raises(FinalizationError, match="key-path"):
            finalize_inputs(psbt)

    def test_unsupported_script_type(self) -> None:
        p2sh = bytes.fromhex("a914" + "00" * 20 + "87")
        funding = prev_tx(p2sh, 10_000, 6)
        psbt = Psbt()
        psbt.add_input(funding.txid().hex(), 0, funding.serialize())
        psbt.add_output(SELLER_SCRIPT, 9_000)
        with pytest.raises(FinalizationError, match="unsupported script type"):
            finalize_inputs(psbt)
