"""
Swap PSBTs on top of embit's BIP-174 implementation.

The wrapper is append-only: inputs and outputs may only be added while no
input carries signature data. After the first signature only signatures and
final witnesses change. embit keeps unknown key/value pairs, so wallet-added
fields (including BIP-371 Taproot key signatures) survive a round trip.
"""

from __future__ import annotations

import base64
import binascii
from enum import Enum

from embit.base import EmbitError
from embit.ec import PublicKey
from embit.finalizer import finalize_psbt
from embit.psbt import PSBT, InputScope, OutputScope
from embit.script import Script, Witness
from embit.transaction import Transaction, TransactionInput, TransactionOutput

# BIP-371 key-path signature; embit leaves it in the input's unknown map
PSBT_IN_TAP_KEY_SIG = b"\x13"

# Errors embit raises from its parsers
_DECODE_ERRORS = (EmbitError, ValueError, TypeError, RuntimeError, IndexError)


class PsbtError(Exception):
    pass


class InputState(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"
    FINALIZED = "finalized"


def input_state(inp: InputScope) -> InputState:
    if inp.final_scriptwitness is not None or inp.final_scriptsig is not None:
        return InputState.FINALIZED
    if inp.partial_sigs or PSBT_IN_TAP_KEY_SIG in inp.unknown:
        return InputState.SIGNED
    return InputState.UNSIGNED


def parse_transaction(raw: bytes) -> Transaction:
    try:
        return Transaction.parse(raw)
    except _DECODE_ERRORS as e:
        raise PsbtError(f"Malformed transaction: {e}") from e


class Psbt:
    """A swap PSBT. ``psbt`` is the underlying :class:`embit.psbt.PSBT`."""

    def __init__(self, psbt: PSBT | None = None):
        if psbt is None:
            psbt = PSBT(unknown={})
            psbt.tx_version = 2
            psbt.locktime = 0
        self.psbt = psbt

    @property
    def inputs(self) -> list[InputScope]:
        return self.psbt.inputs

    @property
    def outputs(self) -> list[OutputScope]:
        return self.psbt.outputs

    @property
    def input_count(self) -> int:
        return len(self.psbt.inputs)

    @property
    def output_count(self) -> int:
        return len(self.psbt.outputs)

    @property
    def total_output_value(self) -> int:
        return sum(out.value for out in self.psbt.outputs)

    @property
    def is_locked(self) -> bool:
        """True once any input carries signature data."""
        return any(input_state(inp) != InputState.UNSIGNED for inp in self.psbt.inputs)

    def _check_unlocked(self) -> None:
        if self.is_locked:
            raise PsbtError("Inputs and outputs are fixed once signing has started")

    def txid(self) -> str:
        """Txid of the unsigned transaction; witnesses do not change it."""
        return self.psbt.tx.txid().hex()

    def outpoint(self, index: int) -> tuple[str, int]:
        inp = self.psbt.inputs[index]
        return inp.txid.hex(), inp.vout

    def add_input(
        self,
        txid: str,
        vout: int,
        prev_tx: bytes,
        sequence: int = 0xFFFFFFFF,
    ) -> int:
        """
        Append an input and return its index.

        ``prev_tx`` must hash to ``txid``. It is stored as the non-witness UTXO
        and the spent output is stored as the witness UTXO, since Taproot
        signers need both.
        """
        self._check_unlocked()
        if any(self.outpoint(i) == (txid, vout) for i in range(self.input_count)):
            raise PsbtError(f"Duplicate input {txid}:{vout}")

        parsed = parse_transaction(prev_tx)
        if parsed.txid().hex() != txid:
            raise PsbtError(f"Previous transaction hash mismatch: expected {txid}")
        if vout >= len(parsed.vout):
            raise PsbtError(f"Output {vout} does not exist in {txid}")

        inp = InputScope({}, vin=TransactionInput(bytes.fromhex(txid), vout, sequence=sequence))
        inp.non_witness_utxo = parsed
        inp.witness_utxo = parsed.vout[vout]
        self.psbt.inputs.append(inp)
        return self.input_count - 1

    def add_output(self, script_pubkey: bytes, value: int) -> int:
        self._check_unlocked()
        if value < 0:
            raise PsbtError(f"Negative output value: {value}")
        self.psbt.outputs.append(
            OutputScope({}, vout=TransactionOutput(value, Script(script_pubkey)))
        )
        return self.output_count - 1

    def spent_output(self, index: int) -> TransactionOutput:
        """The output consumed by input ``index``."""
        if index >= self.input_count:
            raise PsbtError(f"Input index {index} out of range")
        try:
            return self.psbt.utxo(index)
        except _DECODE_ERRORS as e:
            raise PsbtError(f"Input {index} has no UTXO information") from e

    def sighash(self, index: int, sighash_type: int) -> bytes:
        """BIP-143 or BIP-341 message for input ``index``, chosen by the spent script."""
        try:
            return self.psbt.sighash(index, sighash=sighash_type)
        except _DECODE_ERRORS as e:
            raise PsbtError(f"Cannot compute signature hash for input {index}: {e}") from e

    def tap_key_sig(self, index: int) -> bytes | None:
        return self.psbt.inputs[index].unknown.get(PSBT_IN_TAP_KEY_SIG)

    def final_witness(self, index: int) -> list[bytes] | None:
        witness = self.psbt.inputs[index].final_scriptwitness
        return None if witness is None else list(witness.items)

    def add_partial_signature(self, index: int, pubkey: bytes, signature: bytes) -> None:
        try:
            key = PublicKey.parse(pubkey)
        except _DECODE_ERRORS as e:
            raise PsbtError(f"Invalid public key: {e}") from e
        self.psbt.inputs[index].partial_sigs[key] = signature

    def partial_signatures(self, index: int) -> dict[bytes, bytes]:
        return {pub.sec(): sig for pub, sig in self.psbt.inputs[index].partial_sigs.items()}

    def set_final_witness(self, index: int, stack: list[bytes]) -> None:
        inp = self.psbt.inputs[index]
        inp.final_scriptwitness = Witness(stack)
        inp.partial_sigs.clear()
        inp.sighash_type = None
        inp.unknown.pop(PSBT_IN_TAP_KEY_SIG, None)

    def extract_transaction(self) -> Transaction:
        """Build the network transaction. Every input must be finalized."""
        for index, inp in enumerate(self.psbt.inputs):
            if input_state(inp) != InputState.FINALIZED:
                raise PsbtError(f"Input {index} is not finalized")
        tx = finalize_psbt(self.psbt)
        if tx is None:
            raise PsbtError("Transaction could not be extracted")
        return tx

    def serialize(self) -> bytes:
        return self.psbt.serialize()

    def to_base64(self) -> str:
        return self.psbt.to_base64()

    def to_hex(self) -> str:
        return self.serialize().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> Psbt:
        try:
            parsed = PSBT.parse(data)
        except _DECODE_ERRORS as e:
            raise PsbtError(f"Malformed PSBT: {e}") from e

        for index, inp in enumerate(parsed.inputs):
            if inp.txid is None or inp.vout is None:
                raise PsbtError(f"Input {index} has no outpoint")
            if inp.non_witness_utxo is not None and inp.non_witness_utxo.txid() != inp.txid:
                raise PsbtError(f"Input {index}: previous transaction hash mismatch")
        return cls(parsed)

    @classmethod
    def from_base64(cls, psbt_b64: str) -> Psbt:
        try:
            data = base64.b64decode(psbt_b64.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise PsbtError(f"PSBT is not valid base64: {e}") from e
        return cls.from_bytes(data)

    @classmethod
    def from_hex(cls, psbt_hex: str) -> Psbt:
        try:
            data = bytes.fromhex(psbt_hex.strip())
        except ValueError as e:
            raise PsbtError(f"PSBT is not valid hex: {e}") from e
        return cls.from_bytes(data)
