"""
Signing and signature verification for swap PSBTs.

- P2WPKH inputs: BIP-143 sighash, ECDSA via coincurve (operator side).
- P2TR key-path inputs: BIP-341 sighash, BIP-340 Schnorr verification
  (seller side; the seller's wallet does the signing).

Signature hashes come from embit. Only SIGHASH_ALL (and SIGHASH_DEFAULT for
Taproot) is accepted.
"""

from __future__ import annotations

from collections.abc import Iterable

from coincurve import PublicKey, PublicKeyXOnly
from embit.transaction import SIGHASH
from hvcore.errors import FinalizationError, SignatureValidationFailed
from loguru import logger

from hvwallet.wallet.address import is_p2tr, is_p2wpkh, p2wpkh_script
from hvwallet.wallet.keys import OperatorKey
from hvwallet.wallet.psbt import Psbt, PsbtError

SIGHASH_DEFAULT = SIGHASH.DEFAULT
SIGHASH_ALL = SIGHASH.ALL


def sign_p2wpkh_input(psbt: Psbt, input_index: int, key: OperatorKey) -> bytes:
    """Sign a P2WPKH input. Returns DER signature with SIGHASH_ALL appended."""
    sighash = psbt.sighash(input_index, SIGHASH_ALL)
    # sighash is already SHA256d, so skip coincurve's hashing
    signature = key.private_key.sign(sighash, hasher=None)
    return signature + bytes([SIGHASH_ALL])


def verify_p2wpkh_signature(
    psbt: Psbt,
    input_index: int,
    pubkey: bytes,
    signature: bytes,
) -> bool:
    if not signature or signature[-1] != SIGHASH_ALL:
        return False
    try:
        sighash = psbt.sighash(input_index, SIGHASH_ALL)
        return PublicKey(pubkey).verify(signature[:-1], sighash, hasher=None)
    except (ValueError, PsbtError) as e:
        logger.debug(f"P2WPKH signature check failed on input {input_index}: {e}")
        return False


def verify_taproot_signature(psbt: Psbt, input_index: int, signature: bytes) -> bool:
    """Verify a key-path Schnorr signature against the output key being spent."""
    if len(signature) == 64:
        sighash_type = SIGHASH_DEFAULT
    elif len(signature) == 65 and signature[64] == SIGHASH_ALL:
        sighash_type = SIGHASH_ALL
    else:
        return False

    try:
        script = psbt.spent_output(input_index).script_pubkey.data
        if not is_p2tr(script):
            return False
        sighash = psbt.sighash(input_index, sighash_type)
        return PublicKeyXOnly(script[2:]).verify(signature[:64], sighash)
    except (ValueError, PsbtError) as e:
        logger.debug(f"Taproot signature check failed on input {input_index}: {e}")
        return False


def sign_operator_inputs(psbt: Psbt, key: OperatorKey, indices: Iterable[int]) -> None:
    """
    Sign the given inputs with the operator key and verify every signature.

    Any input that is not a P2WPKH output of this key, or whose signature does
    not verify, raises SignatureValidationFailed. This indicates a key/network
    misconfiguration and is never retried.
    """
    indices = list(indices)

    for index in indices:
        spent = psbt.spent_output(index)
        if spent.script_pubkey.data != key.script_pubkey:
            raise SignatureValidationFailed(
                f"Input {index} is not controlled by the operator key "
                f"(scriptPubKey {spent.script_pubkey.data.hex()})"
            )
        signature = sign_p2wpkh_input(psbt, index, key)
        psbt.add_partial_signature(index, key.pubkey, signature)

    for index in indices:
        signature = psbt.partial_signatures(index).get(key.pubkey, b"")
        if not verify_p2wpkh_signature(psbt, index, key.pubkey, signature):
            raise SignatureValidationFailed(f"Invalid signature on operator input {index}")

    logger.debug(f"Signed and verified operator inputs {indices}")


def finalize_inputs(psbt: Psbt) -> None:
    """
    Turn every input's signature data into a final witness.

    Inputs already finalized by a wallet are re-verified. Any input without a
    complete, valid signature raises FinalizationError.
    """
    try:
        scripts = [psbt.spent_output(i).script_pubkey.data for i in range(psbt.input_count)]
    except PsbtError as e:
        raise FinalizationError(f"Cannot determine spent outputs: {e}") from e

    for index, script in enumerate(scripts):
        stack = psbt.final_witness(index)

        if is_p2wpkh(script):
            if stack is not None:
                if len(stack) != 2:
                    raise FinalizationError(f"Input {index}: malformed P2WPKH witness")
                signature, pubkey = stack
            else:
                matching = [
                    (pk, sig)
                    for pk, sig in psbt.partial_signatures(index).items()
                    if p2wpkh_script(pk) == script
                ]
                if not matching:
                    raise FinalizationError(f"Input {index}: missing signature")
                pubkey, signature = matching[0]
            if p2wpkh_script(pubkey) != script:
                raise FinalizationError(f"Input {index}: public key does not match scriptPubKey")
            if not verify_p2wpkh_signature(psbt, index, pubkey, signature):
                raise FinalizationError(f"Input {index}: invalid signature")
            psbt.set_final_witness(index, [signature, pubkey])

        elif is_p2tr(script):
            if stack is not None:
                if len(stack) != 1:
                    raise FinalizationError(
                        f"Input {index}: only Taproot key-path spends are supported"
                    )
                signature = stack[0]
            else:
                signature = psbt.tap_key_sig(index)
                if signature is None:
                    raise FinalizationError(f"Input {index}: missing Taproot signature")
            if not verify_taproot_signature(psbt, index, signature):
                raise FinalizationError(f"Input {index}: invalid Taproot signature")
            psbt.set_final_witness(index, [signature])

        else:
            raise FinalizationError(
                f"Input {index}: unsupported script type {script.hex()[:16]}..."
            )
