"""
Bitcoin address utilities.

Supports:
- P2WPKH / P2WSH (bech32, witness v0)
- P2TR (bech32m, witness v1)
- P2PKH / P2SH (base58check)
"""

from __future__ import annotations

import hashlib
import re

import base58
import bech32
from hvcore.errors import InvalidAddress
from hvcore.models import NetworkType

# Taproot: <hrp>1p followed by 58..86 bech32 characters
_TAPROOT_BODY_RE = re.compile(r"^[0-9a-z]{58,86}$")


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def is_p2wpkh(script: bytes) -> bool:
    return len(script) == 22 and script[0] == 0x00 and script[1] == 0x14


def is_p2tr(script: bytes) -> bool:
    return len(script) == 34 and script[0] == 0x51 and script[1] == 0x20


def p2wpkh_script(pubkey: bytes) -> bytes:
    """OP_0 <20-byte-pubkeyhash>"""
    return bytes([0x00, 0x14]) + hash160(pubkey)


def p2tr_script(output_key: bytes) -> bytes:
    """OP_1 <32-byte x-only output key>"""
    if len(output_key) != 32:
        raise ValueError(f"Taproot output key must be 32 bytes, got {len(output_key)}")
    return bytes([0x51, 0x20]) + output_key


def _hrp_of(address: str) -> str:
    return address.rsplit("1", 1)[0]


def address_to_scriptpubkey(address: str) -> bytes:
    """Convert a Bitcoin address to its scriptPubKey."""
    lowered = address.lower()
    if lowered.startswith(("bc1", "tb1", "bcrt1")):
        hrp = _hrp_of(lowered)
        witver, witprog = bech32.decode(hrp, lowered)
        if witver is None or witprog is None:
            raise ValueError(f"Invalid bech32 address: {address}")

        program = bytes(witprog)
        if witver == 0:
            if len(program) == 20:
                return bytes([0x00, 0x14]) + program
            if len(program) == 32:
                return bytes([0x00, 0x20]) + program
        elif witver == 1 and len(program) == 32:
            return p2tr_script(program)

        raise ValueError(f"Unsupported witness version: {witver}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address}") from e
    version = decoded[0]
    payload = decoded[1:]

    if version in (0x00, 0x6F):  # Mainnet/Testnet P2PKH
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in (0x05, 0xC4):  # Mainnet/Testnet P2SH
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise ValueError(f"Unknown address version: {version}")


def scriptpubkey_to_address(script: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """Convert a witness scriptPubKey back to its address."""
    if is_p2wpkh(script) or (len(script) == 34 and script[0] == 0x00 and script[1] == 0x20):
        witver = 0
    elif is_p2tr(script):
        witver = 1
    else:
        raise ValueError(f"Unsupported scriptPubKey: {script.hex()}")

    result = bech32.encode(network.hrp, witver, script[2:])
    if result is None:
        raise ValueError(f"Failed to encode address for scriptPubKey: {script.hex()}")
    return result


def pubkey_to_p2wpkh_address(pubkey: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return scriptpubkey_to_address(p2wpkh_script(pubkey), network)


def validate_taproot_address(address: str, network: NetworkType) -> bytes:
    """
    Check that ``address`` is a Taproot address for ``network``.

    Returns the scriptPubKey. Raises InvalidAddress otherwise.
    """
    lowered = address.lower()
    prefix = f"{network.hrp}1p"
    if not lowered.startswith(prefix) or not _TAPROOT_BODY_RE.match(lowered[len(prefix) :]):
        raise InvalidAddress(f"Invalid seller address: must be a Taproot ({prefix}...) address")
    if address != lowered and address != address.upper():
        raise InvalidAddress("Invalid seller address: mixed case")

    witver, witprog = bech32.decode(network.hrp, lowered)
    if witver != 1 or witprog is None or len(witprog) != 32:
        raise InvalidAddress("Invalid seller address: bad Taproot encoding or checksum")
    return p2tr_script(bytes(witprog))


def short(value: str, length: int = 20) -> str:
    """Truncate an address or txid for log output."""
    return value if len(value) <= length else value[:length] + "..."
