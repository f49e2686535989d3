"""
Operator signing key.

The key is loaded from WIF once at startup. Only compressed keys are
accepted because the operator wallet is P2WPKH.
"""

from __future__ import annotations

import base58
from coincurve import PrivateKey
from hvcore.errors import ConfigurationError
from hvcore.models import NetworkType

from hvwallet.wallet.address import p2wpkh_script, pubkey_to_p2wpkh_address


class OperatorKey:
    def __init__(self, private_key: PrivateKey, network: NetworkType = NetworkType.MAINNET):
        self.private_key = private_key
        self.network = network

    @classmethod
    def from_wif(cls, wif: str, network: NetworkType = NetworkType.MAINNET) -> OperatorKey:
        try:
            decoded = base58.b58decode_check(wif.strip())
        except ValueError as e:
            # Never include the WIF itself in the message
            raise ConfigurationError("Invalid private key format: bad base58 checksum") from e

        if decoded[0] != network.wif_prefix:
            raise ConfigurationError(
                f"Private key network prefix 0x{decoded[0]:02x} does not match {network.value}"
            )
        if len(decoded) != 34 or decoded[-1] != 0x01:
            raise ConfigurationError("Private key must be a compressed-key WIF")

        return cls(PrivateKey(decoded[1:33]), network)

    def to_wif(self) -> str:
        payload = bytes([self.network.wif_prefix]) + self.private_key.secret + b"\x01"
        return base58.b58encode_check(payload).decode("ascii")

    @property
    def pubkey(self) -> bytes:
        return self.private_key.public_key.format(compressed=True)

    @property
    def script_pubkey(self) -> bytes:
        return p2wpkh_script(self.pubkey)

    @property
    def address(self) -> str:
        return pubkey_to_p2wpkh_address(self.pubkey, self.network)

    def __repr__(self) -> str:
        return f"OperatorKey(address={self.address!r})"
