"""
Tests for operator key loading.
"""

from __future__ import annotations

import pytest
from coincurve import PrivateKey

from hvcore.errors import ConfigurationError
from hvcore.models import NetworkType
from hvwallet.wallet.address import address_to_scriptpubkey
from hvwallet.wallet.keys import OperatorKey

# Private key 1, compressed
WIF_ONE = "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"
WIF_ONE_UNCOMPRESSED = "5HpHagT65TZzG1PH3CSu63k8DbpvD8s5ip4nEB3kEsreAnchuDf"


class TestOperatorKey:
    def test_from_wif(self) -> None:
        key = OperatorKey.from_wif(WIF_ONE, NetworkType.MAINNET)
        assert key.private_key.secret == (1).to_bytes(32, "big")
        assert key.pubkey.hex() == (
            "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        )
        assert key.script_pubkey.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"
        assert address_to_scriptpubkey(key.address) == key.script_pubkey
        assert key.address.startswith("bc1q")

    def test_wif_round_trip_testnet(self) -> None:
        key = OperatorKey(PrivateKey(b"\x11" * 32), NetworkType.TESTNET)
        loaded = OperatorKey.from_wif(key.to_wif(), NetworkType.TESTNET)
        assert loaded.pubkey == key.pubkey
        assert loaded.address.startswith("tb1q")

    def test_network_mismatch(self) -> None:
        with pytest.raises(ConfigurationError):
            OperatorKey.from_wif(WIF_ONE, NetworkType.TESTNET)

    def test_uncompressed_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            OperatorKey.from_wif(WIF_ONE_UNCOMPRESSED, NetworkType.MAINNET)

    def test_bad_checksum_does_not_leak_key(self) -> None:
        tampered = WIF_ONE[:-1] + ("m" if WIF_ONE[-1] != "m" else "n")
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorKey.from_wif(tampered, NetworkType.MAINNET)
        assert tampered not in str(exc_info.value)

    def test_repr_hides_secret(self) -> None:
        key = OperatorKey.from_wif(WIF_ONE, NetworkType.MAINNET)
        assert WIF_ONE not in repr(key)
        assert key.private_key.secret.hex() not in repr(key)
