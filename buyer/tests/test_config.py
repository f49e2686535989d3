"""
Tests for buyer settings.
"""

from __future__ import annotations

import pytest
from coincurve import PrivateKey
from hvcore.errors import ConfigurationError
from hvcore.models import NetworkType
from hvwallet.wallet.keys import OperatorKey

from buyer.config import Settings

WIF_TESTNET = OperatorKey(PrivateKey(b"\x11" * 32), NetworkType.TESTNET).to_wif()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "HARVY_WALLET_ADDRESS",
        "HARVY_WALLET_PRIVATE_KEY",
        "BITCOIN_NETWORK",
        "PORT",
        "RATE_LIMIT_PER_HOUR",
        "HARVY_REQUIRE_RECEIPT",
        "MIN_ORDINAL_PAYMENT_SATS",
        "MAX_SERVICE_FEE_USD",
        "FEE_TIER_1_PERCENT",
        "FEE_TIER_2_MAX",
        "MAX_BATCH_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.bitcoin_network == NetworkType.TESTNET
        assert settings.port == 3001
        assert settings.rate_limit_per_hour == 10
        assert settings.harvy_require_receipt is False
        assert settings.operator_key() is None

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FEE_TIER_1_PERCENT", "4")
        monkeypatch.setenv("MAX_BATCH_SIZE", "5")
        monkeypatch.setenv("BITCOIN_NETWORK", "mainnet")

        settings = Settings(_env_file=None)
        policy = settings.policy()
        assert policy.fee_tiers[0].percent == 4.0
        assert policy.max_batch_size == 5
        assert settings.bitcoin_network == NetworkType.MAINNET

    def test_policy_matches_defaults(self) -> None:
        policy = Settings(_env_file=None).policy()
        assert [t.max_usd for t in policy.fee_tiers] == [100.0, 500.0, 2000.0, 10000.0, None]
        assert [t.percent for t in policy.fee_tiers] == [5.0, 7.0, 10.0, 12.0, 15.0]
        assert policy.min_payment_sats == 600
        assert policy.max_service_fee_usd == 100.0

    def test_unordered_tiers_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FEE_TIER_2_MAX", "50")
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None).policy()

    def test_operator_key(self) -> None:
        settings = Settings(_env_file=None, harvy_wallet_private_key=WIF_TESTNET)
        key = settings.operator_key()
        assert key is not None
        assert key.address.startswith("tb1q")
        assert WIF_TESTNET not in repr(settings)

    def test_operator_address_must_match(self) -> None:
        settings = Settings(
            _env_file=None,
            harvy_wallet_private_key=WIF_TESTNET,
            harvy_wallet_address="tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx",
        )
        with pytest.raises(ConfigurationError, match="does not match"):
            settings.operator_key()

    def test_operator_key_network_mismatch(self) -> None:
        settings = Settings(
            _env_file=None, harvy_wallet_private_key=WIF_TESTNET, bitcoin_network="mainnet"
        )
        with pytest.raises(ConfigurationError):
            settings.operator_key()

    def test_explorer_url(self) -> None:
        txid = "ab" * 32
        assert Settings(_env_file=None).explorer_url(txid) == (
            f"https://mempool.space/testnet/tx/{txid}"
        )
        mainnet = Settings(_env_file=None, bitcoin_network="mainnet")
        assert mainnet.explorer_url(txid) == f"https://mempool.space/tx/{txid}"
