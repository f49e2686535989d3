"""
Tests for CLI commands.
"""

from __future__ import annotations

import pytest
from coincurve import PrivateKey
from hvcore.models import NetworkType
from hvwallet.wallet.keys import OperatorKey
from typer.testing import CliRunner

from buyer.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)  # no stray .env
    for name in ("HARVY_WALLET_ADDRESS", "HARVY_WALLET_PRIVATE_KEY", "BITCOIN_NETWORK"):
        monkeypatch.delenv(name, raising=False)


def test_quote() -> None:
    result = runner.invoke(app, ["quote", "5000000", "3000000", "--btc-price", "100000"])
    assert result.exit_code == 0
    assert "2,000,000 sats ($2,000.00)" in result.output
    assert "tier 3" in result.output
    assert "60,000 sats" in result.output
    assert "$540.00" in result.output


def test_quote_custom_tax_rate() -> None:
    result = runner.invoke(
        app, ["quote", "5000000", "3000000", "--btc-price", "100000", "--tax-rate", "0.1"]
    )
    assert result.exit_code == 0
    assert "$200.00 at 10%" in result.output


def test_quote_bad_price() -> None:
    result = runner.invoke(app, ["quote", "5000000", "3000000", "--btc-price", "0"])
    assert result.exit_code == 1


def test_operator_info(monkeypatch: pytest.MonkeyPatch) -> None:
    key = OperatorKey(PrivateKey(b"\x11" * 32), NetworkType.TESTNET)
    monkeypatch.setenv("HARVY_WALLET_PRIVATE_KEY", key.to_wif())
    monkeypatch.setenv("BITCOIN_NETWORK", "testnet")

    result = runner.invoke(app, ["operator-info"])
    assert result.exit_code == 0
    assert key.address in result.output
    assert key.to_wif() not in result.output


def test_operator_info_not_configured() -> None:
    result = runner.invoke(app, ["operator-info"])
    assert result.exit_code == 1
    assert "not configured" in result.output
