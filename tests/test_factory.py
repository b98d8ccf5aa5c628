"""Tests for engine wiring and the command-line entry point."""

import json

import pytest
from conftest import CONDITION_A, CONDITION_B, OWNER_KEY, SAFE_ADDRESS
from pydantic import SecretStr

from redeem import load_candidates
from saferedeem.config.settings import Settings
from saferedeem.redeem.factory import create_engine
from saferedeem.redeem.safe_hash import LocalSafeTxHasher, OnChainSafeTxHasher
from saferedeem.redeem.submission import DirectSubmitter, DryRunSubmitter, RelayerSubmitter


@pytest.fixture
def settings() -> Settings:
    """Settings for a Safe without builder credentials."""
    return Settings(
        _env_file=None,
        wallet_private_key=SecretStr(OWNER_KEY),
        polymarket_wallet_address=SAFE_ADDRESS,
        polygon_rpc_urls="https://rpc-a.test,https://rpc-b.test",
        polymarket_builder_api_key=SecretStr(""),
        polymarket_builder_secret=SecretStr(""),
        polymarket_builder_passphrase=SecretStr(""),
    )


class TestCreateEngine:
    """Tests for create_engine."""

    def test_dry_run_by_default(self, settings: Settings) -> None:
        """Test engines simulate unless asked to execute."""
        engine = create_engine(settings)
        assert isinstance(engine.strategy, DryRunSubmitter)
        assert isinstance(engine.hasher, LocalSafeTxHasher)
        assert [e.url for e in engine.pool.endpoints] == [
            "https://rpc-a.test",
            "https://rpc-b.test",
        ]

    def test_direct_execution(self, settings: Settings) -> None:
        """Test auto mode without builder credentials executes directly."""
        engine = create_engine(settings, execute=True)
        assert isinstance(engine.strategy, DirectSubmitter)
        assert engine.strategy.gas_limit == settings.direct_gas_limit

    def test_relayer_execution(self, settings: Settings) -> None:
        """Test builder credentials select the relayer."""
        settings.polymarket_builder_api_key = SecretStr("key")
        settings.polymarket_builder_secret = SecretStr("c2VjcmV0")
        settings.polymarket_builder_passphrase = SecretStr("pass")

        with create_engine(settings, execute=True) as engine:
            assert isinstance(engine.strategy, RelayerSubmitter)
            assert engine.strategy.settle_delay == settings.relayer_settle_seconds

    def test_mode_override(self, settings: Settings) -> None:
        """Test an explicit mode and hash mode override settings."""
        engine = create_engine(settings, execute=True, mode="direct", hash_mode="onchain")
        assert isinstance(engine.strategy, DirectSubmitter)
        assert isinstance(engine.hasher, OnChainSafeTxHasher)

    def test_relayer_without_credentials(self, settings: Settings) -> None:
        """Test forcing the relayer without credentials fails early."""
        with pytest.raises(ValueError, match="credentials"):
            create_engine(settings, execute=True, mode="relayer")

    def test_requires_key(self, settings: Settings) -> None:
        """Test a missing private key is rejected."""
        settings.wallet_private_key = SecretStr("")
        with pytest.raises(ValueError, match="private key"):
            create_engine(settings)

    def test_requires_safe(self, settings: Settings) -> None:
        """Test a missing Safe address is rejected."""
        settings.polymarket_wallet_address = ""
        with pytest.raises(ValueError, match="Safe proxy address"):
            create_engine(settings)


class TestLoadCandidates:
    """Tests for reading candidates from the command line and files."""

    def test_ids_and_file(self, tmp_path) -> None:
        """Test ids from both sources are combined in order."""
        path = tmp_path / "resolved.json"
        path.write_text(json.dumps([{"conditionId": CONDITION_B}]))

        candidates = load_candidates([CONDITION_A], str(path))

        assert [c.condition_id for c in candidates] == [CONDITION_A, CONDITION_B]

    def test_no_file(self) -> None:
        """Test ids alone are enough."""
        assert len(load_candidates([CONDITION_A], None)) == 1

    def test_invalid_record(self, tmp_path) -> None:
        """Test malformed records raise ValueError."""
        path = tmp_path / "resolved.json"
        path.write_text(json.dumps([{"conditionId": "0x1234"}]))
        with pytest.raises(ValueError):
            load_candidates([], str(path))
