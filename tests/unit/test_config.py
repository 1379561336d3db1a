"""
Unit tests for engine configuration loading.
"""

import json

import pytest

from luba.core.config import DEFAULT_ENGINE_ID, AuctionConfig, load_config


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No LUBA_* variables and no stray .env file."""
    for name in ("MIN_BID_PERIOD", "MIN_REVEAL_PERIOD", "VALUE_UNIT", "ENGINE_ID", "DATA_DIR", "LOG_DIR", "DB_NAME"):
        monkeypatch.delenv(f"LUBA_{name}", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestAuctionConfig:
    """Tests for defaults and validation."""

    def test_defaults(self):
        config = AuctionConfig()
        assert config.min_bid_period == 3600
        assert config.min_reveal_period == 3600
        assert config.value_unit == 10**9
        assert config.engine_id == DEFAULT_ENGINE_ID
        assert len(config.engine_id) == 20

    def test_rejects_bad_values(self):
        with pytest.raises(ValueError):
            AuctionConfig(min_bid_period=0)
        with pytest.raises(ValueError):
            AuctionConfig(value_unit=0)
        with pytest.raises(ValueError):
            AuctionConfig(engine_id=b"\x01" * 19)

    def test_ensure_dirs(self, tmp_path):
        config = AuctionConfig(data_dir=tmp_path / "d", log_dir=tmp_path / "l")
        config.ensure_dirs()
        assert (tmp_path / "d").is_dir()
        assert (tmp_path / "l").is_dir()


class TestLoadConfig:
    """Tests for file, environment and override precedence."""

    def test_defaults_without_sources(self, clean_env):
        assert load_config() == AuctionConfig()

    def test_json_file(self, clean_env):
        path = clean_env / "luba.json"
        path.write_text(json.dumps({"min_bid_period": 60, "engine_id": "0x" + "ab" * 20}))
        config = load_config(path)
        assert config.min_bid_period == 60
        assert config.engine_id == b"\xab" * 20

    def test_toml_auction_table(self, clean_env):
        path = clean_env / "luba.toml"
        path.write_text("[auction]\nmin_reveal_period = 120\nvalue_unit = 1\n")
        config = load_config(path)
        assert config.min_reveal_period == 120
        assert config.value_unit == 1

    def test_unknown_key(self, clean_env):
        path = clean_env / "luba.json"
        path.write_text(json.dumps({"nonsense": 1}))
        with pytest.raises(ValueError):
            load_config(path)

    def test_env_overrides_file(self, clean_env, monkeypatch):
        path = clean_env / "luba.json"
        path.write_text(json.dumps({"min_bid_period": 60}))
        monkeypatch.setenv("LUBA_MIN_BID_PERIOD", "90")
        assert load_config(path).min_bid_period == 90

    def test_dotenv_file(self, clean_env, monkeypatch):
        # Registered with monkeypatch so the variable dotenv sets is undone
        monkeypatch.setenv("LUBA_VALUE_UNIT", "1")
        monkeypatch.delenv("LUBA_VALUE_UNIT")

        env_file = clean_env / "custom.env"
        env_file.write_text("LUBA_VALUE_UNIT=7\n")
        config = load_config(env_file=str(env_file))
        assert config.value_unit == 7

    def test_keyword_overrides_win(self, clean_env, monkeypatch):
        monkeypatch.setenv("LUBA_VALUE_UNIT", "5")
        assert load_config(value_unit=3).value_unit == 3
