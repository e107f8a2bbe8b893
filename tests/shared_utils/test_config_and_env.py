import logging
import os

import pytest

from src.shared.db import SupabaseConfig
from src.shared.utils import ConfigurationError, load_env, setup_logging
from src.shared.utils.config_validator import validate_float_env, validate_int_env


def test_validate_int_env(monkeypatch):
    monkeypatch.delenv("TEST_BATCH_SIZE", raising=False)
    assert validate_int_env("TEST_BATCH_SIZE", 5, min_value=1) == 5

    monkeypatch.setenv("TEST_BATCH_SIZE", "12")
    assert validate_int_env("TEST_BATCH_SIZE", 5, min_value=1) == 12

    monkeypatch.setenv("TEST_BATCH_SIZE", "twelve")
    with pytest.raises(ConfigurationError, match="Invalid integer"):
        validate_int_env("TEST_BATCH_SIZE", 5)

    monkeypatch.setenv("TEST_BATCH_SIZE", "0")
    with pytest.raises(ConfigurationError, match="below minimum"):
        validate_int_env("TEST_BATCH_SIZE", 5, min_value=1)


def test_validate_float_env(monkeypatch):
    monkeypatch.setenv("TEST_LIMIT", "12.5")
    assert validate_float_env("TEST_LIMIT", 1.0) == 12.5

    monkeypatch.setenv("TEST_LIMIT", "Off")
    assert validate_float_env("TEST_LIMIT", 1.0, allow_none=True) is None
    with pytest.raises(ConfigurationError, match="cannot be disabled"):
        validate_float_env("TEST_LIMIT", 1.0)

    monkeypatch.setenv("TEST_LIMIT", "soon")
    with pytest.raises(ConfigurationError, match="Invalid numeric"):
        validate_float_env("TEST_LIMIT", 1.0)

    monkeypatch.setenv("TEST_LIMIT", "900")
    with pytest.raises(ConfigurationError, match="exceeds maximum"):
        validate_float_env("TEST_LIMIT", 1.0, max_value=600)


def test_load_env_prefers_closest_file(tmp_path, monkeypatch):
    nested = tmp_path / "project"
    nested.mkdir()
    (tmp_path / ".env").write_text("TEST_ENV_SOURCE=outer\nTEST_ENV_OUTER_ONLY=1\n")
    (nested / ".env").write_text("TEST_ENV_SOURCE=inner\n")
    monkeypatch.chdir(nested)
    monkeypatch.delenv("TEST_ENV_SOURCE", raising=False)
    monkeypatch.delenv("TEST_ENV_OUTER_ONLY", raising=False)

    loaded = load_env()

    assert nested / ".env" in loaded
    assert os.environ["TEST_ENV_SOURCE"] == "inner"
    assert os.environ["TEST_ENV_OUTER_ONLY"] == "1"
    monkeypatch.delenv("TEST_ENV_SOURCE")
    monkeypatch.delenv("TEST_ENV_OUTER_ONLY")


def test_load_env_keeps_existing_values_without_override(tmp_path, monkeypatch):
    env_file = tmp_path / "custom.env"
    env_file.write_text("TEST_ENV_KEEP=from_file\n")
    monkeypatch.setenv("TEST_ENV_KEEP", "from_shell")

    assert load_env(str(env_file)) == [env_file]
    assert os.environ["TEST_ENV_KEEP"] == "from_shell"

    load_env(str(env_file), override=True)
    assert os.environ["TEST_ENV_KEEP"] == "from_file"


def test_load_env_missing_file(tmp_path):
    assert load_env(str(tmp_path / "absent.env")) == []


def test_setup_logging_quiets_http_clients():
    setup_logging(level="debug")

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("supabase").level == logging.WARNING


def test_supabase_config_from_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "service-key")
    monkeypatch.setenv("PORTFOLIO_HOLDINGS_TABLE", "holdings_dev")
    monkeypatch.delenv("BATCH_STATE_TABLE", raising=False)
    monkeypatch.delenv("SUPABASE_SCHEMA", raising=False)

    config = SupabaseConfig.from_env()

    assert config.url == "https://example.supabase.co"
    assert config.schema == "public"
    assert config.state_table == "batch_state"
    assert config.holdings_table == "holdings_dev"


def test_supabase_config_requires_credentials(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.setenv("SUPABASE_KEY", "service-key")

    with pytest.raises(ValueError, match="SUPABASE_URL"):
        SupabaseConfig.from_env()
