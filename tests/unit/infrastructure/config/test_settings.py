import pytest

from tenantops.infrastructure.config import settings
from tenantops.infrastructure.config.settings import (
    ResilienceSettings, clear_test_config, env_var_name, get_config,
    load_configuration, load_resilience_settings, set_config_for_testing,
)


@pytest.fixture
def yaml_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "resilience:\n"
        "  max_retries: 5\n"
        "  base_delay_seconds: 0.5\n"
        "pool:\n"
        "  max_connections: 4\n"
        "batch:\n"
        "  continue_on_error: false\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def loaded(yaml_config, tmp_path):
    """Loads the YAML fixture with an .env path that does not exist."""
    load_configuration(config_file=yaml_config, env_file=tmp_path / "missing.env", reload=True)


def test_defaults_when_nothing_is_configured():
    result = load_resilience_settings()
    assert result == ResilienceSettings()
    assert result.max_retries == 3
    assert result.base_delay_seconds == 1.0
    assert result.max_delay_seconds == 300.0
    assert result.max_connections == 10
    assert result.idle_timeout_seconds == 1800.0
    assert result.batch_concurrency == 5
    assert result.continue_on_error is True
    assert result.throttle_retry_mode is False


def test_yaml_is_flattened_to_dotted_keys(loaded):
    assert get_config("resilience.max_retries") == 5
    assert get_config("pool.max_connections") == 4
    assert get_config("pool.idle_timeout_seconds", 99) == 99


def test_yaml_values_feed_settings(loaded):
    result = load_resilience_settings()
    assert result.max_retries == 5
    assert result.base_delay_seconds == 0.5
    assert result.max_connections == 4
    assert result.continue_on_error is False


def test_environment_overrides_yaml(loaded, monkeypatch):
    monkeypatch.setenv("TENANTOPS_RESILIENCE_MAX_RETRIES", "7")
    monkeypatch.setenv("TENANTOPS_RESILIENCE_THROTTLE_RETRY_MODE", "true")
    result = load_resilience_settings()
    assert result.max_retries == 7
    assert result.throttle_retry_mode is True


def test_test_overrides_win_over_environment(loaded, monkeypatch):
    monkeypatch.setenv("TENANTOPS_RESILIENCE_MAX_RETRIES", "7")
    set_config_for_testing({"resilience.max_retries": 1})
    assert load_resilience_settings().max_retries == 1
    clear_test_config()
    assert load_resilience_settings().max_retries == 7


def test_keyword_overrides_win_over_everything(loaded):
    set_config_for_testing({"pool.max_connections": 2})
    assert load_resilience_settings(max_connections=8).max_connections == 8


def test_dotenv_file_is_loaded_without_overriding_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "TENANTOPS_BATCH_CONCURRENCY_LIMIT=9\nTENANTOPS_POOL_MAX_CONNECTIONS=3\n", encoding="utf-8"
    )
    monkeypatch.setenv("TENANTOPS_POOL_MAX_CONNECTIONS", "6")
    # Register the variables the .env file may set so monkeypatch restores them afterwards
    monkeypatch.setenv("TENANTOPS_BATCH_CONCURRENCY_LIMIT", "")
    monkeypatch.delenv("TENANTOPS_BATCH_CONCURRENCY_LIMIT")

    load_configuration(config_file=tmp_path / "none.yaml", env_file=env_file, reload=True)
    result = load_resilience_settings()

    assert result.batch_concurrency == 9
    assert result.max_connections == 6


@pytest.mark.parametrize("raw, expected", [
    ("true", True), ("False", False), ("12", 12), ("0.25", 0.25), ("graph", "graph"),
])
def test_environment_values_are_coerced(monkeypatch, raw, expected):
    monkeypatch.setenv("TENANTOPS_SOME_KEY", raw)
    assert get_config("some.key") == expected


def test_env_var_name():
    assert env_var_name("pool.max_connections") == "TENANTOPS_POOL_MAX_CONNECTIONS"


@pytest.mark.parametrize("key, value", [
    ("resilience.max_retries", "many"),
    ("resilience.max_retries", -1),
    ("pool.max_connections", 0),
    ("pool.idle_timeout_seconds", 0),
    ("batch.concurrency_limit", 0),
])
def test_invalid_values_are_rejected(key, value):
    set_config_for_testing({key: value})
    with pytest.raises(ValueError):
        load_resilience_settings()


def test_invalid_yaml_is_logged_and_ignored(tmp_path, caplog):
    bad = tmp_path / "config.yaml"
    bad.write_text("resilience: [unclosed\n", encoding="utf-8")
    load_configuration(config_file=bad, env_file=tmp_path / "missing.env", reload=True)
    assert settings._config == {}
    assert any("Failed to load or parse YAML" in r.message for r in caplog.records)


def test_settings_to_dict_round_trips():
    values = ResilienceSettings(max_retries=1).to_dict()
    assert values["max_retries"] == 1
    assert ResilienceSettings(**values) == ResilienceSettings(max_retries=1)
