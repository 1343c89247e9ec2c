import pytest
from pydantic import ValidationError

from courier.config import ChannelSettings


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    monkeypatch.setenv("COURIER_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    monkeypatch.chdir(tmp_path)


def test_defaults_match_session_config():
    settings = ChannelSettings()

    assert settings.reconnect.max_retries == 5
    assert settings.reconnect.delay_ms == 3000
    assert settings.reconnect.backoff == "constant"
    assert settings.rate_limit.max_requests == 30
    assert settings.rate_limit.window_ms == 1000
    assert settings.group_suffix == "@g.us"
    assert settings.auth_data is None


def test_auth_data_hidden_from_repr():
    settings = ChannelSettings(auth_data='{"creds": {"secret": "x"}}')

    assert "secret" not in repr(settings)


def test_nested_env_overrides(monkeypatch):
    monkeypatch.setenv("COURIER_RECONNECT__MAX_RETRIES", "2")
    monkeypatch.setenv("COURIER_RATE_LIMIT__WINDOW_MS", "250")
    monkeypatch.setenv("COURIER_LOG_LEVEL", "debug")

    settings = ChannelSettings()

    assert settings.reconnect.max_retries == 2
    assert settings.rate_limit.window_ms == 250
    assert settings.log_level == "DEBUG"


def test_yaml_config_file(monkeypatch, tmp_path):
    path = tmp_path / "channel.yaml"
    path.write_text(
        "transport: dummy\nreconnect:\n  max_retries: 0\n  delay_ms: 100\nrate_limit:\n  max_requests: 2\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("COURIER_CONFIG_FILE", str(path))

    settings = ChannelSettings()

    assert settings.transport == "dummy"
    assert settings.reconnect.max_retries == 0
    assert settings.reconnect.delay_ms == 100
    assert settings.rate_limit.max_requests == 2
    assert settings.config_path == path


def test_config_file_must_be_mapping(monkeypatch, tmp_path):
    path = tmp_path / "channel.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("COURIER_CONFIG_FILE", str(path))

    with pytest.raises(ValueError):
        ChannelSettings()


@pytest.mark.parametrize(
    "overrides",
    [
        {"reconnect": {"max_retries": -1}},
        {"reconnect": {"delay_ms": -5}},
        {"rate_limit": {"max_requests": 0}},
        {"rate_limit": {"window_ms": 0}},
        {"transport": "carrier-pigeon"},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValidationError):
        ChannelSettings(**overrides)
