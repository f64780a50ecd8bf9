import json

from livechat_relay.common.config import build_livechat_config, get_livechat_settings, load_config
from livechat_relay.utils.env_utils import get_env_var


def test_load_config_missing_file_is_empty(tmp_path):
    assert load_config(str(tmp_path / "missing.json")) == {}


def test_livechat_settings_fill_in_defaults(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"livechat_settings": {"poll_interval_s": 3}}))

    settings = get_livechat_settings(load_config(str(config_path)))
    assert settings["poll_interval_s"] == 3
    assert settings["batch_size"] == 200
    assert settings["skip_backlog"] is True


def test_get_env_var_converts_types(monkeypatch):
    monkeypatch.setenv("RELAY_TEST_INT", "42")
    monkeypatch.setenv("RELAY_TEST_BOOL", "False")
    monkeypatch.setenv("RELAY_TEST_BAD_INT", "forty-two")

    assert get_env_var("RELAY_TEST_INT", int) == 42
    assert get_env_var("RELAY_TEST_BOOL", bool, True) is False
    assert get_env_var("RELAY_TEST_BAD_INT", int, 7) == 7
    assert get_env_var("RELAY_TEST_UNSET_VARIABLE", str, "fallback") == "fallback"


def test_connectors_disabled_without_credentials(monkeypatch):
    for name in ("TW_CLIENT_ID", "TW_CLIENT_SECRET", "TW_BOT_ID", "YT_API_KEY", "YT_OAUTH2_JSON"):
        monkeypatch.setenv(name, "")
    config = build_livechat_config()
    assert config["twitch"]["enabled"] is False
    assert config["youtube"]["enabled"] is False


def test_connectors_enabled_with_credentials(monkeypatch):
    monkeypatch.setenv("TW_FETCH", "true")
    monkeypatch.setenv("TW_CLIENT_ID", "id")
    monkeypatch.setenv("TW_CLIENT_SECRET", "secret")
    monkeypatch.setenv("TW_BOT_ID", "123")
    monkeypatch.setenv("YT_FETCH", "true")
    monkeypatch.setenv("YT_API_KEY", "key")
    config = build_livechat_config()
    assert config["twitch"]["enabled"] is True
    assert config["youtube"]["api_key"] == "key"
    assert config["youtube"]["enabled"] is True
