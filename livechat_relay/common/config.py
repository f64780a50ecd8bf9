"""
Configuration Loader for livechat-relay
Provides methods to load and access shared configuration settings.
"""
import json
import logging
import os

from livechat_relay.utils.env_utils import get_env_var

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), 'config.json')

DEFAULT_LIVECHAT_SETTINGS = {
    "poll_interval_s": 10,
    "poll_backoff_max_s": 60,
    "batch_size": 200,
    "skip_backlog": True,
    "broadcast_timeout_s": 5,
}


def load_config(config_path=None):
    """Reads the JSON config. A missing file yields an empty dict."""
    if config_path is None:
        config_path = get_env_var("LIVECHAT_RELAY_CONFIG", str) or DEFAULT_CONFIG_PATH
    if not os.path.exists(config_path):
        logger.warning(f"Config file not found at {config_path}, using defaults.")
        return {}
    with open(config_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def get_livechat_settings(config=None):
    """`livechat_settings` from the config with defaults filled in."""
    config = load_config() if config is None else config
    settings = dict(DEFAULT_LIVECHAT_SETTINGS)
    settings.update(config.get("livechat_settings", {}))
    return settings


def build_livechat_config():
    """
    Builds the per-connector configuration from the environment / .env file.
    A connector is enabled only when its required credentials are present.
    """
    twitch = {
        "client_id": get_env_var("TW_CLIENT_ID", str),
        "client_secret": get_env_var("TW_CLIENT_SECRET", str),
        "bot_id": get_env_var("TW_BOT_ID", str),
        "token": get_env_var("TW_BOT_TOKEN", str),
        "refresh_token": get_env_var("TW_REFRESH_TOKEN", str),
    }
    twitch["enabled"] = get_env_var("TW_FETCH", bool, True) and all(
        twitch[key] for key in ("client_id", "client_secret", "bot_id")
    )

    youtube = {
        "api_key": get_env_var("YT_API_KEY", str),
        "client_secret_file": get_env_var("YT_OAUTH2_JSON", str),
    }
    youtube["enabled"] = get_env_var("YT_FETCH", bool, True) and bool(
        youtube["api_key"] or youtube["client_secret_file"]
    )

    return {"twitch": twitch, "youtube": youtube}
