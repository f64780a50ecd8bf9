"""
Environment Variable Utility for livechat-relay
Provides functions for fetching credentials from the environment or a .env file.
"""
import logging
import os

import dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _to_bool(value: str) -> bool:
    return str(value).strip().lower() in _TRUTHY


def get_env_var(env_var, var_type=str, default=None):
    """
    Fetches a setting from the process environment, falling back to the .env file.

    Args:
        env_var (str): Name of the environment variable.
        var_type (type): Converter for the raw string. `bool` understands 'true'/'false'.
        default: Returned when the variable is unset or empty.
    Returns:
        The converted value, or `default` if not found or not convertible.
    """
    raw = os.environ.get(env_var)
    if not raw:
        dotenv_path = dotenv.find_dotenv(usecwd=True)
        raw = dotenv.get_key(dotenv_path=dotenv_path, key_to_get=env_var) if dotenv_path else None
    if not raw:
        return default

    converter = _to_bool if var_type is bool else var_type
    try:
        return converter(raw) if converter else raw
    except (TypeError, ValueError):
        logger.error(f"{env_var} is not of type {var_type}, using default {default!r}")
        return default
