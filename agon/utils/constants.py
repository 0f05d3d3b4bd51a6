"""
Constants and tunables used across the game scheduling engine.

Tunables are read from the environment so they can be changed without a
code change.
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def get_int_env(key: str, default: int) -> int:
    """
    Parse a positive integer environment variable.

    Args:
        key: Environment variable name
        default: Value used when the variable is unset or invalid

    Returns:
        int: Parsed value
    """
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}={value!r}, using default {default}")
        return default
    if parsed <= 0:
        logger.warning(f"Non-positive value for {key}={parsed}, using default {default}")
        return default
    return parsed


# Recurring game materialization
RECURRING_LOOK_AHEAD_DAYS = get_int_env("RECURRING_LOOK_AHEAD_DAYS", 30)
RECURRING_MAX_BATCH_SIZE = get_int_env("RECURRING_MAX_BATCH_SIZE", 10)

# How often the refresh worker extends running series (seconds)
SERIES_REFRESH_INTERVAL_SECONDS = get_int_env("SERIES_REFRESH_INTERVAL_SECONDS", 3600)
