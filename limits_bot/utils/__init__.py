"""
Utility modules for the bot.
"""

from limits_bot.utils.logger import setup_logger, SecretFilter
from limits_bot.utils.config import (
    AppSettings,
    load_config,
    validate_config,
    apply_env_overrides,
    build_settings,
    merge_configs,
    print_config_summary,
)

__all__ = [
    # Logger
    "setup_logger",
    "SecretFilter",
    # Config
    "AppSettings",
    "load_config",
    "validate_config",
    "apply_env_overrides",
    "build_settings",
    "merge_configs",
    "print_config_summary",
]
