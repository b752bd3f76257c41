"""
Configuration loading and validation.

Handles loading YAML configs, environment overrides and building the
read-only settings objects injected into the bot.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import yaml
from loguru import logger


DEFAULT_CONFIG_PATH = "config/settings.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "telegram": {
        "bot_token": "",
        "allowed_users": [],
        "poll_timeout": 30,
    },
    "exchange": {
        "base_url": "https://api.binance.com",
        "request_timeout": 10,
        "order_book_limit": 5000,
        "exchange_info_refresh": 300,
    },
    "analysis": {
        "top_n": 10,
        "max_depth_percent": 50,
        "depth_options": [3, 5, 8, 10, 15],
        "bucket_count": None,
        "excluded_assets": ["BTC", "ETH", "WBTC", "WETH"],
    },
    "cache": {
        "ttl": 60,
        "max_entries": 256,
        "redis_url": None,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}


# =============================================================================
# Settings
# =============================================================================

@dataclass(frozen=True)
class TelegramSettings:
    bot_token: str
    allowed_users: FrozenSet[int] = frozenset()
    poll_timeout: int = 30


@dataclass(frozen=True)
class ExchangeSettings:
    base_url: str = "https://api.binance.com"
    request_timeout: float = 10.0
    order_book_limit: int = 5000
    exchange_info_refresh: int = 300


@dataclass(frozen=True)
class AnalysisSettings:
    top_n: int = 10
    max_depth_percent: Decimal = Decimal("50")
    depth_options: Tuple[Decimal, ...] = (
        Decimal("3"), Decimal("5"), Decimal("8"), Decimal("10"), Decimal("15"),
    )
    bucket_count: Optional[int] = None
    excluded_assets: Tuple[str, ...] = ("BTC", "ETH", "WBTC", "WETH")


@dataclass(frozen=True)
class CacheSettings:
    ttl: int = 60
    max_entries: int = 256
    redis_url: Optional[str] = None


@dataclass(frozen=True)
class AppSettings:
    """Everything loaded once at startup; passed around, never global."""
    telegram: TelegramSettings
    exchange: ExchangeSettings = field(default_factory=ExchangeSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    log_level: str = "INFO"
    log_file: Optional[str] = None


# =============================================================================
# Loading
# =============================================================================

def load_config(config_path: str = DEFAULT_CONFIG_PATH, required: bool = True) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file
        required: Raise if the file is missing (otherwise return {})

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist and is required
        yaml.YAMLError: If config file is invalid YAML
    """
    path = Path(config_path)

    if not path.exists():
        if required:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        logger.warning(f"Config not found: {config_path}, using defaults")
        return {}

    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise yaml.YAMLError(f"Config root must be a mapping: {config_path}")

    logger.debug(f"Loaded config from {config_path}")
    return config


def parse_user_ids(value: Any) -> List[int]:
    """Parse user IDs from a list or a comma-separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = [u for u in value.split(",") if u.strip()]
    return [int(str(u).strip()) for u in value]


def apply_env_overrides(config: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Override secrets and deployment settings from environment variables.

    TELEGRAM_BOT_TOKEN, TELEGRAM_ALLOWED_USERS, REDIS_URL, BINANCE_API_URL,
    LOG_LEVEL
    """
    env = os.environ if env is None else env
    overrides: Dict[str, Any] = {}

    if env.get("TELEGRAM_BOT_TOKEN"):
        overrides.setdefault("telegram", {})["bot_token"] = env["TELEGRAM_BOT_TOKEN"]
    if env.get("TELEGRAM_ALLOWED_USERS"):
        overrides.setdefault("telegram", {})["allowed_users"] = env["TELEGRAM_ALLOWED_USERS"]
    if env.get("REDIS_URL"):
        overrides.setdefault("cache", {})["redis_url"] = env["REDIS_URL"]
    if env.get("BINANCE_API_URL"):
        overrides.setdefault("exchange", {})["base_url"] = env["BINANCE_API_URL"]
    if env.get("LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = env["LOG_LEVEL"]

    return merge_configs(config, overrides)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate configuration.

    Args:
        config: Configuration dictionary (defaults already merged)

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    telegram = config.get("telegram", {})
    if not telegram.get("bot_token"):
        errors.append("telegram.bot_token must be set (or TELEGRAM_BOT_TOKEN)")

    try:
        users = parse_user_ids(telegram.get("allowed_users", []))
        if not users:
            errors.append("telegram.allowed_users must list at least one user id")
    except (TypeError, ValueError):
        errors.append("telegram.allowed_users must be integer user ids")

    exchange = config.get("exchange", {})
    limit = exchange.get("order_book_limit", 5000)
    if not isinstance(limit, int) or not 1 <= limit <= 5000:
        errors.append(f"exchange.order_book_limit must be 1-5000, got {limit}")

    timeout = exchange.get("request_timeout", 10)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        errors.append(f"exchange.request_timeout must be positive, got {timeout}")

    analysis = config.get("analysis", {})
    top_n = analysis.get("top_n", 10)
    if not isinstance(top_n, int) or top_n < 1:
        errors.append(f"analysis.top_n must be >= 1, got {top_n}")

    max_depth = analysis.get("max_depth_percent", 50)
    if not isinstance(max_depth, (int, float)) or not 0 < max_depth <= 100:
        errors.append(f"analysis.max_depth_percent must be in (0, 100], got {max_depth}")
    else:
        for option in analysis.get("depth_options", []):
            if not isinstance(option, (int, float)) or not 0 < option <= max_depth:
                errors.append(f"analysis.depth_options value {option} outside (0, {max_depth}]")

    bucket_count = analysis.get("bucket_count")
    if bucket_count is not None and (not isinstance(bucket_count, int) or bucket_count < 1):
        errors.append(f"analysis.bucket_count must be a positive integer or null, got {bucket_count}")

    cache = config.get("cache", {})
    ttl = cache.get("ttl", 60)
    if not isinstance(ttl, int) or ttl <= 0:
        errors.append(f"cache.ttl must be a positive integer, got {ttl}")

    return errors


def build_settings(config: Dict[str, Any]) -> AppSettings:
    """
    Build read-only settings from a config dict merged over the defaults.

    Raises:
        ValueError: If the configuration is invalid
    """
    config = merge_configs(DEFAULT_CONFIG, config)

    errors = validate_config(config)
    if errors:
        raise ValueError("Invalid configuration: " + "; ".join(errors))

    telegram = config["telegram"]
    exchange = config["exchange"]
    analysis = config["analysis"]
    cache = config["cache"]
    logging_cfg = config["logging"]

    return AppSettings(
        telegram=TelegramSettings(
            bot_token=telegram["bot_token"],
            allowed_users=frozenset(parse_user_ids(telegram["allowed_users"])),
            poll_timeout=int(telegram["poll_timeout"]),
        ),
        exchange=ExchangeSettings(
            base_url=exchange["base_url"],
            request_timeout=float(exchange["request_timeout"]),
            order_book_limit=int(exchange["order_book_limit"]),
            exchange_info_refresh=int(exchange["exchange_info_refresh"]),
        ),
        analysis=AnalysisSettings(
            top_n=int(analysis["top_n"]),
            max_depth_percent=Decimal(str(analysis["max_depth_percent"])),
            depth_options=tuple(Decimal(str(o)) for o in analysis["depth_options"]),
            bucket_count=analysis["bucket_count"],
            excluded_assets=tuple(str(a).upper() for a in analysis["excluded_assets"]),
        ),
        cache=CacheSettings(
            ttl=int(cache["ttl"]),
            max_entries=int(cache["max_entries"]),
            redis_url=cache["redis_url"] or None,
        ),
        log_level=str(logging_cfg["level"]).upper(),
        log_file=logging_cfg["file"],
    )


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge multiple configuration dictionaries.

    Later configs override earlier ones.

    Args:
        *configs: Configuration dictionaries to merge

    Returns:
        Merged configuration
    """
    result = {}

    for config in configs:
        result = _deep_merge(result, config)

    return result


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def print_config_summary(settings: AppSettings) -> None:
    """
    Print a summary of the configuration.

    Args:
        settings: Application settings
    """
    logger.info("-" * 40)
    logger.info("Configuration Summary")
    logger.info("-" * 40)

    logger.info(f"Exchange: {settings.exchange.base_url} (book limit {settings.exchange.order_book_limit})")
    logger.info(f"Allowed users: {len(settings.telegram.allowed_users)}")
    logger.info(f"Top limits: {settings.analysis.top_n}, max depth {settings.analysis.max_depth_percent}%")
    logger.info(f"Depth options: {[f'{o}%' for o in settings.analysis.depth_options]}")
    backend = "redis" if settings.cache.redis_url else "memory"
    logger.info(f"Cache: {backend}, ttl {settings.cache.ttl}s")

    logger.info("-" * 40)
