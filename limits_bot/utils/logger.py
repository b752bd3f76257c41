"""
Logging configuration for the bot.

Uses loguru for structured, async-friendly logging.
"""

import re
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from loguru import logger


# Telegram bot tokens look like 123456789:AAH...; they also appear in API URLs
TELEGRAM_TOKEN_PATTERN = re.compile(r"\d{6,}:[A-Za-z0-9_-]{30,}")

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

COLOR_TAGS = re.compile(r"</?(green|level|cyan)>")


class SecretFilter:
    """
    Redact secrets from log messages.

    Usage:
        logger.configure(patcher=SecretFilter(["my-token"]))
    """

    def __init__(self, secrets: Iterable[str] = (), patterns: List[re.Pattern] = None):
        self.secrets = [s for s in secrets if s]
        self.patterns = patterns or [TELEGRAM_TOKEN_PATTERN]

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, "[REDACTED]")
        for pattern in self.patterns:
            text = pattern.sub("[REDACTED]", text)
        return text

    def __call__(self, record: Dict) -> None:
        record["message"] = self.redact(record["message"])


def setup_logger(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rotation: str = "1 day",
    retention: str = "30 days",
    format_string: Optional[str] = None,
    secrets: Iterable[str] = (),
) -> None:
    """
    Configure the logger for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Path to log file (None for console only)
        rotation: When to rotate log files
        retention: How long to keep old log files
        format_string: Custom format string
        secrets: Values to redact from every message
    """
    logger.remove()
    logger.configure(patcher=SecretFilter(secrets))

    if format_string is None:
        format_string = DEFAULT_FORMAT

    # diagnose=False: traceback variable dumps would bypass the patcher
    logger.add(
        sys.stdout,
        format=format_string,
        level=level,
        colorize=True,
        backtrace=False,
        diagnose=False,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            format=COLOR_TAGS.sub("", format_string),
            level=level,
            rotation=rotation,
            retention=retention,
            compression="gz",
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level}" + (f", file={log_file}" if log_file else ""))
