"""Request handling core: validation, orchestration and error types."""

from limits_bot.core.errors import (
    LimitsBotError,
    RequestError,
    InvalidFormat,
    UnsupportedAsset,
    NotTradable,
    InvalidDepth,
    ExchangeError,
    NetworkError,
    ExchangeTimeout,
    ExchangeAPIError,
    RateLimited,
    MalformedResponse,
    ServiceUnavailable,
    Unauthorized,
)

__all__ = [
    "LimitsBotError",
    "RequestError",
    "InvalidFormat",
    "UnsupportedAsset",
    "NotTradable",
    "InvalidDepth",
    "ExchangeError",
    "NetworkError",
    "ExchangeTimeout",
    "ExchangeAPIError",
    "RateLimited",
    "MalformedResponse",
    "ServiceUnavailable",
    "Unauthorized",
]
