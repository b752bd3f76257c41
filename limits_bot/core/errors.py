"""
Error types for order book analysis.

Every failure a request can run into is one of these. Request errors
describe bad user input and come with guidance; exchange errors describe
trouble talking to Binance and are shown to the user only as a generic
"temporarily unavailable" message. The technical detail stays in ``str(exc)``
for the logs.
"""

from typing import Optional


class LimitsBotError(Exception):
    """Base class for all typed outcomes of a request."""

    category = "internal"
    default_message = "Something went wrong. Try again later"

    def __init__(self, detail: str = "", user_message: Optional[str] = None):
        self.detail = detail or self.default_message
        self._user_message = user_message
        super().__init__(self.detail)

    @property
    def user_message(self) -> str:
        """Text that is safe to show to the end user."""
        return self._user_message or self.default_message


# =============================================================================
# Request (input) errors
# =============================================================================

class RequestError(LimitsBotError):
    """The request itself is invalid."""

    category = "input"

    @property
    def user_message(self) -> str:
        return self._user_message or self.detail


class InvalidFormat(RequestError):
    """Symbol is empty or contains characters outside ticker conventions."""

    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(
            f"'{raw}' is not a valid ticker",
            "Send a coin ticker made of letters and digits, e.g. SOL",
        )


class UnsupportedAsset(RequestError):
    """Symbol is excluded from analysis by this bot."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"{symbol} not supported")


class NotTradable(RequestError):
    """No active <SYMBOL>USDT market on the exchange."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"{symbol} not found")


class InvalidDepth(RequestError):
    """Depth percentage is unparseable or out of range."""

    def __init__(self, raw: str, max_depth=None):
        self.raw = raw
        self.max_depth = max_depth
        limit = f" up to {max_depth}%" if max_depth is not None else ""
        super().__init__(
            f"invalid depth '{raw}'",
            f"Depth must be a positive percentage{limit}, e.g. 8%",
        )


# =============================================================================
# Exchange errors
# =============================================================================

class ExchangeError(LimitsBotError):
    """Exchange interaction failed."""

    category = "exchange"
    default_message = "Exchange is temporarily unavailable, try again"


class NetworkError(ExchangeError):
    """Transport failure talking to the exchange."""


class ExchangeTimeout(NetworkError):
    """Request to the exchange did not complete in time."""


class ExchangeAPIError(NetworkError):
    """Exchange answered with an error status or error payload."""

    def __init__(self, code: int, message: str, status: Optional[int] = None):
        self.code = code
        self.message = message
        self.status = status
        super().__init__(f"Binance API Error {code}: {message}")


class RateLimited(ExchangeError):
    """Exchange signalled throttling (HTTP 429/418)."""

    default_message = "Exchange rate limit reached, try again in a minute"

    def __init__(self, detail: str = "", retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(detail or "rate limited by exchange")


class MalformedResponse(ExchangeError):
    """Payload could not be parsed into order book data."""


class ServiceUnavailable(ExchangeError):
    """Pipeline cannot serve the request (markets not loaded, unexpected failure)."""


# =============================================================================
# Bot layer
# =============================================================================

class Unauthorized(LimitsBotError):
    """Caller is not on the allow-list."""

    category = "auth"
    default_message = "Action not allowed"
