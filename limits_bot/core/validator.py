"""Symbol validation against ticker conventions, exclusions and live markets."""

import re
from typing import Iterable

from limits_bot.core.errors import InvalidFormat, NotTradable, ServiceUnavailable, UnsupportedAsset
from limits_bot.data.models import QUOTE_ASSET, pair_for


# Base assets the bot refuses to analyse
DEFAULT_EXCLUDED_ASSETS = ("BTC", "ETH", "WBTC", "WETH")

_TICKER_RE = re.compile(r"^[A-Z0-9]{1,20}$")


class SymbolValidator:
    """Maps raw user input to a tradable base asset ticker."""

    def __init__(self, registry, excluded: Iterable[str] = DEFAULT_EXCLUDED_ASSETS):
        self.registry = registry
        # BTC and ETH are always excluded, whatever the configuration says
        self.excluded = frozenset(a.strip().upper() for a in excluded) | {"BTC", "ETH"}

    def normalize(self, raw: str) -> str:
        """
        Trim and uppercase; drop a typed USDT quote suffix.

        "sol" -> "SOL", "SOLUSDT" -> "SOL", "sol/usdt" -> "SOL"

        Raises:
            InvalidFormat: empty or non-alphanumeric input
        """
        text = (raw or "").strip().upper()

        for suffix in (f"/{QUOTE_ASSET}", f"-{QUOTE_ASSET}", QUOTE_ASSET):
            if text.endswith(suffix) and len(text) > len(suffix):
                text = text[:-len(suffix)]
                break

        if not _TICKER_RE.match(text):
            raise InvalidFormat(raw)
        return text

    def check_supported(self, symbol: str) -> None:
        if symbol in self.excluded:
            raise UnsupportedAsset(symbol)

    def validate(self, raw: str) -> str:
        """
        Validate user input.

        Returns:
            Normalized base asset ticker

        Raises:
            InvalidFormat, UnsupportedAsset, NotTradable
            ServiceUnavailable: the market list has not been loaded yet
        """
        symbol = self.normalize(raw)
        self.check_supported(symbol)

        if not self.registry.is_loaded:
            raise ServiceUnavailable("market list not loaded")

        if not self.registry.is_tradable(pair_for(symbol)):
            raise NotTradable(symbol)

        return symbol
