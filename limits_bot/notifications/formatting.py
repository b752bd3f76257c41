"""
Telegram message rendering for order book analysis.

Messages use MarkdownV2; every dynamic value goes through
escape_markdown_v2 before it is placed between formatting markers.
"""

from decimal import Decimal
from typing import Iterable, List

from limits_bot.core.errors import LimitsBotError, RequestError
from limits_bot.data.models import AggregatedLevel, AnalysisResponse


MARKDOWN_V2_SPECIAL = set("_*[]()~`>#+-=|{}.!\\")

MEDALS = ("🥇", "🥈", "🥉")

_SUFFIXES = (
    (Decimal("1e12"), "T"),
    (Decimal("1e9"), "B"),
    (Decimal("1e6"), "M"),
    (Decimal("1e3"), "K"),
)


def escape_markdown_v2(text: str) -> str:
    """Escape every MarkdownV2 special character."""
    return "".join(f"\\{c}" if c in MARKDOWN_V2_SPECIAL else c for c in str(text))


def format_price(price: Decimal) -> str:
    """Plain decimal notation without trailing zeros: 0.00012300 -> 0.000123."""
    return f"{price.normalize():f}"


def format_number(value: Decimal) -> str:
    """
    Compact number: 1234 -> 1.23K, 5600000 -> 5.6M, 12.5 -> 12.5.

    Values below 1 keep up to 4 significant decimals.
    """
    value = Decimal(value)
    sign = "-" if value < 0 else ""
    value = abs(value)

    for threshold, suffix in _SUFFIXES:
        if value >= threshold:
            scaled = (value / threshold).quantize(Decimal("0.01"))
            return f"{sign}{format_price(scaled)}{suffix}"

    if value >= 1 or value == 0:
        return f"{sign}{format_price(value.quantize(Decimal('0.01')))}"

    return f"{sign}{format_price(Decimal(f'{value:.4g}'))}"


def _format_level(level: AggregatedLevel, rank: int) -> str:
    if level.is_range:
        price = f"{format_price(level.price_low)} - {format_price(level.price_high)}"
    else:
        price = format_price(level.price)

    line = f"{price}  •  {format_number(level.volume)}  (${format_number(level.notional)})"
    if rank < len(MEDALS):
        line = f"{line} {MEDALS[rank]}"
    return escape_markdown_v2(line)


def format_side(levels: Iterable[AggregatedLevel]) -> str:
    """
    Render one side as a price ladder, highest price on top.

    Medals mark the three largest clusters by volume.
    """
    ranked = list(levels)
    if not ranked:
        return escape_markdown_v2("No orders in band")

    lines = [(level.price_low, _format_level(level, rank)) for rank, level in enumerate(ranked)]
    lines.sort(key=lambda item: item[0], reverse=True)
    return "\n".join(line for _, line in lines)


def format_analysis(response: AnalysisResponse) -> str:
    """Render an analysis as a MarkdownV2 message."""
    result = response.result
    top_n = max(len(result.bids), len(result.asks))

    parts: List[str] = [
        f"*{escape_markdown_v2(result.pair)}*",
        escape_markdown_v2(f"Top {top_n} limits of {result.depth_percent}% depth"),
        f"*ASKS*\n{format_side(result.asks)}",
        f"*Last price* {escape_markdown_v2(format_price(result.reference_price))}",
        f"*BIDS*\n{format_side(result.bids)}",
    ]

    for warning in result.warnings:
        parts.append(escape_markdown_v2(f"⚠️ {warning}"))

    if response.from_cache:
        parts.append(f"_{escape_markdown_v2(f'Cached result, refreshes every {response.cache_ttl}s')}_")

    return "\n\n".join(parts)


def format_error(error: LimitsBotError) -> str:
    """Plain-text reply for a failed request."""
    if isinstance(error, RequestError):
        return f"Try again. {error.user_message} ❌"
    return error.user_message
