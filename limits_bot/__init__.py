"""
Limits Bot
==========

Telegram bot that shows the largest resting limit orders on Binance Spot.

Modules:
    core: Errors, symbol validation and request orchestration
    data: Order book models, depth aggregation, result cache, market registry
    exchange: Binance Spot REST client
    notifications: Telegram bot and message rendering
    utils: Configuration and logging
"""

__version__ = "0.1.0"
