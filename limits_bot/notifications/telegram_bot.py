"""
Interactive Telegram bot for order book limit queries.

Dialogue:
    /start       -> bot asks for a coin
    "sol"        -> bot validates it and offers depth buttons (3%, 5%, ...)
    [8%] button  -> bot replies with the largest bid/ask clusters
    /cancel      -> dialogue reset

Only allow-listed user IDs get answers.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

import aiohttp
from loguru import logger

from limits_bot.core.errors import InvalidDepth, LimitsBotError, RequestError, Unauthorized
from limits_bot.notifications.formatting import format_analysis, format_error
from limits_bot.utils.config import TelegramSettings


# =============================================================================
# Types
# =============================================================================

class DialogueState(Enum):
    """Per-chat dialogue state."""
    START = "start"
    RECEIVE_TOKEN = "receive_token"
    RECEIVE_FILTERS = "receive_filters"


@dataclass(frozen=True)
class Dialogue:
    state: DialogueState = DialogueState.START
    symbol: Optional[str] = None


CommandHandler = Callable[[int, int], Awaitable[None]]

# Pause after a failed getUpdates call
POLL_ERROR_DELAY = 5


HELP_TEXT = """
These commands are supported:
/start - check an order book
/help - display this text
/cancel - cancel the current query
"""


# =============================================================================
# Bot Controller
# =============================================================================

class TelegramBotController:
    """
    Long-polling Telegram bot in front of the request orchestrator.

    Each update is handled in its own task, so a slow exchange call for one
    user never blocks others.
    """

    API_URL = "https://api.telegram.org/bot{token}/{method}"

    def __init__(
        self,
        settings: TelegramSettings,
        orchestrator,
        depth_options: Iterable[Decimal] = (Decimal("3"), Decimal("5"), Decimal("8"), Decimal("10"), Decimal("15")),
    ):
        """
        Initialize bot controller.

        Args:
            settings: Token, allow-list and polling options
            orchestrator: RequestOrchestrator
            depth_options: Depths offered as inline buttons
        """
        self.settings = settings
        self.orchestrator = orchestrator
        self.depth_options = tuple(depth_options)

        # State
        self._session: Optional[aiohttp.ClientSession] = None
        self._running = False
        self._last_update_id = 0
        self._dialogues: Dict[int, Dialogue] = {}
        self._tasks: Set[asyncio.Task] = set()

        # Command handlers
        self._commands: Dict[str, CommandHandler] = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "cancel": self._cmd_cancel,
        }

    @property
    def is_configured(self) -> bool:
        """Check if bot is configured."""
        return bool(self.settings.bot_token)

    def get_dialogue(self, chat_id: int) -> Dialogue:
        return self._dialogues.get(chat_id, Dialogue())

    def _set_dialogue(self, chat_id: int, state: DialogueState, symbol: Optional[str] = None) -> None:
        self._dialogues[chat_id] = Dialogue(state=state, symbol=symbol)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open the HTTP session."""
        if not self.is_configured:
            raise ValueError("Telegram bot token is not configured")

        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._running = True

        logger.info("Telegram bot controller started")

    async def stop(self) -> None:
        """Stop polling, wait for in-flight updates and close the session."""
        self._running = False

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._session:
            await self._session.close()
            self._session = None

        logger.info("Telegram bot controller stopped")

    async def run(self) -> None:
        """Start and poll until stopped or cancelled."""
        await self.start()
        try:
            await self._poll_updates()
        finally:
            await self.stop()

    # =========================================================================
    # API Methods
    # =========================================================================

    async def _api_call(self, method: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        """Make Telegram API call."""
        if not self._session:
            return {}

        url = self.API_URL.format(token=self.settings.bot_token, method=method)

        try:
            async with self._session.post(url, json=params or {}) as resp:
                data = await resp.json()
                if not data.get("ok"):
                    logger.error(f"Telegram API error on {method}: {data.get('description')}")
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Telegram API call {method} failed: {e}")
            return {}

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Dict = None,
    ) -> bool:
        """Send a message."""
        params = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            params["parse_mode"] = parse_mode
        if reply_markup:
            params["reply_markup"] = reply_markup

        result = await self._api_call("sendMessage", params)
        return result.get("ok", False)

    async def answer_callback_query(self, callback_query_id: str) -> bool:
        result = await self._api_call("answerCallbackQuery", {"callback_query_id": callback_query_id})
        return result.get("ok", False)

    def depth_keyboard(self) -> Dict[str, Any]:
        """Inline keyboard with one button per depth option."""
        buttons = [{"text": f"{d}%", "callback_data": f"{d}%"} for d in self.depth_options]
        return {"inline_keyboard": [buttons]}

    # =========================================================================
    # Polling
    # =========================================================================

    async def _poll_updates(self) -> None:
        """Poll for updates."""
        while self._running:
            try:
                result = await self._api_call("getUpdates", {
                    "offset": self._last_update_id + 1,
                    "timeout": self.settings.poll_timeout,
                    "allowed_updates": ["message", "callback_query"],
                })

                for update in result.get("result", []):
                    self._last_update_id = update["update_id"]
                    self._spawn(update)

                if not result.get("ok"):
                    await asyncio.sleep(self._poll_error_delay(result))

            except asyncio.CancelledError:
                break
            except (KeyError, TypeError) as e:
                logger.error(f"Polling error: {e}")
                await asyncio.sleep(POLL_ERROR_DELAY)

    @staticmethod
    def _poll_error_delay(result: Dict[str, Any]) -> float:
        """Delay before the next poll; honours retry_after on 429."""
        parameters = result.get("parameters") or {}
        retry_after = parameters.get("retry_after")
        if isinstance(retry_after, (int, float)) and retry_after > 0:
            return retry_after
        return POLL_ERROR_DELAY

    def _spawn(self, update: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._safe_handle(update))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _safe_handle(self, update: Dict[str, Any]) -> None:
        """Handle one update; a failure never reaches the poller."""
        try:
            await self.handle_update(update)
        except Exception as e:
            logger.exception(f"Error handling update {update.get('update_id')}: {e}")

    # =========================================================================
    # Update Routing
    # =========================================================================

    async def handle_update(self, update: Dict[str, Any]) -> None:
        """Handle incoming update."""
        if "callback_query" in update:
            await self._handle_callback_query(update["callback_query"])
        elif "message" in update:
            await self._handle_message(update["message"])

    def _is_authorized(self, user_id: Optional[int]) -> bool:
        """Check if user is on the allow-list."""
        return user_id is not None and user_id in self.settings.allowed_users

    async def _reject(self, chat_id: int, user: Dict[str, Any]) -> None:
        await self.send_message(chat_id, Unauthorized().user_message)
        logger.warning(f"Unauthorized access attempt from {user.get('username', 'Unknown')} (ID: {user.get('id')})")

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        chat_id = message.get("chat", {}).get("id")
        user = message.get("from", {})
        if chat_id is None:
            return

        if not self._is_authorized(user.get("id")):
            await self._reject(chat_id, user)
            return

        text = message.get("text")
        if not text:
            await self.send_message(chat_id, "Send me plain text.")
            return

        if text.startswith("/"):
            await self._handle_command(chat_id, user.get("id"), text)
            return

        dialogue = self.get_dialogue(chat_id)

        if dialogue.state == DialogueState.START:
            await self._cmd_start(chat_id, user.get("id"))
        elif dialogue.state == DialogueState.RECEIVE_TOKEN:
            await self._receive_token(chat_id, text)
        else:
            # Typed depth runs the query; anything else is taken as a new coin
            try:
                self.orchestrator.parse_depth(text)
            except InvalidDepth:
                await self._receive_token(chat_id, text)
                return
            await self._perform(chat_id, dialogue.symbol, text)

    async def _handle_callback_query(self, query: Dict[str, Any]) -> None:
        user = query.get("from", {})
        chat_id = query.get("message", {}).get("chat", {}).get("id")

        if query.get("id"):
            await self.answer_callback_query(query["id"])

        if chat_id is None:
            return

        if not self._is_authorized(user.get("id")):
            await self._reject(chat_id, user)
            return

        dialogue = self.get_dialogue(chat_id)
        if dialogue.state != DialogueState.RECEIVE_FILTERS or not query.get("data"):
            await self.send_message(chat_id, "Unable to handle the message. Type /help to see the usage.")
            return

        await self._perform(chat_id, dialogue.symbol, query["data"])

    async def _handle_command(self, chat_id: int, user_id: int, text: str) -> None:
        """Handle a command."""
        parts = text[1:].split()
        command = parts[0].lower().split("@")[0] if parts else ""  # Handle @botname suffix

        handler = self._commands.get(command)
        if handler:
            await handler(chat_id, user_id)
        else:
            await self.send_message(chat_id, f"Unknown command: /{command}\nUse /help for available commands.")

    # =========================================================================
    # Command Handlers
    # =========================================================================

    async def _cmd_start(self, chat_id: int, user_id: int) -> None:
        """Handle /start command."""
        await self.send_message(chat_id, "Enter Binance spot token")
        self._set_dialogue(chat_id, DialogueState.RECEIVE_TOKEN)

    async def _cmd_help(self, chat_id: int, user_id: int) -> None:
        """Handle /help command."""
        await self.send_message(chat_id, HELP_TEXT.strip())

    async def _cmd_cancel(self, chat_id: int, user_id: int) -> None:
        """Handle /cancel command."""
        await self.send_message(chat_id, "Cancelled. Enter /start to check order book")
        self._dialogues.pop(chat_id, None)

    # =========================================================================
    # Dialogue Steps
    # =========================================================================

    async def _receive_token(self, chat_id: int, text: str) -> None:
        """Validate a coin name and offer depth options."""
        try:
            symbol = self.orchestrator.validate_symbol(text)
        except RequestError as e:
            await self.send_message(chat_id, format_error(e))
            self._set_dialogue(chat_id, DialogueState.RECEIVE_TOKEN)
            return
        except LimitsBotError as e:
            logger.error(f"Error while validating {text!r}: {e}")
            await self.send_message(chat_id, format_error(e))
            self._set_dialogue(chat_id, DialogueState.RECEIVE_TOKEN)
            return

        await self.send_message(
            chat_id,
            f"{symbol} ✅\nChoose depth",
            reply_markup=self.depth_keyboard(),
        )
        self._set_dialogue(chat_id, DialogueState.RECEIVE_FILTERS, symbol)

    async def _perform(self, chat_id: int, symbol: str, depth: str) -> None:
        """Run the analysis and send the result."""
        try:
            response = await self.orchestrator.handle(symbol, depth)
        except InvalidDepth as e:
            await self.send_message(chat_id, format_error(e))
            return
        except LimitsBotError as e:
            logger.error(f"Error while requesting order book for {symbol}: {e}")
            await self.send_message(chat_id, format_error(e))
        else:
            await self.send_message(chat_id, format_analysis(response), parse_mode="MarkdownV2")

        self._set_dialogue(chat_id, DialogueState.RECEIVE_TOKEN)
