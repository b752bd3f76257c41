"""
Tests for the Telegram bot controller.

Covers authorization, the /start -> coin -> depth dialogue and error replies.
"""

import asyncio
import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from limits_bot.core.errors import InvalidDepth, RateLimited, ServiceUnavailable, UnsupportedAsset
from limits_bot.data.models import AnalysisResponse, parse_depth_percent
from limits_bot.notifications.telegram_bot import (
    HELP_TEXT,
    DialogueState,
    TelegramBotController,
)
from limits_bot.utils.config import TelegramSettings


USER_ID = 123456
CHAT_ID = 123456
STRANGER_ID = 999999


def message(text, user_id=USER_ID, chat_id=CHAT_ID):
    return {
        "message_id": 1,
        "from": {"id": user_id, "username": "tester"},
        "chat": {"id": chat_id},
        "text": text,
    }


def callback(data, user_id=USER_ID, chat_id=CHAT_ID):
    return {
        "id": "cb-1",
        "from": {"id": user_id},
        "message": {"chat": {"id": chat_id}},
        "data": data,
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Create test settings."""
    return TelegramSettings(bot_token="test_token_12345", allowed_users=frozenset({USER_ID, 789012}))


@pytest.fixture
def orchestrator(result):
    orchestrator = MagicMock()
    orchestrator.validate_symbol = MagicMock(side_effect=lambda raw: raw.strip().upper())
    orchestrator.parse_depth = MagicMock(side_effect=parse_depth_percent)
    orchestrator.handle = AsyncMock(
        return_value=AnalysisResponse(result=result, from_cache=False, cache_ttl=60)
    )
    return orchestrator


@pytest_asyncio.fixture
async def bot_controller(settings, orchestrator):
    """Create bot controller with mocks."""
    controller = TelegramBotController(settings, orchestrator)
    # Mock API call
    controller._api_call = AsyncMock(return_value={"ok": True})
    controller.send_message = AsyncMock(return_value=True)
    yield controller


def last_text(controller):
    return controller.send_message.call_args.args[1]


# =============================================================================
# Configuration Tests
# =============================================================================

class TestBotConfiguration:
    """Test bot configuration."""

    def test_is_configured(self, settings, orchestrator):
        controller = TelegramBotController(settings, orchestrator)
        assert controller.is_configured is True

    def test_not_configured(self, orchestrator):
        controller = TelegramBotController(TelegramSettings(bot_token=""), orchestrator)
        assert controller.is_configured is False

    @pytest.mark.asyncio
    async def test_start_requires_token(self, orchestrator):
        controller = TelegramBotController(TelegramSettings(bot_token=""), orchestrator)
        with pytest.raises(ValueError):
            await controller.start()

    def test_depth_keyboard(self, settings, orchestrator):
        controller = TelegramBotController(settings, orchestrator, depth_options=[Decimal("3"), Decimal("7.5")])
        keyboard = controller.depth_keyboard()

        assert keyboard == {"inline_keyboard": [[
            {"text": "3%", "callback_data": "3%"},
            {"text": "7.5%", "callback_data": "7.5%"},
        ]]}


# =============================================================================
# Authorization Tests
# =============================================================================

class TestAuthorization:
    """Test user authorization."""

    @pytest.mark.asyncio
    async def test_authorized_user(self, bot_controller):
        assert bot_controller._is_authorized(USER_ID) is True
        assert bot_controller._is_authorized(789012) is True

    @pytest.mark.asyncio
    async def test_unauthorized_user(self, bot_controller):
        assert bot_controller._is_authorized(STRANGER_ID) is False
        assert bot_controller._is_authorized(None) is False

    def test_empty_allow_list_denies_everyone(self, orchestrator):
        controller = TelegramBotController(TelegramSettings(bot_token="t"), orchestrator)
        assert controller._is_authorized(USER_ID) is False

    @pytest.mark.asyncio
    async def test_unauthorized_message(self, bot_controller, orchestrator):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start", user_id=STRANGER_ID)})

        assert last_text(bot_controller) == "Action not allowed"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.START

    @pytest.mark.asyncio
    async def test_unauthorized_callback(self, bot_controller, orchestrator):
        await bot_controller.handle_update({"update_id": 1, "callback_query": callback("8%", user_id=STRANGER_ID)})

        assert last_text(bot_controller) == "Action not allowed"
        orchestrator.handle.assert_not_called()


# =============================================================================
# Command Tests
# =============================================================================

class TestCommands:
    """Test commands."""

    @pytest.mark.asyncio
    async def test_start_command(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})

        assert last_text(bot_controller) == "Enter Binance spot token"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_start_with_bot_name(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start@limits_bot")})
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_help_command(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/help")})
        assert last_text(bot_controller) == HELP_TEXT.strip()

    @pytest.mark.asyncio
    async def test_cancel_command(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("/cancel")})

        assert last_text(bot_controller) == "Cancelled. Enter /start to check order book"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.START

    @pytest.mark.asyncio
    async def test_unknown_command(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/foo")})
        assert "Unknown command: /foo" in last_text(bot_controller)

    @pytest.mark.asyncio
    async def test_bare_slash(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/")})
        assert "Unknown command" in last_text(bot_controller)


# =============================================================================
# Dialogue Tests
# =============================================================================

class TestDialogue:
    """Test the coin -> depth dialogue."""

    @pytest.mark.asyncio
    async def test_text_before_start(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("hello")})

        assert last_text(bot_controller) == "Enter Binance spot token"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_non_text_message(self, bot_controller):
        msg = message(None)
        del msg["text"]
        await bot_controller.handle_update({"update_id": 1, "message": msg})

        assert last_text(bot_controller) == "Send me plain text."

    @pytest.mark.asyncio
    async def test_receive_token(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})

        call = bot_controller.send_message.call_args
        assert call.args[1] == "SOL ✅\nChoose depth"
        assert call.kwargs["reply_markup"] == bot_controller.depth_keyboard()

        dialogue = bot_controller.get_dialogue(CHAT_ID)
        assert dialogue.state == DialogueState.RECEIVE_FILTERS
        assert dialogue.symbol == "SOL"

    @pytest.mark.asyncio
    async def test_receive_token_rejected(self, bot_controller, orchestrator):
        orchestrator.validate_symbol.side_effect = UnsupportedAsset("ETH")

        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("eth")})

        assert last_text(bot_controller) == "Try again. ETH not supported ❌"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_receive_token_markets_not_loaded(self, bot_controller, orchestrator):
        orchestrator.validate_symbol.side_effect = ServiceUnavailable("market list not loaded")

        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})

        assert last_text(bot_controller) == "Exchange is temporarily unavailable, try again"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_depth_button(self, bot_controller, orchestrator):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})
        await bot_controller.handle_update({"update_id": 3, "callback_query": callback("8%")})

        orchestrator.handle.assert_awaited_once_with("SOL", "8%")
        call = bot_controller.send_message.call_args
        assert call.kwargs["parse_mode"] == "MarkdownV2"
        assert call.args[1].startswith("*SOLUSDT*")
        bot_controller._api_call.assert_any_call("answerCallbackQuery", {"callback_query_id": "cb-1"})
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_typed_depth(self, bot_controller, orchestrator):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})
        await bot_controller.handle_update({"update_id": 3, "message": message("12")})

        orchestrator.handle.assert_awaited_once_with("SOL", "12")

    @pytest.mark.asyncio
    async def test_new_coin_while_choosing_depth(self, bot_controller, orchestrator):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})
        await bot_controller.handle_update({"update_id": 3, "message": message("doge")})

        orchestrator.handle.assert_not_called()
        assert bot_controller.get_dialogue(CHAT_ID).symbol == "DOGE"

    @pytest.mark.asyncio
    async def test_callback_without_coin(self, bot_controller, orchestrator):
        await bot_controller.handle_update({"update_id": 1, "callback_query": callback("8%")})

        assert last_text(bot_controller) == "Unable to handle the message. Type /help to see the usage."
        orchestrator.handle.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_depth_keeps_coin(self, bot_controller, orchestrator):
        orchestrator.handle.side_effect = InvalidDepth("0", Decimal("50"))

        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})
        await bot_controller.handle_update({"update_id": 3, "callback_query": callback("0%")})

        assert last_text(bot_controller).startswith("Try again. Depth must be")
        dialogue = bot_controller.get_dialogue(CHAT_ID)
        assert dialogue.state == DialogueState.RECEIVE_FILTERS
        assert dialogue.symbol == "SOL"

    @pytest.mark.asyncio
    async def test_exchange_error(self, bot_controller, orchestrator):
        orchestrator.handle.side_effect = RateLimited("HTTP 429")

        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})
        await bot_controller.handle_update({"update_id": 3, "callback_query": callback("8%")})

        assert last_text(bot_controller) == "Exchange rate limit reached, try again in a minute"
        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_TOKEN

    @pytest.mark.asyncio
    async def test_chats_are_independent(self, bot_controller):
        await bot_controller.handle_update({"update_id": 1, "message": message("/start")})
        await bot_controller.handle_update({"update_id": 2, "message": message("sol")})
        await bot_controller.handle_update({"update_id": 3, "message": message("/start", user_id=789012, chat_id=789012)})

        assert bot_controller.get_dialogue(CHAT_ID).state == DialogueState.RECEIVE_FILTERS
        assert bot_controller.get_dialogue(789012).state == DialogueState.RECEIVE_TOKEN


# =============================================================================
# Polling Tests
# =============================================================================

class TestPolling:
    """Test update polling and API calls."""

    @pytest.mark.asyncio
    async def test_poll_dispatches_updates(self, bot_controller):
        async def fake_api(method, params=None):
            if method == "getUpdates":
                bot_controller._running = False
                return {"ok": True, "result": [{"update_id": 42, "message": message("/help")}]}
            return {"ok": True}

        bot_controller._api_call = AsyncMock(side_effect=fake_api)
        bot_controller._running = True

        await bot_controller._poll_updates()
        await asyncio.gather(*list(bot_controller._tasks))

        assert bot_controller._last_update_id == 42
        assert last_text(bot_controller) == HELP_TEXT.strip()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply,delay", [
        ({"ok": False, "error_code": 409, "description": "Conflict"}, 5),
        ({"ok": False, "error_code": 429, "parameters": {"retry_after": 17}}, 17),
        ({}, 5),
    ])
    async def test_backs_off_on_error_reply(self, bot_controller, monkeypatch, reply, delay):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            bot_controller._running = False

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        bot_controller._api_call = AsyncMock(return_value=reply)
        bot_controller._running = True

        await bot_controller._poll_updates()

        assert bot_controller._api_call.await_count == 1
        assert sleeps == [delay]

    @pytest.mark.asyncio
    async def test_no_backoff_on_ok_reply(self, bot_controller, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)

        async def fake_api(method, params=None):
            bot_controller._running = False
            return {"ok": True, "result": []}

        bot_controller._api_call = AsyncMock(side_effect=fake_api)
        bot_controller._running = True

        await bot_controller._poll_updates()

        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_update_does_not_escape(self, bot_controller):
        bot_controller.send_message.side_effect = RuntimeError("boom")
        await bot_controller._safe_handle({"update_id": 1, "message": message("/help")})

    @pytest.mark.asyncio
    async def test_api_call_without_session(self, settings, orchestrator):
        controller = TelegramBotController(settings, orchestrator)
        assert await controller._api_call("getMe") == {}

    @pytest.mark.asyncio
    async def test_api_call(self, settings, orchestrator):
        controller = TelegramBotController(settings, orchestrator)

        response = MagicMock()
        response.json = AsyncMock(return_value={"ok": True, "result": []})
        context_manager = MagicMock()
        context_manager.__aenter__ = AsyncMock(return_value=response)
        context_manager.__aexit__ = AsyncMock(return_value=None)

        controller._session = MagicMock()
        controller._session.post = MagicMock(return_value=context_manager)

        result = await controller.send_message(CHAT_ID, "hi", parse_mode="MarkdownV2")

        assert result is True
        url = controller._session.post.call_args.args[0]
        assert url == "https://api.telegram.org/bottest_token_12345/sendMessage"
        assert controller._session.post.call_args.kwargs["json"]["parse_mode"] == "MarkdownV2"
