"""
High-level test client for bot tests.

MockTelegramBot owns one mock server, recorder, generator and chat state
for the duration of an ``async with`` block, hands out an aiogram Bot
pointed at the server, and provides user actions plus assertions over what
the bot sent.
"""
import asyncio
import logging
from collections.abc import Callable, Iterable
from types import TracebackType
from typing import Any

from aiogram import Bot, Dispatcher
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.client.telegram import TelegramAPIServer
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State
from aiogram.types import Message, Update

from botmock.config import Settings, get_settings
from botmock.exceptions import (
    ButtonNotFoundError,
    DispatchTimeout,
    NoDispatcherError,
    NoMessagesError,
    NotStartedError,
)
from botmock.generator import MockResponseGenerator
from botmock.ids import Clock, IdCounter
from botmock.log import print_requests
from botmock.recorder import CapturedRequest, RequestRecorder
from botmock.registry import MethodRegistry
from botmock.responses import BotIdentity, ResponseOverride
from botmock.server import MockServer, ServerAddress, ShutdownHandle
from botmock.state import ChatState, StoredMessage
from botmock.updates import UpdateBuilder

logger = logging.getLogger("botmock.context")

SEND_METHODS = frozenset({
    "sendMessage",
    "sendPhoto",
    "sendVideo",
    "sendAudio",
    "sendVoice",
    "sendVideoNote",
    "sendDocument",
    "sendAnimation",
    "sendSticker",
    "sendLocation",
    "sendVenue",
    "sendContact",
    "sendDice",
    "sendPoll",
    "sendInvoice",
    "sendMediaGroup",
    "forwardMessage",
    "copyMessage",
})


def _sent_text(request: CapturedRequest) -> str | None:
    """Text of a sent message, or its caption for media."""
    if request.method == "sendMediaGroup":
        items = [item for item in request.get("media") or [] if isinstance(item, dict)]
        captions = [item["caption"] for item in items if item.get("caption") is not None]
        return captions[-1] if captions else None
    text = request.get("text")
    return text if text is not None else request.get("caption")


class MockTelegramBot:
    """
    Test client for bot tests.

    Usage::

        async with MockTelegramBot(dp) as mock:
            await mock.dispatch(mock.updates.message("hello"))
            assert mock.get_last_text() == "hello"

    Every instance has its own server port, recorder and id counters, so
    tests using separate instances can run concurrently.
    """

    def __init__(
        self,
        dispatcher: Dispatcher | None = None,
        *,
        user_id: int | None = None,
        chat_id: int | None = None,
        chat_type: str | None = None,
        message_thread_id: int | None = None,
        settings: Settings | None = None,
        port: int | None = None,
        overrides: Iterable[ResponseOverride] = (),
        me: BotIdentity | None = None,
        dispatch_timeout: float | None = None,
        registry: MethodRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher
        self.user_id = user_id if user_id is not None else self.settings.user_id
        if chat_id is None:
            chat_id = self.settings.chat_id
        self.chat_id = chat_id if chat_id is not None else self.user_id
        self.message_thread_id = message_thread_id
        self.dispatch_timeout = (
            dispatch_timeout if dispatch_timeout is not None else self.settings.dispatch_timeout
        )

        self.token = self.settings.bot_token
        self.me = me or BotIdentity.from_token(self.token)
        self.clock = Clock(self.settings.reference_timestamp)
        self.ids = IdCounter()

        self.recorder = RequestRecorder()
        self.chat_state = ChatState(self.clock)
        self.generator = MockResponseGenerator(
            registry=registry,
            state=self.chat_state,
            ids=self.ids,
            clock=self.clock,
            me=self.me,
        )
        for override in overrides:
            self.generator.add_override(override)

        self.updates = UpdateBuilder(
            user_id=self.user_id,
            chat_id=self.chat_id,
            chat_type=chat_type,
            message_thread_id=message_thread_id,
            message_ids=self.ids,
            clock=self.clock,
            me=self.me,
        )

        self._server = MockServer(self.recorder, self.generator, self.settings, port=port)
        self._shutdown: ShutdownHandle | None = None
        self._bot: Bot | None = None
        self.address: ServerAddress | None = None

    async def __aenter__(self) -> "MockTelegramBot":
        """Start the mock server and create bot."""
        self.address, self._shutdown = await self._server.start()

        local_api = TelegramAPIServer.from_base(self.address.url)
        session = AiohttpSession(api=local_api)
        self._bot = Bot(token=self.token, session=session)

        logger.debug("MockTelegramBot started at %s", self.address.url)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Stop the mock server and close bot session."""
        try:
            if self._bot is not None:
                await self._bot.session.close()
        finally:
            if self._shutdown is not None:
                await self._shutdown.stop()
        logger.debug("MockTelegramBot stopped")

    @property
    def bot(self) -> Bot:
        """Get the bot instance."""
        if self._bot is None:
            raise NotStartedError("MockTelegramBot not started. Use 'async with' context.")
        return self._bot

    @property
    def api_url(self) -> str:
        if self.address is None:
            raise NotStartedError("MockTelegramBot not started. Use 'async with' context.")
        return self.address.url

    # =========================================================================
    # Dispatching
    # =========================================================================

    async def dispatch(
        self,
        update: Update | Iterable[Update],
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """Feed one update, or several in order, and wait until they are handled.

        Several updates share one timeout and the result of the last one is
        returned. Raises DispatchTimeout naming the update still in progress;
        calls recorded until then stay in the recorder.
        """
        dispatcher = self.dispatcher
        if dispatcher is None:
            raise NoDispatcherError("MockTelegramBot was created without a Dispatcher")

        updates = [update] if isinstance(update, Update) else list(update)
        timeout = timeout if timeout is not None else self.dispatch_timeout
        current = updates[0] if updates else None

        async def feed() -> Any:
            nonlocal current
            result = None
            for item in updates:
                current = item
                self._register_update(item)
                result = await dispatcher.feed_update(self.bot, item, **kwargs)
                logger.debug("Update %d handled (%s)", item.update_id, item.event_type)
            return result

        try:
            return await asyncio.wait_for(feed(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Update %d not handled within %.2fs", current.update_id, timeout)
            raise DispatchTimeout(current.update_id, timeout) from None

    def _register_update(self, update: Update) -> None:
        """Put messages carried by the update into the chat state."""
        for message, is_new in (
            (update.message, True),
            (update.channel_post, True),
            (update.edited_message, False),
            (update.edited_channel_post, False),
        ):
            if message is not None:
                self._store_message(message, is_new)

        if update.callback_query is not None and isinstance(update.callback_query.message, Message):
            message = update.callback_query.message
            if self.chat_state.get_message(message.chat.id, message.message_id) is None:
                self._store_message(message, True)

    def _store_message(self, message: Message, is_new: bool) -> None:
        payload = message.model_dump(mode="json", by_alias=True, exclude_none=True)
        self.chat_state.remember_chat(payload["chat"])

        if not is_new:
            edited = self.chat_state.update_message(
                message.chat.id, message.message_id, payload,
            )
            if edited is not None:
                return

        is_bot = message.from_user is not None and message.from_user.is_bot
        self.chat_state.add_message(payload, is_bot=is_bot)

    # =========================================================================
    # User Actions
    # =========================================================================

    async def send_message(self, text: str, **overrides: Any) -> Any:
        """Simulate user sending a text message."""
        return await self.dispatch(self.updates.message(text, **overrides))

    async def send_command(self, name: str, args: str | None = None, **overrides: Any) -> Any:
        return await self.dispatch(self.updates.command(name, args, **overrides))

    async def send_photo(
        self,
        file_id: str = "test_photo_id",
        caption: str | None = None,
        **overrides: Any,
    ) -> Any:
        """Simulate user sending a photo."""
        return await self.dispatch(self.updates.photo(file_id, caption, **overrides))

    async def send_document(
        self,
        file_id: str = "test_document_id",
        file_name: str | None = "document.pdf",
        mime_type: str = "application/pdf",
        caption: str | None = None,
        **overrides: Any,
    ) -> Any:
        """Simulate user sending a document."""
        return await self.dispatch(
            self.updates.document(file_id, file_name, mime_type, caption, **overrides)
        )

    async def click_button(self, callback_data: str, message_id: int | None = None) -> Any:
        """Simulate user clicking inline button by callback_data."""
        if message_id is None:
            message = self.chat_state.get_last_bot_message(self.chat_id)
            if message is None:
                raise NoMessagesError("No bot messages in chat to click button on")
        else:
            message = self.chat_state.get_message(self.chat_id, message_id)
            if message is None:
                raise NoMessagesError(f"Message {message_id} not found")

        update = self.updates.callback_query(callback_data, message=message.payload)
        logger.debug("User clicked button: %s on message %d", callback_data, message.message_id)
        return await self.dispatch(update)

    async def click_button_by_text(self, button_text: str) -> Any:
        """Simulate user clicking inline button by visible text."""
        message = self.chat_state.find_message_with_button(self.chat_id, button_text)
        if message is None:
            raise ButtonNotFoundError(f"No button with text '{button_text}' found in chat")

        callback_data = message.get_button_callback_data(button_text)
        return await self.click_button(callback_data, message.message_id)

    async def dispatch_and_check_last_text(
        self, update: Update | Iterable[Update], text: str,
    ) -> None:
        """Dispatch and assert the text or caption of the last sent message."""
        await self.dispatch(update)
        self._check_last_text(text)

    async def dispatch_and_check_state(
        self, update: Update | Iterable[Update], state: State | str | None,
    ) -> None:
        """Dispatch and assert the FSM state of the default user."""
        await self.dispatch(update)
        await self.assert_state(state)

    async def dispatch_and_check_last_text_and_state(
        self,
        update: Update | Iterable[Update],
        text: str,
        state: State | str | None,
    ) -> None:
        await self.dispatch(update)
        self._check_last_text(text)
        await self.assert_state(state)

    def _check_last_text(self, text: str) -> None:
        last = self.get_last_sent()
        assert last is not None, "No messages were sent"
        last_text = _sent_text(last)
        assert last_text == text, f"Expected last text {text!r}, got {last_text!r}"

    # =========================================================================
    # FSM
    # =========================================================================

    def fsm_context(
        self,
        chat_id: int | None = None,
        user_id: int | None = None,
        thread_id: int | None = None,
    ) -> FSMContext:
        """FSM context of a user, resolved with the dispatcher's strategy."""
        if self.dispatcher is None:
            raise NoDispatcherError("FSM helpers need a Dispatcher")
        return self.dispatcher.fsm.resolve_context(
            bot=self.bot,
            chat_id=chat_id if chat_id is not None else self.chat_id,
            user_id=user_id if user_id is not None else self.user_id,
            thread_id=thread_id if thread_id is not None else self.message_thread_id,
        )

    async def set_state(self, state: State | str | None, **kwargs: Any) -> None:
        await self.fsm_context(**kwargs).set_state(state)

    async def get_state(self, **kwargs: Any) -> str | None:
        return await self.fsm_context(**kwargs).get_state()

    async def assert_state(self, expected: State | str | None, **kwargs: Any) -> None:
        """Assert the FSM state of the default user."""
        if isinstance(expected, State):
            expected = expected.state
        actual = await self.get_state(**kwargs)
        assert actual == expected, f"Expected state {expected!r}, got {actual!r}"

    # =========================================================================
    # Response Inspection
    # =========================================================================

    def calls(self, method: str | None = None, **params: Any) -> list[CapturedRequest]:
        """Recorded calls, optionally filtered by method and parameter values."""
        return self.recorder.find(method, **params)

    def last_call(self, method: str | None = None) -> CapturedRequest | None:
        return self.recorder.last(method)

    def get_sent_messages(self) -> list[CapturedRequest]:
        """Get all sendMessage requests."""
        return self.recorder.by_method("sendMessage")

    def get_last_text(self) -> str | None:
        """Get text from the last sent message."""
        last = self.recorder.last("sendMessage")
        if last is None:
            return None
        return last.get("text")

    def get_last_sent(self) -> CapturedRequest | None:
        """Last recorded call of any message-sending method."""
        for request in reversed(self.recorder.all()):
            if request.method in SEND_METHODS:
                return request
        return None

    def get_last_keyboard(self) -> dict[str, Any] | None:
        """Get reply_markup from the last message-sending call."""
        last = self.get_last_sent()
        return last.get("reply_markup") if last is not None else None

    def get_bot_messages(self, include_deleted: bool = False) -> list[StoredMessage]:
        """Get all bot messages in the default chat."""
        return self.chat_state.get_bot_messages(self.chat_id, include_deleted)

    def get_last_bot_message(self) -> StoredMessage | None:
        return self.chat_state.get_last_bot_message(self.chat_id)

    def print_requests(self) -> None:
        print_requests(self.recorder.all(), title=f"Captured requests [{self.recorder.session_id[:8]}]")

    # =========================================================================
    # Overrides
    # =========================================================================

    def fail_next(
        self,
        method: str,
        error_code: int = 400,
        description: str | None = None,
        when: Callable[[Any], bool] | None = None,
        retry_after: int | None = None,
    ) -> ResponseOverride:
        """Make the next matching call fail with an error envelope."""
        return self.generator.expect_error(method, error_code, description, when, retry_after)

    def respond_next(
        self,
        method: str,
        result: Any,
        when: Callable[[Any], bool] | None = None,
    ) -> ResponseOverride:
        """Answer the next matching call with a canned result."""
        return self.generator.expect_result(method, result, when)

    # =========================================================================
    # Assertions
    # =========================================================================

    def assert_called(self, method: str, times: int | None = None, **params: Any) -> None:
        """Assert a method was called (a given number of times)."""
        matching = self.calls(method, **params)
        if times is None:
            assert matching, f"{method} was not called with {params or 'any params'}"
        else:
            assert len(matching) == times, (
                f"Expected {times} {method} call(s), got {len(matching)}"
            )

    def assert_not_called(self, method: str) -> None:
        count = self.recorder.count(method)
        assert count == 0, f"{method} was called {count} time(s)"

    def assert_message_sent(self) -> None:
        """Assert that at least one message was sent."""
        assert self.get_sent_messages(), "No messages were sent"

    def assert_message_contains(self, text: str) -> None:
        """Assert that the last message contains specific text."""
        last_text = self.get_last_text()
        assert last_text is not None, "No message was sent"
        assert text in last_text, f"Text '{text}' not found in message: {last_text}"

    def assert_callback_answered(self) -> None:
        """Assert that callback query was answered."""
        assert self.recorder.count("answerCallbackQuery"), "Callback query was not answered"

    def assert_keyboard_has_button(self, button_text: str) -> None:
        """Assert that the last message has a button with specific text."""
        keyboard = self.get_last_keyboard()
        assert keyboard is not None, "No keyboard in last message"

        rows = keyboard.get("inline_keyboard") or keyboard.get("keyboard") or []
        for row in rows:
            for button in row:
                label = button.get("text", "") if isinstance(button, dict) else str(button)
                if button_text in label:
                    return
        raise AssertionError(f"Button '{button_text}' not found in keyboard")

    # =========================================================================
    # Utilities
    # =========================================================================

    def clear(self) -> None:
        """Clear recorded requests, chat state and pending overrides."""
        self.recorder.clear()
        self.chat_state.clear()
        self.generator.clear_overrides()
        logger.debug("Cleared all state")
