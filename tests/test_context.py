"""
End-to-end tests for MockTelegramBot: a real aiogram Bot and Dispatcher
talking to the mock server.
"""
import asyncio

import pytest
from aiogram import Dispatcher
from aiogram.exceptions import TelegramBadRequest, TelegramRetryAfter
from aiogram.types import BufferedInputFile

from botmock import MockTelegramBot
from botmock.exceptions import (
    ButtonNotFoundError,
    DispatchTimeout,
    NoDispatcherError,
    NoMessagesError,
    NotStartedError,
)


class TestLifecycle:
    """Test starting, stopping and misuse."""

    @pytest.mark.asyncio
    async def test_starts_and_stops(self, simple_dispatcher: Dispatcher) -> None:
        """Test that mock server can start and stop without errors."""
        async with MockTelegramBot(simple_dispatcher) as mock:
            assert mock.bot is not None
            assert mock.api_url.startswith("http://127.0.0.1:")

    def test_bot_before_start(self) -> None:
        with pytest.raises(NotStartedError):
            MockTelegramBot().bot

    @pytest.mark.asyncio
    async def test_dispatch_without_dispatcher(self) -> None:
        async with MockTelegramBot() as mock:
            with pytest.raises(NoDispatcherError):
                await mock.send_message("hello")

    @pytest.mark.asyncio
    async def test_get_me(self) -> None:
        """Bot id comes from the token prefix."""
        async with MockTelegramBot() as mock:
            me = await mock.bot.get_me()

            assert me.is_bot
            assert me.id == int(mock.token.split(":")[0])

    @pytest.mark.asyncio
    async def test_concurrent_instances_are_isolated(self) -> None:
        async def run(chat_id: int) -> list[str]:
            async with MockTelegramBot() as mock:
                await mock.bot.send_message(chat_id=chat_id, text=f"for {chat_id}")
                return [r.get("text") for r in mock.recorder.all()]

        first, second = await asyncio.gather(run(1), run(2))

        assert first == ["for 1"]
        assert second == ["for 2"]


class TestDispatch:
    """Test feeding updates to the dispatcher."""

    @pytest.mark.asyncio
    async def test_echo(self, echo_dispatcher: Dispatcher) -> None:
        """An echo bot answers exactly once into the same chat."""
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.dispatch(mock.updates.message("hello", chat_id=42))

            mock.assert_called("sendMessage", times=1, chat_id=42, text="hello")
            assert mock.get_last_text() == "hello"

    @pytest.mark.asyncio
    async def test_echo_in_group(self, echo_dispatcher: Dispatcher) -> None:
        """Chat shape from the update is echoed back in the result."""
        async with MockTelegramBot(echo_dispatcher, chat_id=-1001234567890) as mock:
            await mock.send_message("hi group")

            message = mock.get_last_bot_message()
            assert message.payload["chat"]["type"] == "supergroup"
            assert message.payload["chat"]["title"] == "Test Group"

    @pytest.mark.asyncio
    async def test_dispatch_and_check_last_text(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.dispatch_and_check_last_text(mock.updates.message("ping"), "ping")

    @pytest.mark.asyncio
    async def test_last_text_falls_back_to_caption(self, photo_dispatcher: Dispatcher) -> None:
        """A captioned photo counts as the last sent text."""
        async with MockTelegramBot(photo_dispatcher) as mock:
            await mock.dispatch_and_check_last_text(mock.updates.command("photo"), "tiny")

    @pytest.mark.asyncio
    async def test_last_text_mismatch(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            with pytest.raises(AssertionError, match="pong"):
                await mock.dispatch_and_check_last_text(mock.updates.message("ping"), "pong")

    @pytest.mark.asyncio
    async def test_dispatch_sequence(self, echo_dispatcher: Dispatcher) -> None:
        """Several updates are handled in order under one call."""
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.dispatch([mock.updates.message("one"), mock.updates.message("two")])

            assert [r.get("text") for r in mock.calls("sendMessage")] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_sequence_timeout_names_pending_update(
        self, hanging_dispatcher: Dispatcher,
    ) -> None:
        async with MockTelegramBot(hanging_dispatcher) as mock:
            first = mock.updates.message("hang")
            second = mock.updates.message("never handled")

            with pytest.raises(DispatchTimeout) as exc_info:
                await mock.dispatch([first, second], timeout=0.5)

            assert exc_info.value.update_id == first.update_id

    @pytest.mark.asyncio
    async def test_dispatch_and_check_state(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.dispatch_and_check_state(mock.updates.command("survey"), "Survey:waiting_name")

    @pytest.mark.asyncio
    async def test_dispatch_and_check_last_text_and_state(self, echo_dispatcher: Dispatcher) -> None:
        """The whole survey runs as one sequence ending in a cleared state."""
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.dispatch_and_check_last_text_and_state(
                [mock.updates.command("survey"), mock.updates.message("Ann")],
                "Nice to meet you, Ann",
                None,
            )

    @pytest.mark.asyncio
    async def test_user_messages_stored(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.send_message("stored")

            user_messages = mock.chat_state.get_user_messages(mock.chat_id)
            assert [m.text for m in user_messages] == ["stored"]

    @pytest.mark.asyncio
    async def test_hanging_handler_times_out(self, hanging_dispatcher: Dispatcher) -> None:
        """Calls made before the timeout stay recorded."""
        async with MockTelegramBot(hanging_dispatcher) as mock:
            update = mock.updates.message("hang")

            with pytest.raises(DispatchTimeout) as exc_info:
                await mock.dispatch(update, timeout=0.5)

            assert exc_info.value.update_id == update.update_id
            mock.assert_called("sendMessage", times=1, text="working on it")

    @pytest.mark.asyncio
    async def test_keyboard_and_button_click(self, echo_dispatcher: Dispatcher) -> None:
        """Clicking a button answers the callback and edits the message."""
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.send_command("start")
            mock.assert_keyboard_has_button("Yes")

            await mock.click_button_by_text("Yes")

            mock.assert_callback_answered()
            mock.assert_called("editMessageText", times=1, text="You answered yes")
            last = mock.get_last_bot_message()
            assert last.text == "You answered yes"
            assert not last.has_inline_keyboard()

    @pytest.mark.asyncio
    async def test_click_missing_button(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.send_message("no keyboard here")

            with pytest.raises(ButtonNotFoundError):
                await mock.click_button_by_text("Yes")

    @pytest.mark.asyncio
    async def test_click_in_empty_chat(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            with pytest.raises(NoMessagesError):
                await mock.click_button("answer:yes")

    @pytest.mark.asyncio
    async def test_fsm_survey(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.send_command("survey")
            await mock.assert_state("Survey:waiting_name")

            await mock.send_message("Ann")

            mock.assert_message_contains("Nice to meet you, Ann")
            await mock.assert_state(None)

    @pytest.mark.asyncio
    async def test_set_state_directly(self, echo_dispatcher: Dispatcher) -> None:
        async with MockTelegramBot(echo_dispatcher) as mock:
            await mock.set_state("Survey:waiting_name")

            await mock.send_message("Bob")

            assert mock.get_last_text() == "Nice to meet you, Bob"


class TestUploads:
    """Test file uploads and downloads through the real client."""

    @pytest.mark.asyncio
    async def test_photo_upload_captured(self, photo_dispatcher: Dispatcher) -> None:
        """Uploaded bytes arrive unchanged with their filename."""
        async with MockTelegramBot(photo_dispatcher) as mock:
            await mock.send_command("photo")

            request = mock.recorder.last("sendPhoto")
            photo = request.file("photo")
            assert photo.content == b"\x01\x02\x03"
            assert photo.filename == "tiny.png"
            assert request.get("caption") == "tiny"

    @pytest.mark.asyncio
    async def test_download_uploaded_file(self) -> None:
        async with MockTelegramBot() as mock:
            sent = await mock.bot.send_document(
                chat_id=42,
                document=BufferedInputFile(b"report body", filename="report.txt"),
            )

            file = await mock.bot.get_file(sent.document.file_id)
            downloaded = await mock.bot.download(file)

            assert file.file_path.endswith(".txt")
            assert downloaded.read() == b"report body"


class TestOverrides:
    """Test forced failures seen by the bot."""

    @pytest.mark.asyncio
    async def test_fail_next_then_succeed(self) -> None:
        async with MockTelegramBot() as mock:
            mock.fail_next("sendMessage", description="Bad Request: chat not found")

            with pytest.raises(TelegramBadRequest, match="chat not found"):
                await mock.bot.send_message(chat_id=42, text="first")
            second = await mock.bot.send_message(chat_id=42, text="second")

            assert second.text == "second"
            mock.assert_called("sendMessage", times=2)

    @pytest.mark.asyncio
    async def test_retry_after(self) -> None:
        async with MockTelegramBot() as mock:
            mock.fail_next("sendMessage", error_code=429, retry_after=5)

            with pytest.raises(TelegramRetryAfter) as exc_info:
                await mock.bot.send_message(chat_id=42, text="x")

            assert exc_info.value.retry_after == 5

    @pytest.mark.asyncio
    async def test_respond_next(self) -> None:
        async with MockTelegramBot() as mock:
            mock.respond_next("deleteMessage", True)

            assert await mock.bot.delete_message(chat_id=42, message_id=999) is True

    @pytest.mark.asyncio
    async def test_edit_unknown_message(self) -> None:
        async with MockTelegramBot() as mock:
            with pytest.raises(TelegramBadRequest, match="message to edit not found"):
                await mock.bot.edit_message_text(text="x", chat_id=42, message_id=999)


class TestInspection:
    """Test inspection helpers and clear()."""

    @pytest.mark.asyncio
    async def test_calls_filter(self) -> None:
        async with MockTelegramBot() as mock:
            await mock.bot.send_message(chat_id=1, text="a")
            await mock.bot.send_message(chat_id=2, text="b")

            assert [c.get("text") for c in mock.calls("sendMessage", chat_id=2)] == ["b"]
            assert mock.last_call().get("text") == "b"
            mock.assert_not_called("deleteMessage")

    @pytest.mark.asyncio
    async def test_deleted_message_excluded(self) -> None:
        async with MockTelegramBot(chat_id=42) as mock:
            sent = await mock.bot.send_message(chat_id=42, text="gone")
            await mock.bot.delete_message(chat_id=42, message_id=sent.message_id)

            assert mock.get_bot_messages() == []
            assert len(mock.get_bot_messages(include_deleted=True)) == 1

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        async with MockTelegramBot() as mock:
            await mock.bot.send_message(chat_id=1, text="x")
            mock.fail_next("getMe")
            mock.clear()

            assert len(mock.recorder) == 0
            assert (await mock.bot.get_me()).is_bot

    @pytest.mark.asyncio
    async def test_print_requests(self, capsys: pytest.CaptureFixture[str]) -> None:
        async with MockTelegramBot() as mock:
            await mock.bot.send_message(chat_id=1, text="[bold]x[/bold]")

            mock.print_requests()

        assert "sendMessage" in capsys.readouterr().out
