"""
Test configuration and shared fixtures for botmock.

Provides fixtures for:
- Settings from .env.test
- Dispatchers wired with small test bots (echo, photo upload, hanging handler)
"""
import asyncio
import io
from pathlib import Path

from dotenv import load_dotenv

# =============================================================================
# LOAD TEST ENVIRONMENT (.env.test)
# =============================================================================

env_test_path = Path(__file__).parent.parent / ".env.test"
if env_test_path.exists():
    load_dotenv(env_test_path, override=True)

import pytest
from aiogram import Bot, Dispatcher, F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import (
    BufferedInputFile,
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
)

from botmock import get_settings, setup_logging
from botmock.config import Settings

setup_logging(get_settings().log_level)


class Survey(StatesGroup):
    waiting_name = State()


# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """get_settings() is cached; tests that patch the environment need a fresh one."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings()


# =============================================================================
# TEST BOTS
# =============================================================================


def _echo_router() -> Router:
    router = Router(name="echo")

    @router.message(Command("start"))
    async def start(message: Message) -> None:
        keyboard = InlineKeyboardMarkup(inline_keyboard=[[
            InlineKeyboardButton(text="Yes", callback_data="answer:yes"),
            InlineKeyboardButton(text="No", callback_data="answer:no"),
        ]])
        await message.answer("Do you like tests?", reply_markup=keyboard)

    @router.message(Command("survey"))
    async def survey(message: Message, state: FSMContext) -> None:
        await state.set_state(Survey.waiting_name)
        await message.answer("What is your name?")

    @router.message(Survey.waiting_name, F.text)
    async def survey_name(message: Message, state: FSMContext) -> None:
        await state.clear()
        await message.answer(f"Nice to meet you, {message.text}")

    @router.callback_query(F.data.startswith("answer:"))
    async def answer(callback: CallbackQuery) -> None:
        choice = callback.data.split(":", 1)[1]
        await callback.answer()
        await callback.message.edit_text(f"You answered {choice}")

    @router.message(F.text)
    async def echo(message: Message) -> None:
        await message.answer(message.text)

    return router


def _photo_router() -> Router:
    router = Router(name="photo")

    @router.message(Command("photo"))
    async def send_photo(message: Message, bot: Bot) -> None:
        buffer = io.BytesIO(b"\x01\x02\x03")
        await bot.send_photo(
            chat_id=message.chat.id,
            photo=BufferedInputFile(buffer.getvalue(), filename="tiny.png"),
            caption="tiny",
        )

    return router


def _hanging_router() -> Router:
    router = Router(name="hanging")

    @router.message(F.text == "hang")
    async def hang(message: Message) -> None:
        await message.answer("working on it")
        await asyncio.Event().wait()

    return router


@pytest.fixture
def simple_dispatcher() -> Dispatcher:
    """Dispatcher without handlers."""
    return Dispatcher(storage=MemoryStorage())


@pytest.fixture
def echo_dispatcher() -> Dispatcher:
    """Dispatcher with an echo bot, a keyboard and a one-step survey."""
    dp = Dispatcher(storage=MemoryStorage())
    dp.include_router(_echo_router())
    return dp


@pytest.fixture
def photo_dispatcher() -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())
    dp.include_router(_photo_router())
    return dp


@pytest.fixture
def hanging_dispatcher() -> Dispatcher:
    """Dispatcher whose handler replies once and then never returns."""
    dp = Dispatcher(storage=MemoryStorage())
    dp.include_router(_hanging_router())
    return dp
