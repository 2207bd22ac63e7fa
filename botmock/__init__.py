"""
Mock Telegram Bot API backend for testing aiogram bots.

Usage in tests:

    from botmock import MockTelegramBot

    async def test_echo(dispatcher):
        async with MockTelegramBot(dispatcher) as mock:
            await mock.dispatch(mock.updates.message("hello", chat_id=42))

            mock.assert_called("sendMessage", times=1, chat_id=42, text="hello")

Every API call the bot makes is recorded (``mock.recorder``) and answered
with a response shaped like the live Bot API. Failures are forced with
``mock.fail_next("sendMessage", error_code=429, retry_after=5)``.
"""
from botmock.config import Settings, get_settings
from botmock.context import MockTelegramBot
from botmock.exceptions import (
    ApiError,
    BotMockError,
    ButtonNotFoundError,
    DispatchTimeout,
    MalformedMultipart,
    NoDispatcherError,
    NoMessagesError,
    NotStartedError,
    PortBindFailure,
    UnsupportedMethod,
    UnsupportedMethodWarning,
)
from botmock.generator import MockResponseGenerator
from botmock.log import print_requests, setup_logging
from botmock.multipart import MultipartField
from botmock.recorder import CapturedFile, CapturedRequest, RequestRecorder
from botmock.registry import MethodCall, MethodRegistry
from botmock.responses import BotIdentity, MockResponse, ResponseOverride
from botmock.server import MockServer, ServerAddress, ShutdownHandle
from botmock.state import ChatState, StoredMessage
from botmock.updates import UpdateBuilder

__all__ = [
    # Context
    "MockTelegramBot",
    "UpdateBuilder",
    # Server
    "MockServer",
    "ServerAddress",
    "ShutdownHandle",
    # Recording
    "RequestRecorder",
    "CapturedRequest",
    "CapturedFile",
    "MultipartField",
    # Responses
    "MockResponseGenerator",
    "MockResponse",
    "ResponseOverride",
    "MethodRegistry",
    "MethodCall",
    "BotIdentity",
    # State
    "ChatState",
    "StoredMessage",
    # Config & logging
    "Settings",
    "get_settings",
    "setup_logging",
    "print_requests",
    # Errors
    "BotMockError",
    "ApiError",
    "MalformedMultipart",
    "UnsupportedMethod",
    "UnsupportedMethodWarning",
    "DispatchTimeout",
    "PortBindFailure",
    "NotStartedError",
    "NoDispatcherError",
    "ButtonNotFoundError",
    "NoMessagesError",
]
