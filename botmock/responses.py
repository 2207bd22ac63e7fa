"""
Bot API response envelopes and result templates.

Builds the JSON bodies aiogram parses: the ``{ok, result}`` /
``{ok, error_code, description}`` envelope plus Message objects shared by
the method handlers.
"""
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

DEFAULT_BOT_ID = 1234567890


@dataclass(frozen=True)
class BotIdentity:
    """The bot as the mock backend reports it (getMe and message senders)."""

    id: int = DEFAULT_BOT_ID
    first_name: str = "TestBot"
    username: str = "test_bot"
    can_join_groups: bool = True
    can_read_all_group_messages: bool = False
    supports_inline_queries: bool = False

    @classmethod
    def from_token(cls, token: str, **kwargs: Any) -> "BotIdentity":
        """Identity whose id is the numeric prefix of a bot token."""
        prefix = token.split(":", 1)[0]
        if prefix.isdigit():
            kwargs.setdefault("id", int(prefix))
        return cls(**kwargs)

    def as_user(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "is_bot": True,
            "first_name": self.first_name,
            "username": self.username,
        }

    def as_get_me(self) -> dict[str, Any]:
        return {
            **self.as_user(),
            "can_join_groups": self.can_join_groups,
            "can_read_all_group_messages": self.can_read_all_group_messages,
            "supports_inline_queries": self.supports_inline_queries,
        }


@dataclass(frozen=True)
class MockResponse:
    """Response body for one API call."""

    ok: bool
    result: Any = None
    error_code: int | None = None
    description: str | None = None
    parameters: dict[str, Any] | None = None

    @classmethod
    def success(cls, result: Any) -> "MockResponse":
        return cls(ok=True, result=result)

    @classmethod
    def error(
        cls,
        description: str,
        error_code: int = 400,
        retry_after: int | None = None,
    ) -> "MockResponse":
        parameters = {"retry_after": retry_after} if retry_after is not None else None
        return cls(
            ok=False,
            error_code=error_code,
            description=description,
            parameters=parameters,
        )

    @property
    def http_status(self) -> int:
        if self.ok:
            return 200
        if self.error_code is not None and 400 <= self.error_code < 600:
            return self.error_code
        return 500

    def to_payload(self) -> dict[str, Any]:
        """The JSON envelope sent over the wire."""
        if self.ok:
            return {"ok": True, "result": self.result}

        payload: dict[str, Any] = {
            "ok": False,
            "error_code": self.error_code,
            "description": self.description,
        }
        if self.parameters:
            payload["parameters"] = self.parameters
        return payload


def default_error_description(error_code: int) -> str:
    """Telegram-style description for a forced failure."""
    try:
        reason = HTTPStatus(error_code).phrase
    except ValueError:
        reason = "Error"
    return f"{reason}: forced failure"


@dataclass
class ResponseOverride:
    """Canned response for the next matching call of one method."""

    method: str
    response: MockResponse
    when: Callable[[Mapping[str, Any]], bool] | None = field(default=None)

    def accepts(self, method: str, params: Mapping[str, Any]) -> bool:
        if method != self.method:
            return False
        return self.when is None or bool(self.when(params))


def make_message(
    message_id: int,
    chat: dict[str, Any],
    sender: dict[str, Any],
    date: int,
    message_thread_id: int | None = None,
    reply_markup: dict[str, Any] | None = None,
    **content: Any,
) -> dict[str, Any]:
    """Create a Message object as the Bot API returns it."""
    message: dict[str, Any] = {
        "message_id": message_id,
        "date": date,
        "chat": chat,
        "from": sender,
    }

    if message_thread_id is not None:
        message["message_thread_id"] = message_thread_id
        if chat.get("type") == "supergroup":
            message["is_topic_message"] = True

    message.update({key: value for key, value in content.items() if value is not None})

    # Reply keyboards are never echoed back by the Bot API
    if reply_markup is not None and "inline_keyboard" in reply_markup:
        message["reply_markup"] = reply_markup

    return message
