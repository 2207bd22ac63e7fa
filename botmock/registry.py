"""
Method-name to handler registry.

A handler receives a MethodCall and returns the ``result`` of the response,
or raises ApiError for a failure the real backend would report. Adding a
method means registering one more entry, either on a MethodTable (the
built-in handlers) or directly on a MethodRegistry (tests).
"""
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from botmock.exceptions import ApiError, UnsupportedMethod
from botmock.ids import Clock, IdCounter
from botmock.recorder import CapturedFile
from botmock.responses import BotIdentity, make_message
from botmock.state import ChatState, StoredFile

logger = logging.getLogger("botmock.registry")


@dataclass
class MethodCall:
    """One API call as seen by a handler, with access to the shared state."""

    method: str
    params: Mapping[str, Any]
    state: ChatState
    ids: IdCounter
    clock: Clock
    me: BotIdentity
    files: tuple[CapturedFile, ...] = ()

    def get(self, name: str, default: Any = None) -> Any:
        value = self.params.get(name)
        return default if value is None else value

    def int_param(self, name: str, default: int | None = None) -> int | None:
        value = self.params.get(name)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (ValueError, TypeError):
            raise ApiError(f"Bad Request: invalid {name} specified") from None

    def bool_param(self, name: str, default: bool = False) -> bool:
        value = self.params.get(name)
        if value is None:
            return default
        if isinstance(value, str):
            return value.lower() in ("true", "1")
        return bool(value)

    def chat_id(self, name: str = "chat_id") -> int:
        """Numeric chat id; usernames are not resolvable without a backend."""
        value = self.params.get(name)
        if isinstance(value, str) and value.startswith("@"):
            raise ApiError("Bad Request: chat not found")
        chat_id = self.int_param(name)
        if chat_id is None:
            raise ApiError(f"Bad Request: {name} is required")
        return chat_id

    def chat(self, chat_id: int) -> dict[str, Any]:
        return self.state.chat_for(chat_id)

    def now(self) -> int:
        return self.clock.timestamp()

    def reply_to(self, chat_id: int) -> dict[str, Any] | None:
        """Message being replied to, from reply_parameters or reply_to_message_id."""
        reply_parameters = self.params.get("reply_parameters") or {}
        if not isinstance(reply_parameters, Mapping):
            reply_parameters = {}

        message_id = reply_parameters.get("message_id", self.params.get("reply_to_message_id"))
        if message_id is None:
            return None

        target_chat = reply_parameters.get("chat_id", chat_id)
        try:
            stored = self.state.get_message(int(target_chat), int(message_id))
        except (ValueError, TypeError):
            stored = None

        if stored is None or stored.is_deleted:
            allow = reply_parameters.get(
                "allow_sending_without_reply",
                self.params.get("allow_sending_without_reply"),
            )
            if allow in (True, "true"):
                return None
            raise ApiError("Bad Request: message to be replied not found")

        reply = dict(stored.payload)
        reply.pop("reply_to_message", None)
        return reply

    def send(self, message_id: int | None = None, **content: Any) -> dict[str, Any]:
        """Create, store and return a message sent by the bot into chat_id."""
        chat_id = self.chat_id()
        reply = self.reply_to(chat_id)
        message = make_message(
            message_id=message_id if message_id is not None else self.ids.next(),
            chat=self.chat(chat_id),
            sender=self.me.as_user(),
            date=self.now(),
            message_thread_id=self.int_param("message_thread_id"),
            reply_markup=self.params.get("reply_markup"),
            reply_to_message=reply,
            has_protected_content=True if self.bool_param("protect_content") else None,
            **content,
        )
        self.state.add_message(message, is_bot=True)
        return message

    def media(self, name: str, kind: str) -> tuple[dict[str, Any], StoredFile | None]:
        """Base file fields for a media parameter.

        An upload is stored so it can later be fetched by file_id; a string
        is a file_id (or URL) and reuses a stored file when one matches.
        """
        return self.media_value(self.params.get(name), kind, name)

    def media_value(
        self, value: Any, kind: str, name: str = "media",
    ) -> tuple[dict[str, Any], StoredFile | None]:
        if isinstance(value, CapturedFile):
            stored = self.state.add_file(
                value.content, value.media_type, kind, file_name=value.filename,
            )
        elif isinstance(value, str):
            stored = self.state.get_file(value)
            if stored is None:
                return {"file_id": value, "file_unique_id": f"unique_{value}"}, None
        else:
            raise ApiError(f"Bad Request: {name} is required")

        return {
            "file_id": stored.file_id,
            "file_unique_id": stored.file_unique_id,
            "file_size": stored.file_size,
        }, stored


Handler = Callable[[MethodCall], Any]


@dataclass(frozen=True)
class MethodSpec:
    """Registered handler plus the parameters a call must carry."""

    name: str
    handler: Handler
    required: tuple[str, ...] = ()

    def missing(self, params: Mapping[str, Any]) -> str | None:
        """Name of the first required parameter absent from params."""
        for name in self.required:
            if params.get(name) in (None, ""):
                return name
        return None


class MethodTable:
    """Group of handlers declared with the ``handler`` decorator."""

    def __init__(self) -> None:
        self._specs: list[MethodSpec] = []

    def handler(self, name: str, required: Iterable[str] = ()) -> Callable[[Handler], Handler]:
        def decorator(func: Handler) -> Handler:
            self._specs.append(MethodSpec(name, func, tuple(required)))
            return func

        return decorator

    def __iter__(self) -> Iterator[MethodSpec]:
        return iter(self._specs)


@dataclass
class MethodRegistry:
    """Mapping from method name to MethodSpec."""

    _specs: dict[str, MethodSpec] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "MethodRegistry":
        """Fresh registry holding every built-in method handler."""
        from botmock.methods import TABLES

        registry = cls()
        for table in TABLES:
            registry.include(table)
        return registry

    def include(self, table: Iterable[MethodSpec]) -> None:
        for spec in table:
            self._specs[spec.name] = spec

    def register(self, name: str, handler: Handler, required: Iterable[str] = ()) -> None:
        """Add or replace the handler for a method."""
        self._specs[name] = MethodSpec(name, handler, tuple(required))
        logger.debug("Registered handler for %s", name)

    def unregister(self, name: str) -> None:
        self._specs.pop(name, None)

    def resolve(self, name: str) -> MethodSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnsupportedMethod(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def names(self) -> list[str]:
        return sorted(self._specs)
