"""
Stateful chat storage for the mock Telegram server.

Keeps the conversation the way a live backend would, so edits, deletions,
replies, pins and file downloads made by the bot under test behave
realistically. Messages are stored as the JSON objects returned to the bot.
"""
import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from botmock.ids import Clock, IdCounter

logger = logging.getLogger("botmock.state")

DEFAULT_TOPIC_COLOR = 7322096


def infer_chat_type(chat_id: int) -> str:
    """Chat type implied by the id range Telegram uses."""
    if chat_id > 0:
        return "private"
    if str(chat_id).startswith("-100"):
        return "supergroup"
    return "group"


@dataclass
class StoredMessage:
    """Message stored in chat state."""

    message_id: int
    chat_id: int
    from_user_id: int | None
    is_bot: bool
    payload: dict[str, Any]
    message_thread_id: int | None = None
    is_pinned: bool = False
    created_at: int = 0
    edited_at: int | None = None
    is_deleted: bool = False

    @property
    def text(self) -> str | None:
        return self.payload.get("text") or self.payload.get("caption")

    @property
    def reply_markup(self) -> dict[str, Any] | None:
        return self.payload.get("reply_markup")

    def has_inline_keyboard(self) -> bool:
        """Check if message has inline keyboard."""
        if self.reply_markup is None:
            return False
        return "inline_keyboard" in self.reply_markup

    def get_button_callback_data(self, button_text: str) -> str | None:
        """Find callback_data for button with given text."""
        if not self.has_inline_keyboard():
            return None

        for row in self.reply_markup.get("inline_keyboard", []):
            for button in row:
                if button_text in button.get("text", ""):
                    return button.get("callback_data")
        return None


@dataclass
class StoredFile:
    """File uploaded by the bot, downloadable through the file route."""

    file_id: str
    file_unique_id: str
    file_path: str
    content: bytes
    media_type: str
    file_name: str | None = None

    @property
    def file_size(self) -> int:
        return len(self.content)

    def as_file(self) -> dict[str, Any]:
        return {
            "file_id": self.file_id,
            "file_unique_id": self.file_unique_id,
            "file_size": self.file_size,
            "file_path": self.file_path,
        }


@dataclass
class ForumTopic:
    """Forum topic stored in chat state."""

    message_thread_id: int
    chat_id: int
    name: str
    icon_color: int = DEFAULT_TOPIC_COLOR
    icon_custom_emoji_id: str | None = None
    is_closed: bool = False

    def as_result(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "message_thread_id": self.message_thread_id,
            "name": self.name,
            "icon_color": self.icon_color,
        }
        if self.icon_custom_emoji_id:
            result["icon_custom_emoji_id"] = self.icon_custom_emoji_id
        return result


@dataclass
class ChatMember:
    """Moderation flags set on a user by the bot."""

    chat_id: int
    user_id: int
    is_banned: bool = False
    permissions: dict[str, Any] = field(default_factory=dict)


class ChatState:
    """
    Maintains conversation state like real Telegram.

    Stores all messages sent in chats (by the bot and by dispatched
    updates), uploaded files, forum topics, moderation flags and bot
    commands. All access goes through one lock since aiohttp may serve
    several requests of the same test at once.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or Clock()
        # chat_id -> message_id -> StoredMessage
        self._chats: dict[int, dict[int, StoredMessage]] = {}
        # chat_id -> Chat object seen in dispatched updates
        self._known_chats: dict[int, dict[str, Any]] = {}
        # chat_id -> message_thread_id -> ForumTopic
        self._forum_topics: dict[int, dict[int, ForumTopic]] = {}
        self._members: dict[tuple[int, int], ChatMember] = {}
        self._files: dict[str, StoredFile] = {}
        self._files_by_path: dict[str, StoredFile] = {}
        self._file_ids = IdCounter()
        self._thread_ids = IdCounter(start=1000)
        self.commands: list[dict[str, Any]] = []
        self._lock = threading.RLock()

    # =========================================================================
    # Messages
    # =========================================================================

    def add_message(
        self,
        payload: dict[str, Any],
        is_bot: bool,
    ) -> StoredMessage:
        """Store a Message object, keyed by its chat and message id."""
        chat = payload["chat"]
        chat_id = chat["id"]
        message_id = payload["message_id"]
        sender = payload.get("from")

        with self._lock:
            messages = self._chats.setdefault(chat_id, {})
            if message_id in messages:
                logger.warning(
                    "Message %d in chat %d stored twice, replacing", message_id, chat_id,
                )

            message = StoredMessage(
                message_id=message_id,
                chat_id=chat_id,
                from_user_id=sender["id"] if sender else None,
                is_bot=is_bot,
                payload=copy.deepcopy(payload),
                message_thread_id=payload.get("message_thread_id"),
                created_at=payload.get("date", self.clock.timestamp()),
            )
            messages[message_id] = message

        logger.debug(
            "Added message %d to chat %d: %s",
            message_id,
            chat_id,
            message.text[:50] if message.text else "(no text)",
        )
        return message

    def remember_chat(self, chat: dict[str, Any]) -> None:
        """Record the shape of a chat seen in an inbound update."""
        with self._lock:
            self._known_chats[chat["id"]] = copy.deepcopy(chat)

    def chat_for(self, chat_id: int) -> dict[str, Any]:
        """Chat object for an id: the one seen in updates, or an inferred one."""
        with self._lock:
            known = self._known_chats.get(chat_id)
            if known is not None:
                return copy.deepcopy(known)

        chat_type = infer_chat_type(chat_id)
        if chat_type == "private":
            return {"id": chat_id, "type": chat_type, "first_name": "Test"}
        return {"id": chat_id, "type": chat_type, "title": "Test Group"}

    def update_message(
        self,
        chat_id: int,
        message_id: int,
        changes: dict[str, Any],
        removed: tuple[str, ...] = (),
    ) -> StoredMessage | None:
        """Apply an edit to a live message; None when it is missing or deleted."""
        with self._lock:
            message = self._live_message(chat_id, message_id)
            if message is None:
                logger.warning(
                    "Cannot edit message %d in chat %d - not found", message_id, chat_id,
                )
                return None

            for key in removed:
                message.payload.pop(key, None)
            message.payload.update(copy.deepcopy(changes))
            message.edited_at = self.clock.timestamp()
            message.payload["edit_date"] = message.edited_at

        logger.debug("Edited message %d in chat %d: %s", message_id, chat_id, sorted(changes))
        return message

    def delete_message(self, chat_id: int, message_id: int) -> bool:
        """Mark message as deleted."""
        with self._lock:
            message = self._live_message(chat_id, message_id)
            if message is None:
                logger.warning(
                    "Cannot delete message %d in chat %d - not found", message_id, chat_id,
                )
                return False
            message.is_deleted = True

        logger.debug("Deleted message %d in chat %d", message_id, chat_id)
        return True

    def set_pinned(self, chat_id: int, message_id: int | None, pinned: bool) -> bool:
        """Pin or unpin one message; message_id None means the latest pinned one."""
        with self._lock:
            if message_id is None:
                pinned_messages = [
                    m for m in self._conversation(chat_id, include_deleted=False)
                    if m.is_pinned
                ]
                if not pinned_messages:
                    return False
                message = pinned_messages[-1]
            else:
                message = self._live_message(chat_id, message_id)
                if message is None:
                    return False
            message.is_pinned = pinned

        logger.debug(
            "%s message %d in chat %d", "Pinned" if pinned else "Unpinned",
            message.message_id, chat_id,
        )
        return True

    def unpin_all(self, chat_id: int) -> None:
        with self._lock:
            for message in self._chats.get(chat_id, {}).values():
                message.is_pinned = False

    # =========================================================================
    # Files
    # =========================================================================

    def add_file(
        self,
        content: bytes,
        media_type: str,
        kind: str,
        file_name: str | None = None,
    ) -> StoredFile:
        """Store uploaded bytes and assign them a file_id and file_path."""
        number = self._file_ids.next()
        extension = ""
        if file_name and "." in file_name:
            extension = "." + file_name.rsplit(".", 1)[1]

        stored = StoredFile(
            file_id=f"{kind}_{number}",
            file_unique_id=f"unique_{kind}_{number}",
            file_path=f"{kind}s/file_{number}{extension}",
            content=content,
            media_type=media_type,
            file_name=file_name,
        )
        with self._lock:
            self._files[stored.file_id] = stored
            self._files_by_path[stored.file_path] = stored

        logger.debug("Stored file %s (%d bytes) at %s", stored.file_id, len(content), stored.file_path)
        return stored

    def get_file(self, file_id: str) -> StoredFile | None:
        with self._lock:
            return self._files.get(file_id)

    def get_file_by_path(self, file_path: str) -> StoredFile | None:
        with self._lock:
            return self._files_by_path.get(file_path)

    # =========================================================================
    # Forum Topics
    # =========================================================================

    def create_forum_topic(
        self,
        chat_id: int,
        name: str,
        icon_color: int = DEFAULT_TOPIC_COLOR,
        icon_custom_emoji_id: str | None = None,
    ) -> ForumTopic:
        """Create a forum topic in a chat."""
        topic = ForumTopic(
            message_thread_id=self._thread_ids.next(),
            chat_id=chat_id,
            name=name,
            icon_color=icon_color,
            icon_custom_emoji_id=icon_custom_emoji_id,
        )
        with self._lock:
            self._forum_topics.setdefault(chat_id, {})[topic.message_thread_id] = topic

        logger.debug(
            "Created forum topic %d in chat %d: %s", topic.message_thread_id, chat_id, name,
        )
        return topic

    def get_forum_topic(self, chat_id: int, message_thread_id: int) -> ForumTopic | None:
        """Get forum topic by chat_id and thread_id."""
        with self._lock:
            return self._forum_topics.get(chat_id, {}).get(message_thread_id)

    def get_forum_topics(self, chat_id: int) -> list[ForumTopic]:
        """Get all forum topics for a chat."""
        with self._lock:
            return list(self._forum_topics.get(chat_id, {}).values())

    def delete_forum_topic(self, chat_id: int, message_thread_id: int) -> bool:
        with self._lock:
            topic = self._forum_topics.get(chat_id, {}).pop(message_thread_id, None)
            if topic is None:
                return False
            for message in self._chats.get(chat_id, {}).values():
                if message.message_thread_id == message_thread_id:
                    message.is_deleted = True
        logger.debug("Deleted forum topic %d in chat %d", message_thread_id, chat_id)
        return True

    # =========================================================================
    # Members
    # =========================================================================

    def member(self, chat_id: int, user_id: int) -> ChatMember:
        """Moderation record for a user, created on first access."""
        with self._lock:
            key = (chat_id, user_id)
            if key not in self._members:
                self._members[key] = ChatMember(chat_id=chat_id, user_id=user_id)
            return self._members[key]

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get_message(self, chat_id: int, message_id: int) -> StoredMessage | None:
        """Get message by ID, deleted ones included."""
        with self._lock:
            return self._chats.get(chat_id, {}).get(message_id)

    def get_conversation(
        self,
        chat_id: int,
        include_deleted: bool = False,
    ) -> list[StoredMessage]:
        """Get all messages in chat ordered by message id."""
        with self._lock:
            return self._conversation(chat_id, include_deleted)

    def get_bot_messages(
        self,
        chat_id: int,
        include_deleted: bool = False,
    ) -> list[StoredMessage]:
        """Get all bot messages in chat."""
        return [m for m in self.get_conversation(chat_id, include_deleted) if m.is_bot]

    def get_user_messages(
        self,
        chat_id: int,
        include_deleted: bool = False,
    ) -> list[StoredMessage]:
        return [m for m in self.get_conversation(chat_id, include_deleted) if not m.is_bot]

    def get_last_bot_message(self, chat_id: int) -> StoredMessage | None:
        """Get the most recent bot message."""
        bot_messages = self.get_bot_messages(chat_id)
        return bot_messages[-1] if bot_messages else None

    def find_message_with_button(
        self,
        chat_id: int,
        button_text: str,
    ) -> StoredMessage | None:
        """Find the most recent message containing a button with given text."""
        for message in reversed(self.get_bot_messages(chat_id)):
            if message.get_button_callback_data(button_text) is not None:
                return message
        return None

    def clear(self) -> None:
        """Forget all chats, files, topics, members and commands."""
        with self._lock:
            self._chats.clear()
            self._known_chats.clear()
            self._forum_topics.clear()
            self._members.clear()
            self._files.clear()
            self._files_by_path.clear()
            self.commands = []
        logger.debug("Cleared all chats")

    def _live_message(self, chat_id: int, message_id: int) -> StoredMessage | None:
        message = self._chats.get(chat_id, {}).get(message_id)
        if message is None or message.is_deleted:
            return None
        return message

    def _conversation(self, chat_id: int, include_deleted: bool) -> list[StoredMessage]:
        messages = list(self._chats.get(chat_id, {}).values())
        if not include_deleted:
            messages = [m for m in messages if not m.is_deleted]
        return sorted(messages, key=lambda m: m.message_id)
