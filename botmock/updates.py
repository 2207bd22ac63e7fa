"""
Build Update objects for simulating user actions.

Creates aiogram Update objects that can be fed to the dispatcher. Every
constructor takes the content it needs plus keyword overrides for the chat,
the user and the ids; ids not pinned by the caller come from counters shared
with the response generator, so they are never reused.
"""
from datetime import datetime
from typing import Any

from aiogram.types import (
    CallbackQuery,
    Chat,
    ChosenInlineResult,
    Contact,
    Document,
    InlineQuery,
    Location,
    Message,
    MessageEntity,
    PhotoSize,
    Update,
    User,
    Video,
    VideoNote,
)

from botmock.ids import Clock, IdCounter
from botmock.responses import BotIdentity
from botmock.state import infer_chat_type

DEFAULT_USER_ID = 123456789
DEFAULT_CHANNEL_ID = -1001234567890


class UpdateBuilder:
    """Builds Update objects for testing."""

    def __init__(
        self,
        user_id: int = DEFAULT_USER_ID,
        chat_id: int | None = None,
        chat_type: str | None = None,
        message_thread_id: int | None = None,
        message_ids: IdCounter | None = None,
        update_ids: IdCounter | None = None,
        clock: Clock | None = None,
        me: BotIdentity | None = None,
    ) -> None:
        self.user_id = user_id
        self.chat_id = chat_id if chat_id is not None else user_id
        self.chat_type = chat_type or infer_chat_type(self.chat_id)
        self.message_thread_id = message_thread_id
        self.message_ids = message_ids or IdCounter()
        self.update_ids = update_ids or IdCounter()
        self.clock = clock or Clock()
        self.me = me or BotIdentity()

    # =========================================================================
    # Ids, users and chats
    # =========================================================================

    def _update_id(self, update_id: int | None) -> int:
        if update_id is None:
            return self.update_ids.next()
        self.update_ids.observe(update_id)
        return update_id

    def _message_id(self, message_id: int | None) -> int:
        if message_id is None:
            return self.message_ids.next()
        self.message_ids.observe(message_id)
        return message_id

    def _date(self, date: datetime | None) -> datetime:
        return date if date is not None else self.clock.now()

    def _make_user(self, user_id: int | None = None) -> User:
        """Create test user."""
        return User(
            id=user_id if user_id is not None else self.user_id,
            is_bot=False,
            first_name="Test",
            last_name="User",
            username="testuser",
            language_code="en",
        )

    def _make_chat(self, chat_id: int | None = None, chat_type: str | None = None) -> Chat:
        """Create test chat."""
        if chat_id is None:
            chat_id = self.chat_id
            chat_type = chat_type or self.chat_type
        chat_type = chat_type or infer_chat_type(chat_id)

        if chat_type == "private":
            return Chat(
                id=chat_id,
                type="private",
                first_name="Test",
                last_name="User",
                username="testuser",
            )
        if chat_type == "channel":
            return Chat(id=chat_id, type="channel", title="Test Channel", username="test_channel")
        if chat_type == "supergroup":
            return Chat(id=chat_id, type="supergroup", title="Test Group", username="test_group")
        return Chat(id=chat_id, type=chat_type, title="Test Group")

    def _make_bot_user(self) -> User:
        """Create bot user for callback query messages."""
        return User.model_validate(self.me.as_user())

    def _make_message(
        self,
        chat_id: int | None = None,
        chat_type: str | None = None,
        user_id: int | None = None,
        message_thread_id: int | None = None,
        message_id: int | None = None,
        date: datetime | None = None,
        **content: Any,
    ) -> Message:
        chat = self._make_chat(chat_id, chat_type)
        if message_thread_id is None and chat_id is None:
            message_thread_id = self.message_thread_id

        sender: dict[str, Any]
        if chat.type == "channel":
            sender = {"sender_chat": chat}
        else:
            sender = {"from_user": self._make_user(user_id)}

        return Message(
            message_id=self._message_id(message_id),
            date=self._date(date),
            chat=chat,
            message_thread_id=message_thread_id,
            is_topic_message=True if message_thread_id is not None and chat.is_forum else None,
            **sender,
            **content,
        )

    # =========================================================================
    # Messages
    # =========================================================================

    def message(
        self,
        text: str,
        entities: list[MessageEntity] | None = None,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with text message."""
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(text=text, entities=entities, **overrides),
        )

    def command(
        self,
        name: str,
        args: str | None = None,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with a /command message."""
        name = name.lstrip("/")
        text = f"/{name} {args}" if args else f"/{name}"
        entity = MessageEntity(type="bot_command", offset=0, length=len(name) + 1)
        return self.message(text, entities=[entity], update_id=update_id, **overrides)

    def photo(
        self,
        file_id: str = "test_photo_id",
        caption: str | None = None,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with photo message."""
        photo_sizes = [
            PhotoSize(
                file_id=f"{file_id}_small",
                file_unique_id=f"unique_{file_id}_small",
                width=90,
                height=90,
            ),
            PhotoSize(
                file_id=file_id,
                file_unique_id=f"unique_{file_id}",
                width=800,
                height=600,
            ),
        ]
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(photo=photo_sizes, caption=caption, **overrides),
        )

    def video(
        self,
        file_id: str = "test_video_id",
        caption: str | None = None,
        duration: int = 30,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with video message."""
        video = Video(
            file_id=file_id,
            file_unique_id=f"unique_{file_id}",
            width=1920,
            height=1080,
            duration=duration,
        )
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(video=video, caption=caption, **overrides),
        )

    def video_note(
        self,
        file_id: str = "test_video_note_id",
        duration: int = 15,
        length: int = 240,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with video note message (round video)."""
        video_note = VideoNote(
            file_id=file_id,
            file_unique_id=f"unique_{file_id}",
            length=length,
            duration=duration,
        )
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(video_note=video_note, **overrides),
        )

    def document(
        self,
        file_id: str = "test_document_id",
        file_name: str | None = "document.pdf",
        mime_type: str | None = "application/pdf",
        caption: str | None = None,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with document message."""
        document = Document(
            file_id=file_id,
            file_unique_id=f"unique_{file_id}",
            file_name=file_name,
            mime_type=mime_type,
        )
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(document=document, caption=caption, **overrides),
        )

    def contact(
        self,
        phone_number: str,
        first_name: str,
        last_name: str | None = None,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with contact message."""
        contact = Contact(
            phone_number=phone_number,
            first_name=first_name,
            last_name=last_name,
            user_id=overrides.get("user_id", self.user_id),
        )
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(contact=contact, **overrides),
        )

    def location(
        self,
        latitude: float,
        longitude: float,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        location = Location(latitude=latitude, longitude=longitude)
        return Update(
            update_id=self._update_id(update_id),
            message=self._make_message(location=location, **overrides),
        )

    def edited_message(
        self,
        text: str,
        message_id: int,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with a new version of an earlier message."""
        message = self._make_message(
            text=text, message_id=message_id, edit_date=self.clock.now(), **overrides,
        )
        return Update(update_id=self._update_id(update_id), edited_message=message)

    def channel_post(
        self,
        text: str,
        chat_id: int = DEFAULT_CHANNEL_ID,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        message = self._make_message(text=text, chat_id=chat_id, chat_type="channel", **overrides)
        return Update(update_id=self._update_id(update_id), channel_post=message)

    def edited_channel_post(
        self,
        text: str,
        message_id: int,
        chat_id: int = DEFAULT_CHANNEL_ID,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        message = self._make_message(
            text=text,
            chat_id=chat_id,
            chat_type="channel",
            message_id=message_id,
            edit_date=self.clock.now(),
            **overrides,
        )
        return Update(update_id=self._update_id(update_id), edited_channel_post=message)

    # =========================================================================
    # Queries
    # =========================================================================

    def callback_query(
        self,
        data: str,
        message: Message | dict[str, Any] | None = None,
        message_id: int | None = None,
        message_text: str = "Message with buttons",
        reply_markup: dict[str, Any] | None = None,
        user_id: int | None = None,
        update_id: int | None = None,
        **overrides: Any,
    ) -> Update:
        """Create Update with callback query (button click).

        ``message`` is the bot message carrying the button; when omitted
        one is made up from message_id, message_text, reply_markup and the
        message overrides, which cannot be combined with ``message``.
        """
        if message is not None:
            extra = sorted(overrides)
            if message_id is not None:
                extra.append("message_id")
            if reply_markup is not None:
                extra.append("reply_markup")
            if extra:
                raise TypeError(
                    f"callback_query() got a message together with {', '.join(extra)}"
                )

        if isinstance(message, dict):
            message = Message.model_validate(message)
        elif message is None:
            message = self._make_message(
                message_id=message_id,
                text=message_text,
                reply_markup=reply_markup,
                **overrides,
            )
            message = message.model_copy(
                update={"from_user": self._make_bot_user()}
            )

        update_id = self._update_id(update_id)
        callback = CallbackQuery(
            id=f"callback_{update_id}",
            from_user=self._make_user(user_id),
            chat_instance=str(message.chat.id),
            data=data,
            message=message,
        )
        return Update(update_id=update_id, callback_query=callback)

    def inline_query(
        self,
        query: str,
        offset: str = "",
        user_id: int | None = None,
        chat_type: str | None = None,
        update_id: int | None = None,
    ) -> Update:
        update_id = self._update_id(update_id)
        inline_query = InlineQuery(
            id=f"inline_{update_id}",
            from_user=self._make_user(user_id),
            query=query,
            offset=offset,
            chat_type=chat_type,
        )
        return Update(update_id=update_id, inline_query=inline_query)

    def chosen_inline_result(
        self,
        result_id: str,
        query: str,
        inline_message_id: str | None = None,
        user_id: int | None = None,
        update_id: int | None = None,
    ) -> Update:
        result = ChosenInlineResult(
            result_id=result_id,
            from_user=self._make_user(user_id),
            query=query,
            inline_message_id=inline_message_id,
        )
        return Update(update_id=self._update_id(update_id), chosen_inline_result=result)
