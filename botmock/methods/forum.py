"""
Forum topic API method handlers.

Handles: createForumTopic, editForumTopic, closeForumTopic, reopenForumTopic,
         deleteForumTopic

createForumTopic returns a ForumTopic object, the others return True.
"""
import logging
from typing import Any

from botmock.exceptions import ApiError
from botmock.registry import MethodCall, MethodTable
from botmock.state import DEFAULT_TOPIC_COLOR, ForumTopic

logger = logging.getLogger("botmock.methods.forum")

table = MethodTable()


def _topic(call: MethodCall) -> ForumTopic:
    chat_id = call.chat_id()
    thread_id = call.int_param("message_thread_id")
    topic = call.state.get_forum_topic(chat_id, thread_id)
    if topic is None:
        raise ApiError("Bad Request: TOPIC_ID_INVALID")
    return topic


@table.handler("createForumTopic", required=("chat_id", "name"))
def create_forum_topic(call: MethodCall) -> dict[str, Any]:
    chat_id = call.chat_id()
    if call.chat(chat_id)["type"] != "supergroup":
        raise ApiError("Bad Request: the chat is not a forum")

    topic = call.state.create_forum_topic(
        chat_id=chat_id,
        name=call.get("name"),
        icon_color=call.int_param("icon_color", DEFAULT_TOPIC_COLOR),
        icon_custom_emoji_id=call.get("icon_custom_emoji_id"),
    )
    logger.debug(
        "createForumTopic: chat=%d, name=%s, thread_id=%d",
        chat_id,
        topic.name,
        topic.message_thread_id,
    )
    return topic.as_result()


@table.handler("editForumTopic", required=("chat_id", "message_thread_id"))
def edit_forum_topic(call: MethodCall) -> bool:
    topic = _topic(call)
    if call.get("name") is not None:
        topic.name = call.get("name")
    if call.get("icon_custom_emoji_id") is not None:
        topic.icon_custom_emoji_id = call.get("icon_custom_emoji_id")
    return True


@table.handler("closeForumTopic", required=("chat_id", "message_thread_id"))
def close_forum_topic(call: MethodCall) -> bool:
    _topic(call).is_closed = True
    return True


@table.handler("reopenForumTopic", required=("chat_id", "message_thread_id"))
def reopen_forum_topic(call: MethodCall) -> bool:
    _topic(call).is_closed = False
    return True


@table.handler("deleteForumTopic", required=("chat_id", "message_thread_id"))
def delete_forum_topic(call: MethodCall) -> bool:
    if not call.state.delete_forum_topic(call.chat_id(), call.int_param("message_thread_id")):
        raise ApiError("Bad Request: TOPIC_ID_INVALID")
    return True
