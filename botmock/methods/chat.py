"""
Chat-related API method handlers.

Handles: getChat, getChatMember, sendChatAction, pinChatMessage,
         unpinChatMessage, unpinAllChatMessages, banChatMember,
         unbanChatMember, restrictChatMember, setMyCommands, getMyCommands,
         deleteMyCommands
"""
import logging
from typing import Any

from botmock.exceptions import ApiError
from botmock.registry import MethodCall, MethodTable

logger = logging.getLogger("botmock.methods.chat")

table = MethodTable()

CHAT_ACTIONS = {
    "typing",
    "upload_photo",
    "record_video",
    "upload_video",
    "record_voice",
    "upload_voice",
    "upload_document",
    "choose_sticker",
    "find_location",
    "record_video_note",
    "upload_video_note",
}


def _require_group(call: MethodCall, chat_id: int) -> None:
    if call.chat(chat_id)["type"] not in ("group", "supergroup", "channel"):
        raise ApiError("Bad Request: method is available only for supergroups")


@table.handler("getChat", required=("chat_id",))
def get_chat(call: MethodCall) -> dict[str, Any]:
    chat_id = call.chat_id()
    info: dict[str, Any] = {
        **call.chat(chat_id),
        "accent_color_id": 0,
        "max_reaction_count": 11,
        "accepted_gift_types": {
            "unlimited_gifts": False,
            "limited_gifts": False,
            "unique_gifts": False,
            "premium_subscription": False,
            "gifts_from_channels": False,
        },
    }
    pinned = [m for m in call.state.get_conversation(chat_id) if m.is_pinned]
    if pinned:
        info["pinned_message"] = pinned[-1].payload
    return info


@table.handler("getChatMember", required=("chat_id", "user_id"))
def get_chat_member(call: MethodCall) -> dict[str, Any]:
    chat_id = call.chat_id()
    user_id = call.int_param("user_id")
    if user_id == call.me.id:
        return {"status": "member", "user": call.me.as_user()}

    user = {"id": user_id, "is_bot": False, "first_name": "Test"}
    member = call.state.member(chat_id, user_id)
    if member.is_banned:
        return {"status": "kicked", "user": user, "until_date": 0}
    return {"status": "member", "user": user}


@table.handler("sendChatAction", required=("chat_id", "action"))
def send_chat_action(call: MethodCall) -> bool:
    action = call.get("action")
    if action not in CHAT_ACTIONS:
        raise ApiError("Bad Request: wrong parameter action in request")
    call.chat_id()
    return True


@table.handler("pinChatMessage", required=("chat_id", "message_id"))
def pin_chat_message(call: MethodCall) -> bool:
    chat_id = call.chat_id()
    message_id = call.int_param("message_id")
    if not call.state.set_pinned(chat_id, message_id, True):
        raise ApiError("Bad Request: message to pin not found")
    logger.debug("pinChatMessage: chat=%d, message=%d", chat_id, message_id)
    return True


@table.handler("unpinChatMessage", required=("chat_id",))
def unpin_chat_message(call: MethodCall) -> bool:
    call.state.set_pinned(call.chat_id(), call.int_param("message_id"), False)
    return True


@table.handler("unpinAllChatMessages", required=("chat_id",))
def unpin_all_chat_messages(call: MethodCall) -> bool:
    call.state.unpin_all(call.chat_id())
    return True


@table.handler("banChatMember", required=("chat_id", "user_id"))
def ban_chat_member(call: MethodCall) -> bool:
    chat_id = call.chat_id()
    _require_group(call, chat_id)
    call.state.member(chat_id, call.int_param("user_id")).is_banned = True
    return True


@table.handler("unbanChatMember", required=("chat_id", "user_id"))
def unban_chat_member(call: MethodCall) -> bool:
    chat_id = call.chat_id()
    _require_group(call, chat_id)
    call.state.member(chat_id, call.int_param("user_id")).is_banned = False
    return True


@table.handler("restrictChatMember", required=("chat_id", "user_id", "permissions"))
def restrict_chat_member(call: MethodCall) -> bool:
    chat_id = call.chat_id()
    if call.chat(chat_id)["type"] != "supergroup":
        raise ApiError("Bad Request: method is available only for supergroups")
    permissions = call.get("permissions")
    call.state.member(chat_id, call.int_param("user_id")).permissions = dict(permissions)
    return True


@table.handler("setMyCommands", required=("commands",))
def set_my_commands(call: MethodCall) -> bool:
    commands = call.get("commands")
    if not isinstance(commands, list):
        raise ApiError("Bad Request: commands must be a list")
    call.state.commands = [
        {"command": c["command"], "description": c["description"]} for c in commands
    ]
    return True


@table.handler("getMyCommands")
def get_my_commands(call: MethodCall) -> list[dict[str, Any]]:
    return list(call.state.commands)


@table.handler("deleteMyCommands")
def delete_my_commands(call: MethodCall) -> bool:
    call.state.commands = []
    return True
