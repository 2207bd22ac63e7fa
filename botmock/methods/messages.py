"""
Message-related API method handlers.

Handles: sendMessage, forwardMessage, copyMessage, editMessageText,
         editMessageReplyMarkup, deleteMessage, deleteMessages,
         setMessageReaction, sendLocation, sendVenue, sendContact, sendDice,
         sendPoll, sendInvoice
"""
import copy
import logging
from typing import Any

from botmock.exceptions import ApiError
from botmock.registry import MethodCall, MethodTable

logger = logging.getLogger("botmock.methods.messages")

table = MethodTable()

# Keys describing where a message lives rather than what it contains
_ENVELOPE_KEYS = (
    "message_id",
    "date",
    "chat",
    "from",
    "message_thread_id",
    "is_topic_message",
    "reply_to_message",
    "reply_markup",
    "edit_date",
    "forward_origin",
    "has_protected_content",
    "media_group_id",
)

_DICE_MAX = {"🎲": 6, "🎯": 6, "🎳": 6, "🏀": 5, "⚽": 5, "🎰": 64}


def apply_edit(
    call: MethodCall,
    changes: dict[str, Any],
    removed: tuple[str, ...] = (),
) -> Any:
    """Edit a stored message the way editMessage* methods do.

    Inline messages are not stored and just yield True. An inline keyboard
    not resent with the edit is removed, as the live API does.
    """
    if call.get("inline_message_id") is not None:
        return True

    chat_id = call.chat_id()
    message_id = call.int_param("message_id")
    if message_id is None:
        raise ApiError("Bad Request: message_id is required")

    stored = call.state.get_message(chat_id, message_id)
    if stored is None or stored.is_deleted:
        raise ApiError("Bad Request: message to edit not found")

    reply_markup = call.get("reply_markup")
    if reply_markup is not None and "inline_keyboard" in reply_markup:
        changes = {**changes, "reply_markup": reply_markup}
    else:
        removed = removed + ("reply_markup",)

    unchanged = all(stored.payload.get(key) == value for key, value in changes.items())
    if unchanged and not any(key in stored.payload for key in removed):
        raise ApiError(
            "Bad Request: message is not modified: specified new message content "
            "and reply markup are exactly the same as a current content and reply "
            "markup of the message"
        )

    updated = call.state.update_message(chat_id, message_id, changes, removed)
    if updated is None:
        raise ApiError("Bad Request: message to edit not found")
    return copy.deepcopy(updated.payload)


def _source_message(call: MethodCall, action: str) -> dict[str, Any]:
    from_chat_id = call.chat_id("from_chat_id")
    message_id = call.int_param("message_id")
    stored = call.state.get_message(from_chat_id, message_id)
    if stored is None or stored.is_deleted:
        raise ApiError(f"Bad Request: message to {action} not found")
    return stored.payload


def _content_of(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        key: copy.deepcopy(value)
        for key, value in payload.items()
        if key not in _ENVELOPE_KEYS
    }


@table.handler("sendMessage", required=("chat_id", "text"))
def send_message(call: MethodCall) -> dict[str, Any]:
    message = call.send(text=str(call.get("text")), entities=call.get("entities"))
    logger.debug(
        "sendMessage to chat %d: message_id=%d, text=%s",
        message["chat"]["id"],
        message["message_id"],
        message["text"][:50],
    )
    return message


@table.handler("forwardMessage", required=("chat_id", "from_chat_id", "message_id"))
def forward_message(call: MethodCall) -> dict[str, Any]:
    source = _source_message(call, "forward")

    if "from" in source:
        origin = {"type": "user", "date": source["date"], "sender_user": source["from"]}
    elif source["chat"]["type"] == "channel":
        origin = {
            "type": "channel",
            "date": source["date"],
            "chat": source["chat"],
            "message_id": source["message_id"],
        }
    else:
        origin = {"type": "chat", "date": source["date"], "sender_chat": source["chat"]}

    return call.send(forward_origin=origin, **_content_of(source))


@table.handler("copyMessage", required=("chat_id", "from_chat_id", "message_id"))
def copy_message(call: MethodCall) -> dict[str, Any]:
    content = _content_of(_source_message(call, "copy"))
    if call.get("caption") is not None:
        content["caption"] = call.get("caption")
    message = call.send(**content)
    return {"message_id": message["message_id"]}


@table.handler("editMessageText", required=("text",))
def edit_message_text(call: MethodCall) -> Any:
    changes = {"text": call.get("text")}
    removed: tuple[str, ...] = ("entities",)
    if call.get("entities") is not None:
        changes["entities"] = call.get("entities")
        removed = ()
    return apply_edit(call, changes, removed)


@table.handler("editMessageReplyMarkup")
def edit_message_reply_markup(call: MethodCall) -> Any:
    return apply_edit(call, {})


@table.handler("deleteMessage", required=("chat_id", "message_id"))
def delete_message(call: MethodCall) -> bool:
    chat_id = call.chat_id()
    message_id = call.int_param("message_id")
    if not call.state.delete_message(chat_id, message_id):
        raise ApiError("Bad Request: message to delete not found")
    logger.debug("deleteMessage: chat=%d, message=%d", chat_id, message_id)
    return True


@table.handler("deleteMessages", required=("chat_id", "message_ids"))
def delete_messages(call: MethodCall) -> bool:
    chat_id = call.chat_id()
    message_ids = call.get("message_ids")
    if not isinstance(message_ids, list):
        raise ApiError("Bad Request: message_ids must be a list")

    for message_id in message_ids:
        call.state.delete_message(chat_id, int(message_id))

    logger.debug("deleteMessages: chat=%d, messages=%s", chat_id, message_ids)
    return True


@table.handler("setMessageReaction", required=("chat_id", "message_id"))
def set_message_reaction(call: MethodCall) -> bool:
    stored = call.state.get_message(call.chat_id(), call.int_param("message_id"))
    if stored is None or stored.is_deleted:
        raise ApiError("Bad Request: message to react not found")
    return True


def _location(call: MethodCall) -> dict[str, Any]:
    location: dict[str, Any] = {
        "latitude": float(call.get("latitude")),
        "longitude": float(call.get("longitude")),
    }
    for key in ("horizontal_accuracy", "live_period", "heading", "proximity_alert_radius"):
        if call.get(key) is not None:
            location[key] = call.get(key)
    return location


@table.handler("sendLocation", required=("chat_id", "latitude", "longitude"))
def send_location(call: MethodCall) -> dict[str, Any]:
    return call.send(location=_location(call))


@table.handler(
    "sendVenue", required=("chat_id", "latitude", "longitude", "title", "address"),
)
def send_venue(call: MethodCall) -> dict[str, Any]:
    location = _location(call)
    venue: dict[str, Any] = {
        "location": location,
        "title": call.get("title"),
        "address": call.get("address"),
    }
    for key in ("foursquare_id", "foursquare_type", "google_place_id", "google_place_type"):
        if call.get(key) is not None:
            venue[key] = call.get(key)
    return call.send(venue=venue, location=location)


@table.handler("sendContact", required=("chat_id", "phone_number", "first_name"))
def send_contact(call: MethodCall) -> dict[str, Any]:
    contact = {
        "phone_number": call.get("phone_number"),
        "first_name": call.get("first_name"),
    }
    for key in ("last_name", "vcard"):
        if call.get(key) is not None:
            contact[key] = call.get(key)
    return call.send(contact=contact)


@table.handler("sendDice", required=("chat_id",))
def send_dice(call: MethodCall) -> dict[str, Any]:
    emoji = call.get("emoji", "🎲")
    message_id = call.ids.next()
    value = message_id % _DICE_MAX.get(emoji, 6) + 1
    return call.send(message_id=message_id, dice={"emoji": emoji, "value": value})


@table.handler("sendPoll", required=("chat_id", "question", "options"))
def send_poll(call: MethodCall) -> dict[str, Any]:
    raw_options = call.get("options")
    if not isinstance(raw_options, list) or len(raw_options) < 2:
        raise ApiError("Bad Request: poll must have at least 2 option")

    options = []
    for index, option in enumerate(raw_options):
        text = option.get("text") if isinstance(option, dict) else str(option)
        options.append({"persistent_id": str(index), "text": text, "voter_count": 0})

    poll_type = call.get("type", "regular")
    message_id = call.ids.next()
    poll = {
        "id": str(message_id),
        "question": call.get("question"),
        "options": options,
        "total_voter_count": 0,
        "is_closed": call.bool_param("is_closed"),
        "is_anonymous": call.bool_param("is_anonymous", default=True),
        "type": poll_type,
        "allows_multiple_answers": call.bool_param("allows_multiple_answers"),
        "allows_revoting": call.bool_param("allows_revoting", default=poll_type != "quiz"),
        "members_only": False,
    }
    return call.send(message_id=message_id, poll=poll)


@table.handler(
    "sendInvoice",
    required=("chat_id", "title", "description", "payload", "currency", "prices"),
)
def send_invoice(call: MethodCall) -> dict[str, Any]:
    prices = call.get("prices")
    if not isinstance(prices, list) or not prices:
        raise ApiError("Bad Request: prices must be non-empty")

    invoice = {
        "title": call.get("title"),
        "description": call.get("description"),
        "start_parameter": call.get("start_parameter", ""),
        "currency": call.get("currency"),
        "total_amount": sum(int(price["amount"]) for price in prices),
    }
    return call.send(invoice=invoice)
