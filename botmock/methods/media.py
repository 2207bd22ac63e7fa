"""
Media-related API method handlers.

Handles: sendPhoto, sendVideo, sendAudio, sendVoice, sendVideoNote,
         sendDocument, sendAnimation, sendSticker, sendMediaGroup,
         editMessageCaption, editMessageMedia

Uploaded files are kept in ChatState so that getFile and the download
route can serve the same bytes back.
"""
import logging
from collections.abc import Mapping
from typing import Any

from botmock.exceptions import ApiError
from botmock.methods.messages import apply_edit
from botmock.registry import MethodCall, MethodTable
from botmock.state import StoredFile

logger = logging.getLogger("botmock.methods.media")

table = MethodTable()

MEDIA_KEYS = ("photo", "video", "audio", "voice", "video_note", "document", "animation", "sticker")


def _int(source: Mapping[str, Any], key: str, default: int) -> int:
    value = source.get(key)
    try:
        return int(value) if value is not None else default
    except (ValueError, TypeError):
        return default


def _with_file_info(
    data: dict[str, Any],
    stored: StoredFile | None,
    default_mime: str | None = None,
) -> dict[str, Any]:
    if stored is not None:
        if stored.file_name:
            data["file_name"] = stored.file_name
        data["mime_type"] = stored.media_type
    elif default_mime is not None:
        data["mime_type"] = default_mime
    return data


def build_media(
    kind: str,
    base: dict[str, Any],
    stored: StoredFile | None,
    source: Mapping[str, Any],
) -> dict[str, Any]:
    """Message content fields for one media object of the given kind."""
    if kind == "photo":
        small = {
            "file_id": f"{base['file_id']}_small",
            "file_unique_id": f"{base['file_unique_id']}_small",
            "width": 90,
            "height": 90,
        }
        return {"photo": [small, {**base, "width": 800, "height": 600}]}

    if kind == "video":
        video = {
            **base,
            "width": _int(source, "width", 1920),
            "height": _int(source, "height", 1080),
            "duration": _int(source, "duration", 30),
        }
        return {"video": _with_file_info(video, stored, "video/mp4")}

    if kind == "audio":
        audio: dict[str, Any] = {**base, "duration": _int(source, "duration", 180)}
        for key in ("performer", "title"):
            if source.get(key) is not None:
                audio[key] = source[key]
        return {"audio": _with_file_info(audio, stored, "audio/mpeg")}

    if kind == "voice":
        voice = {**base, "duration": _int(source, "duration", 5)}
        return {"voice": _with_file_info(voice, stored, "audio/ogg")}

    if kind == "video_note":
        return {
            "video_note": {
                **base,
                "length": _int(source, "length", 240),
                "duration": _int(source, "duration", 15),
            }
        }

    if kind == "document":
        return {"document": _with_file_info(dict(base), stored)}

    if kind == "animation":
        animation = {
            **base,
            "width": _int(source, "width", 480),
            "height": _int(source, "height", 270),
            "duration": _int(source, "duration", 3),
        }
        _with_file_info(animation, stored, "video/mp4")
        return {"animation": animation, "document": _with_file_info(dict(base), stored, "video/mp4")}

    if kind == "sticker":
        sticker = {
            **base,
            "type": "regular",
            "width": 512,
            "height": 512,
            "is_animated": False,
            "is_video": False,
        }
        if source.get("emoji") is not None:
            sticker["emoji"] = source["emoji"]
        return {"sticker": sticker}

    raise ApiError(f"Bad Request: unsupported media type {kind!r}")


def _send_media(call: MethodCall, kind: str) -> dict[str, Any]:
    base, stored = call.media(kind, kind)
    content = build_media(kind, base, stored, call.params)
    if kind not in ("sticker", "video_note"):
        content["caption"] = call.get("caption")
        content["caption_entities"] = call.get("caption_entities")

    message = call.send(**content)
    logger.debug(
        "%s to chat %d: message_id=%d, upload=%s",
        call.method,
        message["chat"]["id"],
        message["message_id"],
        stored is not None,
    )
    return message


def _register_send(method: str, kind: str) -> None:
    @table.handler(method, required=("chat_id", kind))
    def handle(call: MethodCall) -> dict[str, Any]:
        return _send_media(call, kind)

    handle.__name__ = f"handle_{method}"


for _method, _kind in (
    ("sendPhoto", "photo"),
    ("sendVideo", "video"),
    ("sendAudio", "audio"),
    ("sendVoice", "voice"),
    ("sendVideoNote", "video_note"),
    ("sendDocument", "document"),
    ("sendAnimation", "animation"),
    ("sendSticker", "sticker"),
):
    _register_send(_method, _kind)


@table.handler("sendMediaGroup", required=("chat_id", "media"))
def send_media_group(call: MethodCall) -> list[dict[str, Any]]:
    items = call.get("media")
    if not isinstance(items, list) or not 2 <= len(items) <= 10:
        raise ApiError("Bad Request: media group must contain 2-10 items")

    first_id = call.ids.next()
    group_id = str(first_id)
    messages = []
    for index, item in enumerate(items):
        kind = item.get("type")
        if kind not in ("photo", "video", "audio", "document"):
            raise ApiError(f"Bad Request: unsupported media group item type {kind!r}")

        base, stored = call.media_value(item.get("media"), kind, f"media[{index}]")
        content = build_media(kind, base, stored, item)
        messages.append(
            call.send(
                message_id=first_id if index == 0 else None,
                media_group_id=group_id,
                caption=item.get("caption"),
                caption_entities=item.get("caption_entities"),
                **content,
            )
        )
    return messages


@table.handler("editMessageCaption")
def edit_message_caption(call: MethodCall) -> Any:
    caption = call.get("caption")
    if caption is None:
        return apply_edit(call, {}, removed=("caption", "caption_entities"))
    return apply_edit(call, {"caption": caption})


@table.handler("editMessageMedia", required=("media",))
def edit_message_media(call: MethodCall) -> Any:
    media = call.get("media")
    if not isinstance(media, Mapping) or "type" not in media:
        raise ApiError("Bad Request: media must be an InputMedia object")

    kind = media["type"]
    base, stored = call.media_value(media.get("media"), kind)
    changes = build_media(kind, base, stored, media)
    if media.get("caption") is not None:
        changes["caption"] = media["caption"]

    removed = tuple(
        key for key in MEDIA_KEYS + ("caption", "caption_entities") if key not in changes
    )
    return apply_edit(call, changes, removed)
