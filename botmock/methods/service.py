"""
Bot-level API method handlers.

Handles: getMe, logOut, close, getUpdates, setWebhook, deleteWebhook,
         getWebhookInfo, getFile
"""
from typing import Any

from botmock.registry import MethodCall, MethodTable

table = MethodTable()


@table.handler("getMe")
def get_me(call: MethodCall) -> dict[str, Any]:
    return call.me.as_get_me()


@table.handler("logOut")
def log_out(call: MethodCall) -> bool:
    return True


@table.handler("close")
def close(call: MethodCall) -> bool:
    return True


@table.handler("getUpdates")
def get_updates(call: MethodCall) -> list[Any]:
    # Updates are pushed through the dispatcher, never polled
    return []


@table.handler("setWebhook", required=("url",))
def set_webhook(call: MethodCall) -> bool:
    return True


@table.handler("deleteWebhook")
def delete_webhook(call: MethodCall) -> bool:
    return True


@table.handler("getWebhookInfo")
def get_webhook_info(call: MethodCall) -> dict[str, Any]:
    return {"url": "", "has_custom_certificate": False, "pending_update_count": 0}


@table.handler("getFile", required=("file_id",))
def get_file(call: MethodCall) -> dict[str, Any]:
    file_id = call.get("file_id")
    stored = call.state.get_file(file_id)
    if stored is not None:
        return stored.as_file()
    return {
        "file_id": file_id,
        "file_unique_id": f"unique_{file_id}",
        "file_path": f"files/{file_id}",
    }
