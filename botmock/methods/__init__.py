"""
Telegram API method handlers.

Each module declares a MethodTable for a group of related methods;
MethodRegistry.default() loads all of them.
"""
from botmock.methods import callbacks, chat, forum, media, messages, service

TABLES = (
    service.table,
    messages.table,
    media.table,
    chat.table,
    forum.table,
    callbacks.table,
)

__all__ = ["TABLES"]
