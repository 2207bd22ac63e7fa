"""
Callback and inline query API method handlers.

Handles: answerCallbackQuery, answerInlineQuery
"""
import logging

from botmock.exceptions import ApiError
from botmock.registry import MethodCall, MethodTable

logger = logging.getLogger("botmock.methods.callbacks")

table = MethodTable()


@table.handler("answerCallbackQuery", required=("callback_query_id",))
def answer_callback_query(call: MethodCall) -> bool:
    logger.debug(
        "answerCallbackQuery: id=%s, text=%s",
        call.get("callback_query_id"),
        call.get("text"),
    )
    return True


@table.handler("answerInlineQuery", required=("inline_query_id", "results"))
def answer_inline_query(call: MethodCall) -> bool:
    results = call.get("results")
    if not isinstance(results, list):
        raise ApiError("Bad Request: results must be a list")
    if len(results) > 50:
        raise ApiError("Bad Request: RESULTS_TOO_MUCH")
    return True
