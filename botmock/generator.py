"""
Response generation for the mock Telegram server.

Turns a method name plus decoded parameters into a MockResponse: a one-shot
override registered by the test when one matches, otherwise the handler
from the MethodRegistry.
"""
import logging
import threading
import warnings
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from botmock.exceptions import ApiError, UnsupportedMethod, UnsupportedMethodWarning
from botmock.ids import Clock, IdCounter
from botmock.recorder import CapturedFile
from botmock.registry import MethodCall, MethodRegistry
from botmock.responses import (
    BotIdentity,
    MockResponse,
    ResponseOverride,
    default_error_description,
)
from botmock.state import ChatState

logger = logging.getLogger("botmock.generator")

Predicate = Callable[[Mapping[str, Any]], bool]

# Raised by handlers and predicates reading parameters of the wrong shape
MALFORMED_PARAMS = (ValueError, TypeError, KeyError, AttributeError)


class MockResponseGenerator:
    """
    Produces schema-correct results for API calls.

    Message ids come from the IdCounter shared with the UpdateBuilder, so
    ids assigned here never collide with ids of synthetic updates.
    """

    def __init__(
        self,
        registry: MethodRegistry | None = None,
        state: ChatState | None = None,
        ids: IdCounter | None = None,
        clock: Clock | None = None,
        me: BotIdentity | None = None,
    ) -> None:
        self.registry = registry if registry is not None else MethodRegistry.default()
        self.clock = clock or Clock()
        self.state = state if state is not None else ChatState(self.clock)
        self.ids = ids or IdCounter()
        self.me = me or BotIdentity()
        self._overrides: list[ResponseOverride] = []
        self._lock = threading.RLock()

    # =========================================================================
    # Overrides
    # =========================================================================

    def add_override(self, override: ResponseOverride) -> ResponseOverride:
        with self._lock:
            self._overrides.append(override)
        logger.debug("Registered override for %s", override.method)
        return override

    def expect_error(
        self,
        method: str,
        error_code: int = 400,
        description: str | None = None,
        when: Predicate | None = None,
        retry_after: int | None = None,
    ) -> ResponseOverride:
        """Fail the next matching call with an error envelope."""
        response = MockResponse.error(
            description or default_error_description(error_code),
            error_code=error_code,
            retry_after=retry_after,
        )
        return self.add_override(ResponseOverride(method, response, when))

    def expect_result(
        self,
        method: str,
        result: Any,
        when: Predicate | None = None,
    ) -> ResponseOverride:
        """Answer the next matching call with a canned result."""
        return self.add_override(ResponseOverride(method, MockResponse.success(result), when))

    def pending_overrides(self) -> list[ResponseOverride]:
        with self._lock:
            return list(self._overrides)

    def clear_overrides(self) -> None:
        with self._lock:
            self._overrides.clear()

    def _take_override(self, method: str, params: Mapping[str, Any]) -> ResponseOverride | None:
        with self._lock:
            for index, override in enumerate(self._overrides):
                if override.accepts(method, params):
                    return self._overrides.pop(index)
        return None

    # =========================================================================
    # Generation
    # =========================================================================

    def generate(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        files: Iterable[CapturedFile] = (),
    ) -> MockResponse:
        """Build the response for one call; never raises for bad input."""
        params = params if params is not None else {}

        try:
            override = self._take_override(method, params)
        except MALFORMED_PARAMS as exc:
            return self._bad_request(method, exc)
        if override is not None:
            logger.debug("%s answered by override (ok=%s)", method, override.response.ok)
            return override.response

        try:
            spec = self.registry.resolve(method)
        except UnsupportedMethod as exc:
            logger.warning("Unsupported API method: %s", method)
            warnings.warn(str(exc), UnsupportedMethodWarning, stacklevel=2)
            return MockResponse.error(f"Not Found: {exc}", error_code=404)

        missing = spec.missing(params)
        if missing is not None:
            return MockResponse.error(f"Bad Request: {missing} is required")

        call = MethodCall(
            method=method,
            params=params,
            state=self.state,
            ids=self.ids,
            clock=self.clock,
            me=self.me,
            files=tuple(files),
        )
        try:
            with self._lock:
                result = spec.handler(call)
        except ApiError as exc:
            logger.debug("%s -> %d %s", method, exc.error_code, exc.description)
            return MockResponse.error(
                exc.description, error_code=exc.error_code, retry_after=exc.retry_after,
            )
        except MALFORMED_PARAMS as exc:
            return self._bad_request(method, exc)

        return MockResponse.success(result)

    @staticmethod
    def _bad_request(method: str, exc: Exception) -> MockResponse:
        logger.warning("%s called with malformed parameters: %r", method, exc)
        return MockResponse.error(f"Bad Request: {exc}")
