"""
Errors raised by the mock Telegram backend.

Anything the bot under test could receive from a real Bot API server is
delivered as an error envelope instead of being raised; the exceptions below
either become such envelopes inside the server or signal harness problems.
"""


class BotMockError(Exception):
    """Base class for all harness errors."""


class MalformedMultipart(BotMockError):
    """Raised when a multipart/form-data body cannot be parsed."""


class UnsupportedMethod(BotMockError):
    """Raised when no response template is registered for a method."""

    def __init__(self, method: str) -> None:
        super().__init__(f"Method '{method}' is not supported by the mock server")
        self.method = method


class UnsupportedMethodWarning(UserWarning):
    """Warns the test that the bot called a method with no mock definition."""


class ApiError(BotMockError):
    """Raised by method handlers for failures a live backend would report."""

    def __init__(
        self,
        description: str,
        error_code: int = 400,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(description)
        self.description = description
        self.error_code = error_code
        self.retry_after = retry_after


class DispatchTimeout(BotMockError, TimeoutError):
    """Raised when the dispatcher does not finish handling an update in time."""

    def __init__(self, update_id: int, timeout: float) -> None:
        super().__init__(
            f"Update {update_id} was not handled within {timeout:.2f}s"
        )
        self.update_id = update_id
        self.timeout = timeout


class PortBindFailure(BotMockError, OSError):
    """Raised when the mock server cannot acquire a listening port."""


class NotStartedError(BotMockError, RuntimeError):
    """Raised when a context is used outside of ``async with``."""


class NoDispatcherError(BotMockError, RuntimeError):
    """Raised when dispatching without a Dispatcher attached."""


class ButtonNotFoundError(BotMockError):
    """Raised when a button cannot be found in the chat."""


class NoMessagesError(BotMockError):
    """Raised when trying to access messages in an empty chat."""
