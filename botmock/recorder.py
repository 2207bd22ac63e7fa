"""
Request recording for the mock Telegram server.

Stores every API call made by the bot, in the order the server received
them, for inspection in tests.
"""
import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from multidict import MultiDict, MultiDictProxy

logger = logging.getLogger("botmock.recorder")


@dataclass(frozen=True)
class CapturedFile:
    """File uploaded as part of an API call."""

    field_name: str
    content: bytes
    media_type: str
    filename: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class CapturedRequest:
    """Single recorded API call."""

    seq: int
    method: str
    params: MultiDictProxy
    files: tuple[CapturedFile, ...] = ()
    token: str = ""
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)

    def file(self, name: str) -> CapturedFile | None:
        """Uploaded file sent for a parameter, e.g. ``file("photo")``."""
        value = self.params.get(name)
        if isinstance(value, CapturedFile):
            return value
        for captured in self.files:
            if captured.field_name == name:
                return captured
        return None

    def matches(self, method: str | None = None, **params: Any) -> bool:
        """Check method name and parameter values.

        Numbers are compared loosely against strings so ``chat_id=42``
        matches a form-encoded "42".
        """
        if method is not None and self.method != method:
            return False
        for name, expected in params.items():
            if name not in self.params:
                return False
            if not _loose_equal(self.params[name], expected):
                return False
        return True


def _loose_equal(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    if isinstance(expected, (int, float)) and not isinstance(expected, bool):
        return str(actual) == str(expected)
    return False


class RequestRecorder:
    """
    Append-only, thread-safe log of API calls.

    Reads return snapshots taken under the lock, so a reader never sees a
    half-recorded entry.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._requests: list[CapturedRequest] = []
        self._next_seq = 0
        self._lock = threading.Lock()

    def record(
        self,
        method: str,
        params: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
        files: Iterable[CapturedFile] = (),
        token: str = "",
        error: str | None = None,
        received_at: datetime | None = None,
    ) -> CapturedRequest:
        """Store a call and return it with its sequence number assigned."""
        frozen_params = MultiDictProxy(MultiDict(params or ()))
        frozen_files = tuple(files)

        with self._lock:
            request = CapturedRequest(
                seq=self._next_seq,
                method=method,
                params=frozen_params,
                files=frozen_files,
                token=token,
                received_at=received_at or datetime.now(timezone.utc),
                error=error,
            )
            self._requests.append(request)
            self._next_seq += 1

        logger.debug("Recorded #%d %s [%s]", request.seq, method, self.session_id[:8])
        return request

    def all(self) -> list[CapturedRequest]:
        with self._lock:
            return list(self._requests)

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def last(self, method: str | None = None) -> CapturedRequest | None:
        """Most recent call, optionally of one method."""
        with self._lock:
            for request in reversed(self._requests):
                if method is None or request.method == method:
                    return request
        return None

    def first(self, method: str | None = None) -> CapturedRequest | None:
        with self._lock:
            for request in self._requests:
                if method is None or request.method == method:
                    return request
        return None

    def at(self, seq: int) -> CapturedRequest:
        """Call with a given sequence number (IndexError when unknown)."""
        with self._lock:
            for request in self._requests:
                if request.seq == seq:
                    return request
        raise IndexError(f"No request with sequence number {seq}")

    def by_method(self, method: str) -> list[CapturedRequest]:
        return [r for r in self.all() if r.method == method]

    def find(self, method: str | None = None, **params: Any) -> list[CapturedRequest]:
        """Calls matching a method name and parameter values."""
        return [r for r in self.all() if r.matches(method, **params)]

    def count_matching(self, predicate: Callable[[CapturedRequest], bool]) -> int:
        return sum(1 for r in self.all() if predicate(r))

    def count(self, method: str | None = None) -> int:
        if method is None:
            return len(self)
        return self.count_matching(lambda r: r.method == method)

    def methods(self) -> list[str]:
        """Method names in the order they were called."""
        return [r.method for r in self.all()]

    def clear(self) -> None:
        """Forget recorded calls; sequence numbers keep increasing."""
        with self._lock:
            self._requests.clear()
        logger.debug("Cleared recorder %s", self.session_id[:8])
