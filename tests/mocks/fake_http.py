"""
Fake ``requests`` objects for unit tests.

Key SDET Concepts Demonstrated:
- Lightweight stub objects that satisfy the interface contract
- Recording collaborators so tests can assert on what was sent
- Side effects (exceptions, blocking) driven by plain data
"""

from __future__ import annotations

import json
import threading
from typing import Any, Callable, Union


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, body: Any = None, content: bytes | None = None):
        self.status_code = status_code
        if content is None:
            content = json.dumps(body).encode() if body is not None else b""
        self.content = content
        self.headers = {"Content-Type": "application/json"}


Reply = Union[FakeResponse, BaseException, Callable[[dict[str, Any]], Any]]


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    Each call to :meth:`request` consumes the next queued reply: a
    :class:`FakeResponse` is returned, an exception is raised, and a
    callable is invoked with the request kwargs (its return value is then
    treated the same way).  Once the queue is empty *default* is used.
    """

    def __init__(self, replies: list[Reply] | None = None, default: Reply | None = None):
        self.replies = list(replies or [])
        self.default = default if default is not None else FakeResponse(200, {})
        self.calls: list[dict[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def request(self, **kwargs: Any) -> FakeResponse:
        with self._lock:
            self.calls.append(kwargs)
            reply = self.replies.pop(0) if self.replies else self.default
        if callable(reply) and not isinstance(reply, (FakeResponse, BaseException)):
            reply = reply(kwargs)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True

    def urls(self) -> list[str]:
        return [call["url"] for call in self.calls]


class BlockingReply:
    """
    Reply that blocks the calling thread until :meth:`release` is called.

    ``entered`` is set once the request is in flight, so tests can race a
    cancellation against it deterministically.
    """

    def __init__(self, response: FakeResponse | None = None):
        self.response = response or FakeResponse(200, {})
        self.entered = threading.Event()
        self._released = threading.Event()

    def __call__(self, kwargs: dict[str, Any]) -> FakeResponse:
        self.entered.set()
        self._released.wait(5)
        return self.response

    def release(self) -> None:
        self._released.set()
