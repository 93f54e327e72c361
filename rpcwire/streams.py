"""The handler's view of client, server and bidirectional streaming calls.

Each stream wraps a handler connection. A connection exposes ``spec``,
``peer``, ``request_header``, ``response_header`` and ``response_trailer``
attributes. It also has ``receive()``, which returns a freshly decoded
message and raises ``EOFError`` once the client has finished sending, and
``send(msg)``.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any


class ClientStream:
    """Iterates over the messages of a client streaming call."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self._msg: Any = None
        self._err: BaseException | None = None

    @property
    def spec(self) -> Any:
        return self._conn.spec

    @property
    def peer(self) -> Any:
        return self._conn.peer

    @property
    def request_header(self) -> dict[str, list[str]]:
        return self._conn.request_header

    @property
    def conn(self) -> Any:
        """The underlying handler connection."""
        return self._conn

    @property
    def msg(self) -> Any:
        """The message most recently read by ``receive``."""
        return self._msg

    @property
    def err(self) -> BaseException | None:
        """The first error other than end-of-stream met by ``receive``."""
        if self._err is None or isinstance(self._err, EOFError):
            return None
        return self._err

    def receive(self) -> bool:
        """Advance to the next message; return False once the stream stops."""
        if self._err is not None:
            return False
        try:
            self._msg = self._conn.receive()
        except Exception as exc:  # the connection reports every failure this way
            self._msg = None
            self._err = exc
            return False
        return True

    def __iter__(self) -> Iterator[Any]:
        """Yield each message; raise any error other than end-of-stream."""
        while self.receive():
            yield self._msg
        if self.err is not None:
            raise self.err


class ServerStream:
    """Sends the messages of a server streaming call."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @property
    def response_header(self) -> dict[str, list[str]]:
        """Headers sent with the first message."""
        return self._conn.response_header

    @property
    def response_trailer(self) -> dict[str, list[str]]:
        """Trailers sent once the handler returns."""
        return self._conn.response_trailer

    @property
    def conn(self) -> Any:
        """The underlying handler connection."""
        return self._conn

    def send(self, msg: Any) -> Any:
        """Send a message; the first call also sends the response headers."""
        return self._conn.send(msg)


class BidiStream:
    """Receives and sends the messages of a bidirectional streaming call."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @property
    def spec(self) -> Any:
        return self._conn.spec

    @property
    def peer(self) -> Any:
        return self._conn.peer

    @property
    def request_header(self) -> dict[str, list[str]]:
        return self._conn.request_header

    @property
    def response_header(self) -> dict[str, list[str]]:
        """Headers sent with the first message."""
        return self._conn.response_header

    @property
    def response_trailer(self) -> dict[str, list[str]]:
        """Trailers sent once the handler returns."""
        return self._conn.response_trailer

    @property
    def conn(self) -> Any:
        """The underlying handler connection."""
        return self._conn

    def receive(self) -> Any:
        """Return the next message; raise ``EOFError`` when the client is done."""
        return self._conn.receive()

    def send(self, msg: Any) -> Any:
        """Send a message; the first call also sends the response headers."""
        return self._conn.send(msg)