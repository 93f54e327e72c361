"""Server-side handlers for a single procedure.

A handler serves HTTP requests through the protocol handlers given to it.
Each protocol handler offers ``content_types()``, ``set_timeout(request)``
returning ``(ctx, cancel)`` (``cancel`` may be ``None``; an exception means
the client sent a bad timeout), and ``new_conn(response, request)``
returning a connection, or ``None`` if it already answered the request.
An optional ``protocol`` attribute names the protocol it implements.

Requests carry ``method``, ``headers``, ``proto_major`` and ``context``;
responses carry ``headers`` and ``write_header(status)``.
"""

from __future__ import annotations

import contextlib
import copy
import enum
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from rpcwire.headers import get_header, merge_headers, set_header
from rpcwire.options import HandlerConfig, HandlerOption, new_handler_config
from rpcwire.protocol import (
    HEADER_CONTENT_TYPE,
    PROTOCOL_GRPC,
    PROTOCOL_GRPC_WEB,
    canonicalize_content_type,
    sorted_accept_post_value,
)
from rpcwire.streams import BidiStream, ClientStream, ServerStream


class StreamType(enum.IntFlag):
    """Which sides of a call send more than one message."""

    UNARY = 0
    CLIENT = 1
    SERVER = 2
    BIDI = CLIENT | SERVER


@dataclass(frozen=True)
class Spec:
    """Describes a procedure."""

    procedure: str
    stream_type: StreamType


@dataclass
class _Request:
    msg: Any
    spec: Any
    peer: Any
    header: dict[str, list[str]]

    def any(self) -> Any:
        return self.msg


def _raise_if_done(ctx: Any) -> None:
    err = getattr(ctx, "err", None)
    if callable(err):
        error = err()
        if error is not None:
            raise error


def _merge_response_metadata(conn: Any, response: Any) -> None:
    merge_headers(conn.response_header, getattr(response, "header", None) or {})
    merge_headers(conn.response_trailer, getattr(response, "trailer", None) or {})


def _with_context(request: Any, ctx: Any) -> Any:
    clone = copy.copy(request)
    clone.context = ctx
    return clone


def _enabled_protocol_handlers(config: HandlerConfig, handlers: Iterable[Any]) -> list[Any]:
    disabled = set()
    if not config.handle_grpc:
        disabled.add(PROTOCOL_GRPC)
    if not config.handle_grpc_web:
        disabled.add(PROTOCOL_GRPC_WEB)
    return [h for h in handlers if getattr(h, "protocol", None) not in disabled]


class Handler:
    """Serves one procedure over every supported protocol."""

    def __init__(
        self,
        spec: Spec,
        implementation: Callable[[Any, Any], Any],
        protocol_handlers: Iterable[Any],
    ) -> None:
        self.spec = spec
        self.implementation = implementation
        self.protocol_handlers = list(protocol_handlers)
        self.accept_post = sorted_accept_post_value(self.protocol_handlers)

    def serve_http(self, response: Any, request: Any) -> None:
        """Answer one HTTP request."""
        is_bidi = (self.spec.stream_type & StreamType.BIDI) == StreamType.BIDI
        if is_bidi and request.proto_major < 2:
            # Full-duplex clients stuck on HTTP/1.1 may hang; close the connection.
            set_header(response.headers, "Connection", "close")
            response.write_header(int(HTTPStatus.HTTP_VERSION_NOT_SUPPORTED))
            return

        if request.method != "POST":
            set_header(response.headers, "Allow", "POST")
            response.write_header(int(HTTPStatus.METHOD_NOT_ALLOWED))
            return

        content_type = canonicalize_content_type(
            get_header(request.headers, HEADER_CONTENT_TYPE)
        )
        protocol_handler = next(
            (h for h in self.protocol_handlers if content_type in h.content_types()),
            None,
        )
        if protocol_handler is None:
            set_header(response.headers, "Accept-Post", self.accept_post)
            response.write_header(int(HTTPStatus.UNSUPPORTED_MEDIA_TYPE))
            return

        set_header(request.headers, HEADER_CONTENT_TYPE, content_type)
        timeout_error: Exception | None = None
        cancel = None
        try:
            ctx, cancel = protocol_handler.set_timeout(request)
        except Exception as exc:  # a malformed timeout is reported to the client
            timeout_error = exc
            ctx = getattr(request, "context", None)
        try:
            conn = protocol_handler.new_conn(response, _with_context(request, ctx))
            if conn is None:
                return
            if timeout_error is not None:
                with contextlib.suppress(Exception):
                    conn.close(timeout_error)
                return
            error: Exception | None = None
            try:
                self.implementation(ctx, conn)
            except Exception as exc:
                error = exc
            with contextlib.suppress(Exception):
                conn.close(error)
        finally:
            if cancel is not None:
                cancel()


def _new_stream_handler(
    procedure: str,
    stream_type: StreamType,
    implementation: Callable[[Any, Any], Any],
    protocol_handlers: Iterable[Any],
    options: Iterable[HandlerOption],
) -> Handler:
    config = new_handler_config(procedure, options)
    if config.interceptor is not None:
        implementation = config.interceptor.wrap_streaming_handler(implementation)
    return Handler(
        Spec(config.procedure, stream_type),
        implementation,
        _enabled_protocol_handlers(config, protocol_handlers),
    )


def new_unary_handler(
    procedure: str,
    unary: Callable[[Any, Any], Any],
    protocol_handlers: Iterable[Any],
    *args: HandlerOption,
) -> Handler:
    """Build a handler for a request-response procedure.

    ``unary(ctx, request)`` returns a response with ``msg`` and optional
    ``header`` and ``trailer`` mappings, or raises.
    """

    def typed_call(ctx: Any, request: Any) -> Any:
        _raise_if_done(ctx)
        if not isinstance(request, _Request):
            raise TypeError(f"unexpected handler request type {type(request).__name__}")
        response = unary(ctx, request)
        if response is None:
            raise RuntimeError(f"{procedure} returned no response and no error")
        return response

    config = new_handler_config(procedure, args)
    call = typed_call
    if config.interceptor is not None:
        call = config.interceptor.wrap_unary(typed_call)

    def implementation(ctx: Any, conn: Any) -> None:
        msg = conn.receive()
        request = _Request(msg, conn.spec, conn.peer, conn.request_header)
        response = call(ctx, request)
        _merge_response_metadata(conn, response)
        conn.send(response.msg)

    return Handler(
        Spec(config.procedure, StreamType.UNARY),
        implementation,
        _enabled_protocol_handlers(config, protocol_handlers),
    )


def new_client_stream_handler(
    procedure: str,
    implementation: Callable[[Any, ClientStream], Any],
    protocol_handlers: Iterable[Any],
    *args: HandlerOption,
) -> Handler:
    """Build a handler for a client streaming procedure."""

    def serve(ctx: Any, conn: Any) -> None:
        response = implementation(ctx, ClientStream(conn))
        if response is None:
            raise RuntimeError(f"{procedure} returned no response and no error")
        _merge_response_metadata(conn, response)
        conn.send(response.msg)

    return _new_stream_handler(procedure, StreamType.CLIENT, serve, protocol_handlers, args)


def new_server_stream_handler(
    procedure: str,
    implementation: Callable[[Any, Any, ServerStream], Any],
    protocol_handlers: Iterable[Any],
    *args: HandlerOption,
) -> Handler:
    """Build a handler for a server streaming procedure."""

    def serve(ctx: Any, conn: Any) -> None:
        msg = conn.receive()
        request = _Request(msg, conn.spec, conn.peer, conn.request_header)
        implementation(ctx, request, ServerStream(conn))

    return _new_stream_handler(procedure, StreamType.SERVER, serve, protocol_handlers, args)


def new_bidi_stream_handler(
    procedure: str,
    implementation: Callable[[Any, BidiStream], Any],
    protocol_handlers: Iterable[Any],
    *args: HandlerOption,
) -> Handler:
    """Build a handler for a bidirectional streaming procedure."""

    def serve(ctx: Any, conn: Any) -> None:
        implementation(ctx, BidiStream(conn))

    return _new_stream_handler(procedure, StreamType.BIDI, serve, protocol_handlers, args)