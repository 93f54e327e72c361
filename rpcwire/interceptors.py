"""Interceptors: composable wrappers around unary and streaming calls."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

UnaryFunc = Callable[..., Any]
"""A unary call, invoked as ``func(ctx, request)`` and returning a response."""

StreamingClientFunc = Callable[..., Any]
"""Opens a client connection, invoked as ``func(ctx, spec)``."""

StreamingHandlerFunc = Callable[..., Any]
"""Serves a streaming call, invoked as ``func(ctx, conn)``."""


class Interceptor:
    """Base interceptor; every method passes its function through unchanged.

    Subclasses override the methods for the kinds of call they care about.
    """

    def wrap_unary(self, next_func: UnaryFunc) -> UnaryFunc:
        return next_func

    def wrap_streaming_client(self, next_func: StreamingClientFunc) -> StreamingClientFunc:
        return next_func

    def wrap_streaming_handler(self, next_func: StreamingHandlerFunc) -> StreamingHandlerFunc:
        return next_func


class UnaryInterceptor(Interceptor):
    """An interceptor built from a function that wraps unary calls only."""

    def __init__(self, func: Callable[[UnaryFunc], UnaryFunc]) -> None:
        self.func = func

    def wrap_unary(self, next_func: UnaryFunc) -> UnaryFunc:
        return self.func(next_func)


class Chain(Interceptor):
    """Several interceptors composed into one.

    The first interceptor given is the outermost: it acts first on requests
    and last on responses. ``None`` entries are ignored.
    """

    def __init__(self, interceptors: Iterable[Interceptor | None]) -> None:
        # Stored innermost-first so wrapping in order yields the right onion.
        self.interceptors = [i for i in reversed(list(interceptors)) if i is not None]

    def wrap_unary(self, next_func: UnaryFunc) -> UnaryFunc:
        for interceptor in self.interceptors:
            next_func = interceptor.wrap_unary(next_func)
        return next_func

    def wrap_streaming_client(self, next_func: StreamingClientFunc) -> StreamingClientFunc:
        for interceptor in self.interceptors:
            next_func = interceptor.wrap_streaming_client(next_func)
        return next_func

    def wrap_streaming_handler(self, next_func: StreamingHandlerFunc) -> StreamingHandlerFunc:
        for interceptor in self.interceptors:
            next_func = interceptor.wrap_streaming_handler(next_func)
        return next_func