"""Handler configuration and the options that build it."""

from __future__ import annotations

import json
import zlib
from collections.abc import Callable, Iterable, MutableMapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from rpcwire.interceptors import Chain, Interceptor
from rpcwire.procedure import extract_proto_path

CODEC_NAME_PROTO = "proto"
CODEC_NAME_JSON = "json"
CODEC_NAME_JSON_CHARSET_UTF8 = "json; charset=utf-8"
COMPRESSION_GZIP = "gzip"

_GZIP_WBITS = 31  # zlib window bits selecting the gzip container


@runtime_checkable
class Codec(Protocol):
    """Marshals messages to bytes and back."""

    name: str

    def marshal(self, message: Any) -> bytes:
        ...

    def unmarshal(self, data: bytes, message: Any) -> Any:
        ...


class ProtoBinaryCodec:
    """Binary Protobuf codec for messages with the standard message methods."""

    name = CODEC_NAME_PROTO

    def marshal(self, message: Any) -> bytes:
        serialize = getattr(message, "SerializeToString", None)
        if not callable(serialize):
            raise TypeError(f"{type(message).__name__} is not a Protobuf message")
        return serialize()

    def unmarshal(self, data: bytes, message: Any) -> Any:
        parse = getattr(message, "ParseFromString", None)
        if not callable(parse):
            raise TypeError(f"{type(message).__name__} is not a Protobuf message")
        parse(bytes(data))
        return message


class JSONCodec:
    """JSON codec for mapping messages; an empty payload is an empty message."""

    def __init__(self, name: str = CODEC_NAME_JSON) -> None:
        self.name = name

    def marshal(self, message: Any) -> bytes:
        return json.dumps(message, separators=(",", ":")).encode("utf-8")

    def unmarshal(self, data: bytes, message: MutableMapping[str, Any]) -> Any:
        decoded = json.loads(data) if data else {}
        if not isinstance(decoded, dict):
            raise ValueError("JSON message must be an object")
        message.clear()
        message.update(decoded)
        return message


@dataclass(frozen=True)
class CompressionPool:
    """Factories for the compressor and decompressor of one algorithm."""

    new_decompressor: Callable[[], Any]
    new_compressor: Callable[[], Any]

    def compress(self, data: bytes) -> bytes:
        compressor = self.new_compressor()
        return compressor.compress(data) + compressor.flush()

    def decompress(self, data: bytes) -> bytes:
        decompressor = self.new_decompressor()
        return decompressor.decompress(data) + decompressor.flush()


def _new_compression_pool(
    new_decompressor: Callable[[], Any] | None,
    new_compressor: Callable[[], Any] | None,
) -> CompressionPool | None:
    if new_decompressor is None or new_compressor is None:
        return None
    return CompressionPool(new_decompressor, new_compressor)


@dataclass
class HandlerConfig:
    """Everything a handler needs to know, built up by options."""

    procedure: str = "/"
    compression_pools: dict[str, CompressionPool] = field(default_factory=dict)
    compression_names: list[str] = field(default_factory=list)
    codecs: dict[str, Codec] = field(default_factory=dict)
    compress_min_bytes: int = 0
    interceptor: Interceptor | None = None
    handle_grpc: bool = True
    handle_grpc_web: bool = True
    require_connect_protocol_header: bool = False
    read_max_bytes: int = 0
    send_max_bytes: int = 0


class HandlerOption:
    """A change applied to a ``HandlerConfig``."""

    def __init__(self, apply_func: Callable[[HandlerConfig], None]) -> None:
        self._apply_func = apply_func

    def apply(self, config: HandlerConfig) -> None:
        self._apply_func(config)


def with_codec(codec: Codec | None) -> HandlerOption:
    """Register a codec; a missing codec or one with an empty name is ignored."""

    def apply(config: HandlerConfig) -> None:
        if codec is None or not codec.name:
            return
        config.codecs[codec.name] = codec

    return HandlerOption(apply)


def with_compression(
    name: str,
    new_decompressor: Callable[[], Any] | None,
    new_compressor: Callable[[], Any] | None,
) -> HandlerOption:
    """Support a compression algorithm.

    An empty name or a missing constructor makes this a no-op.
    """
    pool = _new_compression_pool(new_decompressor, new_compressor)

    def apply(config: HandlerConfig) -> None:
        if not name or pool is None:
            return
        config.compression_pools[name] = pool
        config.compression_names.append(name)

    return HandlerOption(apply)


def with_handler_options(*args: HandlerOption) -> HandlerOption:
    """Compose several options into one, applied in order."""
    return with_options(*args)


def with_require_connect_protocol_header() -> HandlerOption:
    """Require Connect requests to carry the protocol version header."""

    def apply(config: HandlerConfig) -> None:
        config.require_connect_protocol_header = True

    return HandlerOption(apply)


def with_compress_min_bytes(minimum: int) -> HandlerOption:
    """Send messages smaller than ``minimum`` bytes uncompressed."""

    def apply(config: HandlerConfig) -> None:
        config.compress_min_bytes = minimum

    return HandlerOption(apply)


def with_read_max_bytes(maximum: int) -> HandlerOption:
    """Limit the size of each received message; zero means no limit."""

    def apply(config: HandlerConfig) -> None:
        config.read_max_bytes = maximum

    return HandlerOption(apply)


def with_send_max_bytes(maximum: int) -> HandlerOption:
    """Limit the size of each sent message; zero means no limit."""

    def apply(config: HandlerConfig) -> None:
        config.send_max_bytes = maximum

    return HandlerOption(apply)


def _chain_with(
    current: Interceptor | None, interceptors: list[Interceptor]
) -> Interceptor | None:
    if not interceptors:
        return current
    if current is None:
        if len(interceptors) == 1:
            return interceptors[0]
        return Chain(interceptors)
    return Chain([current, *interceptors])


def with_interceptors(*args: Interceptor) -> HandlerOption:
    """Add interceptors; the first given is the outermost.

    Repeated uses append, so ``with_interceptors(a)`` followed by
    ``with_interceptors(b, c)`` behaves like ``with_interceptors(a, b, c)``.
    """
    interceptors = list(args)

    def apply(config: HandlerConfig) -> None:
        config.interceptor = _chain_with(config.interceptor, interceptors)

    return HandlerOption(apply)


def with_options(*args: HandlerOption) -> HandlerOption:
    """Compose several options into one, applied in order."""
    options = list(args)

    def apply(config: HandlerConfig) -> None:
        for option in options:
            option.apply(config)

    return HandlerOption(apply)


def _with_gzip() -> HandlerOption:
    return with_compression(
        COMPRESSION_GZIP,
        lambda: zlib.decompressobj(wbits=_GZIP_WBITS),
        lambda: zlib.compressobj(wbits=_GZIP_WBITS),
    )


def _default_options() -> list[HandlerOption]:
    return [
        with_codec(ProtoBinaryCodec()),
        with_codec(JSONCodec(CODEC_NAME_JSON)),
        with_codec(JSONCodec(CODEC_NAME_JSON_CHARSET_UTF8)),
        _with_gzip(),
    ]


def new_handler_config(procedure: str, options: Iterable[HandlerOption]) -> HandlerConfig:
    """Build a configuration with the defaults, then apply ``options`` in order."""
    config = HandlerConfig(procedure=extract_proto_path(procedure))
    for option in (*_default_options(), *options):
        option.apply(config)
    return config