"""Protocol-agnostic plumbing shared by the Connect, gRPC and gRPC-Web protocols."""

from __future__ import annotations

import json
import re
from collections.abc import Collection, Iterable
from typing import Protocol

PROTOCOL_CONNECT = "connect"
PROTOCOL_GRPC = "grpc"
PROTOCOL_GRPC_WEB = "grpcweb"

HEADER_CONTENT_TYPE = "Content-Type"
HEADER_USER_AGENT = "User-Agent"
HEADER_TRAILER = "Trailer"

COMPRESSION_IDENTITY = "identity"

DISCARD_LIMIT = 1024 * 1024 * 4  # 4 MiB
_DISCARD_CHUNK = 32 * 1024

_TSPECIALS = '()<>@,;:\\"/[]?='
_FAST_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz.+-/")
_HEX = "0123456789ABCDEF"
_SEPARATORS = re.compile(r"[, ]+")


class ProtocolHandler(Protocol):
    """The server side of a protocol, as far as content negotiation goes."""

    def content_types(self) -> Collection[str]:
        ...


class UnsupportedCompressionError(Exception):
    """The client used a compression algorithm the server doesn't support."""

    code = "unimplemented"

    def __init__(self, sent: str, supported: str) -> None:
        self.sent = sent
        self.supported = supported
        self.message = (
            f"unknown compression {_quote(sent)}: supported encodings are {supported}"
        )
        super().__init__(f"{self.code}: {self.message}")


class _MediaTypeError(ValueError):
    pass


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def sorted_accept_post_value(handlers: Iterable[ProtocolHandler]) -> str:
    """Return every content type the handlers accept, sorted and comma-joined."""
    content_types = {ct for handler in handlers for ct in handler.content_types()}
    return ", ".join(sorted(content_types))


def discard(reader) -> int:
    """Read and throw away at most ``DISCARD_LIMIT`` bytes; return the count."""
    remaining = DISCARD_LIMIT
    total = 0
    while remaining > 0:
        chunk = reader.read(min(_DISCARD_CHUNK, remaining))
        if not chunk:
            break
        total += len(chunk)
        remaining -= len(chunk)
    return total


def negotiate_compression(
    available: Collection[str], sent: str, accept: str
) -> tuple[str, str]:
    """Pick the request and response compression.

    ``available`` holds the names of the supported algorithms. Returns
    ``(request_compression, response_compression)``; raises
    ``UnsupportedCompressionError`` if the client compressed the request with
    an unsupported algorithm.
    """
    request_compression = COMPRESSION_IDENTITY
    if sent and sent != COMPRESSION_IDENTITY:
        if sent not in available:
            raise UnsupportedCompressionError(sent, ",".join(available))
        request_compression = sent
    response_compression = request_compression
    if response_compression == COMPRESSION_IDENTITY and accept:
        for name in _SEPARATORS.split(accept):
            if name and name in available:
                response_compression = name
                break
    return request_compression, response_compression


def flush_response_writer(writer) -> None:
    """Flush ``writer`` if it supports flushing."""
    flush = getattr(writer, "flush", None)
    if callable(flush):
        flush()


def canonicalize_content_type(content_type: str) -> str:
    """Return the canonical form of a Content-Type header value.

    Values that can't be parsed are returned unchanged.
    """
    if all(ch in _FAST_CHARS for ch in content_type) and content_type.count("/") == 1:
        return content_type
    try:
        base, params = _parse_media_type(content_type)
    except _MediaTypeError:
        return content_type
    if "charset" in params:
        params["charset"] = params["charset"].lower()
    return _format_media_type(base, params)


# Media type parsing and formatting (RFC 2045, RFC 2231).


def _is_tspecial(ch: str) -> bool:
    return ch in _TSPECIALS


def _is_token_char(ch: str) -> bool:
    return " " < ch < "\x7f" and not _is_tspecial(ch)


def _is_token(value: str) -> bool:
    return bool(value) and all(_is_token_char(ch) for ch in value)


def _consume_token(value: str) -> tuple[str, str]:
    for index, ch in enumerate(value):
        if not _is_token_char(ch):
            return value[:index], value[index:]
    return value, ""


def _consume_value(value: str) -> tuple[str, str]:
    if not value:
        return "", value
    if value[0] != '"':
        return _consume_token(value)
    out: list[str] = []
    index = 1
    while index < len(value):
        ch = value[index]
        if ch == '"':
            return "".join(out), value[index + 1 :]
        if ch == "\\" and index + 1 < len(value) and _is_tspecial(value[index + 1]):
            out.append(value[index + 1])
            index += 2
            continue
        if ch in "\r\n":
            return "", value
        out.append(ch)
        index += 1
    return "", value


def _consume_media_param(value: str) -> tuple[str, str, str]:
    rest = value.lstrip()
    if not rest.startswith(";"):
        return "", "", value
    rest = rest[1:].lstrip()
    param, rest = _consume_token(rest)
    param = param.lower()
    if not param:
        return "", "", value
    rest = rest.lstrip()
    if not rest.startswith("="):
        return "", "", value
    rest = rest[1:].lstrip()
    param_value, rest2 = _consume_value(rest)
    if not param_value and rest2 == rest:
        return "", "", value
    return param, param_value, rest2


def _check_media_type(media_type: str) -> None:
    major, rest = _consume_token(media_type)
    if not major:
        raise _MediaTypeError("no media type")
    if not rest:
        return
    if not rest.startswith("/"):
        raise _MediaTypeError("expected slash after first token")
    sub, rest = _consume_token(rest[1:])
    if not sub:
        raise _MediaTypeError("expected token after slash")
    if rest:
        raise _MediaTypeError("unexpected content after media subtype")


def _percent_unescape(value: str) -> str:
    out = bytearray()
    index = 0
    while index < len(value):
        ch = value[index]
        if ch == "%":
            digits = value[index + 1 : index + 3]
            if len(digits) != 2 or not all(d in "0123456789abcdefABCDEF" for d in digits):
                raise _MediaTypeError(f"bogus characters after %: {value[index:]!r}")
            out.append(int(digits, 16))
            index += 3
            continue
        out.extend(ch.encode("utf-8"))
        index += 1
    return out.decode("utf-8", errors="replace")


def _decode_2231(value: str) -> str | None:
    parts = value.split("'", 2)
    if len(parts) < 3:
        return None
    charset = parts[0].lower()
    if charset not in ("us-ascii", "utf-8"):
        return None
    try:
        return _percent_unescape(parts[2])
    except _MediaTypeError:
        return None


def _parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    base = value.split(";", 1)[0]
    media_type = base.strip().lower()
    _check_media_type(media_type)

    params: dict[str, str] = {}
    continuation: dict[str, dict[str, str]] = {}
    rest = value[len(base) :]
    while True:
        rest = rest.lstrip()
        if not rest:
            break
        key, param_value, remainder = _consume_media_param(rest)
        if not key:
            if remainder.strip() == ";":
                break
            raise _MediaTypeError("invalid media parameter")
        target = params
        star = key.find("*")
        if star != -1:
            target = continuation.setdefault(key[:star], {})
        if key in target and target[key] != param_value:
            raise _MediaTypeError("duplicate parameter name")
        target[key] = param_value
        rest = remainder

    for base_name, pieces in continuation.items():
        single = pieces.get(base_name + "*")
        if single is not None:
            decoded = _decode_2231(single)
            if decoded is not None:
                params[base_name] = decoded
            continue
        buffer: list[str] = []
        valid = False
        n = 0
        while True:
            simple = f"{base_name}*{n}"
            if simple in pieces:
                valid = True
                buffer.append(pieces[simple])
            elif simple + "*" in pieces:
                valid = True
                encoded = pieces[simple + "*"]
                if n == 0:
                    decoded = _decode_2231(encoded)
                    if decoded is not None:
                        buffer.append(decoded)
                else:
                    try:
                        buffer.append(_percent_unescape(encoded))
                    except _MediaTypeError:
                        pass
            else:
                break
            n += 1
        if valid:
            params[base_name] = "".join(buffer)
    return media_type, params


def _needs_encoding(value: str) -> bool:
    return any((ch < " " or ch > "~") and ch != "\t" for ch in value)


def _format_media_type(media_type: str, params: dict[str, str]) -> str:
    major, slash, sub = media_type.partition("/")
    if not slash:
        if not _is_token(media_type):
            return ""
        parts = [media_type.lower()]
    else:
        if not _is_token(major) or not _is_token(sub):
            return ""
        parts = [f"{major.lower()}/{sub.lower()}"]

    for attribute in sorted(params):
        value = params[attribute]
        if not _is_token(attribute):
            return ""
        name = attribute.lower()
        if _needs_encoding(value):
            encoded = []
            for byte in value.encode("utf-8"):
                ch = chr(byte)
                if byte <= 0x20 or byte >= 0x7F or ch in "*'%" or _is_tspecial(ch):
                    encoded.append("%" + _HEX[byte >> 4] + _HEX[byte & 0x0F])
                else:
                    encoded.append(ch)
            parts.append(f"; {name}*=utf-8''{''.join(encoded)}")
        elif _is_token(value):
            parts.append(f"; {name}={value}")
        else:
            escaped = "".join("\\" + ch if ch in '"\\' else ch for ch in value)
            parts.append(f'; {name}="{escaped}"')
    return "".join(parts)