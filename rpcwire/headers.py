"""Helpers for HTTP header maps and binary header values.

Header maps are plain dictionaries from a canonical header name to the list
of values sent under that name, e.g. ``{"Content-Type": ["application/json"]}``.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping, MutableMapping

Headers = MutableMapping[str, list[str]]


def encode_binary_header(data: bytes) -> str:
    """Base64-encode ``data`` without padding.

    In the Connect, gRPC and gRPC-Web protocols, binary headers have keys
    ending in ``-Bin``.
    """
    return base64.b64encode(bytes(data)).decode("ascii").rstrip("=")


def decode_binary_header(data: str) -> bytes:
    """Base64-decode a padded or unpadded header value.

    Comma-joined values must be split before decoding. Raises ``ValueError``
    if the value is not valid base64.
    """
    if len(data) % 4 != 0:
        # Unpadded input: padding characters may not appear at all.
        if "=" in data:
            raise ValueError(f"illegal base64 data: unexpected padding in {data!r}")
        data = data + "=" * (-len(data) % 4)
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"illegal base64 data: {exc}") from exc


def merge_headers(into: Headers, source: Mapping[str, list[str]]) -> None:
    """Append every value in ``source`` to the matching key of ``into``."""
    for key, values in source.items():
        into.setdefault(key, []).extend(values or ())


def get_header(headers: Mapping[str, list[str]] | None, key: str) -> str:
    """Return the first value stored under ``key``, or an empty string."""
    if not headers:
        return ""
    values = headers.get(key)
    if not values:
        return ""
    return values[0]


def set_header(headers: Headers, key: str, value: str) -> None:
    """Replace every value under ``key`` with ``value``."""
    headers[key] = [value]


def add_header(headers: Headers, key: str, value: str) -> None:
    """Append ``value`` to the values stored under ``key``."""
    headers.setdefault(key, []).append(value)


def del_header(headers: Headers, key: str) -> None:
    """Remove ``key`` and all its values, if present."""
    headers.pop(key, None)