"""Extraction of the procedure path from a URL or path."""

from __future__ import annotations


def extract_proto_path(path: str) -> str:
    """Return the trailing ``/package.Service/Method`` part of ``path``.

    The result always starts with a slash.
    """
    segments = path.split("/")
    package = segments[0]
    method = ""
    if len(segments) > 1:
        package, method = segments[-2], segments[-1]
    if not package:
        return "/"
    if not method:
        return "/" + package
    return f"/{package}/{method}"