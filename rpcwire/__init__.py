"""Server-side plumbing for Connect, gRPC and gRPC-Web RPC handlers."""

__version__ = "0.1.0"

__all__ = [
    "headers",
    "procedure",
    "interceptors",
    "protocol",
    "options",
    "streams",
    "handler",
]