# rpcwire

`rpcwire` holds the server-side building blocks for RPC handlers that speak
the Connect, gRPC and gRPC-Web protocols over HTTP: header helpers, content
type and compression negotiation, interceptors, handler options, the
handler's view of streaming calls, and a `Handler` that routes a request to
the right protocol handler. It uses only the standard library.

## Installation

```
pip install rpcwire
```

To run the test suite, install the `test` extra and run `pytest`:

```
pip install "rpcwire[test]"
pytest
```

## Modules

- `rpcwire.headers`: unpadded base64 binary header values
  (`encode_binary_header`, and `decode_binary_header`, which accepts padded or
  unpadded input and raises `ValueError` on bad data) and helpers for header
  mappings of name to list of values (`merge_headers`, `get_header`,
  `set_header`, `add_header`, `del_header`).
- `rpcwire.procedure`: `extract_proto_path` turns a URL or path into the
  `/package.Service/Method` form.
- `rpcwire.interceptors`: `Interceptor` (passes every call through unchanged),
  `UnaryInterceptor` (built from a function that wraps unary calls) and
  `Chain` (several interceptors, the first given being the outermost).
- `rpcwire.protocol`: `canonicalize_content_type`, `sorted_accept_post_value`,
  `negotiate_compression` (raises `UnsupportedCompressionError`), `discard`
  (reads and drops at most 4 MiB) and `flush_response_writer`.
- `rpcwire.options`: `HandlerConfig`, `HandlerOption` and the option
  constructors `with_codec`, `with_compression`, `with_handler_options`,
  `with_require_connect_protocol_header`, `with_compress_min_bytes`,
  `with_read_max_bytes`, `with_send_max_bytes`, `with_interceptors` and
  `with_options`. `new_handler_config` starts from the defaults (the `proto`,
  `json` and `json; charset=utf-8` codecs, via `ProtoBinaryCodec` and
  `JSONCodec`, and gzip compression as a `CompressionPool`) and then applies
  the given options in order.
- `rpcwire.streams`: `ClientStream`, `ServerStream` and `BidiStream`, the
  handler's view of streaming calls, each wrapping a handler connection.
- `rpcwire.handler`: `StreamType`, `Spec`, `Handler` and the constructors
  `new_unary_handler`, `new_client_stream_handler`,
  `new_server_stream_handler` and `new_bidi_stream_handler`.

## Examples

Binary headers round-trip and are always emitted without padding:

```python
from rpcwire.headers import encode_binary_header, decode_binary_header

value = encode_binary_header(b"\x00\x01\x02")
assert decode_binary_header(value) == b"\x00\x01\x02"
```

Procedure paths are normalised:

```python
from rpcwire.procedure import extract_proto_path

extract_proto_path("https://api.example.com/grpc/foo.user.v1.UserService/GetUser")
# "/foo.user.v1.UserService/GetUser"
```

Content types are compared in canonical form:

```python
from rpcwire.protocol import canonicalize_content_type

canonicalize_content_type("application/json; charset=UTF-8")
# "application/json; charset=utf-8"
```

Compression is negotiated from the request's encoding and the encodings the
client accepts:

```python
from rpcwire.protocol import negotiate_compression, UnsupportedCompressionError

negotiate_compression({"gzip"}, "", "br, gzip")
# ("identity", "gzip")

try:
    negotiate_compression({"gzip"}, "br", "")
except UnsupportedCompressionError as exc:
    print(exc.message)  # unknown compression "br": supported encodings are gzip
```

Interceptors compose so that the first one you give is the outermost layer:

```python
from rpcwire.interceptors import UnaryInterceptor
from rpcwire.options import with_interceptors, new_handler_config

def logging(next_func):
    def call(ctx, request):
        print("before")
        response = next_func(ctx, request)
        print("after")
        return response
    return call

config = new_handler_config(
    "/example.v1.ExampleService/Ping",
    [with_interceptors(UnaryInterceptor(logging))],
)
```

A handler answers requests that are not POST with 405 and an `Allow` header:

```python
from types import SimpleNamespace
from rpcwire.handler import new_unary_handler

class Response:
    def __init__(self):
        self.headers = {}
        self.status = None

    def write_header(self, status):
        self.status = status

handler = new_unary_handler("/example.v1.PingService/Ping", lambda ctx, req: None, [])
response = Response()
request = SimpleNamespace(method="GET", headers={}, proto_major=2, context=None)
handler.serve_http(response, request)
assert response.status == 405
assert response.headers["Allow"] == ["POST"]
```

## What it does not do

- It contains no implementations of the Connect, gRPC or gRPC-Web wire
  protocols. `Handler` dispatches to protocol handler objects that you pass in
  (offering `content_types()`, `set_timeout(request)` and
  `new_conn(response, request)`), and a request whose content type none of them
  accepts gets 415 with an `Accept-Post` header.
- It has no HTTP server and no RPC client; requests and responses are plain
  objects you supply.
- It has no command-line program.