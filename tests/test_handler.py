import json
from dataclasses import dataclass, field

from rpcwire.handler import (
    Spec,
    StreamType,
    new_bidi_stream_handler,
    new_client_stream_handler,
    new_server_stream_handler,
    new_unary_handler,
)
from rpcwire.headers import get_header
from rpcwire.interceptors import UnaryInterceptor
from rpcwire.options import with_interceptors
from rpcwire.protocol import (
    PROTOCOL_CONNECT,
    PROTOCOL_GRPC,
    PROTOCOL_GRPC_WEB,
    UnsupportedCompressionError,
    negotiate_compression,
)

PING = "/connect.ping.v1.PingService/Ping"


@dataclass
class FakeRequest:
    method: str = "POST"
    headers: dict = field(default_factory=dict)
    proto_major: int = 2
    context: object = None


class FakeResponse:
    def __init__(self):
        self.headers = {}
        self.status = None
        self.body = bytearray()

    def write_header(self, status):
        if self.status is None:
            self.status = status

    def write(self, data):
        self.write_header(200)
        self.body.extend(data)


@dataclass
class Reply:
    msg: object
    header: dict = field(default_factory=dict)
    trailer: dict = field(default_factory=dict)


class FakeConn:
    def __init__(self, response, request, messages):
        self.response = response
        self.spec = Spec(PING, StreamType.UNARY)
        self.peer = "peer"
        self.request_header = request.headers
        self.response_header = {}
        self.response_trailer = {}
        self._messages = list(messages)
        self.sent = []
        self.closed = []

    def receive(self):
        if not self._messages:
            raise EOFError()
        return self._messages.pop(0)

    def send(self, msg):
        self.sent.append(msg)

    def close(self, error):
        self.closed.append(error)
        self.response.write_header(200 if error is None else 500)


class FakeProtocolHandler:
    def __init__(self, protocol, content_types, messages=({"number": 42},), timeout_error=None):
        self.protocol = protocol
        self._content_types = frozenset(content_types)
        self.messages = messages
        self.timeout_error = timeout_error
        self.conns = []
        self.contexts = []
        self.cancelled = 0

    def content_types(self):
        return self._content_types

    def set_timeout(self, request):
        if self.timeout_error is not None:
            raise self.timeout_error
        return "ctx", self._cancel

    def _cancel(self):
        self.cancelled += 1

    def new_conn(self, response, request):
        try:
            negotiate_compression(["gzip"], get_header(request.headers, "Content-Encoding"), "")
        except UnsupportedCompressionError as exc:
            response.write_header(404)
            response.write(json.dumps({"code": exc.code, "message": exc.message}).encode())
            return None
        conn = FakeConn(response, request, self.messages)
        self.conns.append(conn)
        self.contexts.append(request.context)
        return conn


def protocol_handlers(**kwargs):
    return [
        FakeProtocolHandler(
            PROTOCOL_CONNECT,
            ["application/json", "application/json; charset=utf-8", "application/proto"],
            **kwargs,
        ),
        FakeProtocolHandler(
            PROTOCOL_GRPC,
            [
                "application/grpc",
                "application/grpc+json",
                "application/grpc+json; charset=utf-8",
                "application/grpc+proto",
            ],
        ),
        FakeProtocolHandler(
            PROTOCOL_GRPC_WEB,
            [
                "application/grpc-web",
                "application/grpc-web+json",
                "application/grpc-web+json; charset=utf-8",
                "application/grpc-web+proto",
            ],
        ),
    ]


def echo(ctx, request):
    return Reply(request.msg)


def json_request(content_type="application/json", **kwargs):
    return FakeRequest(headers={"Content-Type": [content_type]}, **kwargs)


def test_method_not_allowed():
    handler = new_unary_handler(PING, echo, protocol_handlers())
    response = FakeResponse()
    handler.serve_http(response, FakeRequest(method="GET"))
    assert response.status == 405
    assert response.headers["Allow"] == ["POST"]


def test_unsupported_content_type():
    handler = new_unary_handler(PING, echo, protocol_handlers())
    response = FakeResponse()
    handler.serve_http(response, json_request("application/x-custom-json"))
    assert response.status == 415
    assert get_header(response.headers, "Accept-Post") == ", ".join(
        [
            "application/grpc",
            "application/grpc+json",
            "application/grpc+json; charset=utf-8",
            "application/grpc+proto",
            "application/grpc-web",
            "application/grpc-web+json",
            "application/grpc-web+json; charset=utf-8",
            "application/grpc-web+proto",
            "application/json",
            "application/json; charset=utf-8",
            "application/proto",
        ]
    )


def test_charset_in_content_type_header():
    handlers = protocol_handlers()
    handler = new_unary_handler(PING, echo, handlers)
    response = FakeResponse()
    request = json_request("application/json;Charset=Utf-8")
    handler.serve_http(response, request)
    assert response.status == 200
    conn = handlers[0].conns[0]
    assert conn.sent == [{"number": 42}]
    assert conn.closed == [None]
    assert request.headers["Content-Type"] == ["application/json; charset=utf-8"]


def test_unsupported_charset():
    handler = new_unary_handler(PING, echo, protocol_handlers())
    response = FakeResponse()
    handler.serve_http(response, json_request("application/json; charset=shift-jis"))
    assert response.status == 415


def test_unsupported_content_encoding():
    handler = new_unary_handler(PING, echo, protocol_handlers())
    response = FakeResponse()
    request = json_request()
    request.headers["Content-Encoding"] = ["invalid"]
    handler.serve_http(response, request)
    assert response.status == 404
    message = json.loads(bytes(response.body))
    assert message["message"] == 'unknown compression "invalid": supported encodings are gzip'
    assert message["code"] == "unimplemented"


def test_spec_uses_extracted_procedure():
    handler = new_unary_handler(
        "https://api.example.com/grpc/connect.ping.v1.PingService/Ping", echo, []
    )
    assert handler.spec == Spec(PING, StreamType.UNARY)


def test_unary_merges_response_metadata():
    handlers = protocol_handlers()

    def unary(ctx, request):
        return Reply(request.msg, header={"X-Header": ["h"]}, trailer={"X-Trailer": ["t"]})

    handler = new_unary_handler(PING, unary, handlers)
    handler.serve_http(FakeResponse(), json_request())
    conn = handlers[0].conns[0]
    assert conn.response_header == {"X-Header": ["h"]}
    assert conn.response_trailer == {"X-Trailer": ["t"]}


def test_unary_request_exposes_conn_metadata():
    handlers = protocol_handlers()
    seen = {}

    def unary(ctx, request):
        seen["spec"] = request.spec
        seen["peer"] = request.peer
        seen["any"] = request.any()
        seen["ctx"] = ctx
        return Reply(request.msg)

    handler = new_unary_handler(PING, unary, handlers)
    handler.serve_http(FakeResponse(), json_request())
    assert seen == {
        "spec": Spec(PING, StreamType.UNARY),
        "peer": "peer",
        "any": {"number": 42},
        "ctx": "ctx",
    }
    assert handlers[0].cancelled == 1
    assert handlers[0].contexts == ["ctx"]


def test_unary_error_is_passed_to_close():
    handlers = protocol_handlers()
    failure = ValueError("failed to foo")

    def unary(ctx, request):
        raise failure

    handler = new_unary_handler(PING, unary, handlers)
    response = FakeResponse()
    handler.serve_http(response, json_request())
    conn = handlers[0].conns[0]
    assert conn.closed == [failure]
    assert conn.sent == []
    assert response.status == 500


def test_unary_missing_response_names_procedure():
    handlers = protocol_handlers()
    handler = new_unary_handler(PING, lambda ctx, request: None, handlers)
    handler.serve_http(FakeResponse(), json_request())
    error = handlers[0].conns[0].closed[0]
    assert isinstance(error, RuntimeError)
    assert PING in str(error)


def test_interceptors_wrap_like_an_onion():
    log = []

    def make(name):
        def wrap(next_func):
            def call(ctx, request):
                log.append(f"{name} interceptor: before call")
                response = next_func(ctx, request)
                log.append(f"{name} interceptor: after call")
                return response

            return call

        return UnaryInterceptor(wrap)

    handlers = protocol_handlers()
    handler = new_unary_handler(
        PING, echo, handlers, with_interceptors(make("outer"), make("inner"))
    )
    handler.serve_http(FakeResponse(), json_request())
    assert log == [
        "outer interceptor: before call",
        "inner interceptor: before call",
        "inner interceptor: after call",
        "outer interceptor: after call",
    ]
    assert handlers[0].conns[0].sent == [{"number": 42}]


def test_timeout_error_closes_without_calling_implementation():
    failure = ValueError("bad timeout")
    handlers = protocol_handlers(timeout_error=failure)
    called = []

    def unary(ctx, request):
        called.append(request)
        return Reply(request.msg)

    handler = new_unary_handler(PING, unary, handlers)
    request = json_request(context="request-context")
    handler.serve_http(FakeResponse(), request)
    assert called == []
    assert handlers[0].conns[0].closed == [failure]
    assert handlers[0].contexts == ["request-context"]
    assert handlers[0].cancelled == 0


def test_bidi_requires_http2():
    handler = new_bidi_stream_handler(PING, lambda ctx, stream: None, protocol_handlers())
    response = FakeResponse()
    handler.serve_http(response, json_request(proto_major=1))
    assert response.status == 505
    assert response.headers["Connection"] == ["close"]


def test_bidi_echoes_messages():
    handlers = protocol_handlers(messages=(1, 2, 3))

    def cum_sum(ctx, stream):
        total = 0
        while True:
            try:
                total += stream.receive()
            except EOFError:
                return
            stream.send(total)

    handler = new_bidi_stream_handler(PING, cum_sum, handlers)
    assert handler.spec.stream_type == StreamType.BIDI
    handler.serve_http(FakeResponse(), json_request())
    conn = handlers[0].conns[0]
    assert conn.sent == [1, 3, 6]
    assert conn.closed == [None]


def test_client_stream_sums_messages():
    handlers = protocol_handlers(messages=(1, 2, 3, 4))

    def total(ctx, stream):
        return Reply(sum(stream), header={"X-Count": ["4"]})

    handler = new_client_stream_handler(PING, total, handlers)
    handler.serve_http(FakeResponse(), json_request())
    conn = handlers[0].conns[0]
    assert conn.sent == [10]
    assert conn.response_header == {"X-Count": ["4"]}


def test_client_stream_missing_response_names_procedure():
    handlers = protocol_handlers()
    handler = new_client_stream_handler(PING, lambda ctx, stream: None, handlers)
    handler.serve_http(FakeResponse(), json_request())
    error = handlers[0].conns[0].closed[0]
    assert isinstance(error, RuntimeError)
    assert PING in str(error)


def test_server_stream_counts_up():
    handlers = protocol_handlers(messages=(3,))

    def count_up(ctx, request, stream):
        for number in range(1, request.msg + 1):
            stream.send(number)

    handler = new_server_stream_handler(PING, count_up, handlers)
    assert handler.spec.stream_type == StreamType.SERVER
    handler.serve_http(FakeResponse(), json_request())
    conn = handlers[0].conns[0]
    assert conn.sent == [1, 2, 3]
    assert conn.closed == [None]


def test_server_stream_without_request_message_closes_with_eof():
    handlers = protocol_handlers(messages=())
    called = []

    def count_up(ctx, request, stream):
        called.append(request)

    handler = new_server_stream_handler(PING, count_up, handlers)
    response = FakeResponse()
    handler.serve_http(response, json_request())
    conn = handlers[0].conns[0]
    assert called == []
    assert conn.sent == []
    assert len(conn.closed) == 1
    assert isinstance(conn.closed[0], EOFError)
    assert response.status == 500