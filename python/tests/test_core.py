import io
import tracemalloc
from http import HTTPStatus
from pathlib import Path

import pytest

from conftest import INDEX_HTML, split_response
from fileshover.core import ERROR_BODIES, BytesBody, EmptyBody, HttpResponse, StreamBody
from fileshover.files import FileReadError, FileTree


class RecordingWriter:
    def __init__(self):
        self.writes: list[bytes] = []

    def write(self, data) -> int:
        self.writes.append(bytes(data))
        return len(data)

    @property
    def data(self) -> bytes:
        return b"".join(self.writes)


class CountingSink:
    def __init__(self):
        self.total = 0
        self.largest = 0

    def write(self, data) -> int:
        self.total += len(data)
        self.largest = max(self.largest, len(data))
        return len(data)


def serialize(response: HttpResponse, chunk_size: int = 1024, head_only: bool = False) -> bytes:
    out = io.BytesIO()
    response.write(out, chunk_size, head_only)
    return out.getvalue()


@pytest.mark.parametrize("code", [
    HTTPStatus.BAD_REQUEST,
    HTTPStatus.NOT_FOUND,
    HTTPStatus.METHOD_NOT_ALLOWED,
    HTTPStatus.INTERNAL_SERVER_ERROR,
])
def test_error_responses_have_exact_length(code):
    status, fields, body = split_response(serialize(HttpResponse.error(code)))

    assert status == code.value
    assert body == ERROR_BODIES[code]
    assert dict(fields)["Content-Length"] == str(len(body))


def test_serialization_order():
    raw = serialize(HttpResponse.error(HTTPStatus.NOT_FOUND, server_name="test-server"))

    assert raw == (
        b"HTTP/1.1 404 Not Found\r\n"
        b"Server: test-server\r\n"
        b"Content-Type: text/html; charset=utf-8\r\n"
        b"Content-Length: 22\r\n"
        b"Connection: close\r\n"
        b"\r\n"
        b"<h1>404 Not Found</h1>"
    )


def test_method_not_allowed_lists_methods():
    _, fields, _ = split_response(serialize(HttpResponse.error(HTTPStatus.METHOD_NOT_ALLOWED)))

    assert dict(fields)["Allow"] == "GET, HEAD"


def test_managed_headers_cannot_be_overridden():
    response = HttpResponse(BytesBody(b"abc"), HTTPStatus.OK, [
        ("Content-Length", "999"),
        ("connection", "keep-alive"),
        ("X-Custom", "yes"),
        ("Content-Type", "text/plain"),
    ])

    _, fields, body = split_response(serialize(response))

    assert fields == [
        ("Server", "file-shover/1.0"),
        ("X-Custom", "yes"),
        ("Content-Type", "text/plain"),
        ("Content-Length", "3"),
        ("Connection", "close"),
    ]
    assert body == b"abc"


def test_content_type_defaults_to_binary():
    response = HttpResponse(EmptyBody(), HTTPStatus.OK)

    assert ("Content-Type", "application/octet-stream") in response.header_fields()
    assert ("Content-Length", "0") in response.header_fields()
    assert serialize(response).endswith(b"\r\n\r\n")


def test_from_resolved_file(site: Path):
    with FileTree(site).resolve("/index.html") as resolved:
        raw = serialize(HttpResponse.from_resolved_file(resolved))

    status, fields, body = split_response(raw)
    fields = dict(fields)
    assert status == 200
    assert fields["Content-Type"] == "text/html; charset=utf-8"
    assert fields["Content-Length"] == str(len(INDEX_HTML))
    assert fields["Connection"] == "close"
    assert body == INDEX_HTML


def test_head_only_keeps_length_but_skips_body(site: Path):
    with FileTree(site).resolve("/index.html") as resolved:
        raw = serialize(HttpResponse.from_resolved_file(resolved), head_only=True)
        assert resolved.reader.tell() == 0

    status, fields, body = split_response(raw)
    assert status == 200
    assert dict(fields)["Content-Length"] == str(len(INDEX_HTML))
    assert body == b""


def test_stream_body_writes_bounded_chunks():
    data = bytes(range(256)) * 40
    out = RecordingWriter()

    StreamBody(io.BytesIO(data), len(data)).write_to(out, 1000)

    assert out.data == data
    assert max(len(chunk) for chunk in out.writes) <= 1000
    assert len(out.writes) == 11


def test_stream_body_never_writes_past_length():
    out = RecordingWriter()

    StreamBody(io.BytesIO(b"0123456789"), 4).write_to(out, 3)

    assert out.data == b"0123"


def test_stream_body_short_file_raises():
    out = RecordingWriter()

    with pytest.raises(FileReadError):
        StreamBody(io.BytesIO(b"abc"), 10).write_to(out, 4)

    assert out.data == b"abc"


def test_bytes_body_is_chunked_too():
    out = RecordingWriter()

    BytesBody(b"x" * 10).write_to(out, 4)

    assert [len(chunk) for chunk in out.writes] == [4, 4, 2]


def test_streaming_memory_does_not_grow_with_file_size(tmp_path: Path):
    size = 64 * 1024 * 1024
    with open(tmp_path / "big.bin", "wb") as f:
        f.truncate(size)

    tree = FileTree(tmp_path)
    sink = CountingSink()

    tracemalloc.start()
    try:
        with tree.resolve("/big.bin") as resolved:
            HttpResponse.from_resolved_file(resolved).write(sink, 64 * 1024)
        _, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()

    assert sink.total > size
    assert sink.largest <= 64 * 1024
    assert peak < 2 * 1024 * 1024
