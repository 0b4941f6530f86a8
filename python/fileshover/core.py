from http import HTTPStatus, HTTPMethod
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Protocol, TypeAlias

from .files import FileReadError, ResolvedFile


class HttpResult(Enum):
    OK = 1
    MALFORMED_REQUEST = 2
    PARTIAL_REQUEST = 3


class Writable(Protocol):
    def write(self, data: bytes, /) -> int | None: ...


class HttpRequest:
    """A fully parsed request. Only `parsing.parse_request` should build these."""

    def __init__(self, method: str, target: str, version: dict[str, int],
                 fields: list[tuple[str, str]] | None = None, body: bytes = b""):
        self.method = method
        self.target = target
        self.version = version
        self.fields = fields if fields is not None else []
        self.body = body

    @property
    def http_method(self) -> HTTPMethod | None:
        try:
            return HTTPMethod(self.method)
        except ValueError:
            return None

    @property
    def path(self) -> str:
        """The target without its query string or fragment."""
        return self.target.split("#", 1)[0].split("?", 1)[0]

    def header(self, name: str, default: str | None = None) -> str | None:
        values = self.header_values(name)
        return values[0] if values else default

    def header_values(self, name: str) -> list[str]:
        name = name.lower()
        return [value for key, value in self.fields if key.lower() == name]

    def to_bytes(self) -> tuple[bytes, bytes]:
        header = f"{self.method} {self.target} HTTP/{self.version['major']}.{self.version['minor']}\r\n"

        for key, value in self.fields:
            header += f"{key}: {value}\r\n"

        header += "\r\n"

        return header.encode("iso-8859-1"), self.body

    def __repr__(self) -> str:
        return f"HttpRequest({self.method} {self.target})"


### Response bodies. Each variant knows its exact length and how to write it.

@dataclass(frozen=True)
class EmptyBody:
    @property
    def length(self) -> int:
        return 0

    def write_to(self, out: Writable, chunk_size: int):
        pass


@dataclass(frozen=True)
class BytesBody:
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)

    def write_to(self, out: Writable, chunk_size: int):
        view = memoryview(self.data)
        for offset in range(0, len(view), chunk_size):
            out.write(view[offset:offset + chunk_size])


@dataclass(frozen=True)
class StreamBody:
    reader: BinaryIO
    length: int

    def write_to(self, out: Writable, chunk_size: int):
        # Never more than `length` bytes, even if the file grew since it was opened.
        remaining = self.length
        while remaining > 0:
            chunk = self.reader.read(min(chunk_size, remaining))
            if not chunk:
                raise FileReadError(f"file ended {remaining} bytes short of {self.length}")

            out.write(chunk)
            remaining -= len(chunk)


Body: TypeAlias = EmptyBody | BytesBody | StreamBody


DEFAULT_SERVER_NAME = "file-shover/1.0"
ERROR_CONTENT_TYPE = "text/html; charset=utf-8"
ERROR_BODIES: dict[HTTPStatus, bytes] = {
    HTTPStatus.BAD_REQUEST: b"<h1>400 Bad Request</h1>",
    HTTPStatus.NOT_FOUND: b"<h1>404 Not Found</h1>",
    HTTPStatus.METHOD_NOT_ALLOWED: b"<h1>405 Method Not Allowed</h1>",
    HTTPStatus.INTERNAL_SERVER_ERROR: b"<h1>500 Internal Server Error</h1>",
}
ALLOWED_METHODS = (HTTPMethod.GET, HTTPMethod.HEAD)

# Derived from the body and the connection policy, never taken from callers.
_MANAGED_FIELDS = {"server", "content-length", "connection"}


class HttpResponse:
    def __init__(self, body: Body, code: HTTPStatus, fields: list[tuple[str, str]] | None = None,
                 server_name: str = DEFAULT_SERVER_NAME):
        self.version = { "major": 1, "minor": 1 }
        self.code: HTTPStatus = code
        self.fields = list(fields) if fields else []
        self.body = body
        self.server_name = server_name

    @classmethod
    def from_resolved_file(cls, resolved: ResolvedFile,
                           server_name: str = DEFAULT_SERVER_NAME) -> "HttpResponse":
        return cls(StreamBody(resolved.reader, resolved.length), HTTPStatus.OK,
                   [("Content-Type", resolved.content_type)], server_name)

    @classmethod
    def error(cls, code: HTTPStatus, server_name: str = DEFAULT_SERVER_NAME) -> "HttpResponse":
        fields = [("Content-Type", ERROR_CONTENT_TYPE)]
        if code == HTTPStatus.METHOD_NOT_ALLOWED:
            fields.append(("Allow", ", ".join(method.value for method in ALLOWED_METHODS)))

        body = ERROR_BODIES.get(code, f"<h1>{code.value} {code.phrase}</h1>".encode("ascii"))
        return cls(BytesBody(body), code, fields, server_name)

    def header_fields(self) -> list[tuple[str, str]]:
        fields = [(key, value) for key, value in self.fields if key.lower() not in _MANAGED_FIELDS]
        if not any(key.lower() == "content-type" for key, _ in fields):
            fields.insert(0, ("Content-Type", "application/octet-stream"))

        return [
            ("Server", self.server_name),
            *fields,
            ("Content-Length", str(self.body.length)),
            ("Connection", "close"),
        ]

    def head_bytes(self) -> bytes:
        header = f"HTTP/{self.version['major']}.{self.version['minor']} {self.code.value} {self.code.phrase}\r\n"

        for key, value in self.header_fields():
            header += f"{key}: {value}\r\n"

        header += "\r\n"

        return header.encode("iso-8859-1")

    def write(self, out: Writable, chunk_size: int, head_only: bool = False):
        """
        Writes the status line, the headers and then the body in chunks of at
        most `chunk_size` bytes. With `head_only` the body is skipped but
        Content-Length still describes it, as HEAD requires.
        """
        out.write(self.head_bytes())
        if not head_only:
            self.body.write_to(out, chunk_size)

    def __repr__(self) -> str:
        return f"HttpResponse({self.code.value}, {self.body.length} bytes)"
