import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO

from .config import ServerConfig
from .core import HttpRequest, HttpResult

logger = logging.getLogger(__name__)


class RequestLineState(Enum):
    BEGIN = 1
    METHOD = 2
    SPACE_BEFORE_TARGET = 3
    TARGET = 4
    SPACE_AFTER_TARGET = 5
    H = 6
    HT = 7
    HTT = 8
    HTTP = 9
    BEFORE_VERSION = 10
    MAJOR_VERSION = 11
    AFTER_MAJOR = 12
    MINOR_VERSION = 13
    SPACE_AFTER_VERSION = 14
    ALMOST_DONE = 15

class FieldState(Enum):
    BEGIN = 1
    KEY = 2
    COLON = 3
    VALUE = 4
    NEXT_FIELD = 5
    ALMOST_DONE = 6


@dataclass(frozen=True)
class ParseLimits:
    max_request_line: int = 8192
    max_header_bytes: int = 64 * 1024
    max_header_count: int = 100
    max_body_bytes: int = 1024 * 1024

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ParseLimits":
        return cls(config.max_request_line, config.max_header_bytes,
                   config.max_header_count, config.max_body_bytes)


@dataclass
class _Draft:
    """Scratch space while parsing. Never leaves this module."""
    method: str = ""
    target: str = ""
    version: dict[str, int] = field(default_factory=lambda: { "major": 1, "minor": 1 })
    fields: list[tuple[str, str]] = field(default_factory=list)


def parse_request(reader: BinaryIO, limits: ParseLimits = ParseLimits()) -> tuple[HttpResult, HttpRequest | None]:
    """
    Reads exactly one request from `reader`. The request is only returned
    together with HttpResult.OK; any other result comes with None.
    """
    draft = _Draft()

    ### Parse request line.
    if (result := _parse_request_line(reader, draft, limits)) != HttpResult.OK:
        return result, None

    ### Parse fields
    if (result := _parse_fields(reader, draft, limits)) != HttpResult.OK:
        return result, None

    ### Get body
    result, body = _read_body(reader, draft, limits)
    if result != HttpResult.OK:
        return result, None

    return HttpResult.OK, HttpRequest(draft.method, draft.target, draft.version, draft.fields, body)


def _read_byte(reader: BinaryIO) -> bytes | HttpResult:
    try:
        c = reader.read(1)
    except OSError as e:
        # Read deadline hit or the peer reset the connection.
        logger.debug("Read failed mid-request: %s", e)
        return HttpResult.PARTIAL_REQUEST

    if not c:
        logger.debug("Stream ended before the request was complete.")
        return HttpResult.MALFORMED_REQUEST

    return c


def _parse_request_line(reader: BinaryIO, draft: _Draft, limits: ParseLimits) -> HttpResult:
    state = RequestLineState.BEGIN
    buffer = bytearray()
    total_read = 0

    while True:
        c = _read_byte(reader)
        if isinstance(c, HttpResult):
            return c

        total_read += 1
        if total_read > limits.max_request_line:
            logger.debug("Massive request line.")
            return HttpResult.MALFORMED_REQUEST

        match state:
            case RequestLineState.BEGIN:
                if not _is_token_char(c):
                    return HttpResult.MALFORMED_REQUEST

                buffer += c
                state = RequestLineState.METHOD

            case RequestLineState.METHOD:
                if c == b" ":
                    state = RequestLineState.SPACE_BEFORE_TARGET
                    draft.method = buffer.decode("ascii")
                    buffer.clear()
                    continue

                if not _is_token_char(c):
                    return HttpResult.MALFORMED_REQUEST

                buffer += c

            case RequestLineState.SPACE_BEFORE_TARGET:
                if not _is_target_char(c):
                    return HttpResult.MALFORMED_REQUEST

                buffer += c
                state = RequestLineState.TARGET

            case RequestLineState.TARGET:
                if c == b" ":
                    state = RequestLineState.SPACE_AFTER_TARGET
                    draft.target = buffer.decode("ascii")
                    buffer.clear()
                    continue

                if not _is_target_char(c):
                    return HttpResult.MALFORMED_REQUEST

                buffer += c

            case RequestLineState.SPACE_AFTER_TARGET:
                if c != b"H":
                    return HttpResult.MALFORMED_REQUEST

                state = RequestLineState.H

            case RequestLineState.H:
                if c != b"T":
                    return HttpResult.MALFORMED_REQUEST

                state = RequestLineState.HT

            case RequestLineState.HT:
                if c != b"T":
                    return HttpResult.MALFORMED_REQUEST

                state = RequestLineState.HTT

            case RequestLineState.HTT:
                if c != b"P":
                    return HttpResult.MALFORMED_REQUEST

                state = RequestLineState.HTTP

            case RequestLineState.HTTP:
                if c != b"/":
                    return HttpResult.MALFORMED_REQUEST

                state = RequestLineState.BEFORE_VERSION

            case RequestLineState.BEFORE_VERSION:
                if not c.isdigit():
                    return HttpResult.MALFORMED_REQUEST

                buffer += c
                state = RequestLineState.MAJOR_VERSION

            case RequestLineState.MAJOR_VERSION:
                if c == b".":
                    state = RequestLineState.AFTER_MAJOR
                    draft.version["major"] = int(buffer.decode("ascii"))
                    buffer.clear()
                    continue

                if not c.isdigit():
                    return HttpResult.MALFORMED_REQUEST

                buffer += c

            case RequestLineState.AFTER_MAJOR:
                if not c.isdigit():
                    return HttpResult.MALFORMED_REQUEST

                buffer += c
                state = RequestLineState.MINOR_VERSION

            case RequestLineState.MINOR_VERSION:
                if c == b" ":
                    state = RequestLineState.SPACE_AFTER_VERSION
                    draft.version["minor"] = int(buffer.decode("ascii"))
                    buffer.clear()
                    continue
                elif c == b"\r":
                    state = RequestLineState.ALMOST_DONE
                    draft.version["minor"] = int(buffer.decode("ascii"))
                    buffer.clear()
                    continue

                if not c.isdigit():
                    return HttpResult.MALFORMED_REQUEST

                buffer += c

            case RequestLineState.SPACE_AFTER_VERSION:
                if c == b" ":
                    continue

                if c == b"\r":
                    state = RequestLineState.ALMOST_DONE
                else:
                    return HttpResult.MALFORMED_REQUEST

            case RequestLineState.ALMOST_DONE:
                if c == b"\n":
                    return HttpResult.OK
                else:
                    return HttpResult.MALFORMED_REQUEST

            case _:
                assert False, f"Invalid or unhandled request line state: {state}"


def _parse_fields(reader: BinaryIO, draft: _Draft, limits: ParseLimits) -> HttpResult:
    state = FieldState.BEGIN
    key_buffer = bytearray()
    value_buffer = bytearray()
    total_read = 0

    while True:
        c = _read_byte(reader)
        if isinstance(c, HttpResult):
            return c

        total_read += 1
        if total_read > limits.max_header_bytes:
            logger.debug("Massive header block.")
            return HttpResult.MALFORMED_REQUEST

        match state:
            case FieldState.BEGIN:
                if c == b"\r":
                    state = FieldState.ALMOST_DONE
                    continue

                if len(draft.fields) >= limits.max_header_count:
                    logger.debug("Too many header fields.")
                    return HttpResult.MALFORMED_REQUEST

                if not _is_token_char(c):
                    return HttpResult.MALFORMED_REQUEST

                key_buffer += c
                state = FieldState.KEY

            case FieldState.KEY:
                if c == b":":
                    state = FieldState.COLON
                    continue

                if not _is_token_char(c):
                    return HttpResult.MALFORMED_REQUEST

                key_buffer += c

            case FieldState.COLON:
                if c in (b" ", b"\t"):
                    continue

                if c == b"\r":
                    state = FieldState.NEXT_FIELD
                    continue

                if not _is_valid_field_value_char(c):
                    return HttpResult.MALFORMED_REQUEST

                value_buffer += c
                state = FieldState.VALUE

            case FieldState.VALUE:
                if c == b"\r":
                    state = FieldState.NEXT_FIELD
                    continue

                if not _is_valid_field_value_char(c):
                    return HttpResult.MALFORMED_REQUEST

                value_buffer += c

            case FieldState.NEXT_FIELD:
                if c != b"\n":
                    return HttpResult.MALFORMED_REQUEST

                state = FieldState.BEGIN

                draft.fields.append((key_buffer.decode("ascii"), value_buffer.decode("iso-8859-1").rstrip(" \t")))
                key_buffer.clear()
                value_buffer.clear()

            case FieldState.ALMOST_DONE:
                if c != b"\n":
                    return HttpResult.MALFORMED_REQUEST

                return HttpResult.OK


def _read_body(reader: BinaryIO, draft: _Draft, limits: ParseLimits) -> tuple[HttpResult, bytes]:
    names = {key.lower() for key, _ in draft.fields}

    if "transfer-encoding" in names:
        # Only Content-Length framing is understood.
        logger.debug("Transfer-Encoding is not supported.")
        return HttpResult.MALFORMED_REQUEST, b""

    lengths = {value.strip() for key, value in draft.fields if key.lower() == "content-length"}
    if not lengths:
        return HttpResult.OK, b""

    if len(lengths) > 1:
        logger.debug("Conflicting Content-Length values: %s", lengths)
        return HttpResult.MALFORMED_REQUEST, b""

    value = lengths.pop()
    if not (value.isascii() and value.isdigit()):
        logger.debug("Invalid Content-Length %r", value)
        return HttpResult.MALFORMED_REQUEST, b""

    remaining = int(value)
    if remaining > limits.max_body_bytes:
        logger.debug("Body of %d bytes is over the limit.", remaining)
        return HttpResult.MALFORMED_REQUEST, b""

    body = bytearray()
    while remaining > 0:
        try:
            data = reader.read(remaining)
        except OSError as e:
            logger.debug("Read failed mid-body: %s", e)
            return HttpResult.PARTIAL_REQUEST, b""

        if not data:
            logger.debug("Stream ended %d bytes short of the declared body.", remaining)
            return HttpResult.MALFORMED_REQUEST, b""

        body += data
        remaining -= len(data)

    return HttpResult.OK, bytes(body)


def _is_token_char(c: bytes) -> bool:
    return c.isalnum() and c.isascii() or c in b"!#$%&'*+-.^_`|~"

def _is_target_char(c: bytes) -> bool:
    return 0x21 <= c[0] <= 0x7E

def _is_valid_field_value_char(c: bytes) -> bool:
    code = c[0]
    return (code == 9 or  # HTAB
            code == 32 or  # Space
            (0x21 <= code <= 0x7E) or  # Printable ASCII
            (0x80 <= code <= 0xFF))  # obs-text
