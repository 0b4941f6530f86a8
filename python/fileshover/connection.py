import io
import logging
import socket
import time
from enum import Enum
from http import HTTPMethod, HTTPStatus

from . import parsing
from .config import ServerConfig
from .core import ALLOWED_METHODS, HttpRequest, HttpResponse, HttpResult
from .files import FileReadError, FileTree, Forbidden, NotFound

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    ACCEPTED = 1
    PARSING = 2
    RESOLVING = 3
    RESPONDING = 4
    CLOSED = 5


class SocketWriter:
    """Sends every write in full and remembers how much went out."""

    def __init__(self, connection: socket.socket):
        self.connection = connection
        self.sent = 0

    def write(self, data: bytes) -> int:
        self.connection.sendall(data)
        self.sent += len(data)
        return len(data)


class DeadlineReader(io.RawIOBase):
    """
    Reads from the socket until a fixed point in time. Each recv only waits
    for whatever is left, so trickling bytes cannot stretch the request past
    the deadline.
    """

    def __init__(self, connection: socket.socket, timeout: float):
        self.connection = connection
        self.deadline = time.monotonic() + timeout

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("request deadline passed")

        self.connection.settimeout(remaining)
        return self.connection.recv_into(buffer)


class ConnectionHandler:
    """
    ### Description
    Serves exactly one request on one accepted connection, then closes it.
    Accepted -> Parsing -> Resolving -> Responding -> Closed, where any step
    may jump straight to Responding with an error response.
    """

    def __init__(self, connection: socket.socket, address: tuple, file_tree: FileTree,
                 config: ServerConfig, limits: parsing.ParseLimits | None = None):
        self.connection = connection
        self.address = address
        self.peer = address[0] if isinstance(address, tuple) and address else str(address)
        self.file_tree = file_tree
        self.config = config
        self.limits = limits if limits is not None else parsing.ParseLimits.from_config(config)

        self.state = ConnectionState.ACCEPTED
        self.writer = SocketWriter(connection)
        self.status: HTTPStatus | None = None
        self.request: HttpRequest | None = None

    def handle(self):
        try:
            self._handle()
        except Exception:
            logger.exception("Unexpected failure while serving %s", self.address)
            # Once bytes are on the wire a new status line would corrupt the stream.
            if self.writer.sent == 0:
                self._send(self.request, self._error(HTTPStatus.INTERNAL_SERVER_ERROR))
        finally:
            self._close()

    def _handle(self):
        #### Get request
        self.state = ConnectionState.PARSING
        with io.BufferedReader(DeadlineReader(self.connection, self.config.read_timeout)) as reader:
            result, request = parsing.parse_request(reader, self.limits)

        match result:
            case HttpResult.OK:
                pass
            case HttpResult.MALFORMED_REQUEST:
                logger.debug("Malformed request from %s", self.address)
                self._send(None, self._error(HTTPStatus.BAD_REQUEST))
                return
            case HttpResult.PARTIAL_REQUEST:
                logger.debug("Gave up reading from %s, closing.", self.address)
                return

        assert request is not None
        self.request = request
        method = request.http_method
        if method not in ALLOWED_METHODS:
            self._send(request, self._error(HTTPStatus.METHOD_NOT_ALLOWED))
            return

        #### Find the file
        self.state = ConnectionState.RESOLVING
        try:
            resolved = self.file_tree.resolve(request.path)
        except Forbidden as e:
            logger.warning("Refused %s from %s: %s", request.target, self.address, e)
            self._send(request, self._error(HTTPStatus.NOT_FOUND))
        except NotFound as e:
            logger.info("File not found: %s", e)
            self._send(request, self._error(HTTPStatus.NOT_FOUND))
        except FileReadError as e:
            logger.error("Server error for %s: %s", request.target, e)
            self._send(request, self._error(HTTPStatus.INTERNAL_SERVER_ERROR))
        else:
            with resolved:
                response = HttpResponse.from_resolved_file(resolved, self.config.server_name)
                self._send(request, response, head_only=method == HTTPMethod.HEAD)

    def _send(self, request: HttpRequest | None, response: HttpResponse, head_only: bool = False):
        self.state = ConnectionState.RESPONDING
        self.status = response.code

        try:
            self.connection.settimeout(self.config.write_timeout)
            response.write(self.writer, self.config.chunk_size, head_only)
        except FileReadError as e:
            logger.error("Aborted %s after %d bytes: %s", request, self.writer.sent, e)
        except OSError as e:
            logger.debug("Failed to write response to %s: %s", self.address, e)

        if request is not None:
            logger.info('%s "%s %s" %d %d', self.peer, request.method, request.target,
                        response.code.value, response.body.length)
        else:
            logger.info("%s <unparsed request> %d", self.peer, response.code.value)

    def _error(self, code: HTTPStatus) -> HttpResponse:
        return HttpResponse.error(code, self.config.server_name)

    def _close(self):
        try:
            self.connection.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Failed to shutdown stream: %s", e)
        finally:
            self.connection.close()
            self.state = ConnectionState.CLOSED
