import logging
import socket
import threading

from .config import ServerConfig
from .connection import ConnectionHandler
from .files import FileTree
from .parsing import ParseLimits
from .pool import PoolClosed, WorkerPool

logger = logging.getLogger(__name__)


class HttpServer:
    """
    ### Description
    Static file server. One thread accepts connections and hands each of
    them to a fixed pool of workers; each worker serves one connection from
    start to finish.

    ### Methods
    - **start**: starts the accept loop on its own thread and returns.
    - **run**: starts and blocks until shutdown or a keyboard interrupt.
    - **shutdown**: stops accepting, lets queued connections finish, closes the listener.
    """

    SOCK_TYPE = socket.SOCK_STREAM
    ADDRESS_FAM = socket.AF_INET
    TRANSPORT_PROTO = socket.IPPROTO_TCP

    # How often the accept loop checks whether it should stop.
    ACCEPT_POLL = 0.5

    def __init__(self, config: ServerConfig):
        self.config = config
        self.file_tree = FileTree(config.root, config.index_file, config.chunk_size)
        self.limits = ParseLimits.from_config(config)

        self.listener_sock = socket.socket(self.ADDRESS_FAM, self.SOCK_TYPE, self.TRANSPORT_PROTO)
        try:
            self.listener_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.listener_sock.bind((config.host, config.port))
            self.listener_sock.listen(config.backlog)
            self.listener_sock.settimeout(self.ACCEPT_POLL)

            self.pool = WorkerPool(config.workers, config.queue_size, name="fileshover-worker")
        except BaseException:
            self.listener_sock.close()
            raise

        self._stopping = threading.Event()
        self._accept_thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        return self.listener_sock.getsockname()

    def start(self):
        if self._accept_thread is not None:
            return

        self._accept_thread = threading.Thread(target=self._accept_loop, name="fileshover-accept", daemon=True)
        self._accept_thread.start()

        host, port = self.address
        logger.info("Serving files from: %s", self.file_tree.root)
        logger.info("Listening on: http://%s:%d", host, port)
        logger.info("Thread pool size: %d", self.pool.size)

    def run(self):
        self.start()
        assert self._accept_thread is not None
        try:
            while self._accept_thread.is_alive():
                self._accept_thread.join(self.ACCEPT_POLL)
        except KeyboardInterrupt:
            logger.info("CTRL+C pressed.")
        finally:
            self.shutdown()

    def shutdown(self):
        if self._stopping.is_set():
            return
        self._stopping.set()

        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join()

        self.pool.shutdown(wait=True)
        self.listener_sock.close()
        logger.info("Server stopped.")

    def _accept_loop(self):
        while not self._stopping.is_set():
            try:
                connection, address = self.listener_sock.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if self._stopping.is_set():
                    break
                logger.warning("Connection failed: %s", e)
                self._stopping.wait(0.1)
                continue

            logger.debug("Connection from %s", address)
            handler = ConnectionHandler(connection, address, self.file_tree, self.config, self.limits)
            try:
                self.pool.submit(handler.handle)
            except PoolClosed:
                connection.close()
                break

    def __enter__(self) -> "HttpServer":
        self.start()
        return self

    def __exit__(self, *_):
        self.shutdown()
