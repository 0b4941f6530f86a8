from .config import ConfigError, ServerConfig
from .core import BytesBody, EmptyBody, HttpRequest, HttpResponse, HttpResult, StreamBody
from .files import FileReadError, FileTree, Forbidden, NotFound, ResolvedFile
from .pool import PoolClosed, WorkerPool
from .server import HttpServer

__version__ = "1.0.0"
__all__ = [
    "BytesBody", "ConfigError", "EmptyBody", "FileReadError", "FileTree", "Forbidden",
    "HttpRequest", "HttpResponse", "HttpResult", "HttpServer", "NotFound", "PoolClosed",
    "ResolvedFile", "ServerConfig", "StreamBody", "WorkerPool",
]
