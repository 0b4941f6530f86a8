import errno
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO
from urllib.parse import unquote

from .config import ConfigError
from .mime import content_type_for

logger = logging.getLogger(__name__)


class NotFound(Exception):
    """The request path names nothing servable under the root."""


class Forbidden(NotFound):
    """
    The request path resolves outside the root. Subclasses NotFound so that
    callers answer both the same way; only the logs tell them apart.
    """


class FileReadError(Exception):
    """The file exists but could not be opened or read."""


@dataclass
class ResolvedFile:
    path: Path
    length: int
    content_type: str
    reader: BinaryIO

    def close(self):
        self.reader.close()

    def __enter__(self) -> "ResolvedFile":
        return self

    def __exit__(self, *_):
        self.close()


class FileTree:
    """
    ### Description
    Read-only view of one directory. Every path it hands out is the root
    itself or a descendant of it once `.`, `..` and symlinks are resolved.

    ### Methods
    - **locate**: Canonical path of the regular file a request path points at.
    - **resolve**: Opens that file and returns a ResolvedFile positioned at 0.
    """

    __slots__ = ("_root", "_index_file", "_buffer_size")

    def __init__(self, root: str | os.PathLike, index_file: str = "index.html",
                 buffer_size: int = 64 * 1024):
        try:
            canonical = Path(root).resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise ConfigError(f"cannot use {root} as root: {e}") from e

        if not canonical.is_dir():
            raise ConfigError(f"root {canonical} is not a directory")

        self._root = canonical
        self._index_file = index_file
        self._buffer_size = buffer_size

    @property
    def root(self) -> Path:
        return self._root

    def contains(self, path: Path) -> bool:
        return path.is_relative_to(self._root)

    def locate(self, request_path: str) -> Path:
        relative = _decode_request_path(request_path)
        candidate = self._canonical(self._root / relative, request_path)

        info = self._stat(candidate, request_path)
        if stat.S_ISDIR(info.st_mode):
            candidate = self._canonical(candidate / self._index_file, request_path)
            info = self._stat(candidate, request_path)

        if not stat.S_ISREG(info.st_mode):
            raise NotFound(f"{request_path} is not a regular file")

        return candidate

    def resolve(self, request_path: str) -> ResolvedFile:
        path = self.locate(request_path)

        try:
            reader = open(path, "rb", buffering=self._buffer_size)
        except OSError as e:
            raise FileReadError(f"cannot open {path}: {e}") from e

        try:
            info = os.fstat(reader.fileno())
        except OSError as e:
            reader.close()
            raise FileReadError(f"cannot stat {path}: {e}") from e

        # Swapped for something else between locate and open.
        if not stat.S_ISREG(info.st_mode):
            reader.close()
            raise FileReadError(f"{path} is no longer a regular file")

        logger.debug("Resolved %s to %s (%d bytes)", request_path, path, info.st_size)
        return ResolvedFile(path, info.st_size, content_type_for(path), reader)

    def _canonical(self, path: Path, request_path: str) -> Path:
        try:
            canonical = path.resolve()
        except (OSError, RuntimeError) as e:
            raise NotFound(f"cannot resolve {request_path}: {e}") from e

        if not self.contains(canonical):
            raise Forbidden(f"{request_path} escapes the root")

        return canonical

    def _stat(self, path: Path, request_path: str) -> os.stat_result:
        try:
            return path.stat()
        except (FileNotFoundError, NotADirectoryError) as e:
            raise NotFound(f"{request_path} does not exist") from e
        except OSError as e:
            if e.errno == errno.ELOOP:
                raise NotFound(f"symlink loop at {request_path}") from e
            if e.errno == errno.ENAMETOOLONG:
                raise NotFound(f"name too long in {request_path}") from e
            raise FileReadError(f"cannot stat {path}: {e}") from e

    def __repr__(self) -> str:
        return f"FileTree({str(self._root)!r})"


def _decode_request_path(request_path: str) -> str:
    path = request_path.split("#", 1)[0].split("?", 1)[0]

    try:
        path = unquote(path, errors="strict")
    except UnicodeDecodeError as e:
        raise NotFound(f"undecodable path {request_path!r}") from e

    if "\x00" in path:
        raise NotFound(f"NUL byte in {request_path!r}")

    # "/etc/passwd" must land at <root>/etc/passwd, never replace the root.
    return path.lstrip("/") or "."
