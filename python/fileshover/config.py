from dataclasses import dataclass
from pathlib import Path


class ConfigError(Exception):
    """Raised when the server cannot start with the given configuration."""


@dataclass(frozen=True)
class ServerConfig:
    """
    ### Description
    Everything the server needs to know, built once at startup and shared
    read-only between the dispatcher, the workers and the file tree.
    """

    root: Path
    host: str = "0.0.0.0"
    port: int = 7878

    workers: int = 10
    queue_size: int = 0  # 0 means unbounded
    backlog: int = 128

    read_timeout: float = 10.0  # whole request, not per recv
    write_timeout: float = 30.0
    chunk_size: int = 64 * 1024

    max_request_line: int = 8192
    max_header_bytes: int = 64 * 1024
    max_header_count: int = 100
    max_body_bytes: int = 1024 * 1024

    index_file: str = "index.html"
    server_name: str = "file-shover/1.0"

    def validate(self) -> "ServerConfig":
        root = Path(self.root)
        if not root.exists():
            raise ConfigError(f"root {root} does not exist")
        if not root.is_dir():
            raise ConfigError(f"root {root} is not a directory")

        if not 0 <= self.port <= 65535:
            raise ConfigError(f"invalid port {self.port}")
        if self.workers < 1:
            raise ConfigError("at least one worker is required")
        if self.queue_size < 0:
            raise ConfigError("queue size cannot be negative")

        for name in ("read_timeout", "write_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")

        for name in ("chunk_size", "max_request_line", "max_header_bytes",
                     "max_header_count", "backlog"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be positive")
        if self.max_body_bytes < 0:
            raise ConfigError("max_body_bytes cannot be negative")

        if not self.index_file or "/" in self.index_file:
            raise ConfigError(f"invalid index file name {self.index_file!r}")

        return self
