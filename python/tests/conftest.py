import os
import socket
from pathlib import Path

import pytest

from fileshover import HttpServer, ServerConfig

INDEX_HTML = b"<h1>Hello World</h1>"
STYLE_CSS = b"body { color: red; }\n"
OUTSIDE_TEXT = b"you should never see this\n"


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """
    tmp_path/
      outside.txt            not servable
      outside-dir/x.txt      not servable
      site/                  the root
        index.html
        style.css
        data.bin
        nested/deeper/file.txt
        empty-dir/
        escape.txt    -> ../outside.txt
        escape-dir    -> ../outside-dir
        alias.html    -> index.html
    """
    (tmp_path / "outside.txt").write_bytes(OUTSIDE_TEXT)
    (tmp_path / "outside-dir").mkdir()
    (tmp_path / "outside-dir" / "x.txt").write_bytes(OUTSIDE_TEXT)

    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "style.css").write_bytes(STYLE_CSS)
    (root / "data.bin").write_bytes(os.urandom(256 * 1024))
    (root / "nested" / "deeper").mkdir(parents=True)
    (root / "nested" / "deeper" / "file.txt").write_bytes(b"deep\n")
    (root / "empty-dir").mkdir()

    (root / "escape.txt").symlink_to(tmp_path / "outside.txt")
    (root / "escape-dir").symlink_to(tmp_path / "outside-dir", target_is_directory=True)
    (root / "alias.html").symlink_to(root / "index.html")

    return root


@pytest.fixture
def config(site: Path) -> ServerConfig:
    return ServerConfig(root=site, host="127.0.0.1", port=0, workers=2,
                        read_timeout=1.0, write_timeout=5.0)


@pytest.fixture
def server(config: ServerConfig):
    with HttpServer(config) as server:
        yield server


def send_raw(address: tuple[str, int], raw: bytes, timeout: float = 10.0) -> bytes:
    with socket.create_connection(address, timeout=timeout) as sock:
        sock.sendall(raw)
        return read_all(sock)


def read_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        data = sock.recv(65536)
        if not data:
            return b"".join(chunks)
        chunks.append(data)


def split_response(raw: bytes) -> tuple[int, list[tuple[str, str]], bytes]:
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("iso-8859-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    fields = [tuple(line.split(": ", 1)) for line in lines[1:]]
    return status, fields, body


def get(address: tuple[str, int], target: str, method: str = "GET") -> tuple[int, dict[str, str], bytes]:
    raw = send_raw(address, f"{method} {target} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode("ascii"))
    status, fields, body = split_response(raw)
    return status, dict(fields), body
