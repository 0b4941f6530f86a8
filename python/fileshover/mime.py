import mimetypes
from pathlib import PurePath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".json": "application/json",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".xml": "application/xml",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".wasm": "application/wasm",
    ".pdf": "application/pdf",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".bin": DEFAULT_CONTENT_TYPE,
}


def content_type_for(path: str | PurePath) -> str:
    suffix = PurePath(path).suffix.lower()

    content_type = _TYPES.get(suffix)
    if content_type is None and suffix:
        content_type, _ = mimetypes.guess_type(f"file{suffix}", strict=False)
    if content_type is None:
        return DEFAULT_CONTENT_TYPE

    if content_type.startswith("text/"):
        return f"{content_type}; charset=utf-8"
    return content_type
