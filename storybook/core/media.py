"""
Media helpers: data URIs for images and a directory-backed object store.

Generated and uploaded images travel as ``data:<mime>;base64,<payload>``
references so exports stay self-contained. Audio clips and published
documents are written to the ``MediaStore`` and served under ``/media``.
"""

import base64
import binascii
import mimetypes
import uuid
from pathlib import Path
from typing import Tuple

from storybook.core.logger import get_logger

logger = get_logger("media")

MEDIA_ROUTE = "/media"

# mimetypes has no stable answer for these
_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "text/html": "html",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def to_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 data URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_uri(uri: str) -> Tuple[bytes, str]:
    """
    Decode a base64 data URI.

    Returns:
        (raw bytes, mime type)

    Raises:
        ValueError: if the reference is not a base64 data URI.
    """
    if not uri or not uri.startswith("data:") or "," not in uri:
        raise ValueError("Not a data URI.")

    header, payload = uri[len("data:"):].split(",", 1)
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URIs are supported.")

    mime_type = header[: -len(";base64")] or "application/octet-stream"
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URI payload is not valid base64.") from exc


def extension_for(mime_type: str) -> str:
    if mime_type in _EXTENSIONS:
        return _EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type or "")
    return guessed.lstrip(".") if guessed else "bin"


class MediaStore:
    """
    Object storage on the local filesystem.

    Files land in ``root/<folder>/<uuid>.<ext>`` and are addressed by the public
    URL ``<base_url>/media/<folder>/<uuid>.<ext>``.
    """

    def __init__(self, root: Path, base_url: str = ""):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, mime_type: str, folder: str = "uploads") -> str:
        """Store bytes and return their public URL."""
        output_dir = self.root / folder
        output_dir.mkdir(parents=True, exist_ok=True)

        filename = f"{uuid.uuid4().hex}.{extension_for(mime_type)}"
        (output_dir / filename).write_bytes(data)

        url = f"{self.base_url}{MEDIA_ROUTE}/{folder}/{filename}"
        logger.info(f"Stored {len(data)} bytes ({mime_type}) at {url}")
        return url

    def save_html(self, content: str) -> str:
        return self.save(content.encode("utf-8"), "text/html", folder="stories")

    def path_for(self, url: str) -> Path:
        """Map a public URL produced by ``save`` back to its file."""
        marker = f"{MEDIA_ROUTE}/"
        if marker not in url:
            raise ValueError(f"Not a media URL: {url}")

        relative = url.split(marker, 1)[1]
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Media URL escapes the store: {url}")
        return path

    def read(self, url: str) -> bytes:
        """
        Load the bytes behind a public URL.

        Raises:
            FileNotFoundError: if nothing is stored at that URL.
            ValueError: if the URL does not belong to this store.
        """
        path = self.path_for(url)
        if not path.exists():
            raise FileNotFoundError(f"Media not found: {url}")
        return path.read_bytes()
