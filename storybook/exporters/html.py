"""
Interactive HTML export, optionally zipped together with the narration.
"""

import io
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from storybook.core.logger import get_logger
from storybook.core.media import MediaStore
from storybook.core.wizard.state import StoryPage

logger = get_logger("export.html")

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

AUDIO_NOT_BUNDLED = "Audio could not be bundled with this download."


@dataclass(frozen=True)
class ExportFile:
    filename: str
    content: bytes
    media_type: str
    note: Optional[str] = None


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")
    return slug or "my-storybook"


def audio_filename(page: StoryPage) -> str:
    return f"audio/page-{page.page}.mp3"


class HTMLExporter:
    """
    Renders the book into one self-contained document.

    ``supports_narration`` switches on the audio controls; the zip bundle is
    produced only when at least one page has narration.
    """

    def __init__(self, supports_narration: bool = True):
        self.supports_narration = supports_narration
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, title: str, pages: Sequence[StoryPage], audio_sources: Optional[Dict[int, str]] = None, note: Optional[str] = None) -> str:
        template = self.env.get_template("export/book.html")
        audio_sources = audio_sources if self.supports_narration else None
        return template.render(
            title=title or "My Storybook",
            pages=list(pages),
            audio_sources=audio_sources or {},
            narration=bool(audio_sources),
            note=note,
        )

    def export(self, title: str, pages: Sequence[StoryPage], media: MediaStore) -> ExportFile:
        """
        Package the book for download.

        Pages with narration produce ``<slug>.zip`` holding ``index.html`` and
        ``audio/page-<n>.mp3``. If a clip cannot be read back from the store the
        plain document is returned instead, with a note for the user.
        """
        slug = slugify(title)
        narrated = [p for p in pages if p.audio_url] if self.supports_narration else []

        if not narrated:
            html = self.render(title, pages)
            return ExportFile(f"{slug}.html", html.encode("utf-8"), "text/html")

        try:
            clips = {audio_filename(p): media.read(p.audio_url) for p in narrated}
        except (FileNotFoundError, ValueError) as e:
            logger.warning(f"Falling back to plain HTML export: {e}")
            html = self.render(title, pages, note=AUDIO_NOT_BUNDLED)
            return ExportFile(f"{slug}.html", html.encode("utf-8"), "text/html", note=AUDIO_NOT_BUNDLED)

        html = self.render(title, pages, audio_sources={p.page: audio_filename(p) for p in narrated})

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr("index.html", html)
            for name, data in clips.items():
                archive.writestr(name, data)

        logger.info(f"Bundled {len(clips)} audio clip(s) for '{title}'")
        return ExportFile(f"{slug}.zip", buffer.getvalue(), "application/zip")
