"""
Collaborator wiring. Built once at startup from ``Settings`` and shared by
every request and authoring session.
"""

from dataclasses import dataclass

from fastapi import Request

from storybook.agents.narrative.analyst import CharacterAnalyst
from storybook.agents.narrative.illustrator import PageIllustrator
from storybook.agents.narrative.painter import PortraitPainter
from storybook.agents.narrative.writer import OutlineWriter
from storybook.agents.speech.narrator import Narrator
from storybook.core.config import Settings
from storybook.core.media import MediaStore
from storybook.db.session import GalleryStore, make_engine
from storybook.exporters.html import HTMLExporter
from storybook.exporters.pdf import StorybookPDFBuilder
from storybook.exporters.publisher import Publisher


@dataclass
class Services:
    settings: Settings
    writer: OutlineWriter
    analyst: CharacterAnalyst
    painter: PortraitPainter
    illustrator: PageIllustrator
    narrator: Narrator
    media: MediaStore
    gallery: GalleryStore
    publisher: Publisher
    pdf: StorybookPDFBuilder
    html: HTMLExporter

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        media = MediaStore(settings.MEDIA_DIR, settings.PUBLIC_BASE_URL)
        gallery = GalleryStore(make_engine(settings.DATABASE_URL))
        return cls(
            settings=settings,
            writer=OutlineWriter(settings.GROQ_API_KEY, model=settings.OUTLINE_MODEL),
            analyst=CharacterAnalyst(settings.GROQ_API_KEY, model=settings.OUTLINE_MODEL),
            painter=PortraitPainter(settings.STABLE_DIFFUSION_API_KEY, model=settings.PORTRAIT_MODEL),
            illustrator=PageIllustrator(settings.GEMINI_API_KEY, model=settings.ILLUSTRATION_MODEL),
            narrator=Narrator(settings.ELEVENLABS_API_KEY),
            media=media,
            gallery=gallery,
            publisher=Publisher(media, gallery),
            pdf=StorybookPDFBuilder(),
            html=HTMLExporter(supports_narration=True),
        )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the collaborators built at startup."""
    return request.app.state.services
