import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool

from storybook.agents.narrative.analyst import CharacterAnalysis
from storybook.agents.narrative.painter import Portrait
from storybook.core.config import Settings
from storybook.core.errors import GenerationError, ValidationError
from storybook.core.media import MediaStore, to_data_uri
from storybook.core.wizard.controller import SessionController
from storybook.core.wizard.state import Character, PageCharacters, StoryPage
from storybook.db.session import GalleryStore
from storybook.exporters.html import HTMLExporter
from storybook.exporters.pdf import StorybookPDFBuilder
from storybook.exporters.publisher import Publisher
from storybook.main import create_app
from storybook.services import Services
from storybook.web import session_routes


TEST_DATABASE_URL = "sqlite:///:memory:"


def make_png(color=(244, 63, 94), size=(8, 6)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


PNG_BYTES = make_png()
PNG_URI = to_data_uri(PNG_BYTES, "image/png")

DRAGON_PAGES = [
    "Ember the Dragon woke up in her cozy cave.",
    "Ember the Dragon flew over the sleepy village.",
    "She saw a lost kitten on a rooftop.",
    "Ember the Dragon carried the kitten home.",
    "The villagers cheered for Ember the Dragon.",
    "That night, Ember the Dragon slept with a smile.",
]


# --- Fake collaborators ---

class FakeWriter:
    def __init__(self, pages=None, error=None):
        self.pages = pages if pages is not None else [StoryPage(page=i + 1, text=t) for i, t in enumerate(DRAGON_PAGES)]
        self.error = error
        self.calls = []

    async def generate_outline(self, premise, title=None):
        self.calls.append((premise, title))
        if self.error:
            raise GenerationError(self.error)
        return list(self.pages)


class FakeAnalyst:
    def __init__(self, analysis=None, error=None):
        self.analysis = analysis or CharacterAnalysis(
            characters=[Character(name="Ember the Dragon", description="A small red dragon with golden wings.")],
            pages=[
                PageCharacters(page=i + 1, characters=["Ember the Dragon"] if "Ember" in t else [])
                for i, t in enumerate(DRAGON_PAGES)
            ],
        )
        self.error = error
        self.calls = 0

    async def identify_characters(self, pages):
        self.calls += 1
        if self.error:
            raise GenerationError(self.error)
        return self.analysis


class FakePainter:
    def __init__(self, error=None):
        self.error = error
        self.descriptions = []

    async def generate_portrait(self, description):
        self.descriptions.append(description)
        if self.error:
            raise GenerationError(self.error)
        return Portrait(PNG_URI, "image/png")


class FakeIllustrator:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def illustrate(self, page, characters):
        self.calls.append((page, list(characters)))
        if self.error:
            raise GenerationError(self.error)
        return to_data_uri(make_png(size=(8 + page.page, 6)), "image/png")


class FakeNarrator:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.texts = []

    async def narrate(self, text):
        if not text.strip():
            raise ValidationError("Text is required for audio generation.")
        self.texts.append(text)
        if text in self.fail_on:
            raise GenerationError("Failed to generate audio.")
        return b"ID3" + text.encode("utf-8")


# --- Fixtures ---

@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="gallery")
def gallery_fixture(engine):
    return GalleryStore(engine)


@pytest.fixture(name="media")
def media_fixture(tmp_path):
    return MediaStore(tmp_path / "media", "http://testserver")


@pytest.fixture(name="services")
def services_fixture(media, gallery):
    return Services(
        settings=Settings(),
        writer=FakeWriter(),
        analyst=FakeAnalyst(),
        painter=FakePainter(),
        illustrator=FakeIllustrator(),
        narrator=FakeNarrator(),
        media=media,
        gallery=gallery,
        publisher=Publisher(media, gallery),
        pdf=StorybookPDFBuilder(),
        html=HTMLExporter(supports_narration=True),
    )


@pytest.fixture(name="controller")
def controller_fixture(services):
    return SessionController(services)


@pytest.fixture(name="client")
def client_fixture(services):
    app = create_app(services=services)
    with TestClient(app) as client:
        yield client
    session_routes.story_sessions.clear()
    session_routes.last_seen.clear()
