"""
Export Tests
============
PDF, HTML, zip bundle and gallery publishing.
"""
import io
import zipfile

import pytest

from storybook.core.errors import ValidationError
from storybook.core.media import MediaStore, parse_data_uri
from storybook.core.wizard.state import StoryPage
from storybook.exporters.html import AUDIO_NOT_BUNDLED, HTMLExporter, slugify
from storybook.exporters.pdf import StorybookPDFBuilder
from storybook.exporters.publisher import Publisher

from conftest import PNG_BYTES, PNG_URI


def book(with_images=True):
    return [
        StoryPage(page=1, text="Ember woke up.", image_url=PNG_URI if with_images else None),
        StoryPage(page=2, text="Ember flew <high> & far.", image_url=PNG_URI if with_images else None),
        StoryPage(page=3, text="The end."),
    ]


class TestSlug:

    def test_slugify(self):
        assert slugify("Ember & the Lost Kitten!") == "ember-the-lost-kitten"

    def test_fallback(self):
        assert slugify("") == "my-storybook"
        assert slugify("???") == "my-storybook"


class TestPDF:

    def test_one_pdf_page_per_story_page(self):
        content = StorybookPDFBuilder().build("Ember", book())
        assert content.startswith(b"%PDF")
        assert b"/Count 3" in content

    def test_pages_without_images(self):
        content = StorybookPDFBuilder().build("", book(with_images=False))
        assert content.startswith(b"%PDF")

    def test_broken_image_is_skipped(self):
        pages = [StoryPage(page=1, text="Hi", image_url="data:image/png;base64,bm90IGFuIGltYWdl")]
        assert StorybookPDFBuilder().build("Broken", pages).startswith(b"%PDF")


class TestHTML:

    def test_plain_document(self, media):
        export = HTMLExporter().export("Ember", book(), media)

        assert export.filename == "ember.html"
        assert export.media_type == "text/html"
        html = export.content.decode("utf-8")
        assert html.count('class="page') == 3
        assert "Ember flew &lt;high&gt; &amp; far." in html
        assert "<audio" not in html
        assert "ArrowLeft" in html and "ArrowRight" in html

    def test_zip_with_narration(self, media):
        pages = book()
        pages[0] = pages[0].model_copy(update={"audio_url": media.save(b"ID3one", "audio/mpeg", folder="audio")})
        pages[2] = pages[2].model_copy(update={"audio_url": media.save(b"ID3three", "audio/mpeg", folder="audio")})

        export = HTMLExporter().export("Ember", pages, media)

        assert export.filename == "ember.zip"
        assert export.media_type == "application/zip"
        with zipfile.ZipFile(io.BytesIO(export.content)) as archive:
            assert sorted(archive.namelist()) == ["audio/page-1.mp3", "audio/page-3.mp3", "index.html"]
            assert archive.read("audio/page-3.mp3") == b"ID3three"
            html = archive.read("index.html").decode("utf-8")
        assert 'src="audio/page-1.mp3"' in html
        assert html.count("<audio") == 2

    def test_missing_clip_falls_back(self, media):
        pages = book()
        pages[1] = pages[1].model_copy(update={"audio_url": "http://testserver/media/audio/gone.mp3"})

        export = HTMLExporter().export("Ember", pages, media)

        assert export.filename == "ember.html"
        assert export.note == AUDIO_NOT_BUNDLED
        assert AUDIO_NOT_BUNDLED in export.content.decode("utf-8")

    def test_without_narration_capability(self, media):
        pages = book()
        pages[0] = pages[0].model_copy(update={"audio_url": media.save(b"ID3", "audio/mpeg", folder="audio")})
        export = HTMLExporter(supports_narration=False).export("Ember", pages, media)
        assert export.filename == "ember.html"
        assert b"<audio" not in export.content


class TestPublisher:

    def test_publish(self, media, gallery):
        story = Publisher(media, gallery).publish("Ember", "  Sam ", book(), consent=True)

        assert story.author == "Sam"
        assert media.read(story.cover_image_url) == PNG_BYTES
        html = media.read(story.html_url).decode("utf-8")
        assert "Ember woke up." in html
        assert "<audio" not in html
        assert [s.id for s in gallery.list_recent()] == [story.id]

    @pytest.mark.parametrize("author,consent", [("Sam", False), ("", True), ("   ", True)])
    def test_requires_consent_and_author(self, media, gallery, author, consent):
        with pytest.raises(ValidationError):
            Publisher(media, gallery).publish("Ember", author, book(), consent=consent)
        assert gallery.list_recent() == []

    def test_requires_cover(self, media, gallery):
        with pytest.raises(ValidationError):
            Publisher(media, gallery).publish("Ember", "Sam", book(with_images=False), consent=True)


class TestMediaStore:

    def test_save_and_read(self, tmp_path):
        store = MediaStore(tmp_path, "https://books.example.com/")
        url = store.save(b"abc", "audio/mpeg", folder="audio")
        assert url.startswith("https://books.example.com/media/audio/")
        assert url.endswith(".mp3")
        assert store.read(url) == b"abc"

    def test_traversal_is_refused(self, tmp_path):
        store = MediaStore(tmp_path / "media")
        with pytest.raises(ValueError):
            store.read("/media/../../etc/passwd")

    def test_data_uri(self):
        assert parse_data_uri(PNG_URI) == (PNG_BYTES, "image/png")
        with pytest.raises(ValueError):
            parse_data_uri("http://example.com/cat.png")
