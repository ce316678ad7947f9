from typing import Sequence

from storybook.core.errors import ValidationError
from storybook.core.logger import get_logger
from storybook.core.media import MediaStore, parse_data_uri
from storybook.core.wizard.state import StoryPage
from storybook.db.models import PublicStory
from storybook.db.session import GalleryStore
from storybook.exporters.html import HTMLExporter

logger = get_logger("publisher")


class Publisher:
    """
    Shares a finished book in the public gallery.

    The HTML export (without narration) and the cover image go to object
    storage; the gallery entry points at both.
    """

    def __init__(self, media: MediaStore, gallery: GalleryStore):
        self.media = media
        self.gallery = gallery
        self.exporter = HTMLExporter(supports_narration=False)

    def publish(self, title: str, author: str, pages: Sequence[StoryPage], consent: bool) -> PublicStory:
        if not consent:
            raise ValidationError("Please agree to share your story publicly.")
        if not author or not author.strip():
            raise ValidationError("Please tell us the author's name.")
        if not pages or not pages[0].image_url:
            raise ValidationError("The story needs a cover illustration before it can be shared.")

        title = title.strip() or "My Storybook"

        try:
            cover_bytes, cover_mime = parse_data_uri(pages[0].image_url)
        except ValueError as e:
            raise ValidationError("The cover illustration could not be read.") from e

        cover_url = self.media.save(cover_bytes, cover_mime, folder="covers")
        html_url = self.media.save_html(self.exporter.render(title, pages))

        story = self.gallery.add(
            title=title,
            author=author.strip(),
            cover_image_url=cover_url,
            html_url=html_url,
        )
        logger.info(f"Published '{title}' by {story.author} (id: {story.id})")
        return story
