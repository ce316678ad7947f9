"""
Render a finished storybook into a printable PDF.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import Frame, Paragraph

from storybook.core.logger import get_logger
from storybook.core.media import parse_data_uri
from storybook.core.wizard.state import StoryPage

logger = get_logger("export.pdf")


@dataclass(frozen=True)
class PageLayoutConfig:
    background: colors.Color
    text_color: colors.Color
    caption_color: colors.Color
    title_color: colors.Color


DEFAULT_LAYOUT = PageLayoutConfig(
    background=colors.white,
    text_color=colors.HexColor("#2F2A40"),
    caption_color=colors.HexColor("#4B506D"),
    title_color=colors.HexColor("#F43F5E"),
)


class StorybookPDFBuilder:
    """
    One PDF page per story page: the illustration scaled to the content width
    (aspect ratio kept), then the page text word-wrapped beneath it.
    """

    def __init__(
        self,
        *,
        page_size: tuple[float, float] = A4,
        margin_mm: float = 18.0,
        layout: PageLayoutConfig = DEFAULT_LAYOUT,
    ) -> None:
        self.page_size = page_size
        self.margin = margin_mm * mm
        self.layout = layout

        self.title_style = ParagraphStyle(
            name="StoryTitle",
            fontName="Helvetica-Bold",
            fontSize=26,
            leading=30,
            alignment=TA_CENTER,
            textColor=self.layout.title_color,
            spaceAfter=12,
        )
        self.body_style = ParagraphStyle(
            name="Body",
            fontName="Helvetica",
            fontSize=16,
            leading=23,
            alignment=TA_LEFT,
            textColor=self.layout.text_color,
        )
        self.footer_style = ParagraphStyle(
            name="Footer",
            fontName="Helvetica-Oblique",
            fontSize=10,
            leading=12,
            alignment=TA_CENTER,
            textColor=self.layout.caption_color,
        )

    def build(self, title: str, pages: Sequence[StoryPage]) -> bytes:
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=self.page_size)
        pdf.setTitle(title or "My Storybook")
        width, height = self.page_size

        for index, page in enumerate(pages):
            self._draw_page(pdf, page, title if index == 0 else None, len(pages), width, height)

        pdf.save()
        return buffer.getvalue()

    # ------------------------------------------------------------------ page rendering

    def _draw_page(
        self,
        pdf: canvas.Canvas,
        page: StoryPage,
        title: Optional[str],
        total: int,
        width: float,
        height: float,
    ) -> None:
        pdf.setFillColor(self.layout.background)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        content_width = width - 2 * self.margin
        cursor_y = height - self.margin

        if title:
            title_paragraph = Paragraph(escape(title), self.title_style)
            _, title_height = title_paragraph.wrap(content_width, height)
            title_paragraph.drawOn(pdf, self.margin, cursor_y - title_height)
            cursor_y -= title_height + self.title_style.spaceAfter

        image_reader = self._load_image(page)
        if image_reader is not None:
            draw_width, draw_height = self._fit_image(image_reader, content_width, (height - 2 * self.margin) / 2)
            x = self.margin + (content_width - draw_width) / 2
            cursor_y -= draw_height
            pdf.drawImage(image_reader, x, cursor_y, draw_width, draw_height, preserveAspectRatio=True, mask="auto")
            cursor_y -= 8 * mm

        # Text fills what is left above the footer
        text_bottom = self.margin + 10 * mm
        frame = Frame(
            self.margin,
            text_bottom,
            content_width,
            max(cursor_y - text_bottom, 20 * mm),
            showBoundary=0,
        )
        story_paragraphs = [
            Paragraph(escape(block).replace("\n", "<br/>"), self.body_style)
            for block in filter(None, (chunk.strip() for chunk in page.text.split("\n\n")))
        ]
        frame.addFromList(story_paragraphs, pdf)
        if story_paragraphs:
            logger.warning(f"Page {page.page}: text did not fit and was truncated")

        self._draw_footer(pdf, f"Page {page.page} of {total}", width)
        pdf.showPage()

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def _fit_image(image_reader: ImageReader, max_width: float, max_height: float) -> tuple[float, float]:
        img_width, img_height = image_reader.getSize()
        scale = max_width / img_width
        if img_height * scale > max_height:
            scale = max_height / img_height
        return img_width * scale, img_height * scale

    def _draw_footer(self, pdf: canvas.Canvas, text: str, width: float) -> None:
        footer_frame = Frame(
            self.margin,
            10,
            width - 2 * self.margin,
            20,
            showBoundary=0,
        )
        footer_frame.addFromList([Paragraph(text, self.footer_style)], pdf)

    @staticmethod
    def _load_image(page: StoryPage) -> Optional[ImageReader]:
        if not page.image_url:
            return None
        try:
            data, _ = parse_data_uri(page.image_url)
            return ImageReader(BytesIO(data))
        except Exception as e:
            logger.warning(f"Page {page.page}: image could not be embedded ({e})")
            return None
