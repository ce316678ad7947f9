"""
Page Illustrator: one storybook illustration per page, conditioned on the
portraits of the characters that appear on it.
"""

from typing import List, Optional, Sequence

from google import genai
from google.genai import types

from storybook.agents.context_loader import get_user_friendly_error
from storybook.core.errors import GenerationError
from storybook.core.logger import get_logger, log_agent_action
from storybook.core.media import parse_data_uri, to_data_uri
from storybook.core.wizard.state import Character, StoryPage

logger = get_logger("illustrator")

NO_IMAGE_MESSAGE = "No image was generated in the response from the model."


def build_illustration_prompt(page_text: str) -> str:
    return (
        "Create a whimsical, vibrant, and colorful illustration for a children's storybook. "
        f"The scene is: \"{page_text}\". "
        "Use the provided images as a direct reference for the characters' appearance. "
        "The characters should look exactly like the reference images. "
        "Ensure the final image matches the storybook art style. "
        "Do not include any text in the image."
    )


def select_reference_characters(page: StoryPage, characters: Sequence[Character]) -> List[Character]:
    """Characters listed on the page that have both a portrait and its media type."""
    names = set(page.characters or [])
    return [c for c in characters if c.name in names and c.image_url and c.image_mime_type]


def build_request_parts(page: StoryPage, characters: Sequence[Character]) -> List[types.Part]:
    """Instruction text first, then each reference portrait as inline bytes."""
    parts = [types.Part.from_text(text=build_illustration_prompt(page.text))]
    for character in select_reference_characters(page, characters):
        try:
            data, _ = parse_data_uri(character.image_url)
        except ValueError:
            logger.warning(f"Skipping unreadable portrait for {character.name}")
            continue
        parts.append(types.Part.from_bytes(data=data, mime_type=character.image_mime_type))
    return parts


def first_inline_image(response) -> Optional[str]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return None
    for part in candidates[0].content.parts or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return to_data_uri(inline.data, inline.mime_type or "image/png")
    return None


class PageIllustrator:

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash-image-preview", client: Optional[genai.Client] = None):
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def illustrate(self, page: StoryPage, characters: Sequence[Character]) -> str:
        """
        Generate exactly one illustration for the page.

        Returns:
            The image as a data URI.

        Raises:
            GenerationError: on transport failure or when the model returns no image.
        """
        parts = build_request_parts(page, characters)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=parts,
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
        except Exception as e:
            log_agent_action("illustrator", f"page {page.page}", str(e), success=False)
            raise GenerationError(get_user_friendly_error("ILLUSTRATION_FAILED")) from e

        image_url = first_inline_image(response)
        if image_url is None:
            log_agent_action("illustrator", f"page {page.page}", NO_IMAGE_MESSAGE, success=False)
            raise GenerationError(NO_IMAGE_MESSAGE)

        log_agent_action("illustrator", f"page {page.page}", f"{len(parts) - 1} reference image(s)")
        return image_url
