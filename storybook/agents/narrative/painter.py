import asyncio
from typing import NamedTuple, Optional

import requests

from storybook.agents.context_loader import get_user_friendly_error
from storybook.core.errors import GenerationError, ValidationError
from storybook.core.logger import log_agent_action
from storybook.core.media import to_data_uri

API_URL = "https://modelslab.com/api/v7/images/text-to-image"


class Portrait(NamedTuple):
    image_url: str
    mime_type: str


def build_portrait_prompt(description: str) -> str:
    return (
        "A character portrait for a children's storybook, full body, centered on a plain light background. "
        f"The character: {description.strip()}. "
        "Whimsical, vibrant, colorful storybook art style. Do not include any text in the image."
    )


def portrait_from_upload(data: bytes, mime_type: str) -> Portrait:
    """
    Keep an uploaded picture exactly as received, no re-encoding.

    Raises:
        ValidationError: if the file is empty or not an image.
    """
    if not data:
        raise ValidationError("The uploaded file is empty.")
    if not mime_type or not mime_type.startswith("image/"):
        raise ValidationError(f"Unsupported file type: {mime_type}")
    return Portrait(to_data_uri(data, mime_type), mime_type)


class PortraitPainter:
    """
    Generates one reference portrait per character from its description.
    """

    def __init__(self, api_key: str, model: str = "nano-banana-t2i", http: Optional[requests.Session] = None, timeout: float = 60):
        self.api_key = api_key
        self.model = model
        self.http = http or requests.Session()
        self.timeout = timeout

    def _generate(self, description: str) -> Portrait:
        payload = {
            "prompt": build_portrait_prompt(description),
            "model_id": self.model,
            "key": self.api_key,
            "width": 512,
            "height": 512,
            "samples": 1
        }

        resp = self.http.post(API_URL, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()

        image_url = None
        if data.get("output"):
            image_url = data["output"][0]

        if not image_url:
            raise GenerationError(f"No image in response (status={data.get('status')})")

        # Download
        img_resp = self.http.get(image_url, timeout=self.timeout)
        img_resp.raise_for_status()

        mime_type = img_resp.headers.get("Content-Type", "image/png").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/png"

        return Portrait(to_data_uri(img_resp.content, mime_type), mime_type)

    async def generate_portrait(self, description: str) -> Portrait:
        """
        Raises:
            ValidationError: if the description is empty.
            GenerationError: on any transport or response failure.
        """
        if not description or not description.strip():
            raise ValidationError("A character description is required.")

        try:
            portrait = await asyncio.to_thread(self._generate, description)
        except (requests.RequestException, GenerationError, ValueError, KeyError, IndexError) as e:
            log_agent_action("painter", "generate_portrait", str(e), success=False)
            raise GenerationError(get_user_friendly_error("PORTRAIT_FAILED")) from e

        log_agent_action("painter", "generate_portrait", portrait.mime_type)
        return portrait
