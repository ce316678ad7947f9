"""
Stateless JSON API. Each endpoint wraps one collaborator so a client can drive
the whole book itself.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from storybook.agents.speech.narrator import AUDIO_MIME_TYPE
from storybook.core.errors import GenerationError, ValidationError
from storybook.core.logger import log_error
from storybook.core.wizard.state import Character, StoryPage
from storybook.db.models import PublicStoryCreate
from storybook.services import Services, get_services

router = APIRouter(prefix="/api", tags=["Storybook"])


class OutlineRequest(BaseModel):
    prompt: str = ""
    title: Optional[str] = None


class PagesRequest(BaseModel):
    pages: List[StoryPage] = Field(default_factory=list)


class CharacterImageRequest(BaseModel):
    description: str = ""


class PageImageRequest(BaseModel):
    page: Optional[StoryPage] = None
    all_characters: Optional[List[Character]] = Field(default=None, alias="allCharacters")

    model_config = ConfigDict(populate_by_name=True)


class AudioRequest(BaseModel):
    text: str = ""


class UploadRequest(BaseModel):
    file_content: str = Field(default="", alias="fileContent")
    mime_type: str = Field(default="", alias="mimeType")
    is_html: bool = Field(default=False, alias="isHtml")

    model_config = ConfigDict(populate_by_name=True)


@router.post("/generate-outline")
async def generate_outline(body: OutlineRequest, services: Services = Depends(get_services)):
    if not body.prompt.strip():
        raise ValidationError("Prompt is required.")
    pages = await services.writer.generate_outline(body.prompt.strip(), body.title)
    return [{"page": p.page, "text": p.text} for p in pages]


@router.post("/identify-characters")
async def identify_characters(body: PagesRequest, services: Services = Depends(get_services)):
    if not body.pages:
        raise ValidationError("Pages are required.")
    analysis = await services.analyst.identify_characters(body.pages)
    return {
        "characters": [{"name": c.name, "description": c.description} for c in analysis.characters],
        "pagesWithCharacters": [p.model_dump() for p in analysis.pages],
    }


@router.post("/generate-character-image")
async def generate_character_image(body: CharacterImageRequest, services: Services = Depends(get_services)):
    portrait = await services.painter.generate_portrait(body.description)
    return {"imageUrl": portrait.image_url, "imageMimeType": portrait.mime_type}


@router.post("/generate-page-image")
async def generate_page_image(body: PageImageRequest, services: Services = Depends(get_services)):
    if body.page is None or body.all_characters is None:
        raise ValidationError("Page and allCharacters are required.")
    image_url = await services.illustrator.illustrate(body.page, body.all_characters)
    return {"imageUrl": image_url}


@router.post("/generate-audio")
async def generate_audio(body: AudioRequest, services: Services = Depends(get_services)):
    audio = await services.narrator.narrate(body.text)
    return Response(content=audio, media_type=AUDIO_MIME_TYPE)


@router.post("/upload")
async def upload(body: UploadRequest, services: Services = Depends(get_services)):
    """Store an exported HTML book and return its public URL. Nothing else is accepted."""
    if not body.file_content or not body.mime_type:
        raise ValidationError("Missing file content or mime type.")
    if not body.is_html or body.mime_type != "text/html":
        raise ValidationError("This endpoint only accepts HTML files.")

    try:
        public_url = services.media.save_html(body.file_content)
    except OSError as e:
        log_error("Upload failed", e)
        raise GenerationError("Failed to upload file.") from e
    return {"publicUrl": public_url}


@router.get("/stories")
async def list_stories(services: Services = Depends(get_services)):
    try:
        stories = services.gallery.list_recent(services.settings.GALLERY_LIMIT)
    except SQLAlchemyError as e:
        log_error("Error fetching stories", e)
        raise GenerationError("Failed to fetch stories.") from e
    return [story.to_api() for story in stories]


@router.post("/stories", status_code=201)
async def save_story(body: PublicStoryCreate, services: Services = Depends(get_services)):
    if body.missing_fields():
        return JSONResponse(status_code=400, content={"error": "Missing required story data."})

    try:
        story = services.gallery.add(
            title=body.title,
            author=body.author,
            cover_image_url=body.coverImageUrl,
            html_url=body.htmlUrl,
        )
    except SQLAlchemyError as e:
        log_error("Error saving story", e)
        raise GenerationError("Failed to save story.") from e
    return story.to_api()
