from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError

from storybook.agents.context_loader import get_user_friendly_error
from storybook.core.logger import log_error
from storybook.services import Services, get_services

# Setup Templates
# This points to the 'storybook/templates' folder
BASE_DIR = Path(__file__).resolve().parent.parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

router = APIRouter()


@router.get("/")
async def home(request: Request):
    return templates.TemplateResponse(request, "pages/home.html", {})


@router.get("/gallery")
async def gallery_page(request: Request, services: Services = Depends(get_services)):
    error = None
    try:
        stories = services.gallery.list_recent(services.settings.GALLERY_LIMIT)
    except SQLAlchemyError as e:
        log_error("Gallery page failed to load", e)
        stories = []
        error = get_user_friendly_error("GALLERY_FAILED")

    return templates.TemplateResponse(request, "pages/gallery.html", {
        "stories": [story.to_api() for story in stories],
        "error": error,
    })
