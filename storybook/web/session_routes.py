"""
Wizard API. One ``SessionController`` per authoring session, kept in memory.
"""

import time
from collections import OrderedDict
from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from storybook.core.logger import log_story_event
from storybook.core.wizard.controller import SessionController
from storybook.exporters.html import ExportFile
from storybook.services import Services, get_services

router = APIRouter(prefix="/api/sessions", tags=["Wizard"])

# In-memory session registry (sessions do not survive a restart).
# Least recently used first; idle or surplus sessions are evicted.
story_sessions: "OrderedDict[str, SessionController]" = OrderedDict()
last_seen: Dict[str, float] = {}

SESSION_IDLE_SECONDS = 2 * 60 * 60
MAX_SESSIONS = 200


class SubmitRequest(BaseModel):
    premise: str = ""
    title: str = ""


class TextRequest(BaseModel):
    text: str = ""


class DescriptionRequest(BaseModel):
    description: str = ""


class PublishRequest(BaseModel):
    author: str = ""
    consent: bool = False


def _forget(session_id: str):
    story_sessions.pop(session_id, None)
    last_seen.pop(session_id, None)


def prune_sessions(now: Optional[float] = None):
    """Drop sessions idle longer than SESSION_IDLE_SECONDS, then the oldest beyond MAX_SESSIONS."""
    now = time.monotonic() if now is None else now
    for session_id in [sid for sid, seen in last_seen.items() if now - seen > SESSION_IDLE_SECONDS]:
        _forget(session_id)
        log_story_event(session_id, "evicted", "idle")
    while len(story_sessions) > MAX_SESSIONS:
        session_id = next(iter(story_sessions))
        _forget(session_id)
        log_story_event(session_id, "evicted", "registry full")


def _touch(session_id: str, controller: SessionController):
    story_sessions[session_id] = controller
    story_sessions.move_to_end(session_id)
    last_seen[session_id] = time.monotonic()


def get_controller(session_id: str) -> SessionController:
    prune_sessions()
    controller = story_sessions.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    _touch(session_id, controller)
    return controller


def _download(export: ExportFile) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{export.filename}"'}
    if export.note:
        headers["X-Export-Note"] = export.note
    return Response(content=export.content, media_type=export.media_type, headers=headers)


@router.post("", status_code=201)
async def create_session(services: Services = Depends(get_services)):
    controller = SessionController(services)
    _touch(controller.session.id, controller)
    prune_sessions()
    log_story_event(controller.session.id, "created")
    return controller.session.to_dict()


@router.get("/{session_id}")
async def get_session_state(controller: SessionController = Depends(get_controller)):
    return controller.session.to_dict()


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, controller: SessionController = Depends(get_controller)):
    _forget(session_id)
    return Response(status_code=204)


# --- Prompt & outline ---

@router.post("/{session_id}/submit")
async def submit(body: SubmitRequest, controller: SessionController = Depends(get_controller)):
    await controller.submit(body.premise, body.title)
    return controller.session.to_dict()


@router.put("/{session_id}/pages/{index}")
async def edit_page(index: int, body: TextRequest, controller: SessionController = Depends(get_controller)):
    controller.set_page_text(index, body.text)
    return controller.session.to_dict()


@router.delete("/{session_id}/pages/{index}")
async def remove_page(index: int, controller: SessionController = Depends(get_controller)):
    controller.remove_page(index)
    return controller.session.to_dict()


@router.post("/{session_id}/retry")
async def retry(controller: SessionController = Depends(get_controller)):
    controller.retry()
    return controller.session.to_dict()


@router.post("/{session_id}/confirm")
async def confirm_outline(controller: SessionController = Depends(get_controller)):
    await controller.confirm_outline()
    return controller.session.to_dict()


# --- Characters ---

@router.put("/{session_id}/characters/{name}")
async def edit_character(name: str, body: DescriptionRequest, controller: SessionController = Depends(get_controller)):
    controller.set_character_description(name, body.description)
    return controller.session.to_dict()


@router.post("/{session_id}/characters/{name}/portrait")
async def generate_portrait(name: str, controller: SessionController = Depends(get_controller)):
    await controller.generate_portrait(name)
    return controller.session.to_dict()


@router.post("/{session_id}/characters/{name}/upload")
async def upload_portrait(
    name: str,
    image: UploadFile = File(...),
    controller: SessionController = Depends(get_controller),
):
    data = await image.read()
    controller.upload_portrait(name, data, image.content_type or "")
    return controller.session.to_dict()


@router.post("/{session_id}/complete")
async def complete_characters(controller: SessionController = Depends(get_controller)):
    controller.complete_characters()
    return controller.session.to_dict()


# --- Pages ---

@router.post("/{session_id}/illustrate")
async def illustrate(controller: SessionController = Depends(get_controller)):
    await controller.illustrate_current_page()
    return controller.session.to_dict()


@router.post("/{session_id}/approve")
async def approve(controller: SessionController = Depends(get_controller)):
    controller.approve_current_page()
    return controller.session.to_dict()


# --- Finished book ---

@router.post("/{session_id}/reader/next")
async def reader_next(controller: SessionController = Depends(get_controller)):
    controller.next_page()
    return controller.session.to_dict()


@router.post("/{session_id}/reader/previous")
async def reader_previous(controller: SessionController = Depends(get_controller)):
    controller.previous_page()
    return controller.session.to_dict()


@router.post("/{session_id}/audiobook")
async def create_audiobook(controller: SessionController = Depends(get_controller)):
    calls = await controller.create_audiobook()
    return {"calls": calls, "session": controller.session.to_dict()}


@router.get("/{session_id}/export/pdf")
async def export_pdf(controller: SessionController = Depends(get_controller)):
    return _download(controller.export_pdf())


@router.get("/{session_id}/export/html")
async def export_html(controller: SessionController = Depends(get_controller)):
    return _download(controller.export_html())


@router.post("/{session_id}/publish", status_code=201)
async def publish(body: PublishRequest, controller: SessionController = Depends(get_controller)):
    story = controller.publish(body.author, body.consent)
    return story.to_api()


# --- Gallery ---

@router.post("/{session_id}/gallery/open")
async def open_gallery(controller: SessionController = Depends(get_controller)):
    controller.open_gallery()
    return controller.session.to_dict()


@router.post("/{session_id}/gallery/close")
async def close_gallery(controller: SessionController = Depends(get_controller)):
    controller.close_gallery()
    return controller.session.to_dict()


@router.post("/{session_id}/reset")
async def reset(controller: SessionController = Depends(get_controller)):
    controller.reset()
    return controller.session.to_dict()
