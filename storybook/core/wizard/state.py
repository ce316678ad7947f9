"""
Authoring-session state: pages, roster and wizard stage.

All mutations go through ``StorySession`` methods so that contiguous page
numbering, unique character names and the illustration cursor stay valid no
matter which route or collaborator patches the session.
"""

import uuid
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from storybook.core.errors import ValidationError
from storybook.core.logger import get_logger

logger = get_logger("session")


class WizardStage(str, Enum):
    PROMPT = "prompt"
    OUTLINE = "outline"
    CHARACTER_CREATION = "character_creation"
    CREATING_PAGES = "creating_pages"
    FINISHED = "finished"
    GALLERY = "gallery"


class StoryPage(BaseModel):
    page: int = Field(..., ge=1)
    text: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    characters: Optional[List[str]] = None
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")

    model_config = ConfigDict(populate_by_name=True)


class Character(BaseModel):
    name: str
    description: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_mime_type: Optional[str] = Field(default=None, alias="imageMimeType")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def has_portrait(self) -> bool:
        return bool(self.image_url)


class PageCharacters(BaseModel):
    """One entry of the page -> character-names mapping returned by the analyst."""
    page: int
    characters: List[str] = Field(default_factory=list)


class IllustrationAttempt(BaseModel):
    """The latest illustration request for the page under the cursor."""
    token: int
    page_index: int = Field(..., alias="pageIndex")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    error: Optional[str] = None
    pending: bool = True

    model_config = ConfigDict(populate_by_name=True)


class StorySession:
    """Full mutable state of one story being authored."""

    def __init__(self, session_id: Optional[str] = None):
        self.id = session_id or uuid.uuid4().hex
        self._token_counter = 0
        self._audiobook_token = 0
        self.reset()

    def reset(self):
        """Discard everything and go back to the prompt."""
        self.stage = WizardStage.PROMPT
        self.title = ""
        self.premise = ""
        self.pages: List[StoryPage] = []
        self.characters: List[Character] = []
        self.current_page_index = 0
        self.reader_page_index = 0
        self.attempt: Optional[IllustrationAttempt] = None
        self.error: Optional[str] = None
        self.gallery: List[dict] = []
        self.audiobook_in_progress = False

    # ------------------------------------------------------------------ pages

    def load_outline(self, pages: Iterable[StoryPage]):
        """Replace the page list, ordered by page number and renumbered 1..N."""
        ordered = sorted(pages, key=lambda p: p.page)
        self.pages = [p.model_copy(update={"page": i + 1}) for i, p in enumerate(ordered)]

    def _check_index(self, index: int):
        if not 0 <= index < len(self.pages):
            raise ValidationError(f"Page index {index} is out of range.")

    def set_page_text(self, index: int, text: str):
        self._check_index(index)
        self.pages[index] = self.pages[index].model_copy(update={"text": text})

    def remove_page(self, index: int):
        """Delete a page and renumber the rest to stay contiguous from 1."""
        self._check_index(index)
        if len(self.pages) == 1:
            raise ValidationError("A story needs at least one page.")
        remaining = self.pages[:index] + self.pages[index + 1:]
        self.pages = [p.model_copy(update={"page": i + 1}) for i, p in enumerate(remaining)]

    def attach_image(self, page_index: int, image_url: str):
        self._check_index(page_index)
        self.pages[page_index] = self.pages[page_index].model_copy(update={"image_url": image_url})

    def attach_audio(self, page_index: int, audio_url: str):
        self._check_index(page_index)
        self.pages[page_index] = self.pages[page_index].model_copy(update={"audio_url": audio_url})

    def pages_missing_audio(self) -> List[int]:
        return [i for i, p in enumerate(self.pages) if not p.audio_url]

    def start_audiobook(self) -> int:
        self._audiobook_token += 1
        self.audiobook_in_progress = True
        return self._audiobook_token

    def is_current_audiobook(self, token: int) -> bool:
        return self.audiobook_in_progress and self._audiobook_token == token

    # ------------------------------------------------------------------ roster

    def set_roster(self, characters: Iterable[Character], mapping: Iterable[PageCharacters]):
        """
        Install the extracted roster and merge the page mapping by page number.

        Duplicate names keep their first description. Names in the mapping that
        are not in the roster are dropped. Pages absent from the mapping keep no
        character list.
        """
        roster: Dict[str, Character] = {}
        for character in characters:
            name = character.name.strip()
            if name and name not in roster:
                roster[name] = character.model_copy(update={"name": name})
        self.characters = list(roster.values())

        by_page = {entry.page: entry.characters for entry in mapping}
        merged = []
        for page in self.pages:
            names = by_page.get(page.page)
            if names is None:
                merged.append(page.model_copy(update={"characters": None}))
                continue
            known = [n.strip() for n in names if n.strip() in roster]
            dropped = [n for n in names if n.strip() not in roster]
            if dropped:
                logger.warning(f"Page {page.page}: dropping unknown characters {dropped}")
            merged.append(page.model_copy(update={"characters": known}))
        self.pages = merged

    def get_character(self, name: str) -> Character:
        for character in self.characters:
            if character.name == name:
                return character
        raise ValidationError(f"Unknown character: {name}")

    def _replace_character(self, updated: Character):
        self.characters = [updated if c.name == updated.name else c for c in self.characters]

    def set_character_description(self, name: str, description: str):
        character = self.get_character(name)
        self._replace_character(character.model_copy(update={"description": description}))

    def attach_portrait(self, name: str, image_url: str, mime_type: str):
        character = self.get_character(name)
        self._replace_character(
            character.model_copy(update={"image_url": image_url, "image_mime_type": mime_type})
        )

    @property
    def characters_ready(self) -> bool:
        """Every character has a portrait. An empty roster is ready."""
        return all(c.has_portrait for c in self.characters)

    # ------------------------------------------------------------------ illustration

    @property
    def current_page(self) -> Optional[StoryPage]:
        if 0 <= self.current_page_index < len(self.pages):
            return self.pages[self.current_page_index]
        return None

    def start_illustration(self) -> IllustrationAttempt:
        """Invalidate any earlier attempt and hand out a fresh token."""
        self._token_counter += 1
        self.attempt = IllustrationAttempt(token=self._token_counter, page_index=self.current_page_index)
        return self.attempt

    def is_current_token(self, token: int) -> bool:
        return self.attempt is not None and self.attempt.token == token

    def resolve_illustration(self, token: int, image_url: Optional[str] = None, error: Optional[str] = None) -> bool:
        """
        Record the outcome of an illustration call.

        Returns False (and records nothing) if a newer attempt superseded it.
        """
        if not self.is_current_token(token):
            return False
        self.attempt = self.attempt.model_copy(update={"image_url": image_url, "error": error, "pending": False})
        return True

    def approve_current_page(self) -> bool:
        """
        Commit the candidate image and advance the cursor.

        Returns True when the last page was approved.
        """
        self.attach_image(self.current_page_index, self.attempt.image_url)
        self.attempt = None
        if self.current_page_index >= len(self.pages) - 1:
            return True
        self.current_page_index += 1
        return False

    # ------------------------------------------------------------------ serialization

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage": self.stage.value,
            "title": self.title,
            "premise": self.premise,
            "pages": [p.model_dump(by_alias=True) for p in self.pages],
            "characters": [c.model_dump(by_alias=True) for c in self.characters],
            "charactersReady": self.characters_ready,
            "currentPageIndex": self.current_page_index,
            "readerPageIndex": self.reader_page_index,
            "illustration": self.attempt.model_dump(by_alias=True) if self.attempt else None,
            "isGeneratingAudio": self.audiobook_in_progress,
            "gallery": self.gallery,
            "error": self.error,
        }
