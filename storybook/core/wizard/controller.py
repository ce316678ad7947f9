"""
Session Controller: drives one ``StorySession`` through the wizard.

PROMPT -> OUTLINE -> CHARACTER_CREATION -> CREATING_PAGES -> FINISHED, with
GALLERY reachable from PROMPT. Collaborator failures are recorded on the
session (``session.error``) and never raise; calling an action in the wrong
stage raises ``InvalidTransition``.
"""

import asyncio
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from storybook.agents.context_loader import get_user_friendly_error
from storybook.agents.narrative.painter import portrait_from_upload
from storybook.agents.speech.narrator import AUDIO_MIME_TYPE
from storybook.core.errors import GenerationError, InvalidTransition, ValidationError
from storybook.core.logger import get_logger, log_error, log_story_event
from storybook.core.wizard.state import IllustrationAttempt, StorySession, WizardStage
from storybook.db.models import PublicStory
from storybook.exporters.html import ExportFile, slugify

logger = get_logger("controller")


class SessionController:

    def __init__(self, services, session: Optional[StorySession] = None):
        self.services = services
        self.session = session or StorySession()

    def _require(self, *stages: WizardStage):
        if self.session.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise InvalidTransition(
                f"Not allowed while in '{self.session.stage.value}' (expected {allowed})."
            )

    def _fail(self, error_key: str, event: str, error: Exception):
        self.session.error = get_user_friendly_error(error_key)
        log_story_event(self.session.id, event, f"failed: {error}")

    # ------------------------------------------------------------------ prompt / outline

    async def submit(self, premise: str, title: str = ""):
        """Ask the writer for an outline. Failure leaves the session in PROMPT."""
        self._require(WizardStage.PROMPT)
        if not premise or not premise.strip():
            raise ValidationError("Please describe your story idea first.")

        session = self.session
        session.error = None
        try:
            pages = await self.services.writer.generate_outline(premise.strip(), title.strip() or None)
        except GenerationError as e:
            if session.stage is WizardStage.PROMPT:
                session.pages = []
                self._fail("OUTLINE_FAILED", "outline", e)
            return

        # The user may have reset or opened the gallery while we waited
        if session.stage is not WizardStage.PROMPT:
            logger.info(f"Discarding outline for session {session.id}: stage is now {session.stage.value}")
            return

        session.premise = premise.strip()
        session.title = title.strip()
        session.load_outline(pages)
        session.stage = WizardStage.OUTLINE
        log_story_event(session.id, "outline", f"{len(session.pages)} pages")

    def set_page_text(self, index: int, text: str):
        self._require(WizardStage.OUTLINE, WizardStage.CREATING_PAGES)
        self.session.set_page_text(index, text)

    def remove_page(self, index: int):
        self._require(WizardStage.OUTLINE)
        self.session.remove_page(index)
        log_story_event(self.session.id, "remove_page", f"index {index}, {len(self.session.pages)} left")

    def retry(self):
        """Throw the outline away and start over from the prompt."""
        self._require(WizardStage.OUTLINE)
        self.reset()

    async def confirm_outline(self):
        """Extract the roster and move on to character creation."""
        self._require(WizardStage.OUTLINE)
        session = self.session
        session.error = None
        pages = list(session.pages)
        try:
            analysis = await self.services.analyst.identify_characters(pages)
        except GenerationError as e:
            if session.stage is WizardStage.OUTLINE:
                self._fail("CHARACTERS_FAILED", "characters", e)
            return

        if session.stage is not WizardStage.OUTLINE:
            logger.info(f"Discarding roster for session {session.id}: stage is now {session.stage.value}")
            return

        session.set_roster(analysis.characters, analysis.pages)
        session.stage = WizardStage.CHARACTER_CREATION
        log_story_event(session.id, "characters", ", ".join(c.name for c in session.characters) or "none")

    # ------------------------------------------------------------------ characters

    def set_character_description(self, name: str, description: str):
        self._require(WizardStage.CHARACTER_CREATION)
        self.session.set_character_description(name, description)

    async def generate_portrait(self, name: str):
        self._require(WizardStage.CHARACTER_CREATION)
        session = self.session
        character = session.get_character(name)
        session.error = None
        try:
            portrait = await self.services.painter.generate_portrait(character.description)
        except GenerationError as e:
            if session.stage is WizardStage.CHARACTER_CREATION:
                self._fail("PORTRAIT_FAILED", f"portrait {name}", e)
            return

        if session.stage is not WizardStage.CHARACTER_CREATION:
            return
        session.attach_portrait(name, portrait.image_url, portrait.mime_type)
        log_story_event(session.id, "portrait", f"{name} generated")

    def upload_portrait(self, name: str, data: bytes, mime_type: str):
        self._require(WizardStage.CHARACTER_CREATION)
        self.session.get_character(name)
        portrait = portrait_from_upload(data, mime_type)
        self.session.attach_portrait(name, portrait.image_url, portrait.mime_type)
        log_story_event(self.session.id, "portrait", f"{name} uploaded ({mime_type})")

    def complete_characters(self):
        self._require(WizardStage.CHARACTER_CREATION)
        if not self.session.characters_ready:
            raise ValidationError("Every character needs a picture before we start drawing.")
        self.session.stage = WizardStage.CREATING_PAGES
        self.session.current_page_index = 0
        self.session.attempt = None
        self.session.error = None

    # ------------------------------------------------------------------ illustration

    async def illustrate_current_page(self) -> Optional[IllustrationAttempt]:
        """
        Request a candidate illustration for the page under the cursor.

        Each call supersedes the previous one; a reply that arrives after a
        newer request was made is dropped.
        """
        self._require(WizardStage.CREATING_PAGES)
        session = self.session
        attempt = session.start_illustration()
        page = session.current_page
        session.error = None

        try:
            image_url = await self.services.illustrator.illustrate(page, list(session.characters))
        except GenerationError as e:
            if session.resolve_illustration(attempt.token, error=str(e)):
                self._fail("ILLUSTRATION_FAILED", f"illustrate page {page.page}", e)
            else:
                logger.info(f"Discarding stale illustration failure (token {attempt.token})")
            return session.attempt

        if session.resolve_illustration(attempt.token, image_url=image_url):
            log_story_event(session.id, "illustrate", f"page {page.page} candidate ready")
        else:
            logger.info(f"Discarding stale illustration for page {page.page} (token {attempt.token})")
        return session.attempt

    def approve_current_page(self):
        self._require(WizardStage.CREATING_PAGES)
        session = self.session
        attempt = session.attempt
        if (
            attempt is None
            or attempt.pending
            or not attempt.image_url
            or attempt.page_index != session.current_page_index
        ):
            raise ValidationError("There is no picture to approve yet.")

        approved = session.current_page_index
        if session.approve_current_page():
            session.stage = WizardStage.FINISHED
            session.reader_page_index = 0
            log_story_event(session.id, "finished", f"{len(session.pages)} pages illustrated")
        else:
            log_story_event(session.id, "approve", f"page {approved + 1}")

    # ------------------------------------------------------------------ finished book

    def next_page(self):
        self._require(WizardStage.FINISHED)
        self.session.reader_page_index = min(self.session.reader_page_index + 1, len(self.session.pages) - 1)

    def previous_page(self):
        self._require(WizardStage.FINISHED)
        self.session.reader_page_index = max(self.session.reader_page_index - 1, 0)

    async def create_audiobook(self) -> int:
        """
        Narrate every page that has no audio yet, concurrently.

        Clips that succeed are kept even if others fail. Pages with blank text
        are skipped.

        Returns:
            Number of narration calls issued (0 when nothing is left to narrate).
        """
        self._require(WizardStage.FINISHED)
        session = self.session
        if session.audiobook_in_progress:
            return 0

        indices = [i for i in session.pages_missing_audio() if session.pages[i].text.strip()]
        if not indices:
            return 0

        token = session.start_audiobook()
        session.error = None
        try:
            results = await asyncio.gather(
                *(self.services.narrator.narrate(session.pages[i].text) for i in indices),
                return_exceptions=True,
            )

            if not session.is_current_audiobook(token):
                logger.info(f"Discarding narration for session {session.id}: session changed")
                return len(indices)

            failures = 0
            for index, result in zip(indices, results):
                if isinstance(result, BaseException):
                    failures += 1
                    log_error("Narration failed", result, {"session": session.id, "page": index + 1})
                    continue
                try:
                    url = self.services.media.save(result, AUDIO_MIME_TYPE, folder="audio")
                except OSError as e:
                    failures += 1
                    log_error("Could not store narration", e, {"session": session.id, "page": index + 1})
                    continue
                session.attach_audio(index, url)
        finally:
            # Cancellation or an unexpected error must not leave the book locked
            if session.is_current_audiobook(token):
                session.audiobook_in_progress = False

        if failures:
            session.error = get_user_friendly_error("AUDIOBOOK_FAILED")
        log_story_event(session.id, "audiobook", f"{len(indices) - failures}/{len(indices)} clips")
        return len(indices)

    def export_pdf(self) -> ExportFile:
        self._require(WizardStage.FINISHED)
        try:
            content = self.services.pdf.build(self.session.title, self.session.pages)
        except Exception as e:
            log_error("PDF export failed", e, {"session": self.session.id})
            raise GenerationError("We couldn't create the PDF. Please try again.") from e
        return ExportFile(f"{slugify(self.session.title)}.pdf", content, "application/pdf")

    def export_html(self) -> ExportFile:
        self._require(WizardStage.FINISHED)
        try:
            return self.services.html.export(self.session.title, self.session.pages, self.services.media)
        except Exception as e:
            log_error("HTML export failed", e, {"session": self.session.id})
            raise GenerationError("We couldn't create the web page. Please try again.") from e

    def publish(self, author: str, consent: bool) -> PublicStory:
        self._require(WizardStage.FINISHED)
        try:
            story = self.services.publisher.publish(self.session.title, author, self.session.pages, consent)
        except (SQLAlchemyError, OSError) as e:
            log_error("Publishing failed", e, {"session": self.session.id})
            raise GenerationError(get_user_friendly_error("PUBLISH_FAILED")) from e
        log_story_event(self.session.id, "publish", f"gallery id {story.id}")
        return story

    # ------------------------------------------------------------------ gallery

    def open_gallery(self):
        self._require(WizardStage.PROMPT)
        session = self.session
        try:
            stories = self.services.gallery.list_recent(self.services.settings.GALLERY_LIMIT)
        except SQLAlchemyError as e:
            log_error("Gallery load failed", e, {"session": session.id})
            session.error = get_user_friendly_error("GALLERY_FAILED")
            return
        session.gallery = [story.to_api() for story in stories]
        session.stage = WizardStage.GALLERY
        session.error = None

    def close_gallery(self):
        self._require(WizardStage.GALLERY)
        self.session.gallery = []
        self.session.stage = WizardStage.PROMPT

    def reset(self):
        self.session.reset()
        log_story_event(self.session.id, "reset")
