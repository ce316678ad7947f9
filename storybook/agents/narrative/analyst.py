from typing import Any, List, Optional, Sequence

from groq import AsyncGroq
from pydantic import BaseModel, Field

from storybook.agents.context_loader import load_context, wrap_user_input, get_user_friendly_error
from storybook.agents.narrative.json_output import extract_json
from storybook.core.errors import GenerationError
from storybook.core.logger import log_agent_action
from storybook.core.wizard.state import Character, PageCharacters, StoryPage


class CharacterAnalysis(BaseModel):
    characters: List[Character] = Field(default_factory=list)
    pages: List[PageCharacters] = Field(default_factory=list)


def build_story_text(pages: Sequence[StoryPage]) -> str:
    return "\n".join(f"Page {p.page}: {p.text}" for p in pages)


def parse_analysis(parsed: Any) -> CharacterAnalysis:
    """
    Validate the analyst reply. Missing lists default to empty.

    Raises:
        ValueError: if the reply is not an object or an entry is malformed.
    """
    if not isinstance(parsed, dict):
        raise ValueError("Invalid response format from AI. Expected an object.")

    characters = [
        Character(name=str(c["name"]), description=str(c.get("description") or ""))
        for c in parsed.get("characters") or []
    ]
    pages = [
        PageCharacters(page=int(p["page"]), characters=[str(n) for n in p.get("characters") or []])
        for p in parsed.get("pages") or []
    ]
    return CharacterAnalysis(characters=characters, pages=pages)


class CharacterAnalyst:
    """Finds the recurring characters and the pages each one appears on."""

    def __init__(self, api_key: str, model: str = "llama-3.3-70b-versatile", client: Optional[AsyncGroq] = None):
        self.model = model
        self.client = client or AsyncGroq(api_key=api_key)
        self.system_prompt = load_context("analyst")

    async def identify_characters(self, pages: Sequence[StoryPage]) -> CharacterAnalysis:
        """
        Raises:
            GenerationError: on transport failure or malformed reply.
        """
        prompt = (
            "Analyze the following children's story and identify the main characters "
            "and their appearances on each page.\n\n"
            f"{wrap_user_input(build_story_text(pages), tag='story')}"
        )
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
                response_format={"type": "json_object"},
            )
            analysis = parse_analysis(extract_json(completion.choices[0].message.content))
        except Exception as e:
            log_agent_action("analyst", "identify_characters", str(e), success=False)
            raise GenerationError(get_user_friendly_error("CHARACTERS_FAILED")) from e

        log_agent_action(
            "analyst", "identify_characters",
            f"{len(analysis.characters)} characters across {len(analysis.pages)} pages",
        )
        return analysis
