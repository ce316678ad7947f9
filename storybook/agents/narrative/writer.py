from typing import Any, List, Optional

from groq import AsyncGroq

from storybook.agents.context_loader import load_context, wrap_user_input, get_user_friendly_error
from storybook.agents.narrative.json_output import extract_json
from storybook.core.errors import GenerationError
from storybook.core.logger import get_logger, log_agent_action
from storybook.core.wizard.state import StoryPage

logger = get_logger("writer")

MIN_PAGES = 5
MAX_PAGES = 8


def _page_number(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 1 else None


def normalize_outline(parsed: Any) -> List[StoryPage]:
    """
    Turn the parsed model reply into page stubs.

    JSON mode always answers with an object, so ``{"pages": [...]}`` is
    unwrapped. If any entry lacks a usable page number the whole outline is
    numbered by position, keeping the order the model wrote it in.

    Raises:
        ValueError: if the reply is not an array of pages.
    """
    if isinstance(parsed, dict) and isinstance(parsed.get("pages"), list):
        parsed = parsed["pages"]

    if not isinstance(parsed, list):
        raise ValueError("Invalid response format from AI. Expected an array.")

    items = [item if isinstance(item, dict) else {} for item in parsed]
    numbers = [_page_number(item.get("page")) for item in items]
    if None in numbers:
        numbers = list(range(1, len(items) + 1))

    return [
        StoryPage(page=number, text=str(item.get("text") or ""))
        for number, item in zip(numbers, items)
    ]


def build_outline_prompt(premise: str, title: Optional[str] = None) -> str:
    story_idea = wrap_user_input(premise)
    title_line = ""
    if title:
        title_line = f"\nThe story is called:\n{wrap_user_input(title, tag='story_title')}\n"

    return f"""
Create a children's story outline based on this idea:
{story_idea}
{title_line}
The story should have between {MIN_PAGES} and {MAX_PAGES} pages.
Return ONLY the JSON object {{"pages": [{{"page": 1, "text": "..."}}]}} (no text before or after).
"""


class OutlineWriter:
    """Drafts the page-by-page outline from a free-text premise."""

    def __init__(self, api_key: str, model: str = "llama-3.3-70b-versatile", client: Optional[AsyncGroq] = None):
        self.model = model
        self.client = client or AsyncGroq(api_key=api_key)
        self.system_prompt = load_context("writer")

    async def generate_outline(self, premise: str, title: Optional[str] = None) -> List[StoryPage]:
        """
        Generate 5-8 page stubs for the premise.

        Raises:
            GenerationError: on any transport or parse failure. No partial outline is returned.
        """
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": build_outline_prompt(premise, title)},
                ],
                temperature=0.7,
                response_format={"type": "json_object"},
            )
            content = completion.choices[0].message.content
            pages = normalize_outline(extract_json(content))
        except Exception as e:
            log_agent_action("writer", "generate_outline", str(e), success=False)
            raise GenerationError(get_user_friendly_error("OUTLINE_FAILED")) from e

        if not pages:
            log_agent_action("writer", "generate_outline", "model returned no pages", success=False)
            raise GenerationError(get_user_friendly_error("OUTLINE_FAILED"))

        if not MIN_PAGES <= len(pages) <= MAX_PAGES:
            logger.warning(f"Page count outside {MIN_PAGES}-{MAX_PAGES}: got {len(pages)}")

        log_agent_action("writer", "generate_outline", f"{len(pages)} pages")
        return pages
