"""
Context Loader Utility for Storybook Agents

This module loads the system prompts for the language-model agents from text
files and isolates user-supplied text before it is placed into a prompt.
"""

from pathlib import Path
from functools import lru_cache


# System prompts live next to the agents
PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"


@lru_cache(maxsize=10)
def load_context(agent_name: str) -> str:
    """
    Load the system prompt for a specific agent.

    Args:
        agent_name: Name of the agent (writer, analyst)

    Returns:
        Content of the context file as string

    Raises:
        FileNotFoundError: If context file doesn't exist
    """
    context_paths = {
        "writer": PROMPTS_DIR / "context_writer.txt",
        "analyst": PROMPTS_DIR / "context_analyst.txt",
    }

    if agent_name not in context_paths:
        raise ValueError(f"Unknown agent: {agent_name}. Available: {list(context_paths.keys())}")

    context_path = context_paths[agent_name]

    if not context_path.exists():
        raise FileNotFoundError(f"Context file not found: {context_path}")

    return context_path.read_text(encoding="utf-8").strip()


def wrap_user_input(user_input: str, tag: str = "user_input") -> str:
    """
    Wrap user input in XML tags for input isolation.
    This helps the model distinguish between instructions and user data.
    """
    # Escape any existing XML-like tags in user input to prevent injection
    sanitized = user_input.replace("<", "&lt;").replace(">", "&gt;")
    return f"<{tag}>\n{sanitized}\n</{tag}>"


# User-facing messages (no internal details)
ERROR_MESSAGES = {
    "OUTLINE_FAILED": "Oh no! Our story-writing magic fizzled. Please try again.",
    "CHARACTERS_FAILED": "We had trouble finding the characters in the story. Please try again.",
    "PORTRAIT_FAILED": "We couldn't draw this character. Please try again or upload a picture.",
    "ILLUSTRATION_FAILED": "The magic paintbrush slipped! Let's try drawing that again.",
    "AUDIOBOOK_FAILED": "We couldn't record the audiobook. Please try again.",
    "GALLERY_FAILED": "Could not load the story gallery. Please try again later.",
    "PUBLISH_FAILED": "We couldn't share your story. Please try again.",
    "GENERATION_ERROR": "Something went wrong while creating your story. Please try again.",
}


def get_user_friendly_error(error_type: str) -> str:
    """
    Get user-friendly error message without exposing internal details.
    """
    return ERROR_MESSAGES.get(error_type, ERROR_MESSAGES["GENERATION_ERROR"])
