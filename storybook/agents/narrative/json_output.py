import json
import re
from typing import Any


def extract_json(raw: str) -> Any:
    """
    Extract a JSON value from a language-model reply.

    Strips markdown fences and invisible direction marks, then tries the whole
    reply before falling back to the outermost object or array in it.

    Raises:
        ValueError: if no JSON value can be recovered.
    """
    if raw is None:
        raise ValueError("Empty response from the model.")

    # Markdown fences
    raw = raw.replace("```json", "").replace("```", "")

    # Invisible RTL/LTR marks
    for c in ("\u202b", "\u202e", "\u202a", "\u200f", "\u200e", "\ufeff"):
        raw = raw.replace(c, "")

    raw = raw.strip()
    if not raw:
        raise ValueError("Empty response from the model.")

    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass

    for pattern in (r"\{.*\}", r"\[.*\]"):
        match = re.search(pattern, raw, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                continue

    raise ValueError("Could not extract valid JSON from the model response.")
