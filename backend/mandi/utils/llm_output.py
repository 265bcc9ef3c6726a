"""
LLM output parsing utilities.

WHAT: Pull JSON objects and clean prose out of free-form model output
WHY: Models wrap answers in code fences, quotes and preambles
HOW: Regex + JSON parsing, returning None when nothing usable is found
"""

import json
import re
from typing import Any, Dict

from ..utils.logger import get_logger

logger = get_logger(__name__)

# Maximum words kept from a generated narrative
MAX_NARRATIVE_WORDS = 80


def extract_json_object(text: str) -> Dict[str, Any] | None:
    """
    Parse the first JSON object in LLM-generated text.

    Accepted shapes:
    - ```json {...}```
    - bare {...}
    - {...} embedded in surrounding prose

    Returns:
        Parsed dict or None if no valid object is found
    """
    if not text:
        return None

    fence_match = re.search(r'```(?:json)?\s*(\{.*?\})\s*```', text, re.IGNORECASE | re.DOTALL)
    candidates = []
    if fence_match:
        candidates.append(fence_match.group(1))

    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        candidates.append(stripped)

    brace_match = re.search(r'\{.*\}', text, re.DOTALL)
    if brace_match:
        candidates.append(brace_match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    logger.debug(f"No JSON object found in LLM output: {text[:100]}")
    return None


def clean_generated_text(text: str, max_words: int | None = MAX_NARRATIVE_WORDS) -> str:
    """
    Normalize model prose for display.

    Strips a leading "MESSAGE:" label, wrapping quotes and surplus
    whitespace, then truncates to max_words.
    """
    if not text:
        return ""

    cleaned = re.sub(r'^\s*(?:MESSAGE|RESPONSE|TRANSLATION)\s*:\s*', '', text.strip(), flags=re.IGNORECASE)
    cleaned = cleaned.strip().strip('"').strip("'").strip()
    cleaned = re.sub(r'\s+', ' ', cleaned)

    if max_words:
        words = cleaned.split()
        if len(words) > max_words:
            logger.debug(f"Truncating generated text from {len(words)} to {max_words} words")
            cleaned = " ".join(words[:max_words]).rstrip(",;:") + "..."

    return cleaned
