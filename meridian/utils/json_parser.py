"""Unified JSON parsing from model output.

Model replies wrap JSON in many ways: plain JSON, fenced code blocks,
or JSON embedded in explanatory prose. Every caller expects an object.
"""

import json
import re
from typing import Any, Dict, Optional

_CODE_BLOCK = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def _try_load(text: str) -> Optional[Dict[str, Any]]:
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def parse_json_from_llm(raw: str) -> Dict[str, Any]:
    """Parse a JSON object from model output.

    Tries, in order: the whole text, the first fenced code block, then the
    outermost ``{...}`` span.

    Args:
        raw: Raw model output.

    Raises:
        ValueError: If no JSON object is found.
    """
    if not raw or not raw.strip():
        raise ValueError("Empty input")

    text = raw.strip()

    result = _try_load(text)
    if result is not None:
        return result

    block = _CODE_BLOCK.search(text)
    if block:
        result = _try_load(block.group(1).strip())
        if result is not None:
            return result

    span = _OBJECT.search(text)
    if span:
        result = _try_load(span.group(0))
        if result is not None:
            return result

    raise ValueError(f"No valid JSON object found in model output: {text[:200]}")
