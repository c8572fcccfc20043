"""
Structured-reply extraction for model output.

Models are asked to answer with JSON but usually wrap it in a markdown
fence and sometimes in prose. `extract_json` is the one place that turns a
reply into a Python object; each pipeline decides what a failure means.
"""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")


class ReplyParseError(ValueError):
    """The reply did not contain parseable JSON."""

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def extract_json(raw: str) -> Any:
    """Parse the first ```json fenced block, or the whole reply when there is none.

    Raises ReplyParseError when the chosen text is not valid JSON.
    """
    if raw is None:
        raise ReplyParseError("Empty model reply", "")
    fence_match = _FENCE_RE.search(raw)
    candidate = fence_match.group(1) if fence_match else raw
    try:
        return json.loads(candidate.strip())
    except json.JSONDecodeError as e:
        raise ReplyParseError(f"Model reply is not valid JSON: {e}", raw) from e
