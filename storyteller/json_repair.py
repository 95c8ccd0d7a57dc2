"""Best-effort recovery of JSON embedded in model output.

Models wrap JSON in code fences, put prose around it, break strings across
raw newlines and leave trailing commas. `recover_json` undoes those habits
and then hands the result to the strict decoder:

  1. take the body of a fenced code block, unless the text already starts
     with `{` or `[`
  2. cut from the first `{` or `[` to the last matching closer
  3. inside strings: raw newlines become `\\n`, raw CRs are dropped,
     backslash escapes pass through untouched
  4. outside strings: commas directly before `}` or `]` are dropped
  5. json.loads

Valid JSON comes out exactly as json.loads would return it.
"""

from __future__ import annotations

import json
import re
from typing import Any

from storyteller.errors import MalformedResponse

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_CLOSERS = {"{": "}", "[": "]"}


def recover_json(raw_text: str) -> Any:
    """Parse the JSON object or array in `raw_text`.

    Raises MalformedResponse (carrying the original text) when no JSON
    delimiters are found or the repaired text still does not decode.
    """
    text = raw_text
    # a fence inside a JSON string value is content, not a wrapper
    if not text.lstrip().startswith(("{", "[")):
        fence = _FENCE_RE.search(text)
        if fence:
            text = fence.group(1)

    candidate = _slice_outer(text)
    if candidate is None:
        raise MalformedResponse("No JSON object or array found in model output", raw_text)

    repaired = _repair(candidate)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Model returned invalid JSON: {e}", raw_text) from e


def _slice_outer(text: str) -> str | None:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    end = text.rfind(_CLOSERS[text[start]])
    if end < start:
        return None
    return text[start:end + 1]


def _repair(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                out.append(ch)
                escaped = False
            elif ch == "\\":
                out.append(ch)
                escaped = True
            elif ch == '"':
                out.append(ch)
                in_string = False
            elif ch == "\n":
                out.append("\\n")
            elif ch != "\r":
                out.append(ch)
        elif ch == '"':
            out.append(ch)
            in_string = True
        elif ch == "," and _next_significant(text, i + 1) in ("}", "]"):
            pass  # trailing comma
        else:
            out.append(ch)
    return "".join(out)


def _next_significant(text: str, pos: int) -> str:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return text[pos] if pos < len(text) else ""
