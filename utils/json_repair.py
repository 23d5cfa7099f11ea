"""
Structured text extraction and repair

Model output rarely arrives as clean JSON. These helpers are pure string
functions so they can be tested without any network code:

- extract_json_block: strip prose and ``` fences down to the bounding array/object
- repair_truncated_json: best-effort fix for output cut off mid-stream
- safe_json_parse: json.loads with a size limit, never raises
"""
import json
import re
from dataclasses import dataclass
from typing import Any

MAX_JSON_SIZE = 10 * 1024 * 1024  # 10MB

_FENCE_RE = re.compile(r"```(?:json)?\s*([\[{][\s\S]*[\]}])\s*```", re.IGNORECASE)


@dataclass
class ParseResult:
    """Outcome of safe_json_parse"""
    success: bool
    data: Any = None
    error: str | None = None


def safe_json_parse(text: str, max_size: int = MAX_JSON_SIZE) -> ParseResult:
    """Parse JSON text, returning a ParseResult instead of raising"""
    if not text or not isinstance(text, str):
        return ParseResult(success=False, error="Invalid JSON string")

    if len(text.encode("utf-8")) > max_size:
        return ParseResult(
            success=False,
            error=f"JSON size exceeds maximum allowed size of {max_size // (1024 * 1024)}MB",
        )

    try:
        return ParseResult(success=True, data=json.loads(text))
    except json.JSONDecodeError as e:
        return ParseResult(success=False, error=str(e))


def extract_json_block(text: str, prefer: str = "array") -> str:
    """
    Find the JSON payload inside model output.

    Fenced blocks win. Otherwise the text is cut from the first '[' or '{'
    (whichever comes first, ties broken by `prefer`) to the matching last
    closing bracket when one exists. Text without any bracket is returned
    stripped and unchanged.
    """
    if not text:
        return ""
    content = text.strip()

    fenced = _FENCE_RE.search(content)
    if fenced:
        return fenced.group(1).strip()

    array_start = content.find("[")
    object_start = content.find("{")
    if array_start == -1 and object_start == -1:
        return content

    if object_start == -1 or (array_start != -1 and array_start < object_start):
        start, closer = array_start, "]"
    elif array_start == -1 or object_start < array_start:
        start, closer = object_start, "}"
    else:
        start, closer = (array_start, "]") if prefer == "array" else (object_start, "}")

    end = content.rfind(closer)
    if end > start:
        return content[start:end + 1]
    # Truncated output, keep everything after the opener for repair
    return content[start:]


def extract_json_object(text: str) -> Any | None:
    """Parse the first JSON object/array found in text, or None"""
    block = extract_json_block(text, prefer="object")
    parsed = safe_json_parse(block)
    if parsed.success:
        return parsed.data
    repaired = repair_truncated_json(block)
    if repaired is None:
        return None
    parsed = safe_json_parse(repaired)
    return parsed.data if parsed.success else None


def _scan(text: str) -> tuple[list[str], bool]:
    """Return the stack of unclosed openers and whether a string is left open"""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            stack.append(ch)
        elif ch in "]}" and stack:
            stack.pop()
    return stack, in_string


# Trailing fragments left behind when output is cut mid key/value pair
_INCOMPLETE_TAIL_PATTERNS = [
    re.compile(r',\s*"[^"]*"\s*:\s*"(?:[^"\\]|\\.)*$'),  # , "key": "unterminated
    re.compile(r',\s*"[^"]*"\s*:\s*[^,{}\[\]"]*$'),      # , "key": 12 / , "key":
    re.compile(r',\s*"[^"]*$'),                           # , "unterminated key
    re.compile(r',\s*$'),                                 # dangling comma
]


def repair_truncated_json(text: str) -> str | None:
    """
    Best-effort repair of truncated JSON.

    Drops a trailing incomplete key/value pair, closes an unterminated
    string, then appends the closing brackets/braces still open, innermost
    first. Returns None when there is nothing that looks like JSON or no
    change would be made.
    """
    if not text:
        return None
    fixed = text.strip()
    if not fixed or fixed[0] not in "[{":
        return None

    for pattern in _INCOMPLETE_TAIL_PATTERNS:
        trimmed = pattern.sub("", fixed)
        if trimmed != fixed:
            fixed = trimmed
            break

    stack, in_string = _scan(fixed)
    if in_string:
        fixed += '"'
    # a value-less key at the very end, e.g. {"a": 1, "b":
    fixed = re.sub(r':\s*$', ': null', fixed)

    closing = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    fixed += closing

    if fixed == text.strip():
        return None
    return fixed
