"""
Best-effort JSON salvage for LLM completions.

Gemini is asked for a single JSON object, but nothing constrains it to emit
valid JSON. Completions regularly arrive wrapped in markdown fences, with
prose around the object, trailing commas, unescaped quotes inside Indonesian
descriptions, bare keys or a truncated tail.

salvage_json() applies an escalating, fixed sequence of repairs. Each repair
runs on the output of the previous one, and only after the previous attempt
failed to parse:

    raw
    1. strip_code_fences
    2. trim_to_outer_braces
    3. normalize_characters
    4. remove_trailing_commas
    5. escape_inner_quotes
    6. quote_bare_keys
    7. replace_single_quotes
    8. close_truncated
    9. rebuild_from_pairs     (regex over the original text)
   10. minimal_from_titles    (regex over the original text)

The last two stages do not repair text: they synthesize a new object from
whatever "key": "value" pairs can be found, filling placeholder content.
This is a heuristic chain with no grammar behind it; the only guarantee is
that it terminates after a fixed number of linear passes.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_STRUCTURAL_AFTER_STRING = set(",}]:")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class JSONSalvageError(ValueError):
    """Raised when no stage of the salvage pipeline produced a JSON object."""


@dataclass
class SalvageResult:
    """Parsed object and the name of the stage that produced it."""
    data: Dict[str, Any]
    stage: str

    @property
    def repaired(self) -> bool:
        return self.stage != "raw"


def _try_parse(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _next_non_space(text: str, start: int) -> str:
    """Return the next non-whitespace character at or after start, or ''."""
    for index in range(start, len(text)):
        if not text[index].isspace():
            return text[index]
    return ""


def _last_non_space(chars: List[str]) -> str:
    for char in reversed(chars):
        if not char.isspace():
            return char
    return ""


# =============================================================================
# TEXT REPAIR STAGES
# =============================================================================

def strip_code_fences(text: str) -> str:
    """Remove markdown code fences (```json ... ```)."""
    return re.sub(r"```[ \t]*(?:json|JSON)?[ \t]*\r?\n?", "", text).strip()


def trim_to_outer_braces(text: str) -> str:
    """Drop prose before the first '{' and after the last '}'."""
    first = text.find("{")
    if first == -1:
        return text
    last = text.rfind("}")
    if last < first:
        return text[first:]
    return text[first:last + 1]


def normalize_characters(text: str) -> str:
    """Remove control characters and replace typographic quotes and dashes."""
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("‘", "'").replace("’", "'")
    text = text.replace("–", "-").replace("—", "-")
    return text


def remove_trailing_commas(text: str) -> str:
    """Remove commas directly before '}' or ']' outside string literals."""
    out: List[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "," and _next_non_space(text, index + 1) in ("}", "]"):
            continue
        out.append(char)
    return "".join(out)


def escape_inner_quotes(text: str) -> str:
    """
    Escape quotes that appear inside string values.

    A quote inside a string is taken as the closing quote only when the next
    non-whitespace character is a structural delimiter (, } ] :) or the end of
    input. Any other quote is escaped. Raw newlines, carriage returns and tabs
    inside strings are escaped as well.
    """
    out: List[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if not in_string:
            if char == '"':
                in_string = True
            out.append(char)
            continue
        if escaped:
            escaped = False
            out.append(char)
        elif char == "\\":
            escaped = True
            out.append(char)
        elif char == '"':
            following = _next_non_space(text, index + 1)
            if following == "" or following in _STRUCTURAL_AFTER_STRING:
                in_string = False
                out.append(char)
            else:
                out.append('\\"')
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\t":
            out.append("\\t")
        else:
            out.append(char)
    return "".join(out)


def quote_bare_keys(text: str) -> str:
    """Quote identifier keys such as {title: ...} or , priority: ... outside strings."""
    out: List[str] = []
    in_string = False
    escaped = False
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            index += 1
            continue
        if char == '"':
            in_string = True
            out.append(char)
            index += 1
            continue
        if (char.isalpha() or char == "_") and _last_non_space(out) in ("{", ","):
            match = _IDENTIFIER.match(text, index)
            if match:
                word = match.group(0)
                end = index + len(word)
                if _next_non_space(text, end) == ":":
                    out.append(f'"{word}"')
                    index = end
                    continue
        out.append(char)
        index += 1
    return "".join(out)


def replace_single_quotes(text: str) -> str:
    """Convert single-quoted keys and values outside double-quoted strings."""
    out: List[str] = []
    in_string = False
    escaped = False
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            index += 1
            continue
        if char == '"':
            in_string = True
        elif char == "'" and _last_non_space(out) in ("{", "[", ",", ":"):
            end = index + 1
            while end < length and not (text[end] == "'" and text[end - 1] != "\\"):
                end += 1
            if end < length:
                content = text[index + 1:end].replace("\\'", "'").replace('"', '\\"')
                out.append(f'"{content}"')
                index = end + 1
                continue
        out.append(char)
        index += 1
    return "".join(out)


def close_truncated(text: str) -> str:
    """
    Close an unterminated string and any open objects/arrays.

    Handles completions cut off by the output token limit. A dangling
    comma is dropped and a dangling colon gets a null value before the
    brackets are closed in reverse order.
    """
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    if not in_string and not stack:
        return text

    repaired = text
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    elif repaired.endswith(":"):
        repaired += " null"
    return repaired + "".join(reversed(stack))


# =============================================================================
# REBUILD STAGES (synthesize an object from fragments)
# =============================================================================

_PAIR_PATTERN = re.compile(r'"([^"\\\n]+)"\s*:\s*"((?:[^"\\]|\\.)*)"')
_TITLE_PATTERN = re.compile(r'"title"\s*:\s*"([^"]+)"')


def _clean_value(value: str) -> str:
    value = value.replace('\\"', '"').replace("\\n", " ").replace("\\t", " ")
    value = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", value)
    return re.sub(r"\s+", " ", value).strip()


def rebuild_from_pairs(text: str) -> Optional[Dict[str, Any]]:
    """
    Rebuild recommendations from flat "key": "value" string pairs.

    Pairs are grouped into a new record each time a "title" key appears.
    Records without both a title and a description are discarded.
    """
    records: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    for match in _PAIR_PATTERN.finditer(text):
        key, value = match.group(1), _clean_value(match.group(2))
        if key == "title" and current:
            records.append(current)
            current = {}
        current[key] = value
    if current:
        records.append(current)

    recommendations = [
        {
            "title": record["title"],
            "description": record["description"],
            "category": record.get("category", "growth_strategy"),
            "priority": record.get("priority", "medium"),
            "estimatedTimeframe": record.get("estimatedTimeframe", "2-4 minggu"),
            "expectedImpact": record.get("expectedImpact", "Dampak positif pada bisnis"),
            "reasoning": record.get("reasoning", "Rekomendasi berdasarkan analisis AI"),
        }
        for record in records
        if record.get("title") and record.get("description")
    ]
    if not recommendations:
        return None
    return {"recommendations": recommendations}


def minimal_from_titles(text: str) -> Optional[Dict[str, Any]]:
    """Build up to three placeholder recommendations from bare title strings."""
    titles = [_clean_value(title) for title in _TITLE_PATTERN.findall(text)][:3]
    titles = [title for title in titles if title]
    if not titles:
        return None
    return {
        "recommendations": [
            {
                "title": title,
                "description": "Deskripsi detail akan tersedia setelah perbaikan sistem AI.",
                "category": "growth_strategy",
                "priority": "medium",
                "actionItems": [{
                    "title": "Tindak lanjut diperlukan",
                    "description": "Detail akan diperbarui",
                    "estimatedHours": 4,
                    "deadline": None,
                }],
                "resources": [{
                    "title": "Resource akan diperbarui",
                    "description": "Informasi akan tersedia segera",
                    "type": "article",
                    "url": "#",
                }],
                "estimatedTimeframe": "1-2 minggu",
                "expectedImpact": "Dampak positif pada pengembangan bisnis",
                "reasoning": "Rekomendasi berdasarkan analisis AI (dalam perbaikan)",
            }
            for title in titles
        ]
    }


TEXT_REPAIR_STAGES: List[tuple[str, Callable[[str], str]]] = [
    ("strip_code_fences", strip_code_fences),
    ("trim_to_outer_braces", trim_to_outer_braces),
    ("normalize_characters", normalize_characters),
    ("remove_trailing_commas", remove_trailing_commas),
    ("escape_inner_quotes", escape_inner_quotes),
    ("quote_bare_keys", quote_bare_keys),
    ("replace_single_quotes", replace_single_quotes),
    ("close_truncated", close_truncated),
]

REBUILD_STAGES: List[tuple[str, Callable[[str], Optional[Dict[str, Any]]]]] = [
    ("rebuild_from_pairs", rebuild_from_pairs),
    ("minimal_from_titles", minimal_from_titles),
]


def salvage_json(text: str) -> SalvageResult:
    """
    Recover a JSON object from an LLM completion.

    Args:
        text: Raw completion text

    Returns:
        SalvageResult with the parsed object and the stage that produced it

    Raises:
        JSONSalvageError: If every stage fails
    """
    if not text or not text.strip():
        raise JSONSalvageError("Empty completion")

    candidate = text.strip()
    data = _try_parse(candidate)
    if data is not None:
        return SalvageResult(data=data, stage="raw")

    for name, repair in TEXT_REPAIR_STAGES:
        candidate = repair(candidate)
        data = _try_parse(candidate)
        if data is not None:
            logger.info(f"Recovered JSON at stage '{name}'")
            return SalvageResult(data=data, stage=name)

    logger.warning("Text repairs failed, rebuilding from fragments")
    for name, rebuild in REBUILD_STAGES:
        data = rebuild(text)
        if data is not None:
            logger.warning(
                f"Rebuilt {len(data['recommendations'])} recommendations at stage '{name}'"
            )
            return SalvageResult(data=data, stage=name)

    raise JSONSalvageError(f"Could not recover JSON from completion ({len(text)} chars)")
