"""Tolerant parsing of LLM classification output.

Model replies are noisy: bare JSON, fenced code blocks, or JSON wrapped in
prose. Candidates are extracted in that order and the first one that decodes
to a JSON object wins. Validation failures come back as a BadOutput value so
the classify loop can count them and move on.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from distill.enums import Category
from distill.llm.errors import LlmBadOutputError

MAX_RAW_OUTPUT_CHARS = 1000

CATEGORY_ALIASES = {
    "ETHICAL": Category.PERSONAL,
    "ETHICS": Category.PERSONAL,
    "MORAL": Category.PERSONAL,
    "VALUES": Category.PERSONAL,
}

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_SEPARATOR_RE = re.compile(r"[\s\-]+")

VALID_CATEGORIES = {c.value for c in Category}


@dataclass(frozen=True)
class ParsedLabel:
    category: Category
    confidence: float
    aliased_from: Optional[str] = None


@dataclass(frozen=True)
class BadOutput:
    """Rejected model output with capped raw text for diagnostics."""

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    bad_category: Optional[str] = None

    def to_error(self) -> LlmBadOutputError:
        return LlmBadOutputError(self.message, self.details)


ClassifyParseResult = Union[ParsedLabel, BadOutput]


def _balanced_object(text: str) -> Optional[str]:
    """First balanced {...} span, ignoring braces inside JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
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
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def extract_candidates(raw: str) -> List[str]:
    """Ordered, de-duplicated JSON candidates: raw text, fenced blocks, brace scan."""
    candidates: List[str] = []

    def add(candidate: Optional[str]) -> None:
        if candidate is None:
            return
        candidate = candidate.strip()
        if candidate and candidate not in candidates:
            candidates.append(candidate)

    add(raw)
    for match in _FENCE_RE.finditer(raw):
        add(match.group(1))
    add(_balanced_object(raw))
    return candidates


def normalize_category(value: str) -> str:
    """Upper-case and collapse spaces/hyphens to underscores."""
    return _SEPARATOR_RE.sub("_", value.strip()).upper()


def parse_classify_output(raw: str) -> ClassifyParseResult:
    """
    Parse one classification reply.

    Args:
        raw: Model response text

    Returns:
        ParsedLabel on success, BadOutput describing the first failure otherwise
    """
    raw_capped = raw[:MAX_RAW_OUTPUT_CHARS]
    candidates = extract_candidates(raw)

    parsed: Any = None
    decoded = False
    parse_errors: List[str] = []
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError as e:
            parse_errors.append(str(e)[:200])
            continue
        decoded = True
        if isinstance(value, dict):
            parsed = value
            break

    if not decoded:
        return BadOutput(
            "LLM output is not valid JSON",
            {
                "rawOutput": raw_capped,
                "candidatesTried": len(candidates),
                "parseErrors": parse_errors,
            },
        )

    if parsed is None:
        return BadOutput("LLM output is not a JSON object", {"rawOutput": raw_capped})

    category = parsed.get("category")
    if not isinstance(category, str) or not category.strip():
        return BadOutput("LLM output is missing a string category", {"rawOutput": raw_capped})

    normalized = normalize_category(category)
    aliased_from = None
    if normalized in CATEGORY_ALIASES:
        aliased_from = normalized
        normalized = CATEGORY_ALIASES[normalized].value
    if normalized not in VALID_CATEGORIES:
        return BadOutput(
            f"LLM output has invalid category: {category[:100]}",
            {"rawOutput": raw_capped, "category": category[:100]},
            bad_category=normalized[:100],
        )

    confidence = parsed.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return BadOutput("LLM output is missing a numeric confidence", {"rawOutput": raw_capped})
    if not 0 <= confidence <= 1:
        return BadOutput(
            f"LLM output confidence out of range [0, 1]: {confidence}",
            {
                "rawOutput": raw_capped,
                "confidence": confidence if math.isfinite(confidence) else str(confidence),
            },
        )

    return ParsedLabel(category=Category(normalized), confidence=float(confidence), aliased_from=aliased_from)
