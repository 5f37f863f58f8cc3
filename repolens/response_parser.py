"""Tolerant parsing of model responses into categorized issues.

Models are asked for a fenced JSON object followed by a one-paragraph file
summary, but they do not always comply. :func:`parse` therefore tries, in
order:

1. the whole text as JSON,
2. every brace-balanced ``{...}`` span, largest first,
3. a markdown layout with ``## Errors`` / ``## Improvements`` /
   ``## Things Done Right`` / ``## General Comments`` sections.

All three produce the same shape, which :func:`categorize` turns into
:class:`~repolens.models.IssueItem` lists.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ParseFailure
from .models import (
    CATEGORIES,
    ERRORS,
    IMPROVEMENTS,
    THINGS_DONE_RIGHT,
    EvaluationOutcome,
    IssueItem,
    Severity,
    normalize_path,
)

logger = logging.getLogger(__name__)

GENERAL_GROUP = "general"
GENERAL_COMMENTS = "generalComments"
FLAT_ISSUES = "issues"

_CATEGORY_ALIASES = {
    ERRORS: ERRORS,
    IMPROVEMENTS: IMPROVEMENTS,
    THINGS_DONE_RIGHT: THINGS_DONE_RIGHT,
    "things_done_right": THINGS_DONE_RIGHT,
    "thingsdoneright": THINGS_DONE_RIGHT,
}

_FENCE_OPEN = re.compile(r"```[ \t]*(json|JSON)?[ \t]*\n?")
_SUMMARY_LABEL = re.compile(r"^[#*\s]*summary\b[*\s]*(?::|\n)[*\s]*", re.IGNORECASE)

_SECTION_HEADER = re.compile(
    r"^##(?!#)[ \t]*(errors|improvements|things done right|general comments)[ \t]*:?[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
_SECTION_KEYS = {
    "errors": ERRORS,
    "improvements": IMPROVEMENTS,
    "things done right": THINGS_DONE_RIGHT,
    "general comments": GENERAL_COMMENTS,
}
_FILE_HEADER = re.compile(r"^###[ \t]+(.+?)[ \t]*$")
_BULLET = re.compile(r"^\s*[-*]\s+(.*)$")
_SEVERITY_TAG = re.compile(r"^\s*\[([A-Za-z]+)\]\s*")
_LINE_MARKER = re.compile(r"\(?\bLines?\s+(\d+)(?:\s*[-–]\s*(\d+))?\)?:?", re.IGNORECASE)
_CODE_BLOCK = re.compile(r"```[\w+-]*\n?(.*?)```", re.DOTALL)


# ------------------------------------------------------------------
# Fence splitting
# ------------------------------------------------------------------

@dataclass(frozen=True)
class FencedResponse:
    json_part: str
    summary: str


def split_fenced_response(raw: str) -> FencedResponse:
    """Separate a fenced JSON block from the free-text summary after it."""
    text = (raw or "").strip()
    match = _FENCE_OPEN.search(text)
    if not match:
        return FencedResponse(text, "")
    body_start = match.end()
    # A plain fence only counts when it wraps JSON; otherwise it is a code sample.
    if not match.group(1) and not text[body_start:].lstrip().startswith(("{", "[")):
        return FencedResponse(text, "")
    close = text.find("```", body_start)
    if close == -1:
        return FencedResponse(text[body_start:].strip(), "")
    summary = text[close + 3:].strip()
    summary = _SUMMARY_LABEL.sub("", summary, count=1).strip()
    return FencedResponse(text[body_start:close].strip(), summary)


# ------------------------------------------------------------------
# Tiers 1 and 2: JSON
# ------------------------------------------------------------------

def _load_json(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {FLAT_ISSUES: value}
    return None


def _match_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
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
                return index
    return None


def balanced_spans(text: str) -> List[str]:
    """Top-level brace-balanced substrings, largest first."""
    spans = []
    position = 0
    while True:
        start = text.find("{", position)
        if start == -1:
            break
        end = _match_brace(text, start)
        if end is None:
            # Unbalanced brace in prose; try the next one.
            position = start + 1
            continue
        spans.append(text[start:end + 1])
        position = end + 1
    return sorted(spans, key=len, reverse=True)


# ------------------------------------------------------------------
# Tier 3: structured text
# ------------------------------------------------------------------

def _issue_from_bullet(text: str) -> Dict[str, Any]:
    snippet = None
    code = _CODE_BLOCK.search(text)
    if code:
        snippet = code.group(1).rstrip("\n")
        text = text[:code.start()] + text[code.end():]

    severity = None
    tag = _SEVERITY_TAG.match(text)
    if tag:
        severity = tag.group(1).upper()
        text = text[tag.end():]

    line_start = line_end = None
    marker = _LINE_MARKER.search(text)
    if marker:
        line_start = int(marker.group(1))
        line_end = int(marker.group(2)) if marker.group(2) else line_start
        text = text[:marker.start()] + " " + text[marker.end():]

    title = " ".join(text.split()).strip(" :-–")
    return {
        "title": title,
        "lineStart": line_start,
        "lineEnd": line_end,
        "severity": severity,
        "codeSnippet": snippet,
    }


def _bullets(section: str) -> List[str]:
    """Split a section into bullet texts; fenced code stays with its bullet."""
    items: List[List[str]] = []
    in_fence = False
    for line in section.splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
            if items:
                items[-1].append(line)
            continue
        bullet = None if in_fence else _BULLET.match(line)
        if bullet:
            items.append([bullet.group(1)])
        elif items and (line.strip() or in_fence):
            items[-1].append(line)
    return ["\n".join(lines).strip() for lines in items if "".join(lines).strip()]


def _parse_issue_section(section: str) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[str]] = {}
    current = GENERAL_GROUP
    buffer: List[str] = []
    for line in section.splitlines():
        header = _FILE_HEADER.match(line)
        if header:
            groups.setdefault(current, []).append("\n".join(buffer))
            current = header.group(1).strip().strip("`*")
            buffer = []
        else:
            buffer.append(line)
    groups.setdefault(current, []).append("\n".join(buffer))

    parsed: Dict[str, List[Dict[str, Any]]] = {}
    for group, chunks in groups.items():
        issues = [_issue_from_bullet(b) for chunk in chunks for b in _bullets(chunk)]
        if issues:
            parsed[group] = issues
    return parsed


def _parse_general_comments(section: str) -> List[str]:
    bullets = [" ".join(b.split()) for b in _bullets(section)]
    if bullets:
        return bullets
    return [line.strip() for line in section.splitlines() if line.strip()]


def parse_structured_text(text: str) -> Optional[Dict[str, Any]]:
    """Parse the markdown section layout; ``None`` when no section header is present."""
    headers = list(_SECTION_HEADER.finditer(text))
    if not headers:
        return None
    result: Dict[str, Any] = {ERRORS: {}, IMPROVEMENTS: {}, THINGS_DONE_RIGHT: {}, GENERAL_COMMENTS: []}
    for index, header in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        body = text[header.end():end]
        key = _SECTION_KEYS[header.group(1).lower()]
        if key == GENERAL_COMMENTS:
            result[key].extend(_parse_general_comments(body))
        else:
            for group, issues in _parse_issue_section(body).items():
                result[key].setdefault(group, []).extend(issues)
    return result


def parse(raw: str) -> Dict[str, Any]:
    """Recover a JSON-shaped evaluation from model output.

    Raises:
        ParseFailure: none of the three tiers found any structure.
    """
    text = (raw or "").strip()
    if not text:
        raise ParseFailure("Empty response")

    parsed = _load_json(text)
    if parsed is not None:
        return parsed
    logger.debug("Response is not valid JSON, looking for an embedded object")

    for candidate in balanced_spans(text):
        parsed = _load_json(candidate)
        if parsed is not None:
            return parsed
    logger.debug("No embedded JSON object, falling back to structured text")

    parsed = parse_structured_text(text)
    if parsed is not None:
        return parsed
    raise ParseFailure(f"Could not parse response: {text[:80]!r}")


# ------------------------------------------------------------------
# Normalization
# ------------------------------------------------------------------

@dataclass(frozen=True)
class IssueList:
    """A category given as a plain list of issue objects or strings."""

    items: Tuple[Any, ...]


@dataclass(frozen=True)
class IssuesByFile:
    """A category given as ``{file path or group: issues}``."""

    groups: Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class SingleIssue:
    """A category given as one issue object or one string."""

    item: Union[Dict[str, Any], str]


IssueSource = Union[IssueList, IssuesByFile, SingleIssue]

_TITLE_KEYS = ("title", "description", "message", "issue")


def _is_issue_mapping(value: Dict[str, Any]) -> bool:
    return any(isinstance(value.get(key), str) for key in _TITLE_KEYS)


def classify(value: Any) -> Optional[IssueSource]:
    if isinstance(value, list):
        return IssueList(tuple(value))
    if isinstance(value, dict):
        if _is_issue_mapping(value):
            return SingleIssue(value)
        return IssuesByFile(tuple(value.items()))
    if isinstance(value, str) and value.strip():
        return SingleIssue(value.strip())
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _first(mapping: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def issue_from_mapping(data: Dict[str, Any], default_path: str) -> IssueItem:
    title = _first(data, *_TITLE_KEYS)
    line_start = _as_int(_first(data, "lineStart", "line_start", "lineNumber", "line"))
    line_end = _as_int(_first(data, "lineEnd", "line_end"))
    snippet = _first(data, "codeSnippet", "code_snippet", "codeContext")
    path = _first(data, "filePath", "file_path", "file")
    return IssueItem(
        title=str(title).strip() if title is not None else "No description provided",
        file_path=normalize_path(str(path)) if path else default_path,
        line_start=line_start,
        line_end=line_end,
        severity=Severity.parse(data.get("severity")),
        code_snippet=str(snippet) if snippet is not None else None,
    )


def _item(value: Any, default_path: str) -> Optional[IssueItem]:
    if isinstance(value, dict):
        return issue_from_mapping(value, default_path)
    if isinstance(value, str) and value.strip():
        return IssueItem(title=value.strip(), file_path=default_path)
    return None


def _items(values: Any, default_path: str) -> List[IssueItem]:
    if not isinstance(values, (list, tuple)):
        values = [values]
    return [item for item in (_item(v, default_path) for v in values) if item is not None]


def to_issues(source: IssueSource, file_path: str) -> List[IssueItem]:
    if isinstance(source, IssueList):
        return _items(source.items, file_path)
    if isinstance(source, SingleIssue):
        return _items([source.item], file_path)
    issues: List[IssueItem] = []
    for group, values in source.groups:
        group_path = normalize_path(str(group))
        default = file_path if not group_path or group_path == GENERAL_GROUP else group_path
        issues.extend(_items(values, default))
    return issues


def categorize(parsed: Dict[str, Any], file_path: str) -> Tuple[Dict[str, List[IssueItem]], List[IssueItem]]:
    """Split a parsed evaluation into trusted category buckets and a flat list.

    Returns:
        ``(categories, flat)`` where ``categories`` always has the three
        category keys and ``flat`` still needs keyword categorization.
    """
    file_path = normalize_path(file_path)
    categories: Dict[str, List[IssueItem]] = {category: [] for category in CATEGORIES}
    flat: List[IssueItem] = []
    for key, value in parsed.items():
        category = _CATEGORY_ALIASES.get(key) or _CATEGORY_ALIASES.get(key.lower())
        source = classify(value)
        if source is None:
            continue
        if category is not None:
            categories[category].extend(to_issues(source, file_path))
        elif key == FLAT_ISSUES:
            flat.extend(to_issues(source, file_path))
    return categories, flat


def general_comments(parsed: Dict[str, Any]) -> List[str]:
    value = parsed.get(GENERAL_COMMENTS)
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def outcome_from_response(raw: str, file_path: str) -> EvaluationOutcome:
    """Turn one raw completion into an :class:`EvaluationOutcome`.

    A response with no recoverable structure yields an outcome with empty
    categories; the trailing summary is kept either way.
    """
    fenced = split_fenced_response(raw)
    try:
        parsed = parse(fenced.json_part)
    except ParseFailure as exc:
        logger.warning("Unparseable evaluation for %s: %s", file_path, exc)
        return EvaluationOutcome.success(file_path, summary=fenced.summary or None)

    categories, flat = categorize(parsed, file_path)
    summary = fenced.summary
    if not summary and isinstance(parsed.get("summary"), str):
        summary = parsed["summary"].strip()
    return EvaluationOutcome.success(
        file_path,
        categories=categories,
        issues=flat,
        summary=summary or None,
        general_comments=general_comments(parsed),
        parsed=parsed,
    )
