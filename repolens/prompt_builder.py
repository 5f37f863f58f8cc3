"""Prompt text for per-file evaluation, repository assessment and summary rollup."""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional

MAX_TAKING = 20
MAX_DEPENDENTS = 20
MAX_CALLING = 30
MAX_ASSESSMENT_FILES = 30

SYSTEM_PROMPT = """You are a code reviewer assistant. Please follow these instructions strictly:
- Provide feedback on errors, improvements, and things done right.
- Use a structured JSON format with keys: errors, improvements, thingsDoneRight.
- Each key should map to a list of issue objects with fields: title, filePath, lineStart, lineEnd, severity, codeSnippet.
- The field 'codeSnippet' must contain the exact code from the file, between lineStart and lineEnd (inclusive).
- Only return a single JSON object first, fenced as ```json ... ```, with no additional explanation.
- After the JSON object, provide a brief summary describing the purpose and functionality of the file.
- Use severity levels: CRITICAL, HIGH, MEDIUM, LOW, ERROR.
"""

ASSESSMENT_SYSTEM_PROMPT = (
    "You are a code quality expert. Answer with short bullet points, one per line, "
    "each starting with '- '."
)

ROLLUP_SYSTEM_PROMPT = "Combine the following summaries into a concise overall summary."


def language_tag(language: Optional[str]) -> str:
    """Code-fence tag for a detected language, empty when there is no good match."""
    if not language:
        return ""
    lang = language.lower()
    if "javascript" in lang or lang in ("js", "jsx"):
        return "javascript"
    if "typescript" in lang or lang in ("ts", "tsx"):
        return "typescript"
    if lang == "py" or "python" in lang:
        return "python"
    if "java" in lang:
        return "java"
    if "html" in lang:
        return "html"
    if "css" in lang:
        return "css"
    return ""


def truncate(content: str, max_chars: int) -> str:
    """Keep the head of ``content``, at most ``max_chars`` characters."""
    if max_chars <= 0 or len(content) <= max_chars:
        return content
    return content[:max_chars]


def _limited(values: Optional[Iterable[str]], limit: int) -> List[str]:
    out: List[str] = []
    for value in values or ():
        value = (value or "").strip()
        if value and value not in out:
            out.append(value)
        if len(out) >= limit:
            break
    return out


def _section(lines: List[str], label: str, values: List[str]) -> None:
    lines.append(label)
    if not values:
        lines.append("  (none)")
    for value in values:
        lines.append(f"  - {value}")


def build_evaluation_prompt(
    file_path: str,
    language: Optional[str],
    content: str,
    taking: Iterable[str] = (),
    dependents: Iterable[str] = (),
    calling: Iterable[str] = (),
) -> str:
    lines = [
        "You are a senior code reviewer. Analyze the following file in the context of its repository.",
        "Return strict JSON with keys: errors, improvements, thingsDoneRight. Each value is a list of IssueItem JSON:",
        '{ "title": string, "filePath": string, "lineStart": number|null, "lineEnd": number|null, '
        '"severity": "LOW"|"MEDIUM"|"HIGH"|"CRITICAL"|"ERROR", "codeSnippet": string|null }',
        "",
        "Repository context for this file:",
        f"- filePath: {file_path}",
        f"- language: {language or 'n/a'}",
    ]
    _section(lines, f"- taking (imports, repo-relative, limited to {MAX_TAKING}):", _limited(taking, MAX_TAKING))
    _section(
        lines,
        f"- dependents (files that import/call this, limited to {MAX_DEPENDENTS}):",
        _limited(dependents, MAX_DEPENDENTS),
    )
    _section(
        lines,
        f"- calling (exported/public symbols, limited to {MAX_CALLING}):",
        _limited(calling, MAX_CALLING),
    )
    lines.extend([
        "",
        "Review goals:",
        "- Identify correctness/security issues and missing error handling.",
        "- Point out performance and scalability issues.",
        "- Note architecture or API misuse problems.",
        "- Suggest concrete, minimal improvements aligned with the codebase style.",
        "- Use the dependency context to check for broken imports/exports or misuse.",
        "",
        "Return the JSON object first, then a short summary of what the file does.",
        "",
        "File content starts:",
        f"```{language_tag(language)}",
        content,
        "```",
    ])
    return "\n".join(lines) + "\n"


def build_assessment_prompt(summaries: Mapping[str, str], file_count: int) -> str:
    lines = [
        "You are a code quality expert reviewing a repository. Based on the following information, "
        "provide an overall assessment of the codebase with key strengths and areas for improvement.",
        "",
        f"Files in the repository ({file_count} total):",
    ]
    for index, (path, summary) in enumerate(summaries.items()):
        if index >= MAX_ASSESSMENT_FILES:
            lines.append(f"... and {file_count - MAX_ASSESSMENT_FILES} more files")
            break
        lines.append(f"- {path}: {summary or '(no summary)'}")
    return "\n".join(lines) + "\n"


def build_rollup_prompt(texts: Iterable[str]) -> str:
    return "\n\n".join(text for text in texts if text)
