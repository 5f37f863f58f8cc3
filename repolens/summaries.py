"""Repository-level write-ups built from per-file summaries."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping, Optional, Tuple

from .config_manager import ReviewSettings
from .errors import CompletionError
from .prompt_builder import (
    ASSESSMENT_SYSTEM_PROMPT,
    ROLLUP_SYSTEM_PROMPT,
    build_assessment_prompt,
    build_rollup_prompt,
)

logger = logging.getLogger(__name__)

ROLLUP_TEMPERATURE = 0.3


def parse_bullets(text: str) -> List[str]:
    """Split a bulleted reply into comments; continuation lines join the bullet above."""
    comments: List[str] = []
    current: List[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            if current:
                comments.append(" ".join(current))
                current = []
        elif line.startswith(("-", "•", "*")):
            if current:
                comments.append(" ".join(current))
            current = [line[1:].strip()]
        else:
            current.append(line)
    if current:
        comments.append(" ".join(current))
    return [comment for comment in comments if comment]


def overall_assessment(
    client,
    summaries: Mapping[str, str],
    file_count: int,
    settings: Optional[ReviewSettings] = None,
) -> List[str]:
    """One extra completion over the file summaries, returned as general comments."""
    settings = settings or ReviewSettings()
    prompt = build_assessment_prompt(summaries, file_count)
    try:
        response = client.complete(
            ASSESSMENT_SYSTEM_PROMPT, prompt, max_tokens=settings.max_tokens, temperature=settings.temperature
        )
    except Exception as exc:  # reported in the comments instead
        logger.warning("Overall assessment failed: %s", exc)
        return [f"Failed to generate overall assessment: {exc}"]
    return parse_bullets(response)


class SummaryCache:
    """In-memory folder and root summaries, keyed by run id."""

    def __init__(self):
        self._folders: Dict[Tuple[str, str], str] = {}
        self._roots: Dict[str, str] = {}
        self._lock = threading.Lock()

    def folder(self, run_id: str, path: str) -> Optional[str]:
        with self._lock:
            return self._folders.get((run_id, path))

    def save_folder(self, run_id: str, path: str, summary: str) -> None:
        with self._lock:
            self._folders[(run_id, path)] = summary

    def root(self, run_id: str) -> Optional[str]:
        with self._lock:
            return self._roots.get(run_id)

    def save_root(self, run_id: str, summary: str) -> None:
        with self._lock:
            self._roots[run_id] = summary


class SummaryRollup:
    """Folds file summaries into one summary per folder, then one for the repository."""

    def __init__(self, client, cache: Optional[SummaryCache] = None, settings: Optional[ReviewSettings] = None):
        self.client = client
        self.cache = cache or SummaryCache()
        self.settings = settings or ReviewSettings()

    def summarize_texts(self, texts: List[str]) -> str:
        texts = [text for text in texts if text]
        if not texts:
            return ""
        return self.client.complete(
            ROLLUP_SYSTEM_PROMPT,
            build_rollup_prompt(texts),
            max_tokens=self.settings.max_tokens,
            temperature=ROLLUP_TEMPERATURE,
        )

    def rollup(self, run_id: str, file_summaries: Mapping[str, str]) -> Tuple[Dict[str, str], Optional[str]]:
        by_folder: Dict[str, List[str]] = {}
        for path, summary in file_summaries.items():
            folder = path.rsplit("/", 1)[0] if "/" in path else ""
            by_folder.setdefault(folder, []).append(summary)

        folder_summaries: Dict[str, str] = {}
        for folder in sorted(by_folder):
            if not folder:
                continue
            summary = self.cache.folder(run_id, folder)
            if summary is None:
                try:
                    summary = self.summarize_texts(by_folder[folder])
                except CompletionError as exc:
                    logger.warning("Folder summary for %s failed: %s", folder, exc)
                    continue
                self.cache.save_folder(run_id, folder, summary)
            folder_summaries[folder] = summary

        root_summary = self.cache.root(run_id)
        if root_summary is None:
            try:
                root_summary = self.summarize_texts(list(folder_summaries.values()) + by_folder.get("", []))
            except CompletionError as exc:
                logger.warning("Root summary failed: %s", exc)
                return folder_summaries, None
            self.cache.save_root(run_id, root_summary)
        return folder_summaries, root_summary or None
