"""Per-file records handed to a persistence collaborator."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol

from .graph_context import FileGraphContext
from .models import FileTreeNode

logger = logging.getLogger(__name__)

MAX_SNIPPET_CHARS = 4000
MAX_HASH_BYTES = 512_000


@dataclass
class FileRecord:
    path: str
    language: Optional[str]
    size: int
    line_count: int
    content_hash: str
    snippet: str
    taking: List[str] = field(default_factory=list)
    calling: List[str] = field(default_factory=list)
    summary: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "repoRelativePath": self.path,
            "language": self.language,
            "size": self.size,
            "lineCount": self.line_count,
            "contentHash": self.content_hash,
            "snippet": self.snippet,
            "taking": list(self.taking),
            "calling": list(self.calling),
            "summary": self.summary,
        }


def content_hash(data: bytes) -> str:
    """SHA-256 over at most the first 512,000 bytes."""
    return hashlib.sha256(data[:MAX_HASH_BYTES]).hexdigest()


def count_lines(text: str) -> int:
    if not text:
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


def build_record(root: Path, node: FileTreeNode, context: FileGraphContext) -> FileRecord:
    data = (Path(root) / node.path).read_bytes()
    text = node.content if node.content is not None else data.decode("utf-8", errors="replace")
    return FileRecord(
        path=node.path,
        language=context.language(node.path),
        size=len(data),
        line_count=count_lines(text),
        content_hash=content_hash(data),
        snippet=text[:MAX_SNIPPET_CHARS],
        taking=list(context.taking(node.path)),
        calling=list(context.calling(node.path)),
        summary=node.summary,
    )


class RecordSink(Protocol):
    def write(self, record: FileRecord) -> None:
        ...


class JsonLinesRecordSink:
    """Appends one JSON object per record to a file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, record: FileRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


def write_records(root: Path, nodes: List[FileTreeNode], context: FileGraphContext, sink: RecordSink) -> int:
    """Build and deliver a record per node; unreadable files are skipped."""
    written = 0
    for node in nodes:
        try:
            record = build_record(root, node, context)
        except OSError as exc:
            logger.warning("Skipping record for %s: %s", node.path, exc)
            continue
        sink.write(record)
        written += 1
    return written
