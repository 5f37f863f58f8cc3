"""Filesystem walker that builds a filtered repository tree.

Directories on the denylist, hidden entries, oversized files and binary files
are left out. Binary detection goes from cheapest to most expensive: the
extension denylist, a MIME probe, then a look at the first kilobyte.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import re
from pathlib import Path
from typing import Optional, Set, Union

from .errors import InvalidPathError
from .models import FileTreeNode, RepositoryTree

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 1_000_000
SAMPLE_SIZE = 1024
CONTROL_CHAR_RATIO = 0.10

IGNORED_DIRS = frozenset({
    "node_modules", "target", "build", "dist", "venv", "__pycache__", "bin", "obj",
})

# Build manifests are always kept, even if the byte probe disagrees.
IMPORTANT_FILES = frozenset({"pom.xml", "build.gradle", "package.json", "package-lock.json"})

BINARY_EXTENSIONS = frozenset({
    "jar", "war", "ear", "zip", "tar", "gz", "rar", "7z",
    "jpg", "jpeg", "png", "gif", "bmp", "ico", "svg",
    "pdf", "doc", "docx", "ppt", "pptx", "xls", "xlsx",
    "class", "so", "dll", "exe", "bin",
})

# mimetypes maps some of these to media types (".ts" is MPEG transport stream).
SOURCE_EXTENSIONS = frozenset({
    "java", "kt", "scala", "groovy", "py", "js", "jsx", "mjs", "cjs", "ts", "tsx",
    "go", "rb", "php", "cs", "c", "h", "cpp", "hpp", "rs", "swift", "sh",
    "css", "scss", "html", "htm", "md", "json", "yml", "yaml", "xml", "toml",
    "ini", "cfg", "properties", "gradle", "sql", "txt",
})

_TEXT_MIME_TYPES = frozenset({
    "application/json", "application/xml", "application/javascript",
    "application/x-javascript", "application/x-sh", "application/x-python",
    "application/toml", "application/yaml", "application/x-yaml",
})
_BINARY_MIME_MAJORS = frozenset({"image", "audio", "video", "font"})

_MAGIC_BINARY = (b"PK", b"\xff\xd8", b"\x89PNG")
_UTF8_BOM = b"\xef\xbb\xbf"

_REMOTE_REF = re.compile(r"^(?:[A-Za-z][A-Za-z0-9+.-]+://|git@|[\w.-]+@[\w.-]+:)")


def is_remote_reference(value: str) -> bool:
    return bool(_REMOTE_REF.match(value.strip()))


def is_ignored_dir(name: str) -> bool:
    return name.startswith(".") or name in IGNORED_DIRS


def _extension(name: str) -> str:
    stem = name.lstrip(".")
    return stem.rsplit(".", 1)[-1].lower() if "." in stem else ""


def _mime_verdict(name: str) -> Optional[bool]:
    """Return True for binary, False for text, None when the MIME type is inconclusive."""
    if _extension(name) in SOURCE_EXTENSIONS:
        return None
    mime, _ = mimetypes.guess_type(name)
    if not mime:
        return None
    major = mime.split("/", 1)[0]
    if major == "text" or mime in _TEXT_MIME_TYPES or mime.endswith(("+xml", "+json")):
        return False
    if major in _BINARY_MIME_MAJORS:
        return True
    return None


def looks_binary(sample: bytes) -> bool:
    """Classify a leading byte sample as binary."""
    if not sample or sample.startswith(_UTF8_BOM):
        return False
    if sample.startswith(_MAGIC_BINARY):
        return True
    control = sum(1 for b in sample if b < 0x09 or (0x0D < b < 0x20 and b != 0x1B))
    return control / len(sample) > CONTROL_CHAR_RATIO


def is_binary(path: Path) -> bool:
    name = path.name
    if _extension(name) in BINARY_EXTENSIONS:
        return True
    verdict = _mime_verdict(name)
    if verdict is not None:
        return verdict
    try:
        with open(path, "rb") as f:
            sample = f.read(SAMPLE_SIZE)
    except OSError as exc:
        logger.debug("Cannot sample %s, treating as binary: %s", path, exc)
        return True
    return looks_binary(sample)


def should_include_file(path: Path, size: Optional[int], max_file_size: int = DEFAULT_MAX_FILE_SIZE) -> bool:
    name = path.name
    if name.startswith("."):
        return False
    # An unknown size counts as too large.
    if size is None or size > max_file_size:
        return False
    if name in IMPORTANT_FILES:
        return True
    return not is_binary(path)


def _entry_size(entry: os.DirEntry) -> Optional[int]:
    try:
        return entry.stat(follow_symlinks=True).st_size
    except OSError:
        return None


def walk(root_path: Union[str, Path], max_file_size: int = DEFAULT_MAX_FILE_SIZE) -> RepositoryTree:
    """Build the filtered tree for a local repository checkout.

    Raises:
        InvalidPathError: the root is a remote reference, missing, or not a directory.
    """
    raw = str(root_path)
    if is_remote_reference(raw):
        raise InvalidPathError(f"Remote references are not supported, clone first: {raw}")
    root = Path(raw).expanduser()
    if not root.exists():
        raise InvalidPathError(f"Path does not exist: {root}")
    if not root.is_dir():
        raise InvalidPathError(f"Path is not a directory: {root}")
    root = root.resolve()

    root_node = FileTreeNode(path="", is_dir=True)
    visited: Set[str] = {os.path.realpath(root)}
    _walk_directory(root, root_node, visited, max_file_size)

    tree = RepositoryTree(root_path=root, root=root_node)
    logger.info("Walked %s: %d files, %d directories", root, tree.file_count, tree.directory_count)
    return tree


def _walk_directory(directory: Path, node: FileTreeNode, visited: Set[str], max_file_size: int) -> None:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        logger.warning("Skipping unreadable directory %s: %s", directory, exc)
        return

    for entry in entries:
        rel_path = f"{node.path}/{entry.name}" if node.path else entry.name
        try:
            entry_is_dir = entry.is_dir(follow_symlinks=True)
        except OSError:
            continue

        if entry_is_dir:
            if is_ignored_dir(entry.name):
                continue
            real = os.path.realpath(entry.path)
            if real in visited:
                logger.debug("Skipping already visited directory %s", rel_path)
                continue
            visited.add(real)
            child = FileTreeNode(path=rel_path, is_dir=True)
            node.add_child(child)
            _walk_directory(Path(entry.path), child, visited, max_file_size)
            continue

        if not entry.is_symlink() and not entry.is_file():
            continue
        size = _entry_size(entry)
        if should_include_file(Path(entry.path), size, max_file_size):
            node.add_child(FileTreeNode(path=rel_path, is_dir=False, size=size or 0))
