"""Configuration paths for RepoLens local state."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("REPOLENS_HOME", str(Path.home() / ".repolens"))).expanduser()
DUMP_DIR = BASE_DIR / "evaluations"
