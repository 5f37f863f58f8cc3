"""RepoLens: LLM-assisted per-file code review for local repositories."""

__version__ = "0.1.0"
