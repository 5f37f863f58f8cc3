"""Exception types raised across the review pipeline."""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for all RepoLens errors."""


class InvalidPathError(ReviewError):
    """Root path is missing, not a directory, or refers to a remote location."""


class ExtractionWarning(UserWarning):
    """A single file could not be read during dependency extraction."""


class CompletionError(ReviewError):
    """The completion backend failed after exhausting its retries."""


class ParseFailure(ReviewError):
    """No parser tier could recover structure from a model response."""


class RateLimitTimeout(ReviewError):
    """Tokens did not become available before the acquire deadline."""


class RateLimiterClosed(ReviewError):
    """The limiter was closed while a caller was waiting for tokens."""


class EvaluationCancelled(ReviewError):
    """A running evaluation noticed the batch deadline and stopped early."""
