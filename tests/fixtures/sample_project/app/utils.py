"""Validation helpers."""

import re

__all__ = ["validate_email"]

EMAIL_RE = re.compile(r"^[^@]+@[^@]+\.[a-z]+$")


def validate_email(value):
    return bool(EMAIL_RE.match(value))


def unused():
    return 42
