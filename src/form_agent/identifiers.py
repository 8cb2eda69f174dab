"""Identifier sanitation shared by discovery and oracle key matching."""

from __future__ import annotations

import re
from typing import Tuple

MANDATORY_MARKER = "*"

_PICTOGRAPHS = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\u2600-\u27BF"
    "\uFE00-\uFE0F"
    "\u200D"
    "]+"
)
_DISALLOWED = re.compile(r"[^\w\s?()\-/.:,]")
_WHITESPACE = re.compile(r"\s+")
_TRAILING = re.compile(r"[^\w()]+$")


def sanitize_identifier(text: str | None) -> str:
    """Normalize label text into the identifier used for the oracle contract.

    Pictographs and symbols are removed, whitespace collapsed, and trailing
    punctuation (including a mandatory ``*``) stripped. The result is a fixed
    point: ``sanitize_identifier(sanitize_identifier(x)) == sanitize_identifier(x)``.
    """
    if not text:
        return ""
    cleaned = _PICTOGRAPHS.sub("", text)
    cleaned = _DISALLOWED.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned)
    cleaned = _TRAILING.sub("", cleaned)
    return cleaned.strip()


def split_mandatory_marker(raw: str | None) -> Tuple[str, bool]:
    """Return ``(text_without_marker, is_mandatory)`` for raw label text."""
    stripped = (raw or "").strip()
    if stripped.endswith(MANDATORY_MARKER):
        return stripped.rstrip(MANDATORY_MARKER).rstrip(), True
    return stripped, False


def identifiers_match(candidate: str | None, identifier: str) -> bool:
    """True when sanitized ``candidate`` text contains the sanitized identifier."""
    wanted = sanitize_identifier(identifier).lower()
    if not wanted:
        return False
    return wanted in sanitize_identifier(candidate).lower()
