"""Detect events the applicant is already registered for."""

from __future__ import annotations

import logging
from typing import Optional

from .backend import PageBackend
from .config import DEFAULT_BOUNDS, Bounds
from .selectors import DEFAULT_SELECTORS, FormSelectors

logger = logging.getLogger(__name__)

REGISTERED_STATUSES = frozenset(
    {
        "pending approval",
        "you're in",
        "you are registered",
        "on the waitlist",
    }
)


def _normalize(text: str) -> str:
    return " ".join(text.replace("’", "'").replace("‘", "'").split()).lower()


def is_already_registered(text: Optional[str]) -> bool:
    """True when the status text contains any registered/pending/waitlisted status."""
    normalized = _normalize(text or "")
    return bool(normalized) and any(status in normalized for status in REGISTERED_STATUSES)


async def check_registration_status(
    backend: PageBackend,
    selectors: FormSelectors = DEFAULT_SELECTORS,
    bounds: Bounds = DEFAULT_BOUNDS,
) -> bool:
    """Read the event page's status banner; a missing banner means not registered."""
    banner = await backend.wait_for_selector(None, selectors.status_text, bounds.status_ms)
    if banner is None:
        logger.debug("No status banner found; assuming not registered")
        return False
    text = (await backend.text(banner)).strip()
    registered = is_already_registered(text)
    logger.info("Registration status %r -> already registered=%s", text, registered)
    return registered
