"""Trigger the form's commit action and confirm the form went away."""

from __future__ import annotations

import logging
from typing import Optional

from .backend import Handle, PageBackend
from .config import DEFAULT_BOUNDS, Bounds
from .errors import BackendError
from .selectors import DEFAULT_SELECTORS, FormSelectors
from .terms import confirm_surface

logger = logging.getLogger(__name__)


class SubmissionVerifier:
    """Press the submit button once; success means the container is hidden within a bound."""

    def __init__(
        self,
        backend: PageBackend,
        selectors: FormSelectors = DEFAULT_SELECTORS,
        bounds: Bounds = DEFAULT_BOUNDS,
    ) -> None:
        self.backend = backend
        self.selectors = selectors
        self.bounds = bounds

    async def find_submit(self, container: Optional[Handle]) -> Optional[Handle]:
        button = await self.backend.wait_for_selector(
            container, self.selectors.submit_button, self.bounds.submit_ready_ms
        )
        if button is None or not await self.backend.is_enabled(button):
            return None
        return button

    async def submit(self, container: Handle) -> bool:
        button = await self.find_submit(container)
        if button is None:
            logger.warning("Submit button not visible/enabled within %sms", self.bounds.submit_ready_ms)
            return False
        try:
            hidden = await confirm_surface(
                self.backend,
                container,
                button,
                self.bounds.submission_hidden_ms,
                click_timeout_ms=self.bounds.field_ms,
            )
        except BackendError as exc:
            logger.error("Submit click failed: %s", exc)
            return False
        if hidden:
            logger.info("Form submitted; container hidden")
        else:
            logger.warning("Form container still visible %sms after submit", self.bounds.submission_hidden_ms)
        return hidden
