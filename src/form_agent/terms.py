"""Secondary terms-signature dialog and the shared fill/confirm/wait-hidden routine."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from .backend import Handle, PageBackend
from .config import DEFAULT_BOUNDS, Bounds
from .errors import BackendError, ElementNotFoundError, MandatoryUnresolvedError, SecondaryDialogTimeoutError
from .label_resolver import find_with_text, wait_for_text
from .profile import ProfileStore
from .selectors import DEFAULT_SELECTORS, FormSelectors

logger = logging.getLogger(__name__)


class TermsState(str, Enum):
    IDLE = "idle"
    AWAITING_SECONDARY_DIALOG = "awaiting_secondary_dialog"
    SIGNING = "signing"
    CLOSED = "closed"
    FAILED = "failed"


async def confirm_surface(
    backend: PageBackend,
    surface: Handle,
    confirm: Handle,
    timeout_ms: int,
    *,
    fill_target: Optional[Handle] = None,
    value: Optional[str] = None,
    click_timeout_ms: int = DEFAULT_BOUNDS.field_ms,
) -> bool:
    """Optionally fill one field, press ``confirm``, then wait for ``surface`` to disappear.

    Returns True once the surface is hidden within ``timeout_ms``. Interaction
    failures propagate as ``BackendError``.
    """
    if fill_target is not None and value is not None:
        await backend.fill(fill_target, value, click_timeout_ms)
    await backend.click(confirm, timeout_ms=click_timeout_ms)
    return await backend.wait_hidden(surface, timeout_ms)


class TermsSubflow:
    """Sign the terms dialog that replaces a mandatory checkbox which refuses to flip."""

    def __init__(
        self,
        backend: PageBackend,
        profile: ProfileStore,
        selectors: FormSelectors = DEFAULT_SELECTORS,
        bounds: Bounds = DEFAULT_BOUNDS,
    ) -> None:
        self.backend = backend
        self.profile = profile
        self.selectors = selectors
        self.bounds = bounds
        self.state = TermsState.IDLE

    async def run(self, identifier: str) -> bool:
        self.state = TermsState.AWAITING_SECONDARY_DIALOG
        dialog = await wait_for_text(
            self.backend,
            None,
            self.selectors.terms_dialog,
            [self.selectors.terms_dialog_text],
            self.bounds.terms_dialog_ms,
        )
        if dialog is None:
            self.state = TermsState.FAILED
            raise SecondaryDialogTimeoutError(
                f"terms dialog for '{identifier}' did not appear within {self.bounds.terms_dialog_ms}ms"
            )

        name = self.profile.full_name
        if not name:
            self.state = TermsState.FAILED
            logger.error("Terms dialog for '%s' needs a signature but the profile has no full name", identifier)
            raise MandatoryUnresolvedError([identifier])

        self.state = TermsState.SIGNING
        textarea = await self.backend.query(dialog, self.selectors.terms_textarea)
        confirm = await find_with_text(
            self.backend, dialog, self.selectors.terms_confirm, [self.selectors.terms_confirm_text]
        )
        if textarea is None or confirm is None:
            self.state = TermsState.FAILED
            raise ElementNotFoundError(f"{identifier} (terms dialog controls)")

        try:
            closed = await confirm_surface(
                self.backend,
                dialog,
                confirm,
                self.bounds.terms_close_ms,
                fill_target=textarea,
                value=name,
                click_timeout_ms=self.bounds.field_ms,
            )
        except BackendError:
            self.state = TermsState.FAILED
            raise
        if not closed:
            self.state = TermsState.FAILED
            raise SecondaryDialogTimeoutError(
                f"terms dialog for '{identifier}' stayed open after signing"
            )

        self.state = TermsState.CLOSED
        logger.info("Signed terms dialog for '%s'", identifier)
        return True
