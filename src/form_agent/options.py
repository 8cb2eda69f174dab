"""Harvest legal option labels from custom (non-native) choice controls."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .backend import Handle, PageBackend
from .config import DEFAULT_BOUNDS, Bounds
from .diagnostics import save_markup_snapshot, snapshot_name
from .errors import BackendError
from .models import FieldRequest
from .selectors import DEFAULT_SELECTORS, FormSelectors

logger = logging.getLogger(__name__)


async def open_panel(
    backend: PageBackend,
    trigger: Handle,
    selectors: FormSelectors = DEFAULT_SELECTORS,
    bounds: Bounds = DEFAULT_BOUNDS,
    force: bool = True,
) -> Optional[Handle]:
    """Click ``trigger`` and return its option panel once visible, or None.

    The panel is the element named by ``aria-controls`` when present, else the
    global menu overlay.
    """
    await backend.click(trigger, timeout_ms=bounds.field_ms, force=force)
    await backend.pause(bounds.option_pause_ms)
    controls = (await backend.attribute(trigger, "aria-controls") or "").strip()
    selector = f'[id="{controls}"]' if controls else selectors.option_panel
    return await backend.wait_for_selector(None, selector, bounds.option_panel_ms)


async def dismiss_panel(backend: PageBackend, panel: Optional[Handle], bounds: Bounds = DEFAULT_BOUNDS) -> bool:
    """Click outside and confirm the panel is hidden. Returns False when it stays open."""
    try:
        await backend.click_outside()
    except BackendError as exc:
        logger.debug("Click outside failed: %s", exc)
    if panel is None:
        return True
    closed = await backend.wait_hidden(panel, bounds.option_dismiss_ms)
    if not closed:
        logger.warning("Option panel did not close within %sms", bounds.option_dismiss_ms)
    return closed


async def read_option_labels(
    backend: PageBackend, panel: Handle, selectors: FormSelectors = DEFAULT_SELECTORS
) -> List[str]:
    labels: List[str] = []
    for item in await backend.query_all(panel, selectors.option_item):
        text = (await backend.text(item)).strip()
        if text:
            labels.append(text)
    return labels


class OptionExtractor:
    """Open a direct-trigger control, read its options in order, close it again."""

    def __init__(
        self,
        backend: PageBackend,
        selectors: FormSelectors = DEFAULT_SELECTORS,
        bounds: Bounds = DEFAULT_BOUNDS,
        snapshot_dir: Optional[Path] = None,
    ) -> None:
        self.backend = backend
        self.selectors = selectors
        self.bounds = bounds
        self.snapshot_dir = snapshot_dir

    async def extract(self, request: FieldRequest) -> List[str]:
        if not request.is_direct_trigger or request.options:
            return list(request.options)

        panel: Optional[Handle] = None
        options: List[str] = []
        error: Optional[str] = None
        try:
            panel = await open_panel(self.backend, request.element, self.selectors, self.bounds)
            if panel is None:
                error = f"option panel not visible within {self.bounds.option_panel_ms}ms"
            else:
                options = await read_option_labels(self.backend, panel, self.selectors)
        except BackendError as exc:
            error = str(exc)
        finally:
            closed = await dismiss_panel(self.backend, panel, self.bounds)
        if error is None and not closed:
            error = f"option panel still open after {self.bounds.option_dismiss_ms}ms"

        if error is not None:
            logger.warning("telemetry:option_extract_failed field=%r error=%s", request.identifier, error)
            await self._snapshot(request, error)
            return []

        logger.info("Extracted %s options for '%s'", len(options), request.identifier)
        return options

    async def _snapshot(self, request: FieldRequest, error: str) -> None:
        if self.snapshot_dir is None:
            return
        await save_markup_snapshot(
            self.backend,
            self.snapshot_dir,
            snapshot_name("option_extract_fail", request.identifier),
            extra={"identifier": request.identifier, "error": error},
        )
