"""Apply accepted answers to the page, one field at a time."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .backend import Handle, PageBackend
from .config import DEFAULT_BOUNDS, Bounds
from .errors import BackendError, ElementNotFoundError
from .label_resolver import resolve_checkbox, resolve_field
from .models import AnswerValue, FieldKind, FieldRequest
from .options import dismiss_panel, open_panel
from .selectors import DEFAULT_SELECTORS, FormSelectors

logger = logging.getLogger(__name__)


async def find_option(
    backend: PageBackend, panel: Handle, wanted: str, selectors: FormSelectors = DEFAULT_SELECTORS
) -> Optional[Handle]:
    """Option item whose text equals ``wanted`` (case-insensitive), else the first prefix match."""
    target = wanted.strip().lower()
    if not target:
        return None
    prefix: Optional[Handle] = None
    for item in await backend.query_all(panel, selectors.option_item):
        text = (await backend.text(item)).strip().lower()
        if text == target:
            return item
        if prefix is None and text.startswith(target):
            prefix = item
    return prefix


class FieldCommitter:
    """Kind-specific interactions against a freshly re-resolved element.

    ``commit`` returns the value actually applied, or raises ``ElementNotFoundError``
    (element or option missing) / ``BackendError`` (interaction failed).
    """

    def __init__(
        self,
        backend: PageBackend,
        container: Optional[Handle],
        selectors: FormSelectors = DEFAULT_SELECTORS,
        bounds: Bounds = DEFAULT_BOUNDS,
    ) -> None:
        self.backend = backend
        self.container = container
        self.selectors = selectors
        self.bounds = bounds

    async def locate(self, request: FieldRequest) -> Handle:
        if request.is_direct_trigger and request.element is not None:
            return request.element
        if request.kind is FieldKind.BOOLEAN:
            found = await resolve_checkbox(self.backend, self.container, request.identifier, self.selectors)
        else:
            found = await resolve_field(self.backend, self.container, request.identifier, request.kind, self.selectors)
            if found is None and request.name:
                found = await self._by_name(request.name)
        if found is None:
            raise ElementNotFoundError(request.identifier)
        return found

    async def _by_name(self, name: str) -> Optional[Handle]:
        # Controls without a label or placeholder are only addressable by their name attribute.
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        for candidate in await self.backend.query_all(self.container, f'[name="{escaped}"]'):
            if await self.backend.is_visible(candidate):
                logger.debug("Re-resolved field by name=%r", name)
                return candidate
        return None

    async def commit(self, request: FieldRequest, value: AnswerValue) -> AnswerValue:
        element = await self.locate(request)
        kind = request.kind
        if kind is FieldKind.TEXT:
            text = str(value)
            await self.backend.fill(element, text, self.bounds.field_ms)
            logger.info("Filled '%s'", request.identifier)
            return text
        if kind is FieldKind.SINGLE_CHOICE:
            return await self._commit_single(request, element, str(value))
        if kind is FieldKind.MULTI_CHOICE:
            values = value if isinstance(value, list) else [str(value)]
            return await self._commit_multi(request, element, values)
        return await self._commit_boolean(request, element, bool(value))

    async def _commit_single(self, request: FieldRequest, element: Handle, value: str) -> str:
        if await self.backend.tag_name(element) == "select":
            try:
                await self.backend.select_option(element, label=value)
            except BackendError:
                await self.backend.select_option(element, value=value)
            logger.info("Selected '%s' for '%s'", value, request.identifier)
            return value

        panel = await open_panel(self.backend, element, self.selectors, self.bounds)
        if panel is None:
            await dismiss_panel(self.backend, None, self.bounds)
            raise ElementNotFoundError(f"{request.identifier} (option panel)")
        try:
            option = await find_option(self.backend, panel, value, self.selectors)
            if option is None:
                raise ElementNotFoundError(f"{request.identifier} -> {value}")
            chosen = (await self.backend.text(option)).strip()
            await self.backend.click(option, timeout_ms=self.bounds.field_ms)
        except (BackendError, ElementNotFoundError):
            await dismiss_panel(self.backend, panel, self.bounds)
            raise
        # Selecting usually closes the panel; make sure before the next field opens its own.
        if not await self.backend.wait_hidden(panel, self.bounds.option_match_ms):
            if not await dismiss_panel(self.backend, panel, self.bounds):
                raise BackendError(f"option panel for '{request.identifier}' stayed open")
        logger.info("Selected '%s' for '%s'", chosen, request.identifier)
        return chosen

    async def _commit_multi(self, request: FieldRequest, element: Handle, values: Sequence[str]) -> List[str]:
        panel = await open_panel(self.backend, element, self.selectors, self.bounds)
        if panel is None:
            await dismiss_panel(self.backend, None, self.bounds)
            raise ElementNotFoundError(f"{request.identifier} (option panel)")

        committed: List[str] = []
        try:
            for value in values:
                option = await find_option(self.backend, panel, value, self.selectors)
                if option is None:
                    logger.warning("Option '%s' not found for '%s'", value, request.identifier)
                    continue
                try:
                    await self.backend.click(option, timeout_ms=self.bounds.field_ms)
                except BackendError as exc:
                    logger.warning("Could not select '%s' for '%s': %s", value, request.identifier, exc)
                    continue
                committed.append((await self.backend.text(option)).strip() or value)
                await self.backend.pause(self.bounds.option_pause_ms)
        finally:
            await dismiss_panel(self.backend, panel, self.bounds)

        if not committed:
            raise ElementNotFoundError(f"{request.identifier} -> {list(values)}")
        logger.info("Selected %s of %s options for '%s'", len(committed), len(values), request.identifier)
        return committed

    async def _commit_boolean(self, request: FieldRequest, group: Handle, desired: bool) -> bool:
        checkbox = await self.backend.query(group, self.selectors.checkbox_input)
        target = await self.backend.query(group, self.selectors.checkbox_click_target)
        if checkbox is None or target is None:
            raise ElementNotFoundError(f"{request.identifier} (checkbox)")
        if await self.backend.is_checked(checkbox) == desired:
            return desired

        await self.backend.click(target, timeout_ms=self.bounds.field_ms, force=True)
        await self.backend.pause(self.bounds.checkbox_flip_ms)
        if await self.backend.is_checked(checkbox) != desired:
            raise BackendError(f"checkbox '{request.identifier}' did not flip to {desired}")
        logger.info("Set checkbox '%s' to %s", request.identifier, desired)
        return desired
