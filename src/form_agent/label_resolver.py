"""Locate the interactive element best associated with an identifying text."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .backend import Handle, PageBackend
from .identifiers import identifiers_match, sanitize_identifier
from .models import FieldKind
from .selectors import DEFAULT_SELECTORS, FormSelectors

logger = logging.getLogger(__name__)

Strategy = Callable[[PageBackend, Optional[Handle], Handle, str], Awaitable[Optional[Handle]]]


async def first_visible(backend: PageBackend, handles: Sequence[Handle]) -> Optional[Handle]:
    for handle in handles:
        if await backend.is_visible(handle):
            return handle
    return None


async def find_with_text(
    backend: PageBackend,
    scope: Optional[Handle],
    selector: str,
    texts: Sequence[str],
) -> Optional[Handle]:
    """First visible element matching ``selector`` whose text contains any of ``texts``."""
    wanted = [text.lower() for text in texts if text]
    for handle in await backend.query_all(scope, selector):
        content = (await backend.text(handle)).lower()
        if any(text in content for text in wanted) and await backend.is_visible(handle):
            return handle
    return None


async def wait_for_text(
    backend: PageBackend,
    scope: Optional[Handle],
    selector: str,
    texts: Sequence[str],
    timeout_ms: int,
    poll_ms: int = 250,
) -> Optional[Handle]:
    """Poll ``find_with_text`` until it matches or ``timeout_ms`` elapses."""
    polls = max(1, timeout_ms // max(1, poll_ms))
    for attempt in range(polls):
        found = await find_with_text(backend, scope, selector, texts)
        if found is not None:
            return found
        if attempt < polls - 1:
            await backend.pause(poll_ms)
    return None


async def resolve_field(
    backend: PageBackend,
    container: Optional[Handle],
    identifier: str,
    kind_hint: Optional[FieldKind] = None,
    selectors: FormSelectors = DEFAULT_SELECTORS,
) -> Optional[Handle]:
    """Return the field associated with ``identifier`` inside ``container`` or None.

    Labels are tried exact-match first. For each label the strategies run in
    order: ``for``/id association, field nested in the label, field sharing the
    label's parent, field inside the parent's next sibling. The placeholder
    anchor is the last resort. Resolution never raises.
    """
    field_selector = selectors.choice_fields() if kind_hint and kind_hint.is_choice else selectors.native_field
    try:
        for label in await _matching_labels(backend, container, identifier):
            for strategy in _LABEL_STRATEGIES:
                found = await strategy(backend, container, label, field_selector)
                if found is not None:
                    logger.debug("Resolved '%s' via %s", identifier, strategy.__name__)
                    return found
        found = await _by_placeholder(backend, container, identifier, selectors, kind_hint)
        if found is not None:
            logger.debug("Resolved '%s' via placeholder", identifier)
            return found
    except Exception as exc:  # noqa: BLE001 - not-found is the only failure outcome
        logger.debug("Resolution of '%s' failed: %s", identifier, exc)
        return None
    logger.warning("Could not resolve a field for label '%s'", identifier)
    return None


async def resolve_checkbox(
    backend: PageBackend,
    container: Optional[Handle],
    identifier: str,
    selectors: FormSelectors = DEFAULT_SELECTORS,
) -> Optional[Handle]:
    """Return the checkbox group whose label text matches ``identifier``."""
    wanted = sanitize_identifier(identifier).lower()
    try:
        partial: Optional[Handle] = None
        for group in await backend.query_all(container, selectors.checkbox_container):
            label = await backend.query(group, selectors.checkbox_label)
            if label is None:
                continue
            text = sanitize_identifier(await backend.text(label)).lower()
            if text == wanted:
                return group
            if partial is None and wanted and wanted in text:
                partial = group
        return partial
    except Exception as exc:  # noqa: BLE001
        logger.debug("Checkbox resolution of '%s' failed: %s", identifier, exc)
        return None


async def _matching_labels(backend: PageBackend, container: Optional[Handle], identifier: str) -> List[Handle]:
    wanted = sanitize_identifier(identifier).lower()
    exact: List[Handle] = []
    partial: List[Handle] = []
    for label in await backend.query_all(container, "label"):
        text = await backend.text(label)
        if not identifiers_match(text, identifier):
            continue
        if sanitize_identifier(text).lower() == wanted:
            exact.append(label)
        else:
            partial.append(label)
    return exact + partial


async def _accept(backend: PageBackend, handle: Optional[Handle]) -> Optional[Handle]:
    if handle is not None and await backend.is_visible(handle):
        return handle
    return None


async def _by_for_attribute(
    backend: PageBackend, container: Optional[Handle], label: Handle, field_selector: str
) -> Optional[Handle]:
    target_id = await backend.attribute(label, "for")
    if not target_id:
        return None
    return await _accept(backend, await backend.query(container, f'[id="{target_id}"]'))


async def _nested_in_label(
    backend: PageBackend, container: Optional[Handle], label: Handle, field_selector: str
) -> Optional[Handle]:
    return await first_visible(backend, await backend.query_all(label, field_selector))


async def _shares_parent(
    backend: PageBackend, container: Optional[Handle], label: Handle, field_selector: str
) -> Optional[Handle]:
    parent = await backend.parent(label)
    if parent is None:
        return None
    return await first_visible(backend, await backend.query_all(parent, field_selector))


async def _parent_sibling(
    backend: PageBackend, container: Optional[Handle], label: Handle, field_selector: str
) -> Optional[Handle]:
    parent = await backend.parent(label)
    if parent is None:
        return None
    sibling = await backend.next_sibling(parent)
    if sibling is None:
        return None
    if await backend.matches(sibling, field_selector):
        return await _accept(backend, sibling)
    return await first_visible(backend, await backend.query_all(sibling, field_selector))


_LABEL_STRATEGIES: Sequence[Strategy] = (
    _by_for_attribute,
    _nested_in_label,
    _shares_parent,
    _parent_sibling,
)


async def _by_placeholder(
    backend: PageBackend,
    container: Optional[Handle],
    identifier: str,
    selectors: FormSelectors,
    kind_hint: Optional[FieldKind],
) -> Optional[Handle]:
    for handle in await backend.query_all(container, "[placeholder]"):
        placeholder = await backend.attribute(handle, "placeholder")
        if identifiers_match(placeholder, identifier) and await backend.is_visible(handle):
            return handle
    if kind_hint is None or not kind_hint.is_choice:
        return None
    for trigger in await backend.query_all(container, selectors.structural_trigger):
        inner = await backend.query(trigger, selectors.trigger_placeholder)
        if inner is not None and identifiers_match(await backend.text(inner), identifier):
            return await _accept(backend, trigger)
    return None
