"""Discover form controls and classify them into field requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .backend import Handle, PageBackend
from .identifiers import sanitize_identifier, split_mandatory_marker
from .models import FieldKind, FieldRequest
from .selectors import DEFAULT_SELECTORS, MULTI_CHOICE_PHRASES, SINGLE_CHOICE_PLACEHOLDERS, FormSelectors

logger = logging.getLogger(__name__)

NATIVE_TAGS = ("input", "textarea", "select")
LABEL_SEARCH_DEPTH = 3


@dataclass
class DiscoveredField:
    request: FieldRequest
    current_value: Optional[str] = None


def is_single_choice_placeholder(text: Optional[str]) -> bool:
    lowered = (text or "").strip().lower()
    return any(phrase in lowered for phrase in SINGLE_CHOICE_PLACEHOLDERS)


def is_multi_choice_wording(text: Optional[str]) -> bool:
    lowered = (text or "").strip().lower()
    return any(phrase in lowered for phrase in MULTI_CHOICE_PHRASES)


def build_identifier(raw: str, fallback: str) -> Tuple[str, bool]:
    """Strip the mandatory marker and sanitize; fall back when nothing usable remains."""
    text, mandatory = split_mandatory_marker(raw)
    identifier = sanitize_identifier(text)
    return (identifier or fallback), mandatory


async def classify_candidate(
    backend: PageBackend,
    container: Optional[Handle],
    element: Handle,
    index: int,
    selectors: FormSelectors = DEFAULT_SELECTORS,
) -> Optional[DiscoveredField]:
    """Classify one candidate element, or return None when it is not a fillable field."""
    tag = await backend.tag_name(element)
    field_id = await backend.attribute(element, "id")
    name = await backend.attribute(element, "name")
    placeholder = await backend.attribute(element, "placeholder")
    own_text = ""
    options: List[str] = []
    kind: Optional[FieldKind] = None
    direct_trigger = False

    if tag == "select":
        kind = FieldKind.SINGLE_CHOICE
        options = await native_options(backend, element)
    elif tag == "textarea":
        kind = FieldKind.TEXT
    elif tag == "input":
        has_popup = (await backend.attribute(element, "aria-haspopup") or "").lower()
        if has_popup == "listbox" or is_single_choice_placeholder(placeholder):
            kind, direct_trigger = FieldKind.SINGLE_CHOICE, True
        elif is_multi_choice_wording(placeholder):
            kind, direct_trigger = FieldKind.MULTI_CHOICE, True
        else:
            kind = FieldKind.TEXT
    elif tag == "span":
        own_text = (await backend.text(element)).strip()
        if await backend.matches(element, selectors.multi_choice_trigger) or is_multi_choice_wording(own_text):
            kind, direct_trigger = FieldKind.MULTI_CHOICE, True
    elif tag == "div" and await backend.matches(element, selectors.structural_trigger):
        inner = await backend.query(element, selectors.trigger_placeholder)
        if inner is not None and await backend.is_visible(inner):
            placeholder = (await backend.text(inner)).strip()
            if is_multi_choice_wording(placeholder):
                kind, direct_trigger = FieldKind.MULTI_CHOICE, True
            elif is_single_choice_placeholder(placeholder):
                kind, direct_trigger = FieldKind.SINGLE_CHOICE, True

    if kind is None:
        logger.debug("Skipping candidate %s (tag=%s): not a recognised field", index, tag)
        return None

    if not await backend.is_visible(element):
        return None
    if tag in NATIVE_TAGS and not direct_trigger and not await backend.is_editable(element):
        return None

    label_text = await _label_text(backend, container, element, field_id)
    raw = label_text.strip() or (placeholder or "").strip() or own_text or (name or "")
    identifier, mandatory = build_identifier(raw, f"field_{index}")

    current_value: Optional[str] = None
    if tag in ("input", "textarea") and not direct_trigger:
        current_value = (await backend.input_value(element)) or None

    logger.debug(
        "Classified field index=%s tag=%s identifier=%r kind=%s mandatory=%s trigger=%s",
        index,
        tag,
        identifier,
        kind.value,
        mandatory,
        direct_trigger,
    )
    request = FieldRequest(
        identifier=identifier,
        kind=kind,
        options=options,
        is_mandatory=mandatory,
        is_direct_trigger=direct_trigger,
        element=element,
        name=name,
        raw_label=raw,
    )
    return DiscoveredField(request=request, current_value=current_value)


async def classify_checkbox(
    backend: PageBackend,
    group: Handle,
    index: int,
    selectors: FormSelectors = DEFAULT_SELECTORS,
) -> Optional[DiscoveredField]:
    """Classify a checkbox group as a boolean field. Already-checked boxes are skipped."""
    checkbox = await backend.query(group, selectors.checkbox_input)
    label = await backend.query(group, selectors.checkbox_label)
    target = await backend.query(group, selectors.checkbox_click_target)
    if checkbox is None or label is None:
        return None
    if await backend.is_checked(checkbox):
        logger.debug("Skipping checkbox %s: already checked", index)
        return None

    raw = (await backend.text(label)).strip()
    identifier, mandatory = build_identifier(raw, f"checkbox_{index}")
    request = FieldRequest(
        identifier=identifier,
        kind=FieldKind.BOOLEAN,
        is_mandatory=mandatory,
        element=group,
        click_target=target,
        raw_label=raw,
    )
    return DiscoveredField(request=request)


async def discover_fields(
    backend: PageBackend,
    container: Optional[Handle],
    selectors: FormSelectors = DEFAULT_SELECTORS,
) -> List[DiscoveredField]:
    """Classify every candidate control and checkbox group in ``container``.

    Identifiers are unique within the result; later duplicates are dropped so the
    oracle key contract stays one-to-one.
    """
    discovered: List[DiscoveredField] = []
    seen: set[str] = set()

    candidates = await backend.query_all(container, selectors.candidate_fields())
    logger.info("Found %s candidate field elements", len(candidates))
    for index, element in enumerate(candidates):
        try:
            field = await classify_candidate(backend, container, element, index, selectors)
        except Exception as exc:  # noqa: BLE001 - one bad element must not abort discovery
            logger.warning("Classification of candidate %s failed: %s", index, exc)
            continue
        _append_unique(discovered, seen, field)

    for index, group in enumerate(await backend.query_all(container, selectors.checkbox_container)):
        try:
            field = await classify_checkbox(backend, group, index, selectors)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Classification of checkbox %s failed: %s", index, exc)
            continue
        _append_unique(discovered, seen, field)

    return discovered


def _append_unique(discovered: List[DiscoveredField], seen: set[str], field: Optional[DiscoveredField]) -> None:
    if field is None:
        return
    identifier = field.request.identifier
    if identifier in seen:
        logger.warning("Duplicate field identifier '%s'; keeping the first occurrence", identifier)
        return
    seen.add(identifier)
    discovered.append(field)


async def native_options(backend: PageBackend, select: Handle) -> List[str]:
    """Visible labels of a native select, in document order, empties dropped."""
    options: List[str] = []
    for option in await backend.query_all(select, "option"):
        label = (await backend.text(option)).strip() or (await backend.attribute(option, "value") or "").strip()
        if label:
            options.append(label)
    return options


async def _label_text(
    backend: PageBackend,
    container: Optional[Handle],
    element: Handle,
    field_id: Optional[str],
) -> str:
    if field_id:
        label = await backend.query(container, f'label[for="{field_id}"]')
        if label is not None and await backend.is_visible(label):
            return await backend.text(label)

    node = element
    for _ in range(LABEL_SEARCH_DEPTH):
        node = await backend.parent(node)
        if node is None:
            break
        if await backend.matches(node, "label"):
            return await _own_label_text(backend, node)
        label = await backend.query(node, ":scope > label")
        if label is not None and await backend.is_visible(label):
            return await backend.text(label)
    return ""


async def _own_label_text(backend: PageBackend, label: Handle) -> str:
    # A wrapping label also contains the text of its nested controls (select options, textarea content).
    text = await backend.text(label)
    for control in await backend.query_all(label, "select, textarea"):
        nested = await backend.text(control)
        if nested.strip():
            text = text.replace(nested, " ", 1)
    return " ".join(text.split())
