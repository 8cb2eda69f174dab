"""Rendered-page capability set the engine depends on, plus the Playwright adapter."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

from playwright.async_api import Error as PlaywrightError, Locator, Page, TimeoutError as PlaywrightTimeoutError

from .errors import BackendError

logger = logging.getLogger(__name__)

# Opaque element reference. Callers must not rely on its type.
Handle = Any


class PageBackend(Protocol):
    """Query/click/read/wait primitives over one rendered page.

    ``scope`` arguments accept a handle or ``None`` for the whole page. Query and
    read primitives never raise; they degrade to empty values. Action primitives
    (``click``, ``fill``, ``select_option``) raise ``BackendError``.
    """

    url: str

    async def query_all(self, scope: Optional[Handle], selector: str) -> List[Handle]: ...

    async def query(self, scope: Optional[Handle], selector: str) -> Optional[Handle]: ...

    async def parent(self, handle: Handle) -> Optional[Handle]: ...

    async def next_sibling(self, handle: Handle) -> Optional[Handle]: ...

    async def click(self, handle: Handle, timeout_ms: int, force: bool = False) -> None: ...

    async def click_outside(self) -> None: ...

    async def fill(self, handle: Handle, value: str, timeout_ms: int) -> None: ...

    async def select_option(
        self, handle: Handle, *, value: Optional[str] = None, label: Optional[str] = None
    ) -> None: ...

    async def text(self, handle: Handle) -> str: ...

    async def attribute(self, handle: Handle, name: str) -> Optional[str]: ...

    async def tag_name(self, handle: Handle) -> str: ...

    async def input_value(self, handle: Handle) -> str: ...

    async def is_visible(self, handle: Handle) -> bool: ...

    async def is_enabled(self, handle: Handle) -> bool: ...

    async def is_editable(self, handle: Handle) -> bool: ...

    async def is_checked(self, handle: Handle) -> bool: ...

    async def matches(self, handle: Handle, selector: str) -> bool: ...

    async def wait_visible(self, handle: Handle, timeout_ms: int) -> bool: ...

    async def wait_hidden(self, handle: Handle, timeout_ms: int) -> bool: ...

    async def wait_for_selector(
        self, scope: Optional[Handle], selector: str, timeout_ms: int
    ) -> Optional[Handle]: ...

    async def pause(self, ms: int) -> None: ...

    async def content(self) -> str: ...


class PlaywrightBackend:
    """``PageBackend`` over a Playwright page. Handles are ``Locator`` objects."""

    def __init__(self, page: Page) -> None:
        self.page = page

    @property
    def url(self) -> str:
        try:
            return self.page.url or ""
        except PlaywrightError:
            return ""

    def _root(self, scope: Optional[Locator]) -> Any:
        return scope if scope is not None else self.page

    async def query_all(self, scope: Optional[Locator], selector: str) -> List[Locator]:
        locator = self._root(scope).locator(selector)
        try:
            count = await locator.count()
        except PlaywrightError as exc:
            logger.debug("query_all(%s) failed: %s", selector, exc)
            return []
        return [locator.nth(idx) for idx in range(count)]

    async def query(self, scope: Optional[Locator], selector: str) -> Optional[Locator]:
        locator = self._root(scope).locator(selector).first
        try:
            if await locator.count() == 0:
                return None
        except PlaywrightError:
            return None
        return locator

    async def parent(self, handle: Locator) -> Optional[Locator]:
        return await self.query(handle, "xpath=..")

    async def next_sibling(self, handle: Locator) -> Optional[Locator]:
        return await self.query(handle, "xpath=following-sibling::*[1]")

    async def click(self, handle: Locator, timeout_ms: int, force: bool = False) -> None:
        try:
            await handle.click(timeout=timeout_ms, force=force)
        except PlaywrightError as exc:
            raise BackendError(f"click failed: {exc}") from exc

    async def click_outside(self) -> None:
        try:
            await self.page.locator("body").click(position={"x": 0, "y": 0}, delay=100, force=True)
        except PlaywrightError as exc:
            raise BackendError(f"click outside failed: {exc}") from exc

    async def fill(self, handle: Locator, value: str, timeout_ms: int) -> None:
        try:
            await handle.wait_for(state="visible", timeout=timeout_ms)
            await handle.fill(value, timeout=timeout_ms)
        except PlaywrightError as exc:
            raise BackendError(f"fill failed: {exc}") from exc

    async def select_option(
        self, handle: Locator, *, value: Optional[str] = None, label: Optional[str] = None
    ) -> None:
        try:
            if value is not None:
                await handle.select_option(value=value)
            else:
                await handle.select_option(label=label)
        except PlaywrightError as exc:
            raise BackendError(f"select_option failed: {exc}") from exc

    async def text(self, handle: Locator) -> str:
        try:
            return (await handle.text_content()) or ""
        except PlaywrightError:
            return ""

    async def attribute(self, handle: Locator, name: str) -> Optional[str]:
        try:
            return await handle.get_attribute(name)
        except PlaywrightError:
            return None

    async def tag_name(self, handle: Locator) -> str:
        try:
            return await handle.evaluate("(el) => el.tagName ? el.tagName.toLowerCase() : ''")
        except PlaywrightError:
            return ""

    async def input_value(self, handle: Locator) -> str:
        try:
            return await handle.input_value()
        except PlaywrightError:
            return ""

    async def is_visible(self, handle: Locator) -> bool:
        try:
            return await handle.is_visible()
        except PlaywrightError:
            return False

    async def is_enabled(self, handle: Locator) -> bool:
        try:
            return await handle.is_enabled()
        except PlaywrightError:
            return False

    async def is_editable(self, handle: Locator) -> bool:
        try:
            return await handle.is_editable()
        except PlaywrightError:
            return False

    async def is_checked(self, handle: Locator) -> bool:
        try:
            return await handle.is_checked()
        except PlaywrightError:
            return False

    async def matches(self, handle: Locator, selector: str) -> bool:
        try:
            return bool(await handle.evaluate("(el, sel) => el.matches(sel)", selector))
        except PlaywrightError:
            return False

    async def wait_visible(self, handle: Locator, timeout_ms: int) -> bool:
        try:
            await handle.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False
        except PlaywrightError:
            return False

    async def wait_hidden(self, handle: Locator, timeout_ms: int) -> bool:
        try:
            await handle.wait_for(state="hidden", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False
        except PlaywrightError:
            return False

    async def wait_for_selector(
        self, scope: Optional[Locator], selector: str, timeout_ms: int
    ) -> Optional[Locator]:
        # First *visible* match; hidden duplicates (closed menus, stale modals) are skipped.
        locator = self._root(scope).locator(f"{selector} >> visible=true").first
        if await self.wait_visible(locator, timeout_ms):
            return locator
        return None

    async def pause(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def content(self) -> str:
        try:
            return await self.page.content()
        except PlaywrightError as exc:
            raise BackendError(f"content failed: {exc}") from exc
