"""
Navigation, view probing and route-change wiring for a Playwright page.

Navigation is fire-and-forget: ``location.href`` is assigned and the call
returns. Whether the target view became current is answered later by the
probe, so a full page reload in between is harmless.
"""

import logging
from collections.abc import Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page

from ..exceptions import NavigationStall
from ..fsm import TickDriver, Trigger
from ..model import ItemRef, canonical_item_id, canonicalize_url
from .selectors import WebSelectors

logger = logging.getLogger(__name__)


def _normalized(url: str) -> str:
    return canonicalize_url(url).rstrip("/")


class PlaywrightNavigator:
    """Issues navigations by assigning ``location.href``."""

    def __init__(self, page: Page) -> None:
        self.page = page

    async def _assign(self, url: str) -> None:
        try:
            await self.page.evaluate("(url) => { window.location.href = url; }", url)
        except PlaywrightError as e:
            if "Execution context was destroyed" in str(e):
                # the navigation already started
                return
            raise NavigationStall(url, 1, error=str(e)) from e

    async def go_to_item(self, item: ItemRef) -> None:
        logger.debug(f"Navigating to item {item.item_id}")
        await self._assign(item.url)

    async def go_to_anchor(self, anchor: str) -> None:
        logger.debug(f"Navigating to anchor {anchor}")
        await self._assign(anchor)


class PlaywrightViewProbe:
    """Answers view questions from the page URL and DOM."""

    def __init__(self, page: Page, selectors: WebSelectors | None = None) -> None:
        self.page = page
        self.selectors = selectors or WebSelectors()

    async def current_location(self) -> str:
        return self.page.url

    async def is_at_anchor(self, anchor: str) -> bool:
        return _normalized(self.page.url) == _normalized(anchor)

    async def is_at_item(self, item: ItemRef) -> bool:
        return canonical_item_id(self.page.url) == item.item_id

    async def is_busy(self) -> bool:
        try:
            return bool(
                await self.page.evaluate(
                    """([selectors, text]) => {
                        for (const s of selectors) {
                            if (document.querySelector(s)) return true;
                        }
                        return Array.from(document.querySelectorAll('button')).some(
                            b => (b.textContent || '').toLowerCase().includes(text)
                        );
                    }""",
                    [self.selectors.busy_buttons, self.selectors.busy_text],
                )
            )
        except PlaywrightError as e:
            # a page in the middle of loading counts as busy
            logger.debug(f"Busy probe failed: {e}")
            return True


def watch_routes(page: Page, driver: TickDriver) -> Callable[[], None]:
    """Notify ``driver`` whenever the main frame navigates.

    Covers full loads and history API route changes alike.

    Returns:
        Callable that removes the listener
    """

    def on_navigated(frame: Frame) -> None:
        if frame == page.main_frame:
            driver.notify(Trigger.ROUTE_CHANGE)

    page.on("framenavigated", on_navigated)

    def unwatch() -> None:
        page.remove_listener("framenavigated", on_navigated)

    return unwatch
