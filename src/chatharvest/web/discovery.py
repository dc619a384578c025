"""
Scroll container discovery and item scanning on a live page.

Key Features
------------
- **Center Scroller Detection**: Scores scrollable, link-holding elements by
  link count, area and distance to the viewport center, ignoring sidebars
- **Marker Handle**: The chosen container is tagged with an attribute so later
  scroll and scan calls address the same element
- **Item Scanning**: Reads the materialized item links of the container

Classes
-------
PlaywrightContainerLocator
    Finds and marks the best list container.
PlaywrightScrollContainer
    Scrolls the marked container.
PlaywrightItemExtractor
    Lists the items currently rendered inside the container.
"""

import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..exceptions import EnumerationFailure
from ..model import ItemRef
from .selectors import WebSelectors

logger = logging.getLogger(__name__)

_LOCATE_SCRIPT = """
(sel) => {
    const isSidebarish = (el) => {
        if (el.closest(sel.sidebarContainers)) return true;
        if (el.closest(sel.sidebarAttr)) return true;
        if (el.querySelector(sel.sidebarAttr)) return true;
        return false;
    };
    const isScrollable = (el) => {
        const oy = getComputedStyle(el).overflowY;
        return (oy === 'auto' || oy === 'scroll') && el.scrollHeight > el.clientHeight + 40;
    };
    const linkCount = (el) => el.querySelectorAll(sel.itemLink).length;
    const score = (el) => {
        const rect = el.getBoundingClientRect();
        const dist = Math.hypot(
            rect.left + rect.width / 2 - window.innerWidth / 2,
            rect.top + rect.height / 2 - window.innerHeight / 2
        );
        const area = Math.max(1, rect.width * rect.height);
        return linkCount(el) * 1000 + Math.log(area) * 10 + 10000 / Math.max(1, dist);
    };

    document.querySelectorAll('[' + sel.marker + ']').forEach(el => el.removeAttribute(sel.marker));

    const roots = [];
    const main = document.querySelector(sel.mainRoot);
    if (main) roots.push(main);
    roots.push(document.body);

    const seen = new Set();
    const candidates = [];
    for (const root of roots) {
        for (const el of root.querySelectorAll(sel.candidates)) {
            if (seen.has(el)) continue;
            seen.add(el);
            if (isSidebarish(el) || linkCount(el) === 0) continue;
            if (!isScrollable(el)) continue;
            candidates.push(el);
        }
    }

    let best = null;
    if (candidates.length) {
        candidates.sort((a, b) => score(b) - score(a));
        best = candidates[0];
    } else if (main && linkCount(main) > 0) {
        best = main;
    }
    if (!best) return null;
    best.setAttribute(sel.marker, '1');
    return { candidates: candidates.length, links: linkCount(best), scrollable: isScrollable(best) };
}
"""

_SCAN_SCRIPT = """
(sel) => {
    const root = document.querySelector('[' + sel.marker + ']');
    if (!root) return null;
    const out = [];
    for (const a of root.querySelectorAll(sel.itemLink)) {
        if (a.closest(sel.sidebarContainers) || a.closest(sel.sidebarAttr)) continue;
        const href = a.getAttribute('href');
        if (!href) continue;
        out.push({ href, label: (a.innerText || a.textContent || '').trim() });
    }
    return out;
}
"""


def _script_args(selectors: WebSelectors) -> dict[str, str]:
    return {
        "itemLink": selectors.item_link,
        "sidebarContainers": selectors.sidebar_containers,
        "sidebarAttr": selectors.sidebar_attr,
        "candidates": selectors.candidate_containers,
        "mainRoot": selectors.main_root,
        "marker": selectors.scroller_marker,
    }


class PlaywrightScrollContainer:
    """The marked list container."""

    def __init__(self, page: Page, selectors: WebSelectors) -> None:
        self.page = page
        self.selectors = selectors

    async def scroll_by(self, px: int) -> None:
        try:
            await self.page.evaluate(
                """([selector, px]) => {
                    const el = document.querySelector(selector);
                    if (el) el.scrollBy(0, px);
                }""",
                [self.selectors.scroller_selector, px],
            )
        except PlaywrightError as e:
            raise EnumerationFailure("SCROLL_FAILED", error=str(e)) from e

    async def is_scrollable(self) -> bool:
        try:
            return bool(
                await self.page.evaluate(
                    """(selector) => {
                        const el = document.querySelector(selector);
                        return !!el && el.scrollHeight > el.clientHeight + 40;
                    }""",
                    self.selectors.scroller_selector,
                )
            )
        except PlaywrightError as e:
            raise EnumerationFailure("SCROLL_PROBE_FAILED", error=str(e)) from e


class PlaywrightContainerLocator:
    """Finds the main list scroller, never the sidebar."""

    def __init__(self, page: Page, selectors: WebSelectors | None = None) -> None:
        self.page = page
        self.selectors = selectors or WebSelectors()

    async def locate(self) -> PlaywrightScrollContainer | None:
        try:
            found = await self.page.evaluate(_LOCATE_SCRIPT, _script_args(self.selectors))
        except PlaywrightError as e:
            logger.warning(f"Container search failed: {e}")
            return None

        if not found:
            return None

        logger.debug(
            f"Container located: {found['candidates']} candidate(s), "
            f"{found['links']} link(s), scrollable={found['scrollable']}"
        )
        return PlaywrightScrollContainer(self.page, self.selectors)


class PlaywrightItemExtractor:
    """Reads item links rendered inside the marked container."""

    def __init__(self, page: Page, selectors: WebSelectors | None = None) -> None:
        self.page = page
        self.selectors = selectors or WebSelectors()

    async def visible_items(self, container: PlaywrightScrollContainer) -> list[ItemRef]:
        try:
            raw = await self.page.evaluate(_SCAN_SCRIPT, _script_args(self.selectors))
        except PlaywrightError as e:
            raise EnumerationFailure("SCAN_FAILED", error=str(e)) from e

        if raw is None:
            # container was re-rendered away; the next round rescans
            return []

        base_url = self.page.url
        return [ItemRef.from_href(entry["href"], entry.get("label"), base_url=base_url) for entry in raw]
