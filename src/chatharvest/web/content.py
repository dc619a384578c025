"""
Turn extraction and change observation inside an item view.

Key Features
------------
- **Ordered Strategies**: Author-role attributes first, article elements
  second; the first strategy that yields turns wins
- **History Loading**: Scrolls the view to its top so earlier turns render
- **Stable Field**: Last assistant message text, polled by the gate
- **Mutation Feed**: MutationObserver counts, drained by polling, with a
  snapshot fallback

Classes
-------
PlaywrightFieldExtractor
    Reads turns and the last assistant message, and loads earlier history.
MutationChangeFeed
    Change feed over a page subtree.
"""

import hashlib
import logging
from collections.abc import Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..exceptions import CaptureFailure
from ..interfaces import ExtractionResult
from ..model import Turn
from .selectors import WebSelectors

logger = logging.getLogger(__name__)

_AUTHOR_ROLE_SCRIPT = """
(selector) => Array.from(document.querySelectorAll(selector)).map(el => ({
    role: el.getAttribute('data-message-author-role') || 'unknown',
    text: (el.innerText || el.textContent || '').trim(),
}))
"""

_ARTICLE_SCRIPT = """
([articleSelector, roleSelector]) => Array.from(document.querySelectorAll(articleSelector)).map(el => {
    const roleEl = el.querySelector(roleSelector);
    let role = roleEl ? roleEl.getAttribute('data-message-author-role') : null;
    if (!role) {
        const heading = (el.querySelector('h5, h6, .sr-only') || {}).textContent || '';
        if (/you said/i.test(heading)) role = 'user';
        else if (/said/i.test(heading)) role = 'assistant';
    }
    return { role: role || 'unknown', text: (el.innerText || el.textContent || '').trim() };
})
"""

_SCROLL_TO_TOP_SCRIPT = """
(rootSelector) => {
    const root = document.querySelector(rootSelector);
    const scrollers = [root, document.scrollingElement, document.documentElement];
    if (root) {
        for (const el of root.querySelectorAll('*')) {
            if (el.scrollHeight > el.clientHeight + 8) scrollers.push(el);
        }
    }
    for (const el of scrollers) {
        if (el) el.scrollTop = 0;
    }
    window.scrollTo(0, 0);
}
"""

_LAST_ASSISTANT_SCRIPT = """
(selector) => {
    const nodes = Array.from(document.querySelectorAll(selector));
    for (let i = nodes.length - 1; i >= 0; i--) {
        if (nodes[i].getAttribute('data-message-author-role') === 'assistant') {
            return (nodes[i].innerText || nodes[i].textContent || '').trim();
        }
    }
    return '';
}
"""


class PlaywrightFieldExtractor:
    """Reads turns from a conversation view."""

    def __init__(self, page: Page, selectors: WebSelectors | None = None) -> None:
        self.page = page
        self.selectors = selectors or WebSelectors()
        self.strategies: list[tuple[str, Callable[[], Awaitable[list[dict]]]]] = [
            ("author_role", self._by_author_role),
            ("article", self._by_article),
        ]

    async def _by_author_role(self) -> list[dict]:
        return await self.page.evaluate(_AUTHOR_ROLE_SCRIPT, self.selectors.author_role)

    async def _by_article(self) -> list[dict]:
        return await self.page.evaluate(
            _ARTICLE_SCRIPT, [self.selectors.article, self.selectors.author_role]
        )

    async def extract_turns(self) -> ExtractionResult:
        for name, strategy in self.strategies:
            try:
                raw = await strategy()
            except PlaywrightError as e:
                raise CaptureFailure(self.page.url, f"strategy {name} failed", error=str(e)) from e

            turns = [
                Turn(index=i, role=entry.get("role"), text=entry.get("text") or "")
                for i, entry in enumerate(raw or [])
                if (entry.get("text") or "").strip()
            ]
            if turns:
                logger.debug(f"Extracted {len(turns)} turns with strategy {name}")
                return ExtractionResult(turns=turns, strategy=name)

        return ExtractionResult(turns=[], strategy=None)

    async def scroll_to_top(self) -> None:
        try:
            await self.page.evaluate(_SCROLL_TO_TOP_SCRIPT, self.selectors.main_root)
        except PlaywrightError as e:
            raise CaptureFailure(self.page.url, "history scroll failed", error=str(e)) from e

    async def count_turn_nodes(self) -> int:
        try:
            return int(
                await self.page.evaluate(
                    "(selector) => document.querySelectorAll(selector).length",
                    self.selectors.author_role,
                )
            )
        except PlaywrightError as e:
            raise CaptureFailure(self.page.url, "turn node count failed", error=str(e)) from e

    async def last_message_text(self) -> str:
        try:
            return await self.page.evaluate(_LAST_ASSISTANT_SCRIPT, self.selectors.author_role) or ""
        except PlaywrightError as e:
            # treated as an empty read, which resets stabilization
            logger.debug(f"Last message read failed: {e}")
            return ""


class MutationChangeFeed:
    """MutationObserver over ``change_root`` (or the body)."""

    def __init__(self, page: Page, selectors: WebSelectors | None = None) -> None:
        self.page = page
        self.selectors = selectors or WebSelectors()

    async def subscribe(self) -> None:
        try:
            await self.page.evaluate(
                """(rootSelector) => {
                    if (window.__chMutationObserver) window.__chMutationObserver.disconnect();
                    window.__chMutationCount = 0;
                    window.__chMutationObserver = new MutationObserver((mutations) => {
                        window.__chMutationCount += mutations.length;
                    });
                    const root = document.querySelector(rootSelector) || document.body;
                    window.__chMutationObserver.observe(root, {
                        childList: true,
                        subtree: true,
                        characterData: true,
                    });
                }""",
                self.selectors.change_root,
            )
        except PlaywrightError as e:
            raise CaptureFailure(self.page.url, "mutation observer setup failed", error=str(e)) from e

    async def drain(self) -> int:
        try:
            return int(
                await self.page.evaluate(
                    """() => {
                        const n = window.__chMutationCount || 0;
                        window.__chMutationCount = 0;
                        return n;
                    }"""
                )
            )
        except PlaywrightError as e:
            # a context torn down mid-poll is itself a change
            logger.debug(f"Mutation drain failed: {e}")
            return 1

    async def unsubscribe(self) -> None:
        try:
            await self.page.evaluate(
                """() => {
                    if (window.__chMutationObserver) {
                        window.__chMutationObserver.disconnect();
                        delete window.__chMutationObserver;
                        delete window.__chMutationCount;
                    }
                }"""
            )
        except PlaywrightError as e:
            raise CaptureFailure(self.page.url, "mutation observer cleanup failed", error=str(e)) from e

    async def snapshot(self) -> str:
        try:
            text = await self.page.evaluate(
                """(rootSelector) => {
                    const root = document.querySelector(rootSelector) || document.body;
                    return root.childElementCount + ':' + (root.innerText || '');
                }""",
                self.selectors.change_root,
            )
        except PlaywrightError as e:
            logger.debug(f"Snapshot failed: {e}")
            return ""
        return hashlib.md5(text.encode("utf-8")).hexdigest()
