"""Browser session setup for harvesting runs."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from playwright.async_api import Page, async_playwright

logger = logging.getLogger(__name__)


@asynccontextmanager
async def browser_page(
    headless: bool = False,
    storage_state: Path | None = None,
) -> AsyncIterator[Page]:
    """Launch Chromium and yield a single page.

    Args:
        headless: Run without a visible window
        storage_state: Playwright storage state file holding a logged-in session
    """
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=headless)
        try:
            context = await browser.new_context(
                storage_state=str(storage_state) if storage_state else None
            )
            page = await context.new_page()
            logger.info(f"Browser session started (headless={headless})")
            yield page
        finally:
            await browser.close()
