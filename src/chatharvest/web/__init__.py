"""Playwright adapters for the harvester interfaces."""

from .content import MutationChangeFeed, PlaywrightFieldExtractor
from .discovery import PlaywrightContainerLocator, PlaywrightItemExtractor, PlaywrightScrollContainer
from .navigation import PlaywrightNavigator, PlaywrightViewProbe, watch_routes
from .selectors import WebSelectors
from .session import browser_page

__all__ = [
    "MutationChangeFeed",
    "PlaywrightContainerLocator",
    "PlaywrightFieldExtractor",
    "PlaywrightItemExtractor",
    "PlaywrightNavigator",
    "PlaywrightScrollContainer",
    "PlaywrightViewProbe",
    "WebSelectors",
    "browser_page",
    "watch_routes",
]
