"""Page selectors used by the Playwright adapters."""

from dataclasses import dataclass, field


@dataclass
class WebSelectors:
    """CSS selectors and markers for the target web application."""

    item_link: str = 'a[href*="/c/"], a[href*="/chat/"]'
    sidebar_containers: str = "nav, aside"
    sidebar_attr: str = '[data-sidebar-item="true"]'
    candidate_containers: str = "div,section,main,ul,ol"
    main_root: str = "main, #main"
    author_role: str = "[data-message-author-role]"
    article: str = 'article[data-testid^="conversation-turn"], article'
    busy_buttons: list[str] = field(
        default_factory=lambda: [
            'button[data-testid="stop-button"]',
            'button[aria-label*="Stop"]',
        ]
    )
    busy_text: str = "stop generating"
    change_root: str = "main"
    scroller_marker: str = "data-chatharvest-scroller"

    @property
    def scroller_selector(self) -> str:
        return f"[{self.scroller_marker}]"
