"""Interfaces to the environment the harvester runs in.

The core (enumerator, gate, state machine, capture) only talks to these
protocols. ``chatharvest.web`` implements them on Playwright; tests implement
them with in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .model import ItemRef, Record, Turn


@dataclass
class ExtractionResult:
    """Turns read from the current view, in presentation order."""

    turns: list[Turn] = field(default_factory=list)
    strategy: str | None = None


@runtime_checkable
class ScrollContainer(Protocol):
    """A scrollable element holding a virtualized list."""

    async def scroll_by(self, px: int) -> None:
        """Scroll forward by ``px`` pixels."""
        ...

    async def is_scrollable(self) -> bool:
        """Whether the content overflows the container."""
        ...


@runtime_checkable
class ContainerLocator(Protocol):
    """Finds the scrollable list container, or None."""

    async def locate(self) -> ScrollContainer | None: ...


@runtime_checkable
class ItemIdentifierExtractor(Protocol):
    """Reads the currently materialized items of a container."""

    async def visible_items(self, container: ScrollContainer) -> list[ItemRef]: ...


@runtime_checkable
class Navigator(Protocol):
    """Fire-and-forget navigation.

    Calls return once navigation has been issued. Completion is observed
    through a ViewProbe, possibly after the page has been reloaded.
    """

    async def go_to_item(self, item: ItemRef) -> None: ...

    async def go_to_anchor(self, anchor: str) -> None: ...


@runtime_checkable
class ViewProbe(Protocol):
    """Answers questions about the currently displayed view."""

    async def is_at_anchor(self, anchor: str) -> bool: ...

    async def is_at_item(self, item: ItemRef) -> bool: ...

    async def is_busy(self) -> bool:
        """Whether the view reports an in-progress operation."""
        ...

    async def current_location(self) -> str: ...


@runtime_checkable
class FieldExtractor(Protocol):
    """Reads structured content from the current item view."""

    async def extract_turns(self) -> ExtractionResult: ...

    async def last_message_text(self) -> str:
        """Text of the field used for value stabilization."""
        ...


@runtime_checkable
class HistoryLoader(Protocol):
    """Loads earlier parts of a virtualized item view."""

    async def scroll_to_top(self) -> None: ...

    async def count_turn_nodes(self) -> int:
        """Number of turn nodes currently rendered."""
        ...


@runtime_checkable
class ChangeFeed(Protocol):
    """Change notifications for the relevant view subtree."""

    async def subscribe(self) -> None: ...

    async def drain(self) -> int:
        """Number of changes observed since the previous drain."""
        ...

    async def unsubscribe(self) -> None: ...


@runtime_checkable
class SnapshotSource(Protocol):
    """Feeds that can fall back to snapshot comparison."""

    async def snapshot(self) -> str: ...


@runtime_checkable
class RunBoundSink(Protocol):
    """Sinks that name their artifacts after the current run."""

    def bind(self, run_id: str) -> None: ...


@runtime_checkable
class ArtifactSink(Protocol):
    """Delivers captured records outside the run store."""

    async def write(self, record: Record) -> list[str]:
        """Write ``record``; returns the artifact names written.

        Raises:
            SinkFailure: If the write fails
        """
        ...


__all__ = [
    "ArtifactSink",
    "ChangeFeed",
    "ContainerLocator",
    "ExtractionResult",
    "FieldExtractor",
    "HistoryLoader",
    "ItemIdentifierExtractor",
    "Navigator",
    "RunBoundSink",
    "ScrollContainer",
    "SnapshotSource",
    "ViewProbe",
]
