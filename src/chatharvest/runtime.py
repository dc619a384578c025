"""Assembly of the harvester from settings."""

from dataclasses import dataclass
from pathlib import Path

from playwright.async_api import Page

from .capture import Capture, HydrationConfig
from .config import HarvestSettings
from .enumeration import EnumeratorConfig, StabilityGatedEnumerator
from .fsm import MachineConfig, RunControl, RunStateMachine
from .persistence import FileKeyValueStore, Ledger, RecordIndex, RunStore
from .sinks import JsonFileSink
from .stabilization import ContentStabilizationGate, GateConfig
from .web import (
    MutationChangeFeed,
    PlaywrightContainerLocator,
    PlaywrightFieldExtractor,
    PlaywrightItemExtractor,
    PlaywrightNavigator,
    PlaywrightViewProbe,
    WebSelectors,
)

LEDGER_FILENAME = "ledger.jsonl"


@dataclass
class HarvestStorage:
    """Durable stores of one data directory."""

    store: RunStore
    ledger: Ledger
    index: RecordIndex

    @classmethod
    def open(cls, data_path: Path) -> "HarvestStorage":
        kv = FileKeyValueStore(base_path=data_path)
        return cls(
            store=RunStore(kv),
            ledger=Ledger.jsonl(Path(data_path) / LEDGER_FILENAME),
            index=RecordIndex(kv),
        )

    @property
    def control(self) -> RunControl:
        return RunControl(self.store, self.ledger)


def build_machine(
    page: Page,
    settings: HarvestSettings,
    storage: HarvestStorage,
    selectors: WebSelectors | None = None,
) -> RunStateMachine:
    """Wire Playwright adapters, gate, capture and sink into a machine."""
    selectors = selectors or WebSelectors()
    extractor = PlaywrightFieldExtractor(page, selectors)

    return RunStateMachine(
        store=storage.store,
        ledger=storage.ledger,
        enumerator=StabilityGatedEnumerator(
            PlaywrightContainerLocator(page, selectors),
            PlaywrightItemExtractor(page, selectors),
            EnumeratorConfig.from_settings(settings),
        ),
        navigator=PlaywrightNavigator(page),
        probe=PlaywrightViewProbe(page, selectors),
        gate=ContentStabilizationGate(GateConfig.from_settings(settings)),
        capture=Capture(
            extractor,
            min_turns_warn=settings.min_turns_warn,
            hydration=HydrationConfig.from_settings(settings),
        ),
        feed=MutationChangeFeed(page, selectors),
        sink=JsonFileSink.from_settings(settings),
        index=storage.index,
        config=MachineConfig.from_settings(settings),
    )
