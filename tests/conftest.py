"""Pytest configuration and in-memory fakes for the harvester interfaces."""

from collections.abc import Callable

import pytest

from chatharvest.capture import Capture
from chatharvest.config import reset_settings
from chatharvest.enumeration import EnumeratorConfig, StabilityGatedEnumerator
from chatharvest.exceptions import SinkFailure
from chatharvest.fsm import MachineConfig, RunStateMachine, TickResult, Trigger
from chatharvest.interfaces import ExtractionResult
from chatharvest.model import ItemRef, Record, Turn
from chatharvest.persistence import Ledger, MemoryKeyValueStore, RecordIndex, RunStore
from chatharvest.stabilization import ContentStabilizationGate, GateConfig

ANCHOR = "https://chat.example.test/g/g-p-demo/project"
LOGIN_URL = "https://chat.example.test/auth/login"


def make_items(count: int) -> list[ItemRef]:
    return [
        ItemRef.from_href(f"/c/conv-{i:03d}", f"Conversation {i}", base_url=ANCHOR)
        for i in range(count)
    ]


class FakeContainer:
    """Virtualized list whose rendered size follows ``sizes`` scroll by scroll.

    With ``window`` set, only the last ``window`` rendered items are visible,
    like a virtualized list that unmounts rows scrolled out of view.
    """

    def __init__(
        self,
        sizes: list[int],
        scrollable: bool = True,
        window: int | None = None,
    ) -> None:
        self.sizes = sizes
        self.scrollable = scrollable
        self.window = window
        self.position = 0
        self.scrolled_px = 0
        self.items = make_items(max(sizes) if sizes else 0)

    def rendered(self) -> list[ItemRef]:
        size = self.sizes[min(self.position, len(self.sizes) - 1)]
        start = max(0, size - self.window) if self.window else 0
        return self.items[start:size]

    async def scroll_by(self, px: int) -> None:
        self.position += 1
        self.scrolled_px += px

    async def is_scrollable(self) -> bool:
        return self.scrollable


class FakeItemExtractor:
    async def visible_items(self, container: FakeContainer) -> list[ItemRef]:
        return container.rendered()


class FakeLocator:
    """Returns the container after ``misses`` failed attempts."""

    def __init__(self, container: FakeContainer | None, misses: int = 0) -> None:
        self.container = container
        self.misses = misses
        self.calls = 0

    async def locate(self) -> FakeContainer | None:
        self.calls += 1
        if self.calls <= self.misses:
            return None
        return self.container


class FakeSite:
    """A single-tab web app: list view at ANCHOR plus one view per item.

    Implements Navigator, ViewProbe, FieldExtractor and ChangeFeed.
    """

    def __init__(self, items: list[ItemRef], anchor: str = ANCHOR) -> None:
        self.anchor = anchor
        self.location = "about:blank"
        self.items = {item.url: item for item in items}
        self.conversations: dict[str, list[tuple[str, str]]] = {
            item.item_id: [("user", f"question {i}"), ("assistant", f"answer {i}")]
            for i, item in enumerate(items)
        }
        self.busy: set[str] = set()
        self.stalled: set[str] = set()
        self.unreadable: set[str] = set()
        self.navigations: list[str] = []
        self.subscribed = False
        # anchor navigations land on LOGIN_URL once this many items were opened
        self.login_after: int | None = None

    def current_item_id(self) -> str | None:
        item = self.items.get(self.location)
        return item.item_id if item else None

    # Navigator
    async def go_to_item(self, item: ItemRef) -> None:
        self.navigations.append(item.url)
        if item.item_id in self.stalled:
            self.location = "about:blank"
        else:
            self.location = item.url

    async def go_to_anchor(self, anchor: str) -> None:
        opened = sum(1 for url in self.navigations if url in self.items)
        self.navigations.append(anchor)
        if self.login_after is not None and opened >= self.login_after:
            self.location = LOGIN_URL
        else:
            self.location = anchor

    # ViewProbe
    async def is_at_anchor(self, anchor: str) -> bool:
        return self.location == anchor

    async def is_at_item(self, item: ItemRef) -> bool:
        return self.location == item.url

    async def is_busy(self) -> bool:
        return self.current_item_id() in self.busy

    async def current_location(self) -> str:
        return self.location

    # FieldExtractor
    async def extract_turns(self) -> ExtractionResult:
        if self.current_item_id() in self.unreadable:
            return ExtractionResult()
        raw = self.conversations.get(self.current_item_id() or "", [])
        turns = [Turn(index=i, role=role, text=text) for i, (role, text) in enumerate(raw)]
        return ExtractionResult(turns=turns, strategy="fake" if turns else None)

    async def last_message_text(self) -> str:
        for role, text in reversed(self.conversations.get(self.current_item_id() or "", [])):
            if role == "assistant":
                return text
        return ""

    # ChangeFeed
    async def subscribe(self) -> None:
        self.subscribed = True

    async def drain(self) -> int:
        return 0

    async def unsubscribe(self) -> None:
        self.subscribed = False


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.records: list[Record] = []
        self.run_id: str | None = None

    def bind(self, run_id: str) -> None:
        self.run_id = run_id

    async def write(self, record: Record) -> list[str]:
        if self.fail:
            raise SinkFailure(record.item_id, "disk full")
        self.records.append(record)
        return [f"{self.run_id}__{record.item_id}__001-of-001.json"]


def fast_enumerator_config(**overrides) -> EnumeratorConfig:
    values = {
        "settle_ms": 0,
        "stable_rounds": 3,
        "low_count_threshold": 3,
        "locator_attempts": 1,
        "progress_every": 1,
    }
    values.update(overrides)
    return EnumeratorConfig(**values)


def fast_gate_config(**overrides) -> GateConfig:
    values = {
        "quiet_ms": 0,
        "quiescence_timeout_ms": 50,
        "quiescence_poll_ms": 1,
        "max_attempts": 4,
        "poll_ms": 0,
    }
    values.update(overrides)
    return GateConfig(**values)


def fast_machine_config(**overrides) -> MachineConfig:
    values = {
        "busy_wait_budget_ms": 20,
        "busy_poll_ms": 5,
        "nav_wait_budget_ms": 0,
        "nav_poll_ms": 1,
        "nav_max_retries": 1,
        "return_to_anchor": True,
    }
    values.update(overrides)
    return MachineConfig(**values)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep tests independent of the caller's environment and .env files."""
    monkeypatch.setenv("CHATHARVEST_ENV", "test")
    monkeypatch.setenv("CHATHARVEST_DISABLE_CONSOLE_LOGGING", "1")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def make_container() -> Callable[..., FakeContainer]:
    return FakeContainer


@pytest.fixture
def make_locator() -> Callable[..., FakeLocator]:
    return FakeLocator


@pytest.fixture
def item_extractor() -> FakeItemExtractor:
    return FakeItemExtractor()


@pytest.fixture
def make_site() -> Callable[..., FakeSite]:
    return FakeSite


@pytest.fixture
def make_sink() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture
def items() -> Callable[[int], list[ItemRef]]:
    return make_items


@pytest.fixture
def make_machine(kv, ledger):
    """Build a RunStateMachine over a FakeSite listing ``count`` items.

    Returns a factory ``(site=None, count=5, sizes=None, **config) -> (machine, site)``.
    Machines built by the same test share the key-value store and ledger, so a
    second machine behaves like the same run after a reload.
    """

    def factory(
        site: FakeSite | None = None,
        count: int = 5,
        sizes: list[int] | None = None,
        sink: RecordingSink | None = None,
        enumerator_config: EnumeratorConfig | None = None,
        gate_config: GateConfig | None = None,
        **machine_overrides,
    ) -> tuple[RunStateMachine, FakeSite]:
        site = site or FakeSite(make_items(count))
        container = FakeContainer(sizes or [count])
        container.items = list(site.items.values())
        machine = RunStateMachine(
            store=RunStore(kv),
            ledger=ledger,
            enumerator=StabilityGatedEnumerator(
                FakeLocator(container),
                FakeItemExtractor(),
                enumerator_config or fast_enumerator_config(),
            ),
            navigator=site,
            probe=site,
            gate=ContentStabilizationGate(gate_config or fast_gate_config()),
            capture=Capture(site),
            feed=site,
            sink=sink,
            index=RecordIndex(kv),
            config=fast_machine_config(**machine_overrides),
        )
        return machine, site

    return factory


async def drive(machine: RunStateMachine, max_ticks: int = 500) -> list[TickResult]:
    """Tick until a tick does nothing; returns the ticks that ran."""
    results = []
    for _ in range(max_ticks):
        result = await machine.tick(Trigger.POLL)
        if not result.ran:
            break
        results.append(result)
    return results


@pytest.fixture
def run_to_end() -> Callable:
    return drive
