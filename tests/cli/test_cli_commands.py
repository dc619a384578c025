"""Tests for chatharvest CLI commands that work on the persisted run."""

import json

import pytest
from click.testing import CliRunner

from chatharvest.cli.main import main
from chatharvest.exceptions import HarvestException
from chatharvest.model import ItemRef, LedgerEventType, Phase, Record, RecordStatus, RunState, Turn
from chatharvest.runtime import HarvestStorage

BASE = "https://chat.example.test/g/g-p-demo/project"


@pytest.fixture
def cli_runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture
def data_path(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def seed(data_path):
    """Persist a run directly into the data directory."""

    def seed_run(phase: Phase = Phase.DONE, records: list[Record] | None = None) -> RunState:
        records = records if records is not None else [
            Record(
                item_id=f"c{i}",
                label=f"Chat {i}",
                turns=(Turn(index=0, role="user", text="q"), Turn(index=1, role="assistant", text="a")),
                status=RecordStatus.OK,
            )
            for i in range(2)
        ]
        queue = [ItemRef.from_href(f"/c/{r.item_id or 'x'}", r.label, base_url=BASE) for r in records]
        cursor = len(queue) if phase is Phase.DONE else 0
        state = RunState(phase=phase, cursor=cursor, queue=queue, captured=records, anchor=BASE)
        storage = HarvestStorage.open(data_path)
        storage.ledger.bind(state.run_id)
        storage.ledger.append(LedgerEventType.RUN_START, {"anchor": BASE})
        storage.store.save(state)
        return state

    return seed_run


def invoke(cli_runner, data_path, *args):
    return cli_runner.invoke(main, ["--data-path", str(data_path), *args])


def test_cli_help(cli_runner):
    """Test that CLI help works."""
    result = cli_runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "resumable harvesting" in result.output


def test_command_help(cli_runner):
    result = cli_runner.invoke(main, ["run", "--help"])
    assert result.exit_code == 0
    assert "--resume" in result.output


class TestStatusAndStop:
    """Tests for status and stop."""

    def test_status_without_run(self, cli_runner, data_path):
        result = invoke(cli_runner, data_path, "status")

        assert result.exit_code == 0
        assert "No run has been started." in result.output

    def test_status(self, cli_runner, data_path, seed):
        state = seed()

        result = invoke(cli_runner, data_path, "status")

        assert result.exit_code == 0
        assert state.run_id in result.output
        assert "Phase:     DONE" in result.output
        assert "Progress:  2/2" in result.output

    def test_status_json(self, cli_runner, data_path, seed):
        state = seed()

        result = invoke(cli_runner, data_path, "status", "--json")

        payload = json.loads(result.output)
        assert payload["run_id"] == state.run_id
        assert payload["last_event"] == "RUN_START"

    def test_stop_active_run(self, cli_runner, data_path, seed):
        seed(Phase.IN_ITEM)

        result = invoke(cli_runner, data_path, "stop")

        assert result.exit_code == 0
        assert "Stop requested." in result.output
        storage = HarvestStorage.open(data_path)
        assert storage.store.load().stop_requested
        assert storage.ledger.last().type is LedgerEventType.STOP_REQUESTED

    def test_stop_finished_run(self, cli_runner, data_path, seed):
        seed()

        result = invoke(cli_runner, data_path, "stop")

        assert "No active run to stop." in result.output


class TestVerifyAndRepair:
    """Tests for verify and repair."""

    def test_verify_admissible(self, cli_runner, data_path, seed):
        seed()

        result = invoke(cli_runner, data_path, "verify")

        assert result.exit_code == 0
        assert json.loads(result.output)["admissible"] is True

    def test_verify_incomplete(self, cli_runner, data_path, seed):
        seed(Phase.IN_ITEM)

        result = invoke(cli_runner, data_path, "verify")

        assert result.exit_code == 1
        assert json.loads(result.output)["running"] is True

    def test_repair_without_run(self, cli_runner, data_path):
        result = invoke(cli_runner, data_path, "repair")

        assert result.exit_code == 2

    def test_repair_preview_and_apply(self, cli_runner, data_path, seed):
        seed(
            records=[
                Record(item_id="c0", turns=(Turn(index=0, text="hello"),), status=RecordStatus.OK),
                Record(item_id="c1", status=RecordStatus.EMPTY),
            ]
        )

        preview = invoke(cli_runner, data_path, "repair")
        applied = invoke(cli_runner, data_path, "repair", "--apply")

        assert preview.exit_code == 0
        assert "Repair (dry run): 1 of 2 record(s) invalid" in preview.output
        assert "c1: MISSING_TEXT" in preview.output
        assert applied.exit_code == 0
        assert "Records after repair: 1" in applied.output
        assert len(HarvestStorage.open(data_path).store.load().captured) == 1


class TestExportAndLedger:
    """Tests for export, ledger and clear."""

    def test_export_json_default_path(self, cli_runner, data_path, seed, tmp_path):
        state = seed()
        output_path = tmp_path / "out"

        result = cli_runner.invoke(
            main, ["--data-path", str(data_path), "--output-path", str(output_path), "export"]
        )

        assert result.exit_code == 0
        exported = output_path / f"{state.run_id}__export.json"
        payload = json.loads(exported.read_text(encoding="utf-8"))
        assert payload["schema"] == "chatharvest.export.v1"
        assert payload["counts"]["records"] == 2
        assert payload["ledger"][0]["type"] == "RUN_START"

    def test_export_markdown(self, cli_runner, data_path, seed, tmp_path):
        seed()
        output = tmp_path / "harvest.md"

        result = invoke(cli_runner, data_path, "export", "--format", "markdown", "-o", str(output))

        assert result.exit_code == 0
        text = output.read_text(encoding="utf-8")
        assert "## Chat 0" in text
        assert "**assistant**" in text

    def test_export_without_run(self, cli_runner, data_path):
        result = invoke(cli_runner, data_path, "export")

        assert result.exit_code == 2

    def test_ledger(self, cli_runner, data_path, seed):
        seed()

        result = invoke(cli_runner, data_path, "ledger")

        events = json.loads(result.output)
        assert [e["type"] for e in events] == ["RUN_START"]

    def test_clear(self, cli_runner, data_path, seed):
        seed()

        result = invoke(cli_runner, data_path, "clear", "--yes")

        assert result.exit_code == 0
        assert "Run state cleared." in result.output
        storage = HarvestStorage.open(data_path)
        assert storage.store.load() is None
        assert len(storage.ledger.events()) == 1


class TestRunArguments:
    """Argument errors are reported before any browser is launched."""

    def test_run_requires_anchor(self, cli_runner, data_path):
        result = invoke(cli_runner, data_path, "run")

        assert result.exit_code == 2
        assert "ANCHOR_URL is required" in result.output

    def test_resume_requires_active_run(self, cli_runner, data_path, seed):
        seed()

        result = invoke(cli_runner, data_path, "run", "--resume")

        assert result.exit_code == 2
        assert "No active run to resume" in result.output


class TestUnreadableState:
    """Commands report an unreadable run state instead of crashing."""

    @pytest.fixture
    def corrupt(self, data_path):
        store = HarvestStorage.open(data_path).store
        store.kv.set(store.key, {"phase": "BOGUS", "cursor": -1})

    @pytest.mark.parametrize("args", [["status"], ["status", "--json"], ["stop"], ["verify"], ["export"], ["ledger"]])
    def test_exit_with_config_error(self, cli_runner, data_path, corrupt, args):
        result = invoke(cli_runner, data_path, *args)

        assert result.exit_code == 2
        assert "Error:" in result.output
        assert not isinstance(result.exception, HarvestException)

    def test_resume(self, cli_runner, data_path, corrupt):
        result = invoke(cli_runner, data_path, "run", "--resume")

        assert result.exit_code == 2
