from __future__ import annotations

from pathlib import Path

import pytest

from hatchery_import.cli import __main__ as cli_main
from hatchery_import.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL, main
from hatchery_import.db.store import InMemoryStore, StoreUnavailableError


class FakeLiveStore(InMemoryStore):
    """Stands in for PostgresStore.connect() in live mode."""

    def __init__(self) -> None:
        super().__init__()
        self.schema_created = False
        self.closed = False

    def ensure_schema(self) -> None:
        self.schema_created = True

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def creating_config(temp_workdir: Path) -> Path:
    path = temp_workdir / "config" / "import.yml"
    path.write_text("create_missing_entities: true\n", encoding="utf-8")
    return path


def test_dry_run_imports_into_memory(creating_config, xlsx_factory, fertility_sheet, capsys):
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(3)})
    assert main([str(wb), "--dry-run"]) == EXIT_SUCCESS_ALL
    out = capsys.readouterr().out
    assert "SHEET name=Fertility status=completed success=3" in out
    assert "SUMMARY sheets=1 completed=1 failed=0" in out


def test_dry_run_without_known_flocks_is_partial(temp_workdir, xlsx_factory, fertility_sheet, capsys):
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(2)})
    assert main([str(wb), "--dry-run"]) == EXIT_PARTIAL_FAILURE
    assert "failure=2" in capsys.readouterr().out
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_validate_only(temp_workdir, xlsx_factory, fertility_sheet, capsys):
    good = xlsx_factory("good.xlsx", {"Fertility": fertility_sheet(2)})
    assert main([str(good), "--validate-only"]) == EXIT_SUCCESS_ALL

    rows = fertility_sheet(2)
    rows[2][4] = 150
    bad = xlsx_factory("bad.xlsx", {"Fertility": rows})
    assert main([str(bad), "--validate-only"]) == EXIT_PARTIAL_FAILURE
    assert "VALIDATION sheet=Fertility errors=1 warnings=0 status=blocked" in capsys.readouterr().out


def test_inspect_data(temp_workdir, xlsx_factory, fertility_sheet, capsys):
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(2)})
    assert main([str(wb), "--inspect-data"]) == EXIT_SUCCESS_ALL
    out = capsys.readouterr().out
    assert "FILE: wb.xlsx" in out
    assert "SHEET: Fertility type=fertility" in out


def test_missing_workbook_is_fatal(temp_workdir):
    assert main([str(temp_workdir / "nope.xlsx"), "--dry-run"]) == EXIT_FATAL


def test_bad_config_is_fatal(temp_workdir, xlsx_factory, fertility_sheet, capsys):
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(1)})
    (temp_workdir / "config" / "import.yml").write_text("sample_size: -1\n", encoding="utf-8")
    assert main([str(wb), "--dry-run"]) == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_unreadable_workbook_is_fatal(temp_workdir):
    wb = temp_workdir / "broken.xlsx"
    wb.write_bytes(b"PK\x03\x04 not really a zip")
    assert main([str(wb), "--dry-run"]) == EXIT_FATAL


def test_only_unclassified_sheets_is_partial(temp_workdir, xlsx_factory, capsys):
    wb = xlsx_factory("notes.xlsx", {"Notes": [["Comment", "Author"], ["hello", "me"]]})
    assert main([str(wb), "--dry-run"]) == EXIT_PARTIAL_FAILURE
    assert "unclassified=1" in capsys.readouterr().out


def test_unreachable_database_is_fatal(temp_workdir, xlsx_factory, fertility_sheet, monkeypatch, capsys):
    def refuse(db_cfg):
        raise StoreUnavailableError("connect: could not connect to server")

    monkeypatch.setattr(cli_main.PostgresStore, "connect", refuse)
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(1)})
    assert main([str(wb)]) == EXIT_FATAL
    assert "ERROR database:" in capsys.readouterr().out


def test_live_run_uses_connected_store(creating_config, xlsx_factory, fertility_sheet, monkeypatch):
    live = FakeLiveStore()
    monkeypatch.setattr(cli_main.PostgresStore, "connect", lambda db_cfg: live)
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(2)})
    assert main([str(wb), "--init-schema"]) == EXIT_SUCCESS_ALL
    assert live.schema_created
    assert live.closed
    assert live.flocks.keys() == {1, 2}


def test_sheets_option_and_timeout(creating_config, xlsx_factory, fertility_sheet, capsys):
    wb = xlsx_factory(
        "wb.xlsx",
        {"Week 1": fertility_sheet(1), "Week 2": fertility_sheet(1, first_flock=5)},
    )
    assert main([str(wb), "--dry-run", "--sheets", "Week 2", "--timeout", "5"]) == EXIT_SUCCESS_ALL
    out = capsys.readouterr().out
    assert "SHEET name=Week_2" in out
    assert "SHEET name=Week_1" not in out


def test_debug_flag(temp_workdir, xlsx_factory, fertility_sheet, capsys):
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(1)})
    main([str(wb), "--validate-only", "--debug"])
    assert "DEBUG debug mode enabled" in capsys.readouterr().out
