from __future__ import annotations

from pathlib import Path

from hatchery_import.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL, main

"""Exit code contract: 0 all imported, 2 partial, 1 fatal."""


def test_exit_code_values():
    assert (EXIT_SUCCESS_ALL, EXIT_FATAL, EXIT_PARTIAL_FAILURE) == (0, 1, 2)


def test_exit_code_all_success(temp_workdir: Path, xlsx_factory, fertility_sheet, capsys):
    (temp_workdir / "config" / "import.yml").write_text("create_missing_entities: true\n", encoding="utf-8")
    wb = xlsx_factory("wb.xlsx", {"Fertility": fertility_sheet(4)})
    code = main([str(wb), "--dry-run"])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY sheets=1 completed=1 failed=0 timed_out=0 blocked=0" in out


def test_exit_code_partial_when_a_sheet_is_blocked(temp_workdir: Path, xlsx_factory, fertility_sheet):
    (temp_workdir / "config" / "import.yml").write_text("create_missing_entities: true\n", encoding="utf-8")
    bad = fertility_sheet(2, first_flock=10)
    bad[1][4] = 250
    wb = xlsx_factory("wb.xlsx", {"Good": fertility_sheet(2), "Bad": bad})
    assert main([str(wb), "--dry-run"]) == 2


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    (temp_workdir / "config" / "import.yml").write_text("timeout_seconds: 0\n", encoding="utf-8")
    code = main([str(temp_workdir / "missing.xlsx")])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out
