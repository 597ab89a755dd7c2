from __future__ import annotations

from datetime import date
from pathlib import Path

from hatchery_import.db.store import InMemoryStore
from hatchery_import.models.config_models import AppConfig
from hatchery_import.models.import_result import SheetStatus
from hatchery_import.models.record_type import QAKind, RecordType
from hatchery_import.services.orchestrator import process_workbook
from hatchery_import.services.summary import render_summary_line

"""End-to-end run of a multi-sheet hatchery workbook into the in-memory store."""

RUN_DATE = date(2024, 3, 22)


def _workbook(xlsx_factory, fertility_sheet) -> Path:
    return xlsx_factory(
        "hatchery.xlsx",
        {
            "Flocks": [
                ["Flock #", "Flock Name", "House", "Breed", "Age", "Total Birds"],
                [1, "North 1", "H1", "Ross", 32, 9500],
                [2, "North 2", "H2", "Ross", 40, 9100],
            ],
            "Batches": [
                ["Batch #", "Flock #", "Machine", "Set Date", "Eggs Set"],
                ["B-1", 1, "S1", date(2024, 3, 4), 9000],
                ["B-2", 2, "S1", date(2024, 3, 4), 8800],
            ],
            "Fertility": fertility_sheet(2),
            "QA Temps": [
                ["Machine", "Check Date", "Temp"],
                ["S1", date(2024, 3, 10), 99.6],
                ["S2", date(2024, 3, 10), 99.4],
            ],
            "Notes": [["Comment", "Author"], ["ran late", "ops"]],
        },
    )


def test_full_workbook_imports_in_sheet_order(temp_workdir, xlsx_factory, fertility_sheet):
    path = _workbook(xlsx_factory, fertility_sheet)
    store = InMemoryStore()
    config = AppConfig(create_missing_entities=True)

    run = process_workbook(path, config, store, run_date=RUN_DATE, show_progress=False)

    assert [r.sheet_name for r in run.results] == ["Flocks", "Batches", "Fertility", "QA Temps"]
    assert all(r.status is SheetStatus.COMPLETED for r in run.results)
    assert run.unclassified == ("Notes",)
    assert run.success == 8
    assert run.fully_imported
    assert set(store.flocks) == {1, 2}
    assert store.flock_names[store.flocks[1]] == "North 1"
    assert {b.batch_number for b in store.batches} == {"B-1", "B-2"}
    assert set(store.machines) == {"S1", "S2"}

    fertility, refs, _ = store.records[RecordType.FERTILITY][(2, RUN_DATE)]
    assert fertility.fertile_eggs == 588
    assert refs.batch_id == store.find_batch(store.flocks[2], "B-2")

    qa = [rec for rec, _, _ in store.records[RecordType.QA_MONITORING].values()]
    assert {rec.kind for rec in qa} == {QAKind.TEMPERATURE}
    assert {rec.check_date for rec in qa} == {date(2024, 3, 10)}

    assert render_summary_line(run).startswith(
        "SUMMARY sheets=5 completed=4 failed=0 timed_out=0 blocked=0 unclassified=1 success=8 failure=0"
    )
    # nothing went wrong, so no error log file
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_second_run_is_idempotent(temp_workdir, xlsx_factory, fertility_sheet):
    path = _workbook(xlsx_factory, fertility_sheet)
    store = InMemoryStore()
    config = AppConfig(create_missing_entities=True)

    process_workbook(path, config, store, run_date=RUN_DATE, show_progress=False)
    before = {rt: store.count(rt) for rt in RecordType}
    again = process_workbook(path, config, store, run_date=RUN_DATE, show_progress=False)

    assert again.success == 0
    assert again.skipped == 8
    assert again.fully_imported
    assert {rt: store.count(rt) for rt in RecordType} == before
    assert len(store.batches) == 2


def test_sheet_selection(temp_workdir, xlsx_factory, fertility_sheet):
    path = _workbook(xlsx_factory, fertility_sheet)
    store = InMemoryStore()
    run = process_workbook(
        path, AppConfig(create_missing_entities=True), store,
        sheet_names=["QA Temps", "Flocks"], run_date=RUN_DATE, show_progress=False,
    )
    assert [r.sheet_name for r in run.results] == ["Flocks", "QA Temps"]
    assert store.count(RecordType.FERTILITY) == 0


def test_csv_upload(temp_workdir, tmp_path: Path):
    path = tmp_path / "fertility.csv"
    path.write_text("Flock #,Size,Infertile,Dead,Fertility\n1,648,60,10,90.7\n2,648,50,5,N/A\n", encoding="utf-8")
    store = InMemoryStore()
    run = process_workbook(path, AppConfig(create_missing_entities=True), store, run_date=RUN_DATE,
                           show_progress=False)
    assert run.success == 2
    record, _, _ = store.records[RecordType.FERTILITY][(2, RUN_DATE)]
    assert record.fertility_percent == 92.28
