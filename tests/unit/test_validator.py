from __future__ import annotations

from datetime import date

from hatchery_import.models.record_type import QAKind, RecordType
from hatchery_import.models.row_data import RowData
from hatchery_import.models.validation_issue import Severity
from hatchery_import.validation.validator import (
    has_blocking_errors,
    qa_kinds_present,
    summarize,
    validate,
)


def _fert(flock=1, size=648, infertile=60, dead=10, fertility=90.7, **extra):
    row = {
        "flock_number": flock,
        "sample_size": size,
        "infertile_eggs": infertile,
        "early_dead": dead,
        "fertility_percent": fertility,
    }
    row.update(extra)
    return row


def test_out_of_range_percentage_is_single_error_on_its_row():
    rows = [_fert(1, fertility=85.0), _fert(2, fertility=150), _fert(3, fertility=90.0)]
    issues = validate(rows, RecordType.FERTILITY)
    errors = [i for i in issues if i.severity is Severity.ERROR]
    assert len(errors) == 1
    assert errors[0].row == 2
    assert errors[0].column == "fertility_percent"
    assert errors[0].value == 150
    assert has_blocking_errors(issues)
    assert summarize(issues).blocked


def test_clean_rows_produce_no_issues():
    assert validate([_fert(), _fert(2)], RecordType.FERTILITY) == []


def test_every_row_is_checked():
    rows = [_fert(infertile=-1), _fert(flock=None), _fert(size="abc")]
    issues = validate(rows, RecordType.FERTILITY)
    assert {i.row for i in issues} == {1, 2, 3}


def test_required_field_missing():
    issues = validate([_fert(infertile=None)], RecordType.FERTILITY)
    assert [(i.column, i.message) for i in issues] == [("infertile_eggs", "Required field is missing")]
    assert issues[0].suggestion


def test_infertile_cannot_exceed_sample_size():
    issues = validate([_fert(size=100, infertile=120, dead=0, fertility=None)], RecordType.FERTILITY)
    assert [(i.column, i.severity) for i in issues] == [("infertile_eggs", Severity.ERROR)]


def test_mortality_cannot_exceed_fertile_eggs():
    issues = validate([_fert(size=100, infertile=90, dead=8, late_dead=5, fertility=None)], RecordType.FERTILITY)
    assert len(issues) == 1
    assert issues[0].column == "early_dead"
    assert "exceeds fertile eggs 10" in issues[0].message


def test_low_fertility_is_a_warning():
    issues = validate([_fert(fertility=55)], RecordType.FERTILITY)
    assert [(i.column, i.severity) for i in issues] == [("fertility_percent", Severity.WARNING)]
    assert not has_blocking_errors(issues)
    assert summarize(issues).warning_count == 1


def test_flock_number_format():
    issues = validate([_fert(flock=-3), _fert(flock=2.5)], RecordType.FERTILITY)
    assert [(i.row, i.column) for i in issues] == [(1, "flock_number"), (2, "flock_number")]


def test_unknown_flock_warning_only_with_known_flocks():
    assert validate([_fert(flock=9)], RecordType.FERTILITY) == []
    issues = validate([_fert(flock=9)], RecordType.FERTILITY, known_flocks={1, 2})
    assert [(i.column, i.severity) for i in issues] == [("flock_number", Severity.WARNING)]


def test_issues_ordered_by_row_then_schema_field_order():
    rows = [
        _fert(fertility=250, infertile=-5, extra_col="x"),
        _fert(flock=None, size=-1),
    ]
    issues = validate(rows, RecordType.FERTILITY)
    assert [(i.row, i.column) for i in issues] == [
        (1, "infertile_eggs"),
        (1, "fertility_percent"),
        (2, "flock_number"),
        (2, "sample_size"),
    ]


def test_row_data_keeps_parser_row_numbers():
    rows = [RowData(row_number=4, values=_fert(fertility=150)), RowData(row_number=9, values=_fert())]
    issues = validate(rows, RecordType.FERTILITY)
    assert [i.row for i in issues] == [4]


def test_validation_is_deterministic():
    rows = [_fert(fertility=150, infertile=700), _fert(flock="x"), _fert(dead=-1)]
    first = validate(rows, RecordType.FERTILITY)
    second = validate(list(rows), RecordType.FERTILITY)
    assert first == second


def test_egg_pack_defects_cannot_exceed_pulled():
    row = {"flock_number": 1, "inspection_date": date(2024, 3, 4), "total_eggs_pulled": 100, "cracked": 150}
    issues = validate([row], RecordType.EGG_PACK)
    assert [(i.column, i.severity) for i in issues] == [("cracked", Severity.ERROR)]


def test_egg_pack_graded_sum_warning():
    row = {"flock_number": 1, "total_eggs_pulled": 100, "stained": 40, "dirty": 40, "cracked": 30}
    issues = validate([row], RecordType.EGG_PACK)
    assert [(i.column, i.severity) for i in issues] == [("total_eggs_pulled", Severity.WARNING)]


def test_clears_injected_limits():
    rows = [
        {"flock_number": 1, "total_eggs_set": 100, "injected_count": 120},
        {"flock_number": 1, "total_eggs_set": 100, "clears_count": 30, "injected_count": 80},
        {"flock_number": 1, "total_eggs_set": 100, "clears_count": 10, "injected_count": 90},
    ]
    issues = validate(rows, RecordType.CLEARS_INJECTED)
    assert [(i.row, i.column) for i in issues] == [(1, "injected_count"), (2, "clears_count")]


def test_batch_hatch_date_after_set_date():
    row = {
        "batch_number": "B-1",
        "flock_number": 1,
        "set_date": date(2024, 3, 4),
        "expected_hatch_date": date(2024, 3, 1),
        "total_eggs_set": 1000,
    }
    issues = validate([row], RecordType.BATCH)
    assert [(i.column, i.severity) for i in issues] == [("expected_hatch_date", Severity.ERROR)]


def test_batch_number_format():
    row = {"batch_number": "#bad", "flock_number": 1, "total_eggs_set": 10}
    issues = validate([row], RecordType.BATCH)
    assert [i.column for i in issues] == ["batch_number"]


def test_flock_plausibility_warnings():
    row = {"flock_number": 3, "breed": "Mystery", "age_weeks": 95}
    issues = validate([row], RecordType.FLOCK)
    assert [(i.column, i.severity) for i in issues] == [
        ("breed", Severity.WARNING),
        ("age_weeks", Severity.WARNING),
    ]


def test_qa_row_needs_exactly_one_measurement_group():
    rows = [
        {"machine_number": "S1", "check_date": date(2024, 3, 4)},
        {"machine_number": "S1", "temperature": 99.5, "percent_loss": 12.0},
        {"machine_number": "S1", "temp_front": 99.1, "temp_back": 100.2},
    ]
    issues = validate(rows, RecordType.QA_MONITORING)
    assert [(i.row, i.column, i.severity) for i in issues] == [
        (1, "measurement", Severity.ERROR),
        (2, "measurement", Severity.ERROR),
    ]


def test_qa_warnings_for_temperature_and_weight_loss():
    rows = [
        {"machine_number": "S1", "temperature": 120},
        {"machine_number": "S1", "percent_loss": 18.5},
    ]
    issues = validate(rows, RecordType.QA_MONITORING)
    assert [(i.row, i.column, i.severity) for i in issues] == [
        (1, "temperature", Severity.WARNING),
        (2, "percent_loss", Severity.WARNING),
    ]


def test_qa_kinds_present():
    assert qa_kinds_present({"float_count": 3, "concentration": "1.080"}) == [QAKind.SPECIFIC_GRAVITY]
    assert qa_kinds_present({"temperature": None}) == []
