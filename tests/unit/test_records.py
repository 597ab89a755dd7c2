from __future__ import annotations

from datetime import date

import pytest

from hatchery_import.models.record_type import QAKind, RecordType
from hatchery_import.models.records import (
    _BUILDERS,
    BatchRecord,
    ClearsInjectedRecord,
    EggPackRecord,
    FertilityRecord,
    FlockRecord,
    QAMonitoringRecord,
    RecordBuildError,
    ResidueRecord,
    SpecificGravityCheck,
    TemperatureCheck,
    WeightLossCheck,
    build_record,
    record_payload,
)

D = date(2024, 3, 4)


def test_builder_table_covers_every_record_type():
    assert set(_BUILDERS) == set(RecordType)


def test_fertility_derives_fertile_eggs_and_percent():
    rec = build_record(
        RecordType.FERTILITY,
        {"flock_number": 3, "analysis_date": D, "sample_size": 648, "infertile_eggs": 48},
    )
    assert isinstance(rec, FertilityRecord)
    assert rec.fertile_eggs == 600
    assert rec.fertility_percent == 92.59
    assert rec.early_dead == 0
    assert rec.natural_key() == (3, D)


def test_fertility_keeps_given_percent():
    rec = build_record(
        RecordType.FERTILITY,
        {"flock_number": 3, "analysis_date": D, "sample_size": 648, "infertile_eggs": 48, "fertility_percent": 90.0},
    )
    assert rec.fertility_percent == 90.0


def test_residue_total():
    rec = build_record(
        RecordType.RESIDUE,
        {
            "flock_number": 1, "analysis_date": D, "sample_size": 648, "infertile_eggs": 30,
            "early_dead": 5, "mid_dead": 2, "late_dead": 3, "pipped_not_hatched": 1, "contaminated": 4,
        },
    )
    assert isinstance(rec, ResidueRecord)
    assert rec.total_residue == 41


def test_egg_pack_grade_a():
    rec = build_record(
        RecordType.EGG_PACK,
        {"flock_number": 1, "inspection_date": D, "total_eggs_pulled": 100, "stained": 5, "dirty": 3, "cracked": 2},
    )
    assert isinstance(rec, EggPackRecord)
    assert rec.grade_a == 90


def test_flock_defaults_name_and_lowercases_breed():
    rec = build_record(RecordType.FLOCK, {"flock_number": 12.0, "breed": "Ross"})
    assert isinstance(rec, FlockRecord)
    assert rec.flock_name == "Flock 12"
    assert rec.breed == "ross"
    assert rec.natural_key() == (12,)


def test_batch_expected_hatch_defaults_to_21_days():
    rec = build_record(
        RecordType.BATCH,
        {"batch_number": 2041, "flock_number": 1, "set_date": D, "total_eggs_set": 9000},
    )
    assert isinstance(rec, BatchRecord)
    assert rec.batch_number == "2041"
    assert rec.expected_hatch_date == date(2024, 3, 25)
    assert rec.status == "completed"
    assert rec.natural_key() == ("2041", D)


def test_qa_temperature_detail():
    rec = build_record(
        RecordType.QA_MONITORING,
        {"machine_number": "S4", "check_date": D, "temp_front": 99.0, "temp_back": 100.0},
    )
    assert isinstance(rec, QAMonitoringRecord)
    assert isinstance(rec.detail, TemperatureCheck)
    assert rec.kind is QAKind.TEMPERATURE
    assert rec.detail.readings == (("temp_front", 99.0), ("temp_back", 100.0))
    assert rec.detail.average == 99.5
    assert rec.natural_key() == ("temperature", None, "S4", D)


def test_qa_weight_loss_and_specific_gravity_details():
    loss = build_record(RecordType.QA_MONITORING, {"check_date": D, "flock_number": 2, "percent_loss": 11.5})
    gravity = build_record(
        RecordType.QA_MONITORING, {"check_date": D, "concentration": "1.080", "float_count": 12}
    )
    assert isinstance(loss.detail, WeightLossCheck)
    assert loss.detail.percent_loss == 11.5
    assert isinstance(gravity.detail, SpecificGravityCheck)
    assert gravity.kind is QAKind.SPECIFIC_GRAVITY
    assert gravity.detail.float_count == 12


def test_qa_without_measurement_fails():
    with pytest.raises(RecordBuildError, match="exactly one measurement group"):
        build_record(RecordType.QA_MONITORING, {"check_date": D, "machine_number": "S1"})


def test_clears_injected_percentages():
    rec = build_record(
        RecordType.CLEARS_INJECTED,
        {"flock_number": 1, "check_date": D, "total_eggs_set": 200, "clears_count": 20, "injected_count": 170},
    )
    assert isinstance(rec, ClearsInjectedRecord)
    assert rec.clear_percent == 10.0
    assert rec.injected_percent == 85.0
    assert rec.natural_key() == (1, None, D)


def test_missing_date_and_bad_number_raise():
    with pytest.raises(RecordBuildError, match="analysis_date"):
        build_record(RecordType.FERTILITY, {"flock_number": 1, "sample_size": 648, "infertile_eggs": 4})
    with pytest.raises(RecordBuildError, match="not a number"):
        build_record(
            RecordType.FERTILITY,
            {"flock_number": 1, "analysis_date": D, "sample_size": "lots", "infertile_eggs": 4},
        )


def test_record_payload_is_json_ready():
    rec = build_record(RecordType.QA_MONITORING, {"check_date": D, "temperature": 99.5})
    payload = record_payload(rec)
    assert payload["check_date"] == "2024-03-04"
    assert payload["kind"] == "temperature"
    assert payload["detail"] == {"readings": [["temperature", 99.5]], "kind": "temperature"}
