from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, ClassVar, Union

from ..excel.cells import is_blank, parse_date, parse_number
from .record_type import EntityKind, QAKind, RecordType

"""Typed record payloads (tagged union) built from validated, default-filled rows.

Each RecordType has one frozen dataclass. QA monitoring rows carry a typed
``detail`` (TemperatureCheck | WeightLossCheck | SpecificGravityCheck) whose
``kind`` is the discriminator, instead of a free-form blob parsed at every
read site. ``build_record`` dispatches through a table covering every
RecordType.
"""

__all__ = [
    "RecordBuildError",
    "FlockRecord",
    "BatchRecord",
    "FertilityRecord",
    "ResidueRecord",
    "EggPackRecord",
    "TemperatureCheck",
    "WeightLossCheck",
    "SpecificGravityCheck",
    "QAMonitoringRecord",
    "ClearsInjectedRecord",
    "Record",
    "QADetail",
    "build_record",
    "record_payload",
]

INCUBATION_DAYS = 21


class RecordBuildError(Exception):
    """Raised when a row cannot be turned into a typed record."""


def _text(values: Mapping[str, Any], field: str) -> str | None:
    value = values.get(field)
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _int(values: Mapping[str, Any], field: str, default: int | None = None) -> int | None:
    number = parse_number(values.get(field))
    if number is None:
        if not is_blank(values.get(field)):
            raise RecordBuildError(f"{field}: not a number ({values.get(field)!r})")
        return default
    return int(round(number))


def _float(values: Mapping[str, Any], field: str) -> float | None:
    number = parse_number(values.get(field))
    if number is None and not is_blank(values.get(field)):
        raise RecordBuildError(f"{field}: not a number ({values.get(field)!r})")
    return number


def _date(values: Mapping[str, Any], field: str) -> date | None:
    value = values.get(field)
    parsed = parse_date(value)
    if parsed is None and not is_blank(value):
        raise RecordBuildError(f"{field}: not a date ({value!r})")
    return parsed


def _required(value: Any, field: str) -> Any:
    if value is None:
        raise RecordBuildError(f"{field}: missing value")
    return value


def _percent(part: int, whole: int) -> float | None:
    if not whole:
        return None
    return round(part * 100.0 / whole, 2)


@dataclass(frozen=True)
class FlockRecord:
    record_type: ClassVar[RecordType] = RecordType.FLOCK
    requires: ClassVar[tuple[EntityKind, ...]] = ()

    flock_number: int
    flock_name: str
    house_number: str | None = None
    breed: str | None = None
    age_weeks: int | None = None
    arrival_date: date | None = None
    total_birds: int | None = None

    def natural_key(self) -> tuple[Any, ...]:
        return (self.flock_number,)


@dataclass(frozen=True)
class BatchRecord:
    record_type: ClassVar[RecordType] = RecordType.BATCH
    requires: ClassVar[tuple[EntityKind, ...]] = (EntityKind.FLOCK, EntityKind.MACHINE)

    batch_number: str
    flock_number: int
    set_date: date
    total_eggs_set: int
    expected_hatch_date: date
    machine_number: str | None = None
    status: str = "completed"

    def natural_key(self) -> tuple[Any, ...]:
        return (self.batch_number, self.set_date)


@dataclass(frozen=True)
class FertilityRecord:
    record_type: ClassVar[RecordType] = RecordType.FERTILITY
    requires: ClassVar[tuple[EntityKind, ...]] = (EntityKind.FLOCK, EntityKind.BATCH)

    flock_number: int
    analysis_date: date
    sample_size: int
    infertile_eggs: int
    fertile_eggs: int
    early_dead: int = 0
    late_dead: int = 0
    fertility_percent: float | None = None
    hatch_percent: float | None = None
    hof_percent: float | None = None
    batch_number: str | None = None

    def natural_key(self) -> tuple[Any, ...]:
        return (self.flock_number, self.analysis_date)


@dataclass(frozen=True)
class ResidueRecord:
    record_type: ClassVar[RecordType] = RecordType.RESIDUE
    requires: ClassVar[tuple[EntityKind, ...]] = (EntityKind.FLOCK, EntityKind.BATCH)

    flock_number: int
    analysis_date: date
    sample_size: int
    infertile_eggs: int
    early_dead: int = 0
    mid_dead: int = 0
    late_dead: int = 0
    pipped_not_hatched: int = 0
    contaminated: int = 0
    malformed: int = 0
    batch_number: str | None = None

    @property
    def total_residue(self) -> int:
        return self.infertile_eggs + self.early_dead + self.mid_dead + self.late_dead + self.pipped_not_hatched

    def natural_key(self) -> tuple[Any, ...]:
        return (self.flock_number, self.analysis_date)


@dataclass(frozen=True)
class EggPackRecord:
    record_type: ClassVar[RecordType] = RecordType.EGG_PACK
    requires: ClassVar[tuple[EntityKind, ...]] = (EntityKind.FLOCK, EntityKind.BATCH)

    flock_number: int
    inspection_date: date
    total_eggs_pulled: int
    stained: int = 0
    dirty: int = 0
    cracked: int = 0
    small: int = 0
    large: int = 0

    @property
    def grade_a(self) -> int:
        return max(self.total_eggs_pulled - self.stained - self.dirty - self.cracked, 0)

    def natural_key(self) -> tuple[Any, ...]:
        return (self.flock_number, self.inspection_date)


@dataclass(frozen=True)
class TemperatureCheck:
    kind: ClassVar[QAKind] = QAKind.TEMPERATURE

    readings: tuple[tuple[str, float], ...]  # (position, °F) in schema order

    @property
    def average(self) -> float:
        return round(sum(t for _, t in self.readings) / len(self.readings), 2)


@dataclass(frozen=True)
class WeightLossCheck:
    kind: ClassVar[QAKind] = QAKind.WEIGHT_LOSS

    top_weight: float | None = None
    middle_weight: float | None = None
    bottom_weight: float | None = None
    total_weight: float | None = None
    percent_loss: float | None = None


@dataclass(frozen=True)
class SpecificGravityCheck:
    kind: ClassVar[QAKind] = QAKind.SPECIFIC_GRAVITY

    concentration: str | None = None
    float_count: int | None = None
    float_percent: float | None = None


QADetail = Union[TemperatureCheck, WeightLossCheck, SpecificGravityCheck]


@dataclass(frozen=True)
class QAMonitoringRecord:
    record_type: ClassVar[RecordType] = RecordType.QA_MONITORING
    requires: ClassVar[tuple[EntityKind, ...]] = (EntityKind.FLOCK, EntityKind.MACHINE)

    check_date: date
    detail: QADetail
    flock_number: int | None = None
    machine_number: str | None = None
    day_of_incubation: int | None = None

    @property
    def kind(self) -> QAKind:
        return self.detail.kind

    def natural_key(self) -> tuple[Any, ...]:
        return (self.kind.value, self.flock_number, self.machine_number, self.check_date)


@dataclass(frozen=True)
class ClearsInjectedRecord:
    record_type: ClassVar[RecordType] = RecordType.CLEARS_INJECTED
    requires: ClassVar[tuple[EntityKind, ...]] = (EntityKind.FLOCK, EntityKind.BATCH)

    flock_number: int
    check_date: date
    total_eggs_set: int
    clears_count: int = 0
    injected_count: int = 0
    clear_percent: float | None = None
    injected_percent: float | None = None
    batch_number: str | None = None

    def natural_key(self) -> tuple[Any, ...]:
        return (self.flock_number, self.batch_number, self.check_date)


Record = Union[
    FlockRecord,
    BatchRecord,
    FertilityRecord,
    ResidueRecord,
    EggPackRecord,
    QAMonitoringRecord,
    ClearsInjectedRecord,
]


def _build_flock(v: Mapping[str, Any]) -> FlockRecord:
    number = _required(_int(v, "flock_number"), "flock_number")
    return FlockRecord(
        flock_number=number,
        flock_name=_text(v, "flock_name") or f"Flock {number}",
        house_number=_text(v, "house_number"),
        breed=(_text(v, "breed") or "").lower() or None,
        age_weeks=_int(v, "age_weeks"),
        arrival_date=_date(v, "arrival_date"),
        total_birds=_int(v, "total_birds"),
    )


def _build_batch(v: Mapping[str, Any]) -> BatchRecord:
    set_date = _required(_date(v, "set_date"), "set_date")
    return BatchRecord(
        batch_number=_required(_text(v, "batch_number"), "batch_number"),
        flock_number=_required(_int(v, "flock_number"), "flock_number"),
        set_date=set_date,
        total_eggs_set=_required(_int(v, "total_eggs_set"), "total_eggs_set"),
        expected_hatch_date=_date(v, "expected_hatch_date") or set_date + timedelta(days=INCUBATION_DAYS),
        machine_number=_text(v, "machine_number"),
        status=(_text(v, "status") or "completed").lower(),
    )


def _build_fertility(v: Mapping[str, Any]) -> FertilityRecord:
    size = _required(_int(v, "sample_size"), "sample_size")
    infertile = _required(_int(v, "infertile_eggs"), "infertile_eggs")
    fertile = max(size - infertile, 0)
    fertility = _float(v, "fertility_percent")
    return FertilityRecord(
        flock_number=_required(_int(v, "flock_number"), "flock_number"),
        analysis_date=_required(_date(v, "analysis_date"), "analysis_date"),
        sample_size=size,
        infertile_eggs=infertile,
        fertile_eggs=fertile,
        early_dead=_int(v, "early_dead", 0),
        late_dead=_int(v, "late_dead", 0),
        fertility_percent=fertility if fertility is not None else _percent(fertile, size),
        hatch_percent=_float(v, "hatch_percent"),
        hof_percent=_float(v, "hof_percent"),
        batch_number=_text(v, "batch_number"),
    )


def _build_residue(v: Mapping[str, Any]) -> ResidueRecord:
    return ResidueRecord(
        flock_number=_required(_int(v, "flock_number"), "flock_number"),
        analysis_date=_required(_date(v, "analysis_date"), "analysis_date"),
        sample_size=_required(_int(v, "sample_size"), "sample_size"),
        infertile_eggs=_required(_int(v, "infertile_eggs"), "infertile_eggs"),
        early_dead=_int(v, "early_dead", 0),
        mid_dead=_int(v, "mid_dead", 0),
        late_dead=_int(v, "late_dead", 0),
        pipped_not_hatched=_int(v, "pipped_not_hatched", 0),
        contaminated=_int(v, "contaminated", 0),
        malformed=_int(v, "malformed", 0),
        batch_number=_text(v, "batch_number"),
    )


def _build_egg_pack(v: Mapping[str, Any]) -> EggPackRecord:
    return EggPackRecord(
        flock_number=_required(_int(v, "flock_number"), "flock_number"),
        inspection_date=_required(_date(v, "inspection_date"), "inspection_date"),
        total_eggs_pulled=_required(_int(v, "total_eggs_pulled"), "total_eggs_pulled"),
        stained=_int(v, "stained", 0),
        dirty=_int(v, "dirty", 0),
        cracked=_int(v, "cracked", 0),
        small=_int(v, "small", 0),
        large=_int(v, "large", 0),
    )


_TEMPERATURE_FIELDS = ("temperature", "temp_front", "temp_middle", "temp_back")
_WEIGHT_FIELDS = ("top_weight", "middle_weight", "bottom_weight", "total_weight", "percent_loss")
_GRAVITY_FIELDS = ("concentration", "float_count", "float_percent")


def _qa_detail(v: Mapping[str, Any]) -> QADetail:
    groups = [
        name for name, fields in (
            ("temperature", _TEMPERATURE_FIELDS),
            ("weight_loss", _WEIGHT_FIELDS),
            ("specific_gravity", _GRAVITY_FIELDS),
        )
        if any(not is_blank(v.get(f)) for f in fields)
    ]
    if len(groups) != 1:
        raise RecordBuildError(f"QA row must carry exactly one measurement group, found {groups or 'none'}")
    group = groups[0]
    if group == "temperature":
        readings = tuple((f, float(_float(v, f))) for f in _TEMPERATURE_FIELDS if not is_blank(v.get(f)))
        return TemperatureCheck(readings=readings)
    if group == "weight_loss":
        return WeightLossCheck(**{f: _float(v, f) for f in _WEIGHT_FIELDS})
    return SpecificGravityCheck(
        concentration=_text(v, "concentration"),
        float_count=_int(v, "float_count"),
        float_percent=_float(v, "float_percent"),
    )


def _build_qa(v: Mapping[str, Any]) -> QAMonitoringRecord:
    return QAMonitoringRecord(
        check_date=_required(_date(v, "check_date"), "check_date"),
        detail=_qa_detail(v),
        flock_number=_int(v, "flock_number"),
        machine_number=_text(v, "machine_number"),
        day_of_incubation=_int(v, "day_of_incubation"),
    )


def _build_clears_injected(v: Mapping[str, Any]) -> ClearsInjectedRecord:
    total = _required(_int(v, "total_eggs_set"), "total_eggs_set")
    clears = _int(v, "clears_count", 0)
    injected = _int(v, "injected_count", 0)
    clear_pct = _float(v, "clear_percent")
    injected_pct = _float(v, "injected_percent")
    return ClearsInjectedRecord(
        flock_number=_required(_int(v, "flock_number"), "flock_number"),
        check_date=_required(_date(v, "check_date"), "check_date"),
        total_eggs_set=total,
        clears_count=clears,
        injected_count=injected,
        clear_percent=clear_pct if clear_pct is not None else _percent(clears, total),
        injected_percent=injected_pct if injected_pct is not None else _percent(injected, total),
        batch_number=_text(v, "batch_number"),
    )


_BUILDERS: dict[RecordType, Callable[[Mapping[str, Any]], Record]] = {
    RecordType.FLOCK: _build_flock,
    RecordType.BATCH: _build_batch,
    RecordType.FERTILITY: _build_fertility,
    RecordType.RESIDUE: _build_residue,
    RecordType.EGG_PACK: _build_egg_pack,
    RecordType.QA_MONITORING: _build_qa,
    RecordType.CLEARS_INJECTED: _build_clears_injected,
}

_unhandled = set(RecordType) - set(_BUILDERS)
if _unhandled:  # pragma: no cover - guards new RecordType members
    raise ImportError(f"no record builder for {sorted(t.value for t in _unhandled)}")


def build_record(record_type: RecordType, values: Mapping[str, Any]) -> Record:
    """Build the typed record for one default-filled row."""
    return _BUILDERS[record_type](values)


def record_payload(record: Record) -> dict[str, Any]:
    """JSON-ready dict of a record (dates as ISO strings, QA kind included)."""
    data = asdict(record)
    if isinstance(record, QAMonitoringRecord):
        data["kind"] = record.kind.value
        data["detail"]["kind"] = record.kind.value
    return _jsonable(data)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, date):
        return value.isoformat()
    return value
