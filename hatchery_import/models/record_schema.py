from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from functools import cached_property

from .record_type import QAKind, RecordType

"""Per-RecordType field tables (column aliases, kinds, defaults).

The tables below are the default column mapping shipped with the tool.
Extra header aliases can be supplied through the ``column_aliases`` config
section and are merged with :func:`get_schemas`.
"""

__all__ = [
    "FieldKind",
    "FieldSpec",
    "RecordSchema",
    "SCHEMAS",
    "get_schemas",
    "normalize_header",
]


class FieldKind(Enum):
    TEXT = "text"
    FLOCK_ID = "flock_id"  # positive integer flock number
    CODE = "code"  # batch number style identifier
    COUNT = "count"  # non-negative integer
    NUMBER = "number"
    PERCENT = "percent"  # 0..100
    DATE = "date"
    TEMPERATURE = "temperature"  # Fahrenheit


@dataclass(frozen=True)
class FieldSpec:
    """One canonical field of a record schema.

    ``context_date`` names the DateContext anchor used as fallback when the
    cell is empty; ``global_default`` names the ImportConfig attribute used
    as last resort ("run_date" or "sample_size").
    """
    name: str
    aliases: tuple[str, ...]
    kind: FieldKind
    required: bool = False
    context_date: str | None = None
    global_default: str | None = None
    qa_kind: QAKind | None = None  # measurement group for QA monitoring fields


def normalize_header(text: object) -> str:
    """Normalize a header cell for alias lookup.

    Case, whitespace and punctuation are ignored; ``%`` and ``#`` are kept
    as PCT / NO so that "Hatch %" and "Hatch" stay distinct.
    """
    s = str(text).upper().replace("%", "PCT").replace("#", "NO")
    return re.sub(r"[^A-Z0-9]", "", s)


@dataclass(frozen=True)
class RecordSchema:
    record_type: RecordType
    fields: tuple[FieldSpec, ...]
    name_hints: tuple[str, ...] = ()

    @cached_property
    def alias_index(self) -> dict[str, str]:
        """Normalized alias -> canonical field name."""
        index: dict[str, str] = {}
        for spec in self.fields:
            index.setdefault(normalize_header(spec.name), spec.name)
            for alias in spec.aliases:
                index.setdefault(normalize_header(alias), spec.name)
        return index

    @cached_property
    def field_order(self) -> dict[str, int]:
        return {spec.name: i for i, spec in enumerate(self.fields)}

    def field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def match_header(self, header: str) -> str | None:
        """Return the canonical field for a header cell, or None."""
        key = normalize_header(header)
        if not key:
            return None
        return self.alias_index.get(key)

    def with_aliases(self, extra: Mapping[str, Iterable[str]]) -> RecordSchema:
        """Copy of this schema with additional aliases merged per field."""
        if not extra:
            return self
        fields = []
        for spec in self.fields:
            added = tuple(a for a in extra.get(spec.name, ()) if a not in spec.aliases)
            fields.append(replace(spec, aliases=spec.aliases + added) if added else spec)
        return replace(self, fields=tuple(fields))


_FLOCK_NUMBER = FieldSpec(
    "flock_number", ("Flock #", "Flock No", "Flock Number", "Flock"), FieldKind.FLOCK_ID, required=True
)
_FLOCK_REF = replace(_FLOCK_NUMBER, required=False)
_BATCH_REF = FieldSpec("batch_number", ("Batch #", "Batch No", "Batch Number", "Batch"), FieldKind.CODE)
_MACHINE_REF = FieldSpec("machine_number", ("Machine", "Machine #", "Setter", "Setter #"), FieldKind.TEXT)
_SAMPLE_SIZE = FieldSpec(
    "sample_size", ("Size", "Sample", "Sample Size"), FieldKind.COUNT, global_default="sample_size"
)


SCHEMAS: dict[RecordType, RecordSchema] = {
    RecordType.FLOCK: RecordSchema(
        RecordType.FLOCK,
        (
            _FLOCK_NUMBER,
            FieldSpec("flock_name", ("Flock Name", "Name"), FieldKind.TEXT),
            FieldSpec("house_number", ("House", "House #", "House Number"), FieldKind.TEXT),
            FieldSpec("breed", ("Breed", "Strain"), FieldKind.TEXT),
            FieldSpec("age_weeks", ("Age", "Age Weeks", "Age (weeks)", "Flock Age"), FieldKind.COUNT),
            FieldSpec(
                "arrival_date", ("Arrival Date", "Arrival", "Placement Date"), FieldKind.DATE,
                global_default="run_date",
            ),
            FieldSpec("total_birds", ("Total Birds", "Birds", "Bird Count", "Hens"), FieldKind.COUNT),
        ),
        name_hints=("flock",),
    ),
    RecordType.BATCH: RecordSchema(
        RecordType.BATCH,
        (
            replace(_BATCH_REF, required=True),
            _FLOCK_NUMBER,
            _MACHINE_REF,
            FieldSpec(
                "set_date", ("Set Date", "Date Set", "Setting Date"), FieldKind.DATE,
                context_date="set_date", global_default="run_date",
            ),
            FieldSpec(
                "expected_hatch_date", ("Expected Hatch", "Expected Hatch Date", "Hatch Date"), FieldKind.DATE,
                context_date="hatch_date",
            ),
            FieldSpec(
                "total_eggs_set", ("Eggs Set", "Total Eggs Set", "Total Set"), FieldKind.COUNT, required=True
            ),
            FieldSpec("status", ("Status", "Batch Status"), FieldKind.TEXT),
        ),
        name_hints=("house", "batch", "sets"),
    ),
    RecordType.FERTILITY: RecordSchema(
        RecordType.FERTILITY,
        (
            _FLOCK_NUMBER,
            _BATCH_REF,
            FieldSpec(
                "analysis_date", ("Analysis Date", "Candle Date", "Date"), FieldKind.DATE,
                context_date="candle_date", global_default="run_date",
            ),
            _SAMPLE_SIZE,
            FieldSpec("infertile_eggs", ("Infertile", "Infertile Eggs", "INF"), FieldKind.COUNT, required=True),
            FieldSpec("early_dead", ("Dead", "Early Dead", "ED"), FieldKind.COUNT),
            FieldSpec("late_dead", ("Late Dead", "LD"), FieldKind.COUNT),
            FieldSpec("fertility_percent", ("Fertility", "Fertility %", "Fert %"), FieldKind.PERCENT),
            FieldSpec("hatch_percent", ("Hatch %", "Hatch Percent"), FieldKind.PERCENT),
            FieldSpec("hof_percent", ("HOF %", "HOF", "Hatch of Fertile"), FieldKind.PERCENT),
        ),
        name_hints=("fertility",),
    ),
    RecordType.RESIDUE: RecordSchema(
        RecordType.RESIDUE,
        (
            _FLOCK_NUMBER,
            _BATCH_REF,
            FieldSpec(
                "analysis_date", ("Analysis Date", "Breakout Date", "Date"), FieldKind.DATE,
                context_date="hatch_date", global_default="run_date",
            ),
            _SAMPLE_SIZE,
            FieldSpec("infertile_eggs", ("Infertile", "Inf", "Infertile Eggs"), FieldKind.COUNT, required=True),
            FieldSpec("early_dead", ("ED", "Early Dead"), FieldKind.COUNT),
            FieldSpec("mid_dead", ("MD", "Mid Dead"), FieldKind.COUNT),
            FieldSpec("late_dead", ("LD", "Late Dead"), FieldKind.COUNT),
            FieldSpec("pipped_not_hatched", ("Pipped", "Pip", "DY Egg", "Pipped Not Hatched"), FieldKind.COUNT),
            FieldSpec("contaminated", ("Cont", "Contaminated"), FieldKind.COUNT),
            FieldSpec("malformed", ("Abnormal", "Malformed"), FieldKind.COUNT),
        ),
        name_hints=("residue", "breakout"),
    ),
    RecordType.EGG_PACK: RecordSchema(
        RecordType.EGG_PACK,
        (
            _FLOCK_NUMBER,
            FieldSpec(
                "inspection_date", ("Inspection Date", "Date"), FieldKind.DATE,
                context_date="set_date", global_default="run_date",
            ),
            FieldSpec(
                "total_eggs_pulled", ("Total Eggs Pulled", "Eggs Pulled", "Total Pulled"), FieldKind.COUNT,
                required=True,
            ),
            FieldSpec("stained", ("Stained",), FieldKind.COUNT),
            FieldSpec("dirty", ("Dirty",), FieldKind.COUNT),
            FieldSpec("cracked", ("Cracked",), FieldKind.COUNT),
            FieldSpec("small", ("Small",), FieldKind.COUNT),
            FieldSpec("large", ("Large", "Double Yolk"), FieldKind.COUNT),
        ),
        name_hints=("egg pack", "eggpack", "egg quality"),
    ),
    RecordType.QA_MONITORING: RecordSchema(
        RecordType.QA_MONITORING,
        (
            _FLOCK_REF,
            _MACHINE_REF,
            FieldSpec(
                "check_date", ("Check Date", "Date Check", "Date"), FieldKind.DATE,
                context_date="candle_date", global_default="run_date",
            ),
            FieldSpec("day_of_incubation", ("Day", "Day of Incubation", "Incubation Day"), FieldKind.COUNT),
            FieldSpec("temperature", ("Temp", "Temperature"), FieldKind.TEMPERATURE, qa_kind=QAKind.TEMPERATURE),
            FieldSpec("temp_front", ("Front Temp", "Temp Front"), FieldKind.TEMPERATURE, qa_kind=QAKind.TEMPERATURE),
            FieldSpec(
                "temp_middle", ("Middle Temp", "Temp Middle"), FieldKind.TEMPERATURE, qa_kind=QAKind.TEMPERATURE
            ),
            FieldSpec("temp_back", ("Back Temp", "Temp Back"), FieldKind.TEMPERATURE, qa_kind=QAKind.TEMPERATURE),
            FieldSpec("top_weight", ("Top Weight",), FieldKind.NUMBER, qa_kind=QAKind.WEIGHT_LOSS),
            FieldSpec("middle_weight", ("Middle Weight",), FieldKind.NUMBER, qa_kind=QAKind.WEIGHT_LOSS),
            FieldSpec("bottom_weight", ("Bottom Weight",), FieldKind.NUMBER, qa_kind=QAKind.WEIGHT_LOSS),
            FieldSpec("total_weight", ("Total Weight",), FieldKind.NUMBER, qa_kind=QAKind.WEIGHT_LOSS),
            FieldSpec(
                "percent_loss", ("% Loss", "Percent Loss", "Weight Loss %"), FieldKind.PERCENT,
                qa_kind=QAKind.WEIGHT_LOSS,
            ),
            FieldSpec(
                "concentration", ("Conc", "Concentration"), FieldKind.TEXT, qa_kind=QAKind.SPECIFIC_GRAVITY
            ),
            FieldSpec(
                "float_count", ("Float", "Floaters", "Float Count"), FieldKind.COUNT,
                qa_kind=QAKind.SPECIFIC_GRAVITY,
            ),
            FieldSpec(
                "float_percent", ("%", "Float %", "Float Percent"), FieldKind.PERCENT,
                qa_kind=QAKind.SPECIFIC_GRAVITY,
            ),
        ),
        name_hints=("qa", "temp", "weight", "gravity"),
    ),
    RecordType.CLEARS_INJECTED: RecordSchema(
        RecordType.CLEARS_INJECTED,
        (
            _FLOCK_NUMBER,
            _BATCH_REF,
            FieldSpec(
                "check_date", ("Check Date", "Candle Date", "Date"), FieldKind.DATE,
                context_date="candle_date", global_default="run_date",
            ),
            FieldSpec(
                "total_eggs_set", ("Total Eggs Set", "Eggs Set", "Total Set"), FieldKind.COUNT, required=True
            ),
            FieldSpec("clears_count", ("Clears", "Clear Eggs", "Clears Count"), FieldKind.COUNT),
            FieldSpec("injected_count", ("Injected", "Injected Eggs", "Eggs Injected"), FieldKind.COUNT),
            FieldSpec("clear_percent", ("Clear %", "Clears %"), FieldKind.PERCENT),
            FieldSpec("injected_percent", ("Injected %",), FieldKind.PERCENT),
        ),
        name_hints=("clears", "injected", "embrex"),
    ),
}


def get_schemas(
    extra_aliases: Mapping[str, Mapping[str, Iterable[str]]] | None = None,
) -> dict[RecordType, RecordSchema]:
    """Return the schema table, optionally merged with configured aliases.

    ``extra_aliases`` is keyed by record type value (e.g. ``"fertility"``)
    then by canonical field name.
    """
    if not extra_aliases:
        return dict(SCHEMAS)
    merged: dict[RecordType, RecordSchema] = {}
    for record_type, schema in SCHEMAS.items():
        merged[record_type] = schema.with_aliases(extra_aliases.get(record_type.value, {}))
    return merged
