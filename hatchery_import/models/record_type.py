from __future__ import annotations

from enum import Enum

"""Record type enums for the hatchery workbook importer.

A sheet is classified as exactly one RecordType (or none). QA monitoring
sheets additionally carry a per-row QAKind discriminator.
"""

__all__ = [
    "RecordType",
    "QAKind",
    "EntityKind",
]


class RecordType(Enum):
    """Closed set of record schemas a sheet can be classified as."""
    FLOCK = "flock"
    BATCH = "batch"  # house / batch set records
    EGG_PACK = "egg_pack"
    FERTILITY = "fertility"
    RESIDUE = "residue"
    QA_MONITORING = "qa_monitoring"
    CLEARS_INJECTED = "clears_injected"

    @classmethod
    def from_value(cls, value: str) -> RecordType:
        """Lookup by value, tolerating case and dash/space variation."""
        key = value.strip().lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"unknown record type: {value!r}")


class QAKind(Enum):
    """Measurement group carried by a QA monitoring row."""
    TEMPERATURE = "temperature"
    WEIGHT_LOSS = "weight_loss"
    SPECIFIC_GRAVITY = "specific_gravity"


class EntityKind(Enum):
    """Referenced entities, listed in resolution/creation order."""
    FLOCK = "flock"
    MACHINE = "machine"
    BATCH = "batch"
