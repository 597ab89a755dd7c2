# Shared pytest fixtures
from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from hatchery_import.db.store import InMemoryStore
from hatchery_import.logging.init import reset_logging
from hatchery_import.models.records import Record


def make_workbook(path: Path, sheets: dict[str, list[list[Any]]]) -> Path:
    """Write raw rows (no header handling) to an .xlsx, one sheet per key."""
    with pd.ExcelWriter(path) as writer:
        for sheet, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet, header=False, index=False)
    return path


FERTILITY_HEADER = ["Flock #", "Size", "Infertile", "Dead", "Fertility"]


def fertility_rows(n: int, *, first_flock: int = 1) -> list[list[Any]]:
    """n valid fertility rows, one flock per row."""
    return [[first_flock + i, 648, 60, 10, 90.7] for i in range(n)]


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SlowStore(InMemoryStore):
    """InMemoryStore whose inserts cost ``latency`` seconds of fake time."""

    def __init__(self, clock: FakeClock, latency: float) -> None:
        super().__init__()
        self.clock = clock
        self.latency = latency

    def insert_record(self, record: Record, refs, natural_key) -> int:
        self.clock.advance(self.latency)
        return super().insert_record(record, refs, natural_key)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch, tmp_path: Path) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    for var in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def seeded_store() -> InMemoryStore:
    """Flocks 1-5 each with one batch set on 2024-03-04."""
    s = InMemoryStore()
    for n in range(1, 6):
        flock_id = s.create_flock(n)
        s.create_batch(flock_id, f"B-{n}", date(2024, 3, 4))
    return s


@pytest.fixture()
def sample_config_yaml() -> str:
    return """skip_duplicates: true
create_missing_entities: false
sample_size: 600
timeout_seconds: 30
error_log_dir: ./logs
default_values:
  fertility:
    hatch_percent: 80
null_sentinels: ["N/A", "-"]
column_aliases:
  fertility:
    infertile_eggs: ["Clears (Inf)"]
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: hatchery
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def xlsx_factory(tmp_path: Path):
    """Build an .xlsx under tmp_path: xlsx_factory("name.xlsx", {"Sheet": rows})."""
    def build(name: str, sheets: dict[str, list[list[Any]]]) -> Path:
        return make_workbook(tmp_path / name, sheets)
    return build


@pytest.fixture()
def fertility_sheet():
    """Header + n valid fertility rows as raw sheet rows."""
    def build(n: int, *, first_flock: int = 1) -> list[list[Any]]:
        return [FERTILITY_HEADER, *fertility_rows(n, first_flock=first_flock)]
    return build


@pytest.fixture()
def slow_store_factory(fake_clock: FakeClock):
    def build(latency: float) -> SlowStore:
        return SlowStore(fake_clock, latency)
    return build
