from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from typing import Any

import psycopg2
from psycopg2 import errorcodes, errors
from psycopg2.extras import Json

from ..models.config_models import DatabaseConfig
from ..models.record_type import RecordType
from ..models.records import BatchRecord, FlockRecord, QAMonitoringRecord, Record, record_payload
from .store import DuplicateRecordError, EntityRefs, StatementTimeoutError, StoreError, StoreUnavailableError

"""PostgreSQL RecordStore (psycopg2).

Every public write runs in its own transaction (``with conn:`` commits on
success and rolls back on error), so rows committed before a timeout or a
later failure stay committed.

psycopg2 errors are translated:
- QueryCanceled (statement_timeout) -> StatementTimeoutError
- OperationalError / InterfaceError -> StoreUnavailableError
- IntegrityError (unique_violation) -> DuplicateRecordError
- any other psycopg2.Error -> StoreError
"""

__all__ = [
    "CONNECT_TIMEOUT_SECONDS",
    "SCHEMA_SQL",
    "RECORD_TABLES",
    "PostgresStore",
    "resolve_dsn",
]

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10

RECORD_TABLES: dict[RecordType, str] = {
    RecordType.FLOCK: "flocks",
    RecordType.BATCH: "batches",
    RecordType.FERTILITY: "fertility_analysis",
    RecordType.RESIDUE: "residue_analysis",
    RecordType.EGG_PACK: "egg_pack_quality",
    RecordType.QA_MONITORING: "qa_monitoring",
    RecordType.CLEARS_INJECTED: "clears_injected",
}

_DETAIL_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id          SERIAL PRIMARY KEY,
    natural_key TEXT NOT NULL UNIQUE,
    flock_id    INTEGER REFERENCES flocks(id),
    machine_id  INTEGER REFERENCES machines(id),
    batch_id    INTEGER REFERENCES batches(id),
    kind        TEXT,
    detail      JSONB NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS flocks (
    id           SERIAL PRIMARY KEY,
    flock_number INTEGER NOT NULL UNIQUE,
    flock_name   TEXT NOT NULL,
    house_number TEXT,
    breed        TEXT,
    age_weeks    INTEGER,
    arrival_date DATE,
    total_birds  INTEGER
);
CREATE TABLE IF NOT EXISTS machines (
    id             SERIAL PRIMARY KEY,
    machine_number TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS batches (
    id                  SERIAL PRIMARY KEY,
    flock_id            INTEGER NOT NULL REFERENCES flocks(id),
    machine_id          INTEGER REFERENCES machines(id),
    batch_number        TEXT NOT NULL,
    set_date            DATE NOT NULL,
    expected_hatch_date DATE,
    total_eggs_set      INTEGER,
    status              TEXT,
    UNIQUE (batch_number, set_date)
);
""" + "".join(
    _DETAIL_TABLE_DDL.format(table=table)
    for record_type, table in RECORD_TABLES.items()
    if record_type not in (RecordType.FLOCK, RecordType.BATCH)
)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string with precedence: env (incl. .env) > config file > defaults.

    DATABASE_URL / PGDSN (or ``dsn`` in config) win over the individual
    PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE settings.
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _key_text(natural_key: tuple[Any, ...]) -> str:
    return json.dumps([v.isoformat() if isinstance(v, date) else v for v in natural_key])


@contextmanager
def _translated(action: str) -> Iterator[None]:
    try:
        yield
    except errors.QueryCanceled as e:
        raise StatementTimeoutError(f"{action}: statement timeout") from e
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        raise StoreUnavailableError(f"{action}: {e}") from e
    except psycopg2.IntegrityError as e:
        if isinstance(e, errors.UniqueViolation) or getattr(e, "pgcode", None) == errorcodes.UNIQUE_VIOLATION:
            raise DuplicateRecordError(f"{action}: duplicate key") from e
        raise StoreError(f"{action}: {e}") from e
    except psycopg2.Error as e:
        raise StoreError(f"{action}: {e}") from e


class PostgresStore:
    """RecordStore over one psycopg2 connection (autocommit off)."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self._statement_timeout_ms: int | None = None

    @classmethod
    def connect(cls, db_cfg: DatabaseConfig) -> PostgresStore:
        with _translated("connect"):
            conn = psycopg2.connect(resolve_dsn(db_cfg), connect_timeout=CONNECT_TIMEOUT_SECONDS)
        conn.autocommit = False
        logger.debug("connected to postgres dbname=%s", conn.get_dsn_parameters().get("dbname"))
        return cls(conn)

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()

    def __enter__(self) -> PostgresStore:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def ensure_schema(self) -> None:
        with _translated("create schema"), self._conn, self._conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)

    def set_statement_timeout(self, seconds: float | None) -> None:
        """Applied with SET LOCAL to every later transaction; at least 1 ms."""
        self._statement_timeout_ms = None if seconds is None else max(1, int(seconds * 1000))

    def _fetch_one(self, action: str, sql: str, params: tuple[Any, ...]) -> Any:
        with _translated(action), self._conn, self._conn.cursor() as cur:
            if self._statement_timeout_ms is not None:
                cur.execute("SET LOCAL statement_timeout = %s", (self._statement_timeout_ms,))
            cur.execute(sql, params)
            row = cur.fetchone()
        return None if row is None else row[0]

    def find_flock(self, flock_number: int) -> int | None:
        return self._fetch_one(
            "find flock", "SELECT id FROM flocks WHERE flock_number = %s", (flock_number,)
        )

    def create_flock(self, flock_number: int, flock_name: str | None = None) -> int:
        return self._fetch_one(
            "create flock",
            "INSERT INTO flocks (flock_number, flock_name) VALUES (%s, %s) RETURNING id",
            (flock_number, flock_name or f"Flock {flock_number}"),
        )

    def find_machine(self, machine_number: str) -> int | None:
        return self._fetch_one(
            "find machine", "SELECT id FROM machines WHERE machine_number = %s", (machine_number,)
        )

    def create_machine(self, machine_number: str) -> int:
        return self._fetch_one(
            "create machine",
            "INSERT INTO machines (machine_number) VALUES (%s) RETURNING id",
            (machine_number,),
        )

    def find_batch(self, flock_id: int, batch_number: str | None = None) -> int | None:
        if batch_number is None:
            return self._fetch_one(
                "find batch",
                "SELECT id FROM batches WHERE flock_id = %s ORDER BY set_date DESC, id DESC LIMIT 1",
                (flock_id,),
            )
        return self._fetch_one(
            "find batch",
            "SELECT id FROM batches WHERE flock_id = %s AND batch_number = %s "
            "ORDER BY set_date DESC, id DESC LIMIT 1",
            (flock_id, batch_number),
        )

    def create_batch(
        self, flock_id: int, batch_number: str, set_date: date, machine_id: int | None = None
    ) -> int:
        return self._fetch_one(
            "create batch",
            "INSERT INTO batches (flock_id, machine_id, batch_number, set_date, status) "
            "VALUES (%s, %s, %s, %s, %s) RETURNING id",
            (flock_id, machine_id, batch_number, set_date, "completed"),
        )

    def has_record(self, record_type: RecordType, natural_key: tuple[Any, ...]) -> bool:
        if record_type is RecordType.FLOCK:
            return self.find_flock(natural_key[0]) is not None
        if record_type is RecordType.BATCH:
            found = self._fetch_one(
                "check batch",
                "SELECT id FROM batches WHERE batch_number = %s AND set_date = %s",
                tuple(natural_key),
            )
            return found is not None
        table = RECORD_TABLES[record_type]
        found = self._fetch_one(
            f"check {record_type.value}",
            f"SELECT id FROM {table} WHERE natural_key = %s",
            (_key_text(natural_key),),
        )
        return found is not None

    def insert_record(self, record: Record, refs: EntityRefs, natural_key: tuple[Any, ...]) -> int:
        if isinstance(record, FlockRecord):
            return self._fetch_one(
                "insert flock",
                "INSERT INTO flocks (flock_number, flock_name, house_number, breed, age_weeks, "
                "arrival_date, total_birds) VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING id",
                (
                    record.flock_number, record.flock_name, record.house_number, record.breed,
                    record.age_weeks, record.arrival_date, record.total_birds,
                ),
            )
        if isinstance(record, BatchRecord):
            return self._fetch_one(
                "insert batch",
                "INSERT INTO batches (flock_id, machine_id, batch_number, set_date, expected_hatch_date, "
                "total_eggs_set, status) VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING id",
                (
                    refs.flock_id, refs.machine_id, record.batch_number, record.set_date,
                    record.expected_hatch_date, record.total_eggs_set, record.status,
                ),
            )
        table = RECORD_TABLES[record.record_type]
        kind = record.kind.value if isinstance(record, QAMonitoringRecord) else None
        return self._fetch_one(
            f"insert {record.record_type.value}",
            f"INSERT INTO {table} (natural_key, flock_id, machine_id, batch_id, kind, detail) "
            "VALUES (%s, %s, %s, %s, %s, %s) RETURNING id",
            (
                _key_text(natural_key), refs.flock_id, refs.machine_id, refs.batch_id, kind,
                Json(record_payload(record)),
            ),
        )
