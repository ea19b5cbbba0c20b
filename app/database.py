from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Sequence
from urllib.parse import urlparse

import aiosqlite

from app.config import DATABASE_MAX_CONNECTIONS, DATABASE_PATH, DATABASE_URL, SEED_DEMO_CASES
from app.models.emergency import EmergencyCase, Resource, VitalsSnapshot, utcnow
from app.services.triage import retriage

try:  # Optional: only required when DATABASE_URL is set (Postgres)
    import asyncpg  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    asyncpg = None

logger = logging.getLogger(__name__)


class DatabaseAdapter:
    engine: str

    async def execute(self, query: str, params: Sequence | None = None) -> int:  # pragma: no cover - interface
        """Run a statement and return the number of affected rows."""
        raise NotImplementedError

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_one(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_all(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def executescript(self, script: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class SQLiteAdapter(DatabaseAdapter):
    conn: aiosqlite.Connection
    engine: str = "sqlite"

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        cursor = await self.conn.execute(query, params or ())
        return cursor.rowcount

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        await self.conn.executemany(query, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchall()

    async def commit(self) -> None:
        await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()

    async def executescript(self, script: str) -> None:
        await self.conn.executescript(script)


@dataclass
class PostgresAdapter(DatabaseAdapter):
    pool: "asyncpg.Pool"  # type: ignore[name-defined]
    engine: str = "postgres"

    @staticmethod
    def _translate_query(query: str) -> str:
        # Convert SQLite-style ? placeholders to asyncpg-style $1, $2, ...
        if "$1" in query:
            return query
        idx = 1
        out = []
        for ch in query:
            if ch == "?":
                out.append(f"${idx}")
                idx += 1
            else:
                out.append(ch)
        return "".join(out)

    @staticmethod
    def _rowcount(status: str) -> int:
        # asyncpg returns command tags such as "UPDATE 1" or "INSERT 0 1"
        try:
            return int(status.rsplit(" ", 1)[-1])
        except (AttributeError, ValueError):
            return 0

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            status = await conn.execute(q, *(params or ()))
        return self._rowcount(status)

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            await conn.executemany(q, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(q, *(params or ()))

    async def fetch_all(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetch(q, *(params or ()))

    async def commit(self) -> None:
        # asyncpg autocommits per statement unless an explicit transaction is used.
        return

    async def close(self) -> None:
        await self.pool.close()

    async def executescript(self, script: str) -> None:
        # Not supported for Postgres; callers should split statements.
        raise NotImplementedError


_db: DatabaseAdapter | None = None


async def get_db() -> DatabaseAdapter:
    global _db
    if _db is None:
        if DATABASE_URL:
            if DATABASE_URL.startswith("sqlite"):
                sqlite_path = _sqlite_path_from_url(DATABASE_URL) or DATABASE_PATH
                conn = await aiosqlite.connect(sqlite_path)
                conn.row_factory = aiosqlite.Row
                _db = SQLiteAdapter(conn)
                logger.info("Connected to SQLite database at %s", sqlite_path)
            else:
                if asyncpg is None:
                    raise RuntimeError(
                        "DATABASE_URL is set but asyncpg is not installed. "
                        "Install asyncpg or unset DATABASE_URL."
                    )
                pool = await asyncpg.create_pool(
                    dsn=DATABASE_URL,
                    min_size=1,
                    max_size=DATABASE_MAX_CONNECTIONS,
                )
                _db = PostgresAdapter(pool)
                logger.info("Connected to Postgres database")
        else:
            conn = await aiosqlite.connect(DATABASE_PATH)
            conn.row_factory = aiosqlite.Row
            _db = SQLiteAdapter(conn)
            logger.info("Connected to SQLite database at %s", DATABASE_PATH)
    return _db


def _sqlite_path_from_url(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path or ""
    if not path or path == "/":
        return ""
    # sqlite:////absolute/path.db -> keep absolute path
    if url.startswith("sqlite:////"):
        return path
    # sqlite:///relative.db -> strip leading slash
    if path.startswith("/"):
        return path[1:]
    return path


# Cases are stored as a JSON document plus the columns queries filter on.
# arrival_time is ISO-8601 text so both engines sort it the same way.
SQLITE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS emergency_cases (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'active',
        priority TEXT NOT NULL DEFAULT 'Low',
        arrival_time TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 0,
        is_mlc INTEGER NOT NULL DEFAULT 0,
        data TEXT NOT NULL,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_cases_status_priority ON emergency_cases (status, priority);
    CREATE INDEX IF NOT EXISTS idx_cases_arrival ON emergency_cases (arrival_time);
    CREATE INDEX IF NOT EXISTS idx_cases_mlc ON emergency_cases (is_mlc);

    CREATE TABLE IF NOT EXISTS ed_resources (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'available',
        label TEXT
    );
"""

POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS emergency_cases (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'active',
        priority TEXT NOT NULL DEFAULT 'Low',
        arrival_time TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 0,
        is_mlc INTEGER NOT NULL DEFAULT 0,
        data TEXT NOT NULL,
        updated_at TEXT
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_cases_status_priority ON emergency_cases (status, priority);",
    "CREATE INDEX IF NOT EXISTS idx_cases_arrival ON emergency_cases (arrival_time);",
    "CREATE INDEX IF NOT EXISTS idx_cases_mlc ON emergency_cases (is_mlc);",
    """
    CREATE TABLE IF NOT EXISTS ed_resources (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'available',
        label TEXT
    );
    """,
]


async def init_db() -> None:
    db = await get_db()

    if db.engine == "sqlite":
        await db.executescript(SQLITE_SCHEMA)
    else:
        for stmt in POSTGRES_SCHEMA:
            await db.execute(stmt)

    await db.commit()

    if SEED_DEMO_CASES:
        await _seed_demo_data(db)


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


def _demo_cases() -> list[EmergencyCase]:
    now = utcnow()
    cases = []

    # Case 1: STEMI
    c1 = EmergencyCase(
        id="demo-stemi",
        patient_id="P001",
        patient_age=58,
        chief_complaint="Chest pain radiating to left arm",
        symptoms=["Chest pain", "Sweating", "Nausea"],
        arrival_mode="Ambulance",
        arrival_time=now - timedelta(minutes=12),
    )
    c1.vitals_history = [
        VitalsSnapshot(
            systolic_bp=165, diastolic_bp=98, heart_rate=104, temperature=37.1,
            oxygen_saturation=95, respiratory_rate=22, pain_scale=8,
            timestamp=now - timedelta(minutes=12),
        ),
        VitalsSnapshot(
            systolic_bp=138, diastolic_bp=88, heart_rate=128, temperature=37.2,
            oxygen_saturation=91, respiratory_rate=26, pain_scale=9,
            timestamp=now - timedelta(minutes=2),
        ),
    ]
    c1.vitals = c1.vitals_history[-1]
    cases.append(c1)

    # Case 2: Stroke
    c2 = EmergencyCase(
        id="demo-stroke",
        patient_id="P002",
        patient_age=72,
        chief_complaint="Slurred speech, right arm weakness",
        symptoms=["Confusion", "Weakness"],
        arrival_mode="Ambulance",
        arrival_time=now - timedelta(minutes=20),
    )
    c2.vitals_history = [
        VitalsSnapshot(
            systolic_bp=188, diastolic_bp=102, heart_rate=92, temperature=36.9,
            oxygen_saturation=96, respiratory_rate=18,
            timestamp=now - timedelta(minutes=20),
        ),
    ]
    c2.vitals = c2.vitals_history[-1]
    cases.append(c2)

    # Case 3: Ankle injury
    c3 = EmergencyCase(
        id="demo-ankle",
        patient_id="P003",
        patient_age=24,
        chief_complaint="Ankle injury",
        symptoms=["Ankle swelling"],
        arrival_time=now - timedelta(minutes=35),
    )
    c3.vitals_history = [
        VitalsSnapshot(
            systolic_bp=122, diastolic_bp=78, heart_rate=76, temperature=36.7,
            oxygen_saturation=99, respiratory_rate=16, pain_scale=5,
            timestamp=now - timedelta(minutes=35),
        ),
    ]
    c3.vitals = c3.vitals_history[-1]
    cases.append(c3)

    for case in cases:
        retriage(case)
    return cases


def _demo_resources() -> list[Resource]:
    return [
        Resource(id="TB-1", type="trauma_bay", label="Trauma Bay 1"),
        Resource(id="TB-2", type="trauma_bay", label="Trauma Bay 2"),
        Resource(id="AB-1", type="acute_bed", label="Acute 1"),
        Resource(id="AB-2", type="acute_bed", label="Acute 2"),
        Resource(id="SB-1", type="standard_bed", label="Bed 5"),
        Resource(id="SB-2", type="standard_bed", label="Bed 6"),
        Resource(id="TC-1", type="triage_chair", label="Chair 1"),
        Resource(id="TC-2", type="triage_chair", label="Chair 2"),
    ]


async def _seed_demo_data(db: DatabaseAdapter) -> None:
    """Seed demo cases and a small resource pool for UI previews."""
    cases = _demo_cases()
    existing_rows = await db.fetch_all(
        "SELECT id FROM emergency_cases WHERE id IN ('demo-stemi', 'demo-stroke', 'demo-ankle')"
    )
    existing = {row["id"] for row in existing_rows}
    rows = [
        (
            case.id,
            case.status,
            case.priority,
            case.arrival_time.isoformat(timespec="microseconds"),
            case.version,
            case.model_dump_json(),
            case.last_updated.isoformat(timespec="microseconds"),
        )
        for case in cases
        if case.id not in existing
    ]
    if rows:
        await db.executemany(
            """INSERT INTO emergency_cases (
                id, status, priority, arrival_time, version, data, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )

    resource_count = await db.fetch_one("SELECT COUNT(*) as count FROM ed_resources")
    if not resource_count or resource_count["count"] == 0:
        await db.executemany(
            "INSERT INTO ed_resources (id, type, status, label) VALUES (?, ?, ?, ?)",
            [(r.id, r.type, r.status, r.label) for r in _demo_resources()],
        )
    await db.commit()
    logger.info("Seeded %d demo cases", len(rows))

