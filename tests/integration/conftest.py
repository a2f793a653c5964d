"""Integration test fixtures.

Applies the raffle migrations against an ephemeral PostgreSQL database
provided by pytest-postgresql. Tests that need the database are skipped
when no PostgreSQL server binaries are installed.
"""

from __future__ import annotations

import glob
import shutil
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_raffle_competitions.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


def _pg_ctl_available() -> bool:
    return bool(shutil.which("pg_ctl") or glob.glob("/usr/lib/postgresql/*/bin/pg_ctl"))


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(request):
    """Return (connection, dsn) with the schema applied.

    Function scope gives every test a fresh database.
    """
    if not _pg_ctl_available():
        pytest.skip("PostgreSQL server binaries (pg_ctl) not installed")
    pg = request.getfixturevalue("postgresql")
    dsn = (
        f"host={pg.info.host} "
        f"port={pg.info.port} "
        f"dbname={pg.info.dbname} "
        f"user={pg.info.user} "
        f"password={pg.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()
