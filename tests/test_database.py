"""
Test database engine setup and package import boundaries
"""

import os
import subprocess
import sys
from pathlib import Path

from sqlalchemy.pool import StaticPool

from pipeline.app.core import database
from pipeline.app.core.database import close_db, engine_options, get_engine

ROOT = Path(__file__).resolve().parent.parent


def test_in_memory_sqlite_uses_one_shared_connection():
    options = engine_options("sqlite+aiosqlite:///:memory:")
    assert options["poolclass"] is StaticPool
    assert "pool_size" not in options

    options = engine_options("sqlite+aiosqlite:///./pantry.db")
    assert "poolclass" not in options


def test_postgres_gets_pool_settings():
    options = engine_options("postgresql+asyncpg://postgres:postgres@db:5432/postgres")

    assert options["pool_pre_ping"] is True
    assert options["pool_size"] == 5
    assert options["max_overflow"] == 10
    assert options["pool_recycle"] == 300


async def test_engine_is_built_on_first_use_and_reset_on_close():
    await close_db()
    assert database._engine is None

    engine = get_engine()
    assert get_engine() is engine
    assert isinstance(engine.sync_engine.pool, StaticPool)

    await close_db()
    assert database._engine is None


def test_console_import_leaves_database_layer_alone():
    code = (
        "import sys\n"
        "import console.app.stores.opportunity_store\n"
        "loaded = [m for m in ('sqlalchemy', 'pipeline.app.core.database') if m in sys.modules]\n"
        "print(','.join(loaded))\n"
    )
    env = {**os.environ, "PYTHONPATH": str(ROOT)}
    result = subprocess.run(
        [sys.executable, "-c", code], cwd=ROOT, env=env, capture_output=True, text=True, check=True
    )

    assert result.stdout.strip() == ""
