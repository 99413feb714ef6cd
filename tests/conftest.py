import os
import tempfile

# IMPORTANT: settings are read at import time, so point them at a throwaway
# SQLite file before anything from `app` is imported.
_TMP = tempfile.mkdtemp(prefix="verify-dispatch-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ["ENV"] = "test"
os.environ["TRIGGER_TOKEN"] = "test-trigger"
for _k in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"):
    os.environ.pop(_k, None)

import pytest
import pytest_asyncio
from sqlalchemy import event

from app.db import engine, SessionLocal
from app.models import Base


# SQLite only locks on first write by default, which lets two concurrent
# validations both read before either writes. BEGIN IMMEDIATE takes the write
# lock up front so transactions serialize the way row locks would on Postgres.
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


if not event.contains(engine.sync_engine, "connect", _sqlite_connect):
    event.listen(engine.sync_engine, "connect", _sqlite_connect)
    event.listen(engine.sync_engine, "begin", _sqlite_begin)


# Fresh schema per test, on the SAME loop as the test function. DISPOSE the
# engine afterwards so no pooled connection (bound to a previous loop) is
# reused by the next test.
@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def _schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(_schema):
    async with SessionLocal() as s:
        yield s


@pytest.fixture
def transport():
    from tests.factories import RecordingTransport
    return RecordingTransport()


@pytest.fixture
def sleep():
    from tests.factories import RecordingSleep
    return RecordingSleep()
