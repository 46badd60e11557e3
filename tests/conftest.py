import os
import tempfile
from pathlib import Path

# server.py reads its config at import time
_TMP = Path(tempfile.mkdtemp(prefix="donationdesk-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'app.db'}"
os.environ["PAYMENT_BACKEND"] = "mock"
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

import anyio
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from donationdesk.infra.sql import make_async_engine
from donationdesk.model.admins import AdminStore
from donationdesk.model.ledger import DonationLedger
from donationdesk.model.orm import Base
from donationdesk.payments import MockPay
from donationdesk.server import app, get_db, payment_adapter

TEST_SECRET = "s3cr3t"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def session_factory(tmp_path):
    engine, SessionAsync = make_async_engine(
        f"sqlite:///{tmp_path / 'test.db'}"
    )

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    anyio.run(_create)
    yield SessionAsync
    anyio.run(engine.dispose)


@pytest.fixture
def adapter():
    return MockPay(key_secret=TEST_SECRET)


@pytest.fixture
def client(session_factory, adapter):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[payment_adapter] = lambda: adapter
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def donations(session_factory):
    """Read the ledger from outside a request."""
    def _list():
        async def _go():
            async with session_factory() as session:
                return await DonationLedger(session).list_newest_first()
        return anyio.run(_go)
    return _list


@pytest.fixture
def admin_count(session_factory):
    def _count(username=None):
        async def _go():
            async with session_factory() as session:
                return await AdminStore(session).count(username)
        return anyio.run(_go)
    return _count


DONOR = {
    "fullName": "Asha Verma",
    "address": "12 Temple Road, Pune",
    "mobile": "9876543210",
    "email": "asha@example.org",
    "amountINR": "500",
    "comment": "For the annual satsang",
}


class BrokenLedger:
    async def record_offline(self, donor):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    async def get(self, donation_id):
        raise OperationalError("SELECT", {}, Exception("no such table"))

    async def list_newest_first(self):
        raise OperationalError("SELECT", {}, Exception("no such table"))
