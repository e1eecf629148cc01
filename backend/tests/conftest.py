"""
Test fixtures for finledger.

Every test gets a fresh SQLite database (aiosqlite, one file per test) with the
system chart of accounts seeded and one user per role. HTTP tests drive the
ASGI app in-process through httpx with ``get_db`` pointed at that database;
service tests use a session directly.
"""
import uuid
from datetime import date
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from finledger.database import get_db, init_models
from finledger.main import app
from finledger.middleware.auth import create_access_token, hash_password
from finledger.models import Account, BankAccount, CashAccount, User, Vendor
from finledger.services.chart import initialize_chart

TODAY = date(2026, 3, 14)
PASSWORD = "admin123"
_PASSWORD_HASH = hash_password(PASSWORD)

USERS = {
    "admin": "system_admin",
    "ramantha": "accountant",
    "clerk": "clerk",
    "sarah": "viewer",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(username: str) -> dict:
    """Bearer header for a seeded user."""
    token = create_access_token({"sub": username, "role": USERS[username]})
    return {"Authorization": f"Bearer {token}"}


async def balance_of(session_factory, code: str) -> Decimal:
    """Current balance of an account, read in a fresh session."""
    async with session_factory() as s:
        account = (await s.execute(
            select(Account).where(Account.account_code == code)
        )).scalar_one()
        return account.current_balance


async def fetch(session_factory, model, object_id):
    """Load one row in a fresh session (bypasses any stale identity map)."""
    async with session_factory() as s:
        return (await s.execute(select(model).where(model.id == object_id))).scalar_one_or_none()


async def fetch_all(session_factory, stmt):
    async with session_factory() as s:
        return list((await s.execute(stmt)).scalars().all())


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database with every table created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Chart of accounts, default cash box, and one user per role."""
    async with session_factory() as s:
        await initialize_chart(s)
        users = {}
        for username, role in USERS.items():
            user = User(
                username=username,
                password_hash=_PASSWORD_HASH,
                display_name=username.title(),
                role=role,
            )
            s.add(user)
            users[username] = user
        await s.commit()
    return users


@pytest_asyncio.fixture
async def db(session_factory, seeded):
    """Session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def main_cash(session_factory, seeded):
    async with session_factory() as s:
        return (await s.execute(
            select(CashAccount).where(CashAccount.name == "Main Cash")
        )).scalar_one()


@pytest_asyncio.fixture
async def bank_account(session_factory, seeded):
    """HDFC current account with 10,000 opening balance, linked to 1020-4321."""
    from finledger.services.chart import AccountResolver

    async with session_factory() as s:
        bank = BankAccount(
            name="HDFC Current",
            bank_name="HDFC",
            account_number="000987654321",
            opening_balance=Decimal("10000.00"),
            current_balance=Decimal("10000.00"),
        )
        s.add(bank)
        await s.flush()
        await AccountResolver(s).bank_chart_account(bank)
        await s.commit()
        return bank


@pytest_asyncio.fixture
async def vendor(session_factory, seeded):
    async with session_factory() as s:
        v = Vendor(name="Acme Steel", email="billing@acme.example")
        s.add(v)
        await s.commit()
        return v


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, seeded):
    """In-process HTTP client against the app, bound to the test database."""
    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=30.0) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return auth_headers("admin")


@pytest.fixture
def accountant_headers():
    return auth_headers("ramantha")


@pytest.fixture
def clerk_headers():
    return auth_headers("clerk")


@pytest.fixture
def viewer_headers():
    return auth_headers("sarah")


@pytest.fixture
def unique_ref():
    """Unique reference string per test."""
    return f"REF-{uuid.uuid4().hex[:8]}"
