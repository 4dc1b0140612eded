"""
Shared fixtures: a fresh in-memory database per test and an httpx client
talking to the ASGI app directly.
"""
from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-access-secret"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Iterable, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport  # noqa: E402
from sqlalchemy import select  # noqa: E402

from academic_api.core.auth import get_password_hash  # noqa: E402
from academic_api.core.database import Database  # noqa: E402
from academic_api.main import create_app  # noqa: E402
from academic_api.models import Account, Role, Student, Teacher, account_roles  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
PASSWORD = "s3cret-pass"


@pytest.fixture
def anyio_backend():
    return "asyncio"


async def _build_database(seed: bool) -> Database:
    database = Database(TEST_DB_URL)
    await database.create_tables()
    if seed:
        await database.seed_roles()
    return database


@pytest.fixture
async def database():
    database = await _build_database(seed=True)
    yield database
    await database.dispose()


@pytest.fixture
async def unseeded_database():
    database = await _build_database(seed=False)
    yield database
    await database.dispose()


def _client_for(database: Database) -> httpx.AsyncClient:
    app = create_app(database=database)
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
async def client(database):
    async with _client_for(database) as c:
        yield c


@pytest.fixture
async def unseeded_client(unseeded_database):
    async with _client_for(unseeded_database) as c:
        yield c


async def make_account(
    database: Database,
    username: str,
    roles: Iterable[str] = ("Student",),
    *,
    password: str = PASSWORD,
    active: bool = True,
    teacher_profile: bool = False,
    student_profile: bool = False,
) -> dict:
    """Insert an account straight into the store; returns its ids."""
    async with database.session_factory() as session:
        account = Account(
            username=username,
            email=f"{username}@example.com",
            hashed_password=get_password_hash(password),
            is_active=active,
        )
        session.add(account)
        await session.flush()

        for name in roles:
            role_id = (await session.execute(select(Role.id).filter(Role.name == name))).scalar_one()
            await session.execute(account_roles.insert().values(account_id=account.id, role_id=role_id))

        ids = {"account_id": account.id, "teacher_id": None, "student_id": None}
        if teacher_profile:
            teacher = Teacher(first_name="Ada", last_name="Lovelace", document="T-1",
                              email=account.email, account_id=account.id)
            session.add(teacher)
            await session.flush()
            ids["teacher_id"] = teacher.id
        if student_profile:
            student = Student(email=account.email, account_id=account.id)
            session.add(student)
            await session.flush()
            ids["student_id"] = student.id

        await session.commit()
        return ids


async def revoke_roles(database: Database, account_id: int) -> None:
    async with database.session_factory() as session:
        await session.execute(account_roles.delete().where(account_roles.c.account_id == account_id))
        await session.commit()


async def login(client: httpx.AsyncClient, username: str, password: str = PASSWORD) -> dict:
    r = await client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def auth_headers(client: httpx.AsyncClient, username: str, password: Optional[str] = None) -> dict:
    body = await login(client, username, password or PASSWORD)
    return bearer(body["access_token"])
