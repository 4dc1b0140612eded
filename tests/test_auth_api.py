"""
Register, login and refresh over HTTP.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from sqlalchemy import func, select

from academic_api.core.config import settings
from academic_api.core.tokens import TokenClaims, create_access_token, create_refresh_token
from academic_api.main import create_app
from academic_api.models import Account, Student, account_roles

from conftest import PASSWORD, bearer, login, make_account, revoke_roles


pytestmark = pytest.mark.anyio


async def _count(database, model) -> int:
    async with database.session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def _access_claims(token: str) -> dict:
    return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])


# Register

async def test_register_creates_student_account_and_profile(client, database):
    r = await client.post("/auth/register", json={
        "username": "maria", "email": "Maria@Example.com", "password": "pw-123456"
    })
    assert r.status_code == 201, r.text
    assert "access_token" not in r.json()

    async with database.session_factory() as session:
        account = (await session.execute(select(Account).filter(Account.username == "maria"))).scalar_one()
        assert account.is_active is True
        assert account.email == "maria@example.com"
        assert account.hashed_password != "pw-123456"
        student = (await session.execute(select(Student).filter(Student.account_id == account.id))).scalar_one()
        assert student.email == "maria@example.com"
        assert student.first_name is None

    body = await login(client, "maria", "pw-123456")
    assert body["account"]["roles"] == ["Student"]
    assert body["student"]["id"] == student.id


@pytest.mark.parametrize("payload", [
    {"email": "a@example.com", "password": "x"},
    {"username": "a", "password": "x"},
    {"username": "a", "email": "a@example.com"},
    {"username": "   ", "email": "a@example.com", "password": "x"},
])
async def test_register_requires_all_fields(client, database, payload):
    r = await client.post("/auth/register", json=payload)
    assert r.status_code == 400
    assert await _count(database, Account) == 0


async def test_register_rejects_malformed_email(client):
    r = await client.post("/auth/register", json={"username": "a", "email": "nope", "password": "x"})
    assert r.status_code == 400
    assert r.json() == {"detail": "Invalid request data"}


async def test_register_duplicate_username_conflicts_and_persists_nothing(client, database):
    first = {"username": "dup", "email": "dup1@example.com", "password": "pw"}
    assert (await client.post("/auth/register", json=first)).status_code == 201
    accounts_before = await _count(database, Account)
    students_before = await _count(database, Student)

    second = {"username": "dup", "email": "dup2@example.com", "password": "pw"}
    r = await client.post("/auth/register", json=second)
    assert r.status_code == 409

    assert await _count(database, Account) == accounts_before
    assert await _count(database, Student) == students_before


async def test_register_duplicate_email_conflicts(client):
    assert (await client.post("/auth/register", json={
        "username": "one", "email": "same@example.com", "password": "pw"
    })).status_code == 201
    r = await client.post("/auth/register", json={
        "username": "two", "email": "SAME@example.com", "password": "pw"
    })
    assert r.status_code == 409


async def test_register_without_student_role_rolls_back(unseeded_client, unseeded_database):
    r = await unseeded_client.post("/auth/register", json={
        "username": "early", "email": "early@example.com", "password": "pw"
    })
    assert r.status_code == 400
    assert "Student" in r.json()["detail"]

    assert await _count(unseeded_database, Account) == 0
    assert await _count(unseeded_database, Student) == 0
    assert await _count(unseeded_database, account_roles) == 0


# Login

async def test_login_returns_tokens_and_student_claims(client, database):
    ids = await make_account(database, "stud", student_profile=True)
    body = await login(client, "stud")

    assert body["token_type"] == "bearer"
    assert body["teacher"] is None
    assert body["student"]["id"] == ids["student_id"]

    claims = _access_claims(body["access_token"])
    assert claims["sub"] == str(ids["account_id"])
    assert claims["roles"] == ["Student"]
    assert claims["student_id"] == ids["student_id"]
    assert "teacher_id" not in claims

    lifetime = claims["exp"] - datetime.now(timezone.utc).timestamp()
    assert timedelta(minutes=115).total_seconds() < lifetime <= timedelta(hours=2).total_seconds()


async def test_login_teacher_gets_teacher_profile(client, database):
    ids = await make_account(database, "prof", roles=["Teacher"], teacher_profile=True)
    body = await login(client, "prof")

    assert body["teacher"] == {
        "id": ids["teacher_id"], "first_name": "Ada", "last_name": "Lovelace", "email": "prof@example.com"
    }
    assert body["student"] is None
    assert _access_claims(body["access_token"])["teacher_id"] == ids["teacher_id"]


async def test_login_tolerates_role_without_profile(client, database):
    await make_account(database, "bare", roles=["Teacher", "Student"])
    body = await login(client, "bare")

    assert body["teacher"] is None and body["student"] is None
    claims = _access_claims(body["access_token"])
    assert sorted(claims["roles"]) == ["Student", "Teacher"]
    assert "teacher_id" not in claims and "student_id" not in claims


async def test_login_wrong_password_is_unauthorized(client, database):
    await make_account(database, "victim", student_profile=True)
    r = await client.post("/auth/login", json={"username": "victim", "password": "wrong"})
    assert r.status_code == 401
    assert "access_token" not in r.json()


async def test_login_unknown_user_is_not_found(client):
    r = await client.post("/auth/login", json={"username": "ghost", "password": PASSWORD})
    assert r.status_code == 404


async def test_login_inactive_user_is_not_found(client, database):
    await make_account(database, "retired", active=False, student_profile=True)
    r = await client.post("/auth/login", json={"username": "retired", "password": PASSWORD})
    assert r.status_code == 404


async def test_login_without_roles_is_forbidden(client, database):
    await make_account(database, "nobody", roles=())
    r = await client.post("/auth/login", json={"username": "nobody", "password": PASSWORD})
    assert r.status_code == 403


# Refresh

async def test_refresh_issues_short_lived_access_token(client, database):
    ids = await make_account(database, "renew", roles=["Teacher"], teacher_profile=True)
    body = await login(client, "renew")

    r = await client.post("/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert r.status_code == 200, r.text

    claims = _access_claims(r.json()["access_token"])
    assert claims["sub"] == str(ids["account_id"])
    assert claims["roles"] == ["Teacher"]
    assert "teacher_id" not in claims

    lifetime = claims["exp"] - datetime.now(timezone.utc).timestamp()
    assert lifetime <= timedelta(minutes=15).total_seconds()

    me = await client.get("/auth/me", headers=bearer(r.json()["access_token"]))
    assert me.status_code == 200


async def test_refresh_requires_token(client):
    assert (await client.post("/auth/refresh", json={})).status_code == 401
    assert (await client.post("/auth/refresh", json={"refresh_token": ""})).status_code == 401


async def test_refresh_with_expired_token_is_forbidden(client, database):
    ids = await make_account(database, "stale", student_profile=True)
    expired = create_refresh_token(
        TokenClaims(account_id=ids["account_id"], roles=["Student"]), ttl=timedelta(seconds=-5)
    )
    r = await client.post("/auth/refresh", json={"refresh_token": expired})
    assert r.status_code == 403
    assert "access_token" not in r.json()


async def test_refresh_rejects_access_token(client, database):
    ids = await make_account(database, "mixup", student_profile=True)
    access = create_access_token(TokenClaims(account_id=ids["account_id"], roles=["Student"]))
    r = await client.post("/auth/refresh", json={"refresh_token": access})
    assert r.status_code == 403


async def test_refresh_after_roles_revoked_is_forbidden(client, database):
    ids = await make_account(database, "demoted", roles=["Teacher"], teacher_profile=True)
    body = await login(client, "demoted")

    await revoke_roles(database, ids["account_id"])

    r = await client.post("/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert r.status_code == 403


# Bootstrap and profile

async def test_register_admin_only_once(client):
    r = await client.get("/auth/check-admin-exists")
    assert r.json() == {"admin_exists": False}

    payload = {"username": "root", "email": "root@example.com", "password": "pw"}
    assert (await client.post("/auth/register-admin", json=payload)).status_code == 201
    assert (await client.get("/auth/check-admin-exists")).json() == {"admin_exists": True}

    again = {"username": "root2", "email": "root2@example.com", "password": "pw"}
    assert (await client.post("/auth/register-admin", json=again)).status_code == 409

    body = await login(client, "root", "pw")
    assert body["account"]["roles"] == ["Administrator"]


async def test_me_reads_roles_from_store(client, database):
    ids = await make_account(database, "whoami", student_profile=True)
    body = await login(client, "whoami")

    r = await client.get("/auth/me", headers=bearer(body["access_token"]))
    assert r.status_code == 200
    assert r.json() == {
        "id": ids["account_id"], "username": "whoami", "email": "whoami@example.com", "roles": ["Student"]
    }


@pytest.mark.parametrize("payload", [
    {"username": "", "email": "root@example.com", "password": ""},
    {"username": "root", "email": "root@example.com", "password": "   "},
    {"username": "  ", "email": "root@example.com", "password": "pw"},
])
async def test_register_admin_rejects_blank_fields(client, database, payload):
    r = await client.post("/auth/register-admin", json=payload)
    assert r.status_code == 400
    assert await _count(database, Account) == 0
    assert (await client.get("/auth/check-admin-exists")).json() == {"admin_exists": False}


async def test_register_admin_refused_when_admin_already_seeded(client, database):
    await make_account(database, "existing", roles=["Administrator"])
    r = await client.post("/auth/register-admin", json={
        "username": "late", "email": "late@example.com", "password": "pw"
    })
    assert r.status_code == 409
    assert r.json() == {"detail": "Administrator already exists"}
    assert await _count(database, Account) == 1


def test_app_refuses_identical_signing_keys(monkeypatch):
    monkeypatch.setattr(settings, "refresh_secret_key", settings.secret_key)
    with pytest.raises(RuntimeError):
        create_app()


async def test_issued_tokens_use_configured_keys(client, database):
    await make_account(database, "keyed", student_profile=True)
    body = await login(client, "keyed")

    assert _access_claims(body["access_token"])["type"] == "access"
    refresh_claims = jwt.decode(body["refresh_token"], settings.refresh_secret_key, algorithms=[settings.algorithm])
    assert refresh_claims["type"] == "refresh"
