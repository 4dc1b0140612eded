"""
Access guard: token validation, account status, then role membership.
"""
from __future__ import annotations

import pytest
from jose import jwt

from academic_api.core.auth import roles_permitted
from academic_api.core.config import settings
from academic_api.core.tokens import TokenClaims, create_access_token, create_refresh_token

from conftest import auth_headers, bearer, make_account


pytestmark = pytest.mark.anyio


def test_roles_permitted_needs_an_intersection():
    assert roles_permitted(["Teacher"], ["Student", "Teacher"])
    assert roles_permitted(["Administrator", "Teacher"], ["Teacher"])
    assert not roles_permitted(["Administrator"], ["Teacher"])
    assert not roles_permitted(["Teacher"], [])
    assert not roles_permitted(["Teacher"], None)


async def test_missing_token_is_unauthorized(client):
    r = await client.get("/auth/me")
    assert r.status_code == 401
    assert r.headers.get("WWW-Authenticate") == "Bearer"


async def test_garbage_token_is_unauthorized(client):
    r = await client.get("/auth/me", headers=bearer("not-a-jwt"))
    assert r.status_code == 401


async def test_expired_access_token_is_unauthorized(client, database):
    ids = await make_account(database, "late", student_profile=True)
    token = create_access_token(TokenClaims(account_id=ids["account_id"], roles=["Student"]), expires_minutes=-1)
    r = await client.get("/auth/me", headers=bearer(token))
    assert r.status_code == 401


async def test_refresh_token_is_not_accepted_as_access_token(client, database):
    ids = await make_account(database, "swapper", student_profile=True)
    token = create_refresh_token(TokenClaims(account_id=ids["account_id"], roles=["Student"]))
    r = await client.get("/auth/me", headers=bearer(token))
    assert r.status_code == 401


async def test_token_without_account_id_is_bad_request(client):
    token = jwt.encode(
        {"roles": ["Student"], "type": "access", "exp": 4102444800},
        settings.secret_key,
        algorithm=settings.algorithm,
    )
    r = await client.get("/auth/me", headers=bearer(token))
    assert r.status_code == 400


async def test_token_for_deleted_account_is_not_found(client):
    token = create_access_token(TokenClaims(account_id=9999, roles=["Student"]))
    r = await client.get("/auth/me", headers=bearer(token))
    assert r.status_code == 404


async def test_inactive_account_is_forbidden_before_handler(client, database):
    ids = await make_account(database, "sleepy", student_profile=True)
    headers = await auth_headers(client, "sleepy")

    admin = await make_account(database, "boss", roles=["Administrator"])
    admin_headers = await auth_headers(client, "boss")
    r = await client.patch(f"/admin/accounts/{ids['account_id']}/status", json={"is_active": False},
                           headers=admin_headers)
    assert r.status_code == 200, r.text
    assert admin["account_id"] != ids["account_id"]

    r = await client.get("/student/profile", headers=headers)
    assert r.status_code == 403
    assert r.json() == {"detail": "Account is disabled"}


async def test_role_gate_denies_other_roles(client, database):
    await make_account(database, "pupil", student_profile=True)
    headers = await auth_headers(client, "pupil")

    assert (await client.get("/admin/teachers", headers=headers)).status_code == 403
    assert (await client.get("/teacher/courses", headers=headers)).status_code == 403
    assert (await client.get("/student/profile", headers=headers)).status_code == 200


async def test_token_without_roles_is_forbidden_on_role_gated_routes(client, database):
    ids = await make_account(database, "roleless-claims", student_profile=True)
    token = create_access_token(TokenClaims(account_id=ids["account_id"], roles=[]))

    # Identity alone is enough for /auth/me
    assert (await client.get("/auth/me", headers=bearer(token))).status_code == 200
    assert (await client.get("/student/profile", headers=bearer(token))).status_code == 403


async def test_short_lived_token_still_works_within_window(client, database):
    ids = await make_account(database, "quick", student_profile=True)
    token = create_access_token(TokenClaims(account_id=ids["account_id"], roles=["Student"]), expires_minutes=1)
    r = await client.get("/auth/me", headers=bearer(token))
    assert r.status_code == 200
    assert r.json()["username"] == "quick"
