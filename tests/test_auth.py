"""Tests for registration, login and role checks."""

import jwt

from api.auth import JWT_ALGORITHM, JWT_SECRET_KEY, decode_access_token, hash_password, verify_password
from api.database.models import User


def test_password_hash_roundtrip():
    hashed = hash_password("correct horse")
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)


def test_register_assigns_student_role_and_free_plan(client, db, plans):
    response = client.post(
        "/api/auth/register",
        json={"email": "New@Example.com", "password": "password123", "name": "New"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "STUDENT"
    assert body["email"] == "new@example.com"

    payload = decode_access_token(body["access_token"])
    assert payload["user_id"] == body["user_id"]
    assert payload["role"] == "STUDENT"

    user = db.query(User).filter_by(id=body["user_id"]).one()
    assert user.plan_id == plans["FREE"].id


def test_register_rejects_bad_input(client, make_user):
    make_user(email="taken@example.com")

    assert client.post("/api/auth/register", json={"email": "not-an-email", "password": "password123"}).status_code == 400
    assert client.post("/api/auth/register", json={"email": "a@b.co", "password": "short"}).status_code == 400
    duplicate = client.post("/api/auth/register", json={"email": "taken@example.com", "password": "password123"})
    assert duplicate.status_code == 409


def test_login_and_me(client, make_user):
    user = make_user(email="login@example.com", password="password123", role="TEAM")

    bad = client.post("/api/auth/login", json={"email": "login@example.com", "password": "nope-nope"})
    assert bad.status_code == 401

    response = client.post("/api/auth/login", json={"email": "login@example.com", "password": "password123"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id
    assert me.json()["role"] == "TEAM"


def test_me_requires_valid_token(client, make_user):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    user = make_user()
    forged = jwt.encode({"user_id": user.id, "email": user.email, "role": "SUPER_ADMIN"}, "other-secret", algorithm=JWT_ALGORITHM)
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"}).status_code == 401


def test_deactivated_user_is_rejected(client, db, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    user.is_active = False
    db.commit()

    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_expired_token(client, make_user):
    user = make_user()
    token = jwt.encode(
        {"user_id": user.id, "email": user.email, "role": user.role, "exp": 1},
        JWT_SECRET_KEY,
        algorithm=JWT_ALGORITHM,
    )
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired"


def test_admin_routes_require_staff_role(client, make_user, auth_headers):
    student = make_user()
    team = make_user(role="TEAM")

    assert client.get("/api/admin/stats", headers=auth_headers(student)).status_code == 403
    assert client.get("/api/admin/stats", headers=auth_headers(team)).status_code == 200
    # analytics and settings are SUPER_ADMIN only
    assert client.get("/api/admin/settings", headers=auth_headers(team)).status_code == 403
