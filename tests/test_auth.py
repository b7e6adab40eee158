"""Registration, login and session resolution."""

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from conftest import PASSWORD, auth, register


def test_register_returns_token_and_public_user(client, db) -> None:
    response = client.post(
        "/auth/register",
        json={"displayName": "Grace", "email": "Grace@PrayerBoard.org", "password": PASSWORD},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["token"]
    assert data["user"]["email"] == "grace@prayerboard.org"
    assert data["user"]["displayName"] == "Grace"
    assert data["user"]["role"] == "member"
    assert "password" not in data["user"] and "passwordHash" not in data["user"]

    stored = db["user"].find_one({"email": "grace@prayerboard.org"})
    assert PASSWORD not in [v for v in stored.values() if isinstance(v, str)]
    assert stored["password_hash"] != PASSWORD


@pytest.mark.parametrize(
    "payload",
    [
        {"displayName": "G", "email": "g@prayerboard.org", "password": PASSWORD},
        {"displayName": "x" * 51, "email": "g@prayerboard.org", "password": PASSWORD},
        {"displayName": "Grace", "email": "not-an-email", "password": PASSWORD},
        {"displayName": "Grace", "email": "g@prayerboard.org", "password": "Short1"},
        {"displayName": "Grace", "email": "g@prayerboard.org", "password": "alllowercase1"},
        {"displayName": "Grace", "email": "g@prayerboard.org", "password": "ALLUPPERCASE1"},
        {"displayName": "Grace", "email": "g@prayerboard.org", "password": "NoDigitsHere"},
        {"displayName": "Grace", "email": "g@prayerboard.org", "password": "Aa1" + "a" * 126},
        {"email": "g@prayerboard.org", "password": PASSWORD},
    ],
)
def test_register_validation(client, payload) -> None:
    response = client.post("/auth/register", json=payload)
    assert response.status_code == 400
    assert response.json()["error"]


def test_register_duplicate_email_is_case_insensitive(client) -> None:
    register(client, "Grace", email="grace@prayerboard.org")
    response = client.post(
        "/auth/register",
        json={"displayName": "Other", "email": "GRACE@prayerboard.org", "password": PASSWORD},
    )
    assert response.status_code == 409
    assert response.json() == {"error": "Email already registered"}


def test_display_name_markup_is_stripped(client) -> None:
    data = register(client, "<b>Grace</b>", email="grace@prayerboard.org")
    assert data["user"]["displayName"] == "Grace"


def test_login_and_me(client, member) -> None:
    response = client.post("/auth/login", json={"email": "GRACE@prayerboard.org", "password": PASSWORD})
    assert response.status_code == 200
    token = response.json()["token"]
    assert token != member["token"]

    me = client.get("/auth/me", headers=auth(token))
    assert me.status_code == 200
    assert me.json()["user"]["id"] == member["user"]["id"]


def test_login_failures_are_generic(client, member, db) -> None:
    wrong_password = client.post("/auth/login", json={"email": "grace@prayerboard.org", "password": "Wrong1234"})
    unknown_email = client.post("/auth/login", json={"email": "nobody@prayerboard.org", "password": PASSWORD})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"error": "Invalid email or password"}

    db["user"].update_one({"_id": ObjectId(member["user"]["id"])}, {"$set": {"is_active": False}})
    inactive = client.post("/auth/login", json={"email": "grace@prayerboard.org", "password": PASSWORD})
    assert inactive.status_code == 401
    assert inactive.json() == {"error": "Invalid email or password"}


def test_login_missing_fields(client) -> None:
    response = client.post("/auth/login", json={"email": "grace@prayerboard.org"})
    assert response.status_code == 400


def test_me_requires_credentials(client) -> None:
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers=auth("bogus")).status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Basic abc"}).status_code == 401


def test_me_for_vanished_user_is_404(client, member, db) -> None:
    db["user"].delete_one({"_id": ObjectId(member["user"]["id"])})
    response = client.get("/auth/me", headers=member["headers"])
    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_expired_session_is_rejected(client, member, db) -> None:
    db["session"].update_one(
        {"token": member["token"]},
        {"$set": {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}},
    )
    assert client.get("/auth/me", headers=member["headers"]).status_code == 401


def test_admin_deactivates_user(client, member, admin) -> None:
    url = f"/users/{member['user']['id']}/deactivate"
    assert client.post(url, headers=member["headers"]).status_code == 403

    response = client.post(url, headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["user"]["isActive"] is False

    # existing sessions stop working and login fails
    assert client.get("/auth/me", headers=member["headers"]).status_code == 401
    login = client.post("/auth/login", json={"email": "grace@prayerboard.org", "password": PASSWORD})
    assert login.status_code == 401


def test_deactivate_unknown_user(client, admin) -> None:
    response = client.post(f"/users/{ObjectId()}/deactivate", headers=admin["headers"])
    assert response.status_code == 404


def test_bootstrap_admin(db, monkeypatch) -> None:
    import identity
    from config import settings

    monkeypatch.setattr(
        identity,
        "settings",
        dataclasses.replace(settings, admin_email="Root@PrayerBoard.org", admin_password=PASSWORD),
    )
    identity.bootstrap_admin()
    identity.bootstrap_admin()

    admins = list(db["user"].find({"email": "root@prayerboard.org"}))
    assert len(admins) == 1
    assert admins[0]["role"] == "admin"

    result = identity.login("root@prayerboard.org", PASSWORD)
    assert result["user"]["role"] == "admin"


def test_bootstrap_admin_rejects_weak_password(db, monkeypatch) -> None:
    import identity
    from config import settings

    monkeypatch.setattr(
        identity,
        "settings",
        dataclasses.replace(settings, admin_email="root@prayerboard.org", admin_password="short"),
    )
    identity.bootstrap_admin()

    assert db["user"].count_documents({"email": "root@prayerboard.org"}) == 0


def test_sessions_expire_through_a_ttl_index(db) -> None:
    indexes = db["session"].index_information()
    assert indexes["expires_at_1"]["expireAfterSeconds"] == 0
