from datetime import timedelta

import pytest

import auth
from errors import Conflict, Forbidden, InvalidCredential, Unauthenticated, ValidationFailed
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def test_password_hash_roundtrip():
    hashed = auth.hash_password("secret123")
    assert hashed != "secret123"
    assert auth.verify_password("secret123", hashed)
    assert not auth.verify_password("wrong", hashed)
    assert not auth.verify_password("secret123", None)


def test_token_carries_user_id():
    token = auth.create_access_token("64b7f0c2a1b2c3d4e5f60718")
    assert auth.decode_token(token)["sub"] == "64b7f0c2a1b2c3d4e5f60718"


def test_expired_token_is_rejected():
    token = auth.create_access_token("64b7f0c2a1b2c3d4e5f60718", expires_delta=timedelta(seconds=-5))
    with pytest.raises(Unauthenticated):
        auth.decode_token(token)


def test_garbage_token_is_rejected():
    with pytest.raises(Unauthenticated):
        auth.decode_token("not-a-jwt")


def test_signup_then_login_returns_token_for_same_user(db):
    created = auth.signup(db, "Alice", "Alice@Example.com", "secret123")
    logged_in = auth.login(db, "alice@example.com", "secret123")

    assert created["user"]["id"] == logged_in["user"]["id"]
    assert auth.decode_token(logged_in["access_token"])["sub"] == created["user"]["id"]
    assert logged_in["user"]["email"] == "alice@example.com"
    assert logged_in["user"]["is_admin"] is False


def test_signup_stores_hash_not_password(db, alice):
    stored = db["user"].find_one({"email": "alice@example.com"})
    assert stored["password_hash"] != "secret123"
    assert stored["cart"] == []
    assert stored["wishlist"] == []
    assert stored["created_at"] is not None
    assert str(stored["_id"]) == alice["user"]["id"]


def test_signup_duplicate_email_conflicts(db, alice):
    with pytest.raises(Conflict):
        auth.signup(db, "Other Alice", "ALICE@example.com", "another1")


def test_signup_rejects_short_password(db):
    with pytest.raises(ValidationFailed) as exc:
        auth.signup(db, "Shorty", "short@example.com", "abc")
    assert exc.value.errors[0]["field"] == "password"


def test_signup_with_reserved_admin_email(db, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    with pytest.raises(Conflict):
        auth.signup(db, "Sneaky", ADMIN_EMAIL, "whatever1")


def test_login_wrong_password(db, alice):
    with pytest.raises(InvalidCredential):
        auth.login(db, "alice@example.com", "nope-nope")


def test_login_unknown_email(db):
    with pytest.raises(InvalidCredential):
        auth.login(db, "ghost@example.com", "secret123")


def test_regular_login_refuses_admin_accounts(db, admin):
    with pytest.raises(InvalidCredential):
        auth.login(db, ADMIN_EMAIL, ADMIN_PASSWORD)


def test_admin_login_refuses_regular_users(db, alice):
    with pytest.raises(InvalidCredential):
        auth.admin_login(db, "alice@example.com", "secret123")


def test_bootstrap_admin_is_idempotent(db):
    assert auth.bootstrap_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD, "Admin") is True
    assert auth.bootstrap_admin(db, ADMIN_EMAIL, "changed-password", "Admin") is False

    admins = list(db["user"].find({"is_admin": True}))
    assert len(admins) == 1
    # The second run must not have replaced the original credentials
    assert auth.admin_login(db, ADMIN_EMAIL, ADMIN_PASSWORD)["user"]["is_admin"] is True


def test_bootstrap_admin_reads_environment(db, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "Boss@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "bosspass")
    monkeypatch.setenv("ADMIN_NAME", "The Boss")

    assert auth.bootstrap_admin(db) is True
    stored = db["user"].find_one({"email": "boss@example.com"})
    assert stored["name"] == "The Boss"
    assert stored["is_admin"] is True
    assert auth.admin_info(db) == {"admin_email": "boss@example.com", "setup_complete": True}


def test_bootstrap_admin_skips_without_configuration(db):
    assert auth.bootstrap_admin(db) is False
    assert db["user"].count_documents({}) == 0


def test_bootstrap_admin_does_not_promote_existing_customer(db, alice):
    assert auth.bootstrap_admin(db, "alice@example.com", "adminpass") is False
    assert db["user"].find_one({"email": "alice@example.com"})["is_admin"] is False


def test_get_current_user_id_parses_bearer_header(alice):
    header = f"Bearer {alice['access_token']}"
    assert auth.get_current_user_id(header) == alice["user"]["id"]


@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer ", "Bearer abc.def.ghi"])
def test_get_current_user_id_rejects_bad_headers(header):
    with pytest.raises(Unauthenticated):
        auth.get_current_user_id(header)


def test_require_admin(db, alice, admin):
    assert auth.require_admin(admin["user"]["id"], db)["email"] == ADMIN_EMAIL
    with pytest.raises(Forbidden):
        auth.require_admin(alice["user"]["id"], db)


def test_require_admin_for_deleted_user(db, admin):
    db["user"].delete_many({})
    with pytest.raises(Unauthenticated):
        auth.require_admin(admin["user"]["id"], db)
