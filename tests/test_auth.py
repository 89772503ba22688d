from passlib.hash import pbkdf2_sha256
import bcrypt

from swifttiger.auth.security import create_refresh_token, get_password_hash, verify_password
from swifttiger.models.models import ActionLog

from conftest import PASSWORD, auth, make_user


def test_password_hashing_roundtrip():
    hashed = get_password_hash("hunter22")
    assert pbkdf2_sha256.identify(hashed)
    assert verify_password("hunter22", hashed)
    assert not verify_password("hunter23", hashed)


def test_legacy_bcrypt_hash_still_verifies():
    legacy = bcrypt.hashpw(b"oldpass1", bcrypt.gensalt()).decode()
    assert verify_password("oldpass1", legacy)
    assert not verify_password("nope", legacy)


def test_register_creates_technician(client):
    r = client.post("/api/auth/register", json={"name": "New Tech", "email": "New@Example.com", "password": "abcdef"})
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == "technician"
    assert body["access_token"] and body["refresh_token"]


def test_register_rejects_staff_roles(client):
    r = client.post("/api/auth/register", json={"name": "Boss", "email": "boss@example.com", "password": "abcdef", "role": "admin"})
    assert r.status_code == 403
    assert r.json()["error_type"] == "permission"


def test_register_duplicate_email(client, technician):
    r = client.post("/api/auth/register", json={"name": "Again", "email": technician.email, "password": "abcdef"})
    assert r.status_code == 400


def test_login_success_sets_last_login(client, db, technician):
    r = client.post("/api/auth/login", json={"email": technician.email, "password": PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["last_login_at"] is not None
    assert db.query(ActionLog).filter(ActionLog.action == "USER_LOGIN").count() == 1


def test_login_failure_messages_match(client, db, technician):
    wrong_password = client.post("/api/auth/login", json={"email": technician.email, "password": "wrong-one"})
    unknown_email = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert wrong_password.status_code == 401
    assert unknown_email.status_code == 401
    assert wrong_password.json()["message"] == unknown_email.json()["message"]
    assert wrong_password.json() == {"success": False, "message": "Invalid email or password", "error_type": "auth"}
    assert db.query(ActionLog).filter(ActionLog.action == "LOGIN_FAILED").count() == 2


def test_unknown_email_still_checks_a_hash(client, technician, monkeypatch):
    from swifttiger.auth import router as auth_router

    checked = []
    real_verify = auth_router.verify_password

    def counting_verify(plain, hashed):
        checked.append(hashed)
        return real_verify(plain, hashed)

    monkeypatch.setattr(auth_router, "verify_password", counting_verify)
    client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    client.post("/api/auth/login", json={"email": technician.email, "password": "wrong-one"})
    assert len(checked) == 2
    assert pbkdf2_sha256.identify(checked[0])
    assert checked[1] == technician.password_hash


def test_login_inactive_user(client, db):
    user = make_user(db, "technician", email="gone@example.com", is_active=False)
    r = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 403


def test_me_requires_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["error_type"] == "auth"


def test_me_rejects_garbage_token(client):
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_me_returns_profile(client, technician):
    r = client.get("/api/auth/me", headers=auth(technician))
    assert r.status_code == 200
    assert r.json()["id"] == str(technician.id)


def test_refresh_issues_new_tokens(client, technician):
    refresh = create_refresh_token(str(technician.id), technician.role)
    r = client.post("/api/auth/refresh", json={"refresh_token": refresh})
    assert r.status_code == 200
    assert r.json()["access_token"]


def test_access_token_cannot_refresh(client, technician):
    access = auth(technician)["Authorization"].split(" ", 1)[1]
    r = client.post("/api/auth/refresh", json={"refresh_token": access})
    assert r.status_code == 401


def test_refresh_token_is_not_an_access_token(client, technician):
    refresh = create_refresh_token(str(technician.id), technician.role)
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh}"})
    assert r.status_code == 401


def test_update_profile(client, technician):
    r = client.put("/api/auth/profile", json={"name": "Terry T.", "phone": "555-0100"}, headers=auth(technician))
    assert r.status_code == 200
    assert r.json()["name"] == "Terry T."
    assert r.json()["phone"] == "555-0100"


def test_change_password(client, technician):
    bad = client.put(
        "/api/auth/change-password",
        json={"current_password": "wrong", "new_password": "newsecret"},
        headers=auth(technician),
    )
    assert bad.status_code == 401
    ok = client.put(
        "/api/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "newsecret"},
        headers=auth(technician),
    )
    assert ok.status_code == 200
    login = client.post("/api/auth/login", json={"email": technician.email, "password": "newsecret"})
    assert login.status_code == 200


def test_validation_errors_use_envelope(client):
    r = client.post("/api/auth/login", json={"email": "not-an-email"})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["error_type"] == "validation"
    fields = {e["field"] for e in body["errors"]}
    assert "email" in fields
    assert "password" in fields
