import json
from unittest.mock import Mock

import pytest
from werkzeug.security import check_password_hash

from app.portal import create_app
from app.portal.auth import _login_attempts
from app.portal.db import session_scope
from app.portal.models import Account, AuditEvent, Base, Role
from app.portal.modules.administration.accounts import service, validators
from scripts.init_db import seed_only


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("APPLICATION_PATH", str(tmp_path))
    monkeypatch.setenv("ADMIN_USERNAME", "admin")
    monkeypatch.setenv("ADMIN_PASSWORD", "admin-password")

    _login_attempts.clear()
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    seed_only(app=app)
    return app


@pytest.fixture()
def provider(app):
    """Swap the real provider for a mock so refresh calls can be asserted."""
    mock = Mock()
    app.extensions["authorization"] = mock
    return mock


def _admin(s) -> Account:
    return s.query(Account).filter(Account.username == "admin").one()


def _payload(**overrides) -> dict:
    payload = {
        "username": "jonas",
        "email": "Jonas@Example.com",
        "password": "password1",
        "password_confirm": "password1",
        "role_id": "",
    }
    payload.update(overrides)
    return payload


class TestAccountService:
    def test_create_account_refreshes_authorization(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            account = service.create_account(s, _payload(), _admin(s))
            assert account.id is not None
            assert account.email == "jonas@example.com"
            assert account.role_id is None
            assert check_password_hash(account.passhash, "password1")
        provider.refresh.assert_called_once_with()

    def test_create_account_records_audit_event(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            account = service.create_account(s, _payload(), _admin(s))
            ev = s.query(AuditEvent).filter(AuditEvent.action == "account.create").one()
            assert ev.entity_id == str(account.id)
            assert ev.actor_username == "admin"
            assert ev.request_id is None
            assert json.loads(ev.metadata_json)["username"] == "jonas"

    def test_edit_account_changes_role_and_refreshes(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            role = Role(title="Auditor")
            s.add(role)
            s.flush()
            account = service.create_account(s, _payload(), _admin(s))
            provider.refresh.reset_mock()

            service.edit_account(s, account, _payload(role_id=str(role.id), is_locked=True), _admin(s))
            assert account.role_title == "Auditor"
            assert account.is_locked is True
            provider.refresh.assert_called_once_with()

            ev = s.query(AuditEvent).filter(AuditEvent.action == "account.edit").one()
            changes = json.loads(ev.metadata_json)["changes"]
            assert changes["role_id"] == {"old": None, "new": role.id}
            assert changes["is_locked"] == {"old": False, "new": True}

    def test_edit_account_with_unknown_role_fails(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            account = service.create_account(s, _payload(), _admin(s))
            with pytest.raises(ValueError):
                service.edit_account(s, account, _payload(role_id="9999"), _admin(s))

    def test_delete_account_refreshes_authorization(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            account = service.create_account(s, _payload(), _admin(s))
            account_id = account.id
            provider.refresh.reset_mock()

            service.delete_account(s, account, _admin(s))
            assert s.get(Account, account_id) is None
            provider.refresh.assert_called_once_with()

    def test_edit_profile_keeps_password_when_blank(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            admin = _admin(s)
            passhash = admin.passhash
            service.edit_profile(s, admin, {"username": "admin", "email": "new@example.com", "new_password": "  "})
            assert admin.passhash == passhash
            assert admin.email == "new@example.com"

    def test_edit_profile_changes_password_when_given(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            admin = _admin(s)
            service.edit_profile(s, admin, {"username": "admin", "email": admin.email, "new_password": "brand-new-pw"})
            assert check_password_hash(admin.passhash, "brand-new-pw")

    def test_delete_profile_refreshes_authorization(self, app, provider):
        with app.app_context(), session_scope(app) as s:
            admin = _admin(s)
            service.delete_profile(s, admin)
            assert s.query(Account).count() == 0
        provider.refresh.assert_called_once_with()

    def test_register_creates_account_without_role(self, app):
        with app.app_context(), session_scope(app) as s:
            account = service.register(s, _payload(role_id="1"))
            assert account.role_id is None
            assert app.extensions["authorization"].permissions_for(account.id) == frozenset()

    def test_authenticate(self, app):
        with app.app_context(), session_scope(app) as s:
            assert service.authenticate(s, "Admin", "admin-password").username == "admin"
            assert service.authenticate(s, "admin", "wrong") is None
            assert service.authenticate(s, "nobody", "admin-password") is None

            _admin(s).is_locked = True
            s.flush()
            assert service.authenticate(s, "admin", "admin-password") is None

    def test_is_active(self, app):
        with app.app_context(), session_scope(app) as s:
            admin = _admin(s)
            assert service.is_active(s, admin.id) is True
            assert service.is_active(s, None) is False
            assert service.is_active(s, 9999) is False
            admin.is_locked = True
            s.flush()
            assert service.is_active(s, admin.id) is False


class TestAccountValidators:
    def test_create_requires_fields(self, app):
        with session_scope(app) as s:
            errors = validators.validate_create(s, {})
        assert "Username is required." in errors
        assert "Email is required." in errors
        assert "Password is required." in errors

    def test_create_rejects_duplicates_case_insensitively(self, app):
        with session_scope(app) as s:
            errors = validators.validate_create(s, _payload(username="ADMIN", email="admin@portal.local"))
        assert "Username is already taken." in errors

    def test_create_rejects_short_or_mismatched_password(self, app):
        with session_scope(app) as s:
            assert validators.validate_create(s, _payload(password="short", password_confirm="short")) == [
                f"Password must be at least {validators.MIN_PASSWORD_LENGTH} characters."
            ]
            assert validators.validate_create(s, _payload(password_confirm="password2")) == ["Passwords do not match."]

    def test_edit_allows_own_username(self, app):
        with session_scope(app) as s:
            admin = _admin(s)
            assert validators.validate_edit(s, admin, {"username": "admin", "email": admin.email}) == []

    def test_create_and_edit_reject_unknown_role(self, app):
        with session_scope(app) as s:
            admin = _admin(s)
            for role_id in ("9999", "abc"):
                assert validators.validate_create(s, _payload(role_id=role_id)) == ["Selected role does not exist."]
                assert validators.validate_edit(s, admin, {"username": "admin", "email": admin.email, "role_id": role_id}) == [
                    "Selected role does not exist."
                ]
            assert validators.validate_create(s, _payload(role_id=str(admin.role_id))) == []

    def test_profile_requires_current_password(self, app):
        with session_scope(app) as s:
            admin = _admin(s)
            errors = validators.validate_profile(s, admin, {"username": "admin", "email": admin.email, "password": "x"})
            assert errors == ["Current password is incorrect."]
            assert validators.validate_profile_delete(admin, {"password": "admin-password"}) == []


# ---------- HTTP ----------
def _login(client, username="admin", password="admin-password"):
    r = client.post("/auth/login", data={"username": username, "password": password})
    assert r.status_code == 302


def _csrf(client) -> str:
    with client.session_transaction() as sess:
        return sess.setdefault("csrf_token", "test-csrf")


def _account(app, username) -> Account | None:
    with session_scope(app) as s:
        return s.query(Account).filter(Account.username == username).one_or_none()


class TestAccountPages:
    def test_create_edit_delete(self, app):
        client = app.test_client()
        _login(client)
        token = _csrf(client)

        r = client.post("/administration/accounts/create", data=dict(_payload(), csrf_token=token))
        assert r.status_code == 302
        created = _account(app, "jonas")
        assert created is not None
        assert r.headers["Location"].endswith(f"/administration/accounts/{created.id}")

        r = client.get(f"/administration/accounts/{created.id}")
        assert r.status_code == 200
        assert b"jonas" in r.data

        r = client.post(
            f"/administration/accounts/{created.id}/edit",
            data={"csrf_token": token, "username": "jonas2", "email": "jonas@example.com", "is_locked": "1"},
        )
        assert r.status_code == 302
        edited = _account(app, "jonas2")
        assert edited.is_locked is True

        r = client.post(f"/administration/accounts/{created.id}/delete", data={"csrf_token": token})
        assert r.status_code == 302
        assert _account(app, "jonas2") is None

    def test_invalid_create_returns_400(self, app):
        client = app.test_client()
        _login(client)
        r = client.post(
            "/administration/accounts/create",
            data={"csrf_token": _csrf(client), "username": "", "email": "bad", "password": "x"},
        )
        assert r.status_code == 400
        assert b"Username is required." in r.data

    def test_unknown_or_malformed_role_returns_400(self, app):
        client = app.test_client()
        _login(client)
        token = _csrf(client)
        with session_scope(app) as s:
            s.add(Account(username="ona", email="ona@example.com", passhash="x"))
        ona = _account(app, "ona")
        for role_id in ("9999", "abc"):
            r = client.post("/administration/accounts/create", data=dict(_payload(role_id=role_id), csrf_token=token))
            assert r.status_code == 400
            assert b"Selected role does not exist." in r.data

            r = client.post(
                f"/administration/accounts/{ona.id}/edit",
                data={"csrf_token": token, "username": "ona", "email": "ona@example.com", "role_id": role_id},
            )
            assert r.status_code == 400
            assert b"Selected role does not exist." in r.data
        assert _account(app, "jonas") is None
        assert _account(app, "ona").role_id is None

    def test_cannot_edit_or_delete_self(self, app):
        client = app.test_client()
        _login(client)
        token = _csrf(client)
        admin = _account(app, "admin")

        client.post(
            f"/administration/accounts/{admin.id}/edit",
            data={"csrf_token": token, "username": "renamed", "email": admin.email},
        )
        client.post(f"/administration/accounts/{admin.id}/delete", data={"csrf_token": token})
        assert _account(app, "admin") is not None
        assert _account(app, "renamed") is None

    def test_unknown_account_is_404(self, app):
        client = app.test_client()
        _login(client)
        assert client.get("/administration/accounts/9999").status_code == 404

    def test_register_then_login_has_no_admin_access(self, app):
        client = app.test_client()
        r = client.post(
            "/auth/register",
            data={"username": "newbie", "email": "newbie@example.com", "password": "password1", "password_confirm": "password1"},
        )
        assert r.status_code == 302

        _login(client, "newbie", "password1")
        assert client.get("/").status_code == 200
        assert client.get("/administration/accounts/").status_code == 403

    def test_locking_an_account_ends_its_access(self, app):
        admin_client = app.test_client()
        _login(admin_client)
        token = _csrf(admin_client)
        admin_client.post("/administration/accounts/create", data=dict(_payload(), csrf_token=token))
        jonas = _account(app, "jonas")

        jonas_client = app.test_client()
        _login(jonas_client, "jonas", "password1")
        assert jonas_client.get("/").status_code == 200

        admin_client.post(
            f"/administration/accounts/{jonas.id}/edit",
            data={"csrf_token": token, "username": "jonas", "email": "jonas@example.com", "is_locked": "1"},
        )
        assert jonas_client.get("/").status_code == 302

    def test_profile_edit_and_delete(self, app):
        client = app.test_client()
        client.post(
            "/auth/register",
            data={"username": "self", "email": "self@example.com", "password": "password1", "password_confirm": "password1"},
        )
        _login(client, "self", "password1")
        token = _csrf(client)

        r = client.post(
            "/profile/",
            data={"csrf_token": token, "username": "self", "email": "me@example.com", "password": "password1", "new_password": ""},
        )
        assert r.status_code == 302
        assert _account(app, "self").email == "me@example.com"

        client.post("/profile/delete", data={"csrf_token": token, "password": "wrong"})
        assert _account(app, "self") is not None

        r = client.post("/profile/delete", data={"csrf_token": token, "password": "password1"})
        assert r.status_code == 302
        assert _account(app, "self") is None
        assert client.get("/").status_code == 302
