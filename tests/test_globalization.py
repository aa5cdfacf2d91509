import json

import pytest
from flask import session

from app.portal import create_app
from app.portal.auth import _login_attempts
from app.portal.globalization import GlobalizationProvider, Language, current_language, load_current_language, translate
from app.portal.models import Base


@pytest.fixture()
def provider():
    return GlobalizationProvider(
        [Language("en", "English", "en-GB", is_default=True), Language("lt", "Lietuvių", "lt-LT")],
        {"en": {"greeting": "Hello", "farewell": "Bye"}, "lt": {"greeting": "Labas"}},
    )


class TestGlobalizationProvider:
    def test_default_language(self, provider):
        assert provider.default_language.abbreviation == "en"

    def test_unknown_or_missing_abbreviation_falls_back_to_default(self, provider):
        assert provider.get("de").abbreviation == "en"
        assert provider.get(None).abbreviation == "en"
        assert provider.get(" LT ").abbreviation == "lt"

    def test_translation_falls_back_to_default_language_then_key(self, provider):
        lt = provider.get("lt")
        assert provider.translate("greeting", lt) == "Labas"
        assert provider.translate("farewell", lt) == "Bye"
        assert provider.translate("missing.key", lt) == "missing.key"

    def test_first_language_is_default_when_none_marked(self):
        provider = GlobalizationProvider([Language("lt", "Lietuvių", "lt-LT"), Language("en", "English", "en-GB")])
        assert provider.default_language.abbreviation == "lt"

    def test_requires_a_language(self):
        with pytest.raises(ValueError):
            GlobalizationProvider([])

    def test_load_from_files(self, tmp_path):
        (tmp_path / "globalization.xml").write_text(
            '<globalization><language abbreviation="EN" name="English" culture="en-GB" />'
            '<language abbreviation="lt" name="Lietuvių" culture="lt-LT" default="true" /></globalization>',
            encoding="utf-8",
        )
        resources = tmp_path / "resources"
        resources.mkdir()
        (resources / "lt.json").write_text(json.dumps({"greeting": "Labas"}), encoding="utf-8")

        provider = GlobalizationProvider.load(tmp_path / "globalization.xml", resources)
        assert [lang.abbreviation for lang in provider.languages] == ["en", "lt"]
        assert provider.default_language.abbreviation == "lt"
        assert provider.translate("greeting", provider.get("en")) == "Labas"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("APPLICATION_PATH", str(tmp_path))

    _login_attempts.clear()
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


class TestLanguageSelection:
    def test_application_resources_fall_back_to_english(self, app):
        provider = app.extensions["globalization"]
        lt = provider.get("lt")
        assert provider.translate("errors.bad_request", lt) == provider.translate("errors.bad_request")
        assert provider.translate("menu.accounts", lt) != provider.translate("menu.accounts")

    def test_set_language_is_stored_in_session(self, app):
        client = app.test_client()
        r = client.get("/language/lt")
        assert r.status_code == 302
        with client.session_transaction() as sess:
            assert sess["language"] == "lt"

        r = client.get("/auth/login")
        assert b'<html lang="lt">' in r.data

    def test_unknown_language_selects_default(self, app):
        client = app.test_client()
        client.get("/language/xx")
        with client.session_transaction() as sess:
            assert sess["language"] == "en"

    def test_redirects_back_to_local_referrer_only(self, app):
        client = app.test_client()
        r = client.get("/language/lt", headers={"Referer": "http://localhost/auth/register"})
        assert r.headers["Location"].endswith("/auth/register")

        r = client.get("/language/lt", headers={"Referer": "http://evil.example.com/phish"})
        assert "evil" not in r.headers["Location"]

    def test_language_survives_logout(self, app):
        client = app.test_client()
        client.get("/language/lt")
        client.get("/auth/logout")
        with client.session_transaction() as sess:
            assert sess["language"] == "lt"

    def test_template_helpers_use_session_language(self, app):
        with app.test_request_context("/"):
            session["language"] = "lt"
            load_current_language()
            assert current_language().abbreviation == "lt"
            assert translate("menu.accounts") == app.extensions["globalization"].translate(
                "menu.accounts", app.extensions["globalization"].get("lt")
            )
