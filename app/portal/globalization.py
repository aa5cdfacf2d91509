from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from flask import Blueprint, Flask, current_app, g, redirect, request, session, url_for

from app.portal.authorization import allow_anonymous_blueprint
from app.portal.security import is_safe_redirect

logger = logging.getLogger(__name__)

bp = allow_anonymous_blueprint(Blueprint("language", __name__))


@dataclass(frozen=True)
class Language:
    abbreviation: str
    name: str
    culture: str
    is_default: bool = False


class GlobalizationProvider:
    def __init__(self, languages: list[Language], resources: dict[str, dict[str, str]] | None = None):
        if not languages:
            raise ValueError("At least one language must be configured.")
        self.languages = tuple(languages)
        defaults = [lang for lang in languages if lang.is_default]
        self.default_language = defaults[0] if defaults else languages[0]
        self._by_abbreviation = {lang.abbreviation.lower(): lang for lang in languages}
        self._resources = resources or {}

    @classmethod
    def load(cls, config_path: Path, resources_dir: Path) -> "GlobalizationProvider":
        root = ET.parse(config_path).getroot()
        languages = [
            Language(
                abbreviation=el.get("abbreviation", "").strip().lower(),
                name=el.get("name", ""),
                culture=el.get("culture", ""),
                is_default=el.get("default", "").strip().lower() == "true",
            )
            for el in root.iter("language")
        ]
        resources = {}
        for lang in languages:
            path = resources_dir / f"{lang.abbreviation}.json"
            if path.exists():
                resources[lang.abbreviation] = json.loads(path.read_text(encoding="utf-8"))
            else:
                logger.warning("No resource file for language '%s' (%s)", lang.abbreviation, path)
        return cls(languages, resources)

    def get(self, abbreviation: str | None) -> Language:
        return self._by_abbreviation.get((abbreviation or "").strip().lower(), self.default_language)

    def translate(self, key: str, language: Language | None = None) -> str:
        language = language or self.default_language
        for abbreviation in (language.abbreviation, self.default_language.abbreviation):
            value = self._resources.get(abbreviation, {}).get(key)
            if value:
                return value
        return key


def globalization() -> GlobalizationProvider:
    return current_app.extensions["globalization"]


def current_language() -> Language:
    language = getattr(g, "language", None)
    return language if language is not None else globalization().default_language


def translate(key: str) -> str:
    return globalization().translate(key, current_language())


def load_current_language() -> None:
    g.language = globalization().get(session.get("language"))


@bp.get("/language/<abbreviation>")
def set_language(abbreviation: str):
    language = globalization().get(abbreviation)
    session["language"] = language.abbreviation
    referrer = request.referrer or ""
    if referrer.startswith(request.host_url):
        referrer = "/" + referrer[len(request.host_url):]
        if is_safe_redirect(referrer):
            return redirect(referrer)
    return redirect(url_for("home.index"))


def init_globalization(app: Flask) -> GlobalizationProvider:
    base = Path(app.root_path)
    provider = GlobalizationProvider.load(base / "globalization.xml", base / "resources")
    app.extensions["globalization"] = provider
    app.before_request(load_current_language)
    app.add_template_global(translate, "t")
    app.add_template_global(current_language)
    app.add_template_global(lambda: globalization().languages, "languages")
    app.register_blueprint(bp)
    return provider
