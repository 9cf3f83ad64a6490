"""Release notes translation workflow.

The server never translates. When the caller hands over a single text (or a
map missing some locales), it answers with a translation request listing the
locales each store needs; the caller translates and calls again with a full
locale -> text map, which is then split per store and applied.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from pabal_mcp.errors import PabalError
from pabal_mcp.models import DEFAULT_LOCALE, Store
from pabal_mcp.registry import RegisteredAppsStore
from pabal_mcp.services import AppStoreService, GooglePlayService, ResolvedApp

logger = structlog.get_logger(__name__)


class TranslationRequest(BaseModel):
    """Locales one store still needs a translation for."""

    source_text: str
    source_locale: str
    target_locales: list[str] = Field(default_factory=list)
    store: str

    def to_meta(self) -> dict[str, object]:
        return {
            "sourceText": self.source_text,
            "sourceLocale": self.source_locale,
            "targetLocales": self.target_locales,
            "store": self.store,
        }


class SupportedLocales(BaseModel):
    """Supported locales per store; None when the store is not involved or unknown."""

    app_store: list[str] | None = None
    google_play: list[str] | None = None

    def union(self) -> list[str]:
        return sorted(set(self.app_store or []) | set(self.google_play or []))


def _language(locale: str) -> str:
    return locale.split("-", 1)[0].lower()


def match_locale(locale: str, available: list[str]) -> str | None:
    """Locale of available that locale stands for.

    Exact tags match first. Otherwise a bare language matches a regional tag of
    the same language (ko <-> ko-KR), but two regional tags never match.
    """
    if locale in available:
        return locale
    for candidate in available:
        if _language(candidate) != _language(locale):
            continue
        if "-" not in locale or "-" not in candidate:
            return candidate
    return None


def missing_locales(translations: dict[str, str], required: list[str]) -> list[str]:
    """Required locales with no usable translation."""
    provided = list(translations)
    return [locale for locale in required if match_locale(locale, provided) is None]


def notes_for_store(
    translations: dict[str, str], supported: list[str] | None, source_locale: str
) -> dict[str, str]:
    """Translations keyed by the store's own locale tags.

    A store without a known locale list takes every translation. The source
    locale is always kept.
    """
    if not supported:
        return dict(translations)
    notes: dict[str, str] = {}
    for locale in supported:
        match = match_locale(locale, list(translations))
        if match is not None:
            notes[locale] = translations[match]
    if source_locale in translations and source_locale not in notes:
        notes[source_locale] = translations[source_locale]
    return notes


def collect_supported_locales(
    resolved: ResolvedApp,
    store: Store,
    registry: RegisteredAppsStore,
    app_store: AppStoreService | None,
    google_play: GooglePlayService | None,
) -> SupportedLocales:
    """Supported locales from the registry cache, fetching missing ones live.

    Live results are written back to the registry. Lookup failures leave the
    store's list unknown.
    """
    app = resolved.app
    result = SupportedLocales()

    if store.includes_app_store and resolved.bundle_id:
        cached = app.app_store.supported_locales if app and app.app_store else None
        if cached:
            result.app_store = list(cached)
        elif app_store is not None and app_store.configured:
            info = app_store.fetch_app_info(resolved.bundle_id)
            if info.found and info.supported_locales:
                result.app_store = info.supported_locales
                _cache(registry, resolved.bundle_id, Store.APP_STORE, info.supported_locales)

    if store.includes_google_play and resolved.package_name:
        cached = app.google_play.supported_locales if app and app.google_play else None
        if cached:
            result.google_play = list(cached)
        elif google_play is not None and google_play.configured:
            access = google_play.verify_app_access(resolved.package_name)
            if access.accessible and access.supported_locales:
                result.google_play = access.supported_locales
                _cache(registry, resolved.package_name, Store.GOOGLE_PLAY, access.supported_locales)

    return result


def _cache(registry: RegisteredAppsStore, identifier: str, store: Store, locales: list[str]) -> None:
    try:
        registry.update_supported_locales(identifier, store, locales)
    except PabalError as e:
        logger.warning("Supported locales not cached", identifier=identifier, error=e.message)


def build_translation_requests(
    source_text: str,
    source_locale: str,
    supported: SupportedLocales,
    translations: dict[str, str] | None = None,
) -> list[TranslationRequest]:
    """One request per store that still lacks translations."""
    have = dict(translations or {})
    have.setdefault(source_locale, source_text)
    pending: list[TranslationRequest] = []
    for store, locales in ((Store.APP_STORE, supported.app_store), (Store.GOOGLE_PLAY, supported.google_play)):
        if not locales:
            continue
        targets = missing_locales(have, locales)
        if targets:
            pending.append(
                TranslationRequest(
                    source_text=source_text,
                    source_locale=source_locale,
                    target_locales=targets,
                    store=store.value,
                )
            )
    return pending


def translation_source(
    translations: dict[str, str] | None, text: str | None, source_locale: str = DEFAULT_LOCALE
) -> tuple[str, str] | None:
    """Locale and text to translate from.

    Explicit text wins, then the source locale entry, then the first entry given.
    """
    if text:
        return source_locale, text
    if translations:
        match = match_locale(source_locale, list(translations))
        if match is not None:
            return source_locale, translations[match]
        first = next(iter(translations))
        return first, translations[first]
    return None
