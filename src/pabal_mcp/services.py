"""Store services composing client calls into tool-level operations."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import requests
import structlog
from pydantic import BaseModel

from pabal_mcp.app_store import AppStoreClient, verify_app_store_auth
from pabal_mcp.aso_data import local_google_play_images
from pabal_mcp.config import AppConfig
from pabal_mcp.errors import ConfigError, InputError, NotFoundError, PabalError, StateConflictError
from pabal_mcp.google_play import GooglePlayClient, verify_google_play_auth
from pabal_mcp.models import (
    AppStoreAppInfo,
    AppStoreAppSummary,
    AppStoreMultilingual,
    AppStoreReleaseNote,
    AppStoreVersion,
    CreatedVersion,
    GooglePlayAppAccess,
    GooglePlayMultilingual,
    GooglePlayRelease,
    GooglePlayReleaseNote,
    LocaleFailedFields,
    LocaleFailure,
    PushResult,
    RegisteredApp,
    ReleaseNotesUpdateResult,
    Store,
)
from pabal_mcp.registry import RegisteredAppsStore

logger = structlog.get_logger(__name__)


def filter_supported(notes: dict[str, str], supported_locales: list[str] | None) -> dict[str, str]:
    if not supported_locales:
        return dict(notes)
    return {locale: text for locale, text in notes.items() if locale in supported_locales}


# =============================================================================
# App Resolution
# =============================================================================


class ResolvedApp(BaseModel):
    """Store identifiers of the app a tool call targets."""

    slug: str
    bundle_id: str | None = None
    package_name: str | None = None
    app: RegisteredApp | None = None

    @property
    def has_app_store(self) -> bool:
        return bool(self.bundle_id)

    @property
    def has_google_play(self) -> bool:
        return bool(self.package_name)


def resolve_app(
    registry: RegisteredAppsStore,
    slug: str | None = None,
    bundle_id: str | None = None,
    package_name: str | None = None,
) -> ResolvedApp:
    """Find a registered app by slug, bundle ID or package name, in that order.

    Raises:
        InputError: If no identifier is given.
        NotFoundError: If the identifier is not registered.
    """
    identifier = slug or bundle_id or package_name
    if not identifier:
        raise InputError(
            "❌ App not found. Please provide app (slug), package_name, or bundle_id."
        )
    app = registry.find(identifier)
    if app is None:
        raise NotFoundError(
            f'❌ App registered with "{identifier}" not found. '
            "Check registered apps using apps-search."
        )
    return ResolvedApp(
        slug=app.slug,
        bundle_id=bundle_id or (app.app_store.bundle_id if app.app_store else None),
        package_name=package_name or (app.google_play.package_name if app.google_play else None),
        app=app,
    )


# =============================================================================
# App Store
# =============================================================================


class AppStoreService:
    """App Store operations for registered apps."""

    store = Store.APP_STORE

    def __init__(
        self,
        config: AppConfig,
        registry: RegisteredAppsStore,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._session = session
        self._logger = logger.bind(component="AppStoreService")

    @property
    def configured(self) -> bool:
        return self._config.app_store is not None

    def client(self, bundle_id: str | None = None) -> AppStoreClient:
        if self._config.app_store is None:
            raise ConfigError("App Store credentials are not configured")
        return AppStoreClient(self._config.app_store, bundle_id, session=self._session)

    def verify_auth(self) -> dict[str, Any]:
        if self._config.app_store is None:
            raise ConfigError("App Store credentials are not configured")
        return verify_app_store_auth(self._config.app_store)

    def list_released_apps(self) -> list[AppStoreAppSummary]:
        return self.client().list_all_apps(only_released=True)

    def fetch_app_info(self, bundle_id: str) -> AppStoreAppInfo:
        """Look up an app; a missing app is reported, not raised."""
        client = self.client(bundle_id)
        try:
            app = client.find_app()
            if app is None:
                return AppStoreAppInfo(found=False, error=f"{bundle_id} not found on App Store")
            return AppStoreAppInfo(
                found=True,
                app_id=app.id,
                name=app.name,
                supported_locales=client.get_supported_locales(app.id),
            )
        except PabalError as e:
            self._logger.warning("App Store lookup failed", bundle_id=bundle_id, error=e.message)
            return AppStoreAppInfo(found=False, error=e.message)

    def pull(self, bundle_id: str) -> AppStoreMultilingual:
        return self.client(bundle_id).pull_all_locales()

    def push(self, bundle_id: str, data: AppStoreMultilingual) -> PushResult:
        """Push every locale, recovering from a locked version.

        A 409 STATE_ERROR creates the next version and reports it instead of
        failing; the caller re-pushes once What's New is filled in.
        """
        client = self.client(bundle_id)
        pushed: list[str] = []
        failed: list[LocaleFailedFields] = []

        try:
            for locale, locale_data in data.locales.items():
                payload = locale_data.model_copy(
                    update={
                        "locale": locale,
                        "support_url": locale_data.support_url or data.support_url,
                        "marketing_url": locale_data.marketing_url or data.marketing_url,
                    }
                )
                failed_fields = client.push_locale(payload)
                if failed_fields:
                    failed.append(LocaleFailedFields(locale=locale, fields=failed_fields))
                pushed.append(locale)
        except StateConflictError as e:
            self._logger.warning("Version locked, creating a new one", bundle_id=bundle_id)
            return self._recover_with_new_version(client, data, pushed, e)
        except PabalError as e:
            self._logger.error("App Store push failed", bundle_id=bundle_id, error=e.message)
            return PushResult(
                store=self.store.value, success=False, locales=pushed, failed_fields=failed, error=e.message
            )

        self._remember_locales(bundle_id, pushed)
        return PushResult(store=self.store.value, success=True, locales=pushed, failed_fields=failed)

    def _recover_with_new_version(
        self,
        client: AppStoreClient,
        data: AppStoreMultilingual,
        pushed: list[str],
        conflict: StateConflictError,
    ) -> PushResult:
        try:
            version = client.create_version_with_auto_increment()
        except PabalError as e:
            return PushResult(
                store=self.store.value,
                success=False,
                locales=pushed,
                error=f"Failed to create new version: {e.message}",
            )
        self._logger.info("Created new version", version=version.version_string)
        return PushResult(
            store=self.store.value,
            success=False,
            locales=pushed,
            needs_new_version=True,
            version_info=CreatedVersion(
                version_id=version.id,
                version_string=version.version_string,
                locales=list(data.locales),
            ),
            error=conflict.message,
        )

    def _remember_locales(self, bundle_id: str, locales: list[str]) -> None:
        if not locales:
            return
        try:
            self._registry.update_supported_locales(bundle_id, self.store, locales)
        except PabalError as e:
            self._logger.warning("Supported locales not saved", bundle_id=bundle_id, error=e.message)

    def get_latest_version(self, bundle_id: str) -> AppStoreVersion | None:
        return self.client(bundle_id).get_latest_version()

    def create_version(self, bundle_id: str, version_string: str | None = None) -> AppStoreVersion:
        client = self.client(bundle_id)
        if version_string:
            return client.create_version(version_string)
        return client.create_version_with_auto_increment()

    def update_release_notes(
        self,
        bundle_id: str,
        release_notes: dict[str, str],
        version_id: str | None = None,
        supported_locales: list[str] | None = None,
    ) -> ReleaseNotesUpdateResult:
        """Set What's New per locale, collecting per-locale failures.

        Without version_id the version in PREPARE_FOR_SUBMISSION is used.
        """
        client = self.client(bundle_id)
        notes = filter_supported(release_notes, supported_locales)
        if not notes:
            raise InputError("No supported locales found in release notes")

        if version_id is None:
            editable = client.find_editable_version()
            if editable is None:
                raise NotFoundError("No editable version found for release notes update")
            version_id = editable.id

        result = ReleaseNotesUpdateResult()
        for locale, text in notes.items():
            try:
                client.update_whats_new(version_id, locale, text)
                result.updated.append(locale)
            except PabalError as e:
                self._logger.warning("What's New not updated", locale=locale, error=e.message)
                result.failed.append(LocaleFailure(locale=locale, error=e.message))
        return result

    def pull_release_notes(self, bundle_id: str) -> list[AppStoreReleaseNote]:
        return self.client(bundle_id).pull_release_notes()


# =============================================================================
# Google Play
# =============================================================================


class GooglePlayService:
    """Google Play operations for registered apps."""

    store = Store.GOOGLE_PLAY

    def __init__(self, config: AppConfig, registry: RegisteredAppsStore) -> None:
        self._config = config
        self._registry = registry
        self._logger = logger.bind(component="GooglePlayService")

    @property
    def configured(self) -> bool:
        return self._config.google_play is not None

    def client(self, package_name: str) -> GooglePlayClient:
        if self._config.google_play is None:
            raise ConfigError("Google Play credentials are not configured")
        return GooglePlayClient(self._config.google_play, package_name)

    def verify_auth(self) -> dict[str, Any]:
        if self._config.google_play is None:
            raise ConfigError("Google Play credentials are not configured")
        return verify_google_play_auth(self._config.google_play)

    def verify_app_access(self, package_name: str) -> GooglePlayAppAccess:
        return self.client(package_name).verify_app_access()

    def pull(self, package_name: str) -> GooglePlayMultilingual:
        return self.client(package_name).pull_all_languages()

    def push(
        self,
        package_name: str,
        data: GooglePlayMultilingual,
        images_dir: Path | None = None,
        slug: str | None = None,
    ) -> PushResult:
        """Push listings, then details, then optionally staged screenshots.

        Listings of all languages share one edit. Details and each language's
        images use their own edits, so their failures are reported per part.
        """
        client = self.client(package_name)
        try:
            pushed = client.push_listings(data)
        except PabalError as e:
            return PushResult(store=self.store.value, success=False, error=e.message)

        failed: list[LocaleFailedFields] = []
        try:
            client.push_app_details(
                contact_email=data.contact_email,
                contact_phone=data.contact_phone,
                contact_website=data.contact_website,
            )
        except PabalError as e:
            self._logger.warning("App details not updated", error=e.message)
            failed.append(LocaleFailedFields(locale=data.default_locale or "", fields=["contactDetails"]))

        if images_dir is not None and slug:
            failed.extend(self._upload_images(client, images_dir, slug, list(data.locales)))

        self._remember_locales(package_name, pushed)
        return PushResult(store=self.store.value, success=True, locales=pushed, failed_fields=failed)

    def _upload_images(
        self, client: GooglePlayClient, images_dir: Path, slug: str, locales: list[str]
    ) -> list[LocaleFailedFields]:
        failed = []
        for locale in locales:
            images = local_google_play_images(images_dir, slug, locale)
            if not images["phone"]:
                continue
            try:
                client.upload_screenshots(
                    locale, images["phone"], images["tablet"], images["feature_graphic"]
                )
            except PabalError as e:
                self._logger.warning("Screenshots not uploaded", locale=locale, error=e.message)
                failed.append(LocaleFailedFields(locale=locale, fields=["screenshots"]))
        return failed

    def _remember_locales(self, package_name: str, locales: list[str]) -> None:
        if not locales:
            return
        try:
            self._registry.update_supported_locales(package_name, self.store, locales)
        except PabalError as e:
            self._logger.warning(
                "Supported locales not saved", package_name=package_name, error=e.message
            )

    def get_latest_release(self, package_name: str) -> GooglePlayRelease | None:
        return self.client(package_name).get_latest_production_release()

    def create_release(
        self, package_name: str, version_codes: list[int], release_name: str | None = None
    ) -> GooglePlayRelease:
        return self.client(package_name).create_production_release(version_codes, release_name)

    def update_release_notes(
        self,
        package_name: str,
        release_notes: dict[str, str],
        track: str = "production",
        supported_locales: list[str] | None = None,
    ) -> ReleaseNotesUpdateResult:
        """Set release notes of the newest release of a track.

        All languages are written in one edit, so they succeed or fail together.
        """
        notes = filter_supported(release_notes, supported_locales)
        if not notes:
            raise InputError("No supported locales found in release notes")
        try:
            return self.client(package_name).update_release_notes(notes, track)
        except PabalError as e:
            return ReleaseNotesUpdateResult(
                failed=[LocaleFailure(locale=locale, error=e.message) for locale in notes]
            )

    def pull_release_notes(self, package_name: str) -> list[GooglePlayReleaseNote]:
        return self.client(package_name).pull_release_notes()
