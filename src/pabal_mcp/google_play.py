"""Google Play Developer API client."""

from __future__ import annotations

import random
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from pabal_mcp.config import GooglePlayCredentials
from pabal_mcp.errors import ConfigError, InputError, NotFoundError, wrap_error
from pabal_mcp.models import (
    DEFAULT_LOCALE,
    GooglePlayAppAccess,
    GooglePlayLocaleData,
    GooglePlayMultilingual,
    GooglePlayRelease,
    GooglePlayReleaseNote,
    GooglePlayScreenshots,
    ReleaseNotesUpdateResult,
)

if TYPE_CHECKING:
    from googleapiclient._apis.androidpublisher.v3 import AndroidPublisherResource

logger = structlog.get_logger(__name__)

# API scopes required for Play Developer API
SCOPES = ["https://www.googleapis.com/auth/androidpublisher"]

# Retry configuration
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
MAX_BACKOFF = 32.0  # seconds

PRODUCTION_TRACK = "production"
MIN_SCREENSHOTS = 2

# Android Publisher image types -> screenshot fields
IMAGE_TYPES = {
    "phoneScreenshots": "phone",
    "sevenInchScreenshots": "tablet7",
    "tenInchScreenshots": "tablet10",
    "tvScreenshots": "tv",
    "wearScreenshots": "wear",
}


def retry_with_backoff(func):  # type: ignore[no-untyped-def]
    """Decorator to retry API calls with exponential backoff.

    Retries on transient errors (500, 503) and rate limit errors (429).
    """

    def wrapper(*args, **kwargs):  # type: ignore[no-untyped-def]
        retries = 0
        backoff = INITIAL_BACKOFF

        while True:
            try:
                return func(*args, **kwargs)
            except HttpError as e:
                if e.resp.status not in (429, 500, 503):
                    raise
                retries += 1
                if retries >= MAX_RETRIES:
                    raise

                # Jitter spreads retries of concurrent callers
                sleep_time = backoff * (0.5 + random.random())  # noqa: S311
                logger.warning(
                    "API error, retrying",
                    status=e.resp.status,
                    retry=retries,
                    sleep=sleep_time,
                )
                time.sleep(sleep_time)
                backoff = min(backoff * 2, MAX_BACKOFF)

    return wrapper


def verify_google_play_auth(credentials: GooglePlayCredentials) -> dict[str, Any]:
    """Report the identity of a service account key.

    Raises:
        ConfigError: If the key lacks client_email.
    """
    if not credentials.client_email:
        raise ConfigError("Service account key has no client_email")
    return {"client_email": credentials.client_email, "project_id": credentials.project_id}


def latest_release(releases: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Release with the highest version code."""
    best: dict[str, Any] | None = None
    best_code = -1
    for release in releases:
        codes = [int(code) for code in release.get("versionCodes", [])]
        if codes and max(codes) > best_code:
            best, best_code = release, max(codes)
    return best


class GooglePlayClient:
    """Client for the store listing and releases of one Google Play app."""

    def __init__(
        self,
        credentials: GooglePlayCredentials,
        package_name: str,
        application_name: str = "Pabal MCP Server",
    ) -> None:
        """Initialize the Google Play client.

        Args:
            credentials: Service account key.
            package_name: App package name.
            application_name: Application name for API requests.
        """
        self._credentials = credentials
        self.package_name = package_name
        self._application_name = application_name
        self._service: AndroidPublisherResource | None = None
        self._logger = logger.bind(component="GooglePlayClient", package_name=package_name)

    def _get_service(self) -> AndroidPublisherResource:
        """Get or create the API service instance."""
        if self._service is not None:
            return self._service

        self._logger.info("Initializing Google Play Developer API client")
        try:
            credentials = service_account.Credentials.from_service_account_info(
                self._credentials.service_account_info, scopes=SCOPES
            )
        except (ValueError, KeyError) as e:
            raise ConfigError(f"Invalid service account key: {e}") from e

        self._service = build(
            "androidpublisher",
            "v3",
            credentials=credentials,
            cache_discovery=False,
        )
        return self._service  # type: ignore[return-value]

    @retry_with_backoff
    def _create_edit(self) -> str:
        """Create a new edit for the package.

        Returns:
            Edit ID.
        """
        service = self._get_service()
        result = service.edits().insert(packageName=self.package_name, body={}).execute()
        edit_id: str = result["id"]
        self._logger.debug("Created edit", edit_id=edit_id)
        return edit_id

    def _commit_edit(self, edit_id: str) -> None:
        service = self._get_service()
        service.edits().commit(packageName=self.package_name, editId=edit_id).execute()
        self._logger.debug("Committed edit", edit_id=edit_id)

    def _delete_edit(self, edit_id: str) -> None:
        """Delete an edit without committing."""
        service = self._get_service()
        try:
            service.edits().delete(packageName=self.package_name, editId=edit_id).execute()
            self._logger.debug("Deleted edit", edit_id=edit_id)
        except HttpError as e:
            # Edit may have already been committed or expired
            self._logger.debug("Edit not deleted", edit_id=edit_id, status=e.resp.status)

    def _run_edit(self, action: str, apply: Any) -> Any:
        """Run apply(service, edit_id) in an edit and commit it.

        The edit is deleted when apply or the commit fails; the error is
        re-raised translated.
        """
        service = self._get_service()
        edit_id = self._create_edit()
        try:
            result = apply(service, edit_id)
            self._commit_edit(edit_id)
            return result
        except Exception as e:
            self._logger.exception(f"Failed to {action}", error=str(e))
            self._delete_edit(edit_id)
            raise wrap_error(e, message=f"Failed to {action}") from e

    def _read_edit(self, action: str, read: Any) -> Any:
        """Run read(service, edit_id) in a throwaway edit."""
        service = self._get_service()
        try:
            edit_id = self._create_edit()
        except HttpError as e:
            raise wrap_error(e, message=f"Failed to {action}") from e
        try:
            return read(service, edit_id)
        except HttpError as e:
            raise wrap_error(e, message=f"Failed to {action}") from e
        finally:
            self._delete_edit(edit_id)

    # =========================================================================
    # Store Listings API
    # =========================================================================

    def verify_app_access(self) -> GooglePlayAppAccess:
        """Check the service account can open edits for the package."""

        def read(service: Any, edit_id: str) -> GooglePlayAppAccess:
            details = (
                service.edits()
                .details()
                .get(packageName=self.package_name, editId=edit_id)
                .execute()
            )
            listings = (
                service.edits()
                .listings()
                .list(packageName=self.package_name, editId=edit_id)
                .execute()
                .get("listings", [])
            )
            return GooglePlayAppAccess(
                accessible=True,
                package_name=self.package_name,
                title=listings[0].get("title") if listings else None,
                default_language=details.get("defaultLanguage"),
                supported_locales=sorted(item["language"] for item in listings),
            )

        try:
            return self._read_edit("verify app access", read)
        except Exception as e:
            self._logger.warning("App not accessible", error=str(e))
            return GooglePlayAppAccess(
                accessible=False, package_name=self.package_name, error=str(e)
            )

    def _images(self, service: Any, edit_id: str, language: str) -> tuple[GooglePlayScreenshots, str | None]:
        screenshots = GooglePlayScreenshots()
        feature_graphic: str | None = None
        for image_type in [*IMAGE_TYPES, "featureGraphic"]:
            try:
                result = (
                    service.edits()
                    .images()
                    .list(
                        packageName=self.package_name,
                        editId=edit_id,
                        language=language,
                        imageType=image_type,
                    )
                    .execute()
                )
            except HttpError as e:
                if e.resp.status == 404:
                    continue
                raise
            urls = [image["url"] for image in result.get("images", []) if image.get("url")]
            if image_type == "featureGraphic":
                feature_graphic = urls[0] if urls else None
            else:
                setattr(screenshots, IMAGE_TYPES[image_type], urls)
        return screenshots, feature_graphic

    def pull_all_languages(self) -> GooglePlayMultilingual:
        """Listings, images and contact details of every language."""
        self._logger.info("Pulling all Google Play languages")

        def read(service: Any, edit_id: str) -> GooglePlayMultilingual:
            listings = (
                service.edits()
                .listings()
                .list(packageName=self.package_name, editId=edit_id)
                .execute()
                .get("listings", [])
            )
            if not listings:
                raise NotFoundError(f"No store listings found for {self.package_name}")
            details = (
                service.edits()
                .details()
                .get(packageName=self.package_name, editId=edit_id)
                .execute()
            )

            locales: dict[str, GooglePlayLocaleData] = {}
            for listing in listings:
                language = listing["language"]
                screenshots, feature_graphic = self._images(service, edit_id, language)
                locales[language] = GooglePlayLocaleData(
                    title=listing.get("title", ""),
                    short_description=listing.get("shortDescription", ""),
                    full_description=listing.get("fullDescription", ""),
                    video=listing.get("video") or None,
                    screenshots=screenshots,
                    feature_graphic=feature_graphic,
                    category=details.get("category"),
                    contact_email=details.get("contactEmail"),
                    contact_phone=details.get("contactPhone"),
                    contact_website=details.get("contactWebsite"),
                    package_name=self.package_name,
                    default_language=language,
                )
            return GooglePlayMultilingual(
                locales=locales,
                default_locale=details.get("defaultLanguage"),
                contact_email=details.get("contactEmail"),
                contact_phone=details.get("contactPhone"),
                contact_website=details.get("contactWebsite"),
            )

        return self._read_edit("pull listings", read)

    def push_listings(self, data: GooglePlayMultilingual) -> list[str]:
        """Update the listing of every language in a single edit.

        Returns:
            Languages written.
        """
        self._logger.info("Pushing Google Play listings", languages=list(data.locales))

        def apply(service: Any, edit_id: str) -> list[str]:
            written = []
            for language, listing in data.locales.items():
                body = {
                    key: value
                    for key, value in (
                        ("title", listing.title),
                        ("shortDescription", listing.short_description),
                        ("fullDescription", listing.full_description),
                        ("video", listing.video),
                    )
                    if value
                }
                if not body:
                    continue
                service.edits().listings().update(
                    packageName=self.package_name,
                    editId=edit_id,
                    language=language,
                    body=body,
                ).execute()
                written.append(language)
            return written

        return self._run_edit("push listings", apply)

    def push_app_details(
        self,
        contact_email: str | None = None,
        contact_phone: str | None = None,
        contact_website: str | None = None,
        default_language: str | None = None,
    ) -> None:
        """Update contact details in a separate edit."""
        updates = {
            key: value
            for key, value in (
                ("contactEmail", contact_email),
                ("contactPhone", contact_phone),
                ("contactWebsite", contact_website),
            )
            if value
        }
        if not updates:
            return
        self._logger.info("Pushing Google Play app details", fields=list(updates))

        def apply(service: Any, edit_id: str) -> None:
            language = default_language
            if not language:
                current = (
                    service.edits()
                    .details()
                    .get(packageName=self.package_name, editId=edit_id)
                    .execute()
                )
                language = current.get("defaultLanguage") or DEFAULT_LOCALE
            service.edits().details().update(
                packageName=self.package_name,
                editId=edit_id,
                body={"defaultLanguage": language, **updates},
            ).execute()

        self._run_edit("push app details", apply)

    def upload_screenshots(
        self,
        language: str,
        phone: list[Path],
        tablet: list[Path] | None = None,
        feature_graphic: Path | None = None,
    ) -> dict[str, int]:
        """Replace the images of one language.

        Each image type present is cleared first, then uploaded in order.

        Raises:
            InputError: If fewer than two phone screenshots are given.
        """
        if len(phone) < MIN_SCREENSHOTS:
            raise InputError(
                f"At least {MIN_SCREENSHOTS} phone screenshots are required for {language}"
            )
        batches = {"phoneScreenshots": phone, "tenInchScreenshots": tablet or []}
        if feature_graphic is not None:
            batches["featureGraphic"] = [feature_graphic]

        def apply(service: Any, edit_id: str) -> dict[str, int]:
            counts: dict[str, int] = {}
            for image_type, paths in batches.items():
                if not paths:
                    continue
                service.edits().images().deleteall(
                    packageName=self.package_name,
                    editId=edit_id,
                    language=language,
                    imageType=image_type,
                ).execute()
                for path in paths:
                    service.edits().images().upload(
                        packageName=self.package_name,
                        editId=edit_id,
                        language=language,
                        imageType=image_type,
                        media_body=MediaFileUpload(str(path), mimetype="image/png"),
                    ).execute()
                counts[image_type] = len(paths)
            return counts

        self._logger.info("Uploading screenshots", language=language)
        return self._run_edit(f"upload screenshots for {language}", apply)

    # =========================================================================
    # Publishing API
    # =========================================================================

    def get_latest_production_release(self) -> GooglePlayRelease | None:
        """Production release with the highest version code."""

        def read(service: Any, edit_id: str) -> GooglePlayRelease | None:
            track = (
                service.edits()
                .tracks()
                .get(packageName=self.package_name, editId=edit_id, track=PRODUCTION_TRACK)
                .execute()
            )
            release = latest_release(track.get("releases", []))
            if release is None:
                return None
            return GooglePlayRelease(
                version_codes=[int(code) for code in release.get("versionCodes", [])],
                status=release.get("status", "draft"),
                version_name=release.get("name"),
            )

        return self._read_edit("get production release", read)

    def create_production_release(
        self, version_codes: list[int], release_name: str | None = None, status: str = "draft"
    ) -> GooglePlayRelease:
        """Put a release of existing version codes on the production track."""
        if not version_codes:
            raise InputError("At least one version code is required")
        release: dict[str, Any] = {
            "versionCodes": [str(code) for code in version_codes],
            "status": status,
        }
        if release_name:
            release["name"] = release_name
        self._logger.info("Creating production release", version_codes=version_codes)

        def apply(service: Any, edit_id: str) -> None:
            service.edits().tracks().update(
                packageName=self.package_name,
                editId=edit_id,
                track=PRODUCTION_TRACK,
                body={"track": PRODUCTION_TRACK, "releases": [release]},
            ).execute()

        self._run_edit("create production release", apply)
        return GooglePlayRelease(version_codes=version_codes, status=status, version_name=release_name)

    def update_release_notes(
        self, release_notes: dict[str, str], track: str = PRODUCTION_TRACK
    ) -> ReleaseNotesUpdateResult:
        """Set the notes of the newest release of a track.

        Raises:
            NotFoundError: If the track has no release.
        """
        self._logger.info("Updating release notes", track=track, languages=list(release_notes))

        def apply(service: Any, edit_id: str) -> None:
            current = (
                service.edits()
                .tracks()
                .get(packageName=self.package_name, editId=edit_id, track=track)
                .execute()
            )
            releases = current.get("releases", [])
            target = latest_release(releases) or (releases[0] if releases else None)
            if target is None:
                raise NotFoundError(f"No release found on track {track}")
            target["releaseNotes"] = [
                {"language": language, "text": text} for language, text in release_notes.items()
            ]
            service.edits().tracks().update(
                packageName=self.package_name,
                editId=edit_id,
                track=track,
                body={"track": track, "releases": releases},
            ).execute()

        self._run_edit(f"update release notes on {track}", apply)
        return ReleaseNotesUpdateResult(updated=list(release_notes))

    def pull_release_notes(self, track: str | None = None) -> list[GooglePlayReleaseNote]:
        """Release notes of every version code, optionally for one track."""

        def read(service: Any, edit_id: str) -> list[GooglePlayReleaseNote]:
            tracks = (
                service.edits()
                .tracks()
                .list(packageName=self.package_name, editId=edit_id)
                .execute()
                .get("tracks", [])
            )
            notes: list[GooglePlayReleaseNote] = []
            for track_data in tracks:
                track_name = track_data.get("track", "unknown")
                if track and track_name != track:
                    continue
                for release in track_data.get("releases", []):
                    texts = {
                        note.get("language", DEFAULT_LOCALE): note.get("text", "")
                        for note in release.get("releaseNotes", [])
                    }
                    for code in release.get("versionCodes", []):
                        notes.append(
                            GooglePlayReleaseNote(
                                version_code=int(code),
                                version_name=release.get("name") or str(code),
                                track=track_name,
                                status=release.get("status", "draft"),
                                release_notes=texts,
                            )
                        )
            return sorted(notes, key=lambda n: n.version_code, reverse=True)

        return self._read_edit("pull release notes", read)
