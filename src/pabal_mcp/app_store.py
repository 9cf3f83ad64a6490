"""App Store Connect API client."""

from __future__ import annotations

import functools
import time
from collections.abc import Iterable, Iterator
from typing import Any, TypeVar

import jwt
import requests
import structlog

from pabal_mcp.config import AppStoreCredentials, normalize_private_key
from pabal_mcp.errors import (
    AuthenticationError,
    ConfigError,
    NotFoundError,
    StateConflictError,
    StoreApiError,
    wrap_error,
)
from pabal_mcp.models import (
    DEFAULT_LOCALE,
    AppStoreAppSummary,
    AppStoreLocaleData,
    AppStoreMultilingual,
    AppStoreReleaseNote,
    AppStoreVersion,
)

logger = structlog.get_logger(__name__)

API_BASE_URL = "https://api.appstoreconnect.apple.com/v1"
TOKEN_AUDIENCE = "appstoreconnect-v1"
TOKEN_LIFETIME_SECONDS = 1200
PLATFORM = "IOS"
REQUEST_TIMEOUT = 30
APPS_PAGE_LIMIT = 200
VERSIONS_FETCH_LIMIT = 50
EDITABLE_STATE = "PREPARE_FOR_SUBMISSION"
RELEASED_STATE = "READY_FOR_SALE"
FIRST_VERSION = "1.0.0"

# Screenshot display types -> local device type names
SCREENSHOT_TYPE_MAP = {
    "APP_IPHONE_67": "iphone65",
    "APP_IPHONE_65": "iphone65",
    "APP_IPHONE_61": "iphone61",
    "APP_IPHONE_58": "iphone58",
    "APP_IPHONE_55": "iphone55",
    "APP_IPHONE_47": "iphone47",
    "APP_IPHONE_40": "iphone40",
    "APP_IPAD_PRO_3GEN_129": "ipadPro129",
    "APP_IPAD_PRO_129": "ipadPro129",
    "APP_IPAD_PRO_3GEN_11": "ipadPro11",
    "APP_IPAD_PRO_11": "ipadPro11",
    "APP_IPAD_105": "ipad105",
    "APP_IPAD_97": "ipad97",
    "APP_WATCH_SERIES_4": "appleWatch",
    "APP_WATCH_SERIES_3": "appleWatch",
    "APP_APPLE_WATCH_SERIES_4": "appleWatch",
    "APP_APPLE_WATCH_SERIES_3": "appleWatch",
}

_VERSION_FIELDS = {
    "description": "description",
    "keywords": "keywords",
    "promotional_text": "promotionalText",
    "support_url": "supportUrl",
    "marketing_url": "marketingUrl",
}

T = TypeVar("T")


# =============================================================================
# Version Strings
# =============================================================================


def _version_parts(version: str) -> list[int]:
    parts = []
    for piece in version.strip().split("."):
        try:
            parts.append(int(piece))
        except ValueError:
            parts.append(0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """Numeric dotted comparison, missing components count as 0."""
    left, right = _version_parts(a), _version_parts(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    return (left > right) - (left < right)


def sort_versions(versions: Iterable[T], key: Any = None) -> list[T]:
    """Sort versions newest first.

    Args:
        versions: Version strings, or objects when key is given.
        key: Callable returning the version string of an item.
    """
    get = key or (lambda item: item)
    return sorted(
        versions,
        key=functools.cmp_to_key(lambda a, b: compare_versions(get(a), get(b))),
        reverse=True,
    )


def increment_version(version: str) -> str:
    """Pad to three components and bump the last one."""
    parts = _version_parts(version) if version.strip() else []
    parts += [0] * (3 - len(parts))
    parts[-1] += 1
    return ".".join(str(p) for p in parts)


def generate_token(credentials: AppStoreCredentials, lifetime: int = TOKEN_LIFETIME_SECONDS) -> str:
    """Sign an App Store Connect API token.

    Raises:
        ConfigError: If the private key is not a PEM private key.
    """
    private_key = normalize_private_key(credentials.private_key)
    if "BEGIN PRIVATE KEY" not in private_key:
        raise ConfigError("App Store private key must be a PEM encoded .p8 key")

    now = int(time.time())
    payload = {
        "iss": credentials.issuer_id,
        "iat": now,
        "exp": now + lifetime,
        "aud": TOKEN_AUDIENCE,
    }
    headers = {"kid": credentials.key_id, "typ": "JWT"}
    try:
        return jwt.encode(payload, private_key, algorithm="ES256", headers=headers)
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise ConfigError(f"Failed to sign App Store token: {e}") from e


def verify_app_store_auth(credentials: AppStoreCredentials) -> dict[str, Any]:
    """Sign a short-lived token and decode it without calling the API."""
    token = generate_token(credentials, lifetime=300)
    header = jwt.get_unverified_header(token)
    payload = jwt.decode(token, options={"verify_signature": False})
    return {"header": header, "payload": payload}


def _error_detail(body: Any) -> str:
    if isinstance(body, dict):
        errors = body.get("errors") or []
        if errors:
            first = errors[0]
            return str(first.get("detail") or first.get("title") or first.get("code") or "")
    return ""


class AppStoreClient:
    """Client for App Store Connect metadata of one app."""

    def __init__(
        self,
        credentials: AppStoreCredentials,
        bundle_id: str | None = None,
        *,
        session: requests.Session | None = None,
        base_url: str = API_BASE_URL,
    ) -> None:
        """Initialize the App Store client.

        Args:
            credentials: API key used to sign request tokens.
            bundle_id: Bundle ID of the app the per-app operations target.
            session: HTTP session, mainly for tests.
            base_url: API root.
        """
        self._credentials = credentials
        self.bundle_id = bundle_id
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._app_id: str | None = None
        self._logger = logger.bind(component="AppStoreClient", bundle_id=bundle_id)

    # =========================================================================
    # HTTP
    # =========================================================================

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send an authenticated request and return the decoded body.

        Raises:
            AuthenticationError: On 401.
            StateConflictError: On 409 with a STATE_ERROR body.
            StoreApiError: On any other failure.
        """
        url = endpoint if endpoint.startswith("http") else f"{self._base_url}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {generate_token(self._credentials)}",
            "Content-Type": "application/json",
        }
        try:
            response = self._session.request(
                method, url, headers=headers, params=params, json=body, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise wrap_error(e, message=f"{method} {endpoint}") from e

        if response.status_code == 401:
            raise AuthenticationError(
                "App Store Connect authentication failed (401). Check Issuer ID "
                f"({self._credentials.issuer_id}) and Key ID ({self._credentials.key_id}).",
                details={"store": "appStore", "status": 401},
            )

        if not response.ok:
            text = response.text or ""
            try:
                detail = _error_detail(response.json())
            except ValueError:
                detail = ""
            error = StoreApiError(
                f"App Store Connect API error ({response.status_code}): {detail or response.reason}",
                store="appStore",
                status=response.status_code,
                body=text,
            )
            if error.is_state_error:
                raise StateConflictError(
                    f"409 Conflict (STATE_ERROR): {detail or 'resource cannot be edited in its current state'}",
                    body=text,
                )
            raise error

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise wrap_error(e, message=f"{method} {endpoint} returned invalid JSON") from e

    def _paginate(self, endpoint: str, params: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Yield resources of a list endpoint, following links.next."""
        next_url: str | None = endpoint
        next_params = params
        while next_url:
            page = self._request("GET", next_url, params=next_params)
            yield from page.get("data", [])
            next_url = (page.get("links") or {}).get("next")
            next_params = None

    # =========================================================================
    # Apps
    # =========================================================================

    def _require_bundle_id(self) -> str:
        if not self.bundle_id:
            raise ConfigError("App Store bundle ID is required for this operation")
        return self.bundle_id

    def find_app(self, bundle_id: str | None = None) -> AppStoreAppSummary | None:
        """Look up an app by bundle ID."""
        bundle_id = bundle_id or self._require_bundle_id()
        result = self._request("GET", "apps", params={"filter[bundleId]": bundle_id})
        data = result.get("data") or []
        if not data:
            return None
        return self._summary(data[0])

    def get_app_id(self) -> str:
        """App Store Connect ID of the client's app.

        Raises:
            NotFoundError: If no app has the bundle ID.
        """
        if self._app_id is None:
            app = self.find_app()
            if app is None:
                raise NotFoundError(
                    f"App not found on App Store Connect: {self.bundle_id}",
                    details={"bundle_id": self.bundle_id},
                )
            self._app_id = app.id
        return self._app_id

    def _summary(self, resource: dict[str, Any], name: str | None = None) -> AppStoreAppSummary:
        attributes = resource.get("attributes", {})
        return AppStoreAppSummary(
            id=resource["id"],
            name=name or attributes.get("name", ""),
            bundle_id=attributes.get("bundleId", ""),
            sku=attributes.get("sku"),
            primary_locale=attributes.get("primaryLocale"),
        )

    def _is_released(self, app_id: str) -> bool:
        result = self._request(
            "GET",
            f"apps/{app_id}/appStoreVersions",
            params={"filter[appStoreState]": RELEASED_STATE, "limit": 1},
        )
        return bool(result.get("data"))

    def _english_name(self, app_id: str) -> str | None:
        try:
            app_info_id = self._app_info_id(app_id)
            localizations = list(self._paginate(f"appInfos/{app_info_id}/appInfoLocalizations"))
        except (NotFoundError, StoreApiError):
            return None
        names = {
            loc["attributes"].get("locale", ""): loc["attributes"].get("name")
            for loc in localizations
        }
        for preferred in ("en-US", "en-GB"):
            if names.get(preferred):
                return names[preferred]
        for locale, name in names.items():
            if locale.startswith("en") and name:
                return name
        return None

    def list_all_apps(self, only_released: bool = False) -> list[AppStoreAppSummary]:
        """List every app of the account, named by its English localization."""
        self._logger.info("Listing App Store apps", only_released=only_released)
        apps: list[AppStoreAppSummary] = []
        for resource in self._paginate("apps", params={"limit": APPS_PAGE_LIMIT}):
            if only_released and not self._is_released(resource["id"]):
                continue
            apps.append(self._summary(resource, self._english_name(resource["id"])))
        return apps

    def _app_info_id(self, app_id: str | None = None) -> str:
        app_id = app_id or self.get_app_id()
        result = self._request("GET", f"apps/{app_id}/appInfos", params={"limit": 1})
        data = result.get("data") or []
        if not data:
            raise NotFoundError(f"No app info found for app {app_id}")
        return data[0]["id"]

    def _app_info_localizations(self, locale: str | None = None) -> list[dict[str, Any]]:
        params = {"filter[locale]": locale} if locale else None
        return list(
            self._paginate(f"appInfos/{self._app_info_id()}/appInfoLocalizations", params)
        )

    def get_supported_locales(self, app_id: str | None = None) -> list[str]:
        """Sorted locales of the app's info localizations."""
        app_info_id = self._app_info_id(app_id)
        localizations = self._paginate(f"appInfos/{app_info_id}/appInfoLocalizations")
        return sorted({loc["attributes"]["locale"] for loc in localizations})

    # =========================================================================
    # Versions
    # =========================================================================

    def list_versions(
        self, limit: int = VERSIONS_FETCH_LIMIT, state: str | None = None
    ) -> list[AppStoreVersion]:
        """iOS versions of the app, newest first."""
        params: dict[str, Any] = {"filter[platform]": PLATFORM, "limit": limit}
        if state:
            params["filter[appStoreState]"] = state
        resources = self._paginate(f"apps/{self.get_app_id()}/appStoreVersions", params=params)
        versions = [AppStoreVersion.from_resource(r) for r in resources]
        return sort_versions(versions, key=lambda v: v.version_string)

    def get_latest_version(self) -> AppStoreVersion | None:
        versions = self.list_versions()
        return versions[0] if versions else None

    def find_editable_version(self) -> AppStoreVersion | None:
        """Newest version still in PREPARE_FOR_SUBMISSION."""
        versions = self.list_versions(state=EDITABLE_STATE)
        return versions[0] if versions else None

    def create_version(self, version_string: str) -> AppStoreVersion:
        """Create an iOS version, or return it if it already exists."""
        for version in self.list_versions():
            if version.version_string == version_string:
                self._logger.info("Version already exists", version=version_string)
                return version

        self._logger.info("Creating App Store version", version=version_string)
        body = {
            "data": {
                "type": "appStoreVersions",
                "attributes": {"platform": PLATFORM, "versionString": version_string},
                "relationships": {"app": {"data": {"type": "apps", "id": self.get_app_id()}}},
            }
        }
        result = self._request("POST", "appStoreVersions", body=body)
        return AppStoreVersion.from_resource(result["data"])

    def create_version_with_auto_increment(self, base_version: str | None = None) -> AppStoreVersion:
        """Create the version after base_version, or after the latest one.

        Starts at 1.0.0 when the app has no version yet.
        """
        if base_version is None:
            latest = self.get_latest_version()
            base_version = latest.version_string if latest else None
        version_string = increment_version(base_version) if base_version else FIRST_VERSION
        return self.create_version(version_string)

    # =========================================================================
    # Localizations
    # =========================================================================

    def _version_localizations(
        self, version_id: str, locale: str | None = None
    ) -> list[dict[str, Any]]:
        params = {"filter[locale]": locale} if locale else None
        return list(
            self._paginate(f"appStoreVersions/{version_id}/appStoreVersionLocalizations", params)
        )

    def _screenshots(self, localization_id: str) -> dict[str, list[str]]:
        screenshots: dict[str, list[str]] = {}
        sets = self._paginate(f"appStoreVersionLocalizations/{localization_id}/appScreenshotSets")
        for screenshot_set in sets:
            display_type = screenshot_set["attributes"].get("screenshotDisplayType", "")
            device_type = SCREENSHOT_TYPE_MAP.get(display_type) or SCREENSHOT_TYPE_MAP.get(
                f"APP_{display_type}"
            )
            if device_type is None:
                continue
            for shot in self._paginate(f"appScreenshotSets/{screenshot_set['id']}/appScreenshots"):
                attributes = shot.get("attributes", {})
                url = attributes.get("imageUrl") or (attributes.get("imageAsset") or {}).get(
                    "templateUrl"
                )
                if url:
                    screenshots.setdefault(device_type, []).append(url)
        return screenshots

    def _locale_data(
        self,
        locale: str,
        app_info_loc: dict[str, Any] | None,
        version_loc: dict[str, Any] | None,
        app_name: str | None,
    ) -> AppStoreLocaleData:
        info = (app_info_loc or {}).get("attributes", {})
        version = (version_loc or {}).get("attributes", {})
        screenshots = self._screenshots(version_loc["id"]) if version_loc else {}
        return AppStoreLocaleData(
            name=info.get("name") or app_name or "",
            subtitle=info.get("subtitle"),
            description=version.get("description") or "",
            keywords=version.get("keywords"),
            promotional_text=version.get("promotionalText"),
            support_url=version.get("supportUrl"),
            marketing_url=version.get("marketingUrl"),
            privacy_policy_url=info.get("privacyPolicyUrl"),
            screenshots=screenshots,
            whats_new=version.get("whatsNew"),
            bundle_id=self.bundle_id,
            locale=locale,
        )

    def pull_locale(self, locale: str = DEFAULT_LOCALE) -> AppStoreLocaleData:
        """Metadata of one locale from the app info and the latest version."""
        self._logger.info("Pulling App Store locale", locale=locale)
        app_info_locs = self._app_info_localizations(locale)
        latest = self.get_latest_version()
        version_locs = self._version_localizations(latest.id, locale) if latest else []
        if not app_info_locs and not version_locs:
            raise NotFoundError(f"No App Store localization for {locale}")
        return self._locale_data(
            locale,
            app_info_locs[0] if app_info_locs else None,
            version_locs[0] if version_locs else None,
            None,
        )

    def pull_all_locales(self) -> AppStoreMultilingual:
        """Metadata of every locale of the app."""
        self._logger.info("Pulling all App Store locales")
        app_info_locs = {
            loc["attributes"]["locale"]: loc for loc in self._app_info_localizations()
        }
        latest = self.get_latest_version()
        version_locs = (
            {loc["attributes"]["locale"]: loc for loc in self._version_localizations(latest.id)}
            if latest
            else {}
        )
        locales = sorted(set(app_info_locs) | set(version_locs))
        if not locales:
            raise NotFoundError(f"No App Store localizations found for {self.bundle_id}")

        summary = self.find_app()
        app_name = summary.name if summary else None
        data = {
            locale: self._locale_data(
                locale, app_info_locs.get(locale), version_locs.get(locale), app_name
            )
            for locale in locales
        }
        primary = summary.primary_locale if summary else None
        first = data[primary if primary in data else locales[0]]
        return AppStoreMultilingual(
            locales=data,
            default_locale=primary,
            support_url=first.support_url,
            marketing_url=first.marketing_url,
            privacy_policy_url=first.privacy_policy_url,
        )

    def _upsert(
        self,
        resource_type: str,
        existing: list[dict[str, Any]],
        attributes: dict[str, Any],
        locale: str,
        parent_type: str,
        parent_relationship: str,
        parent_id: str,
    ) -> None:
        if existing:
            body = {
                "data": {"type": resource_type, "id": existing[0]["id"], "attributes": attributes}
            }
            self._request("PATCH", f"{resource_type}/{existing[0]['id']}", body=body)
            return
        body = {
            "data": {
                "type": resource_type,
                "attributes": {"locale": locale, **attributes},
                "relationships": {
                    parent_relationship: {"data": {"type": parent_type, "id": parent_id}}
                },
            }
        }
        self._request("POST", resource_type, body=body)

    def push_locale(self, data: AppStoreLocaleData) -> list[str]:
        """Update one locale, creating localizations that do not exist yet.

        Name and subtitle live on the app info, which the App Store locks while
        a version is in review; a conflict there is reported, not raised.

        Returns:
            Fields the store refused to update.

        Raises:
            StateConflictError: If the version localization is locked.
        """
        locale = data.locale or DEFAULT_LOCALE
        failed_fields: list[str] = []
        self._logger.info("Pushing App Store locale", locale=locale)

        info_attributes = {
            key: value
            for key, value in (("name", data.name), ("subtitle", data.subtitle))
            if value
        }
        if info_attributes:
            app_info_id = self._app_info_id()
            try:
                self._upsert(
                    "appInfoLocalizations",
                    self._app_info_localizations(locale),
                    info_attributes,
                    locale,
                    "appInfos",
                    "appInfo",
                    app_info_id,
                )
            except StoreApiError as e:
                if e.status != 409:
                    raise
                self._logger.warning(
                    "App info locked, skipping fields",
                    locale=locale,
                    fields=list(info_attributes),
                    error=e.message,
                )
                failed_fields.extend(info_attributes)

        version_attributes = {
            api_key: getattr(data, field)
            for field, api_key in _VERSION_FIELDS.items()
            if getattr(data, field)
        }
        if version_attributes:
            latest = self.get_latest_version()
            if latest is None:
                raise NotFoundError(f"No App Store version found for {self.bundle_id}")
            self._upsert(
                "appStoreVersionLocalizations",
                self._version_localizations(latest.id, locale),
                version_attributes,
                locale,
                "appStoreVersions",
                "appStoreVersion",
                latest.id,
            )

        return failed_fields

    # =========================================================================
    # Release Notes
    # =========================================================================

    def update_whats_new(self, version_id: str, locale: str, whats_new: str) -> None:
        """Set the What's New text of one locale of a version."""
        self._upsert(
            "appStoreVersionLocalizations",
            self._version_localizations(version_id, locale),
            {"whatsNew": whats_new},
            locale,
            "appStoreVersions",
            "appStoreVersion",
            version_id,
        )

    def pull_release_notes(self) -> list[AppStoreReleaseNote]:
        """What's New of each version, newest first; versions without notes are skipped."""
        notes: list[AppStoreReleaseNote] = []
        for version in self.list_versions():
            release_notes = {
                loc["attributes"]["locale"]: loc["attributes"]["whatsNew"]
                for loc in self._version_localizations(version.id)
                if loc["attributes"].get("whatsNew")
            }
            if not release_notes:
                continue
            notes.append(
                AppStoreReleaseNote(
                    version_string=version.version_string,
                    platform=version.platform,
                    release_notes=release_notes,
                    release_date=version.created_date,
                )
            )
        return notes
