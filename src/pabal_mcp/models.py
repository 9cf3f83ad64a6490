"""Pydantic models for Pabal MCP Server."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_LOCALE = "en-US"


class Store(str, Enum):
    """Store selector accepted by tools."""

    APP_STORE = "appStore"
    GOOGLE_PLAY = "googlePlay"
    BOTH = "both"
    ALL = "all"

    @property
    def includes_app_store(self) -> bool:
        return self in (Store.APP_STORE, Store.BOTH, Store.ALL)

    @property
    def includes_google_play(self) -> bool:
        return self in (Store.GOOGLE_PLAY, Store.BOTH, Store.ALL)


class CamelModel(BaseModel):
    """Base for models persisted as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """Dump with file-format aliases, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Registered Apps
# =============================================================================


class RegisteredAppStoreInfo(CamelModel):
    """App Store identifiers of a registered app."""

    bundle_id: str = Field(..., description="iOS bundle identifier")
    app_id: str | None = Field(None, description="App Store Connect app ID")
    name: str | None = Field(None, description="App name on the App Store")
    supported_locales: list[str] | None = Field(None, description="Cached supported locales")


class RegisteredGooglePlayInfo(CamelModel):
    """Google Play identifiers of a registered app."""

    package_name: str = Field(..., description="Android package name")
    name: str | None = Field(None, description="App title on Google Play")
    supported_locales: list[str] | None = Field(None, description="Cached supported locales")


class RegisteredApp(CamelModel):
    """An app registered under a user-chosen slug."""

    slug: str = Field(..., min_length=1, description="Unique identifier")
    name: str = Field(..., description="Display name")
    app_store: RegisteredAppStoreInfo | None = Field(None, description="App Store info")
    google_play: RegisteredGooglePlayInfo | None = Field(None, description="Google Play info")

    def matches(self, identifier: str) -> bool:
        """Exact match on slug, bundle ID or package name."""
        return (
            self.slug == identifier
            or (self.app_store is not None and self.app_store.bundle_id == identifier)
            or (self.google_play is not None and self.google_play.package_name == identifier)
        )

    def matches_query(self, query: str) -> bool:
        """Case-insensitive partial match on names and identifiers."""
        needle = query.lower()
        candidates = [self.slug, self.name]
        if self.app_store is not None:
            candidates += [self.app_store.bundle_id, self.app_store.name]
        if self.google_play is not None:
            candidates += [self.google_play.package_name, self.google_play.name]
        return any(needle in value.lower() for value in candidates if value)


class RegisteredAppsFile(CamelModel):
    """Content of registered-apps.json."""

    apps: list[RegisteredApp] = Field(default_factory=list)


# =============================================================================
# ASO Data
# =============================================================================


class AppStoreLocaleData(CamelModel):
    """App Store metadata for one locale."""

    name: str = Field("", description="App name (max 30 chars)")
    subtitle: str | None = Field(None, description="Subtitle (max 30 chars)")
    description: str = Field("", description="Description")
    keywords: str | None = Field(None, description="Comma separated keywords")
    promotional_text: str | None = Field(None, description="Promotional text")
    support_url: str | None = Field(None, description="Support URL")
    marketing_url: str | None = Field(None, description="Marketing URL")
    privacy_policy_url: str | None = Field(None, description="Privacy policy URL")
    screenshots: dict[str, list[str]] = Field(
        default_factory=dict, description="Screenshot URLs by device type"
    )
    whats_new: str | None = Field(None, description="What's New text of the version")
    bundle_id: str | None = Field(None, description="iOS bundle identifier")
    locale: str | None = Field(None, description="Locale of this entry")


class GooglePlayScreenshots(CamelModel):
    """Google Play screenshot URLs by form factor."""

    phone: list[str] = Field(default_factory=list)
    tablet7: list[str] = Field(default_factory=list)
    tablet10: list[str] = Field(default_factory=list)
    tv: list[str] = Field(default_factory=list)
    wear: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.phone or self.tablet7 or self.tablet10 or self.tv or self.wear)


class GooglePlayLocaleData(CamelModel):
    """Google Play listing and details for one language."""

    title: str = Field("", description="App title (max 30 chars)")
    short_description: str = Field("", description="Short description (max 80 chars)")
    full_description: str = Field("", description="Full description (max 4000 chars)")
    screenshots: GooglePlayScreenshots = Field(default_factory=GooglePlayScreenshots)
    feature_graphic: str | None = Field(None, description="Feature graphic URL")
    promo_graphic: str | None = Field(None, description="Promo graphic URL")
    video: str | None = Field(None, description="YouTube promo video URL")
    category: str | None = Field(None, description="Store category")
    contact_email: str | None = Field(None, description="Contact email")
    contact_phone: str | None = Field(None, description="Contact phone")
    contact_website: str | None = Field(None, description="Contact website")
    package_name: str | None = Field(None, description="Android package name")
    default_language: str | None = Field(None, description="Language of this entry")


def _settle_default_locale(locales: dict[str, Any], default_locale: str | None) -> str:
    if not locales:
        raise ValueError("multilingual data requires at least one locale")
    if default_locale in locales:
        return default_locale  # type: ignore[return-value]
    if DEFAULT_LOCALE in locales:
        return DEFAULT_LOCALE
    return next(iter(locales))


class AppStoreMultilingual(CamelModel):
    """App Store metadata for every locale of an app."""

    locales: dict[str, AppStoreLocaleData]
    default_locale: str | None = None
    contact_email: str | None = None
    support_url: str | None = None
    marketing_url: str | None = None
    privacy_policy_url: str | None = None

    @model_validator(mode="after")
    def _check_default_locale(self) -> AppStoreMultilingual:
        self.default_locale = _settle_default_locale(self.locales, self.default_locale)
        return self


class GooglePlayMultilingual(CamelModel):
    """Google Play metadata for every language of an app."""

    locales: dict[str, GooglePlayLocaleData]
    default_locale: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    contact_website: str | None = None

    @model_validator(mode="after")
    def _check_default_locale(self) -> GooglePlayMultilingual:
        self.default_locale = _settle_default_locale(self.locales, self.default_locale)
        return self


class AsoData(CamelModel):
    """ASO data of one product, always in multilingual form."""

    google_play: GooglePlayMultilingual | None = None
    app_store: AppStoreMultilingual | None = None


def parse_app_store_section(raw: dict[str, Any]) -> AppStoreMultilingual:
    """Normalize a stored App Store section into multilingual form."""
    if "locales" in raw:
        return AppStoreMultilingual.model_validate(raw)
    single = AppStoreLocaleData.model_validate(raw)
    locale = single.locale or DEFAULT_LOCALE
    return AppStoreMultilingual(
        locales={locale: single},
        default_locale=locale,
        support_url=single.support_url,
        marketing_url=single.marketing_url,
        privacy_policy_url=single.privacy_policy_url,
    )


def parse_google_play_section(raw: dict[str, Any]) -> GooglePlayMultilingual:
    """Normalize a stored Google Play section into multilingual form."""
    if "locales" in raw:
        return GooglePlayMultilingual.model_validate(raw)
    single = GooglePlayLocaleData.model_validate(raw)
    locale = single.default_language or DEFAULT_LOCALE
    return GooglePlayMultilingual(
        locales={locale: single},
        default_locale=locale,
        contact_email=single.contact_email,
        contact_phone=single.contact_phone,
        contact_website=single.contact_website,
    )


# =============================================================================
# Versions and Release Notes
# =============================================================================


class AppStoreVersion(BaseModel):
    """An App Store version resource."""

    id: str = Field(..., description="Version resource ID")
    version_string: str = Field(..., description="Dotted version string")
    platform: str = Field("IOS", description="Platform")
    app_store_state: str | None = Field(None, description="Review/release state")
    created_date: str | None = Field(None, description="Creation timestamp")

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> AppStoreVersion:
        attributes = resource.get("attributes", {})
        return cls(
            id=resource["id"],
            version_string=attributes.get("versionString", ""),
            platform=attributes.get("platform") or "IOS",
            app_store_state=attributes.get("appStoreState"),
            created_date=attributes.get("createdDate"),
        )


class GooglePlayRelease(BaseModel):
    """A release on a Google Play track."""

    version_codes: list[int] = Field(default_factory=list, description="Version codes")
    status: str = Field("draft", description="Release status")
    version_name: str | None = Field(None, description="Release name")
    release_date: str | None = Field(None, description="Release date if known")


class AppStoreReleaseNote(CamelModel):
    """What's New text of one App Store version."""

    version_string: str
    platform: str = "IOS"
    release_notes: dict[str, str] = Field(default_factory=dict)
    release_date: str | None = None


class GooglePlayReleaseNote(CamelModel):
    """Release notes of one Google Play version code."""

    version_code: int
    version_name: str
    track: str
    status: str = "draft"
    release_notes: dict[str, str] = Field(default_factory=dict)
    release_date: str | None = None


# =============================================================================
# Store Lookups
# =============================================================================


class AppStoreAppSummary(BaseModel):
    """An app listed in App Store Connect."""

    id: str = Field(..., description="App Store Connect app ID")
    name: str = Field(..., description="App name")
    bundle_id: str = Field(..., description="iOS bundle identifier")
    sku: str | None = Field(None, description="SKU")
    primary_locale: str | None = Field(None, description="Primary locale")


class AppStoreAppInfo(BaseModel):
    """Result of looking up an app on the App Store."""

    found: bool = Field(..., description="Whether the app was found")
    app_id: str | None = None
    name: str | None = None
    supported_locales: list[str] = Field(default_factory=list)
    error: str | None = None


class GooglePlayAppAccess(BaseModel):
    """Result of checking access to a Google Play package."""

    accessible: bool = Field(..., description="Whether the package is accessible")
    package_name: str
    title: str | None = None
    default_language: str | None = None
    supported_locales: list[str] = Field(default_factory=list)
    error: str | None = None


# =============================================================================
# Operation Results
# =============================================================================


class LocaleFailure(BaseModel):
    """A locale that could not be updated."""

    locale: str
    error: str


class LocaleFailedFields(BaseModel):
    """Fields of a locale that the store refused to update."""

    locale: str
    fields: list[str]


class ReleaseNotesUpdateResult(BaseModel):
    """Per-locale outcome of a release notes update."""

    updated: list[str] = Field(default_factory=list)
    failed: list[LocaleFailure] = Field(default_factory=list)


class CreatedVersion(BaseModel):
    """A version created to recover from a locked one."""

    version_id: str
    version_string: str
    locales: list[str] = Field(default_factory=list)


class PushResult(BaseModel):
    """Outcome of pushing ASO data to one store."""

    store: str = Field(..., description="Store name")
    success: bool = Field(..., description="Whether the push succeeded")
    skipped: bool = Field(False, description="Whether the store was skipped")
    message: str | None = Field(None, description="Skip or status message")
    locales: list[str] = Field(default_factory=list, description="Locales pushed")
    failed_fields: list[LocaleFailedFields] = Field(default_factory=list)
    needs_new_version: bool = Field(False, description="A new version had to be created")
    version_info: CreatedVersion | None = None
    error: str | None = Field(None, description="Error details if failed")


class ToolResponse(BaseModel):
    """Text returned by a tool handler, with optional metadata."""

    text: str
    meta: dict[str, Any] | None = None
    is_error: bool = False
