"""Tests for the App Store Connect client."""

from __future__ import annotations

import jwt
import pytest

from conftest import BUNDLE_ID, FakeSession, add_app
from pabal_mcp.app_store import (
    AppStoreClient,
    compare_versions,
    generate_token,
    increment_version,
    sort_versions,
    verify_app_store_auth,
)
from pabal_mcp.config import AppStoreCredentials
from pabal_mcp.errors import (
    AuthenticationError,
    ConfigError,
    StateConflictError,
    StoreApiError,
)
from pabal_mcp.models import AppStoreLocaleData


def info_loc(loc_id: str, locale: str, name: str, subtitle: str | None = None) -> dict:
    return {"id": loc_id, "attributes": {"locale": locale, "name": name, "subtitle": subtitle}}


def version_loc(loc_id: str, locale: str, **attributes: str) -> dict:
    return {"id": loc_id, "attributes": {"locale": locale, **attributes}}


@pytest.fixture
def client(app_store_credentials: AppStoreCredentials, fake_session: FakeSession) -> AppStoreClient:
    return AppStoreClient(app_store_credentials, BUNDLE_ID, session=fake_session)  # type: ignore[arg-type]


class TestVersionStrings:
    """Test version ordering and incrementing."""

    def test_missing_components_count_as_zero(self) -> None:
        assert compare_versions("1.2", "1.2.0") == 0
        assert compare_versions("1.2", "1.1.9") == 1
        assert compare_versions("2.0.0", "1.9.9") == 1
        assert compare_versions("1.0.9", "1.0.10") == -1

    def test_sort_descending(self) -> None:
        assert sort_versions(["1.1.9", "2.0.0", "1.2", "1.10"]) == ["2.0.0", "1.10", "1.2", "1.1.9"]

    def test_sort_with_key(self) -> None:
        items = [{"v": "1.0"}, {"v": "1.0.1"}]
        assert sort_versions(items, key=lambda item: item["v"])[0] == {"v": "1.0.1"}

    def test_increment_version(self) -> None:
        assert increment_version("1.2.3") == "1.2.4"
        assert increment_version("1.2") == "1.2.1"
        assert increment_version("1") == "1.0.1"

    def test_increment_is_not_idempotent(self) -> None:
        assert increment_version(increment_version("1.2.3")) == "1.2.5"


class TestToken:
    """Test API token signing."""

    def test_token_claims(self, app_store_credentials: AppStoreCredentials) -> None:
        token = generate_token(app_store_credentials)
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(token, options={"verify_signature": False})

        assert header["alg"] == "ES256"
        assert header["kid"] == "KEY123"
        assert payload["iss"] == "issuer-123"
        assert payload["aud"] == "appstoreconnect-v1"
        assert payload["exp"] - payload["iat"] == 1200

    def test_flattened_key_is_accepted(self, private_key_pem: str) -> None:
        flattened = private_key_pem.replace("\n", "\\n")
        credentials = AppStoreCredentials(issuer_id="i", key_id="k", private_key=flattened)

        assert generate_token(credentials)

    def test_rejects_non_pem_key(self) -> None:
        credentials = AppStoreCredentials(issuer_id="i", key_id="k", private_key="not a key")

        with pytest.raises(ConfigError):
            generate_token(credentials)

    def test_verify_auth(self, app_store_credentials: AppStoreCredentials) -> None:
        result = verify_app_store_auth(app_store_credentials)

        assert result["header"]["kid"] == "KEY123"
        assert result["payload"]["iss"] == "issuer-123"
        assert result["payload"]["exp"] - result["payload"]["iat"] == 300


class TestRequestErrors:
    """Test HTTP error translation."""

    def test_unauthorized(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        fake_session.add("GET", "/apps", {"errors": [{"status": "401"}]}, status=401)

        with pytest.raises(AuthenticationError) as exc_info:
            client.find_app()

        assert "issuer-123" in exc_info.value.message
        assert "KEY123" in exc_info.value.message

    def test_state_error(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        body = {"errors": [{"code": "STATE_ERROR", "detail": "Version is not editable"}]}
        fake_session.add("GET", "/apps", body, status=409)

        with pytest.raises(StateConflictError) as exc_info:
            client.find_app()

        assert exc_info.value.status == 409
        assert exc_info.value.is_state_error
        assert "Version is not editable" in exc_info.value.message

    def test_other_error_keeps_status_and_body(
        self, client: AppStoreClient, fake_session: FakeSession
    ) -> None:
        fake_session.add("GET", "/apps", {"errors": [{"detail": "boom"}]}, status=500)

        with pytest.raises(StoreApiError) as exc_info:
            client.find_app()

        assert not isinstance(exc_info.value, StateConflictError)
        assert exc_info.value.status == 500
        assert "boom" in exc_info.value.body

    def test_bearer_token_sent(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        fake_session.add("GET", "/apps", {"data": []})

        assert client.find_app() is None
        assert fake_session.calls[0]["headers"]["Authorization"].startswith("Bearer ")


class TestApps:
    """Test app listing and lookup."""

    def test_list_all_apps_follows_pagination(
        self, client: AppStoreClient, fake_session: FakeSession
    ) -> None:
        next_url = "https://api.appstoreconnect.apple.com/v1/apps-page-2"
        fake_session.add(
            "GET",
            "/apps",
            {
                "data": [{"id": "a1", "attributes": {"name": "One", "bundleId": "com.one"}}],
                "links": {"next": next_url},
            },
        )
        fake_session.add(
            "GET",
            "/apps-page-2",
            {"data": [{"id": "a2", "attributes": {"name": "Two", "bundleId": "com.two"}}]},
        )
        for app_id in ("a1", "a2"):
            fake_session.add("GET", f"/apps/{app_id}/appInfos", {"data": [{"id": f"info-{app_id}"}]})
        fake_session.add(
            "GET",
            "/appInfos/info-a1/appInfoLocalizations",
            {"data": [info_loc("l1", "ko", "하나"), info_loc("l2", "en-GB", "One UK")]},
        )
        fake_session.add("GET", "/appInfos/info-a2/appInfoLocalizations", {"data": []})

        apps = client.list_all_apps()

        assert [a.bundle_id for a in apps] == ["com.one", "com.two"]
        assert apps[0].name == "One UK"
        assert apps[1].name == "Two"

    def test_supported_locales_sorted(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        add_app(fake_session)
        fake_session.add(
            "GET",
            "/appInfos/info-1/appInfoLocalizations",
            {"data": [info_loc("l1", "ko", "앱"), info_loc("l2", "en-US", "App")]},
        )

        assert client.get_supported_locales() == ["en-US", "ko"]


class TestVersions:
    """Test version operations."""

    def test_latest_version_by_number(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        add_app(fake_session)

        latest = client.get_latest_version()

        assert latest is not None
        assert latest.version_string == "1.2.3"
        assert latest.app_store_state == "READY_FOR_SALE"

    def test_versions_follow_pagination(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        add_app(fake_session)
        fake_session.routes = [r for r in fake_session.routes if "appStoreVersions" not in r[1]]
        fake_session.add(
            "GET",
            "/apps/app-1/appStoreVersions",
            {
                "data": [{"id": "ver-a", "attributes": {"versionString": "1.0.0"}}],
                "links": {"next": "https://api.appstoreconnect.apple.com/v1/appStoreVersions-page-2"},
            },
        )
        fake_session.add(
            "GET",
            "/appStoreVersions-page-2",
            {"data": [{"id": "ver-b", "attributes": {"versionString": "2.0.0"}}]},
        )
        fake_session.add(
            "POST",
            "/appStoreVersions",
            {"data": {"id": "ver-c", "attributes": {"versionString": "2.0.1"}}},
            status=201,
        )

        latest = client.get_latest_version()
        created = client.create_version_with_auto_increment()

        assert latest is not None and latest.version_string == "2.0.0"
        assert created.version_string == "2.0.1"
        body = fake_session.calls_to("POST", "/appStoreVersions")[0]["json"]
        assert body["data"]["attributes"]["versionString"] == "2.0.1"

    def test_create_existing_version_returns_it(
        self, client: AppStoreClient, fake_session: FakeSession
    ) -> None:
        add_app(fake_session)

        version = client.create_version("1.2.3")

        assert version.id == "ver-1"
        assert fake_session.calls_to("POST", "/appStoreVersions") == []

    def test_auto_increment(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        add_app(fake_session)
        fake_session.add(
            "POST",
            "/appStoreVersions",
            {"data": {"id": "ver-2", "attributes": {"versionString": "1.2.4", "platform": "IOS"}}},
            status=201,
        )

        version = client.create_version_with_auto_increment()

        assert version.version_string == "1.2.4"
        body = fake_session.calls_to("POST", "/appStoreVersions")[0]["json"]
        assert body["data"]["attributes"] == {"platform": "IOS", "versionString": "1.2.4"}
        assert body["data"]["relationships"]["app"]["data"]["id"] == "app-1"

    def test_first_version(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        add_app(fake_session)
        fake_session.routes = [r for r in fake_session.routes if "appStoreVersions" not in r[1]]
        fake_session.add("GET", "/apps/app-1/appStoreVersions", {"data": []})
        fake_session.add(
            "POST",
            "/appStoreVersions",
            {"data": {"id": "ver-new", "attributes": {"versionString": "1.0.0"}}},
        )

        assert client.create_version_with_auto_increment().version_string == "1.0.0"


class TestPull:
    """Test pulling localized metadata."""

    def test_pull_all_locales(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        add_app(fake_session)
        fake_session.add(
            "GET",
            "/appInfos/info-1/appInfoLocalizations",
            {"data": [info_loc("ail-en", "en-US", "My App", "Best app"), info_loc("ail-ko", "ko", "내 앱")]},
        )
        fake_session.add(
            "GET",
            "/appStoreVersions/ver-1/appStoreVersionLocalizations",
            {
                "data": [
                    version_loc(
                        "vl-en",
                        "en-US",
                        description="Desc",
                        keywords="a,b",
                        whatsNew="Bug fixes",
                        supportUrl="https://example.com/support",
                    ),
                    version_loc("vl-ja", "ja", description="説明"),
                ]
            },
        )
        fake_session.add(
            "GET",
            "/appStoreVersionLocalizations/vl-en/appScreenshotSets",
            {
                "data": [
                    {"id": "set-1", "attributes": {"screenshotDisplayType": "APP_IPHONE_67"}},
                    {"id": "set-2", "attributes": {"screenshotDisplayType": "UNKNOWN_TYPE"}},
                ]
            },
        )
        fake_session.add(
            "GET",
            "/appScreenshotSets/set-1/appScreenshots",
            {"data": [{"id": "s1", "attributes": {"imageAsset": {"templateUrl": "https://img/{w}x{h}.{f}"}}}]},
        )
        fake_session.add("GET", "/appStoreVersionLocalizations/vl-ja/appScreenshotSets", {"data": []})

        data = client.pull_all_locales()

        assert sorted(data.locales) == ["en-US", "ja", "ko"]
        assert data.default_locale == "en-US"
        en = data.locales["en-US"]
        assert en.name == "My App"
        assert en.subtitle == "Best app"
        assert en.whats_new == "Bug fixes"
        assert en.screenshots == {"iphone65": ["https://img/{w}x{h}.{f}"]}
        assert data.locales["ja"].name == "My App"
        assert data.locales["ko"].description == ""
        assert data.support_url == "https://example.com/support"


class TestPush:
    """Test pushing localized metadata."""

    def _routes(self, session: FakeSession, app_info_status: int = 200) -> None:
        add_app(session)
        session.add(
            "GET",
            "/appInfos/info-1/appInfoLocalizations",
            {"data": [info_loc("ail-en", "en-US", "Old")]},
            params={"filter[locale]": "en-US"},
        )
        session.add(
            "PATCH",
            "/appInfoLocalizations/ail-en",
            {"errors": [{"code": "STATE_ERROR"}]} if app_info_status == 409 else {"data": {}},
            status=app_info_status,
        )
        session.add(
            "GET",
            "/appStoreVersions/ver-1/appStoreVersionLocalizations",
            {"data": []},
            params={"filter[locale]": "en-US"},
        )
        session.add("POST", "/appStoreVersionLocalizations", {"data": {"id": "vl-new"}}, status=201)

    def test_push_updates_and_creates(self, client: AppStoreClient, fake_session: FakeSession) -> None:
        self._routes(fake_session)

        failed = client.push_locale(
            AppStoreLocaleData(name="New", description="Desc", keywords="x", locale="en-US")
        )

        assert failed == []
        patch_body = fake_session.calls_to("PATCH", "/appInfoLocalizations/ail-en")[0]["json"]
        assert patch_body["data"]["attributes"] == {"name": "New"}
        post_body = fake_session.calls_to("POST", "/appStoreVersionLocalizations")[0]["json"]
        assert post_body["data"]["attributes"] == {
            "locale": "en-US",
            "description": "Desc",
            "keywords": "x",
        }
        assert post_body["data"]["relationships"]["appStoreVersion"]["data"]["id"] == "ver-1"

    def test_locked_name_reported_as_failed_field(
        self, client: AppStoreClient, fake_session: FakeSession
    ) -> None:
        self._routes(fake_session, app_info_status=409)

        failed = client.push_locale(
            AppStoreLocaleData(name="New", subtitle="Sub", description="Desc", locale="en-US")
        )

        assert failed == ["name", "subtitle"]
        assert len(fake_session.calls_to("POST", "/appStoreVersionLocalizations")) == 1


class TestReleaseNotes:
    """Test What's New operations."""

    def test_pull_release_notes_skips_empty(
        self, client: AppStoreClient, fake_session: FakeSession
    ) -> None:
        add_app(fake_session)
        fake_session.add(
            "GET",
            "/appStoreVersions/ver-1/appStoreVersionLocalizations",
            {"data": [version_loc("a", "en-US", whatsNew="Fixes"), version_loc("b", "ko")]},
        )
        fake_session.add("GET", "/appStoreVersions/ver-0/appStoreVersionLocalizations", {"data": []})

        notes = client.pull_release_notes()

        assert len(notes) == 1
        assert notes[0].version_string == "1.2.3"
        assert notes[0].release_notes == {"en-US": "Fixes"}

    def test_update_whats_new_patches_existing(
        self, client: AppStoreClient, fake_session: FakeSession
    ) -> None:
        fake_session.add(
            "GET",
            "/appStoreVersions/ver-9/appStoreVersionLocalizations",
            {"data": [version_loc("vl-ko", "ko")]},
            params={"filter[locale]": "ko"},
        )
        fake_session.add("PATCH", "/appStoreVersionLocalizations/vl-ko", {"data": {}})

        client.update_whats_new("ver-9", "ko", "버그 수정")

        body = fake_session.calls_to("PATCH", "/appStoreVersionLocalizations/vl-ko")[0]["json"]
        assert body["data"]["attributes"] == {"whatsNew": "버그 수정"}
