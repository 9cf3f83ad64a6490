"""Tests for the Google Play Developer API client."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_http_error
from pabal_mcp.config import GooglePlayCredentials
from pabal_mcp.errors import InputError, NotFoundError, StoreApiError
from pabal_mcp.google_play import GooglePlayClient, latest_release, verify_google_play_auth
from pabal_mcp.models import GooglePlayLocaleData, GooglePlayMultilingual

PACKAGE = "com.example.app"


@pytest.fixture
def client(
    _mock_credentials: MagicMock,
    _mock_service: MagicMock,
    google_play_credentials: GooglePlayCredentials,
) -> GooglePlayClient:
    return GooglePlayClient(google_play_credentials, PACKAGE)


@pytest.fixture
def edits(_mock_service: MagicMock) -> MagicMock:
    mock_edits = _mock_service.edits.return_value
    mock_edits.insert.return_value.execute.return_value = {"id": "edit-123"}
    mock_edits.commit.return_value.execute.return_value = {}
    mock_edits.delete.return_value.execute.return_value = None
    return mock_edits


class TestHelpers:
    """Test module helpers."""

    def test_latest_release_by_version_code(self) -> None:
        releases = [
            {"versionCodes": ["10"], "name": "1.0"},
            {"versionCodes": ["12", "11"], "name": "1.1"},
            {"name": "empty"},
        ]

        assert latest_release(releases) == releases[1]
        assert latest_release([]) is None

    def test_verify_auth(self, google_play_credentials: GooglePlayCredentials) -> None:
        assert verify_google_play_auth(google_play_credentials) == {
            "client_email": "test@test-project.iam.gserviceaccount.com",
            "project_id": "test-project",
        }


class TestVerifyAppAccess:
    """Test verify_app_access method."""

    def test_accessible(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.details.return_value.get.return_value.execute.return_value = {
            "defaultLanguage": "en-US"
        }
        edits.listings.return_value.list.return_value.execute.return_value = {
            "listings": [
                {"language": "ko-KR", "title": "앱"},
                {"language": "en-US", "title": "App"},
            ]
        }

        access = client.verify_app_access()

        assert access.accessible is True
        assert access.title == "앱"
        assert access.default_language == "en-US"
        assert access.supported_locales == ["en-US", "ko-KR"]
        edits.delete.assert_called_once()

    def test_not_accessible(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.insert.return_value.execute.side_effect = make_http_error(404, "Package not found")

        access = client.verify_app_access()

        assert access.accessible is False
        assert "404" in (access.error or "")


class TestPullAllLanguages:
    """Test pull_all_languages method."""

    def test_pull(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.listings.return_value.list.return_value.execute.return_value = {
            "listings": [
                {
                    "language": "en-US",
                    "title": "App",
                    "shortDescription": "Short",
                    "fullDescription": "Full",
                }
            ]
        }
        edits.details.return_value.get.return_value.execute.return_value = {
            "defaultLanguage": "en-US",
            "contactEmail": "dev@example.com",
            "contactWebsite": "https://example.com",
        }

        def list_images(**kwargs: Any) -> MagicMock:
            request = MagicMock()
            if kwargs["imageType"] == "phoneScreenshots":
                request.execute.return_value = {
                    "images": [{"url": "https://img/1"}, {"url": "https://img/2"}]
                }
            elif kwargs["imageType"] == "featureGraphic":
                request.execute.return_value = {"images": [{"url": "https://img/feature"}]}
            elif kwargs["imageType"] == "tvScreenshots":
                request.execute.side_effect = make_http_error(404, "Not found")
            else:
                request.execute.return_value = {}
            return request

        edits.images.return_value.list.side_effect = list_images

        data = client.pull_all_languages()

        assert data.default_locale == "en-US"
        assert data.contact_email == "dev@example.com"
        en = data.locales["en-US"]
        assert en.title == "App"
        assert en.screenshots.phone == ["https://img/1", "https://img/2"]
        assert en.screenshots.tv == []
        assert en.feature_graphic == "https://img/feature"
        assert en.package_name == PACKAGE
        assert en.default_language == "en-US"

    def test_no_listings(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.listings.return_value.list.return_value.execute.return_value = {}

        with pytest.raises(NotFoundError):
            client.pull_all_languages()

        edits.delete.assert_called_once()


class TestPushListings:
    """Test push_listings and push_app_details methods."""

    def _data(self) -> GooglePlayMultilingual:
        return GooglePlayMultilingual(
            locales={
                "en-US": GooglePlayLocaleData(title="App", short_description="Short"),
                "ko-KR": GooglePlayLocaleData(title="앱", full_description="전체"),
                "ja-JP": GooglePlayLocaleData(),
            }
        )

    def test_single_edit_for_all_languages(self, client: GooglePlayClient, edits: MagicMock) -> None:
        written = client.push_listings(self._data())

        assert written == ["en-US", "ko-KR"]
        assert edits.insert.call_count == 1
        edits.commit.assert_called_once_with(packageName=PACKAGE, editId="edit-123")
        first_call = edits.listings.return_value.update.call_args_list[0]
        assert first_call.kwargs["body"] == {"title": "App", "shortDescription": "Short"}

    def test_failure_deletes_edit(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.listings.return_value.update.return_value.execute.side_effect = make_http_error(
            400, "Invalid title"
        )

        with pytest.raises(StoreApiError) as exc_info:
            client.push_listings(self._data())

        assert exc_info.value.status == 400
        edits.commit.assert_not_called()
        edits.delete.assert_called_once()

    def test_details_fetch_default_language(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.details.return_value.get.return_value.execute.return_value = {
            "defaultLanguage": "ko-KR"
        }

        client.push_app_details(contact_email="dev@example.com")

        body = edits.details.return_value.update.call_args.kwargs["body"]
        assert body == {"defaultLanguage": "ko-KR", "contactEmail": "dev@example.com"}
        edits.commit.assert_called_once()

    def test_details_noop_without_fields(self, client: GooglePlayClient, edits: MagicMock) -> None:
        client.push_app_details()

        edits.insert.assert_not_called()


class TestUploadScreenshots:
    """Test upload_screenshots method."""

    def test_requires_two_phone_screenshots(self, client: GooglePlayClient) -> None:
        with pytest.raises(InputError):
            client.upload_screenshots("en-US", [Path("phone-1.png")])

    def test_replaces_images(self, client: GooglePlayClient, edits: MagicMock, tmp_path: Path) -> None:
        phones = [tmp_path / "phone-1.png", tmp_path / "phone-2.png"]
        for path in phones:
            path.write_bytes(b"png")

        with patch("pabal_mcp.google_play.MediaFileUpload") as mock_upload:
            counts = client.upload_screenshots("en-US", phones)

        assert counts == {"phoneScreenshots": 2}
        edits.images.return_value.deleteall.assert_called_once_with(
            packageName=PACKAGE, editId="edit-123", language="en-US", imageType="phoneScreenshots"
        )
        assert edits.images.return_value.upload.call_count == 2
        mock_upload.assert_any_call(str(phones[0]), mimetype="image/png")
        edits.commit.assert_called_once()


class TestReleases:
    """Test release and release notes methods."""

    def test_latest_production_release(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.tracks.return_value.get.return_value.execute.return_value = {
            "track": "production",
            "releases": [
                {"versionCodes": ["40"], "status": "completed", "name": "1.3.0"},
                {"versionCodes": ["41"], "status": "draft", "name": "1.4.0"},
            ],
        }

        release = client.get_latest_production_release()

        assert release is not None
        assert release.version_codes == [41]
        assert release.version_name == "1.4.0"
        assert release.status == "draft"

    def test_create_release_requires_codes(self, client: GooglePlayClient) -> None:
        with pytest.raises(InputError):
            client.create_production_release([])

    def test_create_release(self, client: GooglePlayClient, edits: MagicMock) -> None:
        release = client.create_production_release([42], "1.5.0")

        body = edits.tracks.return_value.update.call_args.kwargs["body"]
        assert body == {
            "track": "production",
            "releases": [{"versionCodes": ["42"], "status": "draft", "name": "1.5.0"}],
        }
        assert release.version_codes == [42]
        edits.commit.assert_called_once()

    def test_update_release_notes(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.tracks.return_value.get.return_value.execute.return_value = {
            "releases": [{"versionCodes": ["41"], "status": "draft"}]
        }

        result = client.update_release_notes({"en-US": "Fixes", "ko-KR": "수정"})

        assert result.updated == ["en-US", "ko-KR"]
        body = edits.tracks.return_value.update.call_args.kwargs["body"]
        assert body["releases"][0]["releaseNotes"] == [
            {"language": "en-US", "text": "Fixes"},
            {"language": "ko-KR", "text": "수정"},
        ]

    def test_update_release_notes_without_release(
        self, client: GooglePlayClient, edits: MagicMock
    ) -> None:
        edits.tracks.return_value.get.return_value.execute.return_value = {"releases": []}

        with pytest.raises(NotFoundError):
            client.update_release_notes({"en-US": "Fixes"})

        edits.delete.assert_called_once()
        edits.commit.assert_not_called()

    def test_pull_release_notes(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.tracks.return_value.list.return_value.execute.return_value = {
            "tracks": [
                {
                    "track": "production",
                    "releases": [
                        {
                            "versionCodes": ["40", "41"],
                            "status": "completed",
                            "releaseNotes": [{"language": "en-US", "text": "Fixes"}],
                        }
                    ],
                },
                {"track": "beta", "releases": [{"versionCodes": ["50"], "name": "2.0"}]},
            ]
        }

        notes = client.pull_release_notes(track="production")

        assert [n.version_code for n in notes] == [41, 40]
        assert notes[0].version_name == "41"
        assert notes[0].release_notes == {"en-US": "Fixes"}
        assert notes[0].status == "completed"


class TestRetry:
    """Test edit creation retries."""

    def test_retries_rate_limit(self, client: GooglePlayClient, edits: MagicMock) -> None:
        edits.insert.return_value.execute.side_effect = [
            make_http_error(429, "Rate limited"),
            {"id": "edit-456"},
        ]
        edits.tracks.return_value.get.return_value.execute.return_value = {"releases": []}

        with patch("pabal_mcp.google_play.time.sleep") as mock_sleep:
            assert client.get_latest_production_release() is None

        mock_sleep.assert_called_once()
        assert edits.insert.return_value.execute.call_count == 2
