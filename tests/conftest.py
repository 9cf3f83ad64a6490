"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock, patch
from urllib.parse import urlparse

if TYPE_CHECKING:
    from collections.abc import Generator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from googleapiclient.errors import HttpError

from pabal_mcp.config import (
    AppConfig,
    AppStoreCredentials,
    GooglePlayCredentials,
    registered_apps_path,
)
from pabal_mcp.registry import RegisteredAppsStore


def make_http_error(status: int, reason: str = "error") -> HttpError:
    """Build a googleapiclient HttpError with the given status."""
    resp = MagicMock()
    resp.status = status
    resp.reason = reason
    return HttpError(resp=resp, content=reason.encode())


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body
        if body is None:
            self.text = ""
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)
        self.content = self.text.encode()
        self.reason = "Error" if status_code >= 400 else "OK"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Routes App Store Connect requests to canned responses.

    A route matches on method, URL path suffix and (optionally) query params;
    the route with the most matching params wins.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, dict[str, Any], FakeResponse]] = []
        self.calls: list[dict[str, Any]] = []

    def add(
        self,
        method: str,
        path: str,
        body: Any = None,
        status: int = 200,
        params: dict[str, Any] | None = None,
    ) -> None:
        self.routes.append((method, path, params or {}, FakeResponse(status, body)))

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,  # noqa: A002
        timeout: float | None = None,
    ) -> FakeResponse:
        self.calls.append(
            {"method": method, "url": url, "params": params or {}, "json": json, "headers": headers}
        )
        path = urlparse(url).path
        best: tuple[int, FakeResponse] | None = None
        for route_method, route_path, route_params, response in self.routes:
            if route_method != method or not path.endswith(route_path):
                continue
            if any((params or {}).get(k) != v for k, v in route_params.items()):
                continue
            if best is None or len(route_params) > best[0]:
                best = (len(route_params), response)
        if best is None:
            raise AssertionError(f"Unexpected request: {method} {url} {params}")
        return best[1]

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [
            c for c in self.calls if c["method"] == method and urlparse(c["url"]).path.endswith(path)
        ]


BUNDLE_ID = "com.example.app"


def add_app(session: FakeSession, bundle_id: str = BUNDLE_ID) -> None:
    """Register the routes of an app with one released version."""
    session.add(
        "GET",
        "/apps",
        {
            "data": [
                {
                    "id": "app-1",
                    "attributes": {
                        "name": "My App",
                        "bundleId": bundle_id,
                        "sku": "SKU1",
                        "primaryLocale": "en-US",
                    },
                }
            ]
        },
        params={"filter[bundleId]": bundle_id},
    )
    session.add("GET", "/apps/app-1/appInfos", {"data": [{"id": "info-1"}]})
    session.add(
        "GET",
        "/apps/app-1/appStoreVersions",
        {
            "data": [
                {"id": "ver-0", "attributes": {"versionString": "1.2", "platform": "IOS"}},
                {
                    "id": "ver-1",
                    "attributes": {
                        "versionString": "1.2.3",
                        "platform": "IOS",
                        "appStoreState": "READY_FOR_SALE",
                    },
                },
            ]
        },
    )


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    """A throwaway ES256 key in PKCS8 PEM form."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def app_store_credentials(private_key_pem: str) -> AppStoreCredentials:
    return AppStoreCredentials(issuer_id="issuer-123", key_id="KEY123", private_key=private_key_pem)


@pytest.fixture
def google_play_credentials() -> GooglePlayCredentials:
    return GooglePlayCredentials(
        service_account_info={
            "type": "service_account",
            "project_id": "test-project",
            "client_email": "test@test-project.iam.gserviceaccount.com",
        }
    )


@pytest.fixture
def config(
    tmp_path: Path,
    app_store_credentials: AppStoreCredentials,
    google_play_credentials: GooglePlayCredentials,
) -> AppConfig:
    return AppConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        app_store=app_store_credentials,
        google_play=google_play_credentials,
    )


@pytest.fixture
def registry(config: AppConfig) -> RegisteredAppsStore:
    return RegisteredAppsStore(registered_apps_path(config.config_dir))


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def _mock_credentials() -> Generator[MagicMock, None, None]:
    """Mock Google credentials."""
    with patch(
        "pabal_mcp.google_play.service_account.Credentials.from_service_account_info"
    ) as mock:
        mock.return_value = MagicMock()
        yield mock


@pytest.fixture
def _mock_service() -> Generator[MagicMock, None, None]:
    """Mock the Google API service."""
    with patch("pabal_mcp.google_play.build") as mock_build:
        mock_service = MagicMock()
        mock_build.return_value = mock_service
        yield mock_service
