"""Registered apps store backed by registered-apps.json."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import structlog

from pabal_mcp.errors import ConflictError, InputError, NotFoundError, StorageError, wrap_error
from pabal_mcp.models import RegisteredApp, RegisteredAppsFile, Store

logger = structlog.get_logger(__name__)


def generate_slug(identifier: str) -> str:
    """Slug from the last dotted segment of a bundle ID or package name."""
    return identifier.rsplit(".", 1)[-1].lower()


def write_json_atomic(path: Path, data: object) -> None:
    """Write JSON through a temp file and rename it over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class RegisteredAppsStore:
    """Read-modify-write access to the registered apps file.

    Each operation loads the file, applies one change and writes it back in
    full. Writes are atomic renames, so a reader never sees a torn file, but
    concurrent writers are not serialized: the last write wins.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._logger = logger.bind(component="RegisteredAppsStore")

    def load(self) -> RegisteredAppsFile:
        if not self.path.exists():
            return RegisteredAppsFile()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return RegisteredAppsFile.model_validate(raw)
        except Exception as e:
            raise wrap_error(
                e, message="Failed to read registered apps", path=str(self.path)
            ) from e

    def save(self, data: RegisteredAppsFile) -> None:
        try:
            write_json_atomic(self.path, data.to_json_dict())
        except OSError as e:
            raise StorageError(
                f"Failed to save registered apps: {e}", details={"path": str(self.path)}
            ) from e

    def list_apps(self) -> list[RegisteredApp]:
        return self.load().apps

    def find(self, identifier: str) -> RegisteredApp | None:
        """First app whose slug, bundle ID or package name equals identifier."""
        for app in self.load().apps:
            if app.matches(identifier):
                return app
        return None

    def search(self, query: str | None = None, store: Store = Store.ALL) -> list[RegisteredApp]:
        """Exact match first, then partial matches, deduplicated by slug."""
        apps = self.load().apps
        if query:
            ordered = [app for app in apps if app.matches(query)]
            ordered += [app for app in apps if app.matches_query(query)]
            seen: set[str] = set()
            apps = []
            for app in ordered:
                if app.slug not in seen:
                    seen.add(app.slug)
                    apps.append(app)

        if store == Store.APP_STORE:
            apps = [app for app in apps if app.app_store is not None]
        elif store == Store.GOOGLE_PLAY:
            apps = [app for app in apps if app.google_play is not None]
        return apps

    def register(self, app: RegisteredApp) -> RegisteredApp:
        """Add an app.

        Raises:
            ConflictError: If the slug is already registered.
        """
        data = self.load()
        if any(existing.slug == app.slug for existing in data.apps):
            raise ConflictError(
                f'App with slug "{app.slug}" already exists', details={"slug": app.slug}
            )
        data.apps.append(app)
        self.save(data)
        self._logger.info("Registered app", slug=app.slug)
        return app

    def update_supported_locales(
        self, identifier: str, store: Store, locales: list[str]
    ) -> RegisteredApp:
        """Merge locales into an app's cached list as a sorted union.

        Raises:
            InputError: If store is not a single store.
            NotFoundError: If the app or its store info is not registered.
        """
        if store not in (Store.APP_STORE, Store.GOOGLE_PLAY):
            raise InputError(f"Expected a single store, got {store.value}")

        data = self.load()
        app = next((a for a in data.apps if a.matches(identifier)), None)
        if app is None:
            raise NotFoundError(f'App "{identifier}" is not registered')

        info = app.app_store if store == Store.APP_STORE else app.google_play
        if info is None:
            raise NotFoundError(
                f'App "{app.slug}" has no {store.value} info', details={"slug": app.slug}
            )

        info.supported_locales = sorted(set(info.supported_locales or []) | set(locales))
        self.save(data)
        self._logger.debug(
            "Updated supported locales",
            slug=app.slug,
            store=store.value,
            count=len(info.supported_locales),
        )
        return app
