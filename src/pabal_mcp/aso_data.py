"""Local ASO data cache: paths, persistence and screenshot assets."""

from __future__ import annotations

import json
import re
import shutil
from pathlib import Path
from typing import Any

import requests
import structlog

from pabal_mcp.errors import PabalError, StorageError, wrap_error
from pabal_mcp.models import (
    AppStoreMultilingual,
    AsoData,
    GooglePlayMultilingual,
    parse_app_store_section,
    parse_google_play_section,
)
from pabal_mcp.registry import write_json_atomic

logger = structlog.get_logger(__name__)

ASO_DIRNAME = ".aso"
PULL_DATA = "pullData"
PUSH_DATA = "pushData"
ASO_DATA_FILENAME = "aso-data.json"
RELEASE_NOTES_FILENAME = "release-notes.json"
FEATURE_GRAPHIC_FILENAME = "feature-graphic.png"

GOOGLE_PLAY_FOLDER = "google-play"
APP_STORE_FOLDER = "app-store"

APP_STORE_IMAGE_WIDTH = 2048
APP_STORE_IMAGE_HEIGHT = 2732
APP_STORE_IMAGE_FORMAT = "png"

DOWNLOAD_TIMEOUT = 60

_REMOTE_URL = re.compile(r"^([a-z][a-z0-9+.-]*:)?//", re.IGNORECASE)


# =============================================================================
# Paths
# =============================================================================


def pull_data_dir(data_dir: Path) -> Path:
    return data_dir / ASO_DIRNAME / PULL_DATA


def push_data_dir(data_dir: Path) -> Path:
    return data_dir / ASO_DIRNAME / PUSH_DATA


def store_dir(base_dir: Path, slug: str, store_folder: str) -> Path:
    """<base>/products/<slug>/store/<store_folder>."""
    return base_dir / "products" / slug / "store" / store_folder


def aso_data_path(base_dir: Path, slug: str, store_folder: str) -> Path:
    return store_dir(base_dir, slug, store_folder) / ASO_DATA_FILENAME


def screenshots_dir(base_dir: Path, slug: str, store_folder: str, locale: str) -> Path:
    return store_dir(base_dir, slug, store_folder) / "screenshots" / locale


# =============================================================================
# Persistence
# =============================================================================


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        raise wrap_error(e, message=f"Failed to read {path}", path=str(path)) from e


def save_aso_data(slug: str, data: AsoData, base_dir: Path) -> list[Path]:
    """Write each store section of data to its aso-data.json.

    Returns:
        Paths written.
    """
    written: list[Path] = []
    sections: list[tuple[str, str, GooglePlayMultilingual | AppStoreMultilingual | None]] = [
        (GOOGLE_PLAY_FOLDER, "googlePlay", data.google_play),
        (APP_STORE_FOLDER, "appStore", data.app_store),
    ]
    for folder, key, section in sections:
        if section is None:
            continue
        path = aso_data_path(base_dir, slug, folder)
        try:
            write_json_atomic(path, {key: section.to_json_dict()})
        except OSError as e:
            raise StorageError(
                f"Failed to save ASO data: {e}", details={"path": str(path), "slug": slug}
            ) from e
        written.append(path)
        logger.debug("Saved ASO data", slug=slug, store=key, path=str(path))
    return written


def load_aso_data(slug: str, base_dir: Path) -> AsoData:
    """Read both store files of a product, normalized to multilingual form."""
    data = AsoData()

    gp_path = aso_data_path(base_dir, slug, GOOGLE_PLAY_FOLDER)
    if gp_path.exists():
        raw = _read_json(gp_path)
        section = raw.get("googlePlay") if isinstance(raw, dict) else None
        if section:
            try:
                data.google_play = parse_google_play_section(section)
            except Exception as e:
                raise wrap_error(e, message=f"Invalid Google Play data in {gp_path}") from e

    as_path = aso_data_path(base_dir, slug, APP_STORE_FOLDER)
    if as_path.exists():
        raw = _read_json(as_path)
        section = raw.get("appStore") if isinstance(raw, dict) else None
        if section:
            try:
                data.app_store = parse_app_store_section(section)
            except Exception as e:
                raise wrap_error(e, message=f"Invalid App Store data in {as_path}") from e

    return data


def save_release_notes(
    slug: str, store_folder: str, notes: list[Any], base_dir: Path
) -> Path:
    """Write release notes of one store to release-notes.json."""
    path = store_dir(base_dir, slug, store_folder) / RELEASE_NOTES_FILENAME
    payload = [note.to_json_dict() if hasattr(note, "to_json_dict") else note for note in notes]
    try:
        write_json_atomic(path, payload)
    except OSError as e:
        raise StorageError(
            f"Failed to save release notes: {e}", details={"path": str(path), "slug": slug}
        ) from e
    return path


def product_page_url(site_url: str, slug: str) -> str:
    return f"{site_url.rstrip('/')}/{slug}"


def prepare_aso_data_for_push(slug: str, data: AsoData, site_url: str | None = None) -> AsoData:
    """Copy of data without image fields, with store URLs set to the product page.

    Args:
        slug: Product slug.
        data: Loaded ASO data.
        site_url: Base URL of product pages. URLs are left untouched when None.

    Returns:
        Data ready to push.
    """
    prepared = data.model_copy(deep=True)
    detail_url = product_page_url(site_url, slug) if site_url else None

    if prepared.google_play is not None:
        if detail_url:
            prepared.google_play.contact_website = detail_url
        for locale_data in prepared.google_play.locales.values():
            locale_data.screenshots.phone = []
            locale_data.screenshots.tablet7 = []
            locale_data.screenshots.tablet10 = []
            locale_data.screenshots.tv = []
            locale_data.screenshots.wear = []
            locale_data.feature_graphic = None
            locale_data.promo_graphic = None
            if detail_url:
                locale_data.contact_website = detail_url

    if prepared.app_store is not None:
        if detail_url:
            prepared.app_store.marketing_url = detail_url
        for locale_data in prepared.app_store.locales.values():
            locale_data.screenshots = {}
            if detail_url:
                locale_data.marketing_url = detail_url

    return prepared


# =============================================================================
# Assets
# =============================================================================


def is_local_asset_path(path: str) -> bool:
    """True unless path starts with a scheme or is protocol relative."""
    if not path:
        return False
    return _REMOTE_URL.match(path.strip()) is None


def resolve_app_store_image_url(template_url: str) -> str:
    """Fill {w}, {h} and {f} placeholders of an App Store image template."""
    if "{w}" not in template_url and "{h}" not in template_url:
        return template_url
    return (
        template_url.replace("{w}", str(APP_STORE_IMAGE_WIDTH))
        .replace("{h}", str(APP_STORE_IMAGE_HEIGHT))
        .replace("{f}", APP_STORE_IMAGE_FORMAT)
    )


def download_image(
    url: str, output_path: Path, session: requests.Session | None = None
) -> Path:
    """Fetch url into output_path, creating parent directories."""
    http = session or requests.Session()
    try:
        response = http.get(url, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(response.content)
    except Exception as e:
        raise wrap_error(e, message=f"Failed to download {url}", path=str(output_path)) from e
    return output_path


def resolve_local_asset(asset_path: str, data_dir: Path) -> Path:
    """Map a local asset reference to a file under <data_dir>/public."""
    relative = asset_path
    for prefix in ("./", "public/", "/"):
        if relative.startswith(prefix):
            relative = relative[len(prefix) :]
    return data_dir / "public" / relative


def copy_local_asset(asset_path: str, output_path: Path, data_dir: Path) -> Path:
    """Copy a local asset into the ASO directory.

    Raises:
        StorageError: If the source file does not exist.
    """
    source = resolve_local_asset(asset_path, data_dir)
    if not source.is_file():
        raise StorageError(
            f"Local asset not found: {source}",
            code="FILE_NOT_FOUND",
            details={"path": str(source), "asset": asset_path},
        )
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, output_path)
    except OSError as e:
        raise wrap_error(e, message="Failed to copy asset", path=str(output_path)) from e
    return output_path


def fetch_asset(
    reference: str,
    output_path: Path,
    data_dir: Path,
    session: requests.Session | None = None,
) -> Path:
    """Copy a local asset or download a remote one to output_path."""
    if is_local_asset_path(reference):
        return copy_local_asset(reference, output_path, data_dir)
    return download_image(resolve_app_store_image_url(reference), output_path, session)


def download_screenshots(
    slug: str,
    data: AsoData,
    base_dir: Path,
    data_dir: Path,
    session: requests.Session | None = None,
) -> list[Path]:
    """Store every referenced screenshot under screenshots/<locale>/.

    Locales and device types without screenshots are skipped. A failed
    download is logged and does not stop the others.

    Returns:
        Paths written.
    """
    jobs: list[tuple[str, Path]] = []

    if data.google_play is not None:
        for locale, gp in data.google_play.locales.items():
            target = screenshots_dir(base_dir, slug, GOOGLE_PLAY_FOLDER, locale)
            for kind in ("phone", "tablet7", "tablet10", "tv", "wear"):
                for index, url in enumerate(getattr(gp.screenshots, kind), start=1):
                    jobs.append((url, target / f"{kind}-{index}.png"))
            if gp.feature_graphic:
                jobs.append((gp.feature_graphic, target / FEATURE_GRAPHIC_FILENAME))

    if data.app_store is not None:
        for locale, app_store in data.app_store.locales.items():
            target = screenshots_dir(base_dir, slug, APP_STORE_FOLDER, locale)
            for device_type, urls in app_store.screenshots.items():
                for index, url in enumerate(urls, start=1):
                    jobs.append((url, target / f"{device_type}-{index}.png"))

    written: list[Path] = []
    for reference, output_path in jobs:
        try:
            written.append(fetch_asset(reference, output_path, data_dir, session))
        except PabalError as e:
            logger.warning(
                "Screenshot not saved", slug=slug, source=reference, path=str(output_path), error=str(e)
            )
    return written


def _numbered_files(directory: Path, prefix: str) -> list[Path]:
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)\.png$")
    numbered = []
    for path in directory.glob(f"{prefix}-*.png"):
        match = pattern.match(path.name)
        if match:
            numbered.append((int(match.group(1)), path))
    return [path for _, path in sorted(numbered)]


def local_google_play_images(base_dir: Path, slug: str, locale: str) -> dict[str, Any]:
    """Screenshots staged for upload in screenshots/<locale>/.

    Returns:
        Dict with "phone" and "tablet" path lists and "feature_graphic".
    """
    directory = screenshots_dir(base_dir, slug, GOOGLE_PLAY_FOLDER, locale)
    feature_graphic = directory / FEATURE_GRAPHIC_FILENAME
    return {
        "phone": _numbered_files(directory, "phone"),
        "tablet": _numbered_files(directory, "tablet10") or _numbered_files(directory, "tablet"),
        "feature_graphic": feature_graphic if feature_graphic.is_file() else None,
    }
