"""Tool handlers: turn tool arguments into service calls and text results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog

from pabal_mcp.aso_data import (
    APP_STORE_FOLDER,
    GOOGLE_PLAY_FOLDER,
    aso_data_path,
    download_screenshots,
    load_aso_data,
    prepare_aso_data_for_push,
    pull_data_dir,
    push_data_dir,
    save_aso_data,
    save_release_notes,
)
from pabal_mcp.config import AppConfig, get_config_dir, load_config, registered_apps_path
from pabal_mcp.errors import InputError, PabalError
from pabal_mcp.formatters import (
    format_app,
    format_push_result,
    format_release_notes_update,
    format_translation_request,
    store_label,
)
from pabal_mcp.models import (
    AsoData,
    PushResult,
    RegisteredApp,
    RegisteredAppStoreInfo,
    RegisteredGooglePlayInfo,
    Store,
    ToolResponse,
)
from pabal_mcp.registry import RegisteredAppsStore, generate_slug
from pabal_mcp.release_notes import (
    build_translation_requests,
    collect_supported_locales,
    notes_for_store,
    translation_source,
)
from pabal_mcp.services import AppStoreService, GooglePlayService, ResolvedApp, resolve_app

logger = structlog.get_logger(__name__)


class ToolContext:
    """Per-call access to configuration, registry and store services.

    Everything is created lazily so tools that only touch the registry work
    without store credentials.
    """

    def __init__(
        self,
        config_dir: Path | None = None,
        *,
        config: AppConfig | None = None,
        registry: RegisteredAppsStore | None = None,
        app_store: AppStoreService | None = None,
        google_play: GooglePlayService | None = None,
    ) -> None:
        self.config_dir = config_dir or (config.config_dir if config else get_config_dir())
        self._config = config
        self._registry = registry
        self._app_store = app_store
        self._google_play = google_play

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = load_config(self.config_dir)
        return self._config

    @property
    def registry(self) -> RegisteredAppsStore:
        if self._registry is None:
            self._registry = RegisteredAppsStore(registered_apps_path(self.config_dir))
        return self._registry

    @property
    def app_store(self) -> AppStoreService:
        if self._app_store is None:
            self._app_store = AppStoreService(self.config, self.registry)
        return self._app_store

    @property
    def google_play(self) -> GooglePlayService:
        if self._google_play is None:
            self._google_play = GooglePlayService(self.config, self.registry)
        return self._google_play


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _resolve(
    ctx: ToolContext, app: str | None, bundle_id: str | None, package_name: str | None
) -> ResolvedApp:
    return resolve_app(ctx.registry, app, bundle_id, package_name)


# =============================================================================
# Server and Auth
# =============================================================================


def handle_ping(_ctx: ToolContext) -> ToolResponse:
    return ToolResponse(text="pong")


def handle_auth_check(ctx: ToolContext, store: Store = Store.BOTH) -> ToolResponse:
    """Verify configured credentials without changing anything."""
    lines = ["🔐 Authentication check"]
    meta: dict[str, Any] = {}
    failed = False

    if store.includes_app_store:
        if not ctx.app_store.configured:
            lines.append("⏭️  App Store: not configured")
        else:
            try:
                result = ctx.app_store.verify_auth()
                payload, header = result["payload"], result["header"]
                lines.append(
                    f"✅ App Store: token signed (Issuer ID: {payload['iss']}, Key ID: {header['kid']})"
                )
                meta["appStore"] = {"issuerId": payload["iss"], "keyId": header["kid"]}
            except PabalError as e:
                failed = True
                lines.append(f"❌ App Store: {e.message}")

    if store.includes_google_play:
        if not ctx.google_play.configured:
            lines.append("⏭️  Google Play: not configured")
        else:
            try:
                identity = ctx.google_play.verify_auth()
                lines.append(
                    f"✅ Google Play: service account {identity['client_email']} "
                    f"(project: {identity['project_id']})"
                )
                meta["googlePlay"] = identity
            except PabalError as e:
                failed = True
                lines.append(f"❌ Google Play: {e.message}")

    return ToolResponse(text="\n".join(lines), meta=meta or None, is_error=failed)


# =============================================================================
# Apps
# =============================================================================


def handle_apps_search(
    ctx: ToolContext, query: str | None = None, store: Store = Store.ALL
) -> ToolResponse:
    """List registered apps, or those matching query."""
    apps = ctx.registry.search(query, store)
    meta = {"apps": [app.to_json_dict() for app in apps], "count": len(apps)}
    if not apps:
        text = f'❌ No apps found matching "{query}".' if query else "No apps registered."
        return ToolResponse(text=text, meta=meta)

    title = f'📱 Apps matching "{query}"' if query else "📱 Registered apps"
    lines = [f"{title} ({len(apps)}):", *(format_app(app) for app in apps)]
    return ToolResponse(text="\n".join(lines), meta=meta)


def _lookup_app_store(ctx: ToolContext, bundle_id: str) -> tuple[RegisteredAppStoreInfo | None, str | None]:
    if not ctx.app_store.configured:
        return None, "App Store not configured"
    info = ctx.app_store.fetch_app_info(bundle_id)
    if not info.found:
        return None, info.error
    return (
        RegisteredAppStoreInfo(
            bundle_id=bundle_id,
            app_id=info.app_id,
            name=info.name,
            supported_locales=info.supported_locales or None,
        ),
        None,
    )


def _lookup_google_play(
    ctx: ToolContext, package_name: str
) -> tuple[RegisteredGooglePlayInfo | None, str | None]:
    if not ctx.google_play.configured:
        return None, "Google Play not configured"
    access = ctx.google_play.verify_app_access(package_name)
    if not access.accessible:
        return None, access.error
    return (
        RegisteredGooglePlayInfo(
            package_name=package_name,
            name=access.title,
            supported_locales=access.supported_locales or None,
        ),
        None,
    )


def _refresh_locales(ctx: ToolContext, app: RegisteredApp) -> RegisteredApp:
    if app.app_store is not None and ctx.app_store.configured:
        info, _ = _lookup_app_store(ctx, app.app_store.bundle_id)
        if info is not None and info.supported_locales:
            app = ctx.registry.update_supported_locales(
                app.slug, Store.APP_STORE, info.supported_locales
            )
    if app.google_play is not None and ctx.google_play.configured:
        info_gp, _ = _lookup_google_play(ctx, app.google_play.package_name)
        if info_gp is not None and info_gp.supported_locales:
            app = ctx.registry.update_supported_locales(
                app.slug, Store.GOOGLE_PLAY, info_gp.supported_locales
            )
    return app


def handle_apps_add(
    ctx: ToolContext,
    identifier: str,
    slug: str | None = None,
    store: Store = Store.BOTH,
) -> ToolResponse:
    """Register an app found on at least one store."""
    identifier = (identifier or "").strip()
    if not identifier:
        raise InputError("identifier (bundle ID or package name) is required")

    existing = ctx.registry.find(identifier)
    if existing is not None:
        app = _refresh_locales(ctx, existing)
        return ToolResponse(
            text=f"✅ App already registered, locales refreshed\n{format_app(app)}",
            meta={"app": app.to_json_dict()},
        )

    slug = slug or generate_slug(identifier)
    if ctx.registry.find(slug) is not None:
        return ToolResponse(
            text=f'❌ Slug "{slug}" is already registered. Pass a different slug.',
            is_error=True,
        )

    app_store_info = google_play_info = None
    problems: list[str] = []
    if store.includes_app_store:
        app_store_info, problem = _lookup_app_store(ctx, identifier)
        if problem:
            problems.append(f"   🍎 App Store: {problem}")
    if store.includes_google_play:
        google_play_info, problem = _lookup_google_play(ctx, identifier)
        if problem:
            problems.append(f"   🤖 Google Play: {problem}")

    if app_store_info is None and google_play_info is None:
        return ToolResponse(
            text="\n".join([f"❌ App not found on any store: {identifier}", *problems]),
            is_error=True,
        )

    name = (
        (app_store_info.name if app_store_info else None)
        or (google_play_info.name if google_play_info else None)
        or slug
    )
    app = ctx.registry.register(
        RegisteredApp(slug=slug, name=name, app_store=app_store_info, google_play=google_play_info)
    )
    return ToolResponse(
        text=f"✅ App registered\n{format_app(app)}",
        meta={"app": app.to_json_dict()},
    )


def handle_apps_init(
    ctx: ToolContext, store: Store = Store.APP_STORE, package_name: str | None = None
) -> ToolResponse:
    """Register every released App Store app, or one Google Play package."""
    if store == Store.GOOGLE_PLAY:
        if not package_name:
            raise InputError("package_name is required to register a Google Play app")
        return handle_apps_add(ctx, package_name, store=Store.GOOGLE_PLAY)
    if store != Store.APP_STORE:
        raise InputError("apps-init supports store appStore or googlePlay")

    registered: list[RegisteredApp] = []
    skipped: list[str] = []
    for summary in ctx.app_store.list_released_apps():
        if ctx.registry.find(summary.bundle_id) is not None:
            skipped.append(f"   • {summary.bundle_id} (already registered)")
            continue
        slug = generate_slug(summary.bundle_id)
        if ctx.registry.find(slug) is not None:
            skipped.append(f'   • {summary.bundle_id} (slug "{slug}" taken)')
            continue
        info, _ = _lookup_app_store(ctx, summary.bundle_id)
        registered.append(
            ctx.registry.register(
                RegisteredApp(
                    slug=slug,
                    name=summary.name or slug,
                    app_store=info
                    or RegisteredAppStoreInfo(
                        bundle_id=summary.bundle_id, app_id=summary.id, name=summary.name
                    ),
                )
            )
        )

    lines = [f"✅ Registered {len(registered)} App Store apps"]
    lines += [format_app(app) for app in registered]
    if skipped:
        lines += ["⏭️  Skipped:", *skipped]
    return ToolResponse(
        text="\n".join(lines), meta={"apps": [app.to_json_dict() for app in registered]}
    )


# =============================================================================
# ASO
# =============================================================================


def handle_aso_pull(
    ctx: ToolContext,
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    dry_run: bool = False,
    download_images: bool = True,
) -> ToolResponse:
    """Pull every locale from the stores into pullData."""
    resolved = _resolve(ctx, app, bundle_id, package_name)
    data = AsoData()
    status: dict[str, str] = {}

    if store.includes_google_play and resolved.package_name:
        if not ctx.google_play.configured:
            status[Store.GOOGLE_PLAY.value] = "✗ (not configured)"
        else:
            try:
                data.google_play = ctx.google_play.pull(resolved.package_name)
                status[Store.GOOGLE_PLAY.value] = f"✓ ({len(data.google_play.locales)} locales)"
            except PabalError as e:
                status[Store.GOOGLE_PLAY.value] = f"✗ ({e.message})"

    if store.includes_app_store and resolved.bundle_id:
        if not ctx.app_store.configured:
            status[Store.APP_STORE.value] = "✗ (not configured)"
        else:
            try:
                data.app_store = ctx.app_store.pull(resolved.bundle_id)
                status[Store.APP_STORE.value] = f"✓ ({len(data.app_store.locales)} locales)"
            except PabalError as e:
                status[Store.APP_STORE.value] = f"✗ ({e.message})"

    status_lines = [f"   {store_label(name)}: {value}" for name, value in status.items()]
    if data.google_play is None and data.app_store is None:
        return ToolResponse(
            text="\n".join([f"❌ No ASO data pulled for {resolved.slug}", *status_lines]),
            is_error=True,
        )

    if dry_run:
        return ToolResponse(
            text=f"🔍 Dry run: data not saved\n{_dump(data.to_json_dict())}",
            meta={"slug": resolved.slug},
        )

    base_dir = pull_data_dir(ctx.config.data_dir)
    paths = save_aso_data(resolved.slug, data, base_dir)
    lines = ["✅ ASO data pulled", *status_lines]
    lines += [f"   💾 {path}" for path in paths]
    if download_images:
        images = download_screenshots(resolved.slug, data, base_dir, ctx.config.data_dir)
        lines.append(f"   🖼️  {len(images)} images saved")
    return ToolResponse(
        text="\n".join(lines),
        meta={"slug": resolved.slug, "paths": [str(p) for p in paths]},
    )


def _skipped(store: Store, reason: str) -> PushResult:
    return PushResult(
        store=store.value,
        success=False,
        skipped=True,
        message=f"⏭️  Skipping {store_label(store.value)} ({reason})",
    )


def handle_aso_push(
    ctx: ToolContext,
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    upload_images: bool = False,
    dry_run: bool = False,
) -> ToolResponse:
    """Push pushData to the stores."""
    resolved = _resolve(ctx, app, bundle_id, package_name)
    base_dir = push_data_dir(ctx.config.data_dir)
    data = load_aso_data(resolved.slug, base_dir)
    if data.google_play is None and data.app_store is None:
        expected = [
            aso_data_path(base_dir, resolved.slug, folder)
            for folder in (GOOGLE_PLAY_FOLDER, APP_STORE_FOLDER)
        ]
        return ToolResponse(
            text="\n".join(
                [f"❌ No ASO data found for {resolved.slug}. Expected:"]
                + [f"   {path}" for path in expected]
            ),
            is_error=True,
        )

    prepared = prepare_aso_data_for_push(resolved.slug, data, ctx.config.site_url)
    if dry_run:
        return ToolResponse(
            text=f"🔍 Dry run: nothing pushed\n{_dump(prepared.to_json_dict())}",
            meta={"slug": resolved.slug},
        )

    results: list[PushResult] = []
    if store.includes_google_play:
        if not ctx.google_play.configured:
            results.append(_skipped(Store.GOOGLE_PLAY, "not configured in config.json"))
        elif not resolved.package_name:
            results.append(_skipped(Store.GOOGLE_PLAY, "no package_name provided"))
        elif prepared.google_play is None:
            results.append(_skipped(Store.GOOGLE_PLAY, "no data found"))
        else:
            results.append(
                ctx.google_play.push(
                    resolved.package_name,
                    prepared.google_play,
                    images_dir=base_dir if upload_images else None,
                    slug=resolved.slug,
                )
            )

    if store.includes_app_store:
        if not ctx.app_store.configured:
            results.append(_skipped(Store.APP_STORE, "not configured in config.json"))
        elif not resolved.bundle_id:
            results.append(_skipped(Store.APP_STORE, "no bundle_id provided"))
        elif prepared.app_store is None:
            results.append(_skipped(Store.APP_STORE, "no data found"))
        else:
            results.append(ctx.app_store.push(resolved.bundle_id, prepared.app_store))

    lines = ["📤 ASO Push Results:", *(format_push_result(r) for r in results)]
    meta: dict[str, Any] = {"slug": resolved.slug, "results": [r.model_dump() for r in results]}

    recovered = next((r for r in results if r.needs_new_version and r.version_info), None)
    if recovered is not None and recovered.version_info is not None:
        info = recovered.version_info
        lines += [
            "",
            f"📝 Version {info.version_string} needs What's New for: {', '.join(info.locales)}",
            "Translate the release notes for these locales, then call release-update-notes "
            f'with app="{resolved.slug}", store="appStore", version_id="{info.version_id}" '
            "and whats_new set to the locale -> text map. Run aso-push again afterwards.",
        ]
        meta.update(
            needsTranslation=True,
            versionId=info.version_id,
            versionString=info.version_string,
            bundleId=resolved.bundle_id,
            locales=info.locales,
        )

    attempted = [r for r in results if not r.skipped]
    failed = bool(attempted) and all(not r.success and not r.needs_new_version for r in attempted)
    return ToolResponse(text="\n".join(lines), meta=meta, is_error=failed)


# =============================================================================
# Release Notes and Versions
# =============================================================================


def handle_pull_release_notes(
    ctx: ToolContext,
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    dry_run: bool = False,
) -> ToolResponse:
    """Pull release notes of every version into pullData."""
    resolved = _resolve(ctx, app, bundle_id, package_name)
    base_dir = pull_data_dir(ctx.config.data_dir)
    lines = ["📥 Release notes pulled" if not dry_run else "🔍 Dry run: release notes not saved"]
    pulled: dict[str, Any] = {}

    if store.includes_app_store and resolved.bundle_id and ctx.app_store.configured:
        try:
            notes = ctx.app_store.pull_release_notes(resolved.bundle_id)
            pulled[Store.APP_STORE.value] = [n.to_json_dict() for n in notes]
            lines.append(f"   🍎 App Store: {len(notes)} versions")
            if not dry_run:
                path = save_release_notes(resolved.slug, APP_STORE_FOLDER, notes, base_dir)
                lines.append(f"      💾 {path}")
        except PabalError as e:
            lines.append(f"   🍎 App Store: ✗ ({e.message})")

    if store.includes_google_play and resolved.package_name and ctx.google_play.configured:
        try:
            gp_notes = ctx.google_play.pull_release_notes(resolved.package_name)
            pulled[Store.GOOGLE_PLAY.value] = [n.to_json_dict() for n in gp_notes]
            lines.append(f"   🤖 Google Play: {len(gp_notes)} version codes")
            if not dry_run:
                path = save_release_notes(resolved.slug, GOOGLE_PLAY_FOLDER, gp_notes, base_dir)
                lines.append(f"      💾 {path}")
        except PabalError as e:
            lines.append(f"   🤖 Google Play: ✗ ({e.message})")

    if not pulled:
        return ToolResponse(
            text="\n".join([f"❌ No release notes pulled for {resolved.slug}", *lines[1:]]),
            is_error=True,
        )
    if dry_run:
        lines.append(_dump(pulled))
    return ToolResponse(text="\n".join(lines), meta={"slug": resolved.slug, "releaseNotes": pulled})


def handle_update_notes(
    ctx: ToolContext,
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    version_id: str | None = None,
    whats_new: dict[str, str] | None = None,
    text: str | None = None,
    source_locale: str = "en-US",
) -> ToolResponse:
    """Update release notes, first asking for any missing translations."""
    resolved = _resolve(ctx, app, bundle_id, package_name)
    translations = {locale: note for locale, note in (whats_new or {}).items() if note and note.strip()}
    if not translations and not text:
        return ToolResponse(
            text="❌ Either whats_new (locale -> text map) or text (in the source locale) is required.",
            is_error=True,
        )

    supported = collect_supported_locales(
        resolved,
        store,
        ctx.registry,
        ctx.app_store if store.includes_app_store else None,
        ctx.google_play if store.includes_google_play else None,
    )

    if not translations and not supported.union():
        return ToolResponse(
            text=f"❌ No supported locales found for {resolved.slug}. "
            "Run apps-add to cache them, or pass whats_new directly.",
            is_error=True,
        )

    source = translation_source(translations, text, source_locale)
    if source is not None:
        source_locale, source_text = source
        pending = build_translation_requests(source_text, source_locale, supported, translations)
        if pending:
            return ToolResponse(
                text=format_translation_request(
                    resolved.slug, source_text, source_locale, supported, pending
                ),
                meta={
                    "translationRequests": {request.store: request.to_meta() for request in pending},
                    "slug": resolved.slug,
                    "store": store.value,
                    "versionId": version_id,
                },
            )

    if not translations:
        translations = {source_locale: text or ""}

    sections = ["📝 Release notes update"]
    results: dict[str, Any] = {}
    failed = False

    if store.includes_app_store and resolved.bundle_id:
        if not ctx.app_store.configured:
            sections.append("**🍎 App Store:**\n   ⏭️  not configured")
        else:
            try:
                result = ctx.app_store.update_release_notes(
                    resolved.bundle_id,
                    notes_for_store(translations, supported.app_store, source_locale),
                    version_id,
                    supported.app_store,
                )
                results[Store.APP_STORE.value] = result.model_dump()
                failed = failed or not result.updated
                sections.append(format_release_notes_update(Store.APP_STORE.value, result))
            except PabalError as e:
                failed = True
                sections.append(f"**🍎 App Store:**\n   ❌ {e.message}")

    if store.includes_google_play and resolved.package_name:
        if not ctx.google_play.configured:
            sections.append("**🤖 Google Play:**\n   ⏭️  not configured")
        else:
            try:
                gp_result = ctx.google_play.update_release_notes(
                    resolved.package_name,
                    notes_for_store(translations, supported.google_play, source_locale),
                    supported_locales=supported.google_play,
                )
                results[Store.GOOGLE_PLAY.value] = gp_result.model_dump()
                failed = failed or not gp_result.updated
                sections.append(format_release_notes_update(Store.GOOGLE_PLAY.value, gp_result))
            except PabalError as e:
                failed = True
                sections.append(f"**🤖 Google Play:**\n   ❌ {e.message}")

    return ToolResponse(
        text="\n\n".join(sections),
        meta={"slug": resolved.slug, "results": results},
        is_error=failed,
    )


def _version_lines(ctx: ToolContext, resolved: ResolvedApp, store: Store) -> tuple[list[str], dict[str, Any]]:
    lines: list[str] = []
    meta: dict[str, Any] = {}

    if store.includes_app_store and resolved.bundle_id and ctx.app_store.configured:
        try:
            version = ctx.app_store.get_latest_version(resolved.bundle_id)
            if version is None:
                lines.append("🍎 App Store: No version found (can create first version)")
            else:
                lines.append(f"🍎 App Store: {version.version_string} ({version.app_store_state})")
                meta[Store.APP_STORE.value] = version.model_dump()
        except PabalError as e:
            lines.append(f"🍎 App Store: Check failed - {e.message}")

    if store.includes_google_play and resolved.package_name and ctx.google_play.configured:
        try:
            release = ctx.google_play.get_latest_release(resolved.package_name)
            if release is None:
                lines.append("🤖 Google Play: No version found (can create first version)")
            else:
                codes = ", ".join(str(code) for code in release.version_codes)
                lines.append(
                    f"🤖 Google Play: {release.version_name} "
                    f"(versionCodes: {codes}, {release.status.upper()})"
                )
                meta[Store.GOOGLE_PLAY.value] = release.model_dump()
        except PabalError as e:
            lines.append(f"🤖 Google Play: Check failed - {e.message}")

    return lines, meta


def handle_check_versions(
    ctx: ToolContext,
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
) -> ToolResponse:
    """Latest App Store version and Google Play production release."""
    resolved = _resolve(ctx, app, bundle_id, package_name)
    lines, meta = _version_lines(ctx, resolved, store)
    if not lines:
        lines = ["⏭️  No configured store for this app"]
    return ToolResponse(
        text="\n".join([f"📦 Latest versions of {resolved.slug}", *lines]), meta=meta or None
    )


def handle_create_release(
    ctx: ToolContext,
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    version: str | None = None,
    version_codes: list[int] | None = None,
) -> ToolResponse:
    """Create an App Store version and/or a Google Play production release."""
    resolved = _resolve(ctx, app, bundle_id, package_name)
    if not version and not version_codes:
        lines, meta = _version_lines(ctx, resolved, store)
        lines += [
            "",
            "Provide version (App Store, e.g. 1.2.0) and/or version_codes "
            "(Google Play) to create a release.",
        ]
        return ToolResponse(text="\n".join(lines), meta=meta or None)

    lines = [f"🚀 Release for {resolved.slug}"]
    meta: dict[str, Any] = {}
    failed = False

    if store.includes_app_store and resolved.bundle_id:
        if not version:
            lines.append("⏭️  Skipping App Store (version required)")
        elif not ctx.app_store.configured:
            lines.append("⏭️  Skipping App Store (not configured in config.json)")
        else:
            try:
                created = ctx.app_store.create_version(resolved.bundle_id, version)
                lines.append(
                    f"✅ App Store version {created.version_string} ready (Version ID: {created.id})"
                )
                meta[Store.APP_STORE.value] = created.model_dump()
            except PabalError as e:
                failed = True
                lines.append(f"❌ App Store: {e.message}")

    if store.includes_google_play and resolved.package_name:
        if not version_codes:
            lines.append("⏭️  Skipping Google Play (version_codes required)")
        elif not ctx.google_play.configured:
            lines.append("⏭️  Skipping Google Play (not configured in config.json)")
        else:
            try:
                release = ctx.google_play.create_release(
                    resolved.package_name, version_codes, release_name=version
                )
                codes = ", ".join(str(code) for code in release.version_codes)
                lines.append(f"✅ Google Play production release created (versionCodes: {codes}, DRAFT)")
                meta[Store.GOOGLE_PLAY.value] = release.model_dump()
            except PabalError as e:
                failed = True
                lines.append(f"❌ Google Play: {e.message}")

    return ToolResponse(text="\n".join(lines), meta=meta or None, is_error=failed)
