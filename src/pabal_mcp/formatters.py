"""Text formatting of tool results."""

from __future__ import annotations

from pabal_mcp.models import PushResult, RegisteredApp, ReleaseNotesUpdateResult, Store
from pabal_mcp.release_notes import SupportedLocales, TranslationRequest

STORE_LABELS = {
    Store.APP_STORE.value: "App Store",
    Store.GOOGLE_PLAY.value: "Google Play",
}
STORE_ICONS = {
    Store.APP_STORE.value: "🍎",
    Store.GOOGLE_PLAY.value: "🤖",
}

_FIELD_LABELS = {"name": "Name", "subtitle": "Subtitle", "screenshots": "Screenshots"}


def store_label(store: str) -> str:
    return STORE_LABELS.get(store, store)


def format_push_result(result: PushResult) -> str:
    label = store_label(result.store)
    if result.skipped:
        return result.message or f"⏭️  Skipping {label}"
    if result.needs_new_version and result.version_info is not None:
        info = result.version_info
        return (
            f"✅ New version {info.version_string} created (Version ID: {info.version_id})\n"
            f"   {label} metadata was locked: {result.error}"
        )
    if not result.success:
        return f"❌ {label} push failed: {result.error}"
    if result.failed_fields:
        lines = [
            f"⚠️  {label} data pushed with partial failures "
            f"({len(result.failed_fields)} locales)"
        ]
        for failure in result.failed_fields:
            fields = ", ".join(_FIELD_LABELS.get(f, f) for f in failure.fields)
            lines.append(f"   • {failure.locale}: {fields}")
        return "\n".join(lines)
    return f"✅ {label} data pushed ({len(result.locales)} locales)"


def format_release_notes_update(store: str, result: ReleaseNotesUpdateResult) -> str:
    header = f"**{STORE_ICONS.get(store, '')} {store_label(store)}:**"
    lines = [header]
    if result.updated:
        lines.append(f"   ✅ Updated: {', '.join(result.updated)}")
    for failure in result.failed:
        lines.append(f"   ❌ {failure.locale}: {failure.error}")
    if not result.updated and not result.failed:
        lines.append("   Nothing to update")
    return "\n".join(lines)


def format_translation_request(
    slug: str,
    source_text: str,
    source_locale: str,
    supported: SupportedLocales,
    pending: list[TranslationRequest],
) -> str:
    targets = sorted({locale for request in pending for locale in request.target_locales})
    lines = [
        "🌐 Translation Required",
        "",
        f"App: {slug}",
        f"Source ({source_locale}):",
        source_text,
        "",
    ]
    if supported.app_store:
        lines.append(f"🍎 App Store locales: {', '.join(supported.app_store)}")
    if supported.google_play:
        lines.append(f"🤖 Google Play locales: {', '.join(supported.google_play)}")
    lines += [
        "",
        f"Translate the text into: {', '.join(targets)}",
        "Then call this tool again with whats_new set to a locale -> text map "
        f"that includes {source_locale} and every locale above.",
    ]
    return "\n".join(lines)


def format_app(app: RegisteredApp) -> str:
    lines = [f"• {app.name} ({app.slug})"]
    if app.app_store is not None:
        locales = len(app.app_store.supported_locales or [])
        lines.append(f"   🍎 {app.app_store.bundle_id} ({locales} locales)")
    if app.google_play is not None:
        locales = len(app.google_play.supported_locales or [])
        lines.append(f"   🤖 {app.google_play.package_name} ({locales} locales)")
    return "\n".join(lines)
