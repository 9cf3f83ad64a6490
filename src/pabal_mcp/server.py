"""Pabal MCP Server - Main server implementation."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
from mcp.server.fastmcp import FastMCP
from mcp.types import CallToolResult, TextContent
from starlette.requests import Request
from starlette.responses import JSONResponse

from pabal_mcp.config import CONFIG_DIR_ENV, get_config_dir
from pabal_mcp.errors import PabalError
from pabal_mcp.handlers import (
    ToolContext,
    handle_apps_add,
    handle_apps_init,
    handle_apps_search,
    handle_aso_pull,
    handle_aso_push,
    handle_auth_check,
    handle_check_versions,
    handle_create_release,
    handle_ping,
    handle_pull_release_notes,
    handle_update_notes,
)
from pabal_mcp.models import Store, ToolResponse

# Configure structured logging to stderr (stdout is reserved for MCP JSON-RPC)
log_level = os.environ.get("PABAL_MCP_LOG_LEVEL", "INFO")
numeric_level = getattr(logging, log_level.upper(), logging.INFO)
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)
logger = structlog.get_logger(__name__)

SENSITIVE_KEYS = {"private_key", "service_account_json", "service_account_key", "token"}


def redact(arguments: dict[str, Any]) -> dict[str, Any]:
    """Copy of tool arguments safe to log."""
    return {
        key: "[REDACTED]" if key.lower() in SENSITIVE_KEYS else value
        for key, value in arguments.items()
    }


def to_call_result(response: ToolResponse) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=response.text)],
        isError=response.is_error,
        _meta=response.meta,
    )


def run_tool(
    name: str,
    handler: Callable[..., ToolResponse],
    context_factory: Callable[[], ToolContext] | None = None,
    **arguments: Any,
) -> ToolResponse:
    """Run a handler, turning every exception into an error response."""
    started = time.perf_counter()
    log = logger.bind(tool=name)
    log.info("Tool called", arguments=redact(arguments))
    try:
        ctx = (context_factory or ToolContext)()
        response = handler(ctx, **arguments)
    except PabalError as e:
        log.warning("Tool failed", kind=e.kind.value, error=e.message)
        text = e.message if e.message.startswith("❌") else f"❌ {e.message}"
        response = ToolResponse(text=text, meta={"error": e.to_dict()}, is_error=True)
    except Exception as e:
        log.exception("Tool crashed", error=str(e))
        response = ToolResponse(
            text=f"❌ Unexpected error: {e}",
            meta={"error": {"kind": "internal", "message": str(e)}},
            is_error=True,
        )
    log.info(
        "Tool completed",
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
        is_error=response.is_error,
    )
    return response


def _call(name: str, handler: Callable[..., ToolResponse], **arguments: Any) -> CallToolResult:
    return to_call_result(run_tool(name, handler, **arguments))


@asynccontextmanager
async def lifespan(_server: FastMCP):  # type: ignore[no-untyped-def]
    """Lifespan context manager for the MCP server."""
    logger.info("Starting Pabal MCP Server", config_dir=str(get_config_dir()))
    yield {}
    logger.info("Shutting down Pabal MCP Server")


# Initialize the MCP server
mcp = FastMCP(
    "Pabal MCP Server",
    instructions=(
        "Manage App Store and Google Play metadata (ASO), release notes and versions "
        "for apps registered by slug. Register apps with apps-add before using other tools."
    ),
    lifespan=lifespan,
)


# =============================================================================
# Server and Auth Tools
# =============================================================================


@mcp.tool(name="ping")
def ping() -> CallToolResult:
    """Check that the server is running."""
    return _call("ping", handle_ping)


@mcp.tool(name="auth-check")
def auth_check(store: Store = Store.BOTH) -> CallToolResult:
    """Verify App Store Connect and/or Google Play credentials.

    Args:
        store: appStore, googlePlay or both (default: both)
    """
    return _call("auth-check", handle_auth_check, store=store)


@mcp.tool(name="auth-app-store")
def auth_app_store() -> CallToolResult:
    """Verify App Store Connect credentials by signing a short-lived token."""
    return _call("auth-app-store", handle_auth_check, store=Store.APP_STORE)


@mcp.tool(name="auth-play-store")
def auth_play_store() -> CallToolResult:
    """Verify the Google Play service account key."""
    return _call("auth-play-store", handle_auth_check, store=Store.GOOGLE_PLAY)


# =============================================================================
# App Registration Tools
# =============================================================================


@mcp.tool(name="apps-init")
def apps_init(store: Store = Store.APP_STORE, package_name: str | None = None) -> CallToolResult:
    """Register apps in bulk.

    Args:
        store: appStore registers every released App Store app; googlePlay
               registers the app given by package_name
        package_name: Android package name (required for googlePlay)
    """
    return _call("apps-init", handle_apps_init, store=store, package_name=package_name)


@mcp.tool(name="apps-add")
def apps_add(identifier: str, slug: str | None = None, store: Store = Store.BOTH) -> CallToolResult:
    """Register an app by bundle ID or package name.

    The app is looked up on each store; it is registered when at least one
    store knows it. Re-adding an app refreshes its supported locales.

    Args:
        identifier: iOS bundle ID or Android package name (e.g., com.example.app)
        slug: Slug to register under (default: last segment of identifier)
        store: appStore, googlePlay or both (default: both)
    """
    return _call("apps-add", handle_apps_add, identifier=identifier, slug=slug, store=store)


@mcp.tool(name="apps-search")
def apps_search(query: str | None = None, store: Store = Store.ALL) -> CallToolResult:
    """Search registered apps.

    Args:
        query: Slug, name, bundle ID or package name (partial, case-insensitive).
               Omit to list every app.
        store: all, appStore or googlePlay (default: all)
    """
    return _call("apps-search", handle_apps_search, query=query, store=store)


# =============================================================================
# ASO Tools
# =============================================================================


@mcp.tool(name="aso-pull")
def aso_pull(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    dry_run: bool = False,
    download_images: bool = True,
) -> CallToolResult:
    """Pull ASO metadata of every locale from the stores into the local cache.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
        dry_run: Return the pulled data without saving it
        download_images: Download screenshots next to the data (default: true)
    """
    return _call(
        "aso-pull",
        handle_aso_pull,
        app=app,
        package_name=package_name,
        bundle_id=bundle_id,
        store=store,
        dry_run=dry_run,
        download_images=download_images,
    )


@mcp.tool(name="aso-push")
def aso_push(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    upload_images: bool = False,
    dry_run: bool = False,
) -> CallToolResult:
    """Push locally prepared ASO metadata to the stores.

    When the App Store version is locked by review, a new version is created
    and the response asks for What's New translations.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
        upload_images: Upload staged Google Play screenshots
        dry_run: Show the data that would be pushed
    """
    return _call(
        "aso-push",
        handle_aso_push,
        app=app,
        package_name=package_name,
        bundle_id=bundle_id,
        store=store,
        upload_images=upload_images,
        dry_run=dry_run,
    )


# =============================================================================
# Release Tools
# =============================================================================


@mcp.tool(name="aso-pull-release-notes")
def aso_pull_release_notes(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    dry_run: bool = False,
) -> CallToolResult:
    """Pull release notes of every version into the local cache.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
        dry_run: Return the notes without saving them
    """
    return _call(
        "aso-pull-release-notes",
        handle_pull_release_notes,
        app=app,
        package_name=package_name,
        bundle_id=bundle_id,
        store=store,
        dry_run=dry_run,
    )


def _update_notes(
    name: str,
    app: str | None,
    package_name: str | None,
    bundle_id: str | None,
    store: Store,
    version_id: str | None,
    whats_new: dict[str, str] | None,
    text: str | None,
    source_locale: str,
) -> CallToolResult:
    return _call(
        name,
        handle_update_notes,
        app=app,
        package_name=package_name,
        bundle_id=bundle_id,
        store=store,
        version_id=version_id,
        whats_new=whats_new,
        text=text,
        source_locale=source_locale,
    )


@mcp.tool(name="release-update-notes")
def release_update_notes(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    version_id: str | None = None,
    whats_new: dict[str, str] | None = None,
    text: str | None = None,
    source_locale: str = "en-US",
) -> CallToolResult:
    """Update release notes (What's New) on the stores.

    Pass text to get the list of locales to translate into, then call again
    with whats_new holding every translation.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
        version_id: App Store version ID (default: the version being prepared)
        whats_new: Release notes by locale (e.g., {"en-US": "...", "ko-KR": "..."})
        text: Release notes in source_locale, to request translations
        source_locale: Locale of text (default: en-US)
    """
    return _update_notes(
        "release-update-notes",
        app, package_name, bundle_id, store, version_id, whats_new, text, source_locale,
    )


@mcp.tool(name="aso-update-whats-new")
def aso_update_whats_new(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    version_id: str | None = None,
    whats_new: dict[str, str] | None = None,
    text: str | None = None,
    source_locale: str = "en-US",
) -> CallToolResult:
    """Alias of release-update-notes.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
        version_id: App Store version ID (default: the version being prepared)
        whats_new: Release notes by locale
        text: Release notes in source_locale, to request translations
        source_locale: Locale of text (default: en-US)
    """
    return _update_notes(
        "aso-update-whats-new",
        app, package_name, bundle_id, store, version_id, whats_new, text, source_locale,
    )


@mcp.tool(name="release-check-versions")
def release_check_versions(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
) -> CallToolResult:
    """Show the latest App Store version and Google Play production release.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
    """
    return _call(
        "release-check-versions",
        handle_check_versions,
        app=app,
        package_name=package_name,
        bundle_id=bundle_id,
        store=store,
    )


@mcp.tool(name="release-create")
def release_create(
    app: str | None = None,
    package_name: str | None = None,
    bundle_id: str | None = None,
    store: Store = Store.BOTH,
    version: str | None = None,
    version_codes: list[int] | None = None,
) -> CallToolResult:
    """Create an App Store version and/or a Google Play production release.

    Without version and version_codes, shows the latest versions instead.

    Args:
        app: Registered app slug
        package_name: Android package name (if app is not given)
        bundle_id: iOS bundle ID (if app and package_name are not given)
        store: appStore, googlePlay or both (default: both)
        version: App Store version string (e.g., 1.2.0)
        version_codes: Uploaded Google Play version codes to release
    """
    return _call(
        "release-create",
        handle_create_release,
        app=app,
        package_name=package_name,
        bundle_id=bundle_id,
        store=store,
        version=version,
        version_codes=version_codes,
    )


# =============================================================================
# HTTP Endpoints for Network Transports
# =============================================================================


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:  # noqa: ARG001
    """Health check endpoint for monitoring and load balancers."""
    return JSONResponse({"status": "healthy", "service": "pabal-mcp"})


# =============================================================================
# Entry Point
# =============================================================================


def main(argv: list[str] | None = None) -> None:
    """Run the Pabal MCP Server."""
    parser = argparse.ArgumentParser(description="Pabal MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=os.environ.get("MCP_TRANSPORT", "stdio"),
        help="Transport protocol (default: stdio, or set MCP_TRANSPORT env var)",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("MCP_HOST", "127.0.0.1"),
        help="Host to bind to for network transports (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("MCP_PORT", "8000")),
        help="Port to bind to for network transports (default: 8000)",
    )
    parser.add_argument(
        "--config-dir",
        default=os.environ.get(CONFIG_DIR_ENV),
        help=f"Directory holding config.json (default: {CONFIG_DIR_ENV} or ~/.config/pabal-mcp)",
    )
    args = parser.parse_args(argv)

    if args.config_dir:
        os.environ[CONFIG_DIR_ENV] = str(Path(args.config_dir).expanduser())

    logger.info(
        "Starting Pabal MCP Server",
        transport=args.transport,
        host=args.host if args.transport != "stdio" else None,
        port=args.port if args.transport != "stdio" else None,
    )

    if args.transport != "stdio":
        mcp.settings.host = args.host
        mcp.settings.port = args.port

    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
