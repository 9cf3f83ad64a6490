"""Error taxonomy for Pabal MCP Server."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import pydantic
import requests
from googleapiclient.errors import HttpError


class ErrorKind(str, Enum):
    """Closed set of failure categories surfaced by the server."""

    CONFIG = "config"
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UPSTREAM = "upstream"
    IO = "io"
    INTERNAL = "internal"


class PabalError(Exception):
    """Base exception for all server errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.code = code or self.kind.value.upper()
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logs and tool metadata."""
        data: dict[str, Any] = {"kind": self.kind.value, "code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ConfigError(PabalError):
    """Missing or invalid configuration."""

    kind = ErrorKind.CONFIG


class InputError(PabalError):
    """Malformed tool input."""

    kind = ErrorKind.VALIDATION


class AuthenticationError(PabalError):
    """Store credentials were rejected."""

    kind = ErrorKind.AUTH


class NotFoundError(PabalError):
    """Unknown app, version or localization."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(PabalError):
    """Duplicate registration or a store-side state conflict."""

    kind = ErrorKind.CONFLICT


class StorageError(PabalError):
    """Local file read or write failure."""

    kind = ErrorKind.IO


class StoreApiError(PabalError):
    """Non-2xx response or transport failure talking to a store API."""

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        *,
        store: str,
        status: int | None = None,
        body: str | None = None,
        kind: ErrorKind | None = None,
        code: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"store": store}
        if status is not None:
            details["status"] = status
        if body:
            details["body"] = body
        super().__init__(message, kind=kind, code=code, details=details)
        self.store = store
        self.status = status
        self.body = body or ""

    @property
    def is_state_error(self) -> bool:
        return self.status == 409 and "STATE_ERROR" in self.body


class StateConflictError(StoreApiError):
    """App Store 409 STATE_ERROR: the resource is locked by its review state."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, *, body: str | None = None) -> None:
        super().__init__(message, store="appStore", status=409, body=body, code="STATE_ERROR")


def _http_error_body(error: HttpError) -> str:
    content = error.content
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content or "")


def wrap_error(
    error: BaseException,
    *,
    kind: ErrorKind = ErrorKind.INTERNAL,
    message: str | None = None,
    **details: Any,
) -> PabalError:
    """Translate a raw exception into the error taxonomy.

    Args:
        error: The exception to translate.
        kind: Kind used when the cause has no natural mapping.
        message: Context prefix for the resulting message.
        **details: Extra context (path, slug, locale...) attached to the error.

    Returns:
        A PabalError. Errors that are already PabalError pass through, with
        any extra details merged in.
    """
    prefix = f"{message}: " if message else ""

    if isinstance(error, PabalError):
        if details:
            error.details = {**details, **error.details}
        return error

    if isinstance(error, HttpError):
        status = error.resp.status if error.resp is not None else None
        body = _http_error_body(error)
        status_int = int(status) if status is not None else None
        wrapped_kind = ErrorKind.AUTH if status_int in (401, 403) else ErrorKind.UPSTREAM
        if status_int == 404:
            wrapped_kind = ErrorKind.NOT_FOUND
        wrapped: PabalError = StoreApiError(
            f"{prefix}Google Play API error ({status_int}): {error.reason or body}",
            store="googlePlay",
            status=status_int,
            body=body,
            kind=wrapped_kind,
        )
    elif isinstance(error, requests.RequestException):
        wrapped = StoreApiError(f"{prefix}Network error: {error}", store="appStore")
    elif isinstance(error, json.JSONDecodeError):
        wrapped = PabalError(f"{prefix}Invalid JSON: {error}", kind=ErrorKind.UPSTREAM)
    elif isinstance(error, FileNotFoundError):
        wrapped = StorageError(f"{prefix}File not found: {error.filename}", code="FILE_NOT_FOUND")
    elif isinstance(error, OSError):
        wrapped = StorageError(f"{prefix}{error}")
    elif isinstance(error, pydantic.ValidationError):
        wrapped = InputError(f"{prefix}Invalid data: {error}")
    else:
        wrapped = PabalError(f"{prefix}{error}", kind=kind)

    if details:
        wrapped.details = {**wrapped.details, **details}
    wrapped.__cause__ = error
    return wrapped
