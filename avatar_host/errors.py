"""
Error taxonomy for the avatar host service.

Every per-request failure is an AvatarHostError carrying its HTTP status and a
short client-facing message. The app registers one exception handler that
turns these into the same JSON shape FastAPI uses for HTTPException.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class StartupError(RuntimeError):
    """Fatal configuration problem; the process must not start listening."""


class AvatarHostError(Exception):
    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# Auth (401)

class AuthError(AvatarHostError):
    status_code = 401
    detail = "Unauthorized"


class MissingCredential(AuthError):
    detail = "No authorization header"


class MalformedCredential(AuthError):
    detail = "Invalid authorization header format"


class InvalidCredential(AuthError):
    detail = "Invalid token"


# Upload validation (400 / 413)

class UploadValidationError(AvatarHostError):
    status_code = 400
    detail = "Invalid upload"


class NoUpload(UploadValidationError):
    detail = "Invalid upload"


class MissingFilename(UploadValidationError):
    detail = "No filename"


class InvalidUserId(UploadValidationError):
    detail = "Invalid user id"


class UploadTooLarge(UploadValidationError):
    status_code = 413
    detail = "File too large"


# Lookup (404)

class AvatarLookupError(AvatarHostError):
    status_code = 404
    detail = "Avatar not found"


class AvatarNotFound(AvatarLookupError):
    detail = "Avatar not found"


class AvatarFileMissing(AvatarLookupError):
    detail = "Avatar file not found"


# Server side (500)

class StorageIOError(AvatarHostError):
    status_code = 500
    detail = "Storage error"


class TemplateRenderError(AvatarHostError):
    status_code = 500
    detail = "Template error"


def error_response(exc: AvatarHostError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def avatar_host_exception_handler(request: Request, exc: AvatarHostError):
    """Return consistent JSON error responses."""
    return error_response(exc)
