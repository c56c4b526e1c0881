"""
Avatar upload and retrieval endpoints.

POST /upload/{user_id}  stores the first file of a multipart body as a new
                        blob, then points the user at it
GET  /avatars/{user_id} streams the blob the user currently points at
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile

from .errors import (
    AvatarFileMissing,
    AvatarNotFound,
    MissingFilename,
    NoUpload,
    StorageIOError,
)
from .models import ErrorResponse, UploadResponse
from .store import BlobRef, BlobStore, PointerStore, extension_for, validate_user_id

logger = logging.getLogger("avatar_host.avatars")

router = APIRouter(tags=["avatars"])

CHUNK_SIZE = 1024 * 1024  # 1MB


def avatar_path(user_id: str) -> str:
    return f"/avatars/{user_id}"


async def iter_upload(upload: UploadFile, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        yield chunk


def first_upload(form: FormData) -> UploadFile:
    """
    Pick the file to store from a parsed multipart body.

    Only the first field is considered.

    Raises:
        NoUpload: the body has no fields
        MissingFilename: the first field carries no filename
    """
    items = form.multi_items()
    if not items:
        raise NoUpload()
    _, value = items[0]
    if not isinstance(value, UploadFile) or not value.filename:
        raise MissingFilename()
    return value


class UploadService:
    """Writes a new blob and repoints the user at it."""

    def __init__(self, blobs: BlobStore, pointers: PointerStore, max_bytes: Optional[int] = None):
        self.blobs = blobs
        self.pointers = pointers
        self.max_bytes = max_bytes

    async def upload(self, user_id: str, form: FormData) -> str:
        """
        Store the first file of `form` as the user's avatar.

        The pointer is only updated after the blob is completely written.

        Returns:
            Public retrieval path for the user
        """
        validate_user_id(user_id)
        await run_in_threadpool(self.blobs.ensure_root)

        upload = first_upload(form)
        ref = BlobRef.new(extension_for(upload.filename))

        size = await self.blobs.write_stream(ref, iter_upload(upload), max_bytes=self.max_bytes)
        try:
            await run_in_threadpool(self.pointers.write, user_id, ref)
        except StorageIOError:
            # The blob is complete but nothing references it.
            await self.blobs.discard(ref)
            raise

        logger.info("Stored avatar %s for %s (%d bytes)", ref.filename, user_id, size)
        return avatar_path(user_id)


class RetrievalService:
    """Resolves a user's pointer to a blob on disk."""

    def __init__(self, blobs: BlobStore, pointers: PointerStore):
        self.blobs = blobs
        self.pointers = pointers

    def resolve(self, user_id: str) -> Path:
        """
        Raises:
            AvatarNotFound: the user has no pointer record
            AvatarFileMissing: the record names a blob that is not on disk
        """
        validate_user_id(user_id)
        record = self.pointers.read(user_id)
        if record is None:
            raise AvatarNotFound()

        ref = BlobRef.parse(record)
        if ref is None or not self.blobs.exists(ref):
            logger.warning("Pointer for %s names a missing blob: %r", user_id, record.strip())
            raise AvatarFileMissing()
        return self.blobs.path_for(ref)


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_retrieval_service(request: Request) -> RetrievalService:
    return request.app.state.retrieval_service


@router.post(
    "/upload/{user_id}",
    response_model=UploadResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Upload avatar",
    description="Store the first file of a multipart body as the user's current avatar.",
)
async def upload_avatar(
    user_id: str,
    request: Request,
    service: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    async with request.form() as form:
        path = await service.upload(user_id, form)
    return UploadResponse(status="success", path=path)


@router.get(
    "/avatars/{user_id}",
    response_class=FileResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get avatar",
    description="Stream the user's current avatar. No authentication required.",
)
def get_avatar(
    user_id: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    path = service.resolve(user_id)
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(path=str(path), media_type=media_type)
