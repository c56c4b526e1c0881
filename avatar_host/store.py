"""
Filesystem storage for avatars.

Two stores share one storage root:

- BlobStore keeps immutable uploaded files as <root>/<blob_id>.<ext>
- PointerStore keeps one text record per user, <root>/<user_id>/current.avatar,
  naming the blob that is that user's current avatar

Neither store locks. Concurrent uploads for the same user race on the pointer;
the last replace wins.
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional

import anyio
from starlette.concurrency import run_in_threadpool

from .errors import InvalidUserId, StorageIOError, UploadTooLarge

logger = logging.getLogger("avatar_host.store")

POINTER_FILENAME = "current.avatar"
DEFAULT_EXTENSION = "jpg"

_EXTENSION_RE = re.compile(r"^[A-Za-z0-9]{1,16}$")


def extension_for(filename: str) -> str:
    """
    Derive the blob extension from an uploaded filename.

    Returns the text after the last dot of the base name, or DEFAULT_EXTENSION
    when there is none (or it is not a plain alphanumeric tag).
    """
    name = Path((filename or "").replace("\\", "/")).name
    if "." not in name.lstrip("."):
        return DEFAULT_EXTENSION
    ext = name.rsplit(".", 1)[1]
    if not _EXTENSION_RE.match(ext):
        return DEFAULT_EXTENSION
    return ext


def validate_user_id(user_id: str) -> str:
    """Reject identities that are not a single safe path segment."""
    if (
        not user_id
        or user_id in (".", "..")
        or "/" in user_id
        or "\\" in user_id
        or "\x00" in user_id
    ):
        raise InvalidUserId()
    return user_id


@dataclass(frozen=True)
class BlobRef:
    """
    Reference to a stored blob.

    Attributes:
        blob_id: 128-bit random identifier (hex)
        extension: file extension tag, without the dot
    """
    blob_id: str
    extension: str

    @property
    def filename(self) -> str:
        return f"{self.blob_id}.{self.extension}"

    @classmethod
    def new(cls, extension: str) -> "BlobRef":
        return cls(blob_id=uuid.uuid4().hex, extension=extension)

    @classmethod
    def parse(cls, text: str) -> Optional["BlobRef"]:
        """Parse a pointer record. Returns None unless it is a plain <id>.<ext> name."""
        name = (text or "").strip()
        if not name or Path(name).name != name or name in (".", ".."):
            return None
        blob_id, dot, ext = name.rpartition(".")
        if not dot or not blob_id or not ext:
            return None
        return cls(blob_id=blob_id, extension=ext)


class BlobStore:
    """Immutable blobs stored directly under the storage root."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create storage root %s: %s", self.root, e)
            raise StorageIOError("Cannot create storage directory") from e

    def path_for(self, ref: BlobRef) -> Path:
        return self.root / ref.filename

    def exists(self, ref: BlobRef) -> bool:
        return self.path_for(ref).is_file()

    def _unlink(self, ref: BlobRef) -> None:
        try:
            self.path_for(ref).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partial blob %s: %s", ref.filename, e)

    async def discard(self, ref: BlobRef) -> None:
        """Remove a partially written blob. Missing files are ignored."""
        # Shielded so a cancelled upload still cleans up after itself
        with anyio.CancelScope(shield=True):
            await run_in_threadpool(self._unlink, ref)

    async def write_stream(
        self,
        ref: BlobRef,
        chunks: AsyncIterator[bytes],
        max_bytes: Optional[int] = None,
    ) -> int:
        """
        Write a blob from an async chunk source.

        Each blocking write runs on the worker thread pool. If the source
        fails, the cap is exceeded or the request is cancelled, the partial
        file is removed and the error propagates.

        Returns:
            Number of bytes written
        """
        path = self.path_for(ref)
        try:
            fh: BinaryIO = await run_in_threadpool(path.open, "xb")
        except OSError as e:
            logger.error("Cannot create blob %s: %s", path, e)
            raise StorageIOError("Cannot create avatar file") from e

        written = 0
        try:
            try:
                async for chunk in chunks:
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise UploadTooLarge(
                            f"File too large. Max {max_bytes // (1024 * 1024)}MB."
                        )
                    await run_in_threadpool(fh.write, chunk)
            finally:
                fh.close()
        except OSError as e:
            await self.discard(ref)
            logger.error("Write failed for blob %s: %s", ref.filename, e)
            raise StorageIOError("Cannot write avatar file") from e
        except BaseException:
            await self.discard(ref)
            raise

        return written


class PointerStore:
    """Per-user records naming the current avatar blob."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def user_dir(self, user_id: str) -> Path:
        return self.root / validate_user_id(user_id)

    def pointer_path(self, user_id: str) -> Path:
        return self.user_dir(user_id) / POINTER_FILENAME

    def exists(self, user_id: str) -> bool:
        return self.pointer_path(user_id).is_file()

    def read(self, user_id: str) -> Optional[str]:
        """
        Return the raw pointer record for a user.

        Returns:
            Record text, or None if the user never uploaded or the record
            cannot be read
        """
        if not self.exists(user_id):
            return None
        try:
            return self.pointer_path(user_id).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Unreadable pointer for %s: %s", user_id, e)
            return None

    def write(self, user_id: str, ref: BlobRef) -> None:
        """
        Point a user at a blob.

        The record is written to a temporary sibling and moved into place with
        os.replace, so readers never see a torn record.
        """
        folder = self.user_dir(user_id)
        tmp = folder / f".{POINTER_FILENAME}.{uuid.uuid4().hex}.tmp"
        try:
            folder.mkdir(parents=True, exist_ok=True)
            tmp.write_text(ref.filename, encoding="utf-8")
            os.replace(tmp, folder / POINTER_FILENAME)
        except OSError as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError as cleanup_err:
                logger.warning("Could not remove %s: %s", tmp, cleanup_err)
            logger.error("Cannot update pointer for %s: %s", user_id, e)
            raise StorageIOError("Cannot save avatar mapping") from e
