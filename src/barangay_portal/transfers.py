# SPDX-License-Identifier: Apache-2.0
"""
Binary transfers that bypass the JSON client.

    FileDownloader  GET a binary resource, spool it to a temporary file, hand
                    it to a save action under a dated filename, then release
                    the temporary file.
    FileUploader    POST one selected file as multipart/form-data.

Both share the transport and session cookies with the JSON client but skip
its default headers and body negotiation. Each instance allows one transfer
in flight; re-entry while busy is suppressed.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from barangay_portal.transport import SessionContext, Transport

logger = logging.getLogger(__name__)

SaveAction = Callable[["Blob", str], Any]

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9_-]", re.IGNORECASE)


# ============================================================================
# Exceptions
# ============================================================================


class TransferError(RuntimeError):
    """Raised when the backend rejects a download or upload."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.message = message
        self.status = status
        super().__init__(message)


class UploadValidationError(TransferError):
    """Raised before any request when the selection cannot be uploaded."""


# ============================================================================
# Shared busy state
# ============================================================================


class TransferState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class _SingleFlight:
    def __init__(self) -> None:
        self._state = TransferState.IDLE

    @property
    def state(self) -> TransferState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is TransferState.IN_FLIGHT

    def _begin(self) -> bool:
        if self.busy:
            return False
        self._state = TransferState.IN_FLIGHT
        return True

    def _finish(self) -> None:
        self._state = TransferState.IDLE


# ============================================================================
# Download
# ============================================================================


def safe_stem(stem: str) -> str:
    """Replace anything outside ``[A-Za-z0-9_-]`` with ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", stem)


def dated_filename(stem: str, suffix: str, today: date | None = None) -> str:
    """``resident-feedback`` + ``.csv`` -> ``resident-feedback-2024-05-01.csv``."""
    today = today or date.today()
    return f"{stem}-{today.isoformat()}{suffix}"


@dataclass(frozen=True)
class Blob:
    """A downloaded payload spooled to a temporary file."""

    path: Path
    content_type: str
    size: int


def save_to_directory(directory: str | Path) -> SaveAction:
    """Save action that copies the spooled blob into ``directory``."""
    target_dir = Path(directory)

    def _save(blob: Blob, filename: str) -> Path:
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / filename
        shutil.copyfile(blob.path, target)
        return target

    return _save


def _materialize(data: bytes, content_type: str, spool_dir: Path | None) -> Blob:
    fd, name = tempfile.mkstemp(prefix="portal-download-", dir=spool_dir)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    return Blob(Path(name), content_type, len(data))


def _release(blob: Blob) -> None:
    blob.path.unlink(missing_ok=True)


class FileDownloader(_SingleFlight):
    """Download one backend resource as a file."""

    def __init__(
        self,
        transport: Transport,
        path: str,
        *,
        stem: str,
        suffix: str,
        dated: bool = True,
        save: SaveAction | None = None,
        spool_dir: Path | None = None,
    ) -> None:
        super().__init__()
        self._transport = transport
        self._path = path
        self._stem = stem
        self._suffix = suffix
        self._dated = dated
        self._save = save or save_to_directory(Path.cwd())
        self._spool_dir = spool_dir

    def filename(self, today: date | None = None) -> str:
        stem = safe_stem(self._stem)
        if self._dated:
            return dated_filename(stem, self._suffix, today)
        return f"{stem}{self._suffix}"

    async def download(self, session: SessionContext, *, today: date | None = None) -> Any:
        """Fetch, save once, release. Returns the save action's result.

        Returns None without a request when a download is already in flight.
        """
        if not self._begin():
            logger.debug("Download of %s already in flight", self._path)
            return None
        try:
            response = await self._transport.send("GET", self._path, session=session)
            if not response.is_success:
                detail = response.text
                logger.error("Download of %s failed: HTTP %s", self._path, response.status_code)
                raise TransferError(detail or f"HTTP {response.status_code}", response.status_code)

            content_type = response.headers.get("content-type", "application/octet-stream")
            blob = _materialize(response.content, content_type, self._spool_dir)
            try:
                return self._save(blob, self.filename(today))
            finally:
                _release(blob)
        finally:
            self._finish()


# ============================================================================
# Upload
# ============================================================================


@dataclass(frozen=True)
class SelectedFile:
    name: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass(frozen=True)
class UploadOutcome:
    ok: bool
    message: str


class FileUploader(_SingleFlight):
    """Upload a single selected file under one multipart field."""

    def __init__(
        self,
        transport: Transport,
        path: str,
        *,
        field_name: str = "file",
        accept: tuple[str, ...] = ("application/pdf",),
        kind: str = "PDF",
        success_message: str = "Document uploaded.",
    ) -> None:
        super().__init__()
        self._transport = transport
        self._path = path
        self._field_name = field_name
        self._accept = accept
        self._kind = kind
        self._success_message = success_message
        self._selected: SelectedFile | None = None

    @property
    def selected(self) -> SelectedFile | None:
        return self._selected

    def select(self, file: SelectedFile | None) -> None:
        if file is not None and self._accept and file.content_type not in self._accept:
            raise UploadValidationError(f"Only {self._kind} is allowed.")
        self._selected = file

    async def submit(
        self,
        session: SessionContext,
        on_complete: Callable[[], None] | None = None,
    ) -> UploadOutcome | None:
        """Send the selection; None when an upload is already in flight."""
        selected = self._selected
        if selected is None:
            raise UploadValidationError(f"Please select a {self._kind} file to upload.")
        if not self._begin():
            logger.debug("Upload to %s already in flight", self._path)
            return None
        try:
            files = {self._field_name: (selected.name, selected.content, selected.content_type)}
            response = await self._transport.send("POST", self._path, session=session, files=files)
            if not response.is_success:
                logger.error("Upload to %s failed: HTTP %s", self._path, response.status_code)
                raise TransferError(response.text or "Upload failed", response.status_code)

            self._selected = None
            if on_complete is not None:
                on_complete()
            return UploadOutcome(ok=True, message=self._success_message)
        finally:
            self._finish()
