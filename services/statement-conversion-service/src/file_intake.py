"""
File intake and per-file status tracking for a conversion session.

Uploads are filtered down to PDFs and turned into `FileState` records. All
mutations are keyed by file id and return a fresh tuple, so one file's update
never invalidates another file's record.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from shared.observability.privacy import fingerprint_filename

from statement_model import FileState, FileStatus, UploadedFile

logger = logging.getLogger(__name__)

PDF_EXTENSION = ".pdf"
NON_PDF_WARNING = "One or more files were not PDFs and have been ignored."


class UnknownFileError(KeyError):
    """Raised when a mutation references a file id the session does not track."""


@dataclass(frozen=True, slots=True)
class IntakeResult:
    files: tuple[FileState, ...]
    warning: str | None = None


def build_file_id(upload: UploadedFile) -> str:
    return f"{upload.filename}-{upload.last_modified}"


def is_pdf_filename(filename: str) -> bool:
    return filename.lower().endswith(PDF_EXTENSION)


def intake_files(uploads: Iterable[UploadedFile]) -> IntakeResult:
    """
    Accept the PDFs among `uploads` and start each one in `pending`.

    Non-PDF entries are dropped and reported once through the aggregate warning,
    never as a per-file error.
    """

    uploads = list(uploads)
    accepted: list[FileState] = []
    seen_ids: set[str] = set()
    rejected = 0

    for upload in uploads:
        if not is_pdf_filename(upload.filename):
            rejected += 1
            continue
        file_id = build_file_id(upload)
        if file_id in seen_ids:
            logger.info({"event": "intake_duplicate_skipped", "file": fingerprint_filename(upload.filename)})
            continue
        seen_ids.add(file_id)
        accepted.append(FileState(id=file_id, filename=upload.filename, content=upload.content))

    logger.info(
        {
            "event": "files_intake",
            "received": len(uploads),
            "accepted": len(accepted),
            "rejected_non_pdf": rejected,
        }
    )
    return IntakeResult(files=tuple(accepted), warning=NON_PDF_WARNING if rejected else None)


def update_password(files: Sequence[FileState], file_id: str, password: str) -> tuple[FileState, ...]:
    """Record the user-supplied password for one file."""

    return _replace_one(files, file_id, password=password)


def update_status(
    files: Sequence[FileState],
    file_id: str,
    status: FileStatus,
    error_message: str | None = None,
) -> tuple[FileState, ...]:
    """Move one file to `status`; the error message is cleared unless given."""

    return _replace_one(files, file_id, status=status, error_message=error_message)


def find_file(files: Sequence[FileState], file_id: str) -> FileState:
    for item in files:
        if item.id == file_id:
            return item
    raise UnknownFileError(file_id)


def is_convertible(file_state: FileState) -> bool:
    if file_state.status is FileStatus.READY:
        return True
    return file_state.status is FileStatus.NEEDS_PASSWORD and bool(file_state.password)


def is_conversion_ready(files: Sequence[FileState]) -> bool:
    """
    True iff every file has finished probing, at least one file is `ready` or
    `needsPassword`, and every `needsPassword` file already has a non-empty
    password.
    """

    if not files or any(f.status is FileStatus.PENDING for f in files):
        return False
    has_candidates = any(f.status in (FileStatus.READY, FileStatus.NEEDS_PASSWORD) for f in files)
    passwords_complete = all(f.status is not FileStatus.NEEDS_PASSWORD or bool(f.password) for f in files)
    return has_candidates and passwords_complete


def _replace_one(files: Sequence[FileState], file_id: str, **changes) -> tuple[FileState, ...]:
    found = False
    updated: list[FileState] = []
    for item in files:
        if item.id == file_id:
            updated.append(dataclasses.replace(item, **changes))
            found = True
        else:
            updated.append(item)
    if not found:
        raise UnknownFileError(file_id)
    return tuple(updated)
