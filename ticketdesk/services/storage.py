"""
Local file storage for attachments and company documents.

Layout under UPLOAD_FOLDER:
    ticket/<sanitized number>/               ticket attachments
    ticket/<sanitized number>/comments/      comment files
    companies/<sanitized company name>/      company documents
    tasks/<task number>/                     task attachments
    test-tasks/<task number>/                test task attachments

Database rows store the path relative to UPLOAD_FOLDER; ``resolve`` turns it
back into an absolute path and refuses anything outside the upload root.
"""

import logging
import mimetypes
import os
import re
import uuid
from dataclasses import dataclass

from flask import current_app
from werkzeug.utils import secure_filename

from ticketdesk.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

COMPANY_DOCUMENT_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "image/png",
    "image/jpeg",
    "text/plain",
})


@dataclass(frozen=True)
class StoredFile:
    name: str           # original client filename
    path: str           # relative to UPLOAD_FOLDER, forward slashes
    content_type: str


def upload_root() -> str:
    return os.path.abspath(current_app.config["UPLOAD_FOLDER"])


def ticket_folder(number: str) -> str:
    return f"ticket/{re.sub(r'[^a-zA-Z0-9_-]', '-', number)}"


def company_folder(name: str) -> str:
    return f"companies/{re.sub(r'[^a-zA-Z0-9]', '_', name)}"


def task_folder(number: str, *, test_task=False) -> str:
    return f"{'test-tasks' if test_task else 'tasks'}/{secure_filename(number)}"


def guess_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


def file_size(upload) -> int:
    """Size in bytes of a Werkzeug FileStorage without consuming it."""
    stream = upload.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size


def save_files(uploads, folder: str) -> list[StoredFile]:
    """Write uploaded files under ``folder``; on failure remove what was written and re-raise."""
    stored: list[StoredFile] = []
    target_dir = os.path.join(upload_root(), *folder.split("/"))
    try:
        os.makedirs(target_dir, exist_ok=True)
        for upload in uploads:
            original = upload.filename or "file"
            safe = secure_filename(original) or "file"
            filename = f"{uuid.uuid4().hex[:8]}-{safe}"
            upload.save(os.path.join(target_dir, filename))
            stored.append(StoredFile(
                name=original,
                path=f"{folder}/{filename}",
                content_type=upload.mimetype or guess_type(original),
            ))
    except OSError:
        logger.exception("Failed writing uploads into %s", folder)
        remove_files([s.path for s in stored])
        raise
    if stored:
        logger.info("Stored %d file(s) under %s", len(stored), folder)
    return stored


def remove_files(paths) -> None:
    """Best-effort deletion of stored files (relative paths)."""
    root = upload_root()
    for rel in paths:
        target = os.path.join(root, *rel.split("/"))
        try:
            os.remove(target)
        except FileNotFoundError:
            continue
        except OSError:
            logger.warning("Could not remove orphaned upload %s", rel, exc_info=True)


def resolve(relative_path: str, resource="File") -> str:
    """Absolute path of a stored file; NotFoundError when missing on disk."""
    if not relative_path:
        raise NotFoundError(resource)
    root = upload_root()
    target = os.path.abspath(os.path.join(root, *relative_path.split("/")))
    if os.path.commonpath([root, target]) != root:
        raise ValidationError("Invalid file path")
    if not os.path.isfile(target):
        logger.warning("Stored file missing on disk: %s", relative_path)
        raise NotFoundError(resource, relative_path)
    return target
