"""
File storage for uploaded documents.

Files live under ``UPLOAD_FOLDER/documents/<owner uid>/`` and are served back
through the ``main.uploaded_file`` route, so the URL stays valid for as long
as the file exists.
"""

import logging
import os
import time

from flask import current_app, url_for
from werkzeug.utils import secure_filename

from biblioteca.exceptions import InternalError, ValidationError

logger = logging.getLogger(__name__)

URL_PREFIX = "/files/"


def allowed_file(filename: str) -> bool:
    """Check if the file extension is in the whitelist."""
    return (
        "." in filename
        and filename.rsplit(".", 1)[1].lower()
        in current_app.config["ALLOWED_EXTENSIONS"]
    )


def _stream_size(stream):
    try:
        start = stream.tell()
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(start)
        return size - start
    except (AttributeError, OSError):
        return None


def upload_file(file, owner_uid, on_progress=None):
    """Save an uploaded ``FileStorage`` and return its URL.

    ``on_progress`` receives the transferred fraction (0.0 to 1.0) after each
    chunk.
    """
    if not file or not file.filename:
        raise ValidationError("No file selected.")
    if not allowed_file(file.filename):
        allowed = ", ".join(sorted(current_app.config["ALLOWED_EXTENSIONS"]))
        raise ValidationError(f"Only these file types are allowed: {allowed}.")

    safe_name = f"{int(time.time() * 1000)}-{secure_filename(file.filename)}"
    relative = "/".join(["documents", secure_filename(owner_uid), safe_name])
    target = os.path.join(current_app.config["UPLOAD_FOLDER"], *relative.split("/"))
    os.makedirs(os.path.dirname(target), exist_ok=True)

    chunk_size = current_app.config.get("UPLOAD_CHUNK_SIZE", 256 * 1024)
    total = _stream_size(file.stream)
    transferred = 0

    try:
        with open(target, "wb") as out:
            while True:
                chunk = file.stream.read(chunk_size)
                if not chunk:
                    break
                out.write(chunk)
                transferred += len(chunk)
                if on_progress and total:
                    on_progress(min(transferred / total, 1.0))
    except OSError:
        logger.exception("Upload of %s failed", file.filename)
        if os.path.exists(target):
            os.remove(target)
        raise InternalError("Upload failed. Please try again.")

    if on_progress:
        on_progress(1.0)
    logger.info("Stored %s (%d bytes) for %s", relative, transferred, owner_uid)
    return url_for("main.uploaded_file", path=relative)


def local_path(file_url):
    """Filesystem path behind a storage URL, or None for external URLs."""
    if not file_url or not file_url.startswith(URL_PREFIX):
        return None
    relative = file_url[len(URL_PREFIX):]
    root = os.path.abspath(current_app.config["UPLOAD_FOLDER"])
    path = os.path.abspath(os.path.join(root, *relative.split("/")))
    if not path.startswith(root + os.sep):
        return None
    return path


def remove_file(file_url):
    """Best-effort removal of a stored file."""
    path = local_path(file_url)
    if path is None:
        return False
    try:
        if os.path.exists(path):
            os.remove(path)
            return True
    except OSError:
        logger.warning("Could not remove %s", path)
    return False
