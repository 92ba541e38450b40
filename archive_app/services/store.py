"""
The archive document on disk: one JSON file, always read and written whole.
Path from settings.ARCHIVE_DATA_PATH.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from django.conf import settings

from archive_app.exceptions import StoreError, StoreUnreadable
from archive_app.models import AppData
from archive_app.serializers import AppDataSerializer

logger = logging.getLogger(__name__)

_write_lock = threading.Lock()


def data_path() -> Path:
    return Path(settings.ARCHIVE_DATA_PATH)


def read_document(strict: bool = False) -> AppData:
    """
    Load the document. A missing file is created with the empty default.

    An unreadable or invalid file yields the empty default (logged), unless strict is
    set: then StoreUnreadable is raised so callers that write back never replace a
    document they could not load.
    """
    path = data_path()
    if not path.exists():
        document = AppData()
        try:
            write_document(document)
        except StoreError as e:
            logger.warning("store could not create default document: %s", e)
        return document
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        return _unreadable(strict, f"store read failed path={path}: {e}")
    if not isinstance(raw, dict):
        return _unreadable(strict, f"store document is not an object path={path}")
    serializer = AppDataSerializer(data=raw)
    if not serializer.is_valid():
        return _unreadable(strict, f"store document invalid path={path} errors={serializer.errors}")
    document = serializer.save()
    logger.debug("store read items=%d phrases=%d", len(document.items), len(document.custom_phrases))
    return document


def _unreadable(strict, message) -> AppData:
    logger.warning("%s", message)
    if strict:
        raise StoreUnreadable(message)
    return AppData()


def write_document(document: AppData) -> None:
    """Replace the stored document. Raises StoreError if the file cannot be written."""
    path = data_path()
    payload = json.dumps(document.to_dict(), ensure_ascii=False, indent=2)
    with _write_lock:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".data-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning("store write failed path=%s: %s", path, e)
            raise StoreError(str(e)) from e
    logger.debug("store wrote items=%d", len(document.items))
