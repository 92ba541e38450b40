"""
Shared utilities for archive_app (item ids, timestamps, request JSON).
"""

import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone

from django.http import JsonResponse

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_id() -> str:
    """Millisecond timestamp in base 36 followed by 6 random base-36 characters."""
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(6))
    return to_base36(int(time.time() * 1000)) + suffix


def now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def get_request_json(request, default=None):
    """
    Parse request body as JSON. Returns (body_dict, error_response).
    On success: (body, None). On decode error: (default or {}, JsonResponse 400).
    """
    try:
        raw = request.body.decode("utf-8") or "{}"
        body = json.loads(raw)
        if not isinstance(body, dict):
            body = default if default is not None else {}
        return (body, None)
    except (UnicodeDecodeError, ValueError) as e:
        logger.warning("get_request_json invalid body: %s", e)
        return (
            default if default is not None else {},
            JsonResponse({"error": "Invalid JSON"}, status=400),
        )
