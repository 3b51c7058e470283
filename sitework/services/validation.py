"""
Input sanitising and field validators shared by schemas and services.
"""
import re
from typing import Any, Optional

from ..config import settings
from ..errors import ValidationError

MAX_INPUT_LENGTH = 10000

_SQL_PATTERN = re.compile(
    r"(--|/\*|\*/|;|\bDROP\b|\bDELETE\b|\bTRUNCATE\b|\bALTER\b|\bCREATE\b|\bEXEC\b|\bEXECUTE\b)",
    re.IGNORECASE,
)
_SQL_DML_PATTERN = re.compile(r"(\bUNION\b|\bSELECT\b|\bINSERT\b|\bUPDATE\b)", re.IGNORECASE)
_SCRIPT_PATTERN = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_JS_URL_PATTERN = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_PATTERN = re.compile(r"on\w+\s*=", re.IGNORECASE)
_HTML_DATA_URL_PATTERN = re.compile(r"data:text/html", re.IGNORECASE)

RAMS_VERSION_RE = re.compile(r"^\d+\.\d+$")
PHONE_RE = re.compile(r"^[\+]?[\d\s\-\(\)]+$")

ALLOWED_UPLOAD_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def sanitize_input(value: Optional[str]) -> str:
    """Strip SQL and script injection patterns, cap the length and trim."""
    if not value:
        return ""
    cleaned = _SQL_PATTERN.sub("", value)
    cleaned = _SCRIPT_PATTERN.sub("", cleaned)
    cleaned = _JS_URL_PATTERN.sub("", cleaned)
    cleaned = _EVENT_HANDLER_PATTERN.sub("", cleaned)
    cleaned = _HTML_DATA_URL_PATTERN.sub("", cleaned)
    cleaned = _SQL_DML_PATTERN.sub("", cleaned)
    return cleaned[:MAX_INPUT_LENGTH].strip()


def sanitize_payload(data: Any) -> Any:
    """Apply ``sanitize_input`` to every string inside nested lists/dicts."""
    if isinstance(data, str):
        return sanitize_input(data)
    if isinstance(data, list):
        return [sanitize_payload(v) for v in data]
    if isinstance(data, dict):
        return {k: sanitize_payload(v) for k, v in data.items()}
    return data


def is_valid_rams_version(version: str) -> bool:
    return bool(RAMS_VERSION_RE.match(version or ""))


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_RE.match(phone or ""))


def validate_upload(content_type: Optional[str], size_bytes: int) -> None:
    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise ValidationError(f"File type '{content_type}' is not allowed", code="FILE_TYPE")
    if size_bytes > settings.max_upload_mb * 1024 * 1024:
        raise ValidationError(f"File exceeds {settings.max_upload_mb}MB limit", code="FILE_TOO_LARGE")
