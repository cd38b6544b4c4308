import json
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .errors import MalformedRequest

CHESS_DOT_COM = "CHESS_DOT_COM"
SUPPORTED_PLATFORMS = {CHESS_DOT_COM}

REQUIRED_STR_FIELDS = ["username", "platform"]

# The month after the period must still be a valid datetime
MIN_ARCHIVE_YEAR = 1
MAX_ARCHIVE_YEAR = 9998


@dataclass(frozen=True)
class DownloadRequest:
    username: str
    platform: str


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def validate_download_request(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    username = data.get("username")
    if _is_non_empty_str(username) and "/" in username:
        errors.append("Field 'username' must not contain '/'")

    platform = data.get("platform")
    if _is_non_empty_str(platform) and platform not in SUPPORTED_PLATFORMS:
        errors.append(
            f"Unsupported platform '{platform}'. Use one of: {', '.join(sorted(SUPPORTED_PLATFORMS))}"
        )

    return errors


def parse_download_request(body: str) -> DownloadRequest:
    """Parse a raw request body into a DownloadRequest.

    Raises MalformedRequest on invalid JSON, a non-object payload or
    validation errors.
    """
    try:
        data = json.loads(body) if body else None
    except (json.JSONDecodeError, TypeError, RecursionError) as e:
        raise MalformedRequest(f"Request body is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedRequest("Request body must be a JSON object")

    errors = validate_download_request(data)
    if errors:
        raise MalformedRequest("; ".join(errors))
    return DownloadRequest(username=data["username"].strip(), platform=data["platform"])


def parse_archive_period(archive_id: str) -> Tuple[int, int]:
    """Read (year, month) from the trailing ``.../YYYY/MM`` segments of an archive id."""
    segments = [s for s in archive_id.rstrip("/").split("/") if s]
    if len(segments) < 2:
        raise ValueError(f"Archive id has no YYYY/MM suffix: {archive_id}")
    try:
        year = int(segments[-2])
        month = int(segments[-1])
    except ValueError:
        raise ValueError(f"Archive id has a non-numeric YYYY/MM suffix: {archive_id}")
    if not MIN_ARCHIVE_YEAR <= year <= MAX_ARCHIVE_YEAR:
        raise ValueError(f"Archive id has year out of range: {archive_id}")
    if not 1 <= month <= 12:
        raise ValueError(f"Archive id has month out of range: {archive_id}")
    return year, month
