"""Request validation and filename sanitization."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass

from engine.errors import InvalidInputError

MAX_NAME_LENGTH = 200
DEFAULT_NAME_PREFIX = "waveforce"

_ACCEPTED_URL_RE = re.compile(
    r"^(https?://)?((www|m|music)\.)?(youtube\.com|youtu\.be)/.+",
    re.IGNORECASE,
)
_UNSAFE_NAME_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class ConversionRequest:
    source_url: str
    desired_name: str | None
    output_name: str


def sanitize_filename(name, *, max_length=MAX_NAME_LENGTH):
    """Replace anything outside ``[A-Za-z0-9._-]`` with ``_`` and cap the length.

    Applying it twice yields the same string.
    """
    cleaned = _UNSAFE_NAME_CHARS_RE.sub("_", str(name or ""))
    return cleaned[:max_length]


def _random_token(nbytes=8):
    return secrets.token_hex(nbytes)


def default_output_name(token=None):
    return f"{DEFAULT_NAME_PREFIX}_{token or _random_token()}"


def is_accepted_url(url):
    if not isinstance(url, str):
        return False
    return bool(_ACCEPTED_URL_RE.match(url.strip()))


def validate_request(url, filename=None, *, token_factory=_random_token) -> ConversionRequest:
    if url is None or (isinstance(url, str) and not url.strip()):
        raise InvalidInputError("YouTube URL is required")
    if not isinstance(url, str):
        raise InvalidInputError("YouTube URL must be a string")
    url = url.strip()
    if not is_accepted_url(url):
        raise InvalidInputError("Invalid YouTube URL")

    if filename is not None and not isinstance(filename, str):
        raise InvalidInputError("filename must be a string")

    token = token_factory()
    desired = sanitize_filename(filename).strip("._") if filename else ""
    if desired:
        # Leave room for the random suffix inside the length cap.
        stem = f"{desired[: MAX_NAME_LENGTH - len(token) - 1]}_{token}"
    else:
        stem = default_output_name(token)
    return ConversionRequest(
        source_url=url,
        desired_name=filename if desired else None,
        output_name=sanitize_filename(stem),
    )
