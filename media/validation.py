"""Media validation helpers."""

from __future__ import annotations

import logging

from media.ffprobe import get_media_duration

logger = logging.getLogger(__name__)


def exceeds_duration_limit(
    file_path: str,
    max_seconds: float,
    *,
    command=("ffprobe",),
    timeout: float = 15,
) -> bool:
    """Report whether a media file runs longer than ``max_seconds``.

    The actual duration is resolved with :func:`media.ffprobe.get_media_duration`.

    Returns:
        ``True`` only when the probe succeeds and the duration is strictly
        greater than ``max_seconds``. ``False`` otherwise.

    Constraints:
        - ``max_seconds`` must be positive; anything else disables the check.
        - Any ffprobe/probe parsing error is handled non-fatally and returns
          ``False``. yt-dlp's match filter already guards duration up front,
          so this is a second line rather than the only one.
    """
    if max_seconds is None or max_seconds <= 0:
        logger.warning("Duration check skipped: max_seconds must be positive")
        return False

    try:
        actual_duration_seconds = get_media_duration(file_path, command=command, timeout=timeout)
    except (RuntimeError, ValueError):
        logger.exception("Failed to probe media duration for path=%s", file_path)
        return False

    return actual_duration_seconds > float(max_seconds)
