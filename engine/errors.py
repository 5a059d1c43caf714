"""Conversion error taxonomy and the yt-dlp diagnostic classifier.

Every failure that can reach the HTTP layer is a :class:`ConversionError`
carrying the status code and the single human-readable message exposed to
callers. Raw diagnostics stay in the logs.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    UNAVAILABLE = "unavailable"
    AUTH_REQUIRED = "auth_required"
    FORMAT_UNAVAILABLE = "format_unavailable"
    SIZE_EXCEEDED = "size_exceeded"
    DURATION_EXCEEDED = "duration_exceeded"
    BOT_DETECTION_SUSPECTED = "bot_detection_suspected"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


CATEGORY_STATUS = {
    ErrorCategory.UNAVAILABLE: 400,
    ErrorCategory.AUTH_REQUIRED: 403,
    ErrorCategory.FORMAT_UNAVAILABLE: 400,
    ErrorCategory.SIZE_EXCEEDED: 400,
    ErrorCategory.DURATION_EXCEEDED: 400,
    ErrorCategory.BOT_DETECTION_SUSPECTED: 500,
    ErrorCategory.NETWORK_ERROR: 500,
    ErrorCategory.UNKNOWN: 500,
}

CATEGORY_MESSAGES = {
    ErrorCategory.UNAVAILABLE: "Video is unavailable or private",
    ErrorCategory.AUTH_REQUIRED: "This video requires sign-in (age-restricted or members-only)",
    ErrorCategory.FORMAT_UNAVAILABLE: "No downloadable audio format is available for this video",
    ErrorCategory.SIZE_EXCEEDED: "Video file is too large (max {max_filesize_mb}MB)",
    ErrorCategory.DURATION_EXCEEDED: "Video is too long (max {max_duration_minutes} minutes)",
    ErrorCategory.BOT_DETECTION_SUSPECTED: (
        "The video host is refusing automated requests right now. Please try again later."
    ),
    ErrorCategory.NETWORK_ERROR: "Network error while fetching the video. Please try again.",
    ErrorCategory.UNKNOWN: "Conversion failed. Please check the URL and try again.",
}

# Ordered: the first category with a matching marker wins. Bot checks come
# before auth because "sign in to confirm you're not a bot" would otherwise
# read as an age gate.
_DIAGNOSTIC_SIGNAL_MAP: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.BOT_DETECTION_SUSPECTED,
        (
            "confirm you're not a bot",
            "confirm you’re not a bot",
            "not a bot",
            "http error 429",
            "too many requests",
            "captcha",
        ),
    ),
    (
        ErrorCategory.SIZE_EXCEEDED,
        (
            "larger than max-filesize",
            "max-filesize",
            "file is too large",
        ),
    ),
    (
        ErrorCategory.DURATION_EXCEEDED,
        (
            "does not pass filter",
            "max-duration",
        ),
    ),
    (
        ErrorCategory.AUTH_REQUIRED,
        (
            "sign in to confirm your age",
            "age-restricted",
            "age restricted",
            "members-only",
            "members only",
            "join this channel",
            "login required",
            "requires authentication",
        ),
    ),
    (
        ErrorCategory.UNAVAILABLE,
        (
            "video unavailable",
            "this video is unavailable",
            "private video",
            "this video is private",
            "has been removed",
            "not available in your country",
            "no longer available",
        ),
    ),
    (
        ErrorCategory.FORMAT_UNAVAILABLE,
        (
            "requested format is not available",
            "requested format not available",
            "no video formats found",
            "no audio formats",
        ),
    ),
    (
        ErrorCategory.NETWORK_ERROR,
        (
            "unable to download webpage",
            "connection reset",
            "connection refused",
            "timed out",
            "temporary failure in name resolution",
            "name or service not known",
            "network is unreachable",
            "http error 5",
        ),
    ),
)


def classify_diagnostic(text: str | None) -> ErrorCategory:
    if not text:
        return ErrorCategory.UNKNOWN
    lowered = str(text).lower()
    for category, markers in _DIAGNOSTIC_SIGNAL_MAP:
        if any(marker in lowered for marker in markers):
            return category
    return ErrorCategory.UNKNOWN


def describe_category(category: ErrorCategory, limits: dict | None = None) -> str:
    limits = dict(limits or {})
    max_duration = limits.get("max_duration_seconds") or 0
    values = {
        "max_filesize_mb": limits.get("max_filesize_mb", "?"),
        "max_duration_minutes": (max_duration // 60) if max_duration else "?",
    }
    return CATEGORY_MESSAGES[category].format(**values)


class ConversionError(Exception):
    """Base for every failure that maps onto exactly one HTTP error response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidInputError(ConversionError):
    status_code = 400
    default_message = "Invalid request"


class WorkspaceError(ConversionError):
    status_code = 500
    default_message = "Could not prepare temporary storage for the conversion"


class ToolLaunchError(ConversionError):
    status_code = 500
    default_message = "Conversion process failed to start"


class ConversionTimedOutError(ConversionError):
    status_code = 504
    default_message = "Conversion timed out. Please try a shorter video."


class ConversionStalledError(ConversionError):
    status_code = 504
    default_message = "Conversion stalled with no progress. Please try again."


class OutputMissingError(ConversionError):
    status_code = 500
    default_message = "Conversion completed but output file not found"


class OutputEmptyError(ConversionError):
    status_code = 500
    default_message = "Conversion produced an empty file"


class OutputTooLargeError(ConversionError):
    status_code = 400
    default_message = "Converted file is too large. Please try a shorter video."


class ClassifiedConversionError(ConversionError):
    """A failure whose message comes from :func:`classify_diagnostic`."""

    def __init__(self, category: ErrorCategory, *, limits: dict | None = None, status_code: int | None = None):
        self.category = category
        super().__init__(
            describe_category(category, limits),
            status_code=status_code if status_code is not None else CATEGORY_STATUS[category],
        )


class DurationExceededError(ClassifiedConversionError):
    def __init__(self, *, limits: dict | None = None):
        super().__init__(ErrorCategory.DURATION_EXCEEDED, limits=limits)


class AllProfilesExhaustedError(ClassifiedConversionError):
    """Every extraction profile failed; surfaces the last attempt's classification."""

    def __init__(self, last_attempt, *, limits: dict | None = None):
        self.last_attempt = last_attempt
        diagnostic = getattr(last_attempt, "diagnostic_text", "") if last_attempt is not None else ""
        category = classify_diagnostic(diagnostic)
        status = 403 if category is ErrorCategory.AUTH_REQUIRED else 400
        super().__init__(category, limits=limits, status_code=status)
