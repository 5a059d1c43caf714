"""Application settings constants and environment-derived configuration."""

from __future__ import annotations

import logging
import os
import shlex
import tempfile
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

APP_NAME = "WaveForce"
ENV_PREFIX = "WAVEFORCE_"

# Toggle for enabling or disabling the ffprobe duration post-check.
ENABLE_DURATION_VALIDATION = True

DEFAULT_PORT = 3000
DEFAULT_MAX_DURATION_SECONDS = 1200
# Ceiling handed to yt-dlp for the downloaded source stream.
DEFAULT_MAX_FILESIZE_MB = 100
# Ceiling applied to the converted WAV before it is streamed back.
DEFAULT_MAX_OUTPUT_MB = 50
DEFAULT_HARD_TIMEOUT_SECONDS = 600.0
DEFAULT_STALL_TIMEOUT_SECONDS = 60.0
DEFAULT_KILL_GRACE_SECONDS = 3.0
DEFAULT_CLEANUP_DELAY_SECONDS = 0.0
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 2.0
DEFAULT_SESSION_TTL_SECONDS = 1800.0
DEFAULT_RESOLVE_RETRIES = 3
DEFAULT_RESOLVE_INTERVAL_SECONDS = 0.25
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    scratch_root: str = field(default_factory=tempfile.gettempdir)
    ytdlp_command: tuple[str, ...] = ("yt-dlp",)
    ffmpeg_command: tuple[str, ...] = ("ffmpeg",)
    ffprobe_command: tuple[str, ...] = ("ffprobe",)
    ffmpeg_location: str | None = None
    max_duration_seconds: int = DEFAULT_MAX_DURATION_SECONDS
    max_filesize_mb: int = DEFAULT_MAX_FILESIZE_MB
    max_output_mb: int = DEFAULT_MAX_OUTPUT_MB
    hard_timeout_seconds: float = DEFAULT_HARD_TIMEOUT_SECONDS
    stall_timeout_seconds: float = DEFAULT_STALL_TIMEOUT_SECONDS
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    cleanup_delay_seconds: float = DEFAULT_CLEANUP_DELAY_SECONDS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    session_ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS
    profiles: tuple[str, ...] = ()
    resolve_retries: int = DEFAULT_RESOLVE_RETRIES
    resolve_interval_seconds: float = DEFAULT_RESOLVE_INTERVAL_SECONDS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    enable_duration_validation: bool = ENABLE_DURATION_VALIDATION
    cors_origins: tuple[str, ...] = ("*",)
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    log_dir: str | None = None
    log_level: str = "INFO"

    @property
    def max_output_bytes(self) -> int:
        return self.max_output_mb * 1024 * 1024

    def public_limits(self) -> dict[str, object]:
        """Limits that are safe to report to callers."""
        return {
            "max_duration_seconds": self.max_duration_seconds,
            "max_filesize_mb": self.max_filesize_mb,
            "max_output_mb": self.max_output_mb,
            "hard_timeout_seconds": self.hard_timeout_seconds,
            "stall_timeout_seconds": self.stall_timeout_seconds,
        }


def _read(environ, name):
    value = environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _number(environ, name, default, cast, *, minimum=0):
    raw = _read(environ, name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s=%r; using default %r", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Ignoring out-of-range %s=%r; using default %r", name, raw, default)
        return default
    return value


def _flag(environ, name, default):
    raw = _read(environ, name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("Ignoring invalid %s=%r; using default %r", name, raw, default)
    return default


def _command(environ, name, default):
    raw = _read(environ, name)
    if raw is None:
        return default
    try:
        parts = tuple(shlex.split(raw))
    except ValueError:
        logger.warning("Ignoring unparseable %s=%r", name, raw)
        return default
    return parts or default


def _csv(environ, name, default):
    raw = _read(environ, name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def load_settings(environ=None) -> Settings:
    """Build :class:`Settings` from environment variables.

    Every variable is optional. Numeric values that fail to parse or fall out
    of range are logged and replaced with the default rather than aborting
    startup.
    """
    env = os.environ if environ is None else environ
    p = ENV_PREFIX
    return Settings(
        port=_number(env, "PORT", DEFAULT_PORT, int, minimum=1),
        scratch_root=_read(env, f"{p}SCRATCH_DIR") or tempfile.gettempdir(),
        ytdlp_command=_command(env, f"{p}YTDLP_CMD", ("yt-dlp",)),
        ffmpeg_command=_command(env, f"{p}FFMPEG_CMD", ("ffmpeg",)),
        ffprobe_command=_command(env, f"{p}FFPROBE_CMD", ("ffprobe",)),
        ffmpeg_location=_read(env, f"{p}FFMPEG_LOCATION"),
        max_duration_seconds=_number(env, f"{p}MAX_DURATION_SECONDS", DEFAULT_MAX_DURATION_SECONDS, int, minimum=1),
        max_filesize_mb=_number(env, f"{p}MAX_FILESIZE_MB", DEFAULT_MAX_FILESIZE_MB, int, minimum=1),
        max_output_mb=_number(env, f"{p}MAX_OUTPUT_MB", DEFAULT_MAX_OUTPUT_MB, int, minimum=1),
        hard_timeout_seconds=_number(env, f"{p}HARD_TIMEOUT_SECONDS", DEFAULT_HARD_TIMEOUT_SECONDS, float),
        stall_timeout_seconds=_number(env, f"{p}STALL_TIMEOUT_SECONDS", DEFAULT_STALL_TIMEOUT_SECONDS, float),
        kill_grace_seconds=_number(env, f"{p}KILL_GRACE_SECONDS", DEFAULT_KILL_GRACE_SECONDS, float),
        cleanup_delay_seconds=_number(env, f"{p}CLEANUP_DELAY_SECONDS", DEFAULT_CLEANUP_DELAY_SECONDS, float),
        backoff_seconds=_number(env, f"{p}BACKOFF_SECONDS", DEFAULT_BACKOFF_SECONDS, float),
        backoff_max_seconds=_number(env, f"{p}BACKOFF_MAX_SECONDS", DEFAULT_BACKOFF_MAX_SECONDS, float),
        session_ttl_seconds=_number(env, f"{p}SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS, float),
        profiles=_csv(env, f"{p}PROFILES", ()),
        resolve_retries=_number(env, f"{p}RESOLVE_RETRIES", DEFAULT_RESOLVE_RETRIES, int),
        resolve_interval_seconds=_number(
            env, f"{p}RESOLVE_INTERVAL_SECONDS", DEFAULT_RESOLVE_INTERVAL_SECONDS, float
        ),
        probe_timeout_seconds=_number(env, f"{p}PROBE_TIMEOUT_SECONDS", DEFAULT_PROBE_TIMEOUT_SECONDS, float),
        enable_duration_validation=_flag(env, f"{p}ENABLE_DURATION_VALIDATION", ENABLE_DURATION_VALIDATION),
        cors_origins=_csv(env, f"{p}CORS_ORIGINS", ("*",)) or ("*",),
        max_body_bytes=_number(env, f"{p}MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES, int, minimum=1),
        log_dir=_read(env, f"{p}LOG_DIR"),
        log_level=(_read(env, f"{p}LOG_LEVEL") or "INFO").upper(),
    )
