"""Extraction profiles tried, in order, against yt-dlp."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionProfile:
    name: str
    extra_arguments: tuple[str, ...] = ()
    session_bound: bool = False


def _player_client(client):
    return ("--extractor-args", f"youtube:player_client={client}")


# Priority order. The default profile lets yt-dlp pick its own clients; each
# fallback pins a single client identity that tends to survive a block on
# the others.
DEFAULT_PROFILES: tuple[ExtractionProfile, ...] = (
    ExtractionProfile("default"),
    ExtractionProfile("android", _player_client("android")),
    ExtractionProfile("ios", _player_client("ios")),
    ExtractionProfile("tv_embedded", _player_client("tv_embedded"), session_bound=True),
    ExtractionProfile("mweb", _player_client("mweb"), session_bound=True),
)


def select_profiles(names, table=DEFAULT_PROFILES):
    """Narrow or reorder ``table`` by profile name; unknown names are skipped."""
    if not names:
        return tuple(table)
    by_name = {profile.name: profile for profile in table}
    selected = []
    for name in names:
        profile = by_name.get(name)
        if profile is None:
            logger.warning("Unknown extraction profile %r ignored", name)
            continue
        if profile not in selected:
            selected.append(profile)
    return tuple(selected) or tuple(table)


class SessionTokenCache:
    """Pseudo-session token reused until ``ttl_seconds`` have passed."""

    def __init__(self, ttl_seconds, *, clock=time.monotonic, token_factory=None):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._token_factory = token_factory or (lambda: secrets.token_urlsafe(16))
        self._lock = threading.Lock()
        self._token = None
        self._issued_at = None

    def get(self):
        with self._lock:
            now = self._clock()
            expired = self._issued_at is None or (now - self._issued_at) >= self.ttl_seconds
            if self._token is None or expired:
                self._token = self._token_factory()
                self._issued_at = now
                logger.info("Issued new extraction session token")
            return self._token

    def invalidate(self):
        with self._lock:
            self._token = None
            self._issued_at = None


class ProfileSelector:
    def __init__(
        self,
        profiles=DEFAULT_PROFILES,
        *,
        backoff_seconds=1.0,
        backoff_max_seconds=2.0,
        session_ttl_seconds=1800.0,
        clock=time.monotonic,
        token_factory=None,
    ):
        self.profiles = tuple(profiles)
        if not self.profiles:
            raise ValueError("at least one extraction profile is required")
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self.backoff_max_seconds = max(0.0, float(backoff_max_seconds))
        self.sessions = SessionTokenCache(session_ttl_seconds, clock=clock, token_factory=token_factory)

    @classmethod
    def from_settings(cls, settings):
        return cls(
            select_profiles(settings.profiles),
            backoff_seconds=settings.backoff_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            session_ttl_seconds=settings.session_ttl_seconds,
        )

    def next_profile(self, job):
        """Profile to try after those already recorded on ``job``, or ``None``."""
        index = len(job.attempts)
        if index >= len(self.profiles):
            return None
        return self.profiles[index]

    def arguments_for(self, profile):
        args = list(profile.extra_arguments)
        if not profile.session_bound:
            return args
        session_arg = f"visitor_data={self.sessions.get()}"
        # yt-dlp keeps one extractor-args value per extractor, so fold the
        # token into the existing youtube entry instead of adding another.
        for index in range(len(args) - 1):
            if args[index] == "--extractor-args" and args[index + 1].startswith("youtube:"):
                args[index + 1] = f"{args[index + 1]};{session_arg}"
                return args
        args.extend(["--extractor-args", f"youtube:{session_arg}"])
        return args

    def backoff_delay(self, attempt_index):
        if attempt_index <= 0:
            return 0.0
        delay = self.backoff_seconds * (2 ** (attempt_index - 1))
        return min(delay, self.backoff_max_seconds)
