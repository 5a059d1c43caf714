"""Conversion job lifecycle.

A :class:`ConversionJob` owns one workspace from ``open_job`` until it is
finalized, which happens exactly once whether the job streams a file, fails,
times out, or the client walks away mid-download.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from engine.errors import (
    AllProfilesExhaustedError,
    ClassifiedConversionError,
    ConversionStalledError,
    ConversionTimedOutError,
    DurationExceededError,
    ErrorCategory,
    OutputMissingError,
    classify_diagnostic,
)
from engine.json_utils import log_event
from engine.profiles import ProfileSelector
from engine.resolver import OutputResolver, ResolvedOutput
from engine.supervisor import AttemptOutcome, AttemptResult, SubprocessSupervisor
from engine.validation import ConversionRequest
from engine.workspace import WorkspaceManager, new_job_id
from media.validation import exceeds_duration_limit

logger = logging.getLogger(__name__)

_FILTER_CATEGORIES = (ErrorCategory.SIZE_EXCEEDED, ErrorCategory.DURATION_EXCEEDED)


@dataclass
class ConversionJob:
    id: str
    workspace_path: str
    request: ConversionRequest
    started_at: datetime
    attempts: list[AttemptResult] = field(default_factory=list)
    finalizer: Optional[Callable[["ConversionJob"], None]] = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)
    _finalized: bool = field(default=False, init=False, repr=False, compare=False)
    _handed_off: bool = field(default=False, init=False, repr=False, compare=False)

    @property
    def last_attempt(self) -> AttemptResult | None:
        return self.attempts[-1] if self.attempts else None

    @property
    def finalized(self) -> bool:
        return self._finalized

    def record(self, attempt: AttemptResult) -> None:
        self.attempts.append(attempt)

    def hand_off(self) -> None:
        """Pass finalization to whoever streams the output."""
        self._handed_off = True

    @contextmanager
    def hold(self):
        """Finalize on exit unless :meth:`hand_off` was called inside the block."""
        try:
            yield self
        finally:
            if not self._handed_off:
                self.finalize()

    def finalize(self) -> bool:
        """Run the finalizer once. Returns ``True`` only for the call that ran it."""
        with self._lock:
            if self._finalized:
                return False
            self._finalized = True
        if self.finalizer is not None:
            try:
                self.finalizer(self)
            except Exception:
                logger.exception("Finalizer failed for job_id=%s", self.id)
        return True


class ConversionController:
    def __init__(
        self,
        settings,
        *,
        workspaces=None,
        selector=None,
        supervisor=None,
        resolver=None,
        job_id_factory=new_job_id,
        sleep=time.sleep,
    ):
        self.settings = settings
        self.workspaces = workspaces or WorkspaceManager(settings.scratch_root)
        self.selector = selector or ProfileSelector.from_settings(settings)
        self.supervisor = supervisor or SubprocessSupervisor(settings, self.selector)
        self.resolver = resolver or OutputResolver(
            max_output_bytes=settings.max_output_bytes,
            retries=settings.resolve_retries,
            interval_seconds=settings.resolve_interval_seconds,
        )
        self._job_id_factory = job_id_factory
        self._sleep = sleep

    def open_job(self, request: ConversionRequest) -> ConversionJob:
        job_id = self._job_id_factory()
        workspace_path = self.workspaces.create(job_id)
        return ConversionJob(
            id=job_id,
            workspace_path=workspace_path,
            request=request,
            started_at=datetime.now(timezone.utc),
            finalizer=self._release,
        )

    def _release(self, job: ConversionJob) -> None:
        delay = float(self.settings.cleanup_delay_seconds or 0)
        log_event(
            logging.INFO,
            "JOB_FINALIZED",
            job_id=job.id,
            attempts=[attempt.outcome for attempt in job.attempts],
            cleanup_delay_seconds=delay,
            duration_seconds=round((datetime.now(timezone.utc) - job.started_at).total_seconds(), 3),
        )
        if delay <= 0:
            self.workspaces.destroy(job.workspace_path)
            return
        timer = threading.Timer(delay, self.workspaces.destroy, args=(job.workspace_path,))
        timer.daemon = True
        timer.start()

    def run(self, job: ConversionJob) -> ResolvedOutput:
        """Try each profile in order until one produces a usable file.

        Attempts are strictly sequential. A timeout or stall ends the job
        immediately; plain failures move on to the next profile after the
        selector's backoff delay.
        """
        while True:
            profile = self.selector.next_profile(job)
            if profile is None:
                break
            delay = self.selector.backoff_delay(len(job.attempts))
            if delay > 0:
                self._sleep(delay)
            attempt = self.supervisor.run(profile, job)
            job.record(attempt)
            if attempt.outcome is AttemptOutcome.TIMED_OUT:
                raise ConversionTimedOutError()
            if attempt.outcome is AttemptOutcome.STALLED:
                raise ConversionStalledError()
            if attempt.succeeded:
                return self._finish(job, attempt)

        log_event(
            logging.ERROR,
            "ALL_PROFILES_EXHAUSTED",
            job_id=job.id,
            profiles=[attempt.profile.name for attempt in job.attempts],
        )
        raise AllProfilesExhaustedError(job.last_attempt, limits=self.settings.public_limits())

    def _finish(self, job: ConversionJob, attempt: AttemptResult) -> ResolvedOutput:
        try:
            output = self.resolver.resolve(job, attempt)
        except OutputMissingError:
            # yt-dlp exits 0 when a size or duration filter skips the video.
            category = classify_diagnostic(f"{attempt.output_text}\n{attempt.diagnostic_text}")
            if category in _FILTER_CATEGORIES:
                raise ClassifiedConversionError(category, limits=self.settings.public_limits()) from None
            raise

        if self.settings.enable_duration_validation and exceeds_duration_limit(
            output.path,
            self.settings.max_duration_seconds,
            command=self.settings.ffprobe_command,
            timeout=self.settings.probe_timeout_seconds,
        ):
            raise DurationExceededError(limits=self.settings.public_limits())
        return output
