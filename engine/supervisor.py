"""Supervision of a single yt-dlp invocation.

The supervisor spawns yt-dlp without a shell, drains stdout and stderr on
reader threads so elapsed time since the last byte can be measured, and
resolves every invocation to exactly one :class:`AttemptOutcome`:

* ``SUCCESS``   - exit status 0 (the caller still has to find the file)
* ``FAILED``    - non-zero exit status; stderr becomes the diagnostic
* ``TIMED_OUT`` - still running after the hard timeout
* ``STALLED``   - no output at all within the stall window

Timed-out and stalled processes are sent SIGTERM, then SIGKILL once the grace
period passes. The process is confirmed gone before ``run`` returns.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum

from engine.errors import ToolLaunchError
from engine.json_utils import log_event
from engine.profiles import ExtractionProfile

logger = logging.getLogger(__name__)

AUDIO_FORMAT = "wav"
_READ_CHUNK = 64 * 1024
_DIAGNOSTIC_LOG_CHARS = 4000


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    STALLED = "stalled"


@dataclass(frozen=True)
class ProcessRun:
    outcome: AttemptOutcome
    return_code: int | None
    stdout: str
    stderr: str
    elapsed_seconds: float


@dataclass(frozen=True)
class AttemptResult:
    profile: ExtractionProfile
    outcome: AttemptOutcome
    diagnostic_text: str = ""
    output_text: str = ""
    return_code: int | None = None
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


def output_template(workspace_path, output_name):
    return os.path.join(workspace_path, f"{output_name}.%(ext)s")


def predicted_output_path(workspace_path, output_name):
    return os.path.join(workspace_path, f"{output_name}.{AUDIO_FORMAT}")


def build_ytdlp_argv(settings, job, profile_args=()):
    """Return the yt-dlp argv list for ``job`` (no shell involved)."""
    argv = list(settings.ytdlp_command)
    argv.extend(
        [
            "--extract-audio",
            "--audio-format",
            AUDIO_FORMAT,
            "--audio-quality",
            "0",
            "--no-playlist",
            "--newline",
            "--no-color",
            "--ignore-config",
            "--no-mtime",
            "--max-filesize",
            f"{settings.max_filesize_mb}M",
            "--match-filter",
            f"duration <=? {settings.max_duration_seconds}",
        ]
    )
    if settings.ffmpeg_location:
        argv.extend(["--ffmpeg-location", settings.ffmpeg_location])
    argv.extend(["--output", output_template(job.workspace_path, job.request.output_name)])
    argv.extend(profile_args)
    # "--" keeps a URL that starts with "-" from being read as an option.
    argv.extend(["--", job.request.source_url])
    return argv


def _signal_process(proc, sig):
    try:
        if os.name == "posix":
            os.killpg(proc.pid, sig)
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass
    except OSError as exc:
        logger.debug("Signal %s to pid=%s failed: %s", sig, proc.pid, exc)


def terminate_process(proc, *, grace_sec=3.0):
    """Terminate ``proc`` and wait for it, escalating to a kill after ``grace_sec``.

    Safe to call on a process that has already exited.
    """
    if proc is None:
        return
    if proc.poll() is not None:
        return
    _signal_process(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=max(0.0, grace_sec))
        return
    except subprocess.TimeoutExpired:
        pass
    logger.warning("pid=%s ignored SIGTERM for %.1fs; killing", proc.pid, grace_sec)
    _signal_process(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
    proc.wait()


class _ActivityClock:
    def __init__(self, clock):
        self._clock = clock
        self._lock = threading.Lock()
        self._last = clock()

    def touch(self):
        with self._lock:
            self._last = self._clock()

    def idle_for(self):
        with self._lock:
            return self._clock() - self._last


def _pump(stream, chunks, activity):
    try:
        while True:
            chunk = stream.read1(_READ_CHUNK)
            if not chunk:
                break
            chunks.append(chunk)
            activity.touch()
    except (OSError, ValueError) as exc:
        logger.debug("Output reader stopped: %s", exc)
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _decode(chunks):
    return b"".join(chunks).decode("utf-8", errors="replace")


class SubprocessSupervisor:
    def __init__(self, settings, selector, *, poll_interval=0.05, clock=time.monotonic):
        self.settings = settings
        self.selector = selector
        self.poll_interval = poll_interval
        self._clock = clock

    def run(self, profile, job) -> AttemptResult:
        argv = build_ytdlp_argv(self.settings, job, self.selector.arguments_for(profile))
        log_event(
            logging.INFO,
            "ATTEMPT_START",
            job_id=job.id,
            profile=profile.name,
            attempt=len(job.attempts) + 1,
            url=job.request.source_url,
        )
        run = self.run_command(argv, cwd=job.workspace_path)
        result = AttemptResult(
            profile=profile,
            outcome=run.outcome,
            diagnostic_text=run.stderr,
            output_text=run.stdout,
            return_code=run.return_code,
            elapsed_seconds=run.elapsed_seconds,
        )
        log_event(
            logging.INFO if result.succeeded else logging.WARNING,
            "ATTEMPT_RESULT",
            job_id=job.id,
            profile=profile.name,
            outcome=result.outcome,
            return_code=result.return_code,
            elapsed_seconds=round(result.elapsed_seconds, 3),
            stderr_tail=None if result.succeeded else result.diagnostic_text[-_DIAGNOSTIC_LOG_CHARS:],
        )
        return result

    def run_command(self, argv, *, cwd=None) -> ProcessRun:
        hard_timeout = float(self.settings.hard_timeout_seconds)
        stall_timeout = float(self.settings.stall_timeout_seconds)
        grace = float(self.settings.kill_grace_seconds)

        started = self._clock()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=(os.name == "posix"),
            )
        except OSError as exc:
            logger.error("Could not start %s: %s", argv[0] if argv else "<empty argv>", exc)
            raise ToolLaunchError() from exc

        activity = _ActivityClock(self._clock)
        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        readers = [
            threading.Thread(
                target=_pump,
                args=(proc.stdout, stdout_chunks, activity),
                name=f"ytdlp-stdout-{proc.pid}",
                daemon=True,
            ),
            threading.Thread(
                target=_pump,
                args=(proc.stderr, stderr_chunks, activity),
                name=f"ytdlp-stderr-{proc.pid}",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        outcome = None
        try:
            while True:
                if proc.poll() is not None:
                    break
                if self._clock() - started >= hard_timeout:
                    outcome = AttemptOutcome.TIMED_OUT
                    break
                if activity.idle_for() >= stall_timeout:
                    outcome = AttemptOutcome.STALLED
                    break
                time.sleep(self.poll_interval)
        finally:
            if proc.poll() is None:
                if outcome is not None:
                    logger.warning(
                        "Terminating pid=%s (%s) after %.1fs",
                        proc.pid,
                        outcome.value,
                        self._clock() - started,
                    )
                terminate_process(proc, grace_sec=grace)
            return_code = proc.wait()
            for reader in readers:
                # A surviving grandchild can hold the pipe open; do not wait on it forever.
                reader.join(timeout=grace + 1.0)

        if outcome is None:
            outcome = AttemptOutcome.SUCCESS if return_code == 0 else AttemptOutcome.FAILED
        return ProcessRun(
            outcome=outcome,
            return_code=return_code,
            stdout=_decode(stdout_chunks),
            stderr=_decode(stderr_chunks),
            elapsed_seconds=self._clock() - started,
        )
