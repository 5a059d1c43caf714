"""Locate and validate the file yt-dlp produced for a successful attempt."""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass

from engine.errors import OutputEmptyError, OutputMissingError, OutputTooLargeError
from engine.paths import is_within_base
from engine.supervisor import AUDIO_FORMAT, predicted_output_path

logger = logging.getLogger(__name__)

_DESTINATION_RE = re.compile(r"^\[(?P<stage>[A-Za-z]+)\]\s+Destination:\s*(?P<path>.+?)\s*$")
_ALREADY_DOWNLOADED_RE = re.compile(r"^\[download\]\s+(?P<path>.+?) has already been downloaded")
_PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp", ".tmp")


@dataclass(frozen=True)
class ResolvedOutput:
    path: str
    size_bytes: int


def parse_destination(output_text):
    """Return the last audio destination announced by yt-dlp, if any.

    ``[ExtractAudio]`` announcements win over ``[download]`` ones because the
    extractor's file is the converted artifact.
    """
    extract_audio = None
    download = None
    for raw_line in (output_text or "").splitlines():
        line = raw_line.strip()
        match = _DESTINATION_RE.match(line)
        if match:
            if match.group("stage") == "ExtractAudio":
                extract_audio = match.group("path")
            elif match.group("stage") == "download":
                download = match.group("path")
            continue
        match = _ALREADY_DOWNLOADED_RE.match(line)
        if match:
            download = match.group("path")
    return extract_audio or download


def _scan_workspace(workspace_path):
    found = []
    try:
        entries = list(os.scandir(workspace_path))
    except OSError:
        return found
    for entry in entries:
        name = entry.name
        if name.endswith(_PARTIAL_SUFFIXES):
            continue
        if not name.lower().endswith(f".{AUDIO_FORMAT}"):
            continue
        if entry.is_file():
            found.append(entry.path)
    return sorted(found)


class OutputResolver:
    def __init__(self, *, max_output_bytes, retries=3, interval_seconds=0.25, sleep=time.sleep):
        self.max_output_bytes = int(max_output_bytes)
        self.retries = max(0, int(retries))
        self.interval_seconds = max(0.0, float(interval_seconds))
        self._sleep = sleep

    def candidates(self, job, attempt):
        workspace = job.workspace_path
        ordered = []
        announced = parse_destination(attempt.output_text)
        # A bare "[download] Destination" names the source stream, not the WAV.
        if announced and announced.lower().endswith(f".{AUDIO_FORMAT}"):
            if not os.path.isabs(announced):
                announced = os.path.join(workspace, announced)
            ordered.append(announced)
        ordered.append(predicted_output_path(workspace, job.request.output_name))
        ordered.extend(_scan_workspace(workspace))
        unique = []
        for path in ordered:
            if not is_within_base(path, workspace):
                logger.warning("Ignoring output candidate outside workspace: %s", path)
                continue
            if path not in unique:
                unique.append(path)
        return unique

    def _locate(self, job, attempt):
        for attempt_index in range(self.retries + 1):
            for path in self.candidates(job, attempt):
                if os.path.isfile(path):
                    return path
            if attempt_index < self.retries:
                self._sleep(self.interval_seconds)
        return None

    def resolve(self, job, attempt) -> ResolvedOutput:
        path = self._locate(job, attempt)
        if path is None:
            logger.error("Output file not found for job_id=%s in %s", job.id, job.workspace_path)
            raise OutputMissingError()
        try:
            size = os.path.getsize(path)
        except OSError as exc:
            raise OutputMissingError() from exc
        if size <= 0:
            raise OutputEmptyError()
        if size > self.max_output_bytes:
            logger.warning(
                "Output for job_id=%s is %d bytes (limit %d)", job.id, size, self.max_output_bytes
            )
            raise OutputTooLargeError(
                f"Converted file is too large (max {self.max_output_bytes // (1024 * 1024)}MB). "
                "Please try a shorter video."
            )
        logger.info("Resolved output for job_id=%s: %s (%d bytes)", job.id, path, size)
        return ResolvedOutput(path=path, size_bytes=size)
