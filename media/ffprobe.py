"""Thin ffprobe wrapper used by the duration post-check."""

from __future__ import annotations

import json
import subprocess

_DURATION_ENTRIES = ("-show_entries", "format=duration")


def _run_probe(argv, file_path, timeout):
    try:
        return subprocess.run(
            argv,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
            stdin=subprocess.DEVNULL,
        ).stdout
    except FileNotFoundError as exc:
        raise RuntimeError(f"{argv[0]} is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"{argv[0]} gave no answer for {file_path} within {timeout:g}s") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip().splitlines()
        raise RuntimeError(f"{argv[0]} exited {exc.returncode} for {file_path}: {detail[-1] if detail else ''}") from exc


def get_media_duration(file_path: str, *, command=("ffprobe",), timeout: float = 15) -> float:
    """Duration of ``file_path`` in seconds, read from the container format.

    ``command`` may carry leading arguments so a wrapper can stand in for ffprobe.

    Raises:
        RuntimeError: the probe could not run or exited non-zero.
        ValueError: the probe ran but reported no usable duration.
    """
    argv = [*command, "-v", "error", *_DURATION_ENTRIES, "-of", "json", file_path]
    stdout = _run_probe(argv, file_path, timeout)

    try:
        raw = (json.loads(stdout or "{}").get("format") or {}).get("duration")
    except (json.JSONDecodeError, AttributeError) as exc:
        raise ValueError(f"unreadable probe output for {file_path}") from exc
    try:
        duration = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"no numeric duration reported for {file_path}: {raw!r}") from exc
    if duration < 0:
        raise ValueError(f"negative duration reported for {file_path}: {duration}")
    return duration
