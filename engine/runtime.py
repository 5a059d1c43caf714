import logging
import os
import subprocess
import sys

from yt_dlp.version import __version__ as ytdlp_version

logger = logging.getLogger(__name__)


class ToolProbeError(RuntimeError):
    pass


def get_runtime_info():
    return {
        "app_version": os.environ.get("WAVEFORCE_VERSION", "0.1.0"),
        "python_version": sys.version.split()[0],
        "yt_dlp_package_version": ytdlp_version,
    }


def probe_tool_version(command, version_flag, *, timeout=10.0):
    """Run ``<command> <version_flag>`` and return the first line it prints."""
    argv = [*command, version_flag]
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            stdin=subprocess.DEVNULL,
        )
    except FileNotFoundError as exc:
        raise ToolProbeError(f"{command[0]} is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolProbeError(f"{command[0]} did not answer {version_flag} within {timeout:g}s") from exc
    except OSError as exc:
        raise ToolProbeError(f"{command[0]} could not be started: {exc}") from exc
    if completed.returncode != 0:
        raise ToolProbeError(f"{command[0]} {version_flag} exited with code {completed.returncode}")
    lines = (completed.stdout or "").strip().splitlines()
    if not lines:
        raise ToolProbeError(f"{command[0]} {version_flag} printed nothing")
    return lines[0].strip()


def probe_tools(settings):
    """Version strings of both external tools; raises :class:`ToolProbeError` on the first failure."""
    timeout = settings.probe_timeout_seconds
    return {
        "ytdlp": probe_tool_version(settings.ytdlp_command, "--version", timeout=timeout),
        "ffmpeg": probe_tool_version(settings.ffmpeg_command, "-version", timeout=timeout),
    }


def log_tool_availability(settings):
    for name, command, flag in (
        ("yt-dlp", settings.ytdlp_command, "--version"),
        ("ffmpeg", settings.ffmpeg_command, "-version"),
    ):
        try:
            version = probe_tool_version(command, flag, timeout=settings.probe_timeout_seconds)
        except ToolProbeError as exc:
            logger.error("%s is not available: %s", name, exc)
        else:
            logger.info("%s is available: %s", name, version)
