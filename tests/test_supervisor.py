from __future__ import annotations

import os
import signal
import subprocess
import sys
from types import SimpleNamespace

import pytest

from engine.errors import ToolLaunchError
from engine.profiles import ExtractionProfile, ProfileSelector
from engine.supervisor import (
    AttemptOutcome,
    SubprocessSupervisor,
    build_ytdlp_argv,
    predicted_output_path,
    terminate_process,
)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _supervisor(settings) -> SubprocessSupervisor:
    return SubprocessSupervisor(settings, ProfileSelector(), poll_interval=0.02)


def _job(workspace: str, url: str = "https://youtu.be/abc123") -> SimpleNamespace:
    return SimpleNamespace(
        id="job-1",
        workspace_path=workspace,
        attempts=[],
        request=SimpleNamespace(source_url=url, output_name="clip_tok"),
    )


def test_zero_exit_is_success_with_captured_output(make_settings) -> None:
    run = _supervisor(make_settings()).run_command(_python("print('hello')"))

    assert run.outcome is AttemptOutcome.SUCCESS
    assert run.return_code == 0
    assert run.stdout.strip() == "hello"


def test_non_zero_exit_is_failure_with_diagnostic(make_settings) -> None:
    code = "import sys; sys.stderr.write('ERROR: Private video'); sys.exit(3)"
    run = _supervisor(make_settings()).run_command(_python(code))

    assert run.outcome is AttemptOutcome.FAILED
    assert run.return_code == 3
    assert "Private video" in run.stderr


def test_silent_process_is_stalled_and_reaped(make_settings) -> None:
    settings = make_settings(stall_timeout_seconds=0.5, hard_timeout_seconds=30.0)
    run = _supervisor(settings).run_command(_python("import time; time.sleep(30)"))

    assert run.outcome is AttemptOutcome.STALLED
    assert run.return_code is not None
    assert run.elapsed_seconds < 10


def test_chatty_process_hits_hard_timeout(make_settings) -> None:
    settings = make_settings(stall_timeout_seconds=5.0, hard_timeout_seconds=1.0)
    code = "import time\nwhile True:\n    print('[download] 1.0%', flush=True)\n    time.sleep(0.05)\n"
    run = _supervisor(settings).run_command(_python(code))

    assert run.outcome is AttemptOutcome.TIMED_OUT
    assert run.elapsed_seconds < 10
    assert "[download]" in run.stdout


@pytest.mark.skipif(os.name != "posix", reason="process groups and SIGKILL are posix-only")
def test_process_ignoring_sigterm_is_killed(make_settings) -> None:
    settings = make_settings(stall_timeout_seconds=0.5, kill_grace_seconds=0.3)
    code = (
        "import signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    )
    run = _supervisor(settings).run_command(_python(code))

    assert run.outcome is AttemptOutcome.STALLED
    assert run.return_code == -signal.SIGKILL


def test_missing_executable_raises_launch_error(make_settings) -> None:
    with pytest.raises(ToolLaunchError) as excinfo:
        _supervisor(make_settings()).run_command(["waveforce-no-such-binary-xyz", "--version"])
    assert excinfo.value.message == "Conversion process failed to start"


def test_terminate_process_tolerates_exited_process() -> None:
    proc = subprocess.Popen(_python("pass"))
    proc.wait()

    terminate_process(proc, grace_sec=0.1)
    terminate_process(None)


def test_ytdlp_argv_layout(make_settings) -> None:
    settings = make_settings(ffmpeg_location="/opt/ffmpeg/bin")
    job = _job("/scratch/ws", url="-https://youtu.be/abc123")

    argv = build_ytdlp_argv(settings, job, ["--extractor-args", "youtube:player_client=ios"])

    assert argv[0] == "yt-dlp"
    assert argv[-2:] == ["--", "-https://youtu.be/abc123"]
    for flag in ("--extract-audio", "--no-playlist", "--ignore-config", "--newline"):
        assert flag in argv
    assert argv[argv.index("--audio-format") + 1] == "wav"
    assert argv[argv.index("--max-filesize") + 1] == "100M"
    assert argv[argv.index("--match-filter") + 1] == "duration <=? 1200"
    assert argv[argv.index("--ffmpeg-location") + 1] == "/opt/ffmpeg/bin"
    assert argv[argv.index("--output") + 1] == os.path.join("/scratch/ws", "clip_tok.%(ext)s")
    assert argv.index("--extractor-args") < argv.index("--")


def test_run_reports_attempt_for_profile(make_settings, stub_tool, tmp_path) -> None:
    settings = make_settings(ytdlp_command=stub_tool("write_output(64)"))
    workspace = tmp_path / "ws"
    workspace.mkdir()
    job = _job(str(workspace))
    profile = ExtractionProfile("ios", ("--extractor-args", "youtube:player_client=ios"))

    attempt = _supervisor(settings).run(profile, job)

    assert attempt.succeeded
    assert attempt.profile is profile
    assert "[ExtractAudio] Destination:" in attempt.output_text
    assert os.path.getsize(predicted_output_path(str(workspace), "clip_tok")) == 64
