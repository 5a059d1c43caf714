from __future__ import annotations

import os
import time

import pytest

from engine.converter import ConversionController
from engine.errors import (
    AllProfilesExhaustedError,
    ClassifiedConversionError,
    ConversionStalledError,
    ConversionTimedOutError,
    DurationExceededError,
    ErrorCategory,
    OutputMissingError,
)
from engine.supervisor import AttemptOutcome, AttemptResult, predicted_output_path
from engine.validation import validate_request


class _ScriptedSupervisor:
    """Plays back one scripted step per attempt instead of spawning yt-dlp."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = []

    def run(self, profile, job):
        self.calls.append(profile.name)
        return self.steps.pop(0)(profile, job)


def _fail(diagnostic):
    def _step(profile, job):
        return AttemptResult(profile, AttemptOutcome.FAILED, diagnostic_text=diagnostic, return_code=1)

    return _step


def _succeed(size=16, output_text=""):
    def _step(profile, job):
        if size is not None:
            with open(predicted_output_path(job.workspace_path, job.request.output_name), "wb") as handle:
                handle.write(b"\x01" * size)
        return AttemptResult(profile, AttemptOutcome.SUCCESS, output_text=output_text, return_code=0)

    return _step


def _end(outcome):
    def _step(profile, job):
        return AttemptResult(profile, outcome, return_code=-15)

    return _step


def _request():
    return validate_request("https://youtu.be/abc123", token_factory=lambda: "tok")


def _controller(settings, *steps):
    sleeps = []
    supervisor = _ScriptedSupervisor(*steps)
    controller = ConversionController(settings, supervisor=supervisor, sleep=sleeps.append)
    return controller, supervisor, sleeps


def test_first_profile_success_needs_no_backoff(make_settings) -> None:
    controller, supervisor, sleeps = _controller(make_settings(backoff_seconds=1.0), _succeed(32))
    job = controller.open_job(_request())

    output = controller.run(job)

    assert output.size_bytes == 32
    assert supervisor.calls == ["default"]
    assert sleeps == []


def test_failed_profile_falls_back_after_backoff(make_settings) -> None:
    settings = make_settings(backoff_seconds=1.0, backoff_max_seconds=2.0)
    controller, supervisor, sleeps = _controller(
        settings,
        _fail("ERROR: unable to download video data: HTTP Error 403: Forbidden"),
        _succeed(8),
    )
    job = controller.open_job(_request())

    output = controller.run(job)

    assert output.path == predicted_output_path(job.workspace_path, "waveforce_tok")
    assert supervisor.calls == ["default", "android"]
    assert sleeps == [1.0]
    assert [attempt.outcome for attempt in job.attempts] == [AttemptOutcome.FAILED, AttemptOutcome.SUCCESS]


def test_exhausted_profiles_report_last_diagnostic(make_settings) -> None:
    settings = make_settings(profiles=("default", "ios"))
    controller, supervisor, _ = _controller(
        settings,
        _fail("ERROR: HTTP Error 403: Forbidden"),
        _fail("ERROR: [youtube] abc123: Private video. Sign in if you've been granted access"),
    )
    job = controller.open_job(_request())

    with pytest.raises(AllProfilesExhaustedError) as excinfo:
        controller.run(job)

    assert supervisor.calls == ["default", "ios"]
    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Video is unavailable or private"
    assert "Sign in" not in excinfo.value.message


def test_exhausted_profiles_requiring_sign_in_are_403(make_settings) -> None:
    controller, _, _ = _controller(
        make_settings(profiles=("default",)),
        _fail("ERROR: Sign in to confirm your age. This video may be inappropriate for some users."),
    )

    with pytest.raises(AllProfilesExhaustedError) as excinfo:
        controller.run(controller.open_job(_request()))
    assert excinfo.value.status_code == 403


@pytest.mark.parametrize(
    ("outcome", "error"),
    [
        (AttemptOutcome.TIMED_OUT, ConversionTimedOutError),
        (AttemptOutcome.STALLED, ConversionStalledError),
    ],
)
def test_timeout_and_stall_end_the_job_without_fallback(make_settings, outcome, error) -> None:
    controller, supervisor, _ = _controller(make_settings(), _end(outcome), _succeed())

    with pytest.raises(error) as excinfo:
        controller.run(controller.open_job(_request()))

    assert supervisor.calls == ["default"]
    assert excinfo.value.status_code == 504


def test_filtered_video_is_reported_as_too_long(make_settings) -> None:
    skipped = "[youtube] abc123: Clip does not pass filter (duration <=? 1200), skipping .."
    controller, _, _ = _controller(make_settings(), _succeed(size=None, output_text=skipped))

    with pytest.raises(ClassifiedConversionError) as excinfo:
        controller.run(controller.open_job(_request()))

    assert excinfo.value.category is ErrorCategory.DURATION_EXCEEDED
    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Video is too long (max 20 minutes)"


def test_success_without_file_is_missing_output(make_settings) -> None:
    controller, _, _ = _controller(make_settings(), _succeed(size=None))

    with pytest.raises(OutputMissingError):
        controller.run(controller.open_job(_request()))


def test_duration_post_check_rejects_long_output(make_settings, monkeypatch) -> None:
    calls = []

    def _too_long(path, max_seconds, **kwargs):
        calls.append((path, max_seconds))
        return True

    monkeypatch.setattr("engine.converter.exceeds_duration_limit", _too_long)
    controller, _, _ = _controller(make_settings(enable_duration_validation=True), _succeed())

    with pytest.raises(DurationExceededError):
        controller.run(controller.open_job(_request()))
    assert calls and calls[0][1] == 1200


def test_hold_finalizes_exactly_once(make_settings) -> None:
    controller, _, _ = _controller(make_settings())
    job = controller.open_job(_request())
    assert os.path.isdir(job.workspace_path)

    with pytest.raises(RuntimeError):
        with job.hold():
            raise RuntimeError("boom")

    assert job.finalized
    assert not os.path.exists(job.workspace_path)
    assert job.finalize() is False


def test_hand_off_defers_finalization(make_settings) -> None:
    controller, _, _ = _controller(make_settings())
    job = controller.open_job(_request())

    with job.hold():
        job.hand_off()

    assert not job.finalized
    assert os.path.isdir(job.workspace_path)
    assert job.finalize() is True
    assert not os.path.exists(job.workspace_path)


def test_delayed_cleanup_removes_workspace_later(make_settings) -> None:
    controller, _, _ = _controller(make_settings(cleanup_delay_seconds=0.2))
    job = controller.open_job(_request())

    job.finalize()
    assert os.path.isdir(job.workspace_path)

    deadline = time.monotonic() + 5
    while os.path.exists(job.workspace_path) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not os.path.exists(job.workspace_path)


def test_concurrent_jobs_get_separate_workspaces(make_settings) -> None:
    controller, _, _ = _controller(make_settings())
    first = controller.open_job(_request())
    second = controller.open_job(_request())

    assert first.id != second.id
    assert first.workspace_path != second.workspace_path
