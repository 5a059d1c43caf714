import sys
import textwrap
from dataclasses import replace
from pathlib import Path

import pytest

# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from config.settings import Settings  # noqa: E402

_STUB_PRELUDE = textwrap.dedent(
    """
    import os
    import sys
    import time

    ARGS = sys.argv[1:]


    def opt(name):
        if name in ARGS:
            index = ARGS.index(name)
            if index + 1 < len(ARGS):
                return ARGS[index + 1]
        return None


    if "--version" in ARGS:
        print("2024.08.06")
        sys.exit(0)
    if "-version" in ARGS:
        print("ffmpeg version 6.1.1 Copyright (c) 2000-2023 the FFmpeg developers")
        sys.exit(0)

    TEMPLATE = opt("--output") or ""
    URL = ARGS[-1] if ARGS else ""
    TARGET = TEMPLATE.replace("%(ext)s", "wav")


    def write_output(size):
        with open(TARGET, "wb") as handle:
            handle.write(b"\\x01" * size)
        print(f"[ExtractAudio] Destination: {TARGET}", flush=True)
    """
)


@pytest.fixture()
def stub_tool(tmp_path: Path):
    """Build a stand-in yt-dlp: returns the command tuple that runs ``body``."""
    counter = {"n": 0}

    def _make(body: str) -> tuple[str, ...]:
        counter["n"] += 1
        script = tmp_path / f"stub_tool_{counter['n']}.py"
        script.write_text(_STUB_PRELUDE + "\n" + textwrap.dedent(body), encoding="utf-8")
        return (sys.executable, str(script))

    return _make


@pytest.fixture()
def scratch_root(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture()
def make_settings(scratch_root: Path):
    base = Settings(
        scratch_root=str(scratch_root),
        hard_timeout_seconds=20.0,
        stall_timeout_seconds=10.0,
        kill_grace_seconds=0.5,
        backoff_seconds=0.0,
        backoff_max_seconds=0.0,
        resolve_retries=1,
        resolve_interval_seconds=0.01,
        enable_duration_validation=False,
    )

    def _make(**overrides) -> Settings:
        return replace(base, **overrides)

    return _make
