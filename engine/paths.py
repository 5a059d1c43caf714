import os
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
WORKSPACE_PREFIX = "waveforce_"


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def resolve_scratch_root(path):
    """Absolute scratch root; relative values are taken from the project root."""
    if not path:
        raise ValueError("scratch root must not be empty")
    if os.path.isabs(path):
        return os.path.abspath(path)
    return os.path.abspath(os.path.join(PROJECT_ROOT, path))


def workspace_path_for(scratch_root, job_id):
    return os.path.join(resolve_scratch_root(scratch_root), f"{WORKSPACE_PREFIX}{job_id}")


def is_within_base(path, base_dir):
    real = os.path.realpath(path)
    base = os.path.realpath(base_dir)
    try:
        return os.path.commonpath([real, base]) == base
    except ValueError:
        return False
