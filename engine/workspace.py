"""Per-job scratch directories."""

from __future__ import annotations

import itertools
import logging
import os
import secrets
import shutil
import threading
import time

from engine.errors import WorkspaceError
from engine.json_utils import log_event
from engine.paths import ensure_dir, is_within_base, resolve_scratch_root, workspace_path_for

logger = logging.getLogger(__name__)

_JOB_COUNTER = itertools.count(1)
_JOB_COUNTER_LOCK = threading.Lock()


def _random_token():
    return secrets.token_hex(8)


def new_job_id(token_factory=_random_token, *, clock=time.time_ns):
    """Return a job id that is unique within this process.

    The monotonic counter keeps ids distinct even if ``token_factory`` repeats
    itself; the random token keeps them distinct across processes sharing a
    scratch root.
    """
    with _JOB_COUNTER_LOCK:
        sequence = next(_JOB_COUNTER)
    return f"{clock()}_{sequence}_{token_factory()}"


class WorkspaceManager:
    def __init__(self, scratch_root):
        self.scratch_root = resolve_scratch_root(scratch_root)

    def path_for(self, job_id):
        return workspace_path_for(self.scratch_root, job_id)

    def create(self, job_id):
        path = self.path_for(job_id)
        try:
            ensure_dir(self.scratch_root)
            os.makedirs(path, exist_ok=True)
        except OSError as exc:
            logger.error("Workspace creation failed for %s: %s", path, exc)
            raise WorkspaceError() from exc
        log_event(logging.INFO, "WORKSPACE_CREATED", job_id=job_id, workspace=path)
        return path

    def destroy(self, workspace_path):
        """Remove ``workspace_path`` recursively. Never raises."""
        if not workspace_path:
            return False
        if (
            not is_within_base(workspace_path, self.scratch_root)
            or os.path.realpath(workspace_path) == os.path.realpath(self.scratch_root)
        ):
            logger.error("Refusing to remove path outside scratch root: %s", workspace_path)
            return False
        if not os.path.exists(workspace_path):
            return True
        try:
            shutil.rmtree(workspace_path)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning("Workspace cleanup failed for %s: %s", workspace_path, exc)
            return False
        log_event(logging.INFO, "WORKSPACE_REMOVED", workspace=workspace_path)
        return True
