"""Stream a converted file back to the caller and release its job afterwards."""

from __future__ import annotations

import logging

import anyio
from fastapi.responses import StreamingResponse

from engine.validation import MAX_NAME_LENGTH, sanitize_filename

logger = logging.getLogger(__name__)

AUDIO_MEDIA_TYPE = "audio/wav"
AUDIO_EXTENSION = ".wav"
CHUNK_SIZE = 1024 * 1024


def attachment_filename(output_name):
    # The stem may come from a video title, so it is filtered again here.
    stem = sanitize_filename(output_name, max_length=MAX_NAME_LENGTH - len(AUDIO_EXTENSION))
    return f"{stem or 'download'}{AUDIO_EXTENSION}"


def _iter_file(path, size_bytes, on_close, chunk_size=CHUNK_SIZE):
    """Yield at most ``size_bytes`` from ``path``, then call ``on_close`` no matter what."""
    remaining = size_bytes
    sent = 0
    try:
        with open(path, "rb") as handle:
            while remaining > 0:
                chunk = handle.read(min(chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                sent += len(chunk)
                yield chunk
    except OSError:
        logger.exception("Streaming failed for %s after %d bytes", path, sent)
        raise
    finally:
        if remaining > 0:
            logger.warning("Stream for %s ended early (%d of %d bytes)", path, sent, size_bytes)
        on_close()


class FinalizingStreamingResponse(StreamingResponse):
    """Streaming response that runs ``on_finish`` once the ASGI call is over.

    Starlette skips ``background`` when the client disconnects mid-stream, and
    an abandoned sync generator only reaches its ``finally`` when it is
    garbage-collected, so neither can carry workspace cleanup on its own.
    """

    def __init__(self, content, *, on_finish, **kwargs):
        super().__init__(content, **kwargs)
        self._on_finish = on_finish

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(self._on_finish)


def stream_output(job, output):
    filename = attachment_filename(job.request.output_name)
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Content-Length": str(output.size_bytes),
        "Cache-Control": "no-store",
    }
    logger.info(
        "Sending %s for job_id=%s (%.2fMB)",
        filename,
        job.id,
        output.size_bytes / 1024 / 1024,
    )
    # job.finalize is idempotent; whichever of the two hooks fires first wins.
    return FinalizingStreamingResponse(
        _iter_file(output.path, output.size_bytes, job.finalize),
        on_finish=job.finalize,
        media_type=AUDIO_MEDIA_TYPE,
        headers=headers,
    )
