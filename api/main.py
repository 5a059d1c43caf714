#!/usr/bin/env python3
import logging
import os
from datetime import datetime, timezone

import anyio
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.streaming import stream_output
from config.settings import APP_NAME, load_settings
from engine.converter import ConversionController
from engine.errors import ConversionError
from engine.json_utils import log_event
from engine.paths import ensure_dir
from engine.runtime import ToolProbeError, get_runtime_info, log_tool_availability, probe_tools
from engine.validation import validate_request

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "waveforce.log"
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class ConvertRequest(BaseModel):
    url: str | None = None
    filename: str | None = None


BODY_TOO_LARGE_MESSAGE = "Request body too large"


class RequestBodyTooLarge(HTTPException):
    # FastAPI re-raises HTTPException from body parsing instead of turning it into a 400.
    def __init__(self):
        super().__init__(status_code=413, detail=BODY_TOO_LARGE_MESSAGE)


async def body_too_large_handler(request: Request, exc: RequestBodyTooLarge):
    return JSONResponse({"error": BODY_TOO_LARGE_MESSAGE}, status_code=413)


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_body_bytes``.

    A declared Content-Length is refused before the app runs. Chunked bodies
    are counted as they are received and abort the read once over the limit.
    """

    def __init__(self, app, max_body_bytes):
        self.app = app
        self.max_body_bytes = int(max_body_bytes)

    async def _reject(self, scope, receive, send):
        response = JSONResponse({"error": BODY_TOO_LARGE_MESSAGE}, status_code=413)
        await response(scope, receive, send)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        for name, value in scope.get("headers") or []:
            if name == b"content-length":
                declared = value.decode("latin-1").strip()
                if declared.isdigit() and int(declared) > self.max_body_bytes:
                    await self._reject(scope, receive, send)
                    return
                break

        received = 0
        response_started = False

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    raise RequestBodyTooLarge()
            return message

        async def tracking_send(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except RequestBodyTooLarge:
            if response_started:
                raise
            await self._reject(scope, receive, send)


def _now_iso():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _setup_logging(settings):
    root = logging.getLogger("")
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))
    formatter = logging.Formatter(_LOG_FORMAT)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    if not settings.log_dir:
        return
    ensure_dir(settings.log_dir)
    log_path = os.path.abspath(os.path.join(settings.log_dir, LOG_FILE_NAME))
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == log_path:
                return
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)


def _error_response(exc: ConversionError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


SETTINGS = load_settings()

app = FastAPI(
    title=f"{APP_NAME} API",
    version=get_runtime_info()["app_version"],
    description="Converts a video URL into a downloadable WAV file using yt-dlp and ffmpeg.",
)
app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=SETTINGS.max_body_bytes)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)
app.state.settings = SETTINGS
app.state.controller = ConversionController(SETTINGS)
app.add_exception_handler(RequestBodyTooLarge, body_too_large_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.on_event("startup")
async def startup():
    settings = app.state.settings
    _setup_logging(settings)
    ensure_dir(app.state.controller.workspaces.scratch_root)
    logging.info("%s server is operational on port %s", APP_NAME, settings.port)
    await anyio.to_thread.run_sync(log_tool_availability, settings)


@app.get("/")
async def root(request: Request):
    return {
        "status": f"{APP_NAME} is operational",
        "message": "May the Force be with your audio conversions",
        "timestamp": _now_iso(),
        "limits": request.app.state.settings.public_limits(),
    }


@app.get("/health")
async def health(request: Request):
    settings = request.app.state.settings
    try:
        services = await anyio.to_thread.run_sync(probe_tools, settings)
    except ToolProbeError as exc:
        logging.error("Health check failed: %s", exc)
        return JSONResponse(
            {"status": "unhealthy", "error": str(exc), "timestamp": _now_iso()},
            status_code=503,
        )
    return {
        "status": "healthy",
        "services": services,
        "runtime": get_runtime_info(),
        "timestamp": _now_iso(),
    }


@app.post("/api/convert")
async def api_convert(payload: ConvertRequest, request: Request):
    controller = request.app.state.controller
    job = None
    try:
        conversion = validate_request(payload.url, payload.filename)
        log_event(
            logging.INFO,
            "CONVERT_REQUEST",
            url=conversion.source_url,
            output_name=conversion.output_name,
        )
        job = controller.open_job(conversion)
        with job.hold():
            output = await anyio.to_thread.run_sync(controller.run, job)
            response = stream_output(job, output)
            job.hand_off()
        return response
    except ConversionError as exc:
        log_event(
            logging.WARNING,
            "CONVERT_FAILED",
            job_id=job.id if job else None,
            status_code=exc.status_code,
            error=exc.message,
            error_type=type(exc).__name__,
        )
        return _error_response(exc)
    except Exception:
        logger.exception("Conversion crashed for job_id=%s", job.id if job else None)
        return JSONResponse({"error": "Internal server error"}, status_code=500)


def main():
    uvicorn.run(app, host="0.0.0.0", port=SETTINGS.port, proxy_headers=True)


if __name__ == "__main__":
    main()
