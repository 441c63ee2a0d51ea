import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

try:
    from backend.app import errors
    from backend.app.errors import PipelineError
    from backend.app.logging_config import setup_logging
    from backend.app.services.player import resolve_player
    from backend.app.services.presenter import format_duration, present_download_urls, present_formats
    from backend.app.services.relay import open_relay
    from backend.app.services.search import search_videos
    from backend.app.services.video_ids import extract_video_id
    from backend.app.settings import (
        IS_PRODUCTION,
        PLAYER_TIMEOUT_SECONDS,
        SERVICE_NAME,
        SERVICE_VERSION,
        parse_cors_origins,
    )
except ModuleNotFoundError:
    from app import errors
    from app.errors import PipelineError
    from app.logging_config import setup_logging
    from app.services.player import resolve_player
    from app.services.presenter import format_duration, present_download_urls, present_formats
    from app.services.relay import open_relay
    from app.services.search import search_videos
    from app.services.video_ids import extract_video_id
    from app.settings import (
        IS_PRODUCTION,
        PLAYER_TIMEOUT_SECONDS,
        SERVICE_NAME,
        SERVICE_VERSION,
        parse_cors_origins,
    )


logger = logging.getLogger(__name__)


# ---------------------------
# Helpers
# ---------------------------

def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def response_meta() -> dict[str, Any]:
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": utc_timestamp(),
    }


def success_envelope(data: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "data": data, "meta": response_meta()}


def error_envelope(code: str, message: str, exc: BaseException | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "error": code,
        "message": message,
        "timestamp": utc_timestamp(),
    }
    if exc is not None and not IS_PRODUCTION:
        payload["details"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return payload


async def request_params(request: Request) -> dict[str, Any]:
    """Query string for GET, query string overlaid with the JSON body for POST."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            params.update(body)
    return params


def int_param(params: dict[str, Any], name: str, default: int) -> int:
    raw = params.get(name)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise PipelineError(errors.MISSING_PARAMS, f"{name} must be an integer", status_code=400)
    try:
        return int(str(raw).strip())
    except ValueError:
        raise PipelineError(errors.MISSING_PARAMS, f"{name} must be an integer", status_code=400)


def str_param(params: dict[str, Any], name: str) -> str | None:
    raw = params.get(name)
    if raw is None:
        return None
    return raw if isinstance(raw, str) else str(raw)


def relay_response_headers(headers: dict[str, str]) -> dict[str, str]:
    # Without a numeric length the ASGI server falls back to chunked transfer.
    return {
        key: value
        for key, value in headers.items()
        if not (key.lower() == "content-length" and not value.isdigit())
    }


# ---------------------------
# App setup
# ---------------------------

setup_logging()

app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION)

cors_origins, cors_credentials = parse_cors_origins()


@app.middleware("http")
async def answer_options(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=200)
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Range", "Authorization"],
    expose_headers=["Content-Disposition", "Content-Length", "Content-Range", "Accept-Ranges"],
)


@app.on_event("startup")
async def on_startup_open_http_client():
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(PLAYER_TIMEOUT_SECONDS),
        follow_redirects=True,
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    logger.info("%s %s started (%s)", SERVICE_NAME, SERVICE_VERSION, "production" if IS_PRODUCTION else "development")


@app.on_event("shutdown")
async def on_shutdown_close_http_client():
    client = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()


def get_http_client(request: Request) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise RuntimeError("HTTP client is not initialised; is the app running under its lifespan?")
    return client


@app.exception_handler(PipelineError)
async def pipeline_error_handler(_request: Request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message)
    else:
        logger.info("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.code, exc.message, exc if exc.status_code >= 500 else None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError):
    messages = [str(err.get("msg", "")) for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=error_envelope(errors.MISSING_PARAMS, "; ".join(m for m in messages if m) or "Invalid parameters"),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": "Not Found",
                "message": "The requested resource was not found",
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(_request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "message": "Something went wrong!" if IS_PRODUCTION else str(exc),
        },
    )


# ---------------------------
# Routes
# ---------------------------

@app.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": utc_timestamp(),
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.api_route("/search", methods=["GET", "POST"])
async def search(request: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    params = await request_params(request)
    query = (str_param(params, "query") or "").strip()
    limit = int_param(params, "limit", 20)
    page = int_param(params, "page", 1)

    videos = await search_videos(client, query, limit)
    return success_envelope(
        {
            "query": query,
            "total": len(videos),
            "page": page,
            "limit": limit,
            "videos": [video.to_json() for video in videos],
            "timestamp": utc_timestamp(),
        }
    )


@app.api_route("/player", methods=["GET", "POST"])
async def player(request: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    params = await request_params(request)
    video_id = (str_param(params, "videoId") or "").strip()
    preferred_type = str_param(params, "type") or "both"

    result = await resolve_player(client, video_id, preferred_type)
    catalog = result.catalog
    return success_envelope(
        {
            "video": result.video.to_json(),
            "formats": {
                "video": [fmt.to_json() for fmt in catalog.video],
                "audio": [fmt.to_json() for fmt in catalog.audio],
                "all": [fmt.to_json() for fmt in catalog.all],
            },
            "recommended": catalog.recommended.to_json() if catalog.recommended else None,
            "downloadUrls": present_download_urls(catalog, video_id),
            "streamingData": result.streaming.to_json(),
        }
    )


@app.get("/formats")
async def formats(
    url: str | None = None,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    if not url or not url.strip():
        raise PipelineError(errors.MISSING_URL, "YouTube URL is required", status_code=400)
    video_id = extract_video_id(url)
    if not video_id:
        raise PipelineError(errors.INVALID_URL, "Invalid YouTube URL", status_code=400)

    try:
        result = await resolve_player(client, video_id)
    except PipelineError as exc:
        raise PipelineError(errors.FORMATS_FAILED, exc.message, status_code=500) from exc

    presented = present_formats(result.catalog, video_id)
    thumbnails = result.video.thumbnails
    return success_envelope(
        {
            "videoId": video_id,
            "title": result.video.title,
            "thumbnail": (thumbnails[0].url or None) if thumbnails else None,
            "duration": format_duration(result.video.duration),
            "formats": presented,
            "total": {
                "video": len(presented["video"]),
                "audio": len(presented["audio"]),
            },
        }
    )


@app.get("/relay")
async def relay(
    request: Request,
    video_id: str | None = Query(None, alias="videoId"),
    format_id: str | None = Query(None, alias="formatId"),
    itag: str | None = None,
    url: str | None = None,
    quality: str | None = None,
    filename: str | None = None,
    proxy: str | None = None,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    stream = await open_relay(
        client,
        video_id=video_id,
        format_id=format_id if format_id not in (None, "") else itag,
        direct_url=url,
        quality=quality,
        filename=filename,
        proxy=proxy,
        range_header=request.headers.get("range"),
    )
    return StreamingResponse(
        stream.body,
        status_code=stream.status_code,
        headers=relay_response_headers(stream.headers),
        background=BackgroundTask(stream.close),
    )
