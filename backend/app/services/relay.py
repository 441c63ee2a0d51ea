"""
Byte-stream passthrough from the upstream asset host to the caller.

The upstream response is opened in streaming mode and handed back as an
async iterator, so bytes are only pulled as fast as the client reads them.
The first chunk is read up front: a transport failure before any header
has gone out can still be reported as JSON. After that, failures are
logged and the stream just ends.
"""

import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from urllib.parse import urlparse

import httpx

from ..errors import (
    DOWNLOAD_FAILED,
    DOWNLOAD_URL_NOT_FOUND,
    MISSING_PARAMS,
    STREAM_ERROR,
    PipelineError,
)
from ..models import StreamDescriptor
from ..settings import CORS_RELAY_URL, RELAY_CONNECT_TIMEOUT_SECONDS, RELAY_TIMEOUT_SECONDS
from .player import DESKTOP_USER_AGENT, resolve_player

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_FILENAME_LENGTH = 200
DEFAULT_CONTENT_TYPE = "application/octet-stream"

MIME_EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/3gpp": "3gp",
    "video/x-msvideo": "avi",
    "video/quicktime": "mov",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}

UNSAFE_FILENAME_RE = re.compile(r'[<>:"/\\|?*]+')
WHITESPACE_RE = re.compile(r"\s+")
TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class RelayStream:
    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]


def sanitize_filename(name: str) -> str:
    cleaned = UNSAFE_FILENAME_RE.sub("_", name or "")
    cleaned = WHITESPACE_RE.sub("_", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH].strip()


def extension_for(content_type: str | None) -> str:
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    return MIME_EXTENSIONS.get(mime, "bin")


def is_truthy(value: str | bool | None) -> bool:
    if isinstance(value, bool):
        return value
    return (value or "").strip().lower() in TRUTHY


def apply_cors_relay(url: str, relay_base: str = CORS_RELAY_URL) -> str:
    relay_host = urlparse(relay_base).netloc or relay_base
    if relay_host and relay_host in url:
        return url
    return relay_base.rstrip("/") + "/" + url


def build_relay_headers(upstream_headers: httpx.Headers, filename: str) -> dict[str, str]:
    content_type = upstream_headers.get("content-type") or DEFAULT_CONTENT_TYPE
    disposition = upstream_headers.get("content-disposition") or (
        f'attachment; filename="{filename}.{extension_for(content_type)}"'
    )
    headers = {
        "Content-Type": content_type,
        "Content-Length": upstream_headers.get("content-length") or "unknown",
        "Content-Disposition": disposition,
        "Accept-Ranges": "bytes",
    }
    content_range = upstream_headers.get("content-range")
    if content_range:
        headers["Content-Range"] = content_range
    return headers


def suggested_filename(
    descriptor: StreamDescriptor | None,
    title: str | None,
    quality: str | None,
    filename: str | None,
) -> str:
    if filename:
        name = filename
    elif descriptor is not None:
        name = f"{title or 'video'}_{quality or descriptor.quality or descriptor.itag}"
    else:
        name = "video"
    return sanitize_filename(name) or "video"


def _parse_itag(format_id: str | int | None) -> int | None:
    try:
        return int(str(format_id).strip())
    except (TypeError, ValueError):
        return None


async def find_asset(
    client: httpx.AsyncClient,
    video_id: str,
    format_id: str | int,
) -> tuple[StreamDescriptor | None, str | None]:
    """Re-resolve the signed asset URL for one format.

    Best effort: a failed resolution is logged and reported as "not found".
    """
    itag = _parse_itag(format_id)
    if itag is None:
        logger.warning("Relay format id %r for %s is not an integer", format_id, video_id)
        return None, None

    try:
        result = await resolve_player(client, video_id)
    except PipelineError as exc:
        logger.warning("Relay could not resolve %s: %s (%s)", video_id, exc.message, exc.code)
        return None, None

    descriptor = result.catalog.find(itag)
    if descriptor is None or not descriptor.url:
        logger.info("Relay found no usable url for %s itag %s", video_id, itag)
        return None, result.video.title
    return descriptor, result.video.title


async def _close_quietly(response: httpx.Response) -> None:
    try:
        await response.aclose()
    except httpx.HTTPError as exc:
        logger.debug("Closing upstream relay response failed: %s", exc)


async def open_relay(
    client: httpx.AsyncClient,
    *,
    video_id: str | None = None,
    format_id: str | int | None = None,
    direct_url: str | None = None,
    quality: str | None = None,
    filename: str | None = None,
    proxy: str | bool | None = None,
    range_header: str | None = None,
) -> RelayStream:
    video_id = (video_id or "").strip() or None
    format_id = format_id if format_id not in (None, "") else None
    direct_url = (direct_url or "").strip() or None

    if not ((video_id and format_id is not None) or direct_url):
        raise PipelineError(
            MISSING_PARAMS,
            "Either videoId and formatId or a direct url is required",
            status_code=400,
        )

    download_url = direct_url
    descriptor = None
    title = None
    if video_id and format_id is not None:
        descriptor, title = await find_asset(client, video_id, format_id)
        if descriptor is not None:
            download_url = descriptor.url

    if not download_url:
        raise PipelineError(DOWNLOAD_URL_NOT_FOUND, "Could not find download URL", status_code=404)

    name = suggested_filename(descriptor, title, quality, filename)

    if is_truthy(proxy):
        download_url = apply_cors_relay(download_url)

    headers = {
        "User-Agent": DESKTOP_USER_AGENT,
        "Accept": "*/*",
        "Accept-Encoding": "identity",
        "Connection": "keep-alive",
        "Range": range_header or "bytes=0-",
    }
    timeout = httpx.Timeout(RELAY_TIMEOUT_SECONDS, connect=RELAY_CONNECT_TIMEOUT_SECONDS)

    try:
        request = client.build_request("GET", download_url, headers=headers, timeout=timeout)
        upstream = await client.send(request, stream=True)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("Relay fetch failed for %s: %s", download_url, exc)
        raise PipelineError(DOWNLOAD_FAILED, f"Download failed: {exc}", status_code=502) from exc

    if not upstream.is_success:
        await _close_quietly(upstream)
        message = f"Download failed: {upstream.status_code} {upstream.reason_phrase}".strip()
        logger.warning("Relay upstream rejected %s: %s", download_url, message)
        raise PipelineError(DOWNLOAD_FAILED, message, status_code=502)

    # Raw bytes: Accept-Encoding is identity and Content-Length must match what is sent.
    chunks = upstream.aiter_raw(CHUNK_SIZE)
    try:
        first_chunk = await anext(chunks, b"")
    except httpx.HTTPError as exc:
        await _close_quietly(upstream)
        logger.error("Relay stream failed before headers for %s: %s", download_url, exc)
        raise PipelineError(STREAM_ERROR, "Failed to stream download", status_code=500) from exc

    async def body() -> AsyncIterator[bytes]:
        try:
            if first_chunk:
                yield first_chunk
            async for chunk in chunks:
                yield chunk
        except httpx.HTTPError as exc:
            # Headers are already out; all that is left is to end the stream.
            logger.error("Relay stream interrupted for %s: %s", download_url, exc)
        finally:
            await _close_quietly(upstream)

    return RelayStream(
        status_code=upstream.status_code,
        headers=build_relay_headers(upstream.headers, name),
        body=body(),
        close=partial(_close_quietly, upstream),
    )
