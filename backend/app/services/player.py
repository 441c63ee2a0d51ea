"""
Video metadata and format resolution against the innertube player endpoint.

One upstream call per resolution. Nothing is cached: asset URLs are signed
and expire, so every caller gets a fresh catalog.
"""

import logging
import re
from typing import Any

import httpx
from pydantic import ValidationError

from ..errors import INVALID_VIDEO_ID, MISSING_VIDEO_ID, PLAYER_FAILED, PipelineError
from ..models import (
    FormatCatalog,
    PlayerResult,
    RawFormat,
    RawPlayerResponse,
    RawStreamingData,
    RawVideoDetails,
    StreamDescriptor,
    StreamingInfo,
    Thumbnail,
    VideoMetadata,
)
from ..settings import PLAYER_TIMEOUT_SECONDS, YOUTUBE_INNERTUBE_KEY, YOUTUBE_PLAYER_URL
from .video_ids import is_valid_video_id

logger = logging.getLogger(__name__)

QUALITY_LADDER = ["144p", "240p", "360p", "480p", "720p", "1080p", "1440p", "2160p"]
QUALITY_LABEL_RE = re.compile(r"^(\d+p)")
PREFERRED_TYPES = {"video", "audio", "both"}

WEB_CLIENT_VERSION = "2.20240101.00.00"
SIGNATURE_TIMESTAMP = 20480
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def quality_rank(label: str) -> int:
    """Ladder index of a quality label; -1 when it is not on the ladder.

    ``1080p60`` and ``720p HDR`` rank as their base resolution.
    """
    match = QUALITY_LABEL_RE.match(label or "")
    if not match:
        return -1
    try:
        return QUALITY_LADDER.index(match.group(1))
    except ValueError:
        return -1


def normalize_preferred_type(value: str | None) -> str:
    value = (value or "both").strip().lower()
    return value if value in PREFERRED_TYPES else "both"


def to_descriptor(raw: RawFormat) -> StreamDescriptor:
    return StreamDescriptor(
        itag=raw.itag,
        mime_type=raw.mime_type,
        bitrate=raw.bitrate,
        content_length=raw.content_length,
        url=raw.url,
        quality=raw.quality_label or raw.quality,
        fps=raw.fps,
        width=raw.width,
        height=raw.height,
        approx_duration_ms=raw.approx_duration_ms,
        signature_cipher=raw.signature_cipher,
    )


def build_catalog(streaming: RawStreamingData, preferred_type: str = "both") -> FormatCatalog:
    combined = [to_descriptor(raw) for raw in [*streaming.formats, *streaming.adaptive_formats]]

    video = [fmt for fmt in combined if fmt.kind == "video"]
    audio = [fmt for fmt in combined if fmt.kind == "audio"]
    # sorted() stays stable with reverse=True, so equal ranks keep arrival order
    # and off-ladder labels (-1) land after every recognized one.
    video = sorted(video, key=lambda fmt: quality_rank(fmt.quality), reverse=True)
    audio = sorted(audio, key=lambda fmt: fmt.bitrate, reverse=True)

    preferred_type = normalize_preferred_type(preferred_type)
    recommended = None
    if preferred_type == "video" and video:
        recommended = video[0]
    elif preferred_type == "audio" and audio:
        recommended = audio[0]
    elif combined:
        recommended = combined[0]

    return FormatCatalog(video=video, audio=audio, all=combined, recommended=recommended)


def build_video_metadata(details: RawVideoDetails) -> VideoMetadata:
    return VideoMetadata(
        id=details.video_id,
        title=details.title,
        channel=details.author,
        channel_id=details.channel_id,
        duration=details.length_seconds,
        keywords=details.keywords,
        description=details.short_description,
        thumbnails=[
            Thumbnail(url=thumb.url, width=thumb.width, height=thumb.height)
            for thumb in details.thumbnail.thumbnails
        ],
        is_live=details.is_live_content,
        allow_ratings=details.allow_ratings,
        view_count=details.view_count,
    )


def build_streaming_info(streaming: RawStreamingData) -> StreamingInfo:
    return StreamingInfo(
        expires_in_seconds=streaming.expires_in_seconds or 3600,
        dash_manifest_url=streaming.dash_manifest_url,
        hls_manifest_url=streaming.hls_manifest_url,
    )


def player_request_body(video_id: str) -> dict[str, Any]:
    return {
        "context": {
            "client": {
                "clientName": "WEB",
                "clientVersion": WEB_CLIENT_VERSION,
                "hl": "en",
                "gl": "US",
            }
        },
        "videoId": video_id,
        "playbackContext": {
            "contentPlaybackContext": {
                "signatureTimestamp": SIGNATURE_TIMESTAMP,
            }
        },
        "contentCheckOk": True,
        "racyCheckOk": True,
    }


def _upstream_error_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return None


def decode_player_response(payload: Any) -> RawPlayerResponse:
    """Decode an upstream player payload, failing closed on a missing video id."""
    if not isinstance(payload, dict):
        raise PipelineError(PLAYER_FAILED, "Unexpected player response from YouTube")

    try:
        decoded = RawPlayerResponse.model_validate(payload)
    except ValidationError:
        decoded = None

    if decoded is None or decoded.video_details is None or not decoded.video_details.video_id:
        reason = None
        playability = payload.get("playabilityStatus")
        if isinstance(playability, dict) and isinstance(playability.get("reason"), str):
            reason = playability["reason"] or None
        message = reason or _upstream_error_message(payload) or "Video details not found"
        raise PipelineError(PLAYER_FAILED, message)
    return decoded


async def fetch_player_payload(client: httpx.AsyncClient, video_id: str) -> Any:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": DESKTOP_USER_AGENT,
        "Accept-Language": "en-US,en;q=0.9",
    }
    try:
        response = await client.post(
            YOUTUBE_PLAYER_URL,
            params={"key": YOUTUBE_INNERTUBE_KEY},
            json=player_request_body(video_id),
            headers=headers,
            timeout=PLAYER_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        logger.warning("Player request for %s failed: %s", video_id, exc)
        raise PipelineError(PLAYER_FAILED, "YouTube is temporarily unavailable. Please try again.") from exc

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if response.is_error:
        message = _upstream_error_message(payload) or f"YouTube player returned HTTP {response.status_code}"
        logger.warning("Player request for %s returned %s: %s", video_id, response.status_code, message)
        raise PipelineError(PLAYER_FAILED, message)

    return payload


async def resolve_player(
    client: httpx.AsyncClient,
    video_id: str | None,
    preferred_type: str | None = "both",
) -> PlayerResult:
    video_id = (video_id or "").strip()
    if not video_id:
        raise PipelineError(MISSING_VIDEO_ID, "Video ID is required", status_code=400)
    if not is_valid_video_id(video_id):
        raise PipelineError(INVALID_VIDEO_ID, "Invalid YouTube Video ID format", status_code=400)

    payload = await fetch_player_payload(client, video_id)
    decoded = decode_player_response(payload)

    return PlayerResult(
        video=build_video_metadata(decoded.video_details),
        catalog=build_catalog(decoded.streaming_data, preferred_type or "both"),
        streaming=build_streaming_info(decoded.streaming_data),
    )
