"""
Human-readable views over a resolved format catalog.

Everything here is a pure function of its input: no clock, no network,
no shared state. Presenting the same catalog twice yields identical output.
"""

import math
from typing import Any
from urllib.parse import urlencode

from ..models import FormatCatalog, StreamDescriptor

BYTE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_bytes(num_bytes: int | float | None) -> str:
    if not num_bytes or num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(BYTE_UNITS) - 1:
        value /= 1024
        idx += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {BYTE_UNITS[idx]}"


def format_bitrate(bits_per_second: int | float | None) -> str:
    if not bits_per_second or bits_per_second <= 0:
        return "N/A"
    # Half rounds up.
    return f"{int(math.floor(bits_per_second / 1000 + 0.5))} kbps"


def format_duration(seconds: int | None) -> str:
    if not seconds or seconds <= 0:
        return "00:00"
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def relay_url(video_id: str, itag: int) -> str:
    return "/relay?" + urlencode({"videoId": video_id, "formatId": itag})


def present_download_urls(catalog: FormatCatalog, video_id: str) -> dict[str, list[dict[str, Any]]]:
    return {
        "video": [
            {
                "quality": fmt.quality,
                "itag": fmt.itag,
                "url": relay_url(video_id, fmt.itag),
                "size": format_bytes(fmt.content_length),
            }
            for fmt in catalog.video
        ],
        "audio": [
            {
                "itag": fmt.itag,
                "url": relay_url(video_id, fmt.itag),
                "size": format_bytes(fmt.content_length),
            }
            for fmt in catalog.audio
        ],
    }


def _present_video(fmt: StreamDescriptor, video_id: str) -> dict[str, Any]:
    return {
        "quality": fmt.quality,
        "itag": fmt.itag,
        "mimeType": fmt.mime_type,
        "size": format_bytes(fmt.content_length),
        "fps": fmt.fps,
        "bitrate": format_bitrate(fmt.bitrate),
        "download": relay_url(video_id, fmt.itag),
    }


def _present_audio(fmt: StreamDescriptor, video_id: str) -> dict[str, Any]:
    return {
        "itag": fmt.itag,
        "mimeType": fmt.mime_type,
        "size": format_bytes(fmt.content_length),
        "bitrate": format_bitrate(fmt.bitrate),
        "download": relay_url(video_id, fmt.itag),
    }


def present_formats(catalog: FormatCatalog, video_id: str) -> dict[str, list[dict[str, Any]]]:
    return {
        "video": [_present_video(fmt, video_id) for fmt in catalog.video],
        "audio": [_present_audio(fmt, video_id) for fmt in catalog.audio],
    }
