"""
Video search against the innertube search endpoint (mobile web client).

Results are read from fixed layout paths. A path that is missing in the
response means "no results", not an error; only a body that is not a JSON
object at all is treated as a failure.
"""

import logging
from typing import Any

import httpx

from ..errors import INVALID_QUERY, SEARCH_FAILED, PipelineError
from ..models import SearchResult
from ..settings import SEARCH_TIMEOUT_SECONDS, YOUTUBE_INNERTUBE_KEY, YOUTUBE_SEARCH_URL
from .video_ids import is_valid_video_id

logger = logging.getLogger(__name__)

MWEB_CLIENT_VERSION = "2.20240101.00.00"
# Search filter: type=video.
VIDEOS_ONLY_PARAMS = "EgIQAQ%3D%3D"
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 13; SM-S901B) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/112.0.0.0 Mobile Safari/537.36"
)

# Layout paths to the list of result items, newest layout first.
RESULT_PATHS: tuple[tuple[str | int, ...], ...] = (
    (
        "contents",
        "twoColumnSearchResultsRenderer",
        "primaryContents",
        "sectionListRenderer",
        "contents",
        0,
        "itemSectionRenderer",
        "contents",
    ),
    (
        "contents",
        "sectionListRenderer",
        "contents",
        0,
        "itemSectionRenderer",
        "contents",
    ),
)


def dig(node: Any, *path: str | int) -> Any:
    """Walk dict keys / list indexes, returning None at the first missing step."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or not -len(node) <= step < len(node):
                return None
            node = node[step]
        else:
            if not isinstance(node, dict):
                return None
            node = node.get(step)
        if node is None:
            return None
    return node


def _text(node: Any, *path: str | int) -> str | None:
    value = dig(node, *path)
    if isinstance(value, str) and value:
        return value
    return None


def result_items(payload: dict[str, Any]) -> list[dict[str, Any]]:
    for path in RESULT_PATHS:
        items = dig(payload, *path)
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
    return []


def parse_video_renderer(renderer: dict[str, Any]) -> SearchResult | None:
    video_id = renderer.get("videoId")
    if not is_valid_video_id(video_id):
        return None

    thumbnails = dig(renderer, "thumbnail", "thumbnails")
    highest: dict[str, Any] = {}
    if isinstance(thumbnails, list) and thumbnails and isinstance(thumbnails[-1], dict):
        highest = thumbnails[-1]
    thumb_width = highest.get("width")
    thumb_height = highest.get("height")

    badges = renderer.get("badges")
    is_live = isinstance(badges, list) and any(
        dig(badge, "metadataBadgeRenderer", "label") == "LIVE" for badge in badges
    )

    return SearchResult(
        id=video_id,
        title=_text(renderer, "title", "runs", 0, "text") or "No title",
        channel=(
            _text(renderer, "ownerText", "runs", 0, "text")
            or _text(renderer, "longBylineText", "runs", 0, "text")
            or "Unknown"
        ),
        channel_id=_text(renderer, "ownerText", "runs", 0, "navigationEndpoint", "browseEndpoint", "browseId"),
        views=_text(renderer, "viewCountText", "simpleText") or "0 views",
        duration=_text(renderer, "lengthText", "simpleText"),
        published=_text(renderer, "publishedTimeText", "simpleText"),
        thumbnail=_text(highest, "url"),
        thumbnail_width=thumb_width if isinstance(thumb_width, int) and thumb_width > 0 else 480,
        thumbnail_height=thumb_height if isinstance(thumb_height, int) and thumb_height > 0 else 360,
        is_live=is_live,
        url=f"https://www.youtube.com/watch?v={video_id}",
    )


def extract_search_results(payload: dict[str, Any], limit: int) -> list[SearchResult]:
    videos: list[SearchResult] = []
    for item in result_items(payload):
        if len(videos) >= limit:
            break
        renderer = item.get("videoRenderer")
        if not isinstance(renderer, dict):
            continue
        result = parse_video_renderer(renderer)
        if result is not None:
            videos.append(result)
    return videos


def search_request_body(query: str) -> dict[str, Any]:
    return {
        "context": {
            "client": {
                "hl": "en",
                "gl": "US",
                "clientName": "MWEB",
                "clientVersion": MWEB_CLIENT_VERSION,
                "platform": "MOBILE",
            }
        },
        "query": query,
        "params": VIDEOS_ONLY_PARAMS,
    }


def _embedded_error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    message = dig(payload, "error", "message")
    return message if isinstance(message, str) and message else None


async def search_videos(client: httpx.AsyncClient, query: str | None, limit: int = 20) -> list[SearchResult]:
    query = (query or "").strip()
    if not query:
        raise PipelineError(INVALID_QUERY, "Search query is required", status_code=400)

    headers = {
        "Content-Type": "application/json",
        "User-Agent": MOBILE_USER_AGENT,
        "X-YouTube-Client-Name": "1",
        "X-YouTube-Client-Version": MWEB_CLIENT_VERSION,
        "Accept-Language": "en-US,en;q=0.9",
        "Origin": "https://m.youtube.com",
        "Referer": "https://m.youtube.com/",
    }
    try:
        response = await client.post(
            YOUTUBE_SEARCH_URL,
            params={"key": YOUTUBE_INNERTUBE_KEY},
            json=search_request_body(query),
            headers=headers,
            timeout=SEARCH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        message = _embedded_error_message(exc.response) or str(exc)
        logger.warning("Search for %r returned %s: %s", query, exc.response.status_code, message)
        raise PipelineError(SEARCH_FAILED, message, status_code=exc.response.status_code) from exc
    except httpx.HTTPError as exc:
        logger.warning("Search for %r failed: %s", query, exc)
        raise PipelineError(SEARCH_FAILED, str(exc) or "Search request failed") from exc

    try:
        payload = response.json()
    except ValueError as exc:
        raise PipelineError(SEARCH_FAILED, "Unexpected search response from YouTube") from exc
    if not isinstance(payload, dict):
        raise PipelineError(SEARCH_FAILED, "Unexpected search response from YouTube")

    return extract_search_results(payload, limit)
