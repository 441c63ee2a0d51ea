import asyncio
import json
from itertools import permutations

import httpx
import pytest

from backend.app.errors import PipelineError
from backend.app.models import RawStreamingData
from backend.app.services.player import build_catalog, quality_rank, resolve_player
from backend.app.services.presenter import (
    format_bitrate,
    format_bytes,
    format_duration,
    present_download_urls,
    present_formats,
    relay_url,
)
from backend.app.services.relay import (
    apply_cors_relay,
    build_relay_headers,
    extension_for,
    open_relay,
    sanitize_filename,
    suggested_filename,
)
from backend.app.services.search import extract_search_results, search_videos
from backend.app.services.video_ids import extract_video_id, is_valid_video_id

VIDEO_ID = "dQw4w9WgXcQ"


def make_format(itag, mime_type, quality_label=None, bitrate=0, url=None, **extra):
    fmt = {
        "itag": itag,
        "mimeType": mime_type,
        "bitrate": bitrate,
        "url": url if url is not None else f"https://rr1.googlevideo.com/videoplayback?itag={itag}",
    }
    if quality_label is not None:
        fmt["qualityLabel"] = quality_label
    fmt.update(extra)
    return fmt


def make_streaming(formats=(), adaptive=()):
    return RawStreamingData.model_validate({"formats": list(formats), "adaptiveFormats": list(adaptive)})


def make_player_payload(video_id=VIDEO_ID, formats=(), adaptive=(), **details):
    return {
        "videoDetails": {"videoId": video_id, **details},
        "streamingData": {"formats": list(formats), "adaptiveFormats": list(adaptive)},
    }


def make_renderer(video_id, title="Song", channel="Artist", **extra):
    renderer = {
        "videoId": video_id,
        "title": {"runs": [{"text": title}]},
        "ownerText": {
            "runs": [
                {
                    "text": channel,
                    "navigationEndpoint": {"browseEndpoint": {"browseId": f"UC_{channel}"}},
                }
            ]
        },
        "viewCountText": {"simpleText": "1,234 views"},
        "lengthText": {"simpleText": "3:45"},
        "publishedTimeText": {"simpleText": "2 days ago"},
        "thumbnail": {
            "thumbnails": [
                {"url": f"https://i.ytimg.com/vi/{video_id}/default.jpg", "width": 120, "height": 90},
                {"url": f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg", "width": 480, "height": 360},
            ]
        },
    }
    renderer.update(extra)
    return renderer


def make_search_payload(renderers):
    return {
        "contents": {
            "twoColumnSearchResultsRenderer": {
                "primaryContents": {
                    "sectionListRenderer": {
                        "contents": [
                            {"itemSectionRenderer": {"contents": [{"videoRenderer": r} for r in renderers]}}
                        ]
                    }
                }
            }
        }
    }


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def forbid_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected upstream call to {request.url}")


# ---------------------------
# Video ids
# ---------------------------

def test_extract_video_id_accepts_known_url_shapes():
    assert extract_video_id("https://youtu.be/dQw4w9WgXcQ") == VIDEO_ID
    assert extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42") == VIDEO_ID
    assert extract_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ") == VIDEO_ID
    assert extract_video_id("  dQw4w9WgXcQ  ") == VIDEO_ID


def test_extract_video_id_rejects_other_text():
    assert extract_video_id("not a url") is None
    assert extract_video_id("") is None
    assert extract_video_id(None) is None
    assert extract_video_id("https://vimeo.com/123456789") is None


def test_is_valid_video_id():
    assert is_valid_video_id(VIDEO_ID)
    assert is_valid_video_id("a-b_c-d_e-f")
    assert not is_valid_video_id("dQw4w9WgXc")
    assert not is_valid_video_id("dQw4w9WgXcQQ")
    assert not is_valid_video_id("dQw4w9WgX!Q")
    assert not is_valid_video_id(None)


# ---------------------------
# Presenter
# ---------------------------

def test_format_bytes():
    assert format_bytes(0) == "0 Bytes"
    assert format_bytes(None) == "0 Bytes"
    assert format_bytes(512) == "512 Bytes"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(1048576) == "1 MB"
    assert format_bytes(1024 ** 3) == "1 GB"
    assert format_bytes(5 * 1024 ** 4) == "5120 GB"


def test_format_bitrate_and_duration():
    assert format_bitrate(0) == "N/A"
    assert format_bitrate(None) == "N/A"
    assert format_bitrate(128000) == "128 kbps"
    assert format_bitrate(1500) == "2 kbps"
    assert format_duration(0) == "00:00"
    assert format_duration(65) == "1:05"
    assert format_duration(3723) == "1:02:03"


def test_relay_url_shape():
    assert relay_url(VIDEO_ID, 140) == f"/relay?videoId={VIDEO_ID}&formatId=140"


def test_present_formats_is_deterministic():
    catalog = build_catalog(
        make_streaming(
            formats=[make_format(18, "video/mp4", "360p", bitrate=500000, contentLength="1048576")],
            adaptive=[make_format(140, "audio/mp4", bitrate=129000, contentLength=3000000)],
        )
    )
    first = json.dumps(present_formats(catalog, VIDEO_ID), sort_keys=False)
    second = json.dumps(present_formats(catalog, VIDEO_ID), sort_keys=False)
    assert first == second

    presented = present_formats(catalog, VIDEO_ID)
    assert presented["video"][0]["size"] == "1 MB"
    assert presented["video"][0]["download"] == f"/relay?videoId={VIDEO_ID}&formatId=18"
    assert presented["audio"][0]["bitrate"] == "129 kbps"

    urls = present_download_urls(catalog, VIDEO_ID)
    assert urls == present_download_urls(catalog, VIDEO_ID)
    assert urls["audio"] == [{"itag": 140, "url": f"/relay?videoId={VIDEO_ID}&formatId=140", "size": "2.86 MB"}]


# ---------------------------
# Catalog building
# ---------------------------

def test_video_formats_follow_quality_ladder_in_any_input_order():
    labels = {"720p": 22, "1080p": 137, "240p": 133}
    for order in permutations(labels):
        catalog = build_catalog(make_streaming(adaptive=[make_format(labels[q], "video/mp4", q) for q in order]))
        assert [fmt.quality for fmt in catalog.video] == ["1080p", "720p", "240p"]


def test_unknown_quality_labels_sort_last_in_arrival_order():
    catalog = build_catalog(
        make_streaming(
            adaptive=[
                make_format(1, "video/webm", "weird"),
                make_format(2, "video/mp4", "360p"),
                make_format(3, "video/mp4", ""),
                make_format(4, "video/mp4", "1080p60"),
            ]
        )
    )
    assert [fmt.itag for fmt in catalog.video] == [4, 2, 1, 3]
    assert quality_rank("1080p60") == quality_rank("1080p")
    assert quality_rank("4320p") == -1


def test_audio_sorted_by_bitrate_with_stable_ties():
    catalog = build_catalog(
        make_streaming(
            adaptive=[
                make_format(249, "audio/webm", bitrate=50000),
                make_format(140, "audio/mp4", bitrate=130000),
                make_format(250, "audio/webm", bitrate=50000),
                make_format(251, "audio/webm", bitrate="160000"),
            ]
        )
    )
    assert [fmt.itag for fmt in catalog.audio] == [251, 140, 249, 250]


def test_unclassified_formats_only_in_combined_list():
    catalog = build_catalog(
        make_streaming(
            formats=[make_format(18, "video/mp4", "360p")],
            adaptive=[make_format(999, "text/vtt"), make_format(140, "audio/mp4", bitrate=1)],
        )
    )
    assert [fmt.itag for fmt in catalog.all] == [18, 999, 140]
    assert 999 not in [fmt.itag for fmt in catalog.video + catalog.audio]


def test_recommended_follows_preferred_type():
    streaming = make_streaming(
        formats=[make_format(18, "video/mp4", "360p")],
        adaptive=[make_format(137, "video/mp4", "1080p"), make_format(140, "audio/mp4", bitrate=128000)],
    )
    assert build_catalog(streaming, "video").recommended.itag == 137
    assert build_catalog(streaming, "audio").recommended.itag == 140
    assert build_catalog(streaming, "both").recommended.itag == 18

    video_only = make_streaming(formats=[make_format(18, "video/mp4", "360p")])
    assert build_catalog(video_only, "audio").recommended.itag == 18
    assert build_catalog(make_streaming(), "video").recommended is None


# ---------------------------
# Player resolution
# ---------------------------

def test_resolve_player_tolerates_missing_optional_fields():
    async def run():
        async with make_client(lambda request: httpx.Response(200, json={"videoDetails": {"videoId": VIDEO_ID}})) as client:
            return await resolve_player(client, VIDEO_ID)

    result = asyncio.run(run())
    assert result.video.id == VIDEO_ID
    assert result.video.title == ""
    assert result.video.duration == 0
    assert result.video.thumbnails == []
    assert result.catalog.all == []
    assert result.catalog.recommended is None
    assert result.streaming.expires_in_seconds == 3600


def test_resolve_player_defaults_format_fields_and_coerces_numbers():
    payload = make_player_payload(
        title="Never Gonna Give You Up",
        lengthSeconds="212",
        viewCount="1500000000",
        adaptive=[
            {"itag": 140, "mimeType": "audio/mp4", "contentLength": "3433514", "bitrate": "130685"},
            {"itag": 0},
        ],
    )
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=payload)

    async def run():
        async with make_client(handler) as client:
            return await resolve_player(client, VIDEO_ID, "audio")

    result = asyncio.run(run())
    assert result.video.duration == 212
    assert result.video.view_count == 1500000000
    audio = result.catalog.audio[0]
    assert (audio.content_length, audio.bitrate, audio.url, audio.fps) == (3433514, 130685, "", 0)
    blank = result.catalog.all[1]
    assert (blank.mime_type, blank.quality, blank.signature_cipher) == ("", "", None)

    body = json.loads(seen[0].content)
    assert body["videoId"] == VIDEO_ID
    assert body["context"]["client"]["clientName"] == "WEB"
    assert body["playbackContext"]["contentPlaybackContext"]["signatureTimestamp"] == 20480
    assert seen[0].url.params["key"]


def test_resolve_player_validates_id_before_network():
    async def run(video_id):
        async with make_client(forbid_network) as client:
            return await resolve_player(client, video_id)

    with pytest.raises(PipelineError) as missing:
        asyncio.run(run("  "))
    assert (missing.value.code, missing.value.status_code) == ("MISSING_VIDEO_ID", 400)

    with pytest.raises(PipelineError) as invalid:
        asyncio.run(run("too-short"))
    assert (invalid.value.code, invalid.value.status_code) == ("INVALID_VIDEO_ID", 400)


def test_resolve_player_fails_closed_without_video_details():
    payload = {"playabilityStatus": {"status": "ERROR", "reason": "Video unavailable"}}

    async def run():
        async with make_client(lambda request: httpx.Response(200, json=payload)) as client:
            return await resolve_player(client, VIDEO_ID)

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.code == "PLAYER_FAILED"
    assert excinfo.value.message == "Video unavailable"


def test_resolve_player_maps_upstream_http_error():
    payload = {"error": {"code": 403, "message": "The caller does not have permission"}}

    async def run():
        async with make_client(lambda request: httpx.Response(403, json=payload)) as client:
            return await resolve_player(client, VIDEO_ID)

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.code == "PLAYER_FAILED"
    assert excinfo.value.message == "The caller does not have permission"
    assert excinfo.value.status_code == 500


# ---------------------------
# Search
# ---------------------------

def test_search_rejects_blank_query_before_network():
    async def run():
        async with make_client(forbid_network) as client:
            return await search_videos(client, "   \t ", 20)

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(run())
    assert (excinfo.value.code, excinfo.value.status_code) == ("INVALID_QUERY", 400)


def test_search_with_zero_limit_collects_nothing():
    payload = make_search_payload([make_renderer("aaaaaaaaaaa"), make_renderer("bbbbbbbbbbb")])

    async def run(limit):
        async with make_client(lambda request: httpx.Response(200, json=payload)) as client:
            return await search_videos(client, "cats", limit)

    assert asyncio.run(run(0)) == []
    assert asyncio.run(run(-3)) == []
    assert [video.id for video in asyncio.run(run(1))] == ["aaaaaaaaaaa"]


def test_search_parses_results_and_stops_at_limit():
    payload = make_search_payload(
        [
            make_renderer("aaaaaaaaaaa", title="First"),
            {"videoId": "bad"},
            make_renderer(
                "bbbbbbbbbbb",
                badges=[{"metadataBadgeRenderer": {"label": "LIVE"}}],
                ownerText=None,
                longBylineText={"runs": [{"text": "Byline Channel"}]},
            ),
            make_renderer("ccccccccccc"),
        ]
    )
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=payload)

    async def run():
        async with make_client(handler) as client:
            return await search_videos(client, "  never gonna  ", 2)

    videos = asyncio.run(run())
    assert [video.id for video in videos] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]
    first, second = videos
    assert first.title == "First"
    assert first.channel_id == "UC_Artist"
    assert first.thumbnail == "https://i.ytimg.com/vi/aaaaaaaaaaa/hqdefault.jpg"
    assert first.url == "https://www.youtube.com/watch?v=aaaaaaaaaaa"
    assert not first.is_live
    assert second.is_live
    assert second.channel == "Byline Channel"
    assert second.channel_id is None

    assert seen[0]["query"] == "never gonna"
    assert seen[0]["params"] == "EgIQAQ%3D%3D"
    assert seen[0]["context"]["client"]["clientName"] == "MWEB"


def test_search_defaults_cosmetic_fields():
    videos = extract_search_results(make_search_payload([{"videoId": "ddddddddddd"}]), 20)
    video = videos[0]
    assert (video.title, video.channel, video.views) == ("No title", "Unknown", "0 views")
    assert video.thumbnail is None
    assert (video.thumbnail_width, video.thumbnail_height) == (480, 360)
    assert video.duration is None and video.published is None


def test_search_missing_layout_yields_no_results():
    assert extract_search_results({}, 20) == []
    assert extract_search_results({"contents": {"twoColumnSearchResultsRenderer": {}}}, 20) == []
    mobile = {
        "contents": {
            "sectionListRenderer": {
                "contents": [{"itemSectionRenderer": {"contents": [{"videoRenderer": make_renderer("eeeeeeeeeee")}]}}]
            }
        }
    }
    assert [video.id for video in extract_search_results(mobile, 20)] == ["eeeeeeeeeee"]


def test_search_forwards_upstream_status_and_message():
    payload = {"error": {"code": 429, "message": "Quota exceeded"}}

    async def run():
        async with make_client(lambda request: httpx.Response(429, json=payload)) as client:
            return await search_videos(client, "cats", 5)

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.code == "SEARCH_FAILED"
    assert excinfo.value.status_code == 429
    assert excinfo.value.message == "Quota exceeded"


# ---------------------------
# Relay helpers
# ---------------------------

def test_sanitize_filename():
    assert sanitize_filename('My <Video>: "Part 1/2"?') == "My__Video___Part_1_2_"
    assert sanitize_filename("a   b\tc") == "a_b_c"
    assert len(sanitize_filename("x" * 500)) == 200


def test_suggested_filename_prefers_explicit_name():
    catalog = build_catalog(make_streaming(adaptive=[make_format(137, "video/mp4", "1080p")]))
    descriptor = catalog.video[0]
    assert suggested_filename(descriptor, "My Song", None, None) == "My_Song_1080p"
    assert suggested_filename(descriptor, "My Song", "hd", None) == "My_Song_hd"
    assert suggested_filename(descriptor, "", None, None) == "video_1080p"
    assert suggested_filename(None, None, None, "clip name") == "clip_name"
    assert suggested_filename(None, None, None, None) == "video"


def test_extension_for():
    assert extension_for("video/mp4") == "mp4"
    assert extension_for('audio/webm; codecs="opus"') == "webm"
    assert extension_for("audio/mpeg") == "mp3"
    assert extension_for("application/x-whatever") == "bin"
    assert extension_for(None) == "bin"


def test_build_relay_headers_defaults():
    headers = build_relay_headers(httpx.Headers({}), "clip")
    assert headers == {
        "Content-Type": "application/octet-stream",
        "Content-Length": "unknown",
        "Content-Disposition": 'attachment; filename="clip.bin"',
        "Accept-Ranges": "bytes",
    }


def test_build_relay_headers_passes_upstream_values():
    upstream = httpx.Headers(
        {
            "content-type": "audio/mp4",
            "content-length": "1024",
            "content-range": "bytes 0-1023/4096",
            "content-disposition": 'inline; filename="upstream.m4a"',
        }
    )
    headers = build_relay_headers(upstream, "ignored")
    assert headers["Content-Length"] == "1024"
    assert headers["Content-Range"] == "bytes 0-1023/4096"
    assert headers["Content-Disposition"] == 'inline; filename="upstream.m4a"'


def test_apply_cors_relay():
    relay = "https://cors.example.org/"
    assert apply_cors_relay("https://rr1.googlevideo.com/a", relay) == "https://cors.example.org/https://rr1.googlevideo.com/a"
    already = "https://cors.example.org/https://rr1.googlevideo.com/a"
    assert apply_cors_relay(already, relay) == already


def test_open_relay_close_hook_releases_unread_upstream():
    closed = []

    class TrackedStream(httpx.AsyncByteStream):
        async def __aiter__(self):
            yield b"payload"

        async def aclose(self):
            closed.append(True)

    async def run():
        async with make_client(lambda request: httpx.Response(200, stream=TrackedStream())) as client:
            stream = await open_relay(client, direct_url="https://rr1.googlevideo.com/direct")
            assert closed == []
            await stream.close()

    asyncio.run(run())
    assert closed == [True]
