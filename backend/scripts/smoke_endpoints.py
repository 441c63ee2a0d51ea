from __future__ import annotations

import argparse
import os
import sys
from typing import Any

import requests
from requests import RequestException

DEFAULT_BASE_URL = os.getenv("SMOKE_BASE_URL", "http://localhost:8000")
DEFAULT_VIDEO_ID = "dQw4w9WgXcQ"


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        raise AssertionError(message)


def get_json(base_url: str, path: str, params: dict[str, Any] | None = None, timeout: int = 30) -> tuple[int, dict]:
    response = requests.get(f"{base_url.rstrip('/')}{path}", params=params, timeout=timeout)
    try:
        payload = response.json()
    except ValueError:
        raise AssertionError(f"{path} did not return JSON (HTTP {response.status_code})")
    return response.status_code, payload


def check_health(base_url: str, _video_id: str) -> None:
    status, payload = get_json(base_url, "/health")
    assert_true(status == 200, "/health should return 200")
    assert_true(payload.get("status") == "healthy", "/health should report status=healthy")


def check_search_validation(base_url: str, _video_id: str) -> None:
    status, payload = get_json(base_url, "/search", {"query": "   "})
    assert_true(status == 400, "/search with a blank query should return 400")
    assert_true(payload.get("error") == "INVALID_QUERY", "/search blank query should be INVALID_QUERY")


def check_search(base_url: str, _video_id: str) -> None:
    status, payload = get_json(base_url, "/search", {"query": "lofi hip hop", "limit": 5})
    assert_true(status == 200, f"/search should return 200, got {status}: {payload.get('message')}")
    videos = payload.get("data", {}).get("videos", [])
    assert_true(len(videos) <= 5, "/search should honour limit")
    for video in videos:
        assert_true(len(video.get("id", "")) == 11, "/search results should carry 11-character ids")


def check_player(base_url: str, video_id: str) -> None:
    status, payload = get_json(base_url, "/player", {"videoId": video_id, "type": "audio"})
    assert_true(status == 200, f"/player should return 200, got {status}: {payload.get('message')}")
    data = payload.get("data", {})
    assert_true(data.get("video", {}).get("id") == video_id, "/player should echo the video id")
    assert_true({"video", "audio", "all"} <= set(data.get("formats", {})), "/player formats shape is incomplete")


def check_player_validation(base_url: str, _video_id: str) -> None:
    status, payload = get_json(base_url, "/player", {"videoId": "short"})
    assert_true(status == 400, "/player with a malformed id should return 400")
    assert_true(payload.get("error") == "INVALID_VIDEO_ID", "/player malformed id should be INVALID_VIDEO_ID")


def check_formats(base_url: str, video_id: str) -> None:
    status, payload = get_json(base_url, "/formats", {"url": f"https://youtu.be/{video_id}"})
    assert_true(status == 200, f"/formats should return 200, got {status}: {payload.get('message')}")
    data = payload.get("data", {})
    assert_true(data.get("videoId") == video_id, "/formats should echo the extracted video id")


def check_relay_validation(base_url: str, _video_id: str) -> None:
    status, payload = get_json(base_url, "/relay")
    assert_true(status == 400, "/relay without params should return 400")
    assert_true(payload.get("error") == "MISSING_PARAMS", "/relay without params should be MISSING_PARAMS")


def check_relay_range(base_url: str, video_id: str) -> None:
    _status, payload = get_json(base_url, "/player", {"videoId": video_id, "type": "audio"})
    recommended = (payload.get("data") or {}).get("recommended") or {}
    if not recommended.get("url"):
        print("  (skipped: no directly playable format for this video)")
        return
    response = requests.get(
        f"{base_url.rstrip('/')}/relay",
        params={"videoId": video_id, "formatId": recommended["itag"]},
        headers={"Range": "bytes=0-1023"},
        stream=True,
        timeout=30,
    )
    try:
        assert_true(response.status_code in {200, 206}, f"/relay should stream, got {response.status_code}")
        assert_true(response.headers.get("accept-ranges") == "bytes", "/relay should advertise byte ranges")
        assert_true(bool(response.headers.get("content-disposition")), "/relay should set Content-Disposition")
        chunk = next(response.iter_content(1024), b"")
        assert_true(len(chunk) > 0, "/relay should deliver bytes")
    finally:
        response.close()


def run(base_url: str, video_id: str) -> int:
    checks = [
        ("health", check_health),
        ("search validation", check_search_validation),
        ("search", check_search),
        ("player validation", check_player_validation),
        ("player", check_player),
        ("formats", check_formats),
        ("relay validation", check_relay_validation),
        ("relay range", check_relay_range),
    ]
    failures = []

    for check_name, check_fn in checks:
        try:
            check_fn(base_url, video_id)
            print(f"[PASS] {check_name}")
        except (AssertionError, RequestException) as exc:  # pragma: no cover - smoke script output path
            failures.append((check_name, str(exc)))
            print(f"[FAIL] {check_name}: {exc}")

    if failures:
        print(f"\nSmoke checks failed: {len(failures)}")
        for check_name, message in failures:
            print(f"- {check_name}: {message}")
        return 1

    print("\nAll smoke checks passed.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run live smoke checks against a running relay service.")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    parser.add_argument("--video-id", default=DEFAULT_VIDEO_ID)
    args = parser.parse_args()
    return run(args.base_url, args.video_id)


if __name__ == "__main__":
    sys.exit(main())
