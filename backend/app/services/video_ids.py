import re

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

VIDEO_URL_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([A-Za-z0-9_-]{11})"),
    re.compile(r"^([A-Za-z0-9_-]{11})$"),
)


def is_valid_video_id(value: str | None) -> bool:
    return isinstance(value, str) and bool(VIDEO_ID_RE.match(value))


def extract_video_id(text: str | None) -> str | None:
    """Pull an 11-character video id out of a watch/short/embed URL or a bare id."""
    if not text:
        return None
    value = text.strip()
    for pattern in VIDEO_URL_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    return None
