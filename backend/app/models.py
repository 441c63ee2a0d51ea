"""
Data shapes for the resolution pipeline.

Two layers live here:

* ``Raw*`` models decode the upstream innertube payloads. They are lenient
  for cosmetic fields (anything missing or malformed collapses to a zero
  value) and strict only where correctness depends on it: a player
  response without ``videoDetails.videoId`` does not decode.
* Domain models (``StreamDescriptor``, ``VideoMetadata``, ...) are what the
  API hands back. They serialize with the camelCase keys the web front end
  reads.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------
# Lenient coercions
# ---------------------------

def _lenient_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, str)):
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            pass
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
    return 0


def _lenient_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _lenient_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return False


def _dict_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _str_items(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _dict_or_empty(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dict_or_none(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


LenientInt = Annotated[int, BeforeValidator(_lenient_int)]
LenientStr = Annotated[str, BeforeValidator(_lenient_str)]
LenientBool = Annotated[bool, BeforeValidator(_lenient_bool)]
OptionalStr = Annotated[str | None, BeforeValidator(_str_or_none)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------
# Upstream player payload
# ---------------------------

class RawThumbnail(_CamelModel):
    url: LenientStr = ""
    width: LenientInt = 0
    height: LenientInt = 0


class RawThumbnailList(_CamelModel):
    thumbnails: Annotated[list[RawThumbnail], BeforeValidator(_dict_items)] = Field(default_factory=list)


class RawFormat(_CamelModel):
    itag: LenientInt = 0
    mime_type: LenientStr = ""
    bitrate: LenientInt = 0
    content_length: LenientInt = 0
    url: LenientStr = ""
    quality_label: LenientStr = ""
    quality: LenientStr = ""
    fps: LenientInt = 0
    width: LenientInt = 0
    height: LenientInt = 0
    approx_duration_ms: LenientInt = 0
    signature_cipher: OptionalStr = None


class RawStreamingData(_CamelModel):
    formats: Annotated[list[RawFormat], BeforeValidator(_dict_items)] = Field(default_factory=list)
    adaptive_formats: Annotated[list[RawFormat], BeforeValidator(_dict_items)] = Field(default_factory=list)
    expires_in_seconds: LenientInt = 0
    dash_manifest_url: OptionalStr = None
    hls_manifest_url: OptionalStr = None


class RawVideoDetails(_CamelModel):
    # Required: the only field the pipeline cannot default.
    video_id: str
    title: LenientStr = ""
    author: LenientStr = ""
    channel_id: LenientStr = ""
    length_seconds: LenientInt = 0
    keywords: Annotated[list[str], BeforeValidator(_str_items)] = Field(default_factory=list)
    short_description: LenientStr = ""
    thumbnail: Annotated[RawThumbnailList, BeforeValidator(_dict_or_empty)] = Field(default_factory=RawThumbnailList)
    is_live_content: LenientBool = False
    allow_ratings: LenientBool = False
    view_count: LenientInt = 0


class RawPlayabilityStatus(_CamelModel):
    status: LenientStr = ""
    reason: LenientStr = ""


class RawPlayerResponse(_CamelModel):
    video_details: Annotated[RawVideoDetails | None, BeforeValidator(_dict_or_none)] = None
    streaming_data: Annotated[RawStreamingData, BeforeValidator(_dict_or_empty)] = Field(
        default_factory=RawStreamingData
    )
    playability_status: Annotated[RawPlayabilityStatus, BeforeValidator(_dict_or_empty)] = Field(
        default_factory=RawPlayabilityStatus
    )


# ---------------------------
# Domain models
# ---------------------------

class Thumbnail(_CamelModel):
    url: str = ""
    width: int = 0
    height: int = 0


class StreamDescriptor(_CamelModel):
    itag: int = 0
    mime_type: str = ""
    bitrate: int = 0
    content_length: int = 0
    url: str = ""
    quality: str = ""
    fps: int = 0
    width: int = 0
    height: int = 0
    approx_duration_ms: int = 0
    signature_cipher: str | None = None

    @property
    def kind(self) -> str | None:
        if "video" in self.mime_type:
            return "video"
        if "audio" in self.mime_type:
            return "audio"
        return None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class VideoMetadata(_CamelModel):
    id: str
    title: str = ""
    channel: str = ""
    channel_id: str = ""
    duration: int = 0
    keywords: list[str] = Field(default_factory=list)
    description: str = ""
    thumbnails: list[Thumbnail] = Field(default_factory=list)
    is_live: bool = False
    allow_ratings: bool = False
    view_count: int = 0

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class FormatCatalog(BaseModel):
    video: list[StreamDescriptor] = Field(default_factory=list)
    audio: list[StreamDescriptor] = Field(default_factory=list)
    all: list[StreamDescriptor] = Field(default_factory=list)
    recommended: StreamDescriptor | None = None

    def find(self, itag: int) -> StreamDescriptor | None:
        for descriptor in self.all:
            if descriptor.itag == itag:
                return descriptor
        return None


class StreamingInfo(_CamelModel):
    expires_in_seconds: int = 3600
    dash_manifest_url: str | None = None
    hls_manifest_url: str | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PlayerResult(BaseModel):
    video: VideoMetadata
    catalog: FormatCatalog
    streaming: StreamingInfo


class SearchResult(_CamelModel):
    id: str
    title: str = "No title"
    channel: str = "Unknown"
    channel_id: str | None = None
    views: str = "0 views"
    duration: str | None = None
    published: str | None = None
    thumbnail: str | None = None
    thumbnail_width: int = 480
    thumbnail_height: int = 360
    is_live: bool = False
    url: str = ""

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
