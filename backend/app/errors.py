class PipelineError(Exception):
    """A failure with a stable error code, surfaced to the client as JSON."""

    def __init__(self, code: str, message: str, status_code: int = 500):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


MISSING_PARAMS = "MISSING_PARAMS"
MISSING_URL = "MISSING_URL"
MISSING_VIDEO_ID = "MISSING_VIDEO_ID"
INVALID_VIDEO_ID = "INVALID_VIDEO_ID"
INVALID_URL = "INVALID_URL"
INVALID_QUERY = "INVALID_QUERY"
DOWNLOAD_URL_NOT_FOUND = "DOWNLOAD_URL_NOT_FOUND"
DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
STREAM_ERROR = "STREAM_ERROR"
PLAYER_FAILED = "PLAYER_FAILED"
FORMATS_FAILED = "FORMATS_FAILED"
SEARCH_FAILED = "SEARCH_FAILED"
