"""
Exception hierarchy for GigSight.

Errors fall into three families that decide how the analysis pipeline
reacts: media problems the user fixes by re-uploading, upstream services
that are down or throttling, and configuration that will not fix itself.
"""


class GigSightError(Exception):
    """Base exception for GigSight."""
    pass


class ConfigurationError(GigSightError):
    """Missing credentials or unusable settings. Permanent."""
    pass


class MediaFormatError(GigSightError):
    """Raised when uploaded media cannot be analyzed as-is."""
    pass


class UnsupportedMediaError(MediaFormatError):
    """Media type or container the pipeline does not handle."""
    pass


class MediaTooLargeError(MediaFormatError):
    """Payload exceeds the configured analysis size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Media is {size} bytes, limit is {limit} bytes")
        self.size = size
        self.limit = limit


class MediaNotFoundError(GigSightError):
    """Raised when a media item id does not exist."""
    pass


class UpstreamError(GigSightError):
    """An external service failed to answer usefully."""
    pass


class RateLimitedError(UpstreamError):
    pass


class UpstreamUnavailableError(UpstreamError):
    pass


class UpstreamTimeoutError(UpstreamError):
    pass


class InvalidStatusTransition(GigSightError):
    """Raised when an analysis status change would move backwards."""

    def __init__(self, media_id, current, requested):
        super().__init__(
            f"Media {media_id}: cannot move analysis status from "
            f"{getattr(current, 'value', current)} to {getattr(requested, 'value', requested)}"
        )
        self.media_id = media_id
        self.current = current
        self.requested = requested
