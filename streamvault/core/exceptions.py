"""Domain exceptions shared by the media, storage and service layers."""

from typing import Optional


class StreamVaultError(Exception):
    """Base exception for all domain errors."""

    pass


class ProbeError(StreamVaultError):
    """Raised when ffprobe cannot parse a media file."""

    pass


class EncodeError(StreamVaultError):
    """Raised when an ffmpeg encode, demux or segmenting run fails."""

    pass


class StorageError(StreamVaultError):
    """Base exception for object store failures."""

    pass


class StorageUploadError(StorageError):
    """Raised when an object could not be stored after all attempts."""

    pass


class RateLimitedError(StorageError):
    """Raised when the object store signals a rate limit."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ObjectNotFoundError(StorageError):
    """Raised when a referenced object no longer exists in the store."""

    pass


class NotFoundError(StreamVaultError):
    """Raised when a requested resource does not exist."""

    pass


class VideoNotFoundError(NotFoundError):
    """Raised when a video record is not found."""

    pass


class TrackNotFoundError(NotFoundError):
    """Raised when an audio track has no playable source."""

    pass


class ShareLinkNotFoundError(NotFoundError):
    """Raised when a share link is unknown or expired."""

    pass


class StreamUnavailableError(NotFoundError):
    """Raised when no playback source exists for a video."""

    pass


class InvalidInputError(StreamVaultError):
    """Raised when client input is malformed."""

    pass


class UnsupportedFileTypeError(InvalidInputError):
    """Raised when an upload does not have an allowed video extension."""

    pass


class FileTooLargeError(InvalidInputError):
    """Raised when an upload exceeds the maximum upload size."""

    pass
