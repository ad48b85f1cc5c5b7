"""Media introspection, audio extraction and adaptive encoding."""

from streamvault.media.audio import AudioTrackExtractor
from streamvault.media.ffmpeg import EncodeParams, FFmpegRunner
from streamvault.media.hls import (
    QUALITY_LADDER,
    AdaptiveStreamEncoder,
    EncodeResult,
    QualityLevel,
    build_master_playlist,
    select_qualities,
)
from streamvault.media.probe import MediaProbe, parse_frame_rate

__all__ = [
    "QUALITY_LADDER",
    "AdaptiveStreamEncoder",
    "AudioTrackExtractor",
    "EncodeParams",
    "EncodeResult",
    "FFmpegRunner",
    "MediaProbe",
    "QualityLevel",
    "build_master_playlist",
    "parse_frame_rate",
    "select_qualities",
]
