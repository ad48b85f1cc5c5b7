"""Adaptive HLS encoding.

Encodes a source into a ladder of renditions, each a VOD playlist of
fixed-duration segments, and writes the master playlist referencing them.

On-disk layout under ``<hls_dir>/<video_id>/``::

    master.m3u8                      standard ladder (video + audio)
    <quality>/playlist.m3u8          one rendition
    <quality>/segment_000.ts
    video-only/master.m3u8           ladder without audio (multi-audio sources)
    video-only/<quality>/...
    audio/track_<n>/playlist.m3u8    per-track audio streams
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import structlog

from streamvault.core.config import TranscodeConfig
from streamvault.core.exceptions import EncodeError
from streamvault.core.progress import ProgressCallback, noop_progress
from streamvault.media.ffmpeg import EncodeParams, FFmpegRunner
from streamvault.models.video import MediaInfo, QualityVariant

logger = structlog.get_logger(__name__)

MASTER_PLAYLIST = "master.m3u8"
VARIANT_PLAYLIST = "playlist.m3u8"
SEGMENT_PATTERN = "segment_%03d.ts"
VIDEO_ONLY_DIR = "video-only"
AUDIO_DIR = "audio"

# Baseline H.264 and AAC-LC codec strings
VIDEO_CODECS = "avc1.42E01E"
AUDIO_CODECS = "mp4a.40.2"

DEFAULT_SOURCE_HEIGHT = 720


@dataclass(frozen=True)
class QualityLevel:
    """One rung of the quality ladder. Bitrates are in kbps."""

    label: str
    width: int
    height: int
    video_bitrate: int
    audio_bitrate: int

    def bandwidth(self, with_audio: bool = True) -> int:
        """Approximate peak bandwidth in bits per second."""
        kbps = self.video_bitrate + (self.audio_bitrate if with_audio else 0)
        return kbps * 1000


QUALITY_LADDER: List[QualityLevel] = [
    QualityLevel("1080p", 1920, 1080, 5000, 192),
    QualityLevel("720p", 1280, 720, 2800, 128),
    QualityLevel("480p", 854, 480, 1400, 128),
    QualityLevel("360p", 640, 360, 800, 96),
]


def select_qualities(source_height: Optional[int], source_width: Optional[int] = None) -> List[QualityLevel]:
    """Prune the ladder to renditions no taller than the source.

    An unknown height is treated as 720p. A source shorter than the lowest
    rung gets a single rendition at its own size so nothing is upscaled.
    """
    height = source_height or DEFAULT_SOURCE_HEIGHT
    levels = [level for level in QUALITY_LADDER if level.height <= height]
    if levels:
        return levels

    lowest = QUALITY_LADDER[-1]
    width = source_width or int(round(height * 16 / 9))
    # libx264 requires even dimensions
    width -= width % 2
    even_height = height - height % 2
    return [
        QualityLevel(
            f"{even_height}p", width, even_height, lowest.video_bitrate, lowest.audio_bitrate
        )
    ]


def build_master_playlist(variants: List[QualityVariant], video_only: bool = False) -> str:
    """Render a master playlist listing each variant's bandwidth and resolution."""
    codecs = VIDEO_CODECS if video_only else f"{VIDEO_CODECS},{AUDIO_CODECS}"
    lines = ["#EXTM3U", "#EXT-X-VERSION:4"]
    for variant in variants:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={variant.bandwidth},"
            f"RESOLUTION={variant.width}x{variant.height},"
            f'NAME="{variant.label}",CODECS="{codecs}"'
        )
        lines.append(variant.playlist)
    return "\n".join(lines) + "\n"


@dataclass
class EncodeResult:
    """Outcome of one ladder encode.

    Paths are relative to the video's segment directory.
    """

    master_manifest: str
    variants: List[QualityVariant] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class AdaptiveStreamEncoder:
    """Produces the multi-rendition HLS ladder for a source file."""

    def __init__(self, runner: FFmpegRunner, config: TranscodeConfig, hls_root: Path) -> None:
        self.runner = runner
        self.config = config
        self.hls_root = Path(hls_root)

    def video_dir(self, video_id: str) -> Path:
        return self.hls_root / video_id

    async def encode(
        self,
        input_path: Path,
        video_id: str,
        media_info: MediaInfo,
        progress: Optional[ProgressCallback] = None,
        video_only: bool = False,
    ) -> EncodeResult:
        """
        Encode every rendition the source supports and write the master playlist.

        A rendition that fails is skipped; the master lists the survivors.

        Args:
            input_path: Source file
            video_id: Owning video, names the output directory
            media_info: Probed source metadata
            progress: Receives 0-100 over the whole ladder
            video_only: Drop audio from every rendition

        Returns:
            EncodeResult with the master playlist and surviving variants

        Raises:
            EncodeError: If every rendition failed
        """
        progress = progress or noop_progress()
        base_dir = self.video_dir(video_id)
        prefix = f"{VIDEO_ONLY_DIR}/" if video_only else ""
        out_dir = base_dir / VIDEO_ONLY_DIR if video_only else base_dir

        video = media_info.video
        levels = select_qualities(video.height if video else None, video.width if video else None)
        audio_maps = (
            []
            if video_only
            else list(range(min(len(media_info.audio_streams), self.config.max_audio_tracks)))
        )
        stage = "Encoding video-only" if video_only else "Encoding"
        log = logger.bind(video_id=video_id, video_only=video_only)
        log.info(
            "encode_started",
            qualities=[level.label for level in levels],
            audio_tracks=len(audio_maps),
        )

        result = EncodeResult(master_manifest=f"{prefix}{MASTER_PLAYLIST}")
        total = len(levels)

        for position, level in enumerate(levels):
            quality_dir = out_dir / level.label
            quality_dir.mkdir(parents=True, exist_ok=True)

            async def on_percent(
                percent: float, position: int = position, level: QualityLevel = level
            ) -> None:
                await progress(
                    (position + percent / 100.0) / total * 100.0,
                    f"{stage} {level.label}",
                    level.label,
                )

            await progress(position / total * 100.0, f"{stage} {level.label}", level.label)
            params = EncodeParams(
                input_path=input_path,
                output_path=quality_dir / VARIANT_PLAYLIST,
                width=level.width,
                height=level.height,
                video_bitrate=level.video_bitrate,
                audio_maps=audio_maps,
                audio_bitrate=level.audio_bitrate,
                segment_duration=self.config.segment_duration,
                segment_pattern=quality_dir / SEGMENT_PATTERN,
            )
            try:
                await self.runner.run(params, duration=media_info.duration, on_progress=on_percent)
            except EncodeError as e:
                log.warning("quality_encode_failed", quality=level.label, error=str(e))
                result.failed.append(level.label)
                shutil.rmtree(quality_dir, ignore_errors=True)
                continue

            result.variants.append(
                QualityVariant(
                    label=level.label,
                    width=level.width,
                    height=level.height,
                    bandwidth=level.bandwidth(with_audio=bool(audio_maps)),
                    playlist=f"{prefix}{level.label}/{VARIANT_PLAYLIST}",
                )
            )
            log.info("quality_encode_completed", quality=level.label)

        if not result.variants:
            raise EncodeError(f"All qualities failed: {', '.join(result.failed)}")

        # Master entries are relative to the master's own directory
        relative = [
            QualityVariant(
                label=v.label,
                width=v.width,
                height=v.height,
                bandwidth=v.bandwidth,
                playlist=f"{v.label}/{VARIANT_PLAYLIST}",
            )
            for v in result.variants
        ]
        (out_dir / MASTER_PLAYLIST).write_text(
            build_master_playlist(relative, video_only=video_only), encoding="utf-8"
        )
        await progress(100.0, f"{stage} complete", None)
        log.info("encode_completed", variants=len(result.variants), failed=result.failed)
        return result
