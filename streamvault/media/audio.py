"""Audio track extraction for multi-audio sources.

Each audio stream is demuxed into its own AAC file with timestamps normalized
to zero, then segmented into its own HLS playlist so a player can pair any
track with the video-only stream.
"""

import re
from pathlib import Path
from typing import List, Optional

import structlog

from streamvault.core.config import TranscodeConfig
from streamvault.core.exceptions import EncodeError
from streamvault.core.progress import ProgressCallback, noop_progress
from streamvault.media.ffmpeg import EncodeParams, FFmpegRunner
from streamvault.media.hls import AUDIO_DIR, SEGMENT_PATTERN, VARIANT_PLAYLIST
from streamvault.models.video import AudioHLSStream, AudioStreamInfo, ExtractedAudioTrack

logger = structlog.get_logger(__name__)

EXTRACT_BITRATE = 192  # kbps
STREAM_BITRATE = 128  # kbps
SAMPLE_RATE = 48000

_NAME_CHARS = re.compile(r"[^a-zA-Z0-9]+")


def track_file_name(track: AudioStreamInfo) -> str:
    """File name for an extracted track, e.g. ``eng_commentary_track1.aac``."""
    language = track.language if track.language and track.language != "unknown" else "und"
    title = _NAME_CHARS.sub("_", track.title).strip("_").lower() or "audio"
    return f"{_NAME_CHARS.sub('_', language).lower()}_{title[:40]}_track{track.index}.aac"


class AudioTrackExtractor:
    """Demuxes audio streams and builds per-track audio HLS streams."""

    def __init__(
        self,
        runner: FFmpegRunner,
        config: TranscodeConfig,
        audio_root: Path,
        hls_root: Path,
    ) -> None:
        self.runner = runner
        self.config = config
        self.audio_root = Path(audio_root)
        self.hls_root = Path(hls_root)

    async def extract_tracks(
        self,
        input_path: Path,
        video_id: str,
        audio_streams: List[AudioStreamInfo],
        progress: Optional[ProgressCallback] = None,
        duration: float = 0.0,
    ) -> List[ExtractedAudioTrack]:
        """
        Extract every audio stream of a multi-audio source.

        Does nothing for sources with at most one audio stream. A track that
        fails, or produces an empty file, is left out of the result.

        Args:
            input_path: Source file
            video_id: Owning video, names the output directory
            audio_streams: Probed audio streams
            progress: Receives 0-100 over all tracks
            duration: Source duration for per-track progress

        Returns:
            Successfully extracted tracks in stream order
        """
        if len(audio_streams) <= 1:
            return []

        progress = progress or noop_progress()
        out_dir = self.audio_root / video_id
        out_dir.mkdir(parents=True, exist_ok=True)
        extracted: List[ExtractedAudioTrack] = []
        total = len(audio_streams)

        for position, track in enumerate(audio_streams):
            stage = f"Extracting audio track {position + 1}: {track.title or track.language}"
            await progress(position / total * 100.0, stage, None)

            async def on_percent(percent: float, position: int = position, stage: str = stage) -> None:
                await progress((position + percent / 100.0) / total * 100.0, stage, None)

            output = out_dir / track_file_name(track)
            params = EncodeParams(
                input_path=input_path,
                output_path=output,
                video_codec=None,
                audio_maps=[track.index],
                audio_bitrate=EXTRACT_BITRATE,
                audio_sample_rate=SAMPLE_RATE,
                extra_output_args=["-avoid_negative_ts", "make_zero", "-copyts", "-start_at_zero"],
            )
            try:
                await self.runner.run(params, duration=duration, on_progress=on_percent)
                size = output.stat().st_size if output.exists() else 0
                if size == 0:
                    raise EncodeError("extracted audio file is empty")
            except EncodeError as e:
                logger.warning(
                    "audio_track_extraction_failed",
                    video_id=video_id,
                    track=track.index,
                    error=str(e),
                )
                output.unlink(missing_ok=True)
                continue

            extracted.append(
                ExtractedAudioTrack(
                    index=track.index,
                    language=track.language,
                    title=track.title,
                    path=str(output),
                    size=size,
                )
            )
            logger.info("audio_track_extracted", video_id=video_id, track=track.index, size=size)

        await progress(100.0, "Audio extraction complete", None)
        return extracted

    async def create_audio_hls_streams(
        self,
        video_id: str,
        tracks: List[ExtractedAudioTrack],
        progress: Optional[ProgressCallback] = None,
        duration: float = 0.0,
    ) -> List[AudioHLSStream]:
        """
        Segment each extracted track into its own audio playlist.

        Sets ``playlist`` on every track that succeeds; failures are logged
        and left out.

        Returns:
            Audio streams with playlists relative to the video's segment directory
        """
        progress = progress or noop_progress()
        streams: List[AudioHLSStream] = []
        total = len(tracks)

        for position, track in enumerate(tracks):
            stage = f"Creating HLS for audio track: {track.title}"
            await progress(position / max(total, 1) * 100.0, stage, None)

            relative_dir = f"{AUDIO_DIR}/track_{track.index}"
            out_dir = self.hls_root / video_id / relative_dir
            out_dir.mkdir(parents=True, exist_ok=True)

            params = EncodeParams(
                input_path=Path(track.path),
                output_path=out_dir / VARIANT_PLAYLIST,
                video_codec=None,
                audio_maps=[0],
                audio_bitrate=STREAM_BITRATE,
                audio_sample_rate=SAMPLE_RATE,
                segment_duration=self.config.segment_duration,
                segment_pattern=out_dir / SEGMENT_PATTERN,
                extra_output_args=["-avoid_negative_ts", "make_zero"],
            )
            try:
                await self.runner.run(params, duration=duration)
            except EncodeError as e:
                logger.warning(
                    "audio_hls_failed", video_id=video_id, track=track.index, error=str(e)
                )
                continue

            track.playlist = f"{relative_dir}/{VARIANT_PLAYLIST}"
            streams.append(
                AudioHLSStream(
                    index=track.index,
                    language=track.language,
                    title=track.title,
                    playlist=track.playlist,
                )
            )

        await progress(100.0, "Audio HLS complete", None)
        return streams

    def cleanup_audio_files(self, tracks: List[ExtractedAudioTrack]) -> int:
        """Delete extracted audio files and prune emptied directories.

        Returns:
            Number of files removed
        """
        removed = 0
        parents = set()
        for track in tracks:
            path = Path(track.path)
            try:
                path.unlink()
                removed += 1
                parents.add(path.parent)
            except FileNotFoundError:
                parents.add(path.parent)
            except OSError as e:
                logger.warning("audio_file_cleanup_failed", path=str(path), error=str(e))

        root = self.audio_root.resolve()
        for directory in parents:
            try:
                if directory.resolve() != root and not any(directory.iterdir()):
                    directory.rmdir()
            except OSError as e:
                logger.warning("audio_dir_cleanup_failed", path=str(directory), error=str(e))

        return removed
