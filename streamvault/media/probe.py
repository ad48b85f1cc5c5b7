"""Media introspection with ffprobe.

Runs ``ffprobe -show_format -show_streams -print_format json`` and reduces the
output to a ``MediaInfo``.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from streamvault.core.exceptions import ProbeError
from streamvault.models.video import AudioStreamInfo, MediaInfo, VideoStreamInfo

logger = structlog.get_logger(__name__)


def parse_frame_rate(value: Any) -> float:
    """Parse an ffprobe frame rate given as ``"num/den"`` or a plain number.

    Returns 0.0 for anything unparseable or a zero denominator.
    """
    if value is None:
        return 0.0
    text = str(value).strip()
    try:
        if "/" in text:
            num, den = text.split("/", 1)
            denominator = float(den)
            if denominator == 0:
                return 0.0
            return round(float(num) / denominator, 3)
        return round(float(text), 3)
    except ValueError:
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_probe_output(raw: Dict[str, Any], max_audio_streams: Optional[int] = None) -> MediaInfo:
    """Convert parsed ffprobe JSON into ``MediaInfo``.

    Args:
        raw: ffprobe JSON document.
        max_audio_streams: Stop enumerating audio streams after this many.

    Returns:
        MediaInfo with the first video stream and the audio stream list.
    """
    format_info = raw.get("format") or {}
    streams: List[Dict[str, Any]] = raw.get("streams") or []

    video: Optional[VideoStreamInfo] = None
    audio_streams: List[AudioStreamInfo] = []

    for stream in streams:
        codec_type = stream.get("codec_type")
        if codec_type == "video" and video is None:
            disposition = stream.get("disposition") or {}
            if disposition.get("attached_pic"):
                continue
            video = VideoStreamInfo(
                codec=stream.get("codec_name", "unknown"),
                width=_to_int(stream.get("width")),
                height=_to_int(stream.get("height")),
                fps=parse_frame_rate(stream.get("r_frame_rate") or stream.get("avg_frame_rate")),
            )
        elif codec_type == "audio":
            if max_audio_streams is not None and len(audio_streams) >= max_audio_streams:
                continue
            tags = stream.get("tags") or {}
            position = len(audio_streams)
            audio_streams.append(
                AudioStreamInfo(
                    index=position,
                    codec=stream.get("codec_name", "unknown"),
                    channels=_to_int(stream.get("channels")),
                    sample_rate=_to_int(stream.get("sample_rate")),
                    language=tags.get("language") or "unknown",
                    title=tags.get("title") or f"Audio Track {position + 1}",
                    stream_index=stream.get("index"),
                )
            )

    duration = _to_float(format_info.get("duration"))
    if duration <= 0 and streams:
        duration = max(_to_float(s.get("duration")) for s in streams)

    return MediaInfo(
        duration=duration,
        format_name=format_info.get("format_name", "unknown"),
        size=_to_int(format_info.get("size")),
        bit_rate=_to_int(format_info.get("bit_rate")),
        video=video,
        audio_streams=audio_streams,
    )


class MediaProbe:
    """Extracts container and stream metadata from media files."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 30.0) -> None:
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, path: Path) -> List[str]:
        return [
            self.ffprobe_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-show_format",
            "-show_streams",
            "-print_format",
            "json",
            str(path),
        ]

    async def probe(self, path: Path, full: bool = True) -> MediaInfo:
        """
        Probe a media file.

        Args:
            path: Local media file
            full: Enumerate every audio stream. The lightweight variant
                (``full=False``) keeps only the first audio stream.

        Returns:
            MediaInfo for the file

        Raises:
            ProbeError: If ffprobe is missing, times out or cannot parse the file
        """
        cmd = self.build_command(path)
        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except FileNotFoundError as e:
            raise ProbeError(f"{self.ffprobe_path} is not installed or not in PATH") from e
        except asyncio.TimeoutError as e:
            if process is not None:
                process.kill()
                await process.wait()
            raise ProbeError(f"ffprobe timed out after {self.timeout}s") from e

        if process.returncode != 0:
            error = stderr.decode(errors="replace").strip() if stderr else "unknown error"
            raise ProbeError(f"ffprobe failed: {error[:500]}")

        try:
            raw = json.loads(stdout.decode(errors="replace") or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output: {e}") from e

        if not raw.get("streams"):
            raise ProbeError("ffprobe found no streams")

        info = parse_probe_output(raw, max_audio_streams=None if full else 1)
        if info.size <= 0:
            info.size = path.stat().st_size

        logger.debug(
            "media_probed",
            path=str(path),
            duration=info.duration,
            resolution=info.resolution,
            audio_streams=len(info.audio_streams),
            full=full,
        )
        return info

    async def probe_or_stat(self, path: Path, full: bool = True) -> MediaInfo:
        """Probe a file, degrading to filesystem stats when probing fails."""
        try:
            return await self.probe(path, full=full)
        except ProbeError as e:
            logger.warning("media_probe_failed", path=str(path), error=str(e))
            return MediaInfo(size=path.stat().st_size, probed=False)
