"""ffmpeg process management.

Builds ffmpeg command lines from declarative ``EncodeParams`` and runs them,
turning ``-progress`` output into percentage callbacks.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import structlog

from streamvault.core.config import TranscodeConfig
from streamvault.core.exceptions import EncodeError

logger = structlog.get_logger(__name__)

# Receives the percentage of the input processed so far
PercentCallback = Callable[[float], Awaitable[None]]


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` if it is still running and reap it."""
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


@dataclass
class EncodeParams:
    """Declarative description of one ffmpeg run.

    A ``video_codec`` of None drops video. An empty ``audio_maps`` drops audio;
    otherwise each entry selects ``0:a:<n>`` and becomes one output audio track.
    A ``segment_duration`` switches the output to an HLS playlist.
    """

    input_path: Path
    output_path: Path
    video_codec: Optional[str] = "libx264"
    width: Optional[int] = None
    height: Optional[int] = None
    video_bitrate: Optional[int] = None  # kbps
    audio_maps: List[int] = field(default_factory=list)
    audio_codec: str = "aac"
    audio_bitrate: Optional[int] = None  # kbps
    audio_channels: int = 2
    audio_sample_rate: Optional[int] = None
    segment_duration: Optional[int] = None
    segment_pattern: Optional[Path] = None
    extra_output_args: List[str] = field(default_factory=list)


class FFmpegRunner:
    """Builds and executes ffmpeg commands."""

    def __init__(self, config: TranscodeConfig) -> None:
        self.config = config
        self.ffmpeg_path = config.ffmpeg_path

    def build_command(self, params: EncodeParams) -> List[str]:
        """Build the ffmpeg command for ``params``.

        Video uses a fixed GOP with scene-cut detection disabled so every
        segment starts on a keyframe at the same timestamps in every rendition.
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-nostats",
            "-loglevel",
            "error",
            "-progress",
            "pipe:1",
            "-i",
            str(params.input_path),
        ]

        if params.video_codec:
            cmd.extend(["-map", "0:v:0", "-c:v", params.video_codec])
            cmd.extend(["-preset", self.config.preset, "-crf", str(self.config.crf)])
            if params.width and params.height:
                cmd.extend(["-s", f"{params.width}x{params.height}"])
            if params.video_bitrate:
                cmd.extend(
                    [
                        "-b:v",
                        f"{params.video_bitrate}k",
                        "-maxrate",
                        f"{params.video_bitrate}k",
                        "-bufsize",
                        f"{params.video_bitrate * 2}k",
                    ]
                )
            cmd.extend(["-pix_fmt", "yuv420p"])
            cmd.extend(["-g", str(self.config.gop_size)])
            cmd.extend(["-keyint_min", str(self.config.gop_size)])
            cmd.extend(["-sc_threshold", "0"])
        else:
            cmd.append("-vn")

        if params.audio_maps:
            for selector in params.audio_maps:
                cmd.extend(["-map", f"0:a:{selector}"])
            for track, _ in enumerate(params.audio_maps):
                cmd.extend([f"-c:a:{track}", params.audio_codec])
                if params.audio_bitrate:
                    cmd.extend([f"-b:a:{track}", f"{params.audio_bitrate}k"])
                cmd.extend([f"-ac:a:{track}", str(params.audio_channels)])
            if params.audio_sample_rate:
                cmd.extend(["-ar", str(params.audio_sample_rate)])
        else:
            cmd.append("-an")

        cmd.extend(params.extra_output_args)

        if params.segment_duration:
            cmd.extend(
                [
                    "-f",
                    "hls",
                    "-hls_time",
                    str(params.segment_duration),
                    "-hls_list_size",
                    "0",
                    "-hls_playlist_type",
                    "vod",
                ]
            )
            if params.segment_pattern:
                cmd.extend(["-hls_segment_filename", str(params.segment_pattern)])

        cmd.append(str(params.output_path))
        return cmd

    async def run(
        self,
        params: EncodeParams,
        duration: float = 0.0,
        on_progress: Optional[PercentCallback] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Run one encode, reporting progress as a monotonically increasing percentage.

        Args:
            params: What to encode
            duration: Input duration in seconds, used to compute percentages
            on_progress: Awaited with the percentage after each progress block
            timeout: Optional wall-clock limit in seconds

        Raises:
            EncodeError: If ffmpeg is missing, times out or exits non-zero
        """
        params.output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(params)
        logger.debug("ffmpeg_started", command=" ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise EncodeError(f"{self.ffmpeg_path} is not installed or not in PATH") from e

        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            await asyncio.wait_for(
                self._consume_progress(process.stdout, duration, on_progress), timeout=timeout
            )
            await process.wait()
        except asyncio.TimeoutError as e:
            await _terminate(process)
            stderr_task.cancel()
            raise EncodeError(f"ffmpeg timed out after {timeout}s") from e
        except BaseException:
            # Cancelled or aborted by the progress callback
            await _terminate(process)
            stderr_task.cancel()
            raise
        stderr = await stderr_task

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip() if stderr else "unknown error"
            raise EncodeError(f"ffmpeg exited with code {process.returncode}: {message[-500:]}")

        if on_progress is not None:
            await on_progress(100.0)

    async def _consume_progress(
        self,
        stream: asyncio.StreamReader,
        duration: float,
        on_progress: Optional[PercentCallback],
    ) -> None:
        last_percent = 0.0
        async for raw_line in stream:
            line = raw_line.decode(errors="replace").strip()
            key, _, value = line.partition("=")
            if key not in ("out_time_us", "out_time_ms") or duration <= 0:
                continue
            try:
                # ffmpeg reports both keys in microseconds
                seconds = int(value) / 1_000_000
            except ValueError:
                continue
            percent = min(seconds / duration * 100.0, 99.9)
            if percent > last_percent:
                last_percent = percent
                if on_progress is not None:
                    await on_progress(percent)

    async def extract_frame(
        self, input_path: Path, output_path: Path, offset: float, timeout: float = 60.0
    ) -> None:
        """Write a single JPEG frame taken at ``offset`` seconds.

        Raises:
            EncodeError: If no frame could be written.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-loglevel",
            "error",
            "-ss",
            f"{offset:.3f}",
            "-i",
            str(input_path),
            "-frames:v",
            "1",
            "-vf",
            "scale=640:-2",
            "-q:v",
            "3",
            str(output_path),
        ]
        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except FileNotFoundError as e:
            raise EncodeError(f"{self.ffmpeg_path} is not installed or not in PATH") from e
        except asyncio.TimeoutError as e:
            if process is not None:
                await _terminate(process)
            raise EncodeError(f"Frame extraction timed out after {timeout}s") from e
        except BaseException:
            if process is not None:
                await _terminate(process)
            raise

        if process.returncode != 0 or not output_path.exists() or output_path.stat().st_size == 0:
            message = stderr.decode(errors="replace").strip() if stderr else "no frame written"
            raise EncodeError(f"Frame extraction failed: {message[-300:]}")
