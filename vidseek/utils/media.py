import asyncio
import math
import os
from typing import List, Optional

from loguru import logger

from ..exceptions import UpstreamError, ValidationError


def plan_frame_timestamps(duration: Optional[float], interval: float) -> List[float]:
    """
    Sampling grid for a video: 0, I, 2I, ... up to the last value <= duration.

    An unknown or zero duration yields a single frame at 0.
    """
    if interval <= 0:
        raise ValidationError(f"Frame interval must be positive, got {interval}")
    if duration is None or duration <= 0:
        if duration is not None and duration < 0:
            raise ValidationError(f"Video duration cannot be negative, got {duration}")
        return [0.0]

    # Tolerance keeps 30.0 / 10.0 from landing just below 3
    count = int(math.floor(duration / interval + 1e-9)) + 1
    return [round(i * interval, 3) for i in range(count)]


async def _run(cmd: List[str]) -> bytes:
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise UpstreamError(f"{cmd[0]} is not installed or not on PATH") from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise UpstreamError(
            f"{cmd[0]} exited with code {process.returncode}",
            details={"stderr": stderr.decode("utf-8", errors="replace")[-2000:]}
        )
    return stdout


async def get_video_duration(video_path: str) -> float:
    """
    Get video duration in seconds using ffprobe.

    Raises:
        UpstreamError: If ffprobe fails or the duration cannot be parsed
    """
    stdout = await _run([
        "ffprobe", "-v", "quiet", "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1", video_path
    ])
    try:
        duration = float(stdout.strip())
    except ValueError as e:
        raise UpstreamError(f"Could not parse duration of {video_path}: {stdout!r}") from e
    logger.info(f"Video duration: {duration:.2f} seconds")
    return duration


async def has_audio_stream(video_path: str) -> bool:
    """True if the file contains at least one audio stream."""
    stdout = await _run([
        "ffprobe", "-v", "error", "-select_streams", "a:0",
        "-show_entries", "stream=codec_type",
        "-of", "default=noprint_wrappers=1:nokey=1", video_path
    ])
    return stdout.strip() == b"audio"


async def extract_audio(video_path: str, output_path: str, bitrate: str = "128k") -> str:
    """Extract the audio track of a video as mono mp3."""
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    await _run([
        "ffmpeg", "-y", "-i", video_path,
        "-vn", "-ac", "1", "-acodec", "libmp3lame", "-b:a", bitrate,
        output_path
    ])
    logger.info(f"Extracted audio from {video_path} to {output_path}")
    return output_path
