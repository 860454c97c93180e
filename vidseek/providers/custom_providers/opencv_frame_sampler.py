import asyncio
from typing import Any, Dict, Optional

import cv2
from loguru import logger

from ..base import FrameSampler, SampledFrame, SampledVideo
from ...exceptions import UpstreamError
from ...utils.error_handler import convert_exceptions
from ...utils.media import get_video_duration, plan_frame_timestamps


class OpenCVFrameSampler(FrameSampler):
    """Fixed-interval JPEG frame sampler built on cv2.VideoCapture."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.jpeg_quality = config.get("jpeg_quality", 85)
        self.max_width = config.get("max_width", 640)

    def _encode(self, frame) -> bytes:
        height, width = frame.shape[:2]
        if width > self.max_width:
            scale = self.max_width / width
            frame = cv2.resize(frame, (self.max_width, int(height * scale)), interpolation=cv2.INTER_AREA)
        ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            raise UpstreamError("OpenCV failed to encode frame as JPEG")
        return buffer.tobytes()

    @staticmethod
    def _read_at(cap, seconds: float):
        cap.set(cv2.CAP_PROP_POS_MSEC, seconds * 1000.0)
        return cap.read()

    @convert_exceptions({cv2.error: UpstreamError})
    def _sample_sync(self, video_path: str, interval_seconds: float,
                     probed_duration: Optional[float]) -> SampledVideo:
        cap = cv2.VideoCapture(video_path)
        if not cap.isOpened():
            raise UpstreamError(f"Could not open video file: {video_path}")

        try:
            fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
            frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
            duration = probed_duration
            if duration is None and fps > 0 and frame_count > 0:
                duration = frame_count / fps

            # Seeking exactly to the end reads nothing; the last decodable frame stands in
            last_seek = max(duration - (1.0 / fps), 0.0) if duration and fps > 0 else None

            frames = []
            previous = None
            for timestamp in plan_frame_timestamps(duration, interval_seconds):
                seek = min(timestamp, last_seek) if last_seek is not None else timestamp
                ok, frame = self._read_at(cap, seek)
                if ok and frame is not None:
                    previous = self._encode(frame)
                elif previous is None:
                    raise UpstreamError(
                        f"Could not decode any frame at or before {timestamp}s from {video_path}",
                        details={"timestamp": timestamp}
                    )
                else:
                    # Keep the planned timestamp, showing the nearest earlier decodable frame
                    logger.warning(f"Could not read frame at {timestamp}s from {video_path}; reusing previous frame")
                frames.append(SampledFrame(timestamp=timestamp, image_data=previous))
        finally:
            cap.release()

        logger.info(f"Sampled {len(frames)} frames every {interval_seconds}s from {video_path}")
        return SampledVideo(duration=duration, frames=frames)

    async def sample(self, video_path: str, interval_seconds: float, **kwargs) -> SampledVideo:
        try:
            probed = await get_video_duration(video_path)
        except UpstreamError as e:
            # Fall back to the container metadata OpenCV reports
            logger.warning(f"ffprobe could not read duration of {video_path}: {e}")
            probed = None
        return await asyncio.to_thread(self._sample_sync, video_path, interval_seconds, probed)
