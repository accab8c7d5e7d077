# core/frame_sampler.py

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from core.hash_codec import HASH_SIZE, grid_shape
from core.models import MediaKind

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_FRACTIONS = (0.1, 0.25, 0.5, 0.75)
DEFAULT_FALLBACK_TIMESTAMPS = (1.0, 5.0, 15.0, 30.0)


class FrameSource:
    """
    Capability interface for obtaining a small grayscale pixel grid.

    Implementations return a ``height x width`` uint8 array, or None when
    the frame cannot be produced. They must not raise for bad media.
    """

    def extract(self, path: str, width: int, height: int,
                timestamp: Optional[float] = None) -> Optional[np.ndarray]:
        raise NotImplementedError


class FFmpegFrameSource(FrameSource):
    """
    Frame extraction through an external ffmpeg process.

    ffmpeg decodes one frame, scales it to the requested grid and writes
    raw 8-bit gray samples to stdout. Each call is bounded by ``timeout``.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout: float = 10.0):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    def build_command(self, path: str, width: int, height: int,
                      timestamp: Optional[float] = None) -> List[str]:
        cmd = [self.ffmpeg_path, "-v", "error", "-nostdin"]
        if timestamp is not None:
            cmd += ["-ss", f"{timestamp:.3f}"]
        cmd += [
            "-i", path,
            "-frames:v", "1",
            "-vf", f"scale={width}:{height},format=gray",
            "-f", "rawvideo",
            "-pix_fmt", "gray",
            "pipe:1",
        ]
        return cmd

    def extract(self, path: str, width: int, height: int,
                timestamp: Optional[float] = None) -> Optional[np.ndarray]:
        cmd = self.build_command(path, width, height, timestamp)

        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"ffmpeg timed out after {self.timeout}s on {path} (t={timestamp})")
            return None
        except OSError as e:
            logger.error(f"Could not run ffmpeg ({self.ffmpeg_path}): {e}")
            return None

        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="ignore").strip()
            logger.debug(f"ffmpeg failed on {path} (t={timestamp}): {stderr}")
            return None

        expected = width * height
        if len(proc.stdout) < expected:
            logger.debug(f"ffmpeg returned {len(proc.stdout)} bytes for {path}, expected {expected}")
            return None

        return np.frombuffer(proc.stdout[:expected], dtype=np.uint8).reshape(height, width)


class OpenCVFrameSource(FrameSource):
    """
    In-process frame extraction with OpenCV.

    No per-call timeout can be enforced here; prefer the ffmpeg source for
    untrusted media.
    """

    def extract(self, path: str, width: int, height: int,
                timestamp: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            frame = None
            if timestamp is None:
                frame = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
                if frame is None:
                    frame = self._read_with_pillow(path)
            if frame is None:
                frame = self._read_video_frame(path, timestamp)
            if frame is None:
                return None

            if len(frame.shape) == 3:
                frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

            return cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        except cv2.error as e:
            logger.debug(f"OpenCV could not decode {path}: {e}")
            return None

    def _read_with_pillow(self, path: str) -> Optional[np.ndarray]:
        # GIFs and formats OpenCV was built without; first frame only
        try:
            with Image.open(path) as img:
                return np.asarray(img.convert("L"))
        except (UnidentifiedImageError, OSError):
            return None

    def _read_video_frame(self, path: str,
                          timestamp: Optional[float]) -> Optional[np.ndarray]:
        cap = cv2.VideoCapture(path)
        try:
            if not cap.isOpened():
                return None
            if timestamp is not None:
                cap.set(cv2.CAP_PROP_POS_MSEC, timestamp * 1000.0)
            ret, frame = cap.read()
            return frame if ret else None
        finally:
            cap.release()


def video_sample_timestamps(duration_sec: Optional[float],
                            fractions: Sequence[float] = DEFAULT_VIDEO_FRACTIONS,
                            fallbacks: Sequence[float] = DEFAULT_FALLBACK_TIMESTAMPS) -> List[float]:
    """Timestamps to try, in order, when sampling a video"""
    if duration_sec and duration_sec > 0:
        return [duration_sec * fraction for fraction in fractions]
    return [float(t) for t in fallbacks]


class PixelSampler:
    """
    Produce the (N+1) x N grayscale grid that represents a media item.

    Videos are sampled at a short list of timestamps and the first one
    that yields a complete grid wins; frames are never merged.
    """

    def __init__(self,
                 frame_source: FrameSource,
                 hash_size: int = HASH_SIZE,
                 video_fractions: Sequence[float] = DEFAULT_VIDEO_FRACTIONS,
                 fallback_timestamps: Sequence[float] = DEFAULT_FALLBACK_TIMESTAMPS):
        self.frame_source = frame_source
        self.hash_size = hash_size
        self.video_fractions = tuple(video_fractions)
        self.fallback_timestamps = tuple(fallback_timestamps)

    @classmethod
    def from_config(cls, sampling_config) -> 'PixelSampler':
        if sampling_config.frame_source == "opencv":
            source = OpenCVFrameSource()
        elif sampling_config.frame_source == "ffmpeg":
            source = FFmpegFrameSource(
                ffmpeg_path=sampling_config.ffmpeg_path,
                timeout=sampling_config.timeout_seconds
            )
        else:
            raise ValueError(f"Unknown frame source: {sampling_config.frame_source}")

        return cls(
            source,
            hash_size=sampling_config.hash_size,
            video_fractions=sampling_config.video_fractions,
            fallback_timestamps=sampling_config.fallback_timestamps
        )

    def _valid(self, grid: Optional[np.ndarray]) -> bool:
        width, height = grid_shape(self.hash_size)
        return grid is not None and np.asarray(grid).shape == (height, width)

    def _extract(self, path: str, width: int, height: int,
                 timestamp: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            return self.frame_source.extract(path, width, height, timestamp)
        except Exception as e:
            logger.warning(f"Frame extraction failed for {path} (t={timestamp}): {e}")
            return None

    def sample(self, path: str, kind,
               duration_sec: Optional[float] = None) -> Optional[np.ndarray]:
        """Return the pixel grid for a media file, or None if unavailable"""
        if not Path(path).is_file():
            logger.warning(f"Media file not found: {path}")
            return None

        width, height = grid_shape(self.hash_size)

        if MediaKind(kind) != MediaKind.VIDEO:
            grid = self._extract(path, width, height)
            return np.asarray(grid) if self._valid(grid) else None

        timestamps = video_sample_timestamps(
            duration_sec, self.video_fractions, self.fallback_timestamps
        )
        for timestamp in timestamps:
            grid = self._extract(path, width, height, timestamp)
            if self._valid(grid):
                logger.debug(f"Sampled {path} at {timestamp:.2f}s")
                return np.asarray(grid)

        logger.warning(f"No usable frame in {path} after {len(timestamps)} attempts")
        return None


def probe_duration(path: str, ffprobe_path: str = "ffprobe",
                   timeout: float = 10.0) -> Optional[float]:
    """Container duration in seconds via ffprobe, or None if unknown"""
    cmd = [
        ffprobe_path,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json",
        path,
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True,
                              timeout=timeout, check=False)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning(f"ffprobe failed on {path}: {e}")
        return None

    if proc.returncode != 0:
        return None

    try:
        payload = json.loads(proc.stdout or "{}")
        duration = float((payload.get("format") or {}).get("duration"))
    except (TypeError, ValueError):
        return None

    return duration if duration > 0 else None
