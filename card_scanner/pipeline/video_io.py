# pipeline/video_io.py
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterator, Optional, Union

import cv2

from .models import Frame

log = logging.getLogger(__name__)


def iter_frames(video_path: Path, stride: int = 1, max_frames: int | None = None) -> Iterator[Frame]:
    """Offline playback: every Nth frame of a video file, stamped with its media time."""
    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise RuntimeError(f"Could not open video: {video_path}")

    fps = cap.get(cv2.CAP_PROP_FPS) or 25.0

    idx = -1
    yielded = 0
    try:
        while True:
            ok, image = cap.read()
            if not ok:
                break
            idx += 1

            if idx % stride != 0:
                continue

            yield Frame.from_image(image, timestamp_ms=1000.0 * idx / fps)

            yielded += 1
            if max_frames is not None and yielded >= max_frames:
                break
    finally:
        cap.release()


class CameraFrameSource:
    """
    FrameSource over cv2.VideoCapture (device index or file path).
    read_frame() returns None while no frame is available yet.
    """

    def __init__(self, source: Union[int, str, Path] = 0):
        self.source = str(source) if isinstance(source, Path) else source
        self._cap: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"Could not open video source: {self.source}")
        self._cap = cap
        log.info("Video source opened: %s", self.source)

    def read_frame(self) -> Optional[Frame]:
        if self._cap is None:
            return None
        ok, image = self._cap.read()
        if not ok or image is None:
            return None
        return Frame.from_image(image, timestamp_ms=time.monotonic() * 1000.0)

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class IteratorFrameSource:
    """FrameSource over any iterable of frames (video file playback, recorded clips)."""

    def __init__(self, frames):
        self._frames = iter(frames)

    def read_frame(self) -> Optional[Frame]:
        return next(self._frames, None)
