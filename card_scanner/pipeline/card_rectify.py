# pipeline/card_rectify.py
from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .models import Detection


def crop_card(
    frame: np.ndarray,
    region: Detection,
    pad: int = 0,
    target_size: Optional[tuple[int, int]] = None,
) -> np.ndarray:
    """
    Crop the frame to a detection rectangle (clamped to the frame).
    Optionally resize to target_size (width, height).
    """
    h, w = frame.shape[:2]
    x1, y1, x2, y2 = region.clamp(w, h)

    x1 = max(0, x1 - pad)
    y1 = max(0, y1 - pad)
    x2 = min(w, x2 + pad)
    y2 = min(h, y2 + pad)

    crop = frame[y1:y2, x1:x2]
    if crop.size == 0:
        tw, th = target_size or (1, 1)
        return np.zeros((th, tw, 3), dtype=np.uint8)

    if target_size is None:
        return crop
    return cv2.resize(crop, target_size, interpolation=cv2.INTER_CUBIC)


def binarize(bgr: np.ndarray, threshold: int = 128) -> np.ndarray:
    """Grayscale + hard threshold to boost text contrast before OCR."""
    if bgr.ndim == 3:
        gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    else:
        gray = bgr
    _, bw = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY)
    return bw
