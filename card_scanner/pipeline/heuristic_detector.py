from __future__ import annotations
import logging
import cv2
import numpy as np
from .models import Detection, Frame

log = logging.getLogger(__name__)

# labels accepted as "a card" when a general object detector is plugged in
CARD_CLASSES = ("card", "book", "cell phone", "remote", "mouse")

CARD_ASPECT = 63 / 88.0  # width / height of a portrait trading card


def iou(a: Detection, b: Detection) -> float:
    xi1 = max(a.x, b.x)
    yi1 = max(a.y, b.y)
    xi2 = min(a.x + a.width, b.x + b.width)
    yi2 = min(a.y + a.height, b.y + b.height)
    if xi2 <= xi1 or yi2 <= yi1:
        return 0.0
    inter = (xi2 - xi1) * (yi2 - yi1)
    denom = a.area + b.area - inter
    return float(inter / denom) if denom > 0 else 0.0


def nms(dets: list[Detection], iou_thresh: float = 0.5) -> list[Detection]:
    """Keep highest-conf detections, suppress overlaps."""
    dets = sorted(dets, key=lambda d: d.confidence, reverse=True)
    keep: list[Detection] = []
    for d in dets:
        if all(iou(d, k) < iou_thresh for k in keep):
            keep.append(d)
    return keep


def card_like_box(
    w: int,
    h: int,
    img_w: int,
    img_h: int,
    *,
    min_area_frac: float = 0.015,
    max_area_frac: float = 0.90,
    aspect_tol: float = 0.22,
) -> bool:
    """Geometry filter: card-sized and close to the 63:88 ratio in either orientation."""
    if w <= 0 or h <= 0:
        return False
    frac = (w * h) / float(img_w * img_h)
    if frac < min_area_frac or frac > max_area_frac:
        return False
    ar = min(w, h) / float(max(w, h))
    return abs(ar - CARD_ASPECT) <= aspect_tol


class HeuristicCardDetector:
    """Contour-based card finder. No model weights, so load() is a no-op."""

    def __init__(self, top_k: int = 4, nms_iou: float = 0.3):
        self.top_k = top_k
        self.nms_iou = nms_iou

    def load(self) -> None:
        log.info("HeuristicCardDetector ready (contour + edge scoring).")

    def _candidates(self, gray: np.ndarray) -> list[tuple[int, int, int, int]]:
        H, W = gray.shape[:2]
        blur = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blur, 50, 150)
        edges = cv2.dilate(edges, None, iterations=1)
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        boxes = []
        for c in contours:
            peri = cv2.arcLength(c, True)
            approx = cv2.approxPolyDP(c, 0.02 * peri, True)
            if len(approx) != 4:
                continue
            x, y, w, h = cv2.boundingRect(approx)
            if card_like_box(w, h, W, H):
                boxes.append((x, y, w, h))
        return boxes

    def _score(self, gray: np.ndarray, box: tuple[int, int, int, int]) -> float:
        x, y, w, h = box
        roi = gray[y:y + h, x:x + w]
        if roi.size == 0:
            return 0.0

        gx = cv2.Sobel(roi, cv2.CV_16S, 1, 0, ksize=3)
        gy = cv2.Sobel(roi, cv2.CV_16S, 0, 1, ksize=3)
        mag = cv2.addWeighted(cv2.convertScaleAbs(gx), 1.0, cv2.convertScaleAbs(gy), 1.0, 0)

        edge_pixels = float((mag > 35).mean())
        std = float(roi.std())

        ar = min(w, h) / float(max(w, h))
        shape_score = 1.0 - min(1.0, abs(ar - CARD_ASPECT) / 0.22)
        contrast_score = min(1.0, std / 60.0)
        edge_score = min(1.0, edge_pixels / 0.15)

        return 0.45 * shape_score + 0.30 * edge_score + 0.25 * contrast_score

    def detect(self, frame: Frame, confidence_threshold: float = 0.5) -> list[Detection]:
        gray = cv2.cvtColor(frame.image, cv2.COLOR_BGR2GRAY)

        dets = []
        for box in self._candidates(gray):
            s = self._score(gray, box)
            if s < confidence_threshold:
                continue
            x, y, w, h = box
            dets.append(Detection(
                x=float(x), y=float(y), width=float(w), height=float(h),
                label="card", confidence=float(s), timestamp_ms=frame.timestamp_ms,
            ))

        dets = [d for d in nms(dets, iou_thresh=self.nms_iou) if d.label in CARD_CLASSES]
        return dets[: self.top_k]
