# pipeline/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Protocol
import numpy as np


@dataclass(frozen=True, eq=False)
class Frame:
    image: np.ndarray  # BGR image
    width: int
    height: int
    timestamp_ms: float = 0.0

    @classmethod
    def from_image(cls, image: np.ndarray, timestamp_ms: float = 0.0) -> "Frame":
        h, w = image.shape[:2]
        return cls(image=image, width=int(w), height=int(h), timestamp_ms=timestamp_ms)


@dataclass(frozen=True)
class Detection:
    """A single card detection in frame pixel coordinates."""
    x: float
    y: float
    width: float
    height: float
    label: str = "card"
    confidence: float = 1.0
    timestamp_ms: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    def clamp(self, frame_w: int, frame_h: int) -> tuple[int, int, int, int]:
        """Integer (x1, y1, x2, y2) clipped to the frame, never empty."""
        x1 = max(0, min(int(self.x), frame_w - 1))
        y1 = max(0, min(int(self.y), frame_h - 1))
        x2 = max(0, min(int(self.x + self.width), frame_w))
        y2 = max(0, min(int(self.y + self.height), frame_h))
        if x2 <= x1: x2 = min(frame_w, x1 + 1)
        if y2 <= y1: y2 = min(frame_h, y1 + 1)
        return x1, y1, x2, y2


@dataclass(frozen=True)
class ExtractionResult:
    raw_text: str
    words: tuple[str, ...] = ()
    confidence: float = 0.0
    processing_time_ms: float = 0.0
    timestamp_ms: float = 0.0


@dataclass(frozen=True)
class CatalogEntry:
    canonical_name: str
    id: int
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class Match:
    entry: CatalogEntry
    confidence: float
    matched_text: str
    processing_time_ms: float = 0.0


class PipelineStatus(str, Enum):
    NO_CARD = "no-card"
    CARD_DETECTED = "card-detected"
    IDENTIFYING = "identifying"
    IDENTIFIED = "identified"
    IDENTIFICATION_FAILED = "identification-failed"


class LifecycleState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    SCANNING = "scanning"
    ERROR = "error"


@dataclass(frozen=True)
class ScanResult:
    """Snapshot published once per tick."""
    status: PipelineStatus
    detections: tuple[Detection, ...]
    extraction: Optional[ExtractionResult]
    match: Optional[Match]
    frame_width: int
    frame_height: int

    @classmethod
    def empty(cls) -> "ScanResult":
        return cls(PipelineStatus.NO_CARD, (), None, None, 0, 0)


class FrameSource(Protocol):
    """Video source plugin interface (camera, file, test fake)."""
    def read_frame(self) -> Optional[Frame]:
        ...


class CardDetector(Protocol):
    """Detector plugin interface (heuristic, SSD, YOLO, etc.)."""
    def load(self) -> None:
        ...

    def detect(self, frame: Frame, confidence_threshold: float) -> list[Detection]:
        ...


class TextExtractor(Protocol):
    """OCR plugin interface. May return None to mean 'try again later'."""
    def load(self) -> None:
        ...

    def extract_text(self, frame: Frame, region: Detection) -> Optional[ExtractionResult]:
        ...


class CatalogSource(Protocol):
    """Reference data plugin interface (PokeAPI, local file, etc.)."""
    def load_catalog_names(self) -> Mapping[str, str]:
        ...

    def fetch_catalog_details(self, canonical_name: str) -> CatalogEntry:
        ...
