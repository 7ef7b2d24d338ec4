# config.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ScannerConfig:
    # Confidence thresholds (0, 1]
    detection_confidence: float = 0.5
    identification_confidence: float = 0.7

    # Stage throttle windows (ms)
    detection_interval_ms: float = 100
    extraction_interval_ms: float = 2000
    identification_interval_ms: float = 2000

    # Delay between ticks (~ one display frame)
    frame_interval_ms: float = 16

    # Catalog
    catalog_api_url: str = "https://pokeapi.co/api/v2"
    catalog_limit: int = 2000
    catalog_cache_expiry_s: float = 24 * 60 * 60
    detail_rate_limit_ms: float = 1000
    http_timeout_s: float = 10.0

    # OCR engine settings
    ocr_langs: tuple[str, ...] = ("en",)
    ocr_preprocess: bool = True
    ocr_gpu: bool = False

    # Video source: camera index unless a file is given
    camera_index: int = 0
    video_path: Path | None = None

    auto_start: bool = False
    debug: bool = False

    # Logging
    logging_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in ("detection_confidence", "identification_confidence"):
            v = getattr(self, name)
            if not 0.0 < v <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {v}")
        for name in (
            "detection_interval_ms",
            "extraction_interval_ms",
            "identification_interval_ms",
            "frame_interval_ms",
            "detail_rate_limit_ms",
            "catalog_cache_expiry_s",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
