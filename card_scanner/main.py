# main.py
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from card_scanner.config import ScannerConfig
from card_scanner.pipeline.catalog import CatalogMatcher
from card_scanner.pipeline.errors import CapabilityUnavailable
from card_scanner.pipeline.heuristic_detector import HeuristicCardDetector
from card_scanner.pipeline.models import ScanResult
from card_scanner.pipeline.ocr_engine import EasyOcrTextExtractor
from card_scanner.pipeline.pokeapi import PokeApiCatalogSource
from card_scanner.pipeline.scan_loop import ScanLoop
from card_scanner.pipeline.utils import setup_logging
from card_scanner.pipeline.video_io import CameraFrameSource, IteratorFrameSource, iter_frames

log = logging.getLogger(__name__)


def build_scanner(cfg: ScannerConfig, stride: int = 1) -> ScanLoop:
    if cfg.video_path is not None:
        frames = IteratorFrameSource(iter_frames(cfg.video_path, stride=stride))
    else:
        frames = CameraFrameSource(cfg.camera_index)
        frames.open()

    source = PokeApiCatalogSource(
        base_url=cfg.catalog_api_url,
        limit=cfg.catalog_limit,
        rate_limit_ms=cfg.detail_rate_limit_ms,
        timeout_s=cfg.http_timeout_s,
    )
    matcher = CatalogMatcher(source, cache_expiry_s=cfg.catalog_cache_expiry_s)
    extractor = EasyOcrTextExtractor(cfg.ocr_langs, gpu=cfg.ocr_gpu, preprocess=cfg.ocr_preprocess)

    return ScanLoop(frames, HeuristicCardDetector(), extractor, matcher, cfg)


class StatusPrinter:
    """Logs a line whenever the published status or match changes."""

    def __init__(self):
        self._last = None

    def __call__(self, result: ScanResult) -> None:
        name = result.match.entry.canonical_name if result.match else None
        key = (result.status, name)
        if key == self._last:
            return
        self._last = key

        if result.match:
            log.info(
                "[%s] %s (confidence=%.3f, id=%s)",
                result.status.value, name, result.match.confidence, result.match.entry.id,
            )
        else:
            log.info("[%s] cards=%d", result.status.value, len(result.detections))


async def run(cfg: ScannerConfig, stride: int = 1) -> int:
    setup_logging(cfg.logging_level)

    scanner = build_scanner(cfg, stride)
    scanner.add_listener(StatusPrinter())

    try:
        await scanner.initialize()
    except CapabilityUnavailable as e:
        log.error("Scanner unavailable: %s", e)
        await scanner.shutdown()
        return 1

    scanner.start()
    try:
        # runs until Ctrl-C
        await asyncio.Event().wait()
    finally:
        await scanner.shutdown()
    return 0


def parse_args(argv=None) -> tuple[ScannerConfig, int]:
    p = argparse.ArgumentParser(description="Live trading card scanner")
    p.add_argument("--camera", type=int, default=0, help="Camera device index")
    p.add_argument("--video", default=None, help="Read frames from a video file instead of a camera")
    p.add_argument("--stride", type=int, default=1, help="With --video, process every Nth frame")
    p.add_argument("--detect-conf", type=float, default=0.5, help="Card detection threshold (0-1]")
    p.add_argument("--match-conf", type=float, default=0.7, help="Name match threshold (0-1]")
    p.add_argument("--detect-ms", type=float, default=100, help="Min ms between detections")
    p.add_argument("--ocr-ms", type=float, default=2000, help="Min ms between OCR passes")
    p.add_argument("--identify-ms", type=float, default=2000, help="Min ms between catalog lookups")
    p.add_argument("--gpu", action="store_true", help="Run EasyOCR on GPU")
    p.add_argument("--debug", action="store_true", help="Per-tick debug logging")
    args = p.parse_args(argv)

    cfg = ScannerConfig(
        detection_confidence=args.detect_conf,
        identification_confidence=args.match_conf,
        detection_interval_ms=args.detect_ms,
        extraction_interval_ms=args.ocr_ms,
        identification_interval_ms=args.identify_ms,
        camera_index=args.camera,
        video_path=(Path(args.video) if args.video else None),
        ocr_gpu=args.gpu,
        debug=args.debug,
        logging_level=("DEBUG" if args.debug else "INFO"),
    )
    return cfg, max(1, args.stride)


def cli() -> None:
    cfg, stride = parse_args()
    try:
        raise SystemExit(asyncio.run(run(cfg, stride)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
