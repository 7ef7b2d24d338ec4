# pipeline/stages.py
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from .catalog import CatalogMatcher
from .models import CardDetector, Detection, ExtractionResult, Frame, Match, TextExtractor
from .throttle import StageOutput, StageThrottle
from .utils import call_capability, monotonic_ms

log = logging.getLogger(__name__)

MIN_TERM_LEN = 3


def largest_detection(detections: Sequence[Detection]) -> Detection:
    """Largest width*height; on ties the first one wins."""
    best = detections[0]
    for d in detections[1:]:
        if d.area > best.area:
            best = d
    return best


def candidate_terms(extraction: ExtractionResult) -> list[str]:
    """
    Word-set entries first, then whitespace tokens of the raw text.
    Lowercased, shorter than MIN_TERM_LEN dropped, first occurrence kept.
    """
    ordered = [w.lower() for w in extraction.words]
    ordered += extraction.raw_text.lower().split()

    seen = set()
    terms: list[str] = []
    for t in ordered:
        if len(t) < MIN_TERM_LEN or t in seen:
            continue
        seen.add(t)
        terms.append(t)
    return terms


class DetectionStage:
    def __init__(
        self,
        detector: CardDetector,
        confidence_threshold: float = 0.5,
        min_interval_ms: float = 100,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.detector = detector
        self.confidence_threshold = confidence_threshold
        self.throttle = StageThrottle(min_interval_ms)
        self._clock = clock
        self._cache: tuple[Detection, ...] = ()

    @property
    def cached(self) -> tuple[Detection, ...]:
        return self._cache

    async def run(self, frame: Frame) -> StageOutput[tuple[Detection, ...]]:
        now = self._clock()
        if not self.throttle.permits(now):
            return StageOutput.cached(self._cache)

        self.throttle.mark_run(now)
        try:
            raw = await call_capability(self.detector.detect, frame, self.confidence_threshold)
            self._cache = tuple(d for d in (raw or []) if d.confidence >= self.confidence_threshold)
        except Exception as e:
            log.warning("Card detection failed: %s", e)
            self._cache = ()
        return StageOutput.computed(self._cache)

    def checkpoint(self) -> tuple:
        return self._cache, self.throttle.last_run_ms

    def restore(self, checkpoint: tuple) -> None:
        self._cache, self.throttle.last_run_ms = checkpoint

    def reset(self) -> None:
        self._cache = ()
        self.throttle.reset()


class ExtractionStage:
    def __init__(
        self,
        extractor: TextExtractor,
        min_interval_ms: float = 2000,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.extractor = extractor
        self.throttle = StageThrottle(min_interval_ms)
        self._clock = clock
        self._cache: Optional[ExtractionResult] = None

    @property
    def cached(self) -> Optional[ExtractionResult]:
        return self._cache

    async def run(
        self, frame: Frame, detections: Sequence[Detection]
    ) -> StageOutput[Optional[ExtractionResult]]:
        # losing the card always clears text, throttle or not
        if not detections:
            self._cache = None
            return StageOutput.computed(None)

        now = self._clock()
        if not self.throttle.permits(now):
            return StageOutput.cached(self._cache)

        self.throttle.mark_run(now)
        region = largest_detection(detections)
        try:
            result = await call_capability(self.extractor.extract_text, frame, region)
        except Exception as e:
            log.warning("Text extraction failed, keeping previous result: %s", e)
            return StageOutput.cached(self._cache)

        if result is None:
            log.debug("Text extraction returned nothing this window")
            return StageOutput.cached(self._cache)

        self._cache = result
        return StageOutput.computed(result)

    def checkpoint(self) -> tuple:
        return self._cache, self.throttle.last_run_ms

    def restore(self, checkpoint: tuple) -> None:
        self._cache, self.throttle.last_run_ms = checkpoint

    def reset(self) -> None:
        self._cache = None
        self.throttle.reset()


class IdentificationStage:
    """
    Wraps CatalogMatcher. `concluded` is True once a matching pass has
    finished (with or without a match) for the text currently held; it
    drops back to False whenever the text goes away.
    """

    def __init__(
        self,
        matcher: CatalogMatcher,
        confidence_threshold: float = 0.7,
        min_interval_ms: float = 2000,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.matcher = matcher
        self.confidence_threshold = confidence_threshold
        self.throttle = StageThrottle(min_interval_ms)
        self._clock = clock
        self._cache: Optional[Match] = None
        self.concluded = False

    @property
    def cached(self) -> Optional[Match]:
        return self._cache

    async def run(self, extraction: Optional[ExtractionResult]) -> StageOutput[Optional[Match]]:
        if extraction is None:
            self._cache = None
            self.concluded = False
            return StageOutput.computed(None)

        now = self._clock()
        if not self.throttle.permits(now):
            return StageOutput.cached(self._cache)

        self.throttle.mark_run(now)
        terms = candidate_terms(extraction)
        try:
            match = await self.matcher.identify(terms, self.confidence_threshold, extraction.raw_text)
        except Exception as e:
            log.warning("Identification failed, keeping previous match: %s", e)
            return StageOutput.cached(self._cache)

        self._cache = match
        self.concluded = True
        if match is None:
            log.debug("No catalog match for terms %s", terms)
        return StageOutput.computed(match)

    def checkpoint(self) -> tuple:
        return self._cache, self.concluded, self.throttle.last_run_ms

    def restore(self, checkpoint: tuple) -> None:
        self._cache, self.concluded, self.throttle.last_run_ms = checkpoint

    def reset(self) -> None:
        self._cache = None
        self.concluded = False
        self.throttle.reset()
