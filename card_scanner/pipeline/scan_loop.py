# pipeline/scan_loop.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Set

from card_scanner.config import ScannerConfig
from .catalog import CatalogMatcher
from .errors import CapabilityUnavailable
from .models import (
    CardDetector,
    FrameSource,
    LifecycleState,
    ScanResult,
    TextExtractor,
)
from .stages import DetectionStage, ExtractionStage, IdentificationStage
from .state_machine import reduce_status
from .utils import call_capability, monotonic_ms

log = logging.getLogger(__name__)


class _StopToken:
    """Cancellation token for one scanning run."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    def set(self) -> None:
        self._event.set()

    async def sleep(self, delay_s: float) -> None:
        """Sleep until the delay passes or the run is stopped, whichever is first."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay_s)
        except asyncio.TimeoutError:
            pass


class ScanLoop:
    """
    Drives the per-frame scan: detection -> extraction -> identification ->
    status, one tick at a time, and publishes a ScanResult snapshot per tick.

    Lifecycle: IDLE -> INITIALIZING -> READY <-> SCANNING, INITIALIZING -> ERROR.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        detector: CardDetector,
        extractor: TextExtractor,
        matcher: CatalogMatcher,
        cfg: Optional[ScannerConfig] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.cfg = cfg or ScannerConfig()
        self.frame_source = frame_source
        self.detector = detector
        self.extractor = extractor
        self.matcher = matcher

        self.detection = DetectionStage(
            detector, self.cfg.detection_confidence, self.cfg.detection_interval_ms, clock
        )
        self.extraction = ExtractionStage(extractor, self.cfg.extraction_interval_ms, clock)
        self.identification = IdentificationStage(
            matcher, self.cfg.identification_confidence, self.cfg.identification_interval_ms, clock
        )

        self._state = LifecycleState.IDLE
        self._latest = ScanResult.empty()
        self._listeners: List[Callable[[ScanResult], None]] = []
        self._token: Optional[_StopToken] = None
        self._task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._tick_lock = asyncio.Lock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def latest_result(self) -> ScanResult:
        return self._latest

    def add_listener(self, cb: Callable[[ScanResult], None]) -> None:
        self._listeners.append(cb)

    # ---------- lifecycle ----------

    async def initialize(self) -> None:
        """Load every capability. Raises CapabilityUnavailable and lands in ERROR on failure."""
        if self._state not in (LifecycleState.IDLE, LifecycleState.ERROR):
            return

        self._state = LifecycleState.INITIALIZING
        log.info("Initializing scanner capabilities")
        try:
            for name, capability in (("detector", self.detector), ("extractor", self.extractor)):
                load = getattr(capability, "load", None)
                if load is None:
                    continue
                try:
                    await call_capability(load)
                except Exception as e:
                    raise CapabilityUnavailable(f"{name} failed to load", component=name, original_error=e) from e
            await self.matcher.initialize()
        except CapabilityUnavailable as e:
            self._state = LifecycleState.ERROR
            log.error("Scanner initialization failed: %s", e)
            raise

        self._state = LifecycleState.READY
        log.info("Scanner ready")

        if self.cfg.auto_start:
            self.start()

    def start(self) -> bool:
        if self._state is not LifecycleState.READY:
            log.debug("start() ignored in state %s", self._state.value)
            return False

        token = _StopToken()
        self._token = token
        self._state = LifecycleState.SCANNING
        task = asyncio.get_running_loop().create_task(self._run(token))
        self._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.info("Scanning started")
        return True

    def stop(self) -> None:
        if self._token is not None:
            self._token.set()
            self._token = None
        # a draining task stays referenced in self._tasks until it finishes
        self._task = None
        if self._state is LifecycleState.SCANNING:
            self._state = LifecycleState.READY
            log.info("Scanning stopped")

    async def shutdown(self) -> None:
        """Stop, let an in-flight tick drain, then release capabilities."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks)

        for capability in (self.frame_source, self.detector, self.extractor, self.matcher.source):
            close = getattr(capability, "close", None)
            if close is None:
                continue
            try:
                await call_capability(close)
            except Exception as e:
                log.warning("Error releasing %s: %s", type(capability).__name__, e)

        for stage in (self.detection, self.extraction, self.identification):
            stage.reset()
        self._latest = ScanResult.empty()
        self._state = LifecycleState.IDLE

    # ---------- loop ----------

    async def _run(self, token: _StopToken) -> None:
        delay_s = self.cfg.frame_interval_ms / 1000.0
        while not token.stopped:
            try:
                await self._tick(token)
            except Exception:
                log.exception("Error in scanning tick")
            if token.stopped:
                break
            await token.sleep(delay_s)

    async def run_once(self) -> Optional[ScanResult]:
        """Run a single tick outside the background task. Returns the published snapshot, if any."""
        if self._state not in (LifecycleState.READY, LifecycleState.SCANNING):
            return None
        return await self._tick(_StopToken())

    async def _tick(self, token: _StopToken) -> Optional[ScanResult]:
        async with self._tick_lock:
            if token.stopped:
                return None

            frame = await call_capability(self.frame_source.read_frame)
            if frame is None or token.stopped:
                return None

            stages = (self.detection, self.extraction, self.identification)
            checkpoints = [stage.checkpoint() for stage in stages]

            detections = (await self.detection.run(frame)).value
            if token.stopped:
                return self._discard(stages, checkpoints)
            extraction = (await self.extraction.run(frame, detections)).value
            if token.stopped:
                return self._discard(stages, checkpoints)
            match = (await self.identification.run(extraction)).value
            if token.stopped:
                return self._discard(stages, checkpoints)

            status = reduce_status(detections, extraction, match, self.identification.concluded)
            result = ScanResult(
                status=status,
                detections=tuple(detections),
                extraction=extraction,
                match=match,
                frame_width=frame.width,
                frame_height=frame.height,
            )

            if self.cfg.debug:
                if detections:
                    log.debug("Detected %d cards, status: %s", len(detections), status.value)
                if extraction is not None:
                    log.debug("OCR result: %r (conf=%.2f)", extraction.raw_text, extraction.confidence)

            self._publish(result)
            return result

    @staticmethod
    def _discard(stages, checkpoints) -> None:
        # a stopped run leaves no trace in the stage caches or throttles
        for stage, cp in zip(stages, checkpoints):
            stage.restore(cp)
        log.debug("Discarding tick result after stop")
        return None

    def _publish(self, result: ScanResult) -> None:
        self._latest = result
        for cb in self._listeners:
            try:
                cb(result)
            except Exception:
                log.exception("Scan listener failed")
