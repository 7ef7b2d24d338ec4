# pipeline/state_machine.py
from __future__ import annotations

from typing import Optional, Sequence

from .models import Detection, ExtractionResult, Match, PipelineStatus


def reduce_status(
    detections: Sequence[Detection],
    extraction: Optional[ExtractionResult],
    match: Optional[Match],
    identification_concluded: bool,
) -> PipelineStatus:
    """
    Pure mapping from the current tick's stage outputs to one status.
    Holds no memory; anything sticky lives in the stage caches.
    """
    if not detections:
        return PipelineStatus.NO_CARD
    if match is not None:
        return PipelineStatus.IDENTIFIED
    if extraction is None:
        return PipelineStatus.CARD_DETECTED
    if identification_concluded:
        return PipelineStatus.IDENTIFICATION_FAILED
    return PipelineStatus.IDENTIFYING
