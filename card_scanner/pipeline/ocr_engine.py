from __future__ import annotations

import logging
import re
import time
from typing import Optional

import numpy as np

from .card_rectify import binarize, crop_card
from .models import Detection, ExtractionResult, Frame

log = logging.getLogger(__name__)

WORD_RE = re.compile(r"^[A-Za-z]+$")
MIN_WORD_LEN = 3  # drop junk partials like "HP", "x"


def extract_words(text: str) -> tuple[str, ...]:
    """Alphabetic tokens longer than two characters, deduplicated in reading order."""
    words = []
    for line in text.split("\n"):
        for w in line.split():
            w = w.strip()
            if len(w) >= MIN_WORD_LEN and WORD_RE.match(w):
                words.append(w)
    return tuple(dict.fromkeys(words))


class EasyOcrTextExtractor:
    """
    TextExtractor backed by EasyOCR. The reader is heavy, so it is built
    in load() (or lazily on first use) and reused.
    """

    def __init__(self, langs: tuple[str, ...] = ("en",), gpu: bool = False, preprocess: bool = True):
        self.langs = langs
        self.gpu = gpu
        self.preprocess = preprocess
        self._reader = None

    def load(self) -> None:
        if self._reader is not None:
            return
        import easyocr

        self._reader = easyocr.Reader(list(self.langs), gpu=self.gpu)
        log.info("EasyOCR reader loaded (langs=%s, gpu=%s)", ",".join(self.langs), self.gpu)

    def _prepare(self, frame: Frame, region: Detection) -> np.ndarray:
        crop = crop_card(frame.image, region)
        return binarize(crop) if self.preprocess else crop

    def extract_text(self, frame: Frame, region: Detection) -> Optional[ExtractionResult]:
        if self._reader is None:
            self.load()

        start = time.monotonic()
        img = self._prepare(frame, region)
        raw = self._reader.readtext(img, detail=1, paragraph=False)
        if not raw:
            return None

        # EasyOCR yields (box, text, conf) per line, top to bottom
        lines = [str(r[1]).strip() for r in raw if str(r[1]).strip()]
        confs = [float(r[2]) for r in raw]
        text = "\n".join(lines)

        return ExtractionResult(
            raw_text=text,
            words=extract_words(text),
            confidence=sum(confs) / len(confs),
            processing_time_ms=(time.monotonic() - start) * 1000.0,
            timestamp_ms=frame.timestamp_ms,
        )

    def close(self) -> None:
        self._reader = None
