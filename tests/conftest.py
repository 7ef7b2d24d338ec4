"""Shared fixtures and fake capabilities for the scanner tests."""
import logging
from types import MappingProxyType

import numpy as np
import pytest

from card_scanner.config import ScannerConfig
from card_scanner.pipeline.catalog import CatalogMatcher
from card_scanner.pipeline.models import CatalogEntry, Detection, ExtractionResult, Frame

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeFrameSource:
    def __init__(self, frame=None, fail_times: int = 0):
        self.frame = frame
        self.fail_times = fail_times
        self.reads = 0
        self.closed = False

    def read_frame(self):
        self.reads += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("camera hiccup")
        return self.frame

    def close(self):
        self.closed = True


class FakeDetector:
    def __init__(self, detections=None, load_error=None):
        self.detections = list(detections or [])
        self.error = None
        self.load_error = load_error
        self.calls = 0
        self.loaded = False

    def load(self):
        if self.load_error:
            raise self.load_error
        self.loaded = True

    def detect(self, frame, confidence_threshold):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.detections)


class FakeExtractor:
    def __init__(self, result=None):
        self.result = result
        self.error = None
        self.calls = 0
        self.regions = []

    def load(self):
        pass

    def extract_text(self, frame, region):
        self.calls += 1
        self.regions.append(region)
        if self.error:
            raise self.error
        return self.result


class FakeCatalogSource:
    def __init__(self, names=None):
        self.names = dict(names or {})
        self.names_error = None
        self.details_error = None
        self.name_loads = 0
        self.detail_calls = []

    def load_catalog_names(self):
        self.name_loads += 1
        if self.names_error:
            raise self.names_error
        return dict(self.names)

    def fetch_catalog_details(self, canonical_name):
        self.detail_calls.append(canonical_name)
        if self.details_error:
            raise self.details_error
        return make_entry(canonical_name)


def make_entry(name: str, entry_id: int = 25) -> CatalogEntry:
    return CatalogEntry(canonical_name=name, id=entry_id, attributes=MappingProxyType({"types": ("electric",)}))


def make_frame(width: int = 640, height: int = 480, timestamp_ms: float = 0.0) -> Frame:
    return Frame.from_image(np.zeros((height, width, 3), dtype=np.uint8), timestamp_ms)


def box(x=10, y=10, w=100, h=140, conf=0.9) -> Detection:
    return Detection(x=x, y=y, width=w, height=h, label="card", confidence=conf)


def text(raw: str, words=()) -> ExtractionResult:
    return ExtractionResult(raw_text=raw, words=tuple(words), confidence=0.8)


@pytest.fixture
def clock():
    return FakeClock(0.0)


@pytest.fixture
def frame():
    return make_frame()


@pytest.fixture
def catalog_source():
    return FakeCatalogSource({"pikachu": "pikachu", "raichu": "raichu", "bulbasaur": "bulbasaur"})


@pytest.fixture
def matcher(catalog_source, clock):
    return CatalogMatcher(catalog_source, clock=clock)


@pytest.fixture
def cfg():
    return ScannerConfig(frame_interval_ms=1)
