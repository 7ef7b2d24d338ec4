"""Tests for the detection, extraction and identification stage wrappers."""
import pytest

from card_scanner.pipeline.stages import (
    DetectionStage,
    ExtractionStage,
    IdentificationStage,
    candidate_terms,
    largest_detection,
)

from conftest import FakeDetector, FakeExtractor, box, text


class TestHelpers:

    def test_largest_detection(self):
        small, big = box(w=10, h=10), box(w=50, h=50)
        assert largest_detection([small, big, small]) is big

    def test_largest_detection_tie_keeps_first(self):
        a, b = box(x=0, w=20, h=10), box(x=99, w=10, h=20)
        assert largest_detection([a, b]) is a

    def test_candidate_terms_words_first_then_tokens(self):
        ex = text("Pikachu HP 60\nBasic Pokemon", words=["Pikachu", "Basic"])
        assert candidate_terms(ex) == ["pikachu", "basic", "pokemon"]

    def test_candidate_terms_keep_reading_order(self):
        ex = text("Raichu\nEvolves from Pikachu", words=["Raichu", "Evolves", "from", "Pikachu"])
        assert candidate_terms(ex) == ["raichu", "evolves", "from", "pikachu"]

    def test_candidate_terms_drop_short(self):
        assert candidate_terms(text("hp 60 ab abc")) == ["abc"]


class TestDetectionStage:

    @pytest.mark.asyncio
    async def test_filters_by_threshold(self, frame, clock):
        det = FakeDetector([box(conf=0.9), box(conf=0.3)])
        stage = DetectionStage(det, confidence_threshold=0.5, clock=clock)
        out = await stage.run(frame)
        assert out.fresh
        assert [d.confidence for d in out.value] == [0.9]

    @pytest.mark.asyncio
    async def test_cached_within_window(self, frame, clock):
        det = FakeDetector([box()])
        stage = DetectionStage(det, min_interval_ms=100, clock=clock)
        first = await stage.run(frame)

        det.detections = []
        clock.advance(99)
        second = await stage.run(frame)

        assert not second.fresh
        assert second.value == first.value
        assert det.calls == 1

    @pytest.mark.asyncio
    async def test_runs_again_after_window(self, frame, clock):
        det = FakeDetector([box()])
        stage = DetectionStage(det, min_interval_ms=100, clock=clock)
        await stage.run(frame)
        det.detections = []
        clock.advance(100)
        out = await stage.run(frame)
        assert out.fresh and out.value == ()

    @pytest.mark.asyncio
    async def test_failure_yields_empty(self, frame, clock):
        det = FakeDetector([box()])
        stage = DetectionStage(det, clock=clock)
        await stage.run(frame)

        det.error = RuntimeError("model crashed")
        clock.advance(100)
        out = await stage.run(frame)
        assert out.value == ()
        assert stage.cached == ()


class TestExtractionStage:

    @pytest.mark.asyncio
    async def test_empty_detections_clear_cache(self, frame, clock):
        ex = FakeExtractor(text("Pikachu"))
        stage = ExtractionStage(ex, clock=clock)
        await stage.run(frame, [box()])
        assert stage.cached is not None

        clock.advance(1)  # well inside the window
        out = await stage.run(frame, [])
        assert out.value is None
        assert stage.cached is None

    @pytest.mark.asyncio
    async def test_crops_largest_detection(self, frame, clock):
        ex = FakeExtractor(text("Pikachu"))
        stage = ExtractionStage(ex, clock=clock)
        big = box(w=200, h=280)
        await stage.run(frame, [box(), big])
        assert ex.regions == [big]

    @pytest.mark.asyncio
    async def test_cached_within_window(self, frame, clock):
        ex = FakeExtractor(text("Pikachu"))
        stage = ExtractionStage(ex, min_interval_ms=2000, clock=clock)
        first = await stage.run(frame, [box()])

        ex.result = text("Raichu")
        clock.advance(1999)
        second = await stage.run(frame, [box()])
        assert second.value is first.value
        assert ex.calls == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_cache(self, frame, clock):
        ex = FakeExtractor(text("Pikachu"))
        stage = ExtractionStage(ex, clock=clock)
        first = await stage.run(frame, [box()])

        ex.error = RuntimeError("ocr worker died")
        clock.advance(2000)
        out = await stage.run(frame, [box()])
        assert out.value is first.value
        assert not out.fresh

    @pytest.mark.asyncio
    async def test_none_result_keeps_cache(self, frame, clock):
        ex = FakeExtractor(text("Pikachu"))
        stage = ExtractionStage(ex, clock=clock)
        first = await stage.run(frame, [box()])

        ex.result = None
        clock.advance(2000)
        out = await stage.run(frame, [box()])
        assert out.value is first.value


class TestIdentificationStage:

    @pytest.mark.asyncio
    async def test_none_extraction_clears(self, matcher, clock):
        stage = IdentificationStage(matcher, clock=clock)
        await stage.run(text("Pikachu", {"Pikachu"}))
        assert stage.cached is not None and stage.concluded

        out = await stage.run(None)
        assert out.value is None
        assert stage.cached is None
        assert not stage.concluded

    @pytest.mark.asyncio
    async def test_match(self, matcher, clock):
        stage = IdentificationStage(matcher, confidence_threshold=0.7, clock=clock)
        out = await stage.run(text("Basic Pikachu HP 60", {"Basic", "Pikachu"}))
        assert out.value.entry.canonical_name == "pikachu"
        assert out.value.confidence == 1.0

    @pytest.mark.asyncio
    async def test_no_match_concludes(self, matcher, clock):
        stage = IdentificationStage(matcher, clock=clock)
        out = await stage.run(text("zzz"))
        assert out.value is None
        assert stage.concluded

    @pytest.mark.asyncio
    async def test_cached_within_window(self, matcher, catalog_source, clock):
        stage = IdentificationStage(matcher, min_interval_ms=2000, clock=clock)
        first = await stage.run(text("pikachu"))
        clock.advance(500)
        second = await stage.run(text("raichu"))
        assert second.value is first.value
        assert not second.fresh

    @pytest.mark.asyncio
    async def test_failure_leaves_state(self, matcher, catalog_source, clock):
        catalog_source.details_error = RuntimeError("api down")
        stage = IdentificationStage(matcher, clock=clock)
        out = await stage.run(text("pikachu"))
        assert out.value is None
        assert not stage.concluded
