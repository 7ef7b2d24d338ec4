# pipeline/catalog.py
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .errors import CapabilityUnavailable, StageTransientFailure
from .models import CatalogEntry, CatalogSource, Match
from .similarity import similarity, similarity_upper_bound
from .utils import call_capability, monotonic_ms

log = logging.getLogger(__name__)

DEFAULT_CACHE_EXPIRY_S = 24 * 60 * 60


def build_name_map(names: Mapping[str, str]) -> dict[str, str]:
    """lowercase name -> canonical name, in upstream order."""
    out: dict[str, str] = {}
    for key, canonical in names.items():
        out[str(key).lower()] = canonical
    return out


def find_best_name(
    terms: Iterable[str],
    name_map: Mapping[str, str],
    threshold: float,
) -> Optional[tuple[str, float]]:
    """
    Exact pass first: the first term present in name_map wins with 1.0.
    Otherwise the best fuzzy (canonical, score) with score > threshold;
    ties keep the first pair seen.
    """
    terms = [t.lower() for t in terms]

    for term in terms:
        if term in name_map:
            return name_map[term], 1.0

    best: Optional[tuple[str, float]] = None
    for term in terms:
        tlen = len(term)
        for name, canonical in name_map.items():
            bar = threshold if best is None else max(threshold, best[1])
            # skip pairs that cannot strictly beat the current bar
            if similarity_upper_bound(tlen, len(name)) <= bar:
                continue
            score = similarity(term, name)
            if score > bar:
                best = (canonical, score)
    return best


class CatalogMatcher:
    """
    Name catalog + details cache in front of a CatalogSource.

    The name map is never mutated in place: a refresh builds a new dict and
    swaps it in, so a reader holding the old map keeps a consistent view.
    """

    def __init__(
        self,
        source: CatalogSource,
        cache_expiry_s: float = DEFAULT_CACHE_EXPIRY_S,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.source = source
        self.cache_expiry_ms = cache_expiry_s * 1000.0
        self._clock = clock
        self._names: Mapping[str, str] = MappingProxyType({})
        self._details: dict[str, CatalogEntry] = {}
        self._last_updated_ms: Optional[float] = None
        self.status = "idle"

    @property
    def names(self) -> Mapping[str, str]:
        return self._names

    def _is_fresh(self, now_ms: float) -> bool:
        if self._last_updated_ms is None:
            return False
        return now_ms - self._last_updated_ms < self.cache_expiry_ms

    async def initialize(self, force_refresh: bool = False) -> None:
        now = self._clock()
        if not force_refresh and self._is_fresh(now):
            self.status = "ready"
            return

        self.status = "loading"
        try:
            raw = await call_capability(self.source.load_catalog_names)
            fresh = build_name_map(raw)
        except Exception as e:
            self.status = "error"
            log.error("Catalog bootstrap failed: %s", e)
            raise CapabilityUnavailable("catalog bootstrap failed", component="catalog", original_error=e) from e

        self._names = MappingProxyType(fresh)
        self._last_updated_ms = now
        self.status = "ready"
        log.info("Catalog loaded: %d names", len(fresh))

    async def get_details(self, canonical_name: str) -> CatalogEntry:
        key = canonical_name.lower()
        cached = self._details.get(key)
        if cached is not None:
            return cached

        try:
            entry = await call_capability(self.source.fetch_catalog_details, key)
        except StageTransientFailure:
            raise
        except Exception as e:
            raise StageTransientFailure(
                f"details fetch failed for {canonical_name!r}", component="catalog", original_error=e
            ) from e

        self._details[key] = entry
        return entry

    async def identify(
        self,
        terms: Iterable[str],
        confidence_threshold: float,
        matched_text: str = "",
    ) -> Optional[Match]:
        """Best catalog match for the candidate terms, or None when nothing clears the threshold."""
        start = self._clock()
        if not self._is_fresh(start):
            await self.initialize()

        best = find_best_name(terms, self._names, confidence_threshold)
        if best is None:
            return None

        canonical, confidence = best
        entry = await self.get_details(canonical)
        log.debug("Catalog match %s (%.3f) for %r", entry.canonical_name, confidence, matched_text)

        return Match(
            entry=entry,
            confidence=confidence,
            matched_text=matched_text,
            processing_time_ms=self._clock() - start,
        )

    def clear_cache(self) -> None:
        self._names = MappingProxyType({})
        self._details = {}
        self._last_updated_ms = None
        self.status = "idle"
