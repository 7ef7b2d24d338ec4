# pipeline/pokeapi.py
from __future__ import annotations

import logging
import threading
import time
from types import MappingProxyType
from typing import Callable, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CatalogResponseError, StageTransientFailure
from .models import CatalogEntry

log = logging.getLogger(__name__)


# ---------- response contracts ----------

class NamedResource(BaseModel):
    name: str
    url: str


class PokemonList(BaseModel):
    count: int
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[NamedResource]


class _Artwork(BaseModel):
    front_default: Optional[str] = None


class _OtherSprites(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    official_artwork: Optional[_Artwork] = Field(default=None, alias="official-artwork")


class Sprites(BaseModel):
    front_default: Optional[str] = None
    other: Optional[_OtherSprites] = None


class PokemonType(BaseModel):
    slot: int
    type: NamedResource


class Pokemon(BaseModel):
    id: int
    name: str
    sprites: Sprites
    types: List[PokemonType]
    species: NamedResource

    def to_entry(self) -> CatalogEntry:
        artwork = None
        if self.sprites.other and self.sprites.other.official_artwork:
            artwork = self.sprites.other.official_artwork.front_default
        attributes = {
            "sprite_url": self.sprites.front_default,
            "artwork_url": artwork,
            "types": tuple(t.type.name for t in sorted(self.types, key=lambda t: t.slot)),
            "species": self.species.name,
        }
        return CatalogEntry(canonical_name=self.name, id=self.id, attributes=MappingProxyType(attributes))


# ---------- client ----------

class PokeApiCatalogSource:
    """
    Catalog source backed by PokeAPI. Detail requests are spaced at least
    rate_limit_ms apart to stay polite with the public API.
    """

    def __init__(
        self,
        base_url: str = "https://pokeapi.co/api/v2",
        limit: int = 2000,
        rate_limit_ms: float = 1000,
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.rate_limit_s = rate_limit_ms / 1000.0
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def _get_json(self, url: str, **params):
        r = self.session.get(url, params=params or None, timeout=self.timeout_s)
        r.raise_for_status()
        return r.json()

    def load_catalog_names(self) -> dict[str, str]:
        data = self._get_json(f"{self.base_url}/pokemon", limit=self.limit)
        try:
            listing = PokemonList.model_validate(data)
        except ValidationError as e:
            raise CatalogResponseError("invalid pokemon list payload", component="pokeapi", original_error=e) from e

        names = {r.name.lower(): r.name for r in listing.results}
        log.info("Fetched %d catalog names from %s", len(names), self.base_url)
        return names

    def _wait_for_slot(self) -> None:
        with self._lock:
            if self._last_call is not None:
                wait = self.rate_limit_s - (self._clock() - self._last_call)
                if wait > 0:
                    self._sleep(wait)
            self._last_call = self._clock()

    def fetch_catalog_details(self, canonical_name: str) -> CatalogEntry:
        name = canonical_name.lower()
        self._wait_for_slot()
        try:
            data = self._get_json(f"{self.base_url}/pokemon/{name}")
        except requests.RequestException as e:
            raise StageTransientFailure(f"details request failed for {name!r}", component="pokeapi", original_error=e) from e

        try:
            pokemon = Pokemon.model_validate(data)
        except ValidationError as e:
            raise CatalogResponseError(f"invalid details payload for {name!r}", component="pokeapi", original_error=e) from e
        return pokemon.to_entry()

    def close(self) -> None:
        self.session.close()
