from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cbam_engine.engine.models import CountryCode, EmissionFactor, Sector
from cbam_engine.errors import InvalidInputError

logger = logging.getLogger(__name__)

_Key = Tuple[CountryCode, Sector]


def _pick_latest_factor(rows: Tuple[EmissionFactor, ...]) -> Optional[EmissionFactor]:
    """Most recent wins: latest last_updated, then the one inserted last."""
    if not rows:
        return None
    # rows are kept in insertion order; max() returns the first maximal item,
    # so scan reversed to let later inserts win ties
    return max(reversed(rows), key=lambda f: f.last_updated)


class FactorRegistry:
    """Country x sector electricity factors.

    Lookups never lock: upsert rebuilds the per-key tuple and swaps the whole
    index reference under a writer lock. The ready gate is set once the
    initial factors are indexed.

    UNKNOWN is a catch-all for unlisted countries, so it is never a key:
    upsert rejects it and lookup misses, which routes to the EU default.
    """

    def __init__(self, factors: Iterable[EmissionFactor] | None = None) -> None:
        self._ready = threading.Event()
        self._write_lock = threading.Lock()
        self._index: Dict[_Key, Tuple[EmissionFactor, ...]] = {}
        for f in factors or ():
            self.upsert(f)
        self._ready.set()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def upsert(self, factor: EmissionFactor) -> None:
        if factor.country_code is CountryCode.UNKNOWN:
            raise InvalidInputError(
                f"cannot register a factor for an unlisted country ({factor.source or 'no source'})"
            )
        with self._write_lock:
            index = dict(self._index)
            index[factor.key] = index.get(factor.key, ()) + (factor,)
            self._index = index
        logger.debug(
            "factor upserted %s/%s=%s (%s)",
            factor.country_code.value,
            factor.sector.value,
            factor.electricity_factor,
            factor.last_updated.isoformat(),
        )

    def lookup(self, country_code: Any, sector: Any) -> Optional[EmissionFactor]:
        if not self._ready.is_set():
            raise RuntimeError("FactorRegistry queried before loading completed")
        key = (CountryCode.parse(country_code), Sector.parse(sector))
        if key[0] is CountryCode.UNKNOWN:
            return None
        return _pick_latest_factor(self._index.get(key, ()))

    def history(self, country_code: Any, sector: Any) -> List[EmissionFactor]:
        key = (CountryCode.parse(country_code), Sector.parse(sector))
        return sorted(self._index.get(key, ()), key=lambda f: f.last_updated)

    def factors(self) -> List[EmissionFactor]:
        index = self._index
        current = [_pick_latest_factor(rows) for rows in index.values()]
        return sorted(
            (f for f in current if f is not None),
            key=lambda f: (f.country_code.value, f.sector.value),
        )

    def __len__(self) -> int:
        return len(self._index)
