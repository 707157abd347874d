from __future__ import annotations

import inspect
import logging
import math
import threading
from datetime import date
from typing import Any, Awaitable, Callable, List, Optional, Union

from cbam_engine.config import Settings, settings as default_settings
from cbam_engine.engine.models import CarbonPriceRecord
from cbam_engine.errors import PriceFetchError

logger = logging.getLogger(__name__)

PriceFetcher = Union[Callable[[], CarbonPriceRecord], Any]


def default_price_record(cfg: Settings | None = None, *, on: date | None = None) -> CarbonPriceRecord:
    cfg = cfg or default_settings
    return CarbonPriceRecord(
        date=on or date.today(),
        price_eur_per_tonne=float(cfg.DEFAULT_ETS_PRICE_EUR_PER_TCO2),
        market="CONFIG",
        contract_type="Default",
    )


class StaticPriceFetcher:
    """Returns a fixed record; offline runs and tests."""

    def __init__(self, record: CarbonPriceRecord) -> None:
        self.record = record

    def fetch(self) -> CarbonPriceRecord:
        return self.record


def _call_fetcher(fetcher: PriceFetcher) -> Any:
    fn = getattr(fetcher, "fetch", None)
    if callable(fn):
        return fn()
    if callable(fetcher):
        return fetcher()
    raise PriceFetchError(f"fetcher is neither callable nor has fetch(): {fetcher!r}")


def _validate(record: Any) -> CarbonPriceRecord:
    if not isinstance(record, CarbonPriceRecord):
        raise PriceFetchError(f"fetcher returned {type(record).__name__}, expected CarbonPriceRecord")
    price = record.price_eur_per_tonne
    if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
        raise PriceFetchError(f"invalid carbon price: {price!r}")
    return record


class CarbonPriceProvider:
    """Current EU ETS price with history.

    current() is a plain attribute read. refresh() validates off-lock and only
    holds the lock for the reference swap and history append.
    """

    def __init__(self, initial: CarbonPriceRecord | None = None) -> None:
        self._lock = threading.Lock()
        self._current: Optional[CarbonPriceRecord] = None
        self._history: List[CarbonPriceRecord] = []
        if initial is not None:
            self._install(_validate(initial))

    def current(self) -> Optional[CarbonPriceRecord]:
        return self._current

    def history(self) -> List[CarbonPriceRecord]:
        with self._lock:
            return list(self._history)

    def _install(self, record: CarbonPriceRecord) -> CarbonPriceRecord:
        with self._lock:
            self._history.append(record)
            self._current = record
        logger.info(
            "carbon price refreshed: %.2f %s/t (%s %s, %s)",
            record.price_eur_per_tonne,
            record.currency,
            record.market,
            record.contract_type,
            record.date.isoformat(),
        )
        return record

    def refresh(self, fetcher: PriceFetcher) -> CarbonPriceRecord:
        try:
            raw = _call_fetcher(fetcher)
            if inspect.isawaitable(raw):
                close = getattr(raw, "close", None)
                if callable(close):
                    close()
                raise PriceFetchError("async fetcher passed to refresh(); use arefresh()")
            record = _validate(raw)
        except PriceFetchError as exc:
            logger.warning("carbon price refresh failed: %s", exc)
            raise
        except Exception as exc:
            logger.warning("carbon price refresh failed: %s", exc)
            raise PriceFetchError(f"price fetcher raised: {exc}") from exc
        return self._install(record)

    async def arefresh(self, fetcher: Union[Callable[[], Awaitable[CarbonPriceRecord]], Any]) -> CarbonPriceRecord:
        try:
            raw = _call_fetcher(fetcher)
            if inspect.isawaitable(raw):
                raw = await raw
            record = _validate(raw)
        except PriceFetchError as exc:
            logger.warning("carbon price refresh failed: %s", exc)
            raise
        except Exception as exc:
            logger.warning("carbon price refresh failed: %s", exc)
            raise PriceFetchError(f"price fetcher raised: {exc}") from exc
        return self._install(record)
