import asyncio
import threading
from datetime import date

import pytest

from cbam_engine.config import Settings
from cbam_engine.engine.models import CarbonPriceRecord
from cbam_engine.errors import PriceFetchError
from cbam_engine.pricing.provider import CarbonPriceProvider, StaticPriceFetcher, default_price_record


def _record(price, day=3):
    return CarbonPriceRecord(date=date(2024, 6, day), price_eur_per_tonne=price)


def test_current_is_none_until_refreshed():
    p = CarbonPriceProvider()
    assert p.current() is None
    assert p.history() == []


def test_refresh_installs_new_record_and_keeps_history():
    p = CarbonPriceProvider()
    first = p.refresh(lambda: _record(68.45))
    assert p.current() is first
    second = p.refresh(StaticPriceFetcher(_record(71.0, day=4)))
    assert p.current() is second
    assert p.history() == [first, second]


def test_fetcher_exception_keeps_previous_value():
    p = CarbonPriceProvider(initial=_record(68.45))

    def broken():
        raise ConnectionError("EEX unreachable")

    with pytest.raises(PriceFetchError) as ei:
        p.refresh(broken)
    assert isinstance(ei.value.__cause__, ConnectionError)
    assert p.current().price_eur_per_tonne == pytest.approx(68.45)


@pytest.mark.parametrize("price", [0.0, -5.0, float("nan"), float("inf")])
def test_invalid_price_is_rejected(price):
    p = CarbonPriceProvider(initial=_record(68.45))
    with pytest.raises(PriceFetchError):
        p.refresh(lambda: _record(price))
    assert p.current().price_eur_per_tonne == pytest.approx(68.45)
    assert len(p.history()) == 1


def test_wrong_return_type_is_rejected():
    p = CarbonPriceProvider()
    with pytest.raises(PriceFetchError):
        p.refresh(lambda: {"price_eur_per_tonne": 70.0})
    assert p.current() is None


def test_async_fetcher():
    p = CarbonPriceProvider()

    async def fetch():
        await asyncio.sleep(0)
        return _record(70.5)

    rec = asyncio.run(p.arefresh(fetch))
    assert p.current() is rec

    with pytest.raises(PriceFetchError):
        p.refresh(fetch)
    assert p.current() is rec


def test_async_fetcher_failure():
    p = CarbonPriceProvider(initial=_record(68.45))

    async def fetch():
        raise TimeoutError("feed timeout")

    with pytest.raises(PriceFetchError):
        asyncio.run(p.arefresh(fetch))
    assert p.current().price_eur_per_tonne == pytest.approx(68.45)


def test_default_price_record_from_settings():
    rec = default_price_record(Settings(DEFAULT_ETS_PRICE_EUR_PER_TCO2=80.0), on=date(2024, 1, 2))
    assert rec.price_eur_per_tonne == pytest.approx(80.0)
    assert rec.date == date(2024, 1, 2)


def test_concurrent_readers_see_whole_records():
    p = CarbonPriceProvider(initial=_record(50.0, day=1))
    valid = {(50.0 + i, 1 + i % 28) for i in range(200)}
    bad = []

    def reader():
        for _ in range(5000):
            r = p.current()
            if (r.price_eur_per_tonne, r.date.day) not in valid:
                bad.append(r)

    def writer():
        for i in range(1, 200):
            p.refresh(lambda i=i: _record(50.0 + i, day=1 + i % 28))

    threads = [threading.Thread(target=reader) for _ in range(4)] + [threading.Thread(target=writer)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not bad
    assert p.current().price_eur_per_tonne == pytest.approx(249.0)
    assert len(p.history()) == 200
