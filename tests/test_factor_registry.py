import threading
from datetime import date

import pandas as pd
import pytest

from cbam_engine.engine.models import CountryCode, EmissionFactor, Sector, VerificationLevel
from cbam_engine.errors import InvalidInputError
from cbam_engine.factors.defaults import default_factors, factors_from_dataframe
from cbam_engine.factors.registry import FactorRegistry


def _factor(value, updated, *, country="TN", sector="iron_steel", source="test"):
    return EmissionFactor(
        country_code=CountryCode(country),
        sector=Sector(sector),
        electricity_factor=value,
        uncertainty_pct=8.0,
        source=source,
        last_updated=updated,
        verification_level=VerificationLevel.ESTIMATED,
    )


def test_default_dataset_lookup(registry):
    f = registry.lookup(CountryCode.TN, Sector.IRON_STEEL)
    assert f is not None
    assert f.electricity_factor == pytest.approx(0.48)
    assert f.uncertainty_pct == pytest.approx(8.0)
    assert f.source == "STEG 2024"

    eu = registry.lookup("EU", "cement")
    assert eu.electricity_factor == pytest.approx(0.255)
    assert eu.verification_level is VerificationLevel.VERIFIED
    assert len(default_factors()) == 12


def test_miss_returns_none(registry):
    assert registry.lookup("TN", "fertilizers") is None
    assert registry.lookup("ZZ", "iron_steel") is None


def test_string_keys_are_normalised(registry):
    assert registry.lookup(" tn ", "Iron Steel") == registry.lookup(CountryCode.TN, Sector.IRON_STEEL)


def test_unknown_sector_is_rejected(registry):
    with pytest.raises(InvalidInputError):
        registry.lookup("TN", "textiles")


def test_most_recent_wins():
    reg = FactorRegistry([_factor(0.48, date(2024, 1, 1))])
    reg.upsert(_factor(0.45, date(2025, 1, 1), source="STEG 2025"))
    assert reg.lookup("TN", "iron_steel").electricity_factor == pytest.approx(0.45)

    # an older factor inserted later does not become current
    reg.upsert(_factor(0.50, date(2023, 1, 1), source="STEG 2023"))
    assert reg.lookup("TN", "iron_steel").source == "STEG 2025"
    assert [f.source for f in reg.history("TN", "iron_steel")] == ["STEG 2023", "test", "STEG 2025"]


def test_same_date_last_inserted_wins():
    reg = FactorRegistry()
    reg.upsert(_factor(0.48, date(2024, 1, 1), source="first"))
    reg.upsert(_factor(0.47, date(2024, 1, 1), source="second"))
    assert reg.lookup("TN", "iron_steel").source == "second"


def test_factors_lists_current_only():
    reg = FactorRegistry([_factor(0.48, date(2024, 1, 1)), _factor(0.45, date(2025, 1, 1))])
    current = reg.factors()
    assert len(current) == 1
    assert current[0].electricity_factor == pytest.approx(0.45)
    assert len(reg) == 1


def test_invalid_factor_is_rejected():
    with pytest.raises(InvalidInputError):
        _factor(-0.1, date(2024, 1, 1))
    with pytest.raises(InvalidInputError):
        EmissionFactor(CountryCode.TN, Sector.CEMENT, 0.4, 120.0, "x", date(2024, 1, 1))


def test_lookup_before_ready_raises():
    reg = FactorRegistry()
    assert reg.ready
    reg._ready.clear()
    with pytest.raises(RuntimeError):
        reg.lookup("TN", "cement")


def test_factors_from_dataframe():
    df = pd.DataFrame(
        [
            {"Country": "TR", "Sector": "cement", "Factor": 0.41, "Uncertainty": 9, "Source": "EPDK 2025", "Date": "2025-03-01", "Verification Level": "verified"},
            {"Country": "TR", "Sector": "Cement", "Factor": 0.39, "Uncertainty": 10, "Source": "EPDK 2024", "Date": "2024-01-01"},
            {"Country": None, "Sector": "cement", "Factor": 0.1, "Uncertainty": 1, "Source": "", "Date": "2024-01-01"},
        ]
    )
    rows = factors_from_dataframe(df)
    assert len(rows) == 2
    assert rows[1].verification_level is VerificationLevel.DEFAULT

    reg = FactorRegistry(rows)
    f = reg.lookup("TR", "cement")
    assert f.electricity_factor == pytest.approx(0.41)
    assert f.verification_level is VerificationLevel.VERIFIED
    assert f.last_updated == date(2025, 3, 1)


def test_factors_from_empty_dataframe():
    assert factors_from_dataframe(pd.DataFrame()) == []


def test_concurrent_lookups_during_upserts():
    reg = FactorRegistry([_factor(0.48, date(2024, 1, 1))])
    seen = set()
    errors = []

    def reader():
        try:
            for _ in range(2000):
                seen.add(reg.lookup("TN", "iron_steel").electricity_factor)
        except Exception as exc:  # pragma: no cover
            errors.append(exc)

    def writer():
        for i in range(1, 50):
            reg.upsert(_factor(0.48 - i / 1000, date(2024, 1, 1 + (i % 28))))

    threads = [threading.Thread(target=reader) for _ in range(4)] + [threading.Thread(target=writer)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert all(0.3 < v <= 0.48 for v in seen)


def test_unlisted_country_never_borrows_a_factor():
    df = pd.DataFrame(
        [{"Country": "FR", "Sector": "cement", "Factor": 0.05, "Uncertainty": 5, "Source": "RTE 2025", "Date": "2025-01-01"}]
    )
    assert factors_from_dataframe(df) == []

    reg = FactorRegistry(default_factors())
    for f in factors_from_dataframe(df):
        reg.upsert(f)
    assert reg.lookup("US", "cement") is None
    assert reg.lookup("FR", "cement") is None


def test_upsert_rejects_unknown_country():
    reg = FactorRegistry()
    with pytest.raises(InvalidInputError):
        reg.upsert(_factor(0.05, date(2025, 1, 1), country="UNKNOWN", sector="cement"))
    assert len(reg) == 0


@pytest.mark.parametrize("value", ["n/a", "", None, float("nan")])
def test_dataframe_rejects_missing_or_non_numeric_factor(value):
    df = pd.DataFrame(
        [{"country": "TN", "sector": "iron_steel", "factor": value, "uncertainty": 8, "source": "STEG 2025", "date": "2025-01-01"}]
    )
    with pytest.raises(InvalidInputError):
        factors_from_dataframe(df)


def test_dataframe_blank_uncertainty_reads_as_zero():
    df = pd.DataFrame(
        [{"country": "TN", "sector": "iron_steel", "factor": 0.47, "uncertainty": None, "source": "STEG 2025", "date": "2025-01-01"}]
    )
    (row,) = factors_from_dataframe(df)
    assert row.electricity_factor == pytest.approx(0.47)
    assert row.uncertainty_pct == 0.0
