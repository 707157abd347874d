import os
import tempfile
from datetime import date

import pytest

from cbam_engine.engine.compliance import ComplianceScorer
from cbam_engine.engine.emissions import EmissionCalculator
from cbam_engine.engine.models import CarbonPriceRecord, EmissionInput
from cbam_engine.engine.scenarios import ScenarioEngine
from cbam_engine.factors.defaults import default_registry
from cbam_engine.mrv.audit import AuditLog
from cbam_engine.pricing.provider import CarbonPriceProvider


@pytest.fixture()
def sqlite_url():
    # temporary sqlite file per test
    fd, path = tempfile.mkstemp(prefix="cbam_test_", suffix=".db")
    os.close(fd)
    yield f"sqlite:///{path}"
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture()
def registry():
    return default_registry()


@pytest.fixture()
def price_record():
    return CarbonPriceRecord(date=date(2024, 6, 3), price_eur_per_tonne=68.45)


@pytest.fixture()
def price_provider(price_record):
    return CarbonPriceProvider(initial=price_record)


@pytest.fixture()
def audit_log():
    return AuditLog()


@pytest.fixture()
def calculator(registry, price_provider, audit_log):
    return EmissionCalculator(registry, price_provider, scorer=ComplianceScorer(), audit_log=audit_log)


@pytest.fixture()
def scenario_engine(calculator):
    return ScenarioEngine(calculator)


@pytest.fixture()
def tn_input():
    return EmissionInput.from_dict(
        {
            "electricity_kwh": 100000,
            "natural_gas_kwh": 50000,
            "fuel_oil_gj": 0,
            "coal_gj": 0,
            "country_code": "TN",
            "sector": "iron_steel",
            "production_tonnes": 1000,
            "preferred_method": "DEFAULT",
        }
    )
