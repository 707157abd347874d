from datetime import date

from cbam_engine.engine.models import Sector
from cbam_engine.mrv.lineage import canonical_json, sha256_json


def test_hash_consistency():
    a = {"b": 1, "a": 2.0, "c": [3.141592653589793, {"z": 0.1 + 0.2}]}
    b = {"c": [{"z": 0.3}, 3.141592653589793], "a": 2.0, "b": 1}
    # list order is meaningful
    assert sha256_json(a) != sha256_json(b)

    assert sha256_json({"a": 0.1 + 0.2}) == sha256_json({"a": 0.3})
    assert sha256_json({"x": 1, "y": 2}) == sha256_json({"y": 2, "x": 1})


def test_enums_and_dates_are_canonical():
    assert canonical_json({"s": Sector.CEMENT, "d": date(2024, 1, 1)}) == '{"d":"2024-01-01","s":"cement"}'


def test_factor_change_changes_hash():
    f1 = {"country_code": "TN", "sector": "iron_steel", "electricity_factor": 0.48}
    f2 = {"country_code": "TN", "sector": "iron_steel", "electricity_factor": 0.49}
    assert sha256_json(f1) != sha256_json(f2)


def test_result_hash_is_stable(calculator, tn_input):
    r1 = calculator.calculate(tn_input)
    r2 = calculator.calculate(tn_input)
    assert r1.result_hash == r2.result_hash
    assert len(r1.result_hash) == 64
