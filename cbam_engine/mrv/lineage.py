from __future__ import annotations

import hashlib
import json
import math
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------
# Deterministic canonical JSON + SHA256 hashing (audit-grade)
#
# - sorted keys, utf-8, no whitespace variance
# - floats quantized to a fixed scale so 0.1 + 0.2 hashes like 0.3
# - enums by value, dates as ISO strings
#
# Audit input hashes and EmissionResult.result_hash both go through here.
# ---------------------------------------------------------------------

FLOAT_DIGITS = 12


def _quantize(d: Decimal, *, digits: int = FLOAT_DIGITS) -> str:
    q = Decimal(10) ** Decimal(-digits)
    return format(d.quantize(q, rounding=ROUND_HALF_UP), "f")


def _float_token(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "Infinity" if x > 0 else "-Infinity"
    try:
        return _quantize(Decimal(repr(x)))
    except InvalidOperation:
        return repr(x)


def _normalize(obj: Any) -> Any:
    """Recursively turn obj into JSON-safe primitives with stable floats.

    Lists/tuples keep their order; callers sort upstream when order is not
    meaningful.
    """
    if isinstance(obj, Enum):
        return _normalize(obj.value)
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, int):
        return obj
    if isinstance(obj, float):
        return _float_token(obj)
    if isinstance(obj, Decimal):
        return _quantize(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (bytes, bytearray)):
        return {"__bytes_sha256": hashlib.sha256(bytes(obj)).hexdigest()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return _normalize(obj.to_dict())
    return str(obj)


def canonical_json(obj: Any) -> str:
    return json.dumps(
        _normalize(obj),
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )


def sha256_json(obj: Any) -> str:
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
