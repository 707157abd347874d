from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, List

import pandas as pd

from cbam_engine.engine.models import (
    CountryCode,
    EmissionFactor,
    Sector,
    VerificationLevel,
)
from cbam_engine.errors import InvalidInputError
from cbam_engine.factors.registry import FactorRegistry

logger = logging.getLogger(__name__)


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_")


def _to_float(x: Any, *, field_name: str, required: bool) -> float:
    try:
        missing = bool(pd.isna(x))
    except (TypeError, ValueError):
        missing = False
    if missing or (isinstance(x, str) and not x.strip()):
        if required:
            raise InvalidInputError(f"{field_name} is missing")
        return 0.0
    try:
        return float(x)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{field_name} is not numeric: {x!r}") from exc


def _to_date(x: Any) -> date:
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    ts = pd.to_datetime(str(x or "").strip(), errors="coerce")
    if pd.isna(ts):
        raise InvalidInputError(f"last_updated is not a date: {x!r}")
    return ts.date()


# Grid electricity intensity by country of origin (tCO2/MWh).
# Sector rows repeat the national grid value; they are separate keys so a
# sector-specific factor can supersede one without touching the others.
_GRID_FACTORS = [
    # country, factor, uncertainty %, source, verification
    ("EU", 0.255, 5.0, "EEA 2024", "VERIFIED"),
    ("TN", 0.48, 8.0, "STEG 2024", "ESTIMATED"),
    ("CN", 0.555, 12.0, "IEA 2024", "ESTIMATED"),
    ("TR", 0.39, 10.0, "EPDK 2024", "ESTIMATED"),
]
_GRID_SECTORS = (Sector.IRON_STEEL, Sector.CEMENT, Sector.ALUMINIUM)
_GRID_DATE = date(2024, 1, 1)


def default_factors() -> List[EmissionFactor]:
    out: List[EmissionFactor] = []
    for country, value, unc, source, level in _GRID_FACTORS:
        for sector in _GRID_SECTORS:
            out.append(
                EmissionFactor(
                    country_code=CountryCode(country),
                    sector=sector,
                    electricity_factor=value,
                    uncertainty_pct=unc,
                    source=source,
                    last_updated=_GRID_DATE,
                    verification_level=VerificationLevel(level),
                )
            )
    return out


def default_registry() -> FactorRegistry:
    return FactorRegistry(default_factors())


def factors_from_dataframe(df: pd.DataFrame) -> List[EmissionFactor]:
    """Factor table (CSV/Excel export) -> EmissionFactor list.

    Expected columns (flexible naming):
      - country_code (or country)
      - sector
      - electricity_factor (or factor / value), tCO2/MWh
      - uncertainty_pct (or uncertainty)
      - source
      - last_updated (or date / valid_from)
      - verification_level (optional, DEFAULT)

    Rows without country or sector are skipped, and so are countries outside
    the closed list (they resolve through the EU default instead). A blank or
    non-numeric electricity_factor raises InvalidInputError; a blank
    uncertainty reads as 0.
    """
    if df is None or len(df) == 0:
        return []

    d = df.copy()
    d.columns = [_norm(c) for c in d.columns]

    aliases = {
        "country_code": ("country_code", "country"),
        "electricity_factor": ("electricity_factor", "factor", "value"),
        "uncertainty_pct": ("uncertainty_pct", "uncertainty"),
        "last_updated": ("last_updated", "date", "valid_from"),
    }
    for target, names in aliases.items():
        if target in d.columns:
            continue
        for n in names:
            if n in d.columns:
                d[target] = d[n]
                break
        else:
            d[target] = None

    for col in ("sector", "source", "verification_level"):
        if col not in d.columns:
            d[col] = None

    out: List[EmissionFactor] = []
    for _, r in d.iterrows():
        country = r.get("country_code")
        sector = r.get("sector")
        if pd.isna(country) or pd.isna(sector) or not str(country).strip() or not str(sector).strip():
            continue
        code = CountryCode.parse(country)
        if code is CountryCode.UNKNOWN:
            logger.warning("skipping factor row for unlisted country %r (%s)", country, sector)
            continue
        level = r.get("verification_level")
        out.append(
            EmissionFactor(
                country_code=code,
                sector=Sector.parse(sector),
                electricity_factor=_to_float(r.get("electricity_factor"), field_name="electricity_factor", required=True),
                uncertainty_pct=_to_float(r.get("uncertainty_pct"), field_name="uncertainty_pct", required=False),
                source=str(r.get("source") or "") if not pd.isna(r.get("source")) else "",
                last_updated=_to_date(r.get("last_updated")),
                verification_level=VerificationLevel.parse(None if pd.isna(level) else level),
            )
        )
    return out
