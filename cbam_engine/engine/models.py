from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from cbam_engine.errors import InvalidInputError
from cbam_engine.mrv.lineage import sha256_json


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_")


def _to_float(x: Any, *, field_name: str = "") -> float:
    if x is None or (isinstance(x, str) and not x.strip()):
        return 0.0
    try:
        return float(x)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{field_name or 'value'} is not numeric: {x!r}") from exc


def _opt_float(x: Any, *, field_name: str = "") -> Optional[float]:
    if x is None or (isinstance(x, str) and not x.strip()):
        return None
    return _to_float(x, field_name=field_name)


# ----------------------------
# Closed vocabularies
# ----------------------------
class Sector(str, Enum):
    IRON_STEEL = "iron_steel"
    CEMENT = "cement"
    ALUMINIUM = "aluminium"
    FERTILIZERS = "fertilizers"
    ELECTRICITY = "electricity"
    HYDROGEN = "hydrogen"

    @classmethod
    def parse(cls, value: Any) -> "Sector":
        if isinstance(value, cls):
            return value
        key = _norm(value)
        for s in cls:
            if s.value == key or s.name.lower() == key:
                return s
        raise InvalidInputError(f"Unknown CBAM sector: {value!r}")


class CountryCode(str, Enum):
    """Countries with a shipped electricity factor. Anything else is UNKNOWN."""

    EU = "EU"
    TN = "TN"
    CN = "CN"
    TR = "TR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "CountryCode":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().upper()
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


class VerificationLevel(str, Enum):
    VERIFIED = "VERIFIED"
    ESTIMATED = "ESTIMATED"
    DEFAULT = "DEFAULT"

    @classmethod
    def parse(cls, value: Any) -> "VerificationLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "DEFAULT").strip().upper())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown verification level: {value!r}") from exc


class EmissionMethod(str, Enum):
    ACTUAL = "ACTUAL"
    DEFAULT = "DEFAULT"
    HYBRID = "HYBRID"

    @classmethod
    def parse(cls, value: Any) -> "EmissionMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "DEFAULT").strip().upper())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown emission method: {value!r}") from exc


# ----------------------------
# Reference data
# ----------------------------
@dataclass(frozen=True)
class EmissionFactor:
    country_code: CountryCode
    sector: Sector
    electricity_factor: float  # tCO2 / MWh
    uncertainty_pct: float
    source: str
    last_updated: date
    verification_level: VerificationLevel = VerificationLevel.DEFAULT

    def __post_init__(self) -> None:
        if not math.isfinite(self.electricity_factor) or self.electricity_factor < 0:
            raise InvalidInputError(f"electricity_factor must be >= 0, got {self.electricity_factor}")
        if not 0.0 <= self.uncertainty_pct <= 100.0:
            raise InvalidInputError(f"uncertainty_pct must be within 0-100, got {self.uncertainty_pct}")

    @property
    def key(self) -> Tuple[CountryCode, Sector]:
        return (self.country_code, self.sector)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "country_code": self.country_code.value,
            "sector": self.sector.value,
            "electricity_factor": self.electricity_factor,
            "uncertainty_pct": self.uncertainty_pct,
            "source": self.source,
            "last_updated": self.last_updated.isoformat(),
            "verification_level": self.verification_level.value,
        }


@dataclass(frozen=True)
class CarbonPriceRecord:
    date: date
    price_eur_per_tonne: float
    currency: str = "EUR"
    exchange_rate: float = 1.0
    market: str = "EEX"
    contract_type: str = "Front Month"
    uncertainty_pct: float = 2.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d


# ----------------------------
# Calculation request
# ----------------------------
_ENERGY_FIELDS = ("electricity_kwh", "natural_gas_kwh", "fuel_oil_gj", "coal_gj")
_GHG_FIELDS = ("ch4_kg", "n2o_kg")


@dataclass(frozen=True)
class EmissionInput:
    country_code: CountryCode
    sector: Sector
    production_tonnes: float
    electricity_kwh: float = 0.0
    natural_gas_kwh: float = 0.0
    fuel_oil_gj: float = 0.0
    coal_gj: float = 0.0
    ch4_kg: float = 0.0
    n2o_kg: float = 0.0
    custom_electricity_factor: Optional[float] = None
    custom_process_emissions: Optional[float] = None
    preferred_method: EmissionMethod = EmissionMethod.DEFAULT

    def __post_init__(self) -> None:
        object.__setattr__(self, "country_code", CountryCode.parse(self.country_code))
        object.__setattr__(self, "sector", Sector.parse(self.sector))
        object.__setattr__(self, "preferred_method", EmissionMethod.parse(self.preferred_method))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EmissionInput":
        """Loose caller payload (form/CSV row) -> typed input.

        Empty strings and None count as 0 for quantities and as "not supplied"
        for the two overrides. Range checks happen in the calculator.
        """
        d = {_norm(k): v for k, v in (data or {}).items()}
        kwargs: Dict[str, Any] = {
            "country_code": CountryCode.parse(d.get("country_code")),
            "sector": Sector.parse(d.get("sector")),
            "production_tonnes": _to_float(d.get("production_tonnes"), field_name="production_tonnes"),
            "preferred_method": EmissionMethod.parse(d.get("preferred_method")),
        }
        for name in _ENERGY_FIELDS + _GHG_FIELDS:
            kwargs[name] = _to_float(d.get(name), field_name=name)
        for name in ("custom_electricity_factor", "custom_process_emissions"):
            kwargs[name] = _opt_float(d.get(name), field_name=name)
        return cls(**kwargs)

    def quantities(self) -> Dict[str, float]:
        return {name: float(getattr(self, name)) for name in _ENERGY_FIELDS + _GHG_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.quantities(),
            "country_code": self.country_code.value,
            "sector": self.sector.value,
            "production_tonnes": self.production_tonnes,
            "custom_electricity_factor": self.custom_electricity_factor,
            "custom_process_emissions": self.custom_process_emissions,
            "preferred_method": self.preferred_method.value,
        }


@dataclass(frozen=True)
class EmissionComponent:
    value: float
    uncertainty_pct: float


# ----------------------------
# Results
# ----------------------------
@dataclass(frozen=True)
class ScopeEmission:
    value: float
    uncertainty_pct: float
    confidence_level: int
    method: EmissionMethod
    sources: Tuple[str, ...]
    formula: str
    input_data: Dict[str, Any] = field(default_factory=dict)

    def as_component(self) -> EmissionComponent:
        return EmissionComponent(self.value, self.uncertainty_pct)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "uncertainty_pct": self.uncertainty_pct,
            "confidence_level": self.confidence_level,
            "method": self.method.value,
            "sources": list(self.sources),
            "formula": self.formula,
            "input_data": dict(self.input_data),
        }


@dataclass(frozen=True)
class GhgBreakdown:
    co2: float
    ch4_co2e: float
    n2o_co2e: float
    other_co2e: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class EmissionResult:
    scope1: ScopeEmission
    scope2: ScopeEmission
    scope3: ScopeEmission
    total: ScopeEmission
    per_unit: ScopeEmission
    all_ghg: GhgBreakdown
    carbon_cost_eur: float
    compliance_score: int
    recommendations: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope1": self.scope1.to_dict(),
            "scope2": self.scope2.to_dict(),
            "scope3": self.scope3.to_dict(),
            "total": self.total.to_dict(),
            "per_unit": self.per_unit.to_dict(),
            "all_ghg": self.all_ghg.to_dict(),
            "carbon_cost_eur": self.carbon_cost_eur,
            "compliance_score": self.compliance_score,
            "recommendations": list(self.recommendations),
        }

    @property
    def result_hash(self) -> str:
        return sha256_json(self.to_dict())


@dataclass(frozen=True)
class ScenarioParameters:
    """Sparse perturbation knobs, all in percent. None = knob not used."""

    electricity_factor_change: Optional[float] = None
    carbon_price_change: Optional[float] = None
    energy_efficiency_improvement: Optional[float] = None
    renewable_energy_share: Optional[float] = None

    def to_dict(self) -> Dict[str, float]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str
    description: str
    parameters: ScenarioParameters
    results: EmissionResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_dict(),
            "results": self.results.to_dict(),
        }
