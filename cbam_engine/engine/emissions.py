from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from cbam_engine.config import Settings, settings as default_settings
from cbam_engine.engine.compliance import ComplianceScorer
from cbam_engine.engine.models import (
    CarbonPriceRecord,
    EmissionComponent,
    EmissionInput,
    EmissionMethod,
    EmissionResult,
    GhgBreakdown,
    ScopeEmission,
)
from cbam_engine.engine.uncertainty import combined_uncertainty, total_uncertainty
from cbam_engine.errors import AuditWriteError, InvalidInputError
from cbam_engine.factors.registry import FactorRegistry
from cbam_engine.mrv.audit import AuditLog
from cbam_engine.pricing.provider import CarbonPriceProvider

logger = logging.getLogger(__name__)


# ----------------------------
# Constants
# ----------------------------
KWH_PER_GJ = 3.6
KWH_PER_MWH = 1000.0
KG_PER_TONNE = 1000.0


@dataclass(frozen=True)
class CombustionFactor:
    factor: float  # tCO2 / GJ
    uncertainty_pct: float
    unit: str = "tCO2/GJ"


# EU default values (Implementing Regulation 2023/1773, Annex III)
NATURAL_GAS = CombustionFactor(0.0556, 3.0)
FUEL_OIL = CombustionFactor(0.0741, 2.0)
COAL = CombustionFactor(0.0946, 2.0)
PROCESS_EMISSIONS_UNCERTAINTY_PCT = 15.0

# 100-year GWP
GWP_CH4 = 25.0
GWP_N2O = 298.0

CONFIDENCE_MEASURED = 95
CONFIDENCE_ESTIMATED = 90

ORIGIN_OVERRIDE = "override"
ORIGIN_REGISTRY = "registry"
ORIGIN_DEFAULT = "default"


@dataclass(frozen=True)
class ResolvedElectricityFactor:
    value: float  # tCO2 / MWh
    uncertainty_pct: float
    source: str
    origin: str  # override | registry | default


def resolve_electricity_factor(
    inp: EmissionInput,
    registry: FactorRegistry,
    cfg: Settings | None = None,
) -> ResolvedElectricityFactor:
    """override -> registry (most recent) -> EU default."""
    cfg = cfg or default_settings
    if inp.custom_electricity_factor is not None:
        return ResolvedElectricityFactor(
            value=float(inp.custom_electricity_factor),
            uncertainty_pct=float(cfg.DEFAULT_ELECTRICITY_UNCERTAINTY_PCT),
            source="Custom electricity factor (declared by operator)",
            origin=ORIGIN_OVERRIDE,
        )

    f = registry.lookup(inp.country_code, inp.sector)
    if f is not None:
        return ResolvedElectricityFactor(
            value=float(f.electricity_factor),
            uncertainty_pct=float(f.uncertainty_pct),
            source=f"{f.source} ({f.country_code.value}/{f.sector.value}, {f.verification_level.value})",
            origin=ORIGIN_REGISTRY,
        )

    logger.debug(
        "no electricity factor for %s/%s, using EU default",
        inp.country_code.value,
        inp.sector.value,
    )
    eu = float(cfg.EU_DEFAULT_ELECTRICITY_FACTOR)
    return ResolvedElectricityFactor(
        value=eu,
        uncertainty_pct=float(cfg.DEFAULT_ELECTRICITY_UNCERTAINTY_PCT),
        source=f"EU default electricity factor ({eu} tCO2/MWh)",
        origin=ORIGIN_DEFAULT,
    )


# ----------------------------
# Validation
# ----------------------------
def validate_input(inp: EmissionInput) -> EmissionInput:
    """Reject out-of-domain values; normalise production 0 -> 1.

    0 tonnes means "unknown" and is floored; a negative figure is an error.
    """
    for name, v in inp.quantities().items():
        if not math.isfinite(v):
            raise InvalidInputError(f"{name} must be a finite number, got {v}")
        if v < 0:
            raise InvalidInputError(f"{name} must be >= 0, got {v}")

    for name in ("custom_electricity_factor", "custom_process_emissions"):
        v = getattr(inp, name)
        if v is None:
            continue
        if not math.isfinite(v) or v < 0:
            raise InvalidInputError(f"{name} must be a finite number >= 0, got {v}")

    p = inp.production_tonnes
    if not math.isfinite(p) or p < 0:
        raise InvalidInputError(f"production_tonnes must be >= 0, got {p}")
    return inp


def _production_divisor(production_tonnes: float) -> float:
    return max(float(production_tonnes), 1.0)


# ----------------------------
# Pure calculation
# ----------------------------
def compute_emissions(
    inp: EmissionInput,
    *,
    registry: FactorRegistry,
    price: Optional[CarbonPriceRecord],
    scorer: ComplianceScorer,
    cfg: Settings | None = None,
) -> Tuple[EmissionResult, List[str]]:
    """EmissionInput -> (EmissionResult, data sources consulted). No side effects."""
    cfg = cfg or default_settings
    elec = resolve_electricity_factor(inp, registry, cfg)

    # Scope 1: direct combustion + declared process emissions
    ng_gj = inp.natural_gas_kwh / KWH_PER_GJ
    s1_ng = ng_gj * NATURAL_GAS.factor
    s1_oil = inp.fuel_oil_gj * FUEL_OIL.factor
    s1_coal = inp.coal_gj * COAL.factor
    has_process = inp.custom_process_emissions is not None
    s1_process = float(inp.custom_process_emissions or 0.0)

    s1_value = s1_ng + s1_oil + s1_coal + s1_process
    s1_unc = combined_uncertainty(
        [
            EmissionComponent(s1_ng, NATURAL_GAS.uncertainty_pct),
            EmissionComponent(s1_oil, FUEL_OIL.uncertainty_pct),
            EmissionComponent(s1_coal, COAL.uncertainty_pct),
            EmissionComponent(s1_process, PROCESS_EMISSIONS_UNCERTAINTY_PCT if has_process else 0.0),
        ]
    )
    s1_sources = ["EU default combustion factors (Annex III)", "Declared activity data"]
    if has_process:
        s1_sources.append("Declared process emissions")
    scope1 = ScopeEmission(
        value=s1_value,
        uncertainty_pct=s1_unc,
        confidence_level=CONFIDENCE_MEASURED,
        method=inp.preferred_method,
        sources=tuple(s1_sources),
        formula="Σ(consumption_i × emission_factor_i) + process_emissions",
        input_data={
            "natural_gas_kwh": inp.natural_gas_kwh,
            "natural_gas_gj": ng_gj,
            "fuel_oil_gj": inp.fuel_oil_gj,
            "coal_gj": inp.coal_gj,
            "process_emissions_tco2": s1_process,
            "natural_gas_tco2": s1_ng,
            "fuel_oil_tco2": s1_oil,
            "coal_tco2": s1_coal,
        },
    )

    # Scope 2: purchased electricity
    mwh = inp.electricity_kwh / KWH_PER_MWH
    s2_value = mwh * elec.value
    scope2 = ScopeEmission(
        value=s2_value,
        uncertainty_pct=elec.uncertainty_pct,
        confidence_level=CONFIDENCE_MEASURED,
        method=EmissionMethod.ACTUAL if elec.origin == ORIGIN_OVERRIDE else EmissionMethod.DEFAULT,
        sources=(elec.source,),
        formula="electricity_MWh × grid_emission_factor",
        input_data={
            "electricity_kwh": inp.electricity_kwh,
            "electricity_mwh": mwh,
            "factor": elec.value,
            "factor_origin": elec.origin,
            "country_code": inp.country_code.value,
            "sector": inp.sector.value,
        },
    )

    # Scope 3: coarse precursor estimate, not a measurement
    ratio = float(cfg.SCOPE3_RATIO)
    scope3 = ScopeEmission(
        value=s1_value * ratio,
        uncertainty_pct=float(cfg.SCOPE3_UNCERTAINTY_PCT),
        confidence_level=CONFIDENCE_ESTIMATED,
        method=EmissionMethod.DEFAULT,
        sources=(f"Estimate: {ratio:.0%} of Scope 1 (default precursor ratio, not measured)",),
        formula=f"scope1 × {ratio} (precursors)",
        input_data={"scope1": s1_value, "ratio": ratio},
    )

    # Other GHG, tCO2e
    ch4_co2e = inp.ch4_kg * GWP_CH4 / KG_PER_TONNE
    n2o_co2e = inp.n2o_kg * GWP_N2O / KG_PER_TONNE

    # CH4/N2O are added to the value but not to the uncertainty budget
    total_value = scope1.value + scope2.value + scope3.value + ch4_co2e + n2o_co2e
    total_unc = total_uncertainty(scope1.as_component(), scope2.as_component(), scope3.as_component())
    total = ScopeEmission(
        value=total_value,
        uncertainty_pct=total_unc,
        confidence_level=CONFIDENCE_MEASURED,
        method=inp.preferred_method,
        sources=("Combination of Scope 1 + 2 + 3", f"Other GHG via GWP-100 (CH4={GWP_CH4:g}, N2O={GWP_N2O:g})"),
        formula="scope1 + scope2 + scope3 + other_ghg_co2e",
        input_data={
            "scope1": scope1.value,
            "scope2": scope2.value,
            "scope3": scope3.value,
            "ch4_co2e": ch4_co2e,
            "n2o_co2e": n2o_co2e,
        },
    )

    divisor = _production_divisor(inp.production_tonnes)
    per_unit = ScopeEmission(
        value=total_value / divisor,
        uncertainty_pct=total_unc,
        confidence_level=CONFIDENCE_MEASURED,
        method=inp.preferred_method,
        sources=("Total / production",),
        formula="total_emissions / max(production_tonnes, 1)",
        input_data={
            "total": total_value,
            "production": inp.production_tonnes,
            "divisor": divisor,
            "production_normalized": inp.production_tonnes != divisor,
        },
    )

    carbon_cost = total_value * price.price_eur_per_tonne if price is not None else 0.0

    score, recommendations = scorer.score(
        inp.preferred_method,
        scope1.uncertainty_pct,
        scope2.uncertainty_pct,
        process_emissions_supplied=has_process,
    )

    result = EmissionResult(
        scope1=scope1,
        scope2=scope2,
        scope3=scope3,
        total=total,
        per_unit=per_unit,
        all_ghg=GhgBreakdown(
            co2=scope1.value + scope2.value + scope3.value,
            ch4_co2e=ch4_co2e,
            n2o_co2e=n2o_co2e,
            other_co2e=0.0,
        ),
        carbon_cost_eur=carbon_cost,
        compliance_score=int(score),
        recommendations=tuple(recommendations),
    )

    data_sources = [f"electricity_factor:{elec.origin}:{elec.source}", "combustion_factors:EU Annex III"]
    if price is not None:
        data_sources.append(f"carbon_price:{price.market}:{price.date.isoformat()}")
    else:
        data_sources.append("carbon_price:unavailable")
    return result, data_sources


class EmissionCalculator:
    """Facility-level calculation entry point.

    Wraps compute_emissions with input validation, the current carbon price
    and the audit side effect. Audit failures go to on_audit_error and the
    log; they never fail a calculation.
    """

    def __init__(
        self,
        registry: FactorRegistry,
        price_provider: CarbonPriceProvider,
        *,
        scorer: ComplianceScorer | None = None,
        audit_log: AuditLog | None = None,
        on_audit_error: Callable[[Exception], None] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.price_provider = price_provider
        self.scorer = scorer or ComplianceScorer()
        self.audit_log = audit_log
        self.on_audit_error = on_audit_error
        self.settings = settings or default_settings

    def calculate(self, inp: EmissionInput | Dict[str, Any]) -> EmissionResult:
        if not isinstance(inp, EmissionInput):
            inp = EmissionInput.from_dict(inp)
        validate_input(inp)

        result, data_sources = compute_emissions(
            inp,
            registry=self.registry,
            price=self.price_provider.current(),
            scorer=self.scorer,
            cfg=self.settings,
        )
        self._audit(inp, result, data_sources)
        return result

    def _audit(self, inp: EmissionInput, result: EmissionResult, data_sources: List[str]) -> None:
        if self.audit_log is None:
            return
        try:
            self.audit_log.record_calculation(
                inp.to_dict(),
                data_sources=data_sources,
                result_hash=result.result_hash,
            )
        except Exception as exc:
            # AuditWriteError from a sink, or anything unexpected from the log itself
            level = logging.WARNING if isinstance(exc, AuditWriteError) else logging.ERROR
            logger.log(level, "audit append failed: %s", exc)
            if self.on_audit_error is not None:
                try:
                    self.on_audit_error(exc)
                except Exception:
                    logger.exception("on_audit_error callback raised")
