"""What-if scenarios on top of EmissionCalculator.

Pattern: copy the base input with dataclasses.replace, perturb the copy,
recalculate, wrap in a Scenario. The base input is never touched.

Exception: carbon price scenarios are cost-only. Emissions (and their
uncertainty) come from the unmodified input and only carbon_cost_eur is
scaled afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List

import pandas as pd

from cbam_engine.config import Settings
from cbam_engine.engine.emissions import EmissionCalculator, resolve_electricity_factor
from cbam_engine.engine.models import (
    EmissionInput,
    EmissionResult,
    Scenario,
    ScenarioParameters,
)

logger = logging.getLogger(__name__)


def _clamp_pct(x: Any) -> float:
    try:
        v = float(x or 0.0)
    except (TypeError, ValueError):
        return 0.0
    return max(min(v, 100.0), 0.0)


def apply_parameters(
    base: EmissionInput,
    params: ScenarioParameters,
    calculator: EmissionCalculator,
) -> EmissionInput:
    """Input-side knobs only; carbon_price_change is applied to the result."""
    inp = base

    eff = _clamp_pct(params.energy_efficiency_improvement)
    if eff > 0.0:
        k = 1.0 - eff / 100.0
        inp = replace(
            inp,
            electricity_kwh=inp.electricity_kwh * k,
            natural_gas_kwh=inp.natural_gas_kwh * k,
            fuel_oil_gj=inp.fuel_oil_gj * k,
            coal_gj=inp.coal_gj * k,
        )

    # renewable electricity counted at zero grid intensity
    ren = _clamp_pct(params.renewable_energy_share)
    if ren > 0.0:
        inp = replace(inp, electricity_kwh=inp.electricity_kwh * (1.0 - ren / 100.0))

    if params.electricity_factor_change:
        resolved = resolve_electricity_factor(base, calculator.registry, calculator.settings)
        changed = max(resolved.value * (1.0 + float(params.electricity_factor_change) / 100.0), 0.0)
        inp = replace(inp, custom_electricity_factor=changed)

    return inp


def _scale_cost(result: EmissionResult, multiplier: float) -> EmissionResult:
    return replace(result, carbon_cost_eur=result.carbon_cost_eur * multiplier)


class ScenarioEngine:
    def __init__(self, calculator: EmissionCalculator, *, settings: Settings | None = None) -> None:
        self.calculator = calculator
        self.settings = settings or calculator.settings

    def _coerce(self, base: EmissionInput | Dict[str, Any]) -> EmissionInput:
        return base if isinstance(base, EmissionInput) else EmissionInput.from_dict(base)

    def efficiency(self, base: EmissionInput) -> Scenario:
        inp = replace(
            base,
            electricity_kwh=base.electricity_kwh * 0.9,
            natural_gas_kwh=base.natural_gas_kwh * 0.85,
        )
        return Scenario(
            id="efficiency",
            name="Energy efficiency improvement",
            description="10% less electricity, 15% less natural gas",
            parameters=ScenarioParameters(energy_efficiency_improvement=10.0),
            results=self.calculator.calculate(inp),
        )

    def carbon_price_shock(self, base: EmissionInput) -> Scenario:
        mult = float(self.settings.PRICE_SHOCK_MULTIPLIER)
        change = (mult - 1.0) * 100.0
        return Scenario(
            id="carbon_price",
            name=f"Carbon price {change:+.0f}%",
            description="Impact of a carbon price increase on cost (emissions unchanged)",
            parameters=ScenarioParameters(carbon_price_change=change),
            results=_scale_cost(self.calculator.calculate(base), mult),
        )

    def renewable_share(self, base: EmissionInput, share_pct: float | None = None) -> Scenario:
        share = _clamp_pct(self.settings.RENEWABLE_SHARE_PCT if share_pct is None else share_pct)
        return self.custom(
            base,
            scenario_id="renewable_share",
            name=f"Renewable electricity {share:.0f}%",
            description=f"{share:.0f}% of purchased electricity from zero-emission sources",
            parameters=ScenarioParameters(renewable_energy_share=share),
        )

    def custom(
        self,
        base: EmissionInput | Dict[str, Any],
        *,
        scenario_id: str,
        name: str,
        description: str = "",
        parameters: ScenarioParameters,
    ) -> Scenario:
        base = self._coerce(base)
        inp = apply_parameters(base, parameters, self.calculator)
        results = self.calculator.calculate(inp)
        if parameters.carbon_price_change:
            results = _scale_cost(results, 1.0 + float(parameters.carbon_price_change) / 100.0)
        return Scenario(
            id=scenario_id,
            name=name,
            description=description,
            parameters=parameters,
            results=results,
        )

    def generate(self, base: EmissionInput | Dict[str, Any]) -> List[Scenario]:
        base = self._coerce(base)
        scenarios = [
            self.efficiency(base),
            self.carbon_price_shock(base),
            self.renewable_share(base),
        ]
        logger.debug("generated %d scenarios", len(scenarios))
        return scenarios


def comparison_table(base: EmissionResult, scenarios: Iterable[Scenario]) -> pd.DataFrame:
    """Base + scenarios side by side, deltas against base."""
    rows = [
        {
            "scenario_id": "base",
            "name": "Base",
            "total_tco2": base.total.value,
            "total_uncertainty_pct": base.total.uncertainty_pct,
            "per_unit_tco2": base.per_unit.value,
            "carbon_cost_eur": base.carbon_cost_eur,
            "compliance_score": base.compliance_score,
        }
    ]
    for s in scenarios:
        r = s.results
        rows.append(
            {
                "scenario_id": s.id,
                "name": s.name,
                "total_tco2": r.total.value,
                "total_uncertainty_pct": r.total.uncertainty_pct,
                "per_unit_tco2": r.per_unit.value,
                "carbon_cost_eur": r.carbon_cost_eur,
                "compliance_score": r.compliance_score,
            }
        )

    df = pd.DataFrame(rows)
    df["delta_tco2"] = df["total_tco2"] - base.total.value
    df["delta_cost_eur"] = df["carbon_cost_eur"] - base.carbon_cost_eur
    df["delta_pct"] = 0.0
    if base.total.value != 0:
        df["delta_pct"] = df["delta_tco2"] / base.total.value * 100.0
    return df
