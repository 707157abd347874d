"""Compliance score + recommendations (rule-based, deterministic).

Score is a data-quality / regulatory-readiness heuristic, not a certification.
Recommendation order is rendered verbatim by the UI; keep it stable.
"""

from __future__ import annotations

from typing import Any, List, Tuple

from cbam_engine.engine.models import EmissionMethod

METHOD_PENALTIES = {
    EmissionMethod.ACTUAL: 0,
    EmissionMethod.HYBRID: 10,
    EmissionMethod.DEFAULT: 20,
}

SCOPE1_UNCERTAINTY_LIMIT_PCT = 10.0
SCOPE1_UNCERTAINTY_PENALTY = 15
SCOPE2_UNCERTAINTY_LIMIT_PCT = 15.0
SCOPE2_UNCERTAINTY_PENALTY = 10
VERIFICATION_THRESHOLD = 80

REC_COLLECT_REAL_DATA = "Collect real activity data to improve accuracy (verified data recommended)"
REC_ELECTRICITY_FACTOR = "Electricity factor uncertain ({pct:.1f}%) - obtain a specific factor from your supplier"
REC_VERIFICATION = "Low compliance score - consider third-party verification by an accredited body"
REC_PROCESS_EMISSIONS = "Add the process emissions specific to your installation"


class ComplianceScorer:
    def score(
        self,
        method: Any,
        scope1_uncertainty_pct: float,
        scope2_uncertainty_pct: float,
        *,
        process_emissions_supplied: bool = False,
    ) -> Tuple[int, List[str]]:
        m = EmissionMethod.parse(method)

        score = 100 - METHOD_PENALTIES[m]
        if scope1_uncertainty_pct > SCOPE1_UNCERTAINTY_LIMIT_PCT:
            score -= SCOPE1_UNCERTAINTY_PENALTY
        if scope2_uncertainty_pct > SCOPE2_UNCERTAINTY_LIMIT_PCT:
            score -= SCOPE2_UNCERTAINTY_PENALTY
        score = max(0, min(100, score))

        recommendations: List[str] = []
        if m is EmissionMethod.DEFAULT:
            recommendations.append(REC_COLLECT_REAL_DATA)
        if scope2_uncertainty_pct > SCOPE2_UNCERTAINTY_LIMIT_PCT:
            recommendations.append(REC_ELECTRICITY_FACTOR.format(pct=scope2_uncertainty_pct))
        if score < VERIFICATION_THRESHOLD:
            recommendations.append(REC_VERIFICATION)
        if not process_emissions_supplied:
            recommendations.append(REC_PROCESS_EMISSIONS)

        return score, recommendations
