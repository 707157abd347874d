"""Uncertainty propagation for sums of independent emission components.

combined% = sqrt( sum( (value_i / T) * u_i% )^2 ),  T = sum(value_i)
combined% = 0 when T == 0

Each component is weighted by its share of the total, so a tiny but very
uncertain term cannot dominate. The same function combines activity lines
into a scope and scopes into the total.
"""

from __future__ import annotations

import math
from typing import Iterable

from cbam_engine.engine.models import EmissionComponent


def combined_uncertainty(components: Iterable[EmissionComponent]) -> float:
    comps = list(components)
    # fsum is exactly rounded, so the result does not depend on input order
    total = math.fsum(c.value for c in comps)
    if total == 0:
        return 0.0
    return math.sqrt(math.fsum(((c.value / total) * c.uncertainty_pct) ** 2 for c in comps))


def total_uncertainty(
    scope1: EmissionComponent,
    scope2: EmissionComponent,
    scope3: EmissionComponent,
) -> float:
    return combined_uncertainty([scope1, scope2, scope3])


def absolute_uncertainty(component: EmissionComponent) -> float:
    """Uncertainty in the component's own unit (e.g. tCO2e)."""
    return abs(component.value) * component.uncertainty_pct / 100.0
