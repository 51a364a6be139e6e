# services/config_checks.py
from __future__ import annotations
from typing import List, Sequence

from schemas import (
    BillingComponent,
    Category,
    DependentComponent,
    TieredComponent,
    TimeOfUseComponent,
)


def tou_coverage_hours(components: Sequence[BillingComponent]) -> float:
    """Hours covered by the slots of every enabled TimeOfUse component (a full day is 24)."""
    return float(sum(
        slot.duration_hours
        for c in components
        if isinstance(c, TimeOfUseComponent) and c.enabled
        for slot in c.tou_slots
    ))


def _overlapping_tiers(comp: TieredComponent) -> bool:
    spans = sorted((t.from_, float("inf") if t.to is None else t.to) for t in comp.tiers)
    return any(nxt[0] < cur[1] for cur, nxt in zip(spans, spans[1:]))


def check_billing_config(
    components: Sequence[BillingComponent],
    categories: Sequence[Category],
) -> List[str]:
    """
    Human-readable warnings about a billing configuration. Nothing here blocks
    evaluation; every issue listed still evaluates (usually to 0).
    """
    warnings: List[str] = []
    by_id = {c.id: c for c in components}
    position = {c.id: i for i, c in enumerate(sorted(components, key=lambda c: c.order))}
    cat_ids = {c.id for c in categories}
    enabled = [c for c in components if c.enabled]

    if any(isinstance(c, TimeOfUseComponent) for c in enabled):
        hours = tou_coverage_hours(enabled)
        if abs(hours - 24) > 1e-4:
            warnings.append(f"TOU slots cover {hours:g}h instead of 24h")

    for c in enabled:
        if c.category_id not in cat_ids:
            warnings.append(f"{c.name}: unknown category {c.category_id}")

        if isinstance(c, TieredComponent):
            if not c.tiers:
                warnings.append(f"{c.name}: no tiers configured")
            elif _overlapping_tiers(c):
                warnings.append(f"{c.name}: overlapping tiers are charged more than once")

        if isinstance(c, TimeOfUseComponent) and not c.tou_slots:
            warnings.append(f"{c.name}: no TOU slots configured")

        if isinstance(c, DependentComponent):
            if not c.basis_component_ids:
                warnings.append(f"{c.name}: no basis components")
            for bid in c.basis_component_ids:
                basis = by_id.get(bid)
                if basis is None:
                    warnings.append(f"{c.name}: unknown basis component {bid}")
                elif not basis.enabled:
                    warnings.append(f"{c.name}: basis {basis.name} is disabled and counts as 0")
                elif c.subtotal_basis_type == "CalculatedCost" and position[basis.id] > position[c.id]:
                    warnings.append(f"{c.name}: basis {basis.name} is evaluated later and counts as 0")
    return warnings
