# services/tariff_eval.py
"""
Tariff rule evaluation.

Components are evaluated strictly in ascending ``order`` in a single pass.
Percentage / RateTimesSubtotal components read the totals of components that
were evaluated *before* them (CalculatedCost basis) or the raw unit quantity
of the referenced components (RecordedValues basis). A reference to a
component that has not run yet, is disabled or does not exist counts as 0.

Rates are looked up by component id, or by ``"<component id>_<index>"`` for
tiers and TOU slots. Missing rates are 0. Nothing in here raises for
configuration gaps: every gap is a zero contribution.
"""
from __future__ import annotations
import logging
import math
from typing import Dict, Mapping, Optional, Sequence, Tuple

from schemas import (
    BillingComponent,
    ComponentResult,
    Evaluation,
    FlatComponent,
    PercentageComponent,
    PerUnitComponent,
    RateSet,
    RateTimesSubtotalComponent,
    TieredComponent,
    TimeOfUseComponent,
    component_key,
)
from services import config

logger = logging.getLogger(__name__)


def _qty(v: float) -> str:
    """Compact quantity: thousands separators, no trailing zeros."""
    text = f"{v:,.3f}".rstrip("0").rstrip(".")
    return "0" if text in {"-0", ""} else text


# -------------------------
# Per-method rules
# -------------------------
def _flat(comp: FlatComponent, rates: RateSet, currency: str) -> Tuple[float, str]:
    rate = rates.rate(comp.id)
    return rate, f"Fixed charge: {currency} {rate:.2f}"


def _per_unit(comp: PerUnitComponent, rates: RateSet, units: Mapping[str, float]) -> Tuple[float, str]:
    if not comp.unit_basis:
        return 0.0, "No unit basis configured"
    qty = float(units.get(comp.unit_basis) or 0.0)
    rate = rates.rate(comp.id)
    return qty * rate, f"{_qty(qty)} {comp.unit_basis} @ {rate:.4f}"


def tier_quantity(total_qty: float, tier_from: float, tier_to: Optional[float]) -> float:
    upper = math.inf if tier_to is None else tier_to
    return max(0.0, min(total_qty, upper) - tier_from)


def _tiered(comp: TieredComponent, rates: RateSet, units: Mapping[str, float]) -> Tuple[float, str]:
    if not comp.unit_basis:
        return 0.0, "No unit basis configured"
    qty = float(units.get(comp.unit_basis) or 0.0)
    total = 0.0
    parts = []
    # tiers are applied independently in configured order; overlapping tiers double-count
    for idx, tier in enumerate(comp.tiers):
        in_tier = tier_quantity(qty, tier.from_, tier.to)
        if in_tier > 0:
            rate = rates.rate(component_key(comp.id, idx))
            total += in_tier * rate
            parts.append(f"[{in_tier:.1f} @ {rate:.4f}]")
    detail = f"{_qty(qty)} {comp.unit_basis} across tiers: " + " ".join(parts)
    return total, detail.rstrip()


def _time_of_use(comp: TimeOfUseComponent, rates: RateSet, tou: Mapping[str, float]) -> Tuple[float, str]:
    total = 0.0
    parts = []
    for idx, slot in enumerate(comp.tou_slots):
        key = component_key(comp.id, idx)
        slot_qty = float(tou.get(key) or 0.0)
        rate = rates.rate(key)
        total += slot_qty * rate
        if slot_qty > 0:
            parts.append(f"{slot.name}: {_qty(slot_qty)} @ {rate:.4f}; ")
    return total, "TOU usage: " + "".join(parts)


def _dependent(
    comp,
    rates: RateSet,
    units: Mapping[str, float],
    by_id: Mapping[str, BillingComponent],
    results: Mapping[str, ComponentResult],
) -> Tuple[float, str]:
    rate = rates.rate(comp.id)
    percentage = isinstance(comp, PercentageComponent)
    multiplier = rate / 100 if percentage else rate
    recorded = comp.subtotal_basis_type == "RecordedValues"

    basis_sum = 0.0
    for bid in comp.basis_component_ids:
        basis = by_id.get(bid)
        if basis is None:
            continue
        if recorded:
            unit = getattr(basis, "unit_basis", None)
            basis_sum += float(units.get(unit) or 0.0) if unit else 0.0
        else:
            prior = results.get(bid)
            basis_sum += prior.total if prior else 0.0

    label = f"{rate:g}%" if percentage else f"x{rate:g}"
    base = "base units" if recorded else "base cost"
    return basis_sum * multiplier, f"{label} of {base} ({basis_sum:.2f})"


def _clamp(comp: BillingComponent, total: float, detail: str, currency: str):
    if comp.min_charge is not None and total < comp.min_charge:
        return comp.min_charge, f"{detail} (minimum charge {currency} {comp.min_charge:.2f} applied)", "min"
    if comp.max_charge is not None and total > comp.max_charge:
        return comp.max_charge, f"{detail} (capped at {currency} {comp.max_charge:.2f})", "max"
    return total, detail, None


# -------------------------
# Main entry point
# -------------------------
def evaluate_component(
    comp: BillingComponent,
    rates: RateSet,
    unit_quantities: Mapping[str, float],
    tou_quantities: Mapping[str, float],
    by_id: Mapping[str, BillingComponent],
    results: Mapping[str, ComponentResult],
    *,
    currency: str,
    clamp: bool = True,
) -> ComponentResult:
    if isinstance(comp, FlatComponent):
        total, detail = _flat(comp, rates, currency)
    elif isinstance(comp, PerUnitComponent):
        total, detail = _per_unit(comp, rates, unit_quantities)
    elif isinstance(comp, TieredComponent):
        total, detail = _tiered(comp, rates, unit_quantities)
    elif isinstance(comp, TimeOfUseComponent):
        total, detail = _time_of_use(comp, rates, tou_quantities)
    elif isinstance(comp, (PercentageComponent, RateTimesSubtotalComponent)):
        total, detail = _dependent(comp, rates, unit_quantities, by_id, results)
    else:
        total, detail = 0.0, "Unsupported method"

    clamped = None
    if clamp:
        total, detail, clamped = _clamp(comp, total, detail, currency)
    return ComponentResult(component_id=comp.id, method=comp.method, total=total, detail=detail, clamped=clamped)


def evaluate(
    components: Sequence[BillingComponent],
    rates: RateSet,
    unit_quantities: Mapping[str, float],
    tou_quantities: Mapping[str, float],
    *,
    currency: Optional[str] = None,
    mature: bool = True,
    demand_unit: Optional[str] = None,
) -> Evaluation:
    """
    Price every enabled component in ascending ``order`` and keep a running
    grand total. Disabled components are skipped and absent from the results;
    as a basis of a dependent component they count as 0.

    In an immature window min/max charges are not applied to demand-basis
    components, so a suppressed demand line stays at 0.
    """
    currency = currency or config.BILL_CURRENCY
    demand_unit = demand_unit or config.DEMAND_UNIT
    ordered = sorted(components, key=lambda c: c.order)
    by_id: Dict[str, BillingComponent] = {c.id: c for c in ordered if c.enabled}

    results: Dict[str, ComponentResult] = {}
    grand_total = 0.0
    for comp in ordered:
        if not comp.enabled:
            continue
        suppressed = not mature and getattr(comp, "unit_basis", None) == demand_unit
        res = evaluate_component(
            comp, rates, unit_quantities, tou_quantities, by_id, results,
            currency=currency, clamp=not suppressed,
        )
        results[comp.id] = res
        grand_total += res.total
        logger.debug(f"[tariff] {comp.id} ({comp.method}) = {res.total:.4f} | {res.detail}")

    return Evaluation(results=results, grand_total=grand_total)
