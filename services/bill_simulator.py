# services/bill_simulator.py
from __future__ import annotations
from typing import Dict, Mapping, Optional, Sequence

from schemas import (
    AssembledBill,
    BillingComponent,
    Category,
    RateSet,
    TimeOfUseComponent,
    component_key,
)
from services import config
from services.bill_assembly import assemble
from services.config_checks import check_billing_config
from services.tariff_eval import evaluate


def totalize_energy(
    components: Sequence[BillingComponent],
    units: Mapping[str, float],
    sub_units: Mapping[str, float],
    *,
    energy_unit: Optional[str] = None,
) -> Dict[str, float]:
    """
    When TOU slot inputs exist for the energy unit, the master energy quantity
    is their sum; otherwise ``units`` is returned unchanged.
    """
    energy_unit = energy_unit or config.ENERGY_UNIT
    slot_sum = 0.0
    for c in components:
        if isinstance(c, TimeOfUseComponent) and c.enabled and c.unit_basis == energy_unit:
            slot_sum += sum(float(sub_units.get(component_key(c.id, i)) or 0.0) for i, _ in enumerate(c.tou_slots))
    out = dict(units)
    if slot_sum > 0:
        out[energy_unit] = slot_sum
    return out


def simulate_bill(
    components: Sequence[BillingComponent],
    categories: Sequence[Category],
    rates: RateSet,
    units: Mapping[str, float],
    sub_units: Optional[Mapping[str, float]] = None,
    *,
    currency: Optional[str] = None,
) -> AssembledBill:
    """What-if bill from hand-entered quantities: no topology, no maturity gate."""
    currency = currency or config.BILL_CURRENCY
    sub_units = dict(sub_units or {})
    unit_quantities = totalize_energy(components, units, sub_units)

    evaluation = evaluate(components, rates, unit_quantities, sub_units, currency=currency)
    by_category, grand_total = assemble(categories, components, evaluation)
    return AssembledBill(
        month=rates.month,
        currency=currency,
        unit_quantities=unit_quantities,
        tou_quantities=sub_units,
        by_category=by_category,
        grand_total=grand_total,
        warnings=check_billing_config(components, categories),
    )
