# services/maturity.py
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional, Sequence

from schemas import Aggregate, BillingComponent, TimeOfUseComponent, component_key
from services import config


def window_days(start: datetime, end: datetime) -> float:
    return (end - start) / timedelta(days=1)


def is_mature(start: datetime, end: datetime, *, min_days: Optional[float] = None) -> bool:
    """A billing window is mature when it is strictly longer than ``min_days`` (27 by default)."""
    min_days = config.MATURITY_DAYS if min_days is None else min_days
    return window_days(start, end) > min_days


def demand_tou_keys(components: Sequence[BillingComponent], unit: str) -> set:
    keys = set()
    for c in components:
        if isinstance(c, TimeOfUseComponent) and c.unit_basis == unit:
            keys.update(component_key(c.id, idx) for idx, _ in enumerate(c.tou_slots))
    return keys


def apply_maturity_gate(
    agg: Aggregate,
    components: Sequence[BillingComponent],
    mature: bool,
    *,
    unit: Optional[str] = None,
) -> Aggregate:
    """
    Immature windows carry no demand charge: the demand unit and every TOU
    quantity owned by a demand-basis component are forced to 0 (not prorated).
    """
    if mature:
        return agg
    unit = unit or config.DEMAND_UNIT
    blocked = demand_tou_keys(components, unit)

    units = dict(agg.unit_quantities)
    if unit in units:
        units[unit] = 0.0
    tou = {k: (0.0 if k in blocked else v) for k, v in agg.tou_quantities.items()}
    return Aggregate(unit_quantities=units, tou_quantities=tou)
