# services/signal_aggregation.py
from __future__ import annotations
import math
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence

from schemas import (
    Aggregate,
    BillingComponent,
    ReductionMethod,
    SignalMapping,
    TelemetrySample,
    TimeOfUseComponent,
    component_key,
)
from services import config


class Reducer:
    """Running fold of one quantity. Empty folds report 0.0, never +/-inf or NaN."""

    __slots__ = ("method", "_acc", "_count", "_latest_ts")

    def __init__(self, method: ReductionMethod):
        self.method = method
        self._count = 0
        self._latest_ts: Optional[datetime] = None
        if method == "Max":
            self._acc = -math.inf
        elif method == "Min":
            self._acc = math.inf
        else:
            self._acc = 0.0

    def add(self, value: float, ts: Optional[datetime] = None) -> None:
        m = self.method
        if m == "Max":
            self._acc = max(self._acc, value)
        elif m == "Min":
            self._acc = min(self._acc, value)
        elif m == "Latest":
            # ties keep the later arrival; callers feed samples in timestamp order
            if self._latest_ts is None or ts is None or ts >= self._latest_ts:
                self._acc = value
                self._latest_ts = ts
        else:  # Sum, Avg
            self._acc += value
        self._count += 1

    def result(self) -> float:
        if self._count == 0:
            return 0.0
        if self.method == "Avg":
            return self._acc / self._count
        return float(self._acc)


def reduce_values(values: Iterable[float], method: ReductionMethod) -> float:
    r = Reducer(method)
    for v in values:
        r.add(v)
    return r.result()


def in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """[start_hour, end_hour); end <= start wraps past midnight (22 -> 6 covers 22..5)."""
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def local_hour(ts: datetime, tz: tzinfo) -> int:
    if ts.tzinfo is None:
        # naive timestamps are wall time in the billing zone
        return ts.hour
    return ts.astimezone(tz).hour


def _sort_key(ts: datetime, tz: tzinfo) -> datetime:
    return ts.replace(tzinfo=tz) if ts.tzinfo is None else ts


def aggregate(
    samples: Sequence[TelemetrySample],
    mappings: Sequence[SignalMapping],
    components: Sequence[BillingComponent] = (),
    *,
    tz: Optional[tzinfo] = None,
) -> Aggregate:
    """
    Reduce a sample stream into per-unit quantities and per-TOU-slot quantities.

    Every enabled mapping contributes ``unit_quantities[unit]`` folded with its
    effective method (kWh is always summed, kVA always peaked). Each sample whose
    local hour falls inside a slot of an enabled TimeOfUse component on the same
    unit is also folded into ``tou_quantities["<component>_<slot index>"]`` with
    that unit's method.
    """
    tz = tz or config.BILLING_TZ
    active = [m for m in mappings if m.enabled]

    tou_by_unit: Dict[str, List[TimeOfUseComponent]] = {}
    for c in components:
        if isinstance(c, TimeOfUseComponent) and c.enabled and c.unit_basis:
            tou_by_unit.setdefault(c.unit_basis, []).append(c)

    unit_reducers: Dict[str, Reducer] = {}
    tou_reducers: Dict[str, Reducer] = {}
    for m in active:
        method = m.effective_method
        unit_reducers[m.unit] = Reducer(method)
        for c in tou_by_unit.get(m.unit, []):
            for idx, _ in enumerate(c.tou_slots):
                tou_reducers[component_key(c.id, idx)] = Reducer(method)

    # Latest needs chronological order
    ordered = sorted(samples, key=lambda s: _sort_key(s.timestamp, tz))

    for s in ordered:
        ts = _sort_key(s.timestamp, tz)
        hour = local_hour(s.timestamp, tz)
        for m in active:
            val = s.value(m.parameter_id)
            if val is None:
                continue
            unit_reducers[m.unit].add(val, ts)
            for c in tou_by_unit.get(m.unit, []):
                for idx, slot in enumerate(c.tou_slots):
                    if in_window(hour, slot.start_hour, slot.end_hour):
                        tou_reducers[component_key(c.id, idx)].add(val, ts)

    return Aggregate(
        unit_quantities={u: r.result() for u, r in unit_reducers.items()},
        tou_quantities={k: r.result() for k, r in tou_reducers.items()},
    )
