from datetime import timedelta

from conftest import T0
from schemas import Aggregate, TimeOfUseComponent, TouSlot
from services.maturity import apply_maturity_gate, is_mature, window_days


def test_boundary():
    assert not is_mature(T0, T0 + timedelta(days=27))
    assert is_mature(T0, T0 + timedelta(days=27.0001))


def test_negative_window_is_immature():
    assert window_days(T0, T0 - timedelta(days=3)) == -3
    assert not is_mature(T0, T0 - timedelta(days=40))


def test_custom_threshold():
    assert is_mature(T0, T0 + timedelta(days=8), min_days=7)


def _demand_tou():
    return TimeOfUseComponent(
        id="dtou",
        category_id="demand",
        name="Demand TOU",
        unit_basis="kVA",
        tou_slots=[TouSlot(id="p", name="Peak", start_hour=7, end_hour=19)],
    )


def test_gate_zeroes_demand_only():
    agg = Aggregate(
        unit_quantities={"kWh": 500.0, "kVA": 80.0},
        tou_quantities={"dtou_0": 75.0, "etou_0": 120.0},
    )
    gated = apply_maturity_gate(agg, [_demand_tou()], mature=False)
    assert gated.unit_quantities == {"kWh": 500.0, "kVA": 0.0}
    assert gated.tou_quantities == {"dtou_0": 0.0, "etou_0": 120.0}


def test_gate_passes_mature_window_through():
    agg = Aggregate(unit_quantities={"kVA": 80.0}, tou_quantities={"dtou_0": 75.0})
    assert apply_maturity_gate(agg, [_demand_tou()], mature=True) == agg


def test_gate_does_not_invent_missing_unit():
    agg = Aggregate(unit_quantities={"kWh": 5.0})
    assert apply_maturity_gate(agg, [], mature=False).unit_quantities == {"kWh": 5.0}
