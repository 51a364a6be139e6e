from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import T0, sample
from schemas import Category, FlatComponent, PerUnitComponent, TelemetrySample
from services.bill_assembly import BLOCKED_DETAIL
from services.billing_engine import compute_bill, compute_bill_for_path, normalize_window

UTC = timezone.utc
NOW = datetime(2024, 6, 1, tzinfo=UTC)


def _energy_charge():
    return PerUnitComponent(id="energy", order=1, category_id="energy", name="Energy charge", unit_basis="kWh")


@pytest.mark.asyncio
async def test_plant_a_end_to_end(plant_store):
    plant_store.components = [_energy_charge()]
    plant_store.commit_rates("2024-03", {"energy": 0.25}, committed_by="ops", committed_at=T0)

    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=30), store=plant_store, now=NOW, tz=UTC
    )
    assert bill.unit_quantities["kWh"] == pytest.approx(200.0)
    assert bill.grand_total == pytest.approx(50.0)
    assert bill.month == "2024-03"
    assert bill.mature
    assert bill.node_name == "plant-a"
    [block] = bill.by_category
    assert block.subtotal == pytest.approx(50.0)
    assert block.lines[0].detail == "200 kWh @ 0.2500"


@pytest.mark.asyncio
async def test_latest_rate_commit_wins(plant_store):
    plant_store.components = [_energy_charge()]
    plant_store.commit_rates("2024-03", {"energy": 0.25}, committed_at=T0)
    plant_store.commit_rates("2024-03", {"energy": 0.50}, committed_at=T0 + timedelta(days=2))
    plant_store.commit_rates("2024-03", {"energy": 9.99}, committed_at=T0 + timedelta(days=1))

    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=30), store=plant_store, now=NOW, tz=UTC
    )
    assert bill.grand_total == pytest.approx(100.0)
    assert [r.values["energy"] for r in plant_store.rate_history("2024-03")] == [0.50, 9.99, 0.25]


@pytest.mark.asyncio
async def test_no_rates_means_zero_bill(plant_store):
    plant_store.components = [_energy_charge()]
    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=30), store=plant_store, now=NOW, tz=UTC
    )
    assert bill.grand_total == 0.0
    assert bill.unit_quantities["kWh"] == pytest.approx(200.0)


@pytest.mark.asyncio
async def test_unknown_path(plant_store):
    bill = await compute_bill_for_path("site/nowhere", T0, T0 + timedelta(days=30), store=plant_store)
    assert bill.grand_total == 0.0
    assert bill.by_category == []
    assert bill.warnings == ["Node site/nowhere not found"]


@pytest.mark.asyncio
async def test_short_window_blocks_demand(plant_store):
    plant_store.categories.append(Category(id="demand", name="Demand", order=2))
    plant_store.components = [
        _energy_charge(),
        PerUnitComponent(id="peak", order=2, category_id="demand", name="Peak demand", unit_basis="kVA"),
    ]
    plant_store.add_samples("10.0.0.1", [sample(3, apparent=120.0)])
    plant_store.commit_rates("2024-03", {"energy": 0.25, "peak": 10.0}, committed_at=T0)

    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=7), store=plant_store, now=NOW, tz=UTC
    )
    assert not bill.mature
    assert bill.unit_quantities["kVA"] == 0.0
    assert bill.grand_total == pytest.approx(50.0)
    demand = next(b for b in bill.by_category if b.category.id == "demand")
    assert demand.lines[0].blocked
    assert demand.lines[0].total == 0.0
    assert demand.lines[0].detail == BLOCKED_DETAIL
    assert any("peak demand" in w for w in bill.warnings)


@pytest.mark.asyncio
async def test_long_window_bills_demand(plant_store):
    plant_store.categories.append(Category(id="demand", name="Demand", order=2))
    plant_store.components = [
        PerUnitComponent(id="peak", order=1, category_id="demand", name="Peak demand", unit_basis="kVA"),
    ]
    plant_store.add_samples("10.0.0.1", [sample(3, apparent=120.0), sample(4, apparent=90.0)])
    plant_store.commit_rates("2024-03", {"peak": 10.0}, committed_at=T0)

    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=28), store=plant_store, now=NOW, tz=UTC
    )
    assert bill.mature
    assert bill.unit_quantities["kVA"] == 120.0
    assert bill.grand_total == pytest.approx(1200.0)


@pytest.mark.asyncio
async def test_query_end_capped_at_now(plant_store):
    plant_store.components = [_energy_charge()]
    now = T0 + timedelta(hours=1, minutes=30)
    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=30), store=plant_store, now=now, tz=UTC
    )
    # M1 at 0h and 1h (+200), M2 at 0h and 1h (-300)
    assert bill.unit_quantities["kWh"] == pytest.approx(-100.0)
    assert bill.mature


@pytest.mark.asyncio
async def test_disabled_component_absent_from_lines(plant_store):
    plant_store.components = [
        _energy_charge(),
        FlatComponent(id="meter-fee", order=2, category_id="energy", name="Meter fee", enabled=False),
    ]
    plant_store.commit_rates("2024-03", {"energy": 0.25, "meter-fee": 40.0}, committed_at=T0)
    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=30), store=plant_store, now=NOW, tz=UTC
    )
    assert bill.grand_total == pytest.approx(50.0)
    assert [l.component.id for b in bill.by_category for l in b.lines] == ["energy"]


def test_normalize_window_bare_dates():
    s, e, query_end, maturity_end = normalize_window(
        date(2024, 3, 1), date(2024, 3, 28), tz=UTC, now=datetime(2024, 3, 10, 12, tzinfo=UTC)
    )
    assert s == datetime(2024, 3, 1, tzinfo=UTC)
    assert e.date() == date(2024, 3, 28) and e.hour == 23
    assert maturity_end == datetime(2024, 3, 28, tzinfo=UTC)
    assert query_end == datetime(2024, 3, 10, 12, tzinfo=UTC)


@pytest.mark.asyncio
async def test_bare_date_window(plant_store):
    plant_store.components = [_energy_charge()]
    plant_store.commit_rates("2024-03", {"energy": 0.25}, committed_at=T0)
    node = await plant_store.get_node("site/plant-a")
    bill = await compute_bill(node, date(2024, 3, 1), date(2024, 3, 31), store=plant_store, now=NOW, tz=UTC)
    assert bill.mature
    assert bill.grand_total == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_short_window_ignores_demand_minimum_charge(plant_store):
    plant_store.categories.append(Category(id="demand", name="Demand", order=2))
    plant_store.components = [
        PerUnitComponent(id="peak", order=1, category_id="demand", name="Peak demand", unit_basis="kVA",
                         min_charge=100.0),
    ]
    plant_store.add_samples("10.0.0.1", [sample(3, apparent=120.0)])
    plant_store.commit_rates("2024-03", {"peak": 10.0}, committed_at=T0)

    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=7), store=plant_store, now=NOW, tz=UTC
    )
    assert not bill.mature
    [line] = bill.by_category[0].lines
    assert line.blocked
    assert line.total == 0.0
    assert bill.grand_total == 0.0


@pytest.mark.asyncio
async def test_naive_sample_timestamps_are_billing_wall_time(plant_store):
    plant_store.components = [_energy_charge()]
    plant_store.commit_rates("2024-03", {"energy": 0.25}, committed_at=T0)
    plant_store.add_samples("10.0.0.1", [TelemetrySample(timestamp=datetime(2024, 3, 2), fields={"energy": 40.0})])

    bill = await compute_bill_for_path(
        "site/plant-a", T0, T0 + timedelta(days=30), store=plant_store, now=NOW, tz=UTC
    )
    assert bill.unit_quantities["kWh"] == pytest.approx(240.0)
    assert bill.grand_total == pytest.approx(60.0)
