import pytest

from schemas import (
    AssembledBill,
    Category,
    ComponentResult,
    Evaluation,
    FlatComponent,
    PerUnitComponent,
)
from services.bill_assembly import BLOCKED_DETAIL, UNCATEGORIZED, assemble, render_lines

CATS = [Category(id="levies", name="Levies", order=2), Category(id="energy", name="Energy", order=1),
        Category(id="empty", name="Empty", order=3)]


def _comps():
    return [
        FlatComponent(id="svc", order=3, category_id="levies", name="Service fee"),
        PerUnitComponent(id="kwh", order=1, category_id="energy", name="Energy", unit_basis="kWh"),
        PerUnitComponent(id="kva", order=2, category_id="energy", name="Demand", unit_basis="kVA"),
        FlatComponent(id="off", order=4, category_id="levies", name="Old levy", enabled=False),
    ]


def _evaluation():
    results = {
        "kwh": ComponentResult(component_id="kwh", method="PerUnit", total=40.0, detail="200 kWh @ 0.2000"),
        "kva": ComponentResult(component_id="kva", method="PerUnit", total=0.0, detail="0 kVA @ 10.0000"),
        "svc": ComponentResult(component_id="svc", method="Flat", total=12.0, detail="Fixed charge: USD 12.00"),
    }
    return Evaluation(results=results, grand_total=52.0)


def test_grouping_and_order():
    blocks, total = assemble(CATS, _comps(), _evaluation())
    assert [b.category.id for b in blocks] == ["energy", "levies"]
    assert [l.component.id for l in blocks[0].lines] == ["kwh", "kva"]
    assert [l.component.id for l in blocks[1].lines] == ["svc"]
    assert blocks[0].subtotal == pytest.approx(40.0)
    assert total == pytest.approx(52.0)


def test_immature_demand_line_blocked():
    blocks, _ = assemble(CATS, _comps(), _evaluation(), mature=False)
    kva = blocks[0].lines[1]
    assert kva.blocked and kva.detail == BLOCKED_DETAIL
    assert not blocks[0].lines[0].blocked


def test_render_lines():
    blocks, total = assemble(CATS, _comps(), _evaluation(), mature=False)
    bill = AssembledBill(currency="USD", by_category=blocks, grand_total=total)
    lines = render_lines(bill)
    assert lines[0] == "Energy: USD 40.00"
    assert lines[2].startswith("  Demand [immature]: USD 0.00")
    assert lines[-1] == "Total: USD 52.00"


def test_unknown_category_listed_under_fallback():
    comps = _comps() + [FlatComponent(id="stray", order=5, category_id="gone", name="Stray fee")]
    results = dict(_evaluation().results)
    results["stray"] = ComponentResult(component_id="stray", method="Flat", total=8.0, detail="Fixed charge: USD 8.00")
    blocks, total = assemble(CATS, comps, Evaluation(results=results, grand_total=60.0))
    assert blocks[-1].category == UNCATEGORIZED
    assert [l.component.id for l in blocks[-1].lines] == ["stray"]
    assert sum(b.subtotal for b in blocks) == pytest.approx(total)


def test_no_fallback_block_when_all_categories_known():
    blocks, _ = assemble(CATS, _comps(), _evaluation())
    assert UNCATEGORIZED not in [b.category for b in blocks]
