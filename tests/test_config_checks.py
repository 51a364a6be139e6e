from schemas import (
    BillingTier,
    Category,
    PercentageComponent,
    PerUnitComponent,
    TieredComponent,
    TimeOfUseComponent,
    TouSlot,
)
from services.config_checks import check_billing_config, tou_coverage_hours

CATS = [Category(id="energy", name="Energy"), Category(id="levies", name="Levies")]


def _tou(*slots):
    return TimeOfUseComponent(
        id="tou",
        category_id="energy",
        name="TOU",
        unit_basis="kWh",
        tou_slots=[TouSlot(id=f"s{i}", name=f"s{i}", start_hour=a, end_hour=b) for i, (a, b) in enumerate(slots)],
    )


def test_tou_coverage():
    assert tou_coverage_hours([_tou((22, 6), (6, 22))]) == 24
    assert tou_coverage_hours([_tou((7, 19))]) == 12
    assert check_billing_config([_tou((22, 6), (6, 22))], CATS) == []
    assert check_billing_config([_tou((7, 19))], CATS) == ["TOU slots cover 12h instead of 24h"]


def test_clean_config_has_no_warnings():
    comps = [
        PerUnitComponent(id="a", order=1, category_id="energy", name="A", unit_basis="kWh"),
        PercentageComponent(id="vat", order=2, category_id="levies", name="VAT", basis_component_ids=["a"]),
    ]
    assert check_billing_config(comps, CATS) == []


def test_reports_reference_problems():
    comps = [
        PercentageComponent(id="vat", order=1, category_id="levies", name="VAT", basis_component_ids=["a", "zz"]),
        PerUnitComponent(id="a", order=2, category_id="energy", name="A", unit_basis="kWh"),
        PercentageComponent(id="x", order=3, category_id="levies", name="X"),
        PerUnitComponent(id="o", order=4, category_id="gone", name="Orphan", unit_basis="kWh"),
    ]
    warnings = check_billing_config(comps, CATS)
    assert "VAT: basis A is evaluated later and counts as 0" in warnings
    assert "VAT: unknown basis component zz" in warnings
    assert "X: no basis components" in warnings
    assert "Orphan: unknown category gone" in warnings


def test_reports_tier_problems():
    overlap = TieredComponent(
        id="t", category_id="energy", name="Blocks", unit_basis="kWh",
        tiers=[BillingTier(from_=0, to=100), BillingTier(from_=50, to=None)],
    )
    empty = TieredComponent(id="e", category_id="energy", name="Empty", unit_basis="kWh")
    warnings = check_billing_config([overlap, empty], CATS)
    assert "Blocks: overlapping tiers are charged more than once" in warnings
    assert "Empty: no tiers configured" in warnings


def test_disabled_basis():
    comps = [
        PerUnitComponent(id="a", order=1, category_id="energy", name="A", unit_basis="kWh", enabled=False),
        PercentageComponent(id="vat", order=2, category_id="levies", name="VAT", basis_component_ids=["a"]),
    ]
    assert check_billing_config(comps, CATS) == ["VAT: basis A is disabled and counts as 0"]


def test_disabled_recorded_values_basis():
    comps = [
        PerUnitComponent(id="d", order=1, category_id="energy", name="D", unit_basis="kVA", enabled=False),
        PercentageComponent(id="p", order=2, category_id="levies", name="P", basis_component_ids=["d"],
                            subtotal_basis_type="RecordedValues"),
    ]
    assert check_billing_config(comps, CATS) == ["P: basis D is disabled and counts as 0"]
