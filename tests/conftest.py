import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

from schemas import (  # noqa: E402
    Category,
    LinkedMeter,
    MeteringNode,
    RateSet,
    SignalMapping,
    TelemetrySample,
)
from services.stores import InMemoryBillingStore  # noqa: E402

UTC = timezone.utc
T0 = datetime(2024, 3, 1, tzinfo=UTC)


def metered(node_id, path, *links, level=2):
    """links: (meter_id, operation) pairs"""
    return MeteringNode(
        id=node_id,
        name=node_id,
        path=path,
        level=level,
        metering_type="Metered",
        linked_meters=[LinkedMeter(meter_id=m, operation=op) for m, op in links],
    )


def summation(node_id, path, level=1):
    return MeteringNode(id=node_id, name=node_id, path=path, level=level, metering_type="Summation")


def sample(hours, **fields):
    return TelemetrySample(timestamp=T0 + timedelta(hours=hours), fields=fields)


def rates(values, month="2024-03"):
    return RateSet(month=month, committed_at=T0, values=values)


@pytest.fixture
def kwh_mappings():
    return [
        SignalMapping(unit="kWh", parameter_id="energy"),
        SignalMapping(unit="kVA", parameter_id="apparent"),
    ]


@pytest.fixture
def energy_category():
    return Category(id="energy", name="Energy", order=1)


@pytest.fixture
def plant_store(kwh_mappings, energy_category):
    """Plant A: Line1 (M1, 500 kWh) minus Line2 (M2, 300 kWh)."""
    store = InMemoryBillingStore(
        nodes=[
            (None, summation("plant-a", "site/plant-a")),
            ("site/plant-a", metered("line1", "site/plant-a/line1", ("M1", "add"))),
            ("site/plant-a", metered("line2", "site/plant-a/line2", ("M2", "subtract"))),
        ],
        meter_addresses={"M1": "10.0.0.1", "M2": "10.0.0.2"},
        signal_mappings=kwh_mappings,
        categories=[energy_category],
    )
    store.add_samples("10.0.0.1", [sample(h, energy=100.0) for h in range(5)])
    store.add_samples("10.0.0.2", [sample(h, energy=150.0) for h in range(2)])
    return store
