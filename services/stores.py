# services/stores.py
"""
Collaborator interfaces the billing engine reads from, plus a dict-backed
implementation for callers that already hold the data (and for tests).

Every method is a coroutine: these are the only suspension points of an
evaluation. Implementations return None / [] for "not found"; they raise only
for infrastructure failures, which the engine lets propagate.
"""
from __future__ import annotations
import itertools
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from schemas import (
    BillingComponent,
    Category,
    ManualEntry,
    MeteringNode,
    RateSet,
    SignalMapping,
    TelemetrySample,
)
from services import config

UTC = timezone.utc


class TopologyStore(Protocol):
    async def get_node(self, path: str) -> Optional[MeteringNode]: ...

    async def get_children(self, path: str) -> List[MeteringNode]: ...

    async def get_linked_meter_address(self, meter_id: str) -> Optional[str]: ...


class TelemetryStore(Protocol):
    async def query_samples(self, address: str, start: datetime, end: datetime) -> List[TelemetrySample]: ...


class ManualEntryStore(Protocol):
    async def query_manual_entries(self, node_id: str, start: datetime, end: datetime) -> List[ManualEntry]: ...


class ConfigStore(Protocol):
    async def get_signal_mappings(self) -> List[SignalMapping]: ...

    async def get_components(self) -> List[BillingComponent]: ...

    async def get_categories(self) -> List[Category]: ...

    async def get_latest_rate_set(self, month: str) -> Optional[RateSet]: ...


class ResolverStore(TopologyStore, TelemetryStore, ManualEntryStore, Protocol):
    """What the topology resolver reads."""


class BillingStore(ResolverStore, ConfigStore, Protocol):
    """Everything compute_bill needs, behind one object."""


def _aware(ts: datetime) -> datetime:
    # naive timestamps are wall time in the billing zone
    return ts.replace(tzinfo=config.BILLING_TZ) if ts.tzinfo is None else ts


def _in_range(ts: datetime, start: datetime, end: datetime) -> bool:
    return _aware(start) <= _aware(ts) <= _aware(end)


class InMemoryBillingStore:
    def __init__(
        self,
        *,
        nodes: Iterable[Tuple[Optional[str], MeteringNode]] = (),
        meter_addresses: Optional[Dict[str, Optional[str]]] = None,
        samples: Optional[Dict[str, List[TelemetrySample]]] = None,
        manual_entries: Optional[Dict[str, List[ManualEntry]]] = None,
        signal_mappings: Iterable[SignalMapping] = (),
        components: Iterable[BillingComponent] = (),
        categories: Iterable[Category] = (),
    ):
        self._nodes: Dict[str, MeteringNode] = {}
        self._children: Dict[str, List[str]] = defaultdict(list)
        for parent_path, node in nodes:
            self.add_node(node, parent_path=parent_path)
        self._addresses: Dict[str, Optional[str]] = dict(meter_addresses or {})
        self._samples: Dict[str, List[TelemetrySample]] = defaultdict(list, samples or {})
        self._manual: Dict[str, List[ManualEntry]] = defaultdict(list, manual_entries or {})
        self.signal_mappings: List[SignalMapping] = list(signal_mappings)
        self.components: List[BillingComponent] = list(components)
        self.categories: List[Category] = list(categories)
        self._rates: Dict[str, List[Tuple[datetime, int, RateSet]]] = defaultdict(list)
        self._seq = itertools.count()

    # ---- seeding ----
    def add_node(self, node: MeteringNode, *, parent_path: Optional[str] = None) -> MeteringNode:
        self._nodes[node.path] = node
        if parent_path is not None:
            self._children[parent_path].append(node.path)
        return node

    def add_samples(self, address: str, samples: Iterable[TelemetrySample]) -> None:
        self._samples[address].extend(samples)

    def add_manual_entries(self, node_id: str, entries: Iterable[ManualEntry]) -> None:
        self._manual[node_id].extend(entries)

    def commit_rates(
        self,
        month: str,
        values: Dict[str, float],
        *,
        committed_by: Optional[str] = None,
        committed_at: Optional[datetime] = None,
    ) -> RateSet:
        """Append a new rate snapshot for ``month``; earlier commits are kept as history."""
        rs = RateSet(
            month=month,
            committed_at=committed_at or datetime.now(tz=UTC),
            committed_by=committed_by,
            values=dict(values),
        )
        self._rates[month].append((rs.committed_at, next(self._seq), rs))
        return rs

    def rate_history(self, month: str, limit: int = 10) -> List[RateSet]:
        ordered = sorted(self._rates.get(month, []), key=lambda x: (x[0], x[1]), reverse=True)
        return [rs for _, _, rs in ordered[:limit]]

    # ---- TopologyStore ----
    async def get_node(self, path: str) -> Optional[MeteringNode]:
        return self._nodes.get(path)

    async def get_children(self, path: str) -> List[MeteringNode]:
        return [self._nodes[p] for p in self._children.get(path, []) if p in self._nodes]

    async def get_linked_meter_address(self, meter_id: str) -> Optional[str]:
        return self._addresses.get(meter_id)

    # ---- TelemetryStore ----
    async def query_samples(self, address: str, start: datetime, end: datetime) -> List[TelemetrySample]:
        return [s for s in self._samples.get(address, []) if _in_range(s.timestamp, start, end)]

    # ---- ManualEntryStore ----
    async def query_manual_entries(self, node_id: str, start: datetime, end: datetime) -> List[ManualEntry]:
        return [e for e in self._manual.get(node_id, []) if _in_range(e.timestamp, start, end)]

    # ---- ConfigStore ----
    async def get_signal_mappings(self) -> List[SignalMapping]:
        return list(self.signal_mappings)

    async def get_components(self) -> List[BillingComponent]:
        return sorted(self.components, key=lambda c: c.order)

    async def get_categories(self) -> List[Category]:
        return sorted(self.categories, key=lambda c: c.order)

    async def get_latest_rate_set(self, month: str) -> Optional[RateSet]:
        history = self.rate_history(month, limit=1)
        return history[0] if history else None
