# services/db_store.py
"""
Read-only BillingStore over the SQL tables in models.py (SQLAlchemy asyncio).

Timestamps are stored as naive UTC; everything handed to the engine is
timezone-aware UTC.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from models import (
    Base,
    BillingCategory,
    BillingComponentRecord,
    ManualEntryRecord,
    Meter,
    MeterSample,
    RateCommit,
    SignalMappingRecord,
    TopologyNodeRecord,
)
from schemas import (
    BillingComponent,
    Category,
    LinkedMeter,
    ManualEntry,
    MeteringNode,
    RateSet,
    SignalMapping,
    TelemetrySample,
    parse_component,
)
from services import config

logger = logging.getLogger(__name__)
UTC = timezone.utc

# ----------------------------------------------------------------------
# Engine / session factory (lazy-loaded)
# ----------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(config.DATABASE_URL)
        logger.info(f"[db] engine created for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_sessionmaker() -> async_sessionmaker:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _sessionmaker


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ----------------------------------------------------------------------
# Row -> value object
# ----------------------------------------------------------------------
def _to_db(dt: datetime) -> datetime:
    return dt.astimezone(UTC).replace(tzinfo=None) if dt.tzinfo else dt


def _from_db(dt: datetime) -> datetime:
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def node_from_row(row: TopologyNodeRecord) -> MeteringNode:
    return MeteringNode(
        id=row.id,
        name=row.name,
        path=row.path,
        level=row.level or 1,
        metering_type=row.metering_type,
        linked_meters=[LinkedMeter(meter_id=l.meter_id, operation=l.operation) for l in row.links],
        description=row.description,
    )


# fields each calculation method carries besides the shared ones
_METHOD_FIELDS = {
    "Flat": (),
    "PerUnit": ("unit_basis",),
    "Tiered": ("unit_basis", "tiers"),
    "TimeOfUse": ("unit_basis", "tou_slots"),
    "Percentage": ("basis_component_ids", "subtotal_basis_type"),
    "RateTimesSubtotal": ("basis_component_ids", "subtotal_basis_type"),
}
_SHARED_FIELDS = (
    "id", "order", "category_id", "name", "type", "method", "enabled",
    "min_charge", "max_charge", "description", "is_monthly_adjustment",
)


def component_from_row(row: BillingComponentRecord) -> BillingComponent:
    data: Dict[str, Any] = {f: getattr(row, f) for f in _SHARED_FIELDS}
    for f in _METHOD_FIELDS.get(row.method, ()):
        v = getattr(row, f)
        if v is not None:
            data[f] = v
    data = {k: v for k, v in data.items() if v is not None}
    return parse_component(data)


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------
class SqlBillingStore:
    def __init__(self, sessionmaker: Optional[async_sessionmaker] = None):
        self._sessionmaker = sessionmaker or get_sessionmaker()

    async def _scalars(self, stmt) -> List[Any]:
        async with self._sessionmaker() as session:
            return list((await session.scalars(stmt)).all())

    # ---- TopologyStore ----
    async def get_node(self, path: str) -> Optional[MeteringNode]:
        rows = await self._scalars(select(TopologyNodeRecord).where(TopologyNodeRecord.path == path))
        return node_from_row(rows[0]) if rows else None

    async def get_children(self, path: str) -> List[MeteringNode]:
        rows = await self._scalars(
            select(TopologyNodeRecord)
            .where(TopologyNodeRecord.parent_path == path)
            .order_by(TopologyNodeRecord.id)
        )
        return [node_from_row(r) for r in rows]

    async def get_linked_meter_address(self, meter_id: str) -> Optional[str]:
        rows = await self._scalars(select(Meter.ip_address).where(Meter.id == meter_id))
        return rows[0] if rows else None

    # ---- TelemetryStore ----
    async def query_samples(self, address: str, start: datetime, end: datetime) -> List[TelemetrySample]:
        rows = await self._scalars(
            select(MeterSample)
            .where(
                MeterSample.address == address,
                MeterSample.created_at >= _to_db(start),
                MeterSample.created_at <= _to_db(end),
            )
            .order_by(MeterSample.created_at, MeterSample.id)
        )
        return [TelemetrySample(timestamp=_from_db(r.created_at), fields=r.fields or {}) for r in rows]

    # ---- ManualEntryStore ----
    async def query_manual_entries(self, node_id: str, start: datetime, end: datetime) -> List[ManualEntry]:
        rows = await self._scalars(
            select(ManualEntryRecord)
            .where(
                ManualEntryRecord.node_id == node_id,
                ManualEntryRecord.submitted_at >= _to_db(start),
                ManualEntryRecord.submitted_at <= _to_db(end),
            )
            .order_by(ManualEntryRecord.submitted_at, ManualEntryRecord.id)
        )
        return [ManualEntry(timestamp=_from_db(r.submitted_at), readings=r.readings or {}) for r in rows]

    # ---- ConfigStore ----
    async def get_signal_mappings(self) -> List[SignalMapping]:
        rows = await self._scalars(select(SignalMappingRecord).order_by(SignalMappingRecord.unit))
        return [SignalMapping.model_validate(r) for r in rows]

    async def get_components(self) -> List[BillingComponent]:
        rows = await self._scalars(
            select(BillingComponentRecord).order_by(BillingComponentRecord.order, BillingComponentRecord.id)
        )
        return [component_from_row(r) for r in rows]

    async def get_categories(self) -> List[Category]:
        rows = await self._scalars(select(BillingCategory).order_by(BillingCategory.order, BillingCategory.id))
        return [Category.model_validate(r) for r in rows]

    async def get_latest_rate_set(self, month: str) -> Optional[RateSet]:
        rows = await self._scalars(
            select(RateCommit)
            .where(RateCommit.month == month)
            .order_by(RateCommit.committed_at.desc(), RateCommit.id.desc())
            .limit(1)
        )
        if not rows:
            return None
        r = rows[0]
        return RateSet(
            month=r.month,
            committed_at=_from_db(r.committed_at),
            committed_by=r.committed_by,
            values={k: float(v) for k, v in (r.values or {}).items()},
        )
