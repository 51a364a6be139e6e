from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Boolean, JSON
from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# -------- Topology --------
class TopologyNodeRecord(Base):
    """One node of the site hierarchy. Children are the rows whose parent_path is this path."""
    __tablename__ = "topology_nodes"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    path = Column(String(512), unique=True, index=True, nullable=False)
    parent_path = Column(String(512), index=True, nullable=True)  # null = root
    level = Column(Integer, nullable=False, default=1)
    metering_type = Column(String(16), nullable=True)  # Metered | Summation | Manual

    links = relationship(
        "NodeMeterLink",
        back_populates="node",
        order_by="NodeMeterLink.position",
        lazy="selectin",
    )

    def __str__(self) -> str:
        return self.path


class Meter(Base):
    __tablename__ = "meters"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=True)
    serial_number = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)  # telemetry source address
    enabled = Column(Boolean, default=True)

    def __str__(self) -> str:
        return self.name or self.id


class NodeMeterLink(Base):
    """Meter linked to a Metered node, combined with + or -."""
    __tablename__ = "node_meter_links"
    __table_args__ = (UniqueConstraint("node_id", "position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_id = Column(String(64), ForeignKey("topology_nodes.id", ondelete="CASCADE"), index=True, nullable=False)
    meter_id = Column(String(64), nullable=False)  # not enforced: unknown meters contribute nothing
    operation = Column(String(16), nullable=False, default="add")
    position = Column(Integer, nullable=False, default=0)

    node = relationship("TopologyNodeRecord", back_populates="links")


# -------- Telemetry --------
class MeterSample(Base):
    __tablename__ = "meter_samples"
    __table_args__ = (Index("ix_meter_samples_address_ts", "address", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False)  # stored as naive UTC
    fields = Column(JSON, nullable=False, default=dict)


class ManualEntryRecord(Base):
    __tablename__ = "manual_entries"
    __table_args__ = (Index("ix_manual_entries_node_ts", "node_id", "submitted_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_id = Column(String(64), nullable=False)
    submitted_at = Column(DateTime, nullable=False)  # stored as naive UTC
    readings = Column(JSON, nullable=False, default=dict)


# -------- Billing configuration --------
class SignalMappingRecord(Base):
    __tablename__ = "signal_mappings"

    unit = Column(String(32), primary_key=True)
    parameter_id = Column(String(128), nullable=False)
    method = Column(String(16), nullable=False, default="Sum")
    enabled = Column(Boolean, default=True)
    custom_label = Column(String(200), nullable=True)


class BillingCategory(Base):
    __tablename__ = "billing_categories"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)


class BillingComponentRecord(Base):
    __tablename__ = "billing_components"

    id = Column(String(64), primary_key=True)
    order = Column(Integer, nullable=False, default=0, index=True)
    category_id = Column(String(64), nullable=False)
    name = Column(String(200), nullable=False)
    type = Column(String(32), nullable=False, default="Consumption")
    method = Column(String(32), nullable=False)
    unit_basis = Column(String(16), nullable=True)
    tiers = Column(JSON, nullable=True)                # [{"from": 0, "to": 100}, ...]
    tou_slots = Column(JSON, nullable=True)            # [{"id", "name", "start_hour", "end_hour"}, ...]
    basis_component_ids = Column(JSON, nullable=True)  # ["comp-a", ...]
    subtotal_basis_type = Column(String(32), nullable=True)
    min_charge = Column(Float, nullable=True)
    max_charge = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True)
    is_monthly_adjustment = Column(Boolean, default=False)


class RateCommit(Base):
    """Append-only: every rate update for a month is a new row; the newest one is in force."""
    __tablename__ = "rate_commits"
    __table_args__ = (Index("ix_rate_commits_month_ts", "month", "committed_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    month = Column(String(7), nullable=False)  # YYYY-MM
    committed_at = Column(DateTime, nullable=False)  # stored as naive UTC
    committed_by = Column(String(200), nullable=True)
    values = Column(JSON, nullable=False, default=dict)
