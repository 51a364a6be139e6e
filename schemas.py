from datetime import datetime, date
from typing import Annotated, Optional, Literal, Dict, List, Any, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


MeteringType = Literal["Metered", "Summation", "Manual"]
ReductionMethod = Literal["Sum", "Avg", "Min", "Max", "Latest"]
UnitBasis = Literal["kWh", "kVA", "kVARh", "Manual"]
ComponentType = Literal["Consumption", "Demand", "Fixed", "Levy", "Tax", "Adjustment"]
CalcMethod = Literal["Flat", "PerUnit", "Tiered", "TimeOfUse", "Percentage", "RateTimesSubtotal"]
SubtotalBasisType = Literal["RecordedValues", "CalculatedCost"]

# Units whose reduction is fixed by billing policy, whatever the mapping says.
FIXED_REDUCTIONS: Dict[str, ReductionMethod] = {"kWh": "Sum", "kVA": "Max"}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


# =========================
# Topology
# =========================
class LinkedMeter(_Frozen):
    meter_id: str
    operation: Literal["add", "subtract"] = "add"

    @property
    def sign(self) -> int:
        return -1 if self.operation == "subtract" else 1


class MeteringNode(_Frozen):
    id: str
    name: str
    path: str  # unique locator; children live under it
    level: int = Field(1, ge=1)
    metering_type: Optional[MeteringType] = None
    linked_meters: List[LinkedMeter] = Field(default_factory=list)
    description: Optional[str] = None


# =========================
# Telemetry
# =========================
class TelemetrySample(_Frozen):
    timestamp: datetime
    fields: Dict[str, Any] = Field(default_factory=dict)
    sign: Literal[1, -1] = 1

    def value(self, field: str) -> Optional[float]:
        """Signed numeric value of ``field``; None when absent or not a number."""
        raw = self.fields.get(field)
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return None
        return float(raw) * self.sign


class ManualEntry(_Frozen):
    timestamp: datetime
    readings: Dict[str, Any] = Field(default_factory=dict)


class SignalMapping(_Frozen):
    unit: str                      # billing unit, e.g. "kWh"
    parameter_id: str              # source telemetry field
    method: ReductionMethod = "Sum"
    enabled: bool = True
    custom_label: Optional[str] = None

    @property
    def effective_method(self) -> ReductionMethod:
        return FIXED_REDUCTIONS.get(self.unit, self.method)


# =========================
# Billing structure
# =========================
class BillingTier(_Frozen):
    model_config = ConfigDict(frozen=True, from_attributes=True, populate_by_name=True)

    from_: float = Field(0.0, alias="from")
    to: Optional[float] = None  # None = unbounded


class TouSlot(_Frozen):
    id: str
    name: str
    start_hour: int = Field(..., ge=0, le=23)
    end_hour: int = Field(..., ge=0, le=23)

    @property
    def duration_hours(self) -> int:
        diff = self.end_hour - self.start_hour
        return diff + 24 if diff <= 0 else diff


class Category(_Frozen):
    id: str
    name: str
    order: int = 0
    description: Optional[str] = None


class _ComponentBase(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True, extra="forbid")

    id: str
    order: int = 0
    category_id: str
    name: str
    type: ComponentType = "Consumption"
    enabled: bool = True
    min_charge: Optional[float] = None
    max_charge: Optional[float] = None
    description: Optional[str] = None
    is_monthly_adjustment: bool = False


class FlatComponent(_ComponentBase):
    method: Literal["Flat"] = "Flat"


class PerUnitComponent(_ComponentBase):
    method: Literal["PerUnit"] = "PerUnit"
    unit_basis: Optional[UnitBasis] = None


class TieredComponent(_ComponentBase):
    method: Literal["Tiered"] = "Tiered"
    unit_basis: Optional[UnitBasis] = None
    tiers: List[BillingTier] = Field(default_factory=list)


class TimeOfUseComponent(_ComponentBase):
    method: Literal["TimeOfUse"] = "TimeOfUse"
    unit_basis: Optional[UnitBasis] = None
    tou_slots: List[TouSlot] = Field(default_factory=list)


class PercentageComponent(_ComponentBase):
    method: Literal["Percentage"] = "Percentage"
    basis_component_ids: List[str] = Field(default_factory=list)
    subtotal_basis_type: SubtotalBasisType = "CalculatedCost"


class RateTimesSubtotalComponent(_ComponentBase):
    method: Literal["RateTimesSubtotal"] = "RateTimesSubtotal"
    basis_component_ids: List[str] = Field(default_factory=list)
    subtotal_basis_type: SubtotalBasisType = "CalculatedCost"


BillingComponent = Annotated[
    Union[
        FlatComponent,
        PerUnitComponent,
        TieredComponent,
        TimeOfUseComponent,
        PercentageComponent,
        RateTimesSubtotalComponent,
    ],
    Field(discriminator="method"),
]

DependentComponent = (PercentageComponent, RateTimesSubtotalComponent)

_components_adapter = TypeAdapter(List[BillingComponent])
_component_adapter = TypeAdapter(BillingComponent)


def parse_components(items: List[Dict[str, Any]]) -> List[BillingComponent]:
    return _components_adapter.validate_python(items)


def parse_component(item: Dict[str, Any]) -> BillingComponent:
    return _component_adapter.validate_python(item)


# =========================
# Rates
# =========================
def component_key(component_id: str, index: int) -> str:
    """Rate / quantity key of one tier or TOU slot. Persisted rate sets use this exact format."""
    return f"{component_id}_{index}"


def month_key(instant: Union[datetime, date]) -> str:
    return f"{instant.year:04d}-{instant.month:02d}"


class RateSet(_Frozen):
    """One committed snapshot of every rate for a billing month."""
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    committed_at: datetime
    committed_by: Optional[str] = None
    values: Dict[str, float] = Field(default_factory=dict)

    def rate(self, key: str) -> float:
        return float(self.values.get(key) or 0.0)

    @classmethod
    def empty(cls, month: str) -> "RateSet":
        return cls(month=month, committed_at=datetime.min, values={})


# =========================
# Engine outputs
# =========================
class Aggregate(_Frozen):
    unit_quantities: Dict[str, float] = Field(default_factory=dict)
    tou_quantities: Dict[str, float] = Field(default_factory=dict)


class ComponentResult(_Frozen):
    component_id: str
    method: CalcMethod
    total: float
    detail: str
    clamped: Optional[Literal["min", "max"]] = None


class Evaluation(_Frozen):
    results: Dict[str, ComponentResult] = Field(default_factory=dict)
    grand_total: float = 0.0


class BillLine(_Frozen):
    component: BillingComponent
    total: float
    detail: str
    blocked: bool = False


class CategoryBlock(_Frozen):
    category: Category
    subtotal: float
    lines: List[BillLine] = Field(default_factory=list)


class AssembledBill(_Frozen):
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    month: Optional[str] = None
    currency: str
    mature: bool = True
    unit_quantities: Dict[str, float] = Field(default_factory=dict)
    tou_quantities: Dict[str, float] = Field(default_factory=dict)
    by_category: List[CategoryBlock] = Field(default_factory=list)
    grand_total: float = 0.0
    warnings: List[str] = Field(default_factory=list)
