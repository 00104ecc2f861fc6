# apps/inventory/domain.py
"""
Plain domain types shared by the inventory engines.

The engines work on these dataclasses, never on ORM instances.
The repository adapters translate between them and the database.

Types:
- Item: stock keeping item with its replenishment levels and derived totals
- Lot: purchase batch consumed in FIFO order
- Movement: append-only ledger entry (IN / OUT / ADJUSTMENT)
- FIFOResult: outcome of a FIFO withdrawal
- InventoryMetrics: derived costing and turnover figures
- InventorySnapshot: aggregate view over a page of items
- InventoryConfig: alert thresholds, forecast settings, performance targets
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils import timezone

from .exceptions import ValidationError


ZERO = Decimal('0')
CENT = Decimal('0.01')


def to_decimal(value) -> Decimal:
    """Convert ints, floats and strings to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Expected a number, got {value!r}") from exc


def round2(value) -> float:
    """Round half-up to 2 decimals and return a float."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def as_datetime(value):
    """Coerce a date or naive datetime into an aware datetime (when USE_TZ)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time.min)
    else:
        raise ValidationError(f"Expected a date or datetime, got {value!r}")
    if settings.USE_TZ and timezone.is_naive(result):
        result = timezone.make_aware(result)
    return result


class MovementType(str, Enum):
    IN = 'IN'
    OUT = 'OUT'
    ADJUSTMENT = 'ADJUSTMENT'


# ─── Ledger Types ───────────────────────────────────────────────────────────────

@dataclass
class Item:
    """Stock keeping item. Totals are owned by the ledger and recomputed on mutation."""
    id: str
    name: str
    category: str = ''
    unit: str = ''
    safety_stock: Decimal = ZERO
    reorder_point: Decimal = ZERO
    max_stock: Decimal = ZERO
    lead_time_days: int = 0
    average_daily_cost: Decimal = ZERO  # average daily OUT quantity, trailing 30 days
    total_quantity: Decimal = ZERO
    total_value: Decimal = ZERO
    weighted_average_cost: Decimal = ZERO
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.safety_stock = to_decimal(self.safety_stock)
        self.reorder_point = to_decimal(self.reorder_point)
        self.max_stock = to_decimal(self.max_stock)
        self.average_daily_cost = to_decimal(self.average_daily_cost)
        self.total_quantity = to_decimal(self.total_quantity)
        self.total_value = to_decimal(self.total_value)
        self.weighted_average_cost = to_decimal(self.weighted_average_cost)

    def validate_levels(self):
        """
        Check 0 <= safety_stock <= reorder_point <= max_stock.

        Raises:
            ValidationError: If the replenishment levels are out of order
        """
        if self.safety_stock < 0:
            raise ValidationError(f"Safety stock for {self.id} cannot be negative.")
        if self.safety_stock > self.reorder_point:
            raise ValidationError(
                f"Safety stock ({self.safety_stock}) cannot exceed reorder point "
                f"({self.reorder_point}) for {self.id}."
            )
        if self.reorder_point > self.max_stock:
            raise ValidationError(
                f"Reorder point ({self.reorder_point}) cannot exceed max stock "
                f"({self.max_stock}) for {self.id}."
            )
        if self.lead_time_days < 0:
            raise ValidationError(f"Lead time for {self.id} cannot be negative.")

    def copy(self):
        return replace(self)


@dataclass
class Lot:
    """
    Purchase batch. Only remaining_quantity changes after receipt.

    FIFO order is (purchase_date, sequence); sequence is the per-item
    insertion counter so equal purchase dates keep their receipt order.
    """
    id: str
    item_id: str
    quantity: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal
    purchase_date: datetime
    batch_number: str
    expiry_date: Optional[datetime] = None
    supplier_id: str = ''
    warehouse_id: str = 'DEFAULT'
    item_name: str = ''
    sequence: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.quantity = to_decimal(self.quantity)
        self.remaining_quantity = to_decimal(self.remaining_quantity)
        self.unit_cost = to_decimal(self.unit_cost)

    @property
    def is_active(self):
        return self.remaining_quantity > 0

    @property
    def total_value(self):
        """Current value of the remaining quantity."""
        return self.remaining_quantity * self.unit_cost

    @property
    def fifo_key(self):
        return (self.purchase_date, self.sequence)

    def copy(self):
        return replace(self)


@dataclass(frozen=True)
class Movement:
    """Append-only ledger entry. Never mutated once recorded."""
    id: str
    item_id: str
    movement_type: MovementType
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    performed_at: datetime
    performed_by: str = 'SYSTEM'
    lot_id: Optional[str] = None
    reason: Optional[str] = None
    reference_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class FIFOResult:
    """
    Outcome of a FIFO withdrawal.

    weighted_average_cost is the average cost of this withdrawal
    (total_cost / quantity), not the item's running WAC.
    """
    movements: List[Movement]
    remaining_lots: List[Lot]
    total_cost: Decimal
    weighted_average_cost: Decimal
    affected_lots: List[str]
    updated_lots: List[Lot] = field(default_factory=list)


@dataclass
class InventoryMetrics:
    """Derived figures, recomputed on demand from lots and movements."""
    item_id: str
    turnover_rate: float
    average_age: float
    stockout_risk: float
    excess_stock: Decimal
    optimal_order_quantity: int
    cost_of_goods_sold: Decimal
    average_inventory_value: Decimal

    def to_dict(self):
        return {
            'item_id': self.item_id,
            'turnover_rate': self.turnover_rate,
            'average_age': self.average_age,
            'stockout_risk': self.stockout_risk,
            'excess_stock': float(self.excess_stock),
            'optimal_order_quantity': self.optimal_order_quantity,
            'cost_of_goods_sold': float(self.cost_of_goods_sold),
            'average_inventory_value': float(self.average_inventory_value),
        }


# ─── Snapshot Types ─────────────────────────────────────────────────────────────

@dataclass
class ItemFilter:
    """
    Filter for item listings.

    low_stock keeps items whose total quantity is at or below safety stock.
    expiring_within_days keeps items with an active lot expiring in that window.
    """
    category: Optional[str] = None
    low_stock: bool = False
    expiring_within_days: Optional[int] = None
    item_ids: Optional[List[str]] = None


@dataclass
class SnapshotEntry:
    item_id: str
    quantity: Decimal
    value: Decimal
    turnover_rate: float


@dataclass
class InventorySnapshot:
    date: datetime
    items: List[SnapshotEntry]
    total_value: Decimal
    total_items: int
    low_stock_items: int
    overstock_items: int


# ─── Configuration ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AlertThresholds:
    low_stock_percentage: float = 0.2  # share of safety stock
    expiry_days: int = 7
    overstock_percentage: float = 0.5  # share above max stock


@dataclass(frozen=True)
class ForecastSettings:
    historical_periods: int = 90  # days of history fed to the estimators
    seasonality_enabled: bool = True
    confidence_threshold: float = 0.7


@dataclass(frozen=True)
class PerformanceTargets:
    max_response_time: int = 500  # ms
    min_turnover_rate: float = 4
    max_stockout_rate: float = 0.02


@dataclass(frozen=True)
class InventoryConfig:
    """
    Process-wide engine configuration. Immutable once built.

    Usage:
        config = InventoryConfig.from_settings()
        config = InventoryConfig.from_dict({'alert_thresholds': {'expiry_days': 3}})
    """
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    forecast_settings: ForecastSettings = field(default_factory=ForecastSettings)
    performance_targets: PerformanceTargets = field(default_factory=PerformanceTargets)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'InventoryConfig':
        data = data or {}
        try:
            return cls(
                alert_thresholds=AlertThresholds(**data.get('alert_thresholds', {})),
                forecast_settings=ForecastSettings(**data.get('forecast_settings', {})),
                performance_targets=PerformanceTargets(**data.get('performance_targets', {})),
            )
        except TypeError as exc:
            raise ValidationError(f"Invalid inventory configuration: {exc}") from exc

    @classmethod
    def from_settings(cls) -> 'InventoryConfig':
        """Build from the LARDER_INVENTORY Django setting."""
        return cls.from_dict(getattr(settings, 'LARDER_INVENTORY', None))
