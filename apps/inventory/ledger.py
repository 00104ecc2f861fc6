# apps/inventory/ledger.py
"""
FIFO ledger engine.

FIFOLedger is the only writer of lot quantities, movements and the derived
item totals. It performs no I/O: the orchestration layer hydrates it from the
repository, calls one operation, then persists the returned deltas.

Lots are consumed oldest first:
    Lot 1: 50 @ 5000 (Jan 1)
    Lot 2: 30 @ 5500 (Jan 2)
    Remove 60 -> 50 from Lot 1 (250000) + 10 from Lot 2 (55000) = 305000

State is held in a LedgerStore that the caller owns, so two ledgers only
share state when they are handed the same store.
"""
import math
import secrets
import string
import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from operator import attrgetter
from typing import Dict, List, Optional

from django.utils import timezone

from .domain import (
    ZERO,
    FIFOResult,
    InventoryMetrics,
    Item,
    Lot,
    Movement,
    MovementType,
    as_datetime,
    round2,
    to_decimal,
)
from .exceptions import (
    InsufficientStockError,
    LotNotFoundError,
    NoStockAvailableError,
    ValidationError,
)

ORDERING_COST = 50  # fixed cost per purchase order
HOLDING_COST_RATE = 0.2  # yearly holding cost as a share of unit cost
DEFAULT_ORDER_QUANTITY = 100
COGS_WINDOW_DAYS = 30
DAILY_USAGE_WINDOW_DAYS = 30

_BASE36 = string.digits + string.ascii_uppercase


def generate_lot_id():
    return f"LOT-{uuid.uuid4().hex[:12].upper()}"


def generate_movement_id():
    return f"MOV-{uuid.uuid4().hex[:12].upper()}"


def generate_batch_number(now=None):
    """Batch number in YYMMDD-XXXX form, XXXX random base36."""
    now = now or timezone.now()
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(4))
    return f"{now.strftime('%y%m%d')}-{suffix}"


def turnover_rate(out_quantity, total_quantity, period_days):
    """
    Annualized turnover: OUT quantity / (current quantity / 2) * 365 / period_days.

    Returns:
        float: Rate rounded to 2 decimals, 0 when average stock is 0
    """
    if period_days <= 0:
        raise ValidationError(f"Period must be positive (got {period_days}).")
    average_stock = to_decimal(total_quantity) / 2
    if average_stock == 0:
        return 0.0
    return round2(float(to_decimal(out_quantity) / average_stock) * (365 / period_days))


def economic_order_quantity(annual_demand, unit_cost):
    """
    Classic EOQ: sqrt(2 * D * S / H).

    Args:
        annual_demand: Expected units per year (D)
        unit_cost: Unit cost used to derive the holding cost H = cost * 20%

    Returns:
        int: Rounded order quantity, DEFAULT_ORDER_QUANTITY when H is 0
    """
    holding_cost = float(unit_cost) * HOLDING_COST_RATE
    if holding_cost <= 0:
        return DEFAULT_ORDER_QUANTITY
    eoq = math.sqrt((2 * float(annual_demand) * ORDERING_COST) / holding_cost)
    return int(Decimal(str(eoq)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class LedgerStore:
    """
    Mutable ledger state, keyed by item id.

    Owned by one FIFOLedger (or deliberately shared by passing the same
    instance to several).
    """

    def __init__(self):
        self.items: Dict[str, Item] = {}
        self.lots: Dict[str, List[Lot]] = {}
        self.movements: Dict[str, List[Movement]] = {}
        self.sequences: Dict[str, int] = {}

    def clear(self):
        self.items.clear()
        self.lots.clear()
        self.movements.clear()
        self.sequences.clear()


class FIFOLedger:
    """
    FIFO lot ledger with costing and turnover calculations.

    Usage:
        ledger = FIFOLedger()
        ledger.register_item(item)

        lot = ledger.add_stock('ITEM001', 50, 5000, purchase_date=jan_1)
        result = ledger.remove_stock('ITEM001', 60, reason='Sale')
        wac = ledger.calculate_weighted_average_cost('ITEM001')
        metrics = ledger.calculate_metrics('ITEM001')
    """

    def __init__(self, store=None, clock=None):
        """
        Args:
            store: LedgerStore holding the state (a fresh one by default)
            clock: Callable returning the current aware datetime
        """
        self.store = store if store is not None else LedgerStore()
        self.clock = clock or timezone.now

    # ===== HYDRATION =====

    def register_item(self, item: Item):
        """Register (or replace) an item so its derived totals are maintained."""
        self.store.items[item.id] = item
        self._refresh_item(item.id)

    def load_lots(self, item_id, lots):
        """Replace the item's lots with lots loaded from storage."""
        loaded = sorted((lot.copy() for lot in lots), key=attrgetter('fifo_key'))
        self.store.lots[item_id] = loaded
        self.store.sequences[item_id] = max((lot.sequence for lot in loaded), default=0)
        self._refresh_item(item_id)

    def load_movements(self, item_id, movements):
        """Replace the item's movement history with movements loaded from storage."""
        self.store.movements[item_id] = sorted(movements, key=attrgetter('performed_at'))
        self._refresh_item(item_id)

    def hydrate(self, item: Item, lots, movements=()):
        """Load an item with its lots and movement history in one call."""
        self.store.items[item.id] = item
        self.load_lots(item.id, lots)
        self.load_movements(item.id, movements)

    # ===== MUTATIONS =====

    def add_stock(
        self,
        item_id,
        quantity,
        unit_cost,
        purchase_date=None,
        expiry_date=None,
        batch_number=None,
        supplier_id=None,
        warehouse_id=None,
        performed_by='SYSTEM',
    ) -> Lot:
        """
        Receive a purchase lot.

        Inserts the lot in FIFO position, records an IN movement and
        recomputes the item totals. A zero quantity is accepted and
        produces an exhausted lot.

        Args:
            item_id: Item identifier
            quantity: Quantity received (>= 0)
            unit_cost: Cost per unit (>= 0)
            purchase_date: FIFO date (defaults to now)
            expiry_date: Optional expiry datetime
            batch_number: Optional batch number (YYMMDD-XXXX generated if not given)
            supplier_id: Optional supplier reference
            warehouse_id: Store/warehouse holding the lot (defaults to 'DEFAULT')
            performed_by: User recorded on the movement

        Returns:
            Lot: The new lot

        Raises:
            ValidationError: If quantity or unit cost is negative
        """
        quantity = to_decimal(quantity)
        unit_cost = to_decimal(unit_cost)
        if quantity < 0:
            raise ValidationError(f"Quantity cannot be negative (got {quantity}).")
        if unit_cost < 0:
            raise ValidationError(f"Unit cost cannot be negative (got {unit_cost}).")

        now = self.clock()
        item = self.store.items.get(item_id)
        lot = Lot(
            id=generate_lot_id(),
            item_id=item_id,
            item_name=item.name if item else '',
            quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=unit_cost,
            purchase_date=as_datetime(purchase_date) or now,
            expiry_date=as_datetime(expiry_date),
            supplier_id=supplier_id or '',
            warehouse_id=warehouse_id or 'DEFAULT',
            batch_number=batch_number or generate_batch_number(now),
            sequence=self._next_sequence(item_id),
            created_at=now,
            updated_at=now,
        )

        lots = self.store.lots.setdefault(item_id, [])
        lots.append(lot)
        # FIFO position by (purchase_date, sequence)
        lots.sort(key=attrgetter('fifo_key'))

        self._record(Movement(
            id=generate_movement_id(),
            item_id=item_id,
            lot_id=lot.id,
            movement_type=MovementType.IN,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=quantity * unit_cost,
            reference_id=lot.batch_number,
            performed_by=performed_by or 'SYSTEM',
            performed_at=now,
        ))
        self._refresh_item(item_id)
        return lot.copy()

    def remove_stock(
        self,
        item_id,
        quantity,
        reason=None,
        reference_id=None,
        performed_by='SYSTEM',
    ) -> FIFOResult:
        """
        Withdraw stock, consuming the oldest lots first.

        One OUT movement is recorded per lot touched. Nothing is mutated
        unless the full quantity can be served.

        Args:
            item_id: Item identifier
            quantity: Quantity to withdraw (> 0)
            reason: Optional reason (sale, waste, transfer, ...)
            reference_id: Optional order/document reference
            performed_by: User recorded on the movements

        Returns:
            FIFOResult

        Raises:
            ValidationError: If quantity is not positive
            NoStockAvailableError: If no lot has remaining quantity
            InsufficientStockError: If total remaining is below the request
        """
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError(f"Quantity to remove must be positive (got {quantity}).")

        lots = self.store.lots.get(item_id, [])
        available_lots = [lot for lot in lots if lot.is_active]
        if not available_lots:
            raise NoStockAvailableError(item_id)

        total_available = sum((lot.remaining_quantity for lot in available_lots), ZERO)
        if total_available < quantity:
            raise InsufficientStockError(item_id, quantity, total_available)

        now = self.clock()
        outstanding = quantity
        total_cost = ZERO
        movements = []
        affected_lots = []
        updated_lots = []

        for lot in available_lots:
            if outstanding <= 0:
                break

            qty_from_lot = min(lot.remaining_quantity, outstanding)
            lot_cost = qty_from_lot * lot.unit_cost

            lot.remaining_quantity -= qty_from_lot
            lot.updated_at = now
            outstanding -= qty_from_lot
            total_cost += lot_cost

            affected_lots.append(lot.id)
            updated_lots.append(lot.copy())
            movements.append(self._record(Movement(
                id=generate_movement_id(),
                item_id=item_id,
                lot_id=lot.id,
                movement_type=MovementType.OUT,
                quantity=qty_from_lot,
                unit_cost=lot.unit_cost,
                total_cost=lot_cost,
                reason=reason,
                reference_id=reference_id,
                performed_by=performed_by or 'SYSTEM',
                performed_at=now,
            )))

        self._refresh_item(item_id)

        return FIFOResult(
            movements=movements,
            remaining_lots=[lot.copy() for lot in lots if lot.is_active],
            total_cost=total_cost,
            weighted_average_cost=total_cost / quantity,
            affected_lots=affected_lots,
            updated_lots=updated_lots,
        )

    def adjust_stock(self, item_id, lot_id, new_quantity, reason, performed_by='SYSTEM') -> Movement:
        """
        Set a lot's remaining quantity to a counted value.

        The new quantity is absolute, not a delta. The ADJUSTMENT movement
        carries |old - new| and its notes record the direction.

        Raises:
            LotNotFoundError: If the lot does not belong to the item
            ValidationError: If new_quantity is negative
        """
        lot = self._find_lot(item_id, lot_id)
        new_quantity = to_decimal(new_quantity)
        if new_quantity < 0:
            raise ValidationError(f"Adjusted quantity cannot be negative (got {new_quantity}).")

        now = self.clock()
        difference = new_quantity - lot.remaining_quantity
        lot.remaining_quantity = new_quantity
        if new_quantity > lot.quantity:
            lot.quantity = new_quantity
        lot.updated_at = now

        if difference > 0:
            notes = 'Stock increased'
        elif difference < 0:
            notes = 'Stock decreased'
        else:
            notes = 'Stock unchanged'

        movement = self._record(Movement(
            id=generate_movement_id(),
            item_id=item_id,
            lot_id=lot_id,
            movement_type=MovementType.ADJUSTMENT,
            quantity=abs(difference),
            unit_cost=lot.unit_cost,
            total_cost=abs(difference) * lot.unit_cost,
            reason=reason,
            notes=notes,
            performed_by=performed_by or 'SYSTEM',
            performed_at=now,
        ))
        self._refresh_item(item_id)
        return movement

    # ===== COSTING =====

    def calculate_weighted_average_cost(self, item_id):
        """WAC over active lots: sum(remaining * cost) / sum(remaining), 0 if none."""
        active_lots = self.get_stock(item_id)
        total_quantity = sum((lot.remaining_quantity for lot in active_lots), ZERO)
        if total_quantity <= 0:
            return ZERO
        total_value = sum((lot.total_value for lot in active_lots), ZERO)
        return total_value / total_quantity

    def calculate_turnover_rate(self, item_id, period_days=365):
        """
        Annualized turnover over a trailing window.

        OUT quantity in the window divided by an average stock proxy
        (current quantity / 2), scaled by 365 / period_days.

        Returns:
            float: Rate rounded to 2 decimals, 0 when average stock is 0
        """
        if period_days <= 0:
            raise ValidationError(f"Period must be positive (got {period_days}).")

        end = self.clock()
        start = end - timedelta(days=period_days)
        total_out = sum(
            (m.quantity for m in self._out_movements(item_id, start, end)),
            ZERO,
        )
        return turnover_rate(total_out, self.get_total_quantity(item_id), period_days)

    def calculate_metrics(self, item_id) -> InventoryMetrics:
        """Compute turnover, age, stockout risk, excess, EOQ and trailing COGS."""
        now = self.clock()
        item = self.store.items.get(item_id)
        active_lots = self.get_stock(item_id)
        total_quantity = self.get_total_quantity(item_id)

        turnover_rate = self.calculate_turnover_rate(item_id)

        weighted_age = sum(
            ((now - lot.purchase_date).days * lot.remaining_quantity for lot in active_lots),
            ZERO,
        )
        average_age = float(weighted_age / total_quantity) if total_quantity > 0 else 0.0

        if item and item.safety_stock > 0:
            stockout_risk = max(0.0, 1 - float(total_quantity / item.safety_stock))
        else:
            stockout_risk = 0.0

        excess_stock = max(ZERO, total_quantity - item.max_stock) if item else ZERO

        unit_cost = self.calculate_weighted_average_cost(item_id)
        annual_demand = turnover_rate * float(total_quantity)
        optimal_order_quantity = economic_order_quantity(annual_demand, unit_cost)

        cogs_start = now - timedelta(days=COGS_WINDOW_DAYS)
        cost_of_goods_sold = sum(
            (m.total_cost for m in self._out_movements(item_id, cogs_start, None)),
            ZERO,
        )

        return InventoryMetrics(
            item_id=item_id,
            turnover_rate=turnover_rate,
            average_age=average_age,
            stockout_risk=stockout_risk,
            excess_stock=excess_stock,
            optimal_order_quantity=optimal_order_quantity,
            cost_of_goods_sold=cost_of_goods_sold,
            average_inventory_value=total_quantity * unit_cost,
        )

    # ===== QUERIES =====

    def get_expiring_lots(self, days, item_id=None) -> List[Lot]:
        """
        Active lots whose expiry falls within `days` from now, soonest first.

        Already expired lots that still hold stock are included. Lots
        without an expiry date never are.
        """
        cutoff = self.clock() + timedelta(days=days)
        if item_id is not None:
            candidates = self.store.lots.get(item_id, [])
        else:
            candidates = [lot for lots in self.store.lots.values() for lot in lots]

        expiring = [
            lot for lot in candidates
            if lot.is_active and lot.expiry_date is not None and lot.expiry_date <= cutoff
        ]
        expiring.sort(key=attrgetter('expiry_date'))
        return [lot.copy() for lot in expiring]

    def get_stock(self, item_id) -> List[Lot]:
        """Active lots for an item in FIFO order."""
        return [lot for lot in self.store.lots.get(item_id, []) if lot.is_active]

    def get_lot(self, item_id, lot_id) -> Lot:
        return self._find_lot(item_id, lot_id).copy()

    def get_item(self, item_id) -> Optional[Item]:
        return self.store.items.get(item_id)

    def get_movements(self, item_id) -> List[Movement]:
        return list(self.store.movements.get(item_id, []))

    def get_total_quantity(self, item_id):
        return sum((lot.remaining_quantity for lot in self.store.lots.get(item_id, [])), ZERO)

    def get_total_value(self, item_id):
        return sum((lot.total_value for lot in self.store.lots.get(item_id, [])), ZERO)

    def clear(self):
        self.store.clear()

    # ===== HELPERS =====

    def _find_lot(self, item_id, lot_id) -> Lot:
        for lot in self.store.lots.get(item_id, []):
            if lot.id == lot_id:
                return lot
        raise LotNotFoundError(lot_id, item_id)

    def _next_sequence(self, item_id):
        seq = self.store.sequences.get(item_id, 0) + 1
        self.store.sequences[item_id] = seq
        return seq

    def _record(self, movement: Movement) -> Movement:
        self.store.movements.setdefault(movement.item_id, []).append(movement)
        return movement

    def _out_movements(self, item_id, start, end):
        for m in self.store.movements.get(item_id, []):
            if m.movement_type != MovementType.OUT:
                continue
            if m.performed_at < start:
                continue
            if end is not None and m.performed_at > end:
                continue
            yield m

    def _average_daily_usage(self, item_id):
        end = self.clock()
        start = end - timedelta(days=DAILY_USAGE_WINDOW_DAYS)
        total_out = sum((m.quantity for m in self._out_movements(item_id, start, end)), ZERO)
        return total_out / DAILY_USAGE_WINDOW_DAYS

    def _refresh_item(self, item_id):
        """Recompute the derived item totals after a mutation."""
        item = self.store.items.get(item_id)
        if item is None:
            return
        item.total_quantity = self.get_total_quantity(item_id)
        item.total_value = self.get_total_value(item_id)
        item.weighted_average_cost = self.calculate_weighted_average_cost(item_id)
        item.average_daily_cost = self._average_daily_usage(item_id)
        item.updated_at = self.clock()
