# apps/inventory/services.py
"""
Inventory service: the entry point for stock operations.

InventoryService handles:
- Receiving, withdrawing and adjusting stock through the FIFO ledger
- Persisting the ledger's lots, movements and item totals
- Alert evaluation on every mutation (published off the mutation path)
- Cached status, reorder and turnover reads
- Paginated inventory snapshots
- Batch operations and realtime monitoring

Each mutation holds a per-item lock across load -> mutate -> persist, so two
writers on the same item never interleave while different items run in
parallel.
"""
import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import connections

from apps.alerts.dispatch import get_critical_alert_dispatcher
from apps.alerts.domain import Alert, AlertType
from apps.alerts.monitor import AlertMonitor
from apps.forecasting.engine import ForecastEngine

from .cache import AGGREGATE, InventoryCache
from .domain import (
    FIFOResult,
    InventoryConfig,
    InventoryMetrics,
    InventorySnapshot,
    Item,
    ItemFilter,
    Lot,
    Movement,
    MovementType,
    SnapshotEntry,
    ZERO,
    round2,
    to_decimal,
)
from .exceptions import InventoryError, ItemNotFoundError, ValidationError
from .ledger import FIFOLedger, turnover_rate
from .realtime import ALERTS_TOPIC, CHANGES_TOPIC, ChannelsRealtimeChannel
from .repository import DjangoInventoryRepository

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
METRICS_HISTORY_DAYS = 365
HIGH_TURNOVER_RATE = 12
SLOW_TURNOVER_RATE = 1
TURNOVER_ITEM_LIMIT = 20

# Scale of the quantity and unit cost columns (max_digits=14, decimal_places=4)
AMOUNT_DECIMAL_PLACES = 4
AMOUNT_LIMIT = Decimal(10) ** (14 - AMOUNT_DECIMAL_PLACES)

PERIOD_DAYS = {
    'monthly': 30,
    'quarterly': 90,
    'yearly': 365,
}


# ─── Results ────────────────────────────────────────────────────────────────────

@dataclass
class StockResult:
    """Outcome of a mutation: the ledger result plus the alerts it raised."""
    lot: Optional[Lot] = None
    result: Optional[FIFOResult] = None
    movement: Optional[Movement] = None
    alerts: List[Alert] = field(default_factory=list)


@dataclass
class InventoryStatus:
    item: Item
    lots: List[Lot]
    metrics: InventoryMetrics
    alerts: List[Alert]


@dataclass
class SnapshotPage:
    snapshot: InventorySnapshot
    items: List[Item]
    total_pages: int
    total_count: int


@dataclass
class ItemTurnover:
    item_id: str
    name: str
    turnover: float


@dataclass
class TurnoverAnalysis:
    overall: float
    by_category: Dict[str, float]
    by_item: List[ItemTurnover]
    recommendations: List[str]


@dataclass
class BatchOperation:
    """
    One entry of a batch.

    IN needs unit_cost, ADJUSTMENT needs lot_id (quantity is the counted
    remaining quantity), OUT needs neither.
    """
    type: MovementType
    item_id: str
    quantity: Any
    unit_cost: Any = None
    reason: Optional[str] = None
    reference_id: Optional[str] = None
    lot_id: Optional[str] = None
    performed_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        try:
            return cls(
                type=MovementType(data['type']),
                item_id=data['item_id'],
                quantity=data['quantity'],
                unit_cost=data.get('unit_cost'),
                reason=data.get('reason'),
                reference_id=data.get('reference_id'),
                lot_id=data.get('lot_id'),
                performed_by=data.get('performed_by'),
            )
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Invalid batch operation {data!r}: {exc}") from exc


@dataclass
class BatchOperationResult:
    index: int
    operation: Optional[BatchOperation]
    success: bool
    result: Optional[StockResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


def _log_alert(alert):
    logger.info(f"{alert.alert_type.value} alert for {alert.item_id}: {alert.message}")


DEFAULT_ALERT_HANDLERS = {
    AlertType.LOW_STOCK: _log_alert,
    AlertType.EXPIRY: _log_alert,
    AlertType.REORDER: _log_alert,
}


def _close_thread_connections():
    """Close the DB connections opened by a worker thread."""
    connections.close_all()


class InventoryService:
    """
    Service for inventory operations.

    Usage:
        service = InventoryService()

        # Register an item
        service.register_item(Item(id='MILK-1L', name='Milk 1L', unit='L',
                                   safety_stock=50, reorder_point=100,
                                   max_stock=500, lead_time_days=2))

        # Receive
        outcome = service.add_stock('MILK-1L', 120, Decimal('1.20'),
                                    expiry_date=date(2024, 1, 25))

        # Withdraw (oldest lots first)
        outcome = service.remove_stock('MILK-1L', 30, reason='Sale')

        # Read
        status = service.get_inventory_status('MILK-1L')
        suggestions = service.get_reorder_suggestions(category='dairy')
    """

    def __init__(
        self,
        repository=None,
        config=None,
        cache=None,
        realtime=None,
        dispatcher=None,
        alert_handlers=None,
        async_alerts=True,
        max_workers=8,
        clock=None,
    ):
        """
        Args:
            repository: InventoryRepository (Django ORM adapter by default)
            config: InventoryConfig (from LARDER_INVENTORY by default)
            cache: InventoryCache (LARDER_CACHE_ALIAS by default)
            realtime: RealtimeChannel (Django Channels by default)
            dispatcher: CriticalAlertDispatcher (LARDER_CRITICAL_ALERT_DISPATCHER by default)
            alert_handlers: Mapping of AlertType to handler(s); logging handlers by default
            async_alerts: Publish alerts on a worker thread instead of inline
            max_workers: Thread pool size for alert publishing and batches
            clock: Callable returning the current aware datetime
        """
        self.repository = repository if repository is not None else DjangoInventoryRepository()
        self.config = config or InventoryConfig.from_settings()
        self.cache = cache if cache is not None else InventoryCache()
        self.realtime = realtime if realtime is not None else ChannelsRealtimeChannel()
        self.async_alerts = async_alerts
        self.max_workers = max_workers

        self.ledger = FIFOLedger(clock=clock)
        self.clock = self.ledger.clock
        self.monitor = AlertMonitor(
            self.ledger,
            self.config,
            repository=self.repository,
            realtime=self.realtime,
            dispatcher=dispatcher if dispatcher is not None else get_critical_alert_dispatcher(),
            handlers=alert_handlers if alert_handlers is not None else DEFAULT_ALERT_HANDLERS,
            clock=self.clock,
        )
        self.forecast_engine = ForecastEngine(self.config, clock=self.clock)

        self._locks_guard = threading.Lock()
        self._item_locks = {}
        self._pending_guard = threading.Lock()
        self._pending_alerts = set()
        self._alert_executor = None

    # ===== ITEMS =====

    def register_item(self, item: Item):
        """
        Create or update an item's master data.

        Raises:
            ValidationError: If 0 <= safety_stock <= reorder_point <= max_stock does not hold
        """
        item.validate_levels()
        with self._item_lock(item.id):
            existing = self.repository.get_item(item.id)
            if existing is not None:
                item.total_quantity = existing.total_quantity
                item.total_value = existing.total_value
                item.weighted_average_cost = existing.weighted_average_cost
                item.average_daily_cost = existing.average_daily_cost
            self.repository.save_item(item)
        self.cache.invalidate(item.id)
        return item

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
        performed_by=None,
    ) -> StockResult:
        """
        Receive a lot.

        Returns:
            StockResult: lot and the alerts evaluated after the receipt

        Raises:
            ValidationError: If quantity or unit cost is negative
            ItemNotFoundError: If the item does not exist
            RepositoryError: If the lot could not be persisted
        """
        started = time.monotonic()
        quantity = self._number(quantity, 'quantity')
        unit_cost = self._number(unit_cost, 'unit_cost')

        with self._item_lock(item_id):
            self._load(item_id)
            lot = self.ledger.add_stock(
                item_id,
                quantity,
                unit_cost,
                purchase_date=purchase_date,
                expiry_date=expiry_date,
                batch_number=batch_number,
                supplier_id=supplier_id,
                warehouse_id=warehouse_id,
                performed_by=performed_by or 'SYSTEM',
            )
            movement = self.ledger.get_movements(item_id)[-1]
            item = self.ledger.get_item(item_id)

            with self.repository.atomic():
                self.repository.insert_lot(lot)
                self.repository.insert_movements([movement])
                self.repository.save_item(item)

            alerts = self.monitor.evaluate([item])

        self._after_mutation(item_id, alerts, [lot.id], 'created')
        self._check_response_time('add_stock', started)
        return StockResult(lot=lot, alerts=alerts)

    def remove_stock(
        self,
        item_id,
        quantity,
        reason=None,
        reference_id=None,
        performed_by=None,
    ) -> StockResult:
        """
        Withdraw stock, oldest lots first.

        Raises:
            ValidationError: If quantity is not positive
            ItemNotFoundError: If the item does not exist
            NoStockAvailableError: If the item has no active lots
            InsufficientStockError: If the request exceeds the remaining quantity
            RepositoryError: If the withdrawal could not be persisted
        """
        started = time.monotonic()
        quantity = self._number(quantity, 'quantity', positive=True)

        with self._item_lock(item_id):
            self._load(item_id)
            result = self.ledger.remove_stock(
                item_id,
                quantity,
                reason=reason,
                reference_id=reference_id,
                performed_by=performed_by or 'SYSTEM',
            )
            item = self.ledger.get_item(item_id)

            with self.repository.atomic():
                self.repository.upsert_lots(result.updated_lots)
                self.repository.insert_movements(result.movements)
                self.repository.save_item(item)

            alerts = self.monitor.evaluate([item])

        self._after_mutation(item_id, alerts, result.affected_lots, 'updated')
        self._check_response_time('remove_stock', started)
        return StockResult(result=result, alerts=alerts)

    def adjust_stock(self, item_id, lot_id, new_quantity, reason, performed_by=None) -> StockResult:
        """
        Set an active lot's remaining quantity to a counted value.

        Raises:
            ValidationError: If new_quantity is negative or reason is blank
            ItemNotFoundError / LotNotFoundError: If the item or active lot is unknown
            RepositoryError: If the adjustment could not be persisted
        """
        started = time.monotonic()
        new_quantity = self._number(new_quantity, 'new_quantity')
        if not reason or not str(reason).strip():
            raise ValidationError("An adjustment needs a reason.")

        with self._item_lock(item_id):
            self._load(item_id)
            movement = self.ledger.adjust_stock(
                item_id, lot_id, new_quantity, reason, performed_by=performed_by or 'SYSTEM'
            )
            lot = self.ledger.get_lot(item_id, lot_id)
            item = self.ledger.get_item(item_id)

            with self.repository.atomic():
                self.repository.upsert_lots([lot])
                self.repository.insert_movements([movement])
                self.repository.save_item(item)

            alerts = self.monitor.evaluate([item])

        self._after_mutation(item_id, alerts, [lot_id], 'updated')
        self._check_response_time('adjust_stock', started)
        return StockResult(movement=movement, alerts=alerts)

    # ===== READS =====

    def get_inventory_status(self, item_id) -> InventoryStatus:
        """Item, active lots, metrics and active alerts (cached)."""
        def build():
            with self._item_lock(item_id):
                self._load(item_id)
                return InventoryStatus(
                    item=self.ledger.get_item(item_id).copy(),
                    lots=[lot.copy() for lot in self.ledger.get_stock(item_id)],
                    metrics=self.ledger.calculate_metrics(item_id),
                    alerts=self.monitor.get_active_alerts(item_id),
                )

        return self.cache.get_or_set('status', item_id, build)

    def get_inventory_snapshot(self, page=1, page_size=50, filters=None) -> SnapshotPage:
        """
        One page of items with aggregate figures.

        Args:
            page: 1-based page number
            page_size: Items per page
            filters: ItemFilter or dict with category, low_stock, expiring_soon
        """
        if page < 1 or page_size < 1:
            raise ValidationError(f"Invalid page {page} / page size {page_size}.")

        item_filter = self._item_filter(filters)
        offset = (page - 1) * page_size
        items, total_count = self.repository.get_items_page(item_filter, offset, page_size)

        now = self.clock()
        movements = self.repository.list_movements_since(
            now - timedelta(days=METRICS_HISTORY_DAYS)
        )
        out_by_item = self._out_quantities(movements)

        snapshot = InventorySnapshot(
            date=now,
            items=[],
            total_value=ZERO,
            total_items=len(items),
            low_stock_items=0,
            overstock_items=0,
        )
        for item in items:
            snapshot.items.append(SnapshotEntry(
                item_id=item.id,
                quantity=item.total_quantity,
                value=item.total_value,
                turnover_rate=turnover_rate(
                    out_by_item.get(item.id, ZERO), item.total_quantity, METRICS_HISTORY_DAYS
                ),
            ))
            snapshot.total_value += item.total_value
            if item.total_quantity <= item.safety_stock:
                snapshot.low_stock_items += 1
            if item.total_quantity > item.max_stock:
                snapshot.overstock_items += 1

        return SnapshotPage(
            snapshot=snapshot,
            items=items,
            total_pages=math.ceil(total_count / page_size),
            total_count=total_count,
        )

    def get_reorder_suggestions(self, category=None):
        """Reorder suggestions, most urgent first (cached)."""
        def build():
            items = self.repository.list_items(ItemFilter(category=category))
            since = self.clock() - timedelta(
                days=self.config.forecast_settings.historical_periods
            )
            movements = self.repository.list_movements_since(since)
            return self.forecast_engine.generate_reorder_suggestions(items, movements)

        return self.cache.get_or_set('reorder', category or 'all', build, index_under=AGGREGATE)

    def analyze_inventory_turnover(self, period='monthly', category=None) -> TurnoverAnalysis:
        """
        Turnover per item and category over a trailing period (cached).

        Args:
            period: 'monthly' (30 days), 'quarterly' (90) or 'yearly' (365)
            category: Optional category filter
        """
        if period not in PERIOD_DAYS:
            raise ValidationError(
                f"Unknown period {period!r}; expected one of {', '.join(PERIOD_DAYS)}."
            )
        period_days = PERIOD_DAYS[period]

        def build():
            items = self.repository.list_items(ItemFilter(category=category))
            movements = self.repository.list_movements_since(
                self.clock() - timedelta(days=period_days)
            )
            out_by_item = self._out_quantities(movements)

            by_item = []
            category_totals = {}
            category_counts = {}
            for item in items:
                rate = turnover_rate(
                    out_by_item.get(item.id, ZERO), item.total_quantity, period_days
                )
                by_item.append(ItemTurnover(item_id=item.id, name=item.name, turnover=rate))
                category_totals[item.category] = category_totals.get(item.category, 0.0) + rate
                category_counts[item.category] = category_counts.get(item.category, 0) + 1

            overall = round2(sum(t.turnover for t in by_item) / len(by_item)) if by_item else 0.0
            by_category = {
                name: round2(total / category_counts[name])
                for name, total in category_totals.items()
            }
            recommendations = self._turnover_recommendations(overall, by_item)
            by_item.sort(key=lambda t: t.turnover)

            return TurnoverAnalysis(
                overall=overall,
                by_category=by_category,
                by_item=by_item[:TURNOVER_ITEM_LIMIT],
                recommendations=recommendations,
            )

        return self.cache.get_or_set(
            'turnover', f"{period}:{category or 'all'}", build, index_under=AGGREGATE
        )

    def _turnover_recommendations(self, overall, by_item):
        target = self.config.performance_targets.min_turnover_rate
        recommendations = []

        if overall < target:
            recommendations.append(
                f"Overall turnover ({overall}) is below the target of {target}. "
                f"Review stock levels."
            )

        slow_moving = [t for t in by_item if t.turnover < SLOW_TURNOVER_RATE]
        if slow_moving:
            recommendations.append(
                f"{len(slow_moving)} item(s) turn over less than once a year. "
                f"Consider reducing stock or running a promotion."
            )

        fast_moving = [t for t in by_item if t.turnover > HIGH_TURNOVER_RATE]
        if fast_moving:
            recommendations.append(
                f"{len(fast_moving)} item(s) turn over more than {HIGH_TURNOVER_RATE} "
                f"times a year. Check them for stockout risk."
            )

        return recommendations

    # ===== FORECASTING =====

    def generate_forecast(self, item_id, forecast_days=30):
        """Daily demand forecast for the next `forecast_days` days (cached)."""
        if forecast_days < 0:
            raise ValidationError(f"forecast_days cannot be negative (got {forecast_days}).")

        def build():
            item = self._get_item(item_id)
            since = self.clock() - timedelta(
                days=self.config.forecast_settings.historical_periods
            )
            movements = self.repository.list_movements_since(since, item_id=item_id)
            return self.forecast_engine.generate_forecast(item_id, item, movements, forecast_days)

        return self.cache.get_or_set(f'forecast:{forecast_days}', item_id, build)

    def select_forecast_method(self, item_id):
        self._get_item(item_id)
        movements = self.repository.list_movements_since(
            self.clock() - timedelta(days=90), item_id=item_id
        )
        return self.forecast_engine.select_best_forecast_method(item_id, movements)

    # ===== ALERTS =====

    def acknowledge_alert(self, alert_id, user_id):
        alert = self.monitor.acknowledge_alert(alert_id, user_id)
        if alert is not None:
            self.cache.invalidate(alert.item_id)
        return alert

    def get_alert_statistics(self):
        return self.monitor.get_alert_statistics()

    def wait_for_alerts(self, timeout=None):
        """
        Block until queued alert publishing has finished.

        Returns:
            bool: False if the timeout expired first
        """
        with self._pending_guard:
            pending = set(self._pending_alerts)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_alerts=True):
        with self._pending_guard:
            executor, self._alert_executor = self._alert_executor, None
        if executor is not None:
            executor.shutdown(wait=wait_for_alerts)

    # ===== REALTIME =====

    def start_realtime_monitoring(self, on_alert, on_update):
        """
        Subscribe to ledger changes and alert broadcasts.

        on_update(item_id, metrics) runs after every lot change with freshly
        computed metrics; on_alert(alert) runs for every published alert.

        Returns:
            Callable that cancels both subscriptions
        """
        def handle_change(payload):
            item_id = payload.get('item_id')
            if not item_id:
                return
            try:
                with self._item_lock(item_id):
                    self._load(item_id)
                    metrics = self.ledger.calculate_metrics(item_id)
                on_update(item_id, metrics)
            except Exception:
                logger.warning(f"Realtime update failed for {item_id}", exc_info=True)

        def handle_alert(payload):
            try:
                on_alert(Alert.from_dict(payload['alert']))
            except Exception:
                logger.warning("Realtime alert callback failed", exc_info=True)

        unsubscribe_changes = self.realtime.subscribe(CHANGES_TOPIC, handle_change)
        unsubscribe_alerts = self.realtime.subscribe(ALERTS_TOPIC, handle_alert)

        def cancel():
            unsubscribe_changes()
            unsubscribe_alerts()

        return cancel

    # ===== BATCH =====

    def process_batch_operations(self, operations) -> List[BatchOperationResult]:
        """
        Run IN / OUT / ADJUSTMENT operations in chunks of 100.

        Operations inside a chunk run concurrently; chunks run one after
        another. A failing operation is reported in its own result and
        never affects the others.

        Returns:
            list: One BatchOperationResult per operation, in input order
        """
        started = time.monotonic()
        results = []

        for chunk_start in range(0, len(operations), BATCH_SIZE):
            chunk = operations[chunk_start:chunk_start + BATCH_SIZE]
            workers = max(1, min(len(chunk), self.max_workers))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='larder-batch') as pool:
                futures = [
                    pool.submit(self._run_operation, chunk_start + offset, op)
                    for offset, op in enumerate(chunk)
                ]
                results.extend(future.result() for future in futures)

        total_ms = (time.monotonic() - started) * 1000
        if operations:
            failed = sum(1 for r in results if not r.success)
            logger.info(
                f"Processed {len(operations)} operations in {total_ms:.0f}ms "
                f"({total_ms / len(operations):.0f}ms per operation, {failed} failed)"
            )
        return results

    def _run_operation(self, index, operation):
        op = None
        try:
            op = operation if isinstance(operation, BatchOperation) else BatchOperation.from_dict(operation)
            if op.type == MovementType.IN:
                if op.unit_cost is None:
                    raise ValidationError("IN operations need a unit_cost.")
                result = self.add_stock(
                    op.item_id, op.quantity, op.unit_cost, performed_by=op.performed_by
                )
            elif op.type == MovementType.OUT:
                result = self.remove_stock(
                    op.item_id,
                    op.quantity,
                    reason=op.reason,
                    reference_id=op.reference_id,
                    performed_by=op.performed_by,
                )
            else:
                if not op.lot_id:
                    raise ValidationError("ADJUSTMENT operations need a lot_id.")
                result = self.adjust_stock(
                    op.item_id,
                    op.lot_id,
                    op.quantity,
                    op.reason or 'Batch adjustment',
                    performed_by=op.performed_by,
                )
            return BatchOperationResult(index=index, operation=op, success=True, result=result)
        except Exception as exc:
            if isinstance(exc, InventoryError):
                logger.warning(f"Batch operation {index} failed: {self._error_message(exc)}")
            else:
                logger.exception(f"Batch operation {index} failed")
            return BatchOperationResult(
                index=index,
                operation=op,
                success=False,
                error=self._error_message(exc),
                error_type=type(exc).__name__,
            )
        finally:
            _close_thread_connections()

    # ===== HELPERS =====

    def _item_lock(self, item_id):
        with self._locks_guard:
            lock = self._item_locks.get(item_id)
            if lock is None:
                lock = self._item_locks[item_id] = threading.RLock()
            return lock

    def _get_item(self, item_id):
        item = self.repository.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def _load(self, item_id):
        """Hydrate the ledger with the item, its active lots and a year of movements."""
        item = self._get_item(item_id)
        lots = self.repository.get_active_lots(item_id)
        movements = self.repository.list_movements_since(
            self.clock() - timedelta(days=METRICS_HISTORY_DAYS), item_id=item_id
        )
        self.ledger.hydrate(item, lots, movements)
        return self.ledger.get_item(item_id)

    def _after_mutation(self, item_id, alerts, lot_ids, action):
        self.cache.invalidate(item_id)
        self._publish(item_id, alerts)
        try:
            self.realtime.broadcast(CHANGES_TOPIC, {
                'event': 'lot-changed',
                'item_id': item_id,
                'lot_ids': list(lot_ids),
                'action': action,
            })
        except Exception:
            logger.warning(f"Failed to broadcast change for {item_id}", exc_info=True)

    def _publish(self, item_id, alerts):
        if not alerts:
            return
        if not self.async_alerts:
            self._publish_now(item_id, alerts, close_connections=False)
            return

        with self._pending_guard:
            if self._alert_executor is None:
                self._alert_executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix='larder-alerts'
                )
            future = self._alert_executor.submit(self._publish_now, item_id, alerts)
            self._pending_alerts.add(future)
        future.add_done_callback(self._forget_pending)

    def _forget_pending(self, future):
        with self._pending_guard:
            self._pending_alerts.discard(future)

    def _publish_now(self, item_id, alerts, close_connections=True):
        try:
            self.monitor.publish(alerts)
        except Exception:
            logger.exception(f"Publishing alerts for {item_id} failed")
        finally:
            # status reads may have cached the alert list before publishing
            self.cache.invalidate(item_id)
            if close_connections:
                _close_thread_connections()

    def _check_response_time(self, operation, started):
        elapsed_ms = (time.monotonic() - started) * 1000
        limit = self.config.performance_targets.max_response_time
        if elapsed_ms > limit:
            logger.warning(f"Slow {operation} operation: {elapsed_ms:.0f}ms (target {limit}ms)")

    def _item_filter(self, filters):
        if filters is None or isinstance(filters, ItemFilter):
            return filters
        expiring_soon = filters.get('expiring_soon')
        return ItemFilter(
            category=filters.get('category'),
            low_stock=bool(filters.get('low_stock')),
            expiring_within_days=(
                self.config.alert_thresholds.expiry_days if expiring_soon else None
            ),
            item_ids=filters.get('item_ids'),
        )

    @staticmethod
    def _out_quantities(movements):
        totals = {}
        for m in movements:
            if m.movement_type == MovementType.OUT:
                totals[m.item_id] = totals.get(m.item_id, ZERO) + m.quantity
        return totals

    @staticmethod
    def _number(value, name, positive=False):
        """
        Boundary validation: a finite number, >= 0 (or > 0 when positive),
        that fits the stored scale (4 decimal places, 10 integer digits).
        """
        try:
            number = to_decimal(value)
        except ValidationError as exc:
            raise ValidationError(f"{name} must be a number (got {value!r}).") from exc
        if not number.is_finite():
            raise ValidationError(f"{name} must be finite (got {value!r}).")
        if positive and number <= 0:
            raise ValidationError(f"{name} must be positive (got {value}).")
        if number < 0:
            raise ValidationError(f"{name} cannot be negative (got {value}).")
        if number.normalize().as_tuple().exponent < -AMOUNT_DECIMAL_PLACES:
            raise ValidationError(
                f"{name} allows at most {AMOUNT_DECIMAL_PLACES} decimal places (got {value})."
            )
        if number >= AMOUNT_LIMIT:
            raise ValidationError(f"{name} must be less than {AMOUNT_LIMIT:f} (got {value}).")
        return number

    @staticmethod
    def _error_message(exc):
        if isinstance(exc, ValidationError):
            return '; '.join(exc.messages)
        return str(exc)

