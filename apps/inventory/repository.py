# apps/inventory/repository.py
"""
Persistence collaborators for the inventory service.

InventoryRepository is the narrow interface the service depends on.
Two adapters ship with the app:

- DjangoInventoryRepository: ORM-backed, the production adapter
- InMemoryInventoryRepository: dict-backed, for tests and dry runs

Adapters return domain objects (apps.inventory.domain, apps.alerts.domain),
never model instances.
"""
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from dataclasses import replace
from datetime import timedelta
from decimal import InvalidOperation
from typing import List, Optional, Tuple

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from apps.alerts.domain import Alert, AlertSeverity, AlertType

from .domain import Item, ItemFilter, Lot, Movement, MovementType
from .exceptions import AlertNotFoundError, RepositoryError


class InventoryRepository(ABC):
    """Storage interface for items, lots, movements and alerts."""

    def atomic(self):
        """Context manager grouping the writes of one mutation."""
        return nullcontext()

    @abstractmethod
    def get_item(self, item_id) -> Optional[Item]:
        """Return the item or None."""

    @abstractmethod
    def save_item(self, item: Item):
        """Insert or update an item, including its derived totals."""

    @abstractmethod
    def list_items(self, item_filter: Optional[ItemFilter] = None) -> List[Item]:
        pass

    @abstractmethod
    def get_active_lots(self, item_id) -> List[Lot]:
        """Lots with remaining quantity > 0, in FIFO order."""

    @abstractmethod
    def insert_lot(self, lot: Lot):
        pass

    @abstractmethod
    def upsert_lots(self, lots: List[Lot]):
        pass

    @abstractmethod
    def insert_movements(self, movements: List[Movement]):
        pass

    @abstractmethod
    def list_movements_since(self, since, item_id=None) -> List[Movement]:
        """Movements performed at or after `since`, oldest first."""

    @abstractmethod
    def insert_alert(self, alert: Alert):
        pass

    @abstractmethod
    def get_alert(self, alert_id) -> Optional[Alert]:
        pass

    @abstractmethod
    def update_alert_acknowledgement(self, alert_id, user_id, acknowledged_at):
        """
        Stamp an alert as acknowledged. A second call leaves the first stamp.

        Raises:
            AlertNotFoundError: If the alert does not exist
        """

    @abstractmethod
    def get_items_page(self, item_filter, offset, limit) -> Tuple[List[Item], int]:
        """Return (items, total_count) for one page of filtered items."""


# ─── Django ORM adapter ─────────────────────────────────────────────────────────

@contextmanager
def _database_errors(operation):
    """Re-raise database and decimal adapt failures as RepositoryError."""
    try:
        yield
    except (DatabaseError, InvalidOperation) as exc:
        raise RepositoryError(f"{operation} failed: {exc}") from exc


def _item_from_model(obj) -> Item:
    return Item(
        id=obj.id,
        name=obj.name,
        category=obj.category,
        unit=obj.unit,
        safety_stock=obj.safety_stock,
        reorder_point=obj.reorder_point,
        max_stock=obj.max_stock,
        lead_time_days=obj.lead_time_days,
        average_daily_cost=obj.average_daily_cost,
        total_quantity=obj.total_quantity,
        total_value=obj.total_value,
        weighted_average_cost=obj.weighted_average_cost,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def _lot_from_model(obj) -> Lot:
    return Lot(
        id=obj.id,
        item_id=obj.item_id,
        item_name=obj.item.name,
        quantity=obj.quantity,
        remaining_quantity=obj.remaining_quantity,
        unit_cost=obj.unit_cost,
        purchase_date=obj.purchase_date,
        expiry_date=obj.expiry_date,
        supplier_id=obj.supplier_id,
        warehouse_id=obj.warehouse_id,
        batch_number=obj.batch_number,
        sequence=obj.sequence,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def _movement_from_model(obj) -> Movement:
    return Movement(
        id=obj.id,
        item_id=obj.item_id,
        lot_id=obj.lot_id,
        movement_type=MovementType(obj.movement_type),
        quantity=obj.quantity,
        unit_cost=obj.unit_cost,
        total_cost=obj.total_cost,
        reason=obj.reason or None,
        reference_id=obj.reference_id or None,
        notes=obj.notes or None,
        performed_by=obj.performed_by,
        performed_at=obj.performed_at,
    )


def _alert_from_model(obj) -> Alert:
    return Alert(
        id=obj.id,
        item_id=obj.item_id,
        alert_type=AlertType(obj.alert_type),
        severity=AlertSeverity(obj.severity),
        message=obj.message,
        threshold=obj.threshold,
        current_value=obj.current_value,
        created_at=obj.created_at,
        acknowledged_at=obj.acknowledged_at,
        acknowledged_by=obj.acknowledged_by or None,
    )


class DjangoInventoryRepository(InventoryRepository):
    """
    ORM-backed repository.

    Usage:
        repository = DjangoInventoryRepository()
        service = InventoryService(repository=repository)
    """

    def atomic(self):
        return transaction.atomic()

    def get_item(self, item_id):
        from .models import StockItem

        with _database_errors(f"Loading item {item_id}"):
            obj = StockItem.objects.filter(pk=item_id).first()
        return _item_from_model(obj) if obj else None

    def save_item(self, item):
        from .models import StockItem

        with _database_errors(f"Saving item {item.id}"):
            StockItem.objects.update_or_create(
                id=item.id,
                defaults={
                    'name': item.name,
                    'category': item.category,
                    'unit': item.unit,
                    'safety_stock': item.safety_stock,
                    'reorder_point': item.reorder_point,
                    'max_stock': item.max_stock,
                    'lead_time_days': item.lead_time_days,
                    'average_daily_cost': item.average_daily_cost,
                    'total_quantity': item.total_quantity,
                    'total_value': item.total_value,
                    'weighted_average_cost': item.weighted_average_cost,
                },
            )

    def _filtered_items(self, item_filter):
        from .models import StockItem

        queryset = StockItem.objects.all()
        if item_filter is None:
            return queryset.order_by('name', 'id')

        if item_filter.category:
            queryset = queryset.filter(category=item_filter.category)
        if item_filter.item_ids is not None:
            queryset = queryset.filter(pk__in=item_filter.item_ids)
        if item_filter.low_stock:
            queryset = queryset.filter(total_quantity__lte=F('safety_stock'))
        if item_filter.expiring_within_days is not None:
            cutoff = timezone.now() + timedelta(days=item_filter.expiring_within_days)
            queryset = queryset.filter(
                lots__remaining_quantity__gt=0,
                lots__expiry_date__isnull=False,
                lots__expiry_date__lte=cutoff,
            ).distinct()
        return queryset.order_by('name', 'id')

    def list_items(self, item_filter=None):
        with _database_errors("Listing items"):
            return [_item_from_model(obj) for obj in self._filtered_items(item_filter)]

    def get_items_page(self, item_filter, offset, limit):
        with _database_errors("Loading item page"):
            queryset = self._filtered_items(item_filter)
            total_count = queryset.count()
            items = [_item_from_model(obj) for obj in queryset[offset:offset + limit]]
        return items, total_count

    def get_active_lots(self, item_id):
        from .models import InventoryLot

        with _database_errors(f"Loading lots for {item_id}"):
            queryset = InventoryLot.objects.filter(
                item_id=item_id,
                remaining_quantity__gt=0,
            ).select_related('item').order_by('purchase_date', 'sequence')
            return [_lot_from_model(obj) for obj in queryset]

    def _lot_model(self, lot):
        from .models import InventoryLot

        return InventoryLot(
            id=lot.id,
            item_id=lot.item_id,
            quantity=lot.quantity,
            remaining_quantity=lot.remaining_quantity,
            unit_cost=lot.unit_cost,
            purchase_date=lot.purchase_date,
            expiry_date=lot.expiry_date,
            supplier_id=lot.supplier_id or '',
            warehouse_id=lot.warehouse_id or 'DEFAULT',
            batch_number=lot.batch_number,
            sequence=lot.sequence,
            updated_at=lot.updated_at or timezone.now(),
        )

    def insert_lot(self, lot):
        with _database_errors(f"Inserting lot {lot.id}"):
            self._lot_model(lot).save(force_insert=True)

    def upsert_lots(self, lots):
        from .models import InventoryLot

        if not lots:
            return
        with _database_errors("Upserting lots"):
            with transaction.atomic():
                ids = [lot.id for lot in lots]
                existing = set(
                    InventoryLot.objects.filter(pk__in=ids).values_list('pk', flat=True)
                )
                to_update = [self._lot_model(lot) for lot in lots if lot.id in existing]
                to_create = [self._lot_model(lot) for lot in lots if lot.id not in existing]
                if to_update:
                    InventoryLot.objects.bulk_update(
                        to_update, ['quantity', 'remaining_quantity', 'updated_at']
                    )
                if to_create:
                    InventoryLot.objects.bulk_create(to_create)

    def insert_movements(self, movements):
        from .models import InventoryMovement

        if not movements:
            return
        with _database_errors("Inserting movements"):
            InventoryMovement.objects.bulk_create([
                InventoryMovement(
                    id=m.id,
                    item_id=m.item_id,
                    lot_id=m.lot_id,
                    movement_type=m.movement_type.value,
                    quantity=m.quantity,
                    unit_cost=m.unit_cost,
                    total_cost=m.total_cost,
                    reason=m.reason or '',
                    reference_id=m.reference_id or '',
                    notes=m.notes or '',
                    performed_by=m.performed_by,
                    performed_at=m.performed_at,
                )
                for m in movements
            ])

    def list_movements_since(self, since, item_id=None):
        from .models import InventoryMovement

        with _database_errors("Listing movements"):
            queryset = InventoryMovement.objects.filter(performed_at__gte=since)
            if item_id is not None:
                queryset = queryset.filter(item_id=item_id)
            return [_movement_from_model(obj) for obj in queryset.order_by('performed_at')]

    def insert_alert(self, alert):
        from apps.alerts.models import InventoryAlert

        with _database_errors(f"Inserting alert {alert.id}"):
            InventoryAlert.objects.create(
                id=alert.id,
                item_id=alert.item_id,
                alert_type=alert.alert_type.value,
                severity=alert.severity.value,
                message=alert.message,
                threshold=alert.threshold,
                current_value=alert.current_value,
                created_at=alert.created_at,
                acknowledged_at=alert.acknowledged_at,
                acknowledged_by=alert.acknowledged_by or '',
            )

    def get_alert(self, alert_id):
        from apps.alerts.models import InventoryAlert

        with _database_errors(f"Loading alert {alert_id}"):
            obj = InventoryAlert.objects.filter(pk=alert_id).first()
        return _alert_from_model(obj) if obj else None

    def update_alert_acknowledgement(self, alert_id, user_id, acknowledged_at):
        from apps.alerts.models import InventoryAlert

        with _database_errors(f"Acknowledging alert {alert_id}"):
            updated = InventoryAlert.objects.filter(
                pk=alert_id,
                acknowledged_at__isnull=True,
            ).update(acknowledged_at=acknowledged_at, acknowledged_by=user_id)
            if not updated and not InventoryAlert.objects.filter(pk=alert_id).exists():
                raise AlertNotFoundError(alert_id)


# ─── In-memory adapter ──────────────────────────────────────────────────────────

class InMemoryInventoryRepository(InventoryRepository):
    """
    Dict-backed repository. Thread safe; returns copies. atomic() holds the
    store lock and restores the previous contents when the block raises.

    Usage:
        repository = InMemoryInventoryRepository()
        repository.save_item(Item(id='ITEM001', name='Milk 1L', ...))
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.items = {}
        self.lots = {}
        self.movements = []
        self.alerts = {}

    @contextmanager
    def atomic(self):
        """Hold the store lock and restore the previous state if the block raises."""
        with self._lock:
            saved = (
                {k: item.copy() for k, item in self.items.items()},
                {k: lot.copy() for k, lot in self.lots.items()},
                list(self.movements),
                {k: replace(alert) for k, alert in self.alerts.items()},
            )
            try:
                yield
            except Exception:
                self.items, self.lots, self.movements, self.alerts = saved
                raise

    def get_item(self, item_id):
        with self._lock:
            item = self.items.get(item_id)
            return item.copy() if item else None

    def save_item(self, item):
        with self._lock:
            self.items[item.id] = item.copy()

    def _matches(self, item, item_filter, now):
        if item_filter is None:
            return True
        if item_filter.category and item.category != item_filter.category:
            return False
        if item_filter.item_ids is not None and item.id not in item_filter.item_ids:
            return False
        if item_filter.low_stock and item.total_quantity > item.safety_stock:
            return False
        if item_filter.expiring_within_days is not None:
            cutoff = now + timedelta(days=item_filter.expiring_within_days)
            return any(
                lot.item_id == item.id
                and lot.is_active
                and lot.expiry_date is not None
                and lot.expiry_date <= cutoff
                for lot in self.lots.values()
            )
        return True

    def _filtered_items(self, item_filter):
        now = timezone.now()
        matched = [
            item for item in self.items.values()
            if self._matches(item, item_filter, now)
        ]
        matched.sort(key=lambda i: (i.name, i.id))
        return [item.copy() for item in matched]

    def list_items(self, item_filter=None):
        with self._lock:
            return self._filtered_items(item_filter)

    def get_items_page(self, item_filter, offset, limit):
        with self._lock:
            matched = self._filtered_items(item_filter)
        return matched[offset:offset + limit], len(matched)

    def get_active_lots(self, item_id):
        with self._lock:
            lots = [
                lot.copy() for lot in self.lots.values()
                if lot.item_id == item_id and lot.is_active
            ]
        lots.sort(key=lambda lot: lot.fifo_key)
        return lots

    def insert_lot(self, lot):
        with self._lock:
            if lot.id in self.lots:
                raise RepositoryError(f"Lot {lot.id} already exists")
            self.lots[lot.id] = lot.copy()

    def upsert_lots(self, lots):
        with self._lock:
            for lot in lots:
                self.lots[lot.id] = lot.copy()

    def insert_movements(self, movements):
        with self._lock:
            self.movements.extend(movements)

    def list_movements_since(self, since, item_id=None):
        with self._lock:
            matched = [
                m for m in self.movements
                if m.performed_at >= since and (item_id is None or m.item_id == item_id)
            ]
        matched.sort(key=lambda m: m.performed_at)
        return matched

    def insert_alert(self, alert):
        with self._lock:
            self.alerts[alert.id] = replace(alert)

    def get_alert(self, alert_id):
        with self._lock:
            alert = self.alerts.get(alert_id)
            return replace(alert) if alert else None

    def update_alert_acknowledgement(self, alert_id, user_id, acknowledged_at):
        with self._lock:
            alert = self.alerts.get(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if alert.acknowledged_at is None:
                alert.acknowledged_at = acknowledged_at
                alert.acknowledged_by = user_id
