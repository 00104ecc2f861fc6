# apps/inventory/exceptions.py
"""
Exceptions raised by the inventory engine and its collaborators.

Hierarchy:
    InventoryError
    ├── ValidationError         bad input shape, rejected before the engines run
    ├── NotFoundError
    │   ├── ItemNotFoundError
    │   ├── LotNotFoundError
    │   └── AlertNotFoundError
    ├── InsufficientStockError  withdrawal larger than the remaining quantity
    ├── NoStockAvailableError   withdrawal from an item with no active lots
    ├── RepositoryError         persistence failure (wraps the storage error)
    └── AlertDispatchError      handler/dispatcher failure, logged only
"""
from django.core.exceptions import ValidationError as DjangoValidationError


class InventoryError(Exception):
    """Base exception for inventory errors."""
    pass


class ValidationError(InventoryError, DjangoValidationError):
    """
    Invalid input for an inventory operation.

    Also a django ValidationError so form and serializer layers that
    already catch Django's error keep working.
    """
    pass


class NotFoundError(InventoryError):
    """Referenced object does not exist."""
    pass


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class LotNotFoundError(NotFoundError):
    def __init__(self, lot_id, item_id=None):
        self.lot_id = lot_id
        self.item_id = item_id
        super().__init__(f"Lot {lot_id} not found")


class AlertNotFoundError(NotFoundError):
    def __init__(self, alert_id):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found")


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds the total remaining across active lots."""

    def __init__(self, item_id, requested, available):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock. Requested: {requested}, Available: {available}"
        )


class NoStockAvailableError(InventoryError):
    """Item has no lot with a positive remaining quantity."""

    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"No stock available for item {item_id}")


class RepositoryError(InventoryError):
    """Persistence failure, raised with the storage error as __cause__."""
    pass


class AlertDispatchError(InventoryError):
    """An alert handler or the urgent dispatcher failed."""
    pass
