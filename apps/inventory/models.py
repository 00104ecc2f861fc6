# apps/inventory/models.py
"""
Inventory persistence models.

Models:
- StockItem: Item master with replenishment levels and ledger-derived totals
- InventoryLot: Purchase batch consumed in FIFO order
- InventoryMovement: Append-only audit trail of IN / OUT / ADJUSTMENT entries

Primary keys are the identifiers generated by the ledger engine
(LOT-..., MOV-...), so domain objects round-trip without id mapping.

Inventory Flow:
1. Receive goods -> InventoryLot + IN movement, StockItem totals updated
2. Withdraw goods -> oldest lots depleted, one OUT movement per lot touched
3. Cycle count -> lot remaining set directly, ADJUSTMENT movement recorded
"""
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone
from simple_history.models import HistoricalRecords

from shared.models import TimestampMixin


class StockItem(TimestampMixin):
    """
    Stock keeping item for a store group.

    total_quantity, total_value, weighted_average_cost and
    average_daily_cost are written by the ledger after every mutation;
    do not edit them by hand.

    Example:
        Item: ITEM-MILK-1L
        Category: dairy
        Safety stock: 50, Reorder point: 100, Max stock: 500
        Lead time: 2 days
    """
    id = models.CharField(
        primary_key=True,
        max_length=64,
        help_text="Item identifier"
    )
    name = models.CharField(max_length=255)
    category = models.CharField(
        max_length=100,
        blank=True,
        db_index=True,
        help_text="Category used for filtering and turnover roll-ups"
    )
    unit = models.CharField(
        max_length=20,
        blank=True,
        help_text="Unit of measure (kg, ea, L, ...)"
    )
    safety_stock = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        default=0,
        help_text="Minimum buffer quantity"
    )
    reorder_point = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        default=0,
        help_text="Quantity at which a reorder is raised"
    )
    max_stock = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        default=0,
        help_text="Maximum quantity to hold"
    )
    lead_time_days = models.PositiveIntegerField(
        default=0,
        help_text="Days between placing and receiving a reorder"
    )

    # Ledger-derived
    average_daily_cost = models.DecimalField(
        max_digits=18,
        decimal_places=6,
        default=0,
        help_text="Average daily outbound quantity over the trailing 30 days"
    )
    total_quantity = models.DecimalField(max_digits=14, decimal_places=4, default=0)
    total_value = models.DecimalField(max_digits=18, decimal_places=4, default=0)
    weighted_average_cost = models.DecimalField(max_digits=18, decimal_places=6, default=0)

    # Audit trail for level and total changes
    history = HistoricalRecords()

    class Meta:
        verbose_name = "Stock Item"
        verbose_name_plural = "Stock Items"
        ordering = ['name']
        indexes = [
            models.Index(fields=['category', 'name'], name='inv_item_category_idx'),
        ]

    def __str__(self):
        return f"{self.id} - {self.name}"

    def clean(self):
        """Validate 0 <= safety_stock <= reorder_point <= max_stock."""
        super().clean()
        errors = {}
        if self.safety_stock < 0:
            errors['safety_stock'] = "Safety stock cannot be negative."
        elif self.safety_stock > self.reorder_point:
            errors['safety_stock'] = "Safety stock cannot exceed the reorder point."
        if self.reorder_point > self.max_stock:
            errors['reorder_point'] = "Reorder point cannot exceed max stock."
        if errors:
            raise ValidationError(errors)


class InventoryLot(TimestampMixin):
    """
    Purchase batch.

    Only remaining_quantity changes after receipt. Exhausted lots
    (remaining 0) are kept for the audit trail.

    Example:
        Lot: LOT-3F2A9C01B7DE
        Batch: 240115-K7QZ
        Purchased: 2024-01-15, Expires: 2024-01-25
        Quantity: 50, Remaining: 20, Unit Cost: 5000
    """
    id = models.CharField(primary_key=True, max_length=64)
    item = models.ForeignKey(
        StockItem,
        on_delete=models.PROTECT,
        related_name='lots',
        help_text="Item in this lot"
    )
    quantity = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        help_text="Original quantity received"
    )
    remaining_quantity = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        help_text="Quantity still available in this lot"
    )
    unit_cost = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        help_text="Cost per unit at time of purchase"
    )
    purchase_date = models.DateTimeField(
        default=timezone.now,
        help_text="Purchase date (FIFO ordering)"
    )
    expiry_date = models.DateTimeField(null=True, blank=True)
    supplier_id = models.CharField(max_length=64, blank=True)
    warehouse_id = models.CharField(
        max_length=64,
        default='DEFAULT',
        help_text="Store or warehouse holding the lot"
    )
    batch_number = models.CharField(
        max_length=50,
        help_text="Batch identifier (YYMMDD-XXXX)"
    )
    sequence = models.PositiveIntegerField(
        default=0,
        help_text="Receipt order within the item, breaks purchase date ties"
    )

    class Meta:
        verbose_name = "Inventory Lot"
        verbose_name_plural = "Inventory Lots"
        ordering = ['purchase_date', 'sequence']
        indexes = [
            models.Index(
                fields=['item', 'purchase_date', 'sequence'],
                name='inv_lot_fifo_idx',
            ),
            models.Index(
                fields=['item', 'remaining_quantity'],
                name='inv_lot_remaining_idx',
            ),
            models.Index(fields=['expiry_date'], name='inv_lot_expiry_idx'),
        ]

    def __str__(self):
        return f"{self.batch_number} - {self.item_id} ({self.remaining_quantity}/{self.quantity})"

    @property
    def total_value(self):
        """Current value of remaining inventory in this lot."""
        return self.remaining_quantity * self.unit_cost

    @property
    def is_depleted(self):
        return self.remaining_quantity <= 0

    def clean(self):
        super().clean()
        if self.remaining_quantity < 0:
            raise ValidationError({
                'remaining_quantity': "Remaining quantity cannot be negative."
            })
        if self.remaining_quantity > self.quantity:
            raise ValidationError({
                'remaining_quantity': "Remaining quantity cannot exceed quantity received."
            })


class InventoryMovement(models.Model):
    """
    Audit trail for all inventory movements.

    Rows are inserted, never updated or deleted. They are the only input
    to turnover, COGS and demand forecasting.

    Movement Types:
    - IN: Lot received
    - OUT: Quantity consumed from one lot (FIFO withdrawal)
    - ADJUSTMENT: Lot remaining quantity set by a count
    """
    MOVEMENT_TYPES = [
        ('IN', 'In'),
        ('OUT', 'Out'),
        ('ADJUSTMENT', 'Adjustment'),
    ]

    id = models.CharField(primary_key=True, max_length=64)
    item = models.ForeignKey(
        StockItem,
        on_delete=models.PROTECT,
        related_name='movements',
    )
    lot = models.ForeignKey(
        InventoryLot,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='movements',
    )
    movement_type = models.CharField(max_length=20, choices=MOVEMENT_TYPES)
    quantity = models.DecimalField(max_digits=14, decimal_places=4)
    unit_cost = models.DecimalField(max_digits=14, decimal_places=4)
    total_cost = models.DecimalField(max_digits=18, decimal_places=4)
    reason = models.CharField(max_length=255, blank=True)
    reference_id = models.CharField(
        max_length=100,
        blank=True,
        help_text="Order number, batch number or adjustment reference"
    )
    notes = models.TextField(blank=True)
    performed_by = models.CharField(max_length=150, default='SYSTEM')
    performed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "Inventory Movement"
        verbose_name_plural = "Inventory Movements"
        ordering = ['-performed_at']
        indexes = [
            models.Index(fields=['item', 'performed_at'], name='inv_mov_item_date_idx'),
            models.Index(fields=['movement_type', 'performed_at'], name='inv_mov_type_date_idx'),
        ]

    def __str__(self):
        return f"{self.movement_type}: {self.item_id} {self.quantity}"
