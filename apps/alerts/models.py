from django.db import models
from django.utils import timezone


class InventoryAlert(models.Model):
    ALERT_TYPES = [
        ('LOW_STOCK', 'Low Stock'),
        ('EXPIRY', 'Expiry'),
        ('OVERSTOCK', 'Overstock'),
        ('REORDER', 'Reorder'),
    ]
    SEVERITIES = [
        ('INFO', 'Info'),
        ('WARNING', 'Warning'),
        ('CRITICAL', 'Critical'),
    ]

    id = models.CharField(primary_key=True, max_length=64)
    item = models.ForeignKey(
        'inventory.StockItem',
        on_delete=models.CASCADE,
        related_name='alerts',
    )
    alert_type = models.CharField(max_length=20, choices=ALERT_TYPES)
    severity = models.CharField(max_length=10, choices=SEVERITIES)
    message = models.TextField()
    threshold = models.FloatField()
    current_value = models.FloatField()
    created_at = models.DateTimeField(default=timezone.now)
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    acknowledged_by = models.CharField(max_length=150, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['item', '-created_at'], name='alert_item_created_idx'),
            models.Index(fields=['acknowledged_at'], name='alert_ack_idx'),
        ]

    def __str__(self):
        return f"{self.severity} {self.alert_type} -> {self.item_id}"
