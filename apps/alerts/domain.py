# apps/alerts/domain.py
"""
Alert types produced by the inventory monitor.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class AlertType(str, Enum):
    LOW_STOCK = 'LOW_STOCK'
    EXPIRY = 'EXPIRY'
    OVERSTOCK = 'OVERSTOCK'
    REORDER = 'REORDER'


class AlertSeverity(str, Enum):
    INFO = 'INFO'
    WARNING = 'WARNING'
    CRITICAL = 'CRITICAL'


def generate_alert_id():
    return f"ALERT-{uuid.uuid4().hex[:12].upper()}"


@dataclass
class Alert:
    """
    Inventory alert.

    Created only by the monitor sweep. Acknowledgement is the only
    change allowed afterwards.
    """
    id: str
    item_id: str
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    threshold: float
    current_value: float
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    @property
    def is_acknowledged(self):
        return self.acknowledged_at is not None

    def to_dict(self):
        """Broadcast payload (JSON / msgpack friendly)."""
        return {
            'id': self.id,
            'item_id': self.item_id,
            'type': self.alert_type.value,
            'severity': self.severity.value,
            'message': self.message,
            'threshold': self.threshold,
            'current_value': self.current_value,
            'created_at': self.created_at.isoformat(),
            'acknowledged_at': self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            'acknowledged_by': self.acknowledged_by,
        }

    @classmethod
    def from_dict(cls, data):
        acknowledged_at = data.get('acknowledged_at')
        return cls(
            id=data['id'],
            item_id=data['item_id'],
            alert_type=AlertType(data['type']),
            severity=AlertSeverity(data['severity']),
            message=data['message'],
            threshold=data['threshold'],
            current_value=data['current_value'],
            created_at=datetime.fromisoformat(data['created_at']),
            acknowledged_at=datetime.fromisoformat(acknowledged_at) if acknowledged_at else None,
            acknowledged_by=data.get('acknowledged_by'),
        )
