# apps/alerts/monitor.py
"""
Alert monitor.

Reads ledger state and item settings, produces typed alerts, and fans
them out. Four independent checks run per item:

    LOW_STOCK   quantity <= safety_stock * low_stock_percentage
    EXPIRY      one alert per active lot expiring within expiry_days
    OVERSTOCK   quantity > max_stock * (1 + overstock_percentage)
    REORDER     quantity <= reorder_point + average_daily_cost * lead_time_days

Publishing is total: a failing repository write, handler, broadcast or
dispatcher is logged and the remaining steps and alerts still run.
In memory each item keeps at most MAX_ALERTS_PER_ITEM alerts; acknowledged
alerts are dropped first. The repository keeps the full record.
"""
import logging
import math
import threading
from collections import defaultdict
from operator import attrgetter

from apps.inventory.domain import InventoryConfig
from apps.inventory.exceptions import AlertDispatchError, AlertNotFoundError
from apps.inventory.realtime import ALERTS_TOPIC

from .domain import Alert, AlertSeverity, AlertType, generate_alert_id

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
MAX_ALERTS_PER_ITEM = 100


def calculate_severity(current, safety_stock):
    """
    Low-stock severity from the ratio current / safety_stock.

    <= 0.1 is CRITICAL, <= 0.5 is WARNING, anything higher is INFO.
    A safety stock of 0 counts as ratio 0.
    """
    ratio = float(current) / float(safety_stock) if safety_stock else 0.0
    if ratio <= 0.1:
        return AlertSeverity.CRITICAL
    if ratio <= 0.5:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def calculate_expiry_severity(days_until_expiry):
    if days_until_expiry <= 3:
        return AlertSeverity.CRITICAL
    if days_until_expiry <= 7:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def _qty(value):
    """Format a Decimal quantity without trailing zeros."""
    return format(value.normalize(), 'f')


class AlertMonitor:
    """
    Generates, records and dispatches inventory alerts.

    Usage:
        monitor = AlertMonitor(ledger, config, repository=repo,
                               realtime=channel, dispatcher=dispatcher)
        monitor.register_handler(AlertType.REORDER, create_purchase_request)

        alerts = monitor.monitor_inventory(items)
        monitor.acknowledge_alert(alerts[0].id, 'manager-1')
    """

    def __init__(
        self,
        ledger,
        config=None,
        repository=None,
        realtime=None,
        dispatcher=None,
        handlers=None,
        clock=None,
        max_alerts_per_item=MAX_ALERTS_PER_ITEM,
    ):
        """
        Args:
            ledger: FIFOLedger to read quantities and expiring lots from
            config: InventoryConfig (from settings by default)
            repository: Optional InventoryRepository for alert persistence
            realtime: Optional RealtimeChannel for the alert broadcast
            dispatcher: Optional CriticalAlertDispatcher for CRITICAL alerts
            handlers: Mapping of AlertType to a handler or list of handlers
            clock: Callable returning the current aware datetime
            max_alerts_per_item: Alerts kept in memory per item; storage keeps all
        """
        self.ledger = ledger
        self.config = config or InventoryConfig.from_settings()
        self.repository = repository
        self.realtime = realtime
        self.dispatcher = dispatcher
        self.clock = clock or ledger.clock
        self.max_alerts_per_item = max_alerts_per_item

        self._lock = threading.RLock()
        self._alerts = defaultdict(list)
        self._handlers = defaultdict(list)
        for alert_type, handler in (handlers or {}).items():
            if callable(handler):
                self.register_handler(alert_type, handler)
            else:
                for h in handler:
                    self.register_handler(alert_type, h)

    def register_handler(self, alert_type, handler):
        """Add a handler called with each published alert of this type."""
        with self._lock:
            self._handlers[AlertType(alert_type)].append(handler)

    # ===== EVALUATION =====

    def evaluate(self, items):
        """
        Run every check for every item. No side effects.

        An item whose checks raise is logged and skipped.
        """
        alerts = []
        for item in items:
            try:
                alerts.extend(self.evaluate_item(item))
            except Exception:
                logger.exception(f"Alert evaluation failed for item {item.id}")
        return alerts

    def evaluate_item(self, item):
        alerts = []
        low_stock = self.check_low_stock(item)
        if low_stock:
            alerts.append(low_stock)
        alerts.extend(self.check_expiry(item))
        overstock = self.check_overstock(item)
        if overstock:
            alerts.append(overstock)
        reorder = self.check_reorder_point(item)
        if reorder:
            alerts.append(reorder)
        return alerts

    def _alert(self, item, alert_type, severity, message, threshold, current_value):
        return Alert(
            id=generate_alert_id(),
            item_id=item.id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            threshold=float(threshold),
            current_value=float(current_value),
            created_at=self.clock(),
        )

    def check_low_stock(self, item):
        thresholds = self.config.alert_thresholds
        current = self.ledger.get_total_quantity(item.id)
        threshold = float(item.safety_stock) * thresholds.low_stock_percentage

        if float(current) > threshold:
            return None

        return self._alert(
            item,
            AlertType.LOW_STOCK,
            calculate_severity(current, item.safety_stock),
            f"{item.name} is running low. Current: {_qty(current)}{item.unit}, "
            f"safety stock: {_qty(item.safety_stock)}{item.unit}",
            threshold=item.safety_stock,
            current_value=current,
        )

    def check_expiry(self, item):
        expiry_days = self.config.alert_thresholds.expiry_days
        now = self.clock()
        alerts = []

        for lot in self.ledger.get_expiring_lots(expiry_days, item_id=item.id):
            days_until_expiry = math.ceil(
                (lot.expiry_date - now).total_seconds() / SECONDS_PER_DAY
            )
            if days_until_expiry > 0:
                when = f"expires in {days_until_expiry} days"
            else:
                when = "has expired"

            alerts.append(self._alert(
                item,
                AlertType.EXPIRY,
                calculate_expiry_severity(days_until_expiry),
                f"{item.name} (batch {lot.batch_number}) {when}. "
                f"Quantity: {_qty(lot.remaining_quantity)}{item.unit}",
                threshold=expiry_days,
                current_value=days_until_expiry,
            ))
        return alerts

    def check_overstock(self, item):
        thresholds = self.config.alert_thresholds
        current = self.ledger.get_total_quantity(item.id)
        threshold = float(item.max_stock) * (1 + thresholds.overstock_percentage)

        if float(current) <= threshold:
            return None

        return self._alert(
            item,
            AlertType.OVERSTOCK,
            AlertSeverity.WARNING,
            f"{item.name} is overstocked. Current: {_qty(current)}{item.unit}, "
            f"max stock: {_qty(item.max_stock)}{item.unit}",
            threshold=item.max_stock,
            current_value=current,
        )

    def check_reorder_point(self, item):
        current = self.ledger.get_total_quantity(item.id)
        lead_time_buffer = item.average_daily_cost * item.lead_time_days
        effective_reorder_point = item.reorder_point + lead_time_buffer

        if current > effective_reorder_point:
            return None

        if current <= item.safety_stock:
            severity = AlertSeverity.CRITICAL
        else:
            severity = AlertSeverity.WARNING

        return self._alert(
            item,
            AlertType.REORDER,
            severity,
            f"{item.name} needs to be reordered. Current: {_qty(current)}{item.unit}, "
            f"lead time: {item.lead_time_days} days",
            threshold=effective_reorder_point,
            current_value=current,
        )

    # ===== PUBLISHING =====

    def monitor_inventory(self, items):
        """Evaluate and publish. Returns the alerts generated."""
        return self.publish(self.evaluate(items))

    def publish(self, alerts):
        """
        Record, persist, dispatch and broadcast each alert.

        Returns:
            list: The alerts passed in
        """
        for alert in alerts:
            with self._lock:
                item_alerts = self._alerts[alert.item_id]
                item_alerts.append(alert)
                self._trim(item_alerts)
                handlers = list(self._handlers.get(alert.alert_type, []))

            self._persist(alert)

            for handler in handlers:
                try:
                    handler(alert)
                except Exception as exc:
                    self._dispatch_failed(f"{alert.alert_type.value} handler", alert, exc)

            if self.realtime is not None:
                try:
                    self.realtime.broadcast(ALERTS_TOPIC, {
                        'event': 'new-alert',
                        'alert': alert.to_dict(),
                    })
                except Exception:
                    logger.warning(f"Failed to broadcast alert {alert.id}", exc_info=True)

            if alert.severity == AlertSeverity.CRITICAL and self.dispatcher is not None:
                try:
                    self.dispatcher.dispatch(alert)
                except Exception as exc:
                    self._dispatch_failed("Critical alert dispatch", alert, exc)

        return alerts

    def _trim(self, item_alerts):
        """Keep at most max_alerts_per_item, dropping acknowledged alerts first, then the oldest."""
        excess = len(item_alerts) - self.max_alerts_per_item
        if excess <= 0:
            return
        acknowledged = [a for a in item_alerts if a.is_acknowledged][:excess]
        for alert in acknowledged:
            item_alerts.remove(alert)
        del item_alerts[:excess - len(acknowledged)]

    def _persist(self, alert):
        if self.repository is None:
            return
        try:
            self.repository.insert_alert(alert)
        except Exception:
            logger.error(f"Failed to save alert {alert.id}", exc_info=True)

    def _dispatch_failed(self, stage, alert, exc):
        error = AlertDispatchError(f"{stage} failed for alert {alert.id}: {exc}")
        error.__cause__ = exc
        logger.error(str(error), exc_info=error)

    # ===== ACKNOWLEDGEMENT =====

    def acknowledge_alert(self, alert_id, user_id):
        """
        Stamp acknowledged_at/by. Repeat calls keep the first stamp.

        Returns:
            Alert: The acknowledged alert

        Raises:
            AlertNotFoundError: If the alert is unknown in memory and storage
            RepositoryError: If the stamp cannot be persisted
        """
        with self._lock:
            alert = self._find(alert_id)
            if alert is not None and alert.acknowledged_at is None:
                alert.acknowledged_at = self.clock()
                alert.acknowledged_by = user_id
            acknowledged_at = alert.acknowledged_at if alert else self.clock()
            acknowledged_by = alert.acknowledged_by if alert else user_id

        if self.repository is None:
            if alert is None:
                raise AlertNotFoundError(alert_id)
            return alert

        try:
            self.repository.update_alert_acknowledgement(
                alert_id, acknowledged_by, acknowledged_at
            )
        except AlertNotFoundError:
            if alert is None:
                raise
            logger.warning(f"Alert {alert_id} was never persisted; acknowledged in memory only")
            return alert

        if alert is not None:
            return alert
        return self.repository.get_alert(alert_id)

    def _find(self, alert_id):
        for item_alerts in self._alerts.values():
            for alert in item_alerts:
                if alert.id == alert_id:
                    return alert
        return None

    # ===== QUERIES =====

    def get_active_alerts(self, item_id):
        """Unacknowledged alerts for an item, newest first."""
        with self._lock:
            active = [a for a in self._alerts.get(item_id, []) if not a.is_acknowledged]
        return sorted(active, key=attrgetter('created_at'), reverse=True)

    def get_all_active_alerts(self):
        with self._lock:
            active = [
                a for item_alerts in self._alerts.values()
                for a in item_alerts if not a.is_acknowledged
            ]
        return sorted(active, key=attrgetter('created_at'), reverse=True)

    def get_alert_statistics(self):
        """
        Counts over every recorded alert.

        Returns:
            dict: {'total', 'by_severity', 'by_type', 'unacknowledged'}
        """
        stats = {
            'total': 0,
            'by_severity': {severity.value: 0 for severity in AlertSeverity},
            'by_type': {alert_type.value: 0 for alert_type in AlertType},
            'unacknowledged': 0,
        }
        with self._lock:
            for item_alerts in self._alerts.values():
                for alert in item_alerts:
                    stats['total'] += 1
                    stats['by_severity'][alert.severity.value] += 1
                    stats['by_type'][alert.alert_type.value] += 1
                    if not alert.is_acknowledged:
                        stats['unacknowledged'] += 1
        return stats

    def clear_alerts(self):
        with self._lock:
            self._alerts.clear()
