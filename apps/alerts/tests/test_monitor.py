# apps/alerts/tests/test_monitor.py
"""
Tests for AlertMonitor: the four checks, publishing and acknowledgement.
"""
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import Mock

from django.core import mail
from django.test import SimpleTestCase

from apps.alerts.dispatch import (
    EmailAlertDispatcher,
    LoggingAlertDispatcher,
    get_critical_alert_dispatcher,
)
from apps.alerts.domain import Alert, AlertSeverity, AlertType
from apps.alerts.monitor import AlertMonitor, calculate_expiry_severity, calculate_severity
from apps.inventory.domain import InventoryConfig, Item
from apps.inventory.exceptions import AlertNotFoundError, RepositoryError
from apps.inventory.ledger import FIFOLedger
from apps.inventory.realtime import ALERTS_TOPIC, LocalRealtimeChannel
from apps.inventory.repository import InMemoryInventoryRepository

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=dt_timezone.utc)


class FailingRepository(InMemoryInventoryRepository):

    def insert_alert(self, alert):
        raise RepositoryError('database is down')


class MonitorTestCase(SimpleTestCase):
    """Base test case: one item with safety 50, reorder 80, max 200."""

    def setUp(self):
        self.now = NOW
        self.ledger = FIFOLedger(clock=lambda: self.now)
        self.item = Item(
            id='ITEM001', name='Salmon', unit='kg',
            safety_stock=50, reorder_point=80, max_stock=200, lead_time_days=2,
        )
        self.ledger.register_item(self.item)
        self.config = InventoryConfig()
        self.monitor = AlertMonitor(self.ledger, self.config)

    def stock(self, quantity, **kwargs):
        return self.ledger.add_stock('ITEM001', quantity, 10, **kwargs)


class SeverityTest(SimpleTestCase):

    def test_low_stock_severity_boundaries(self):
        self.assertEqual(calculate_severity(5, 50), AlertSeverity.CRITICAL)
        self.assertEqual(calculate_severity(25, 50), AlertSeverity.WARNING)
        self.assertEqual(calculate_severity(50, 50), AlertSeverity.INFO)

    def test_zero_safety_stock_is_critical(self):
        self.assertEqual(calculate_severity(0, 0), AlertSeverity.CRITICAL)

    def test_expiry_severity_boundaries(self):
        self.assertEqual(calculate_expiry_severity(3), AlertSeverity.CRITICAL)
        self.assertEqual(calculate_expiry_severity(7), AlertSeverity.WARNING)
        self.assertEqual(calculate_expiry_severity(8), AlertSeverity.INFO)


class LowStockTest(MonitorTestCase):

    def test_low_stock_alert(self):
        self.stock(5)
        alert = self.monitor.check_low_stock(self.item)

        self.assertEqual(alert.alert_type, AlertType.LOW_STOCK)
        self.assertEqual(alert.severity, AlertSeverity.CRITICAL)
        self.assertEqual(alert.threshold, 50.0)
        self.assertEqual(alert.current_value, 5.0)
        self.assertEqual(
            alert.message,
            'Salmon is running low. Current: 5kg, safety stock: 50kg',
        )

    def test_no_alert_above_threshold(self):
        self.stock(11)
        self.assertIsNone(self.monitor.check_low_stock(self.item))


class ExpiryTest(MonitorTestCase):

    def test_one_alert_per_expiring_lot(self):
        self.stock(10, expiry_date=NOW + timedelta(days=2), batch_number='240315-AAAA')
        self.stock(10, expiry_date=NOW + timedelta(days=5))
        self.stock(10, expiry_date=NOW + timedelta(days=30))

        alerts = self.monitor.check_expiry(self.item)

        self.assertEqual(len(alerts), 2)
        self.assertEqual(alerts[0].severity, AlertSeverity.CRITICAL)
        self.assertEqual(alerts[0].current_value, 2.0)
        self.assertEqual(alerts[0].threshold, 7.0)
        self.assertEqual(
            alerts[0].message,
            'Salmon (batch 240315-AAAA) expires in 2 days. Quantity: 10kg',
        )
        self.assertEqual(alerts[1].severity, AlertSeverity.WARNING)

    def test_partial_day_rounds_up(self):
        self.stock(10, expiry_date=NOW + timedelta(days=3, hours=1))
        alert = self.monitor.check_expiry(self.item)[0]
        self.assertEqual(alert.current_value, 4.0)
        self.assertEqual(alert.severity, AlertSeverity.WARNING)

    def test_expired_lot_reported(self):
        self.stock(10, expiry_date=NOW - timedelta(days=1))
        alert = self.monitor.check_expiry(self.item)[0]
        self.assertIn('has expired', alert.message)
        self.assertEqual(alert.severity, AlertSeverity.CRITICAL)


class OverstockTest(MonitorTestCase):

    def test_overstock_alert(self):
        self.stock(301)
        alert = self.monitor.check_overstock(self.item)
        self.assertEqual(alert.alert_type, AlertType.OVERSTOCK)
        self.assertEqual(alert.severity, AlertSeverity.WARNING)

    def test_no_alert_at_threshold(self):
        self.stock(300)
        self.assertIsNone(self.monitor.check_overstock(self.item))


class ReorderTest(MonitorTestCase):

    def test_reorder_below_safety_stock_is_critical(self):
        self.stock(40)
        alert = self.monitor.check_reorder_point(self.item)
        self.assertEqual(alert.severity, AlertSeverity.CRITICAL)
        self.assertEqual(alert.threshold, 80.0)
        self.assertIn('lead time: 2 days', alert.message)

    def test_reorder_above_safety_stock_is_warning(self):
        self.stock(70)
        self.assertEqual(self.monitor.check_reorder_point(self.item).severity, AlertSeverity.WARNING)

    def test_lead_time_demand_raises_reorder_point(self):
        self.stock(130)
        self.ledger.remove_stock('ITEM001', 45)
        # 85 on hand, 1.5 a day over 2 days of lead time: effective point 83
        self.assertIsNone(self.monitor.check_reorder_point(self.item))

        self.ledger.remove_stock('ITEM001', 3)
        # 82 on hand, 1.6 a day: effective point 83.2
        alert = self.monitor.check_reorder_point(self.item)
        self.assertEqual(alert.threshold, 83.2)

    def test_no_reorder_above_point(self):
        self.stock(81)
        self.assertIsNone(self.monitor.check_reorder_point(self.item))


class EvaluateTest(MonitorTestCase):

    def test_evaluate_is_side_effect_free(self):
        self.stock(5)
        alerts = self.monitor.evaluate([self.item])

        self.assertEqual(
            sorted(a.alert_type for a in alerts),
            sorted([AlertType.LOW_STOCK, AlertType.REORDER]),
        )
        self.assertEqual(self.monitor.get_active_alerts('ITEM001'), [])

    def test_failing_item_is_skipped(self):
        broken = Mock(id='BROKEN')
        broken.safety_stock = 'not a number'
        self.stock(5)

        alerts = self.monitor.evaluate([broken, self.item])
        self.assertTrue(alerts)
        self.assertTrue(all(a.item_id == 'ITEM001' for a in alerts))


class PublishTest(MonitorTestCase):

    def setUp(self):
        super().setUp()
        self.realtime = LocalRealtimeChannel()
        self.received = []
        self.realtime.subscribe(ALERTS_TOPIC, self.received.append)
        self.dispatcher = Mock()
        self.repository = InMemoryInventoryRepository()
        self.monitor = AlertMonitor(
            self.ledger, self.config, repository=self.repository,
            realtime=self.realtime, dispatcher=self.dispatcher,
        )

    def test_publish_records_persists_and_broadcasts(self):
        self.stock(5)
        alerts = self.monitor.monitor_inventory([self.item])

        self.assertEqual(len(self.monitor.get_active_alerts('ITEM001')), len(alerts))
        self.assertEqual(set(self.repository.alerts), {a.id for a in alerts})
        self.assertEqual(len(self.received), len(alerts))
        self.assertEqual(self.received[0]['event'], 'new-alert')
        self.assertEqual(Alert.from_dict(self.received[0]['alert']).id, alerts[0].id)

    def test_only_critical_alerts_dispatched(self):
        self.stock(70)
        self.monitor.monitor_inventory([self.item])
        self.dispatcher.dispatch.assert_not_called()

        self.ledger.remove_stock('ITEM001', 66)
        self.monitor.monitor_inventory([self.item])
        dispatched = [c.args[0].severity for c in self.dispatcher.dispatch.call_args_list]
        self.assertTrue(dispatched)
        self.assertTrue(all(s == AlertSeverity.CRITICAL for s in dispatched))

    def test_handlers_called_per_type(self):
        handler = Mock()
        self.monitor.register_handler(AlertType.REORDER, handler)
        self.stock(70)

        self.monitor.monitor_inventory([self.item])

        handler.assert_called_once()
        self.assertEqual(handler.call_args.args[0].alert_type, AlertType.REORDER)

    def test_publish_survives_failures(self):
        failing_handler = Mock(side_effect=RuntimeError('handler broke'))
        self.dispatcher.dispatch.side_effect = RuntimeError('smtp down')
        monitor = AlertMonitor(
            self.ledger, self.config, repository=FailingRepository(),
            realtime=self.realtime, dispatcher=self.dispatcher,
            handlers={AlertType.LOW_STOCK: failing_handler},
        )
        self.stock(5)

        with self.assertLogs('apps.alerts.monitor', level='ERROR'):
            alerts = monitor.monitor_inventory([self.item])

        self.assertEqual(len(alerts), 2)
        self.assertEqual(len(self.received), 2)
        self.assertEqual(len(monitor.get_active_alerts('ITEM001')), 2)
        self.assertEqual(self.dispatcher.dispatch.call_count, 2)


class AcknowledgeTest(MonitorTestCase):

    def test_acknowledge_is_idempotent(self):
        self.stock(5)
        alert = self.monitor.monitor_inventory([self.item])[0]

        first = self.monitor.acknowledge_alert(alert.id, 'manager-1')
        self.now = NOW + timedelta(hours=1)
        second = self.monitor.acknowledge_alert(alert.id, 'manager-2')

        self.assertEqual(first.acknowledged_by, 'manager-1')
        self.assertEqual(second.acknowledged_by, 'manager-1')
        self.assertEqual(second.acknowledged_at, NOW)

    def test_acknowledged_alert_leaves_active_list(self):
        self.stock(5)
        alerts = self.monitor.monitor_inventory([self.item])
        self.monitor.acknowledge_alert(alerts[0].id, 'manager-1')

        active_ids = [a.id for a in self.monitor.get_active_alerts('ITEM001')]
        self.assertNotIn(alerts[0].id, active_ids)
        self.assertEqual(len(active_ids), len(alerts) - 1)

    def test_unknown_alert_raises(self):
        with self.assertRaises(AlertNotFoundError):
            self.monitor.acknowledge_alert('ALERT-NOPE', 'manager-1')

    def test_acknowledge_alert_only_in_repository(self):
        repository = InMemoryInventoryRepository()
        publisher = AlertMonitor(self.ledger, self.config, repository=repository)
        self.stock(5)
        alert = publisher.monitor_inventory([self.item])[0]

        fresh = AlertMonitor(self.ledger, self.config, repository=repository)
        acked = fresh.acknowledge_alert(alert.id, 'manager-1')

        self.assertEqual(acked.acknowledged_by, 'manager-1')
        self.assertEqual(repository.get_alert(alert.id).acknowledged_at, NOW)

    def test_alerts_per_item_are_bounded(self):
        repository = InMemoryInventoryRepository()
        monitor = AlertMonitor(
            self.ledger, self.config, repository=repository, max_alerts_per_item=3,
        )
        self.stock(5)

        low1, reorder1 = monitor.monitor_inventory([self.item])
        monitor.acknowledge_alert(low1.id, 'manager-1')
        low2, reorder2 = monitor.monitor_inventory([self.item])
        low3, reorder3 = monitor.monitor_inventory([self.item])

        self.assertEqual(monitor.get_alert_statistics()['total'], 3)
        self.assertEqual(
            {a.id for a in monitor.get_active_alerts('ITEM001')},
            {reorder2.id, low3.id, reorder3.id},
        )
        self.assertEqual(len(repository.alerts), 6)

        acked = monitor.acknowledge_alert(reorder1.id, 'manager-1')
        self.assertEqual(acked.acknowledged_by, 'manager-1')

    def test_unknown_alert_with_repository_raises(self):
        monitor = AlertMonitor(self.ledger, self.config, repository=InMemoryInventoryRepository())
        with self.assertRaises(AlertNotFoundError):
            monitor.acknowledge_alert('ALERT-NOPE', 'manager-1')


class StatisticsTest(MonitorTestCase):

    def test_alert_statistics(self):
        self.stock(5, expiry_date=NOW + timedelta(days=1))
        alerts = self.monitor.monitor_inventory([self.item])
        self.monitor.acknowledge_alert(alerts[0].id, 'manager-1')

        stats = self.monitor.get_alert_statistics()

        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['unacknowledged'], 2)
        self.assertEqual(stats['by_type']['LOW_STOCK'], 1)
        self.assertEqual(stats['by_type']['EXPIRY'], 1)
        self.assertEqual(stats['by_type']['REORDER'], 1)
        self.assertEqual(stats['by_type']['OVERSTOCK'], 0)
        self.assertEqual(stats['by_severity']['CRITICAL'], 3)

    def test_clear_alerts(self):
        self.stock(5)
        self.monitor.monitor_inventory([self.item])
        self.monitor.clear_alerts()
        self.assertEqual(self.monitor.get_alert_statistics()['total'], 0)


class DispatcherTest(MonitorTestCase):

    def setUp(self):
        super().setUp()
        self.stock(5)
        self.alert = self.monitor.check_low_stock(self.item)

    def test_email_dispatcher_sends_multipart_mail(self):
        dispatcher = EmailAlertDispatcher(recipients=['ops@example.com'], from_email='larder@example.com')

        sent = dispatcher.dispatch(self.alert)

        self.assertEqual(sent, 1)
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ['ops@example.com'])
        self.assertEqual(message.subject, '[CRITICAL] LOW_STOCK: ITEM001')
        self.assertIn(self.alert.message, message.body)
        self.assertEqual(message.alternatives[0][1], 'text/html')

    def test_email_dispatcher_without_recipients(self):
        dispatcher = EmailAlertDispatcher(recipients=[])
        with self.assertLogs('apps.alerts.dispatch', level='WARNING'):
            self.assertEqual(dispatcher.dispatch(self.alert), 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_logging_dispatcher(self):
        with self.assertLogs('apps.alerts.dispatch', level='CRITICAL') as logs:
            LoggingAlertDispatcher().dispatch(self.alert)
        self.assertIn('ITEM001', logs.output[0])

    def test_dispatcher_from_path(self):
        dispatcher = get_critical_alert_dispatcher('apps.alerts.dispatch.LoggingAlertDispatcher')
        self.assertIsInstance(dispatcher, LoggingAlertDispatcher)
