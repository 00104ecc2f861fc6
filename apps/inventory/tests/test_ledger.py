# apps/inventory/tests/test_ledger.py
"""
Tests for FIFOLedger: receipt, FIFO withdrawal, adjustment, costing and metrics.
"""
import re
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.test import SimpleTestCase

from apps.inventory.domain import Item, MovementType
from apps.inventory.exceptions import (
    InsufficientStockError,
    LotNotFoundError,
    NoStockAvailableError,
    ValidationError,
)
from apps.inventory.ledger import (
    DEFAULT_ORDER_QUANTITY,
    FIFOLedger,
    LedgerStore,
    economic_order_quantity,
    generate_batch_number,
    turnover_rate,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=dt_timezone.utc)


class LedgerTestCase(SimpleTestCase):
    """Base test case with a ledger on a fixed clock."""

    def setUp(self):
        self.now = NOW
        self.ledger = FIFOLedger(clock=lambda: self.now)
        self.item = Item(
            id='ITEM001', name='Chicken Breast', category='protein', unit='kg',
            safety_stock=20, reorder_point=40, max_stock=100, lead_time_days=2,
        )
        self.ledger.register_item(self.item)


class AddStockTest(LedgerTestCase):

    def test_add_creates_lot_and_in_movement(self):
        lot = self.ledger.add_stock('ITEM001', 50, 5000)

        self.assertEqual(lot.quantity, Decimal('50'))
        self.assertEqual(lot.remaining_quantity, Decimal('50'))
        self.assertEqual(lot.purchase_date, NOW)
        self.assertEqual(lot.warehouse_id, 'DEFAULT')
        self.assertEqual(lot.item_name, 'Chicken Breast')

        movements = self.ledger.get_movements('ITEM001')
        self.assertEqual(len(movements), 1)
        self.assertEqual(movements[0].movement_type, MovementType.IN)
        self.assertEqual(movements[0].total_cost, Decimal('250000'))
        self.assertEqual(movements[0].reference_id, lot.batch_number)

    def test_add_updates_item_totals(self):
        self.ledger.add_stock('ITEM001', 50, 5000)
        self.ledger.add_stock('ITEM001', 100, 5500)

        self.assertEqual(self.item.total_quantity, Decimal('150'))
        self.assertEqual(self.item.total_value, Decimal('800000'))

    def test_generated_batch_number_format(self):
        lot = self.ledger.add_stock('ITEM001', 10, 1)
        self.assertRegex(lot.batch_number, r'^240315-[0-9A-Z]{4}$')
        self.assertTrue(re.match(r'^\d{6}-[0-9A-Z]{4}$', generate_batch_number()))

    def test_explicit_batch_number_kept(self):
        lot = self.ledger.add_stock('ITEM001', 10, 1, batch_number='B-42')
        self.assertEqual(lot.batch_number, 'B-42')

    def test_zero_quantity_accepted(self):
        lot = self.ledger.add_stock('ITEM001', 0, 10)
        self.assertFalse(lot.is_active)
        self.assertEqual(self.ledger.get_stock('ITEM001'), [])

    def test_negative_quantity_raises(self):
        with self.assertRaises(ValidationError):
            self.ledger.add_stock('ITEM001', -1, 10)

    def test_negative_unit_cost_raises(self):
        with self.assertRaises(ValidationError):
            self.ledger.add_stock('ITEM001', 1, -10)

    def test_lots_kept_in_purchase_date_order(self):
        late = self.ledger.add_stock('ITEM001', 10, 1, purchase_date=NOW - timedelta(days=1))
        early = self.ledger.add_stock('ITEM001', 10, 1, purchase_date=NOW - timedelta(days=5))

        ids = [lot.id for lot in self.ledger.get_stock('ITEM001')]
        self.assertEqual(ids, [early.id, late.id])

    def test_equal_purchase_dates_keep_receipt_order(self):
        day = NOW - timedelta(days=1)
        first = self.ledger.add_stock('ITEM001', 10, 1, purchase_date=day)
        second = self.ledger.add_stock('ITEM001', 10, 2, purchase_date=day)

        ids = [lot.id for lot in self.ledger.get_stock('ITEM001')]
        self.assertEqual(ids, [first.id, second.id])


class RemoveStockTest(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.lot1 = self.ledger.add_stock(
            'ITEM001', 50, 5000, purchase_date=datetime(2024, 1, 1, tzinfo=dt_timezone.utc),
        )
        self.lot2 = self.ledger.add_stock(
            'ITEM001', 30, 5500, purchase_date=datetime(2024, 1, 2, tzinfo=dt_timezone.utc),
        )

    def test_remove_consumes_oldest_lot_first(self):
        result = self.ledger.remove_stock('ITEM001', 60, reason='Sale')

        self.assertEqual(result.total_cost, Decimal('305000'))
        self.assertEqual(result.affected_lots, [self.lot1.id, self.lot2.id])
        self.assertEqual([m.quantity for m in result.movements], [Decimal('50'), Decimal('10')])
        self.assertTrue(all(m.movement_type == MovementType.OUT for m in result.movements))
        self.assertEqual(len(result.remaining_lots), 1)
        self.assertEqual(result.remaining_lots[0].id, self.lot2.id)
        self.assertEqual(result.remaining_lots[0].remaining_quantity, Decimal('20'))

    def test_withdrawal_average_cost(self):
        result = self.ledger.remove_stock('ITEM001', 60)
        self.assertEqual(result.weighted_average_cost, Decimal('305000') / Decimal('60'))

    def test_quantity_is_conserved(self):
        self.ledger.remove_stock('ITEM001', 35)
        self.ledger.remove_stock('ITEM001', 15)

        received = sum(lot.quantity for lot in [self.lot1, self.lot2])
        removed = sum(
            m.quantity for m in self.ledger.get_movements('ITEM001')
            if m.movement_type == MovementType.OUT
        )
        self.assertEqual(self.ledger.get_total_quantity('ITEM001'), received - removed)
        self.assertEqual(self.item.total_quantity, Decimal('30'))

    def test_updated_lots_reported(self):
        result = self.ledger.remove_stock('ITEM001', 10)
        self.assertEqual(len(result.updated_lots), 1)
        self.assertEqual(result.updated_lots[0].remaining_quantity, Decimal('40'))

    def test_insufficient_stock_raises_without_mutation(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            self.ledger.remove_stock('ITEM001', 100)

        self.assertEqual(ctx.exception.requested, Decimal('100'))
        self.assertEqual(ctx.exception.available, Decimal('80'))
        self.assertEqual(self.ledger.get_total_quantity('ITEM001'), Decimal('80'))
        self.assertEqual(len(self.ledger.get_movements('ITEM001')), 2)

    def test_no_stock_raises(self):
        self.ledger.remove_stock('ITEM001', 80)
        with self.assertRaises(NoStockAvailableError):
            self.ledger.remove_stock('ITEM001', 1)

    def test_unknown_item_has_no_stock(self):
        with self.assertRaises(NoStockAvailableError):
            self.ledger.remove_stock('MISSING', 1)

    def test_non_positive_quantity_raises(self):
        with self.assertRaises(ValidationError):
            self.ledger.remove_stock('ITEM001', 0)


class AdjustStockTest(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.lot = self.ledger.add_stock('ITEM001', 50, 10)

    def test_adjust_down_records_absolute_difference(self):
        movement = self.ledger.adjust_stock('ITEM001', self.lot.id, 42, 'Cycle count')

        self.assertEqual(movement.movement_type, MovementType.ADJUSTMENT)
        self.assertEqual(movement.quantity, Decimal('8'))
        self.assertEqual(movement.total_cost, Decimal('80'))
        self.assertEqual(movement.notes, 'Stock decreased')
        self.assertEqual(self.ledger.get_lot('ITEM001', self.lot.id).remaining_quantity, Decimal('42'))
        self.assertEqual(self.item.total_quantity, Decimal('42'))

    def test_adjust_above_original_lifts_lot_quantity(self):
        movement = self.ledger.adjust_stock('ITEM001', self.lot.id, 60, 'Found stock')

        lot = self.ledger.get_lot('ITEM001', self.lot.id)
        self.assertEqual(movement.notes, 'Stock increased')
        self.assertEqual(lot.quantity, Decimal('60'))
        self.assertEqual(lot.remaining_quantity, Decimal('60'))

    def test_adjust_to_zero_depletes_lot(self):
        self.ledger.adjust_stock('ITEM001', self.lot.id, 0, 'Spoiled')
        self.assertEqual(self.ledger.get_stock('ITEM001'), [])

    def test_unknown_lot_raises(self):
        with self.assertRaises(LotNotFoundError):
            self.ledger.adjust_stock('ITEM001', 'LOT-NOPE', 5, 'Count')

    def test_negative_quantity_raises(self):
        with self.assertRaises(ValidationError):
            self.ledger.adjust_stock('ITEM001', self.lot.id, -1, 'Count')


class CostingTest(LedgerTestCase):

    def test_weighted_average_cost(self):
        self.ledger.add_stock('ITEM001', 50, 5000)
        self.ledger.add_stock('ITEM001', 100, 5500)

        wac = self.ledger.calculate_weighted_average_cost('ITEM001')
        self.assertEqual(wac.quantize(Decimal('0.01')), Decimal('5333.33'))

    def test_weighted_average_cost_without_stock_is_zero(self):
        self.assertEqual(self.ledger.calculate_weighted_average_cost('ITEM001'), Decimal('0'))

    def test_turnover_rate(self):
        self.ledger.add_stock('ITEM001', 100, 10)
        self.ledger.remove_stock('ITEM001', 50)

        self.assertEqual(self.ledger.calculate_turnover_rate('ITEM001'), 2.0)
        self.assertEqual(self.ledger.calculate_turnover_rate('ITEM001', 30), 24.33)

    def test_turnover_rate_without_stock_is_zero(self):
        self.ledger.add_stock('ITEM001', 10, 10)
        self.ledger.remove_stock('ITEM001', 10)
        self.assertEqual(self.ledger.calculate_turnover_rate('ITEM001'), 0.0)

    def test_turnover_rate_rejects_non_positive_period(self):
        with self.assertRaises(ValidationError):
            self.ledger.calculate_turnover_rate('ITEM001', 0)
        with self.assertRaises(ValidationError):
            turnover_rate(10, 10, -5)

    def test_turnover_ignores_movements_outside_window(self):
        self.ledger.add_stock('ITEM001', 100, 10)
        self.ledger.remove_stock('ITEM001', 50)
        self.now = NOW + timedelta(days=40)

        self.assertEqual(self.ledger.calculate_turnover_rate('ITEM001', 30), 0.0)

    def test_economic_order_quantity(self):
        self.assertEqual(economic_order_quantity(100, 10), 71)
        self.assertEqual(economic_order_quantity(100, 0), DEFAULT_ORDER_QUANTITY)


class MetricsTest(LedgerTestCase):

    def test_calculate_metrics(self):
        self.ledger.add_stock('ITEM001', 100, 10)
        self.ledger.remove_stock('ITEM001', 50)

        metrics = self.ledger.calculate_metrics('ITEM001')

        self.assertEqual(metrics.turnover_rate, 2.0)
        self.assertEqual(metrics.average_age, 0.0)
        self.assertEqual(metrics.stockout_risk, 0.0)
        self.assertEqual(metrics.excess_stock, Decimal('0'))
        self.assertEqual(metrics.optimal_order_quantity, 71)
        self.assertEqual(metrics.cost_of_goods_sold, Decimal('500'))
        self.assertEqual(metrics.average_inventory_value, Decimal('500'))

    def test_stockout_risk_and_excess(self):
        self.ledger.add_stock('ITEM001', 5, 10)
        self.assertEqual(self.ledger.calculate_metrics('ITEM001').stockout_risk, 0.75)

        self.ledger.add_stock('ITEM001', 115, 10)
        self.assertEqual(self.ledger.calculate_metrics('ITEM001').excess_stock, Decimal('20'))

    def test_average_age_weighted_by_remaining(self):
        self.ledger.add_stock('ITEM001', 10, 1, purchase_date=NOW - timedelta(days=10))
        self.ledger.add_stock('ITEM001', 30, 1, purchase_date=NOW - timedelta(days=2))

        self.assertEqual(self.ledger.calculate_metrics('ITEM001').average_age, 4.0)

    def test_average_daily_cost_tracks_trailing_usage(self):
        self.ledger.add_stock('ITEM001', 100, 10)
        self.ledger.remove_stock('ITEM001', 60)
        self.assertEqual(self.item.average_daily_cost, Decimal('2'))


class ExpiringLotsTest(LedgerTestCase):

    def test_expiring_lots_sorted_and_filtered(self):
        soon = self.ledger.add_stock('ITEM001', 10, 1, expiry_date=NOW + timedelta(days=2))
        self.ledger.add_stock('ITEM001', 10, 1, expiry_date=NOW + timedelta(days=10))
        expired = self.ledger.add_stock('ITEM001', 10, 1, expiry_date=NOW - timedelta(days=1))
        self.ledger.add_stock('ITEM001', 10, 1)

        ids = [lot.id for lot in self.ledger.get_expiring_lots(7)]
        self.assertEqual(ids, [expired.id, soon.id])

    def test_depleted_lots_excluded(self):
        lot = self.ledger.add_stock('ITEM001', 10, 1, expiry_date=NOW + timedelta(days=1))
        self.ledger.adjust_stock('ITEM001', lot.id, 0, 'Spoiled')
        self.assertEqual(self.ledger.get_expiring_lots(7), [])

    def test_item_filter(self):
        other = Item(id='ITEM002', name='Milk', safety_stock=1, reorder_point=2, max_stock=3)
        self.ledger.register_item(other)
        self.ledger.add_stock('ITEM002', 1, 1, expiry_date=NOW + timedelta(days=1))

        self.assertEqual(self.ledger.get_expiring_lots(7, item_id='ITEM001'), [])
        self.assertEqual(len(self.ledger.get_expiring_lots(7)), 1)


class LedgerStoreTest(SimpleTestCase):

    def test_ledgers_share_state_only_through_store(self):
        store = LedgerStore()
        a = FIFOLedger(store=store)
        b = FIFOLedger(store=store)
        c = FIFOLedger()

        a.add_stock('ITEM001', 5, 1)

        self.assertEqual(b.get_total_quantity('ITEM001'), Decimal('5'))
        self.assertEqual(c.get_total_quantity('ITEM001'), Decimal('0'))
