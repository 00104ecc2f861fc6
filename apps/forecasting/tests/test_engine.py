# apps/forecasting/tests/test_engine.py
"""
Tests for ForecastEngine: daily forecasts, method selection, accuracy and reorder suggestions.
"""
from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import Mock

from django.test import SimpleTestCase

from apps.forecasting.engine import (
    ForecastEngine,
    ForecastMethod,
    ReorderUrgency,
    trend_factor,
    weekly_pattern,
)
from apps.inventory.domain import InventoryConfig, Item, Movement, MovementType

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=dt_timezone.utc)
TODAY = date(2024, 3, 15)


def daily_outflow(item_id, quantities):
    """OUT movements, one per day, the last one today."""
    movements = []
    days = len(quantities)
    for offset, quantity in enumerate(quantities):
        performed_at = NOW - timedelta(days=days - 1 - offset, hours=3)
        if not quantity:
            continue
        movements.append(Movement(
            id=f'MOV-{item_id}-{offset}',
            item_id=item_id,
            movement_type=MovementType.OUT,
            quantity=Decimal(quantity),
            unit_cost=Decimal('2'),
            total_cost=Decimal(quantity) * 2,
            performed_at=performed_at,
        ))
    return movements


class ForecastEngineTestCase(SimpleTestCase):

    def setUp(self):
        self.engine = ForecastEngine(InventoryConfig(), clock=lambda: NOW)
        self.item = Item(
            id='ITEM001', name='Lettuce', safety_stock=20, reorder_point=40,
            max_stock=200, lead_time_days=2,
        )


class GenerateForecastTest(ForecastEngineTestCase):

    def test_constant_demand(self):
        movements = daily_outflow('ITEM001', [10] * 90)
        forecasts = self.engine.generate_forecast('ITEM001', self.item, movements, 14)

        self.assertEqual(len(forecasts), 14)
        self.assertEqual([f.period for f in forecasts[:2]], [TODAY, TODAY + timedelta(days=1)])
        self.assertTrue(all(f.predicted_demand == 10 for f in forecasts))
        self.assertTrue(all(f.confidence == 1.0 for f in forecasts))
        self.assertAlmostEqual(forecasts[0].trend_factor, 1.0)
        self.assertEqual(forecasts[0].method, ForecastMethod.EXPONENTIAL_SMOOTHING)
        self.assertEqual(forecasts[0].seasonality_factor, 0.95)

    def test_forecast_bounds(self):
        movements = daily_outflow('ITEM001', [0, 40, 3, 0, 17, 2, 0] * 12)
        forecasts = self.engine.generate_forecast('ITEM001', self.item, movements, 30)

        for forecast in forecasts:
            self.assertIsInstance(forecast.predicted_demand, int)
            self.assertGreaterEqual(forecast.predicted_demand, 0)
            self.assertGreaterEqual(forecast.confidence, 0.0)
            self.assertLessEqual(forecast.confidence, 1.0)

    def test_empty_history(self):
        forecasts = self.engine.generate_forecast('ITEM001', self.item, [], 7)

        self.assertEqual(len(forecasts), 7)
        self.assertTrue(all(f.predicted_demand == 0 for f in forecasts))
        self.assertTrue(all(f.confidence == 0.0 for f in forecasts))

    def test_other_items_and_inflows_ignored(self):
        movements = daily_outflow('ITEM002', [10] * 90) + [
            Movement(
                id='MOV-IN', item_id='ITEM001', movement_type=MovementType.IN,
                quantity=Decimal('500'), unit_cost=Decimal('1'), total_cost=Decimal('500'),
                performed_at=NOW,
            )
        ]
        forecasts = self.engine.generate_forecast('ITEM001', self.item, movements, 3)
        self.assertTrue(all(f.predicted_demand == 0 for f in forecasts))

    def test_forecast_is_cached(self):
        self.assertIsNone(self.engine.get_cached_forecast('ITEM001'))
        forecasts = self.engine.generate_forecast('ITEM001', self.item, [], 3)
        self.assertEqual(self.engine.get_cached_forecast('ITEM001'), forecasts)

    def test_history_window_ends_today(self):
        series, start = self.engine.collect_historical_demand(
            'ITEM001', daily_outflow('ITEM001', [1, 2, 3]), 3,
        )
        self.assertEqual(start, TODAY - timedelta(days=2))
        self.assertEqual(series, [1.0, 2.0, 3.0])


class EstimatorTest(SimpleTestCase):

    def test_weekly_pattern_uses_weekdays(self):
        monday = date(2024, 3, 11)
        pattern = weekly_pattern([7, 0, 0, 0, 0, 0, 0] * 2, monday)
        self.assertEqual(pattern, [7.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])

    def test_weekly_pattern_without_demand(self):
        self.assertEqual(weekly_pattern([0] * 14, date(2024, 3, 11)), [1.0] * 7)

    def test_trend_factor(self):
        self.assertAlmostEqual(trend_factor([1, 2, 3, 4]), 1.4)
        self.assertEqual(trend_factor([5]), 1.0)
        self.assertEqual(trend_factor([0, 0, 0]), 1.0)


class MethodSelectionTest(ForecastEngineTestCase):

    def test_stable_demand_uses_moving_average(self):
        movements = daily_outflow('ITEM001', [10] * 90)
        self.assertEqual(
            self.engine.select_best_forecast_method('ITEM001', movements),
            ForecastMethod.MOVING_AVERAGE,
        )

    def test_weekly_demand_uses_arima(self):
        movements = daily_outflow('ITEM001', [0, 0, 0, 0, 0, 0, 10] * 13)
        self.assertEqual(
            self.engine.select_best_forecast_method('ITEM001', movements),
            ForecastMethod.ARIMA,
        )

    def test_no_history_uses_moving_average(self):
        self.assertEqual(
            self.engine.select_best_forecast_method('ITEM001', []),
            ForecastMethod.MOVING_AVERAGE,
        )


class AccuracyTest(ForecastEngineTestCase):

    def test_accuracy_metrics(self):
        accuracy = self.engine.evaluate_forecast_accuracy([10, 20, 0], [12, 18, 5])

        self.assertEqual(accuracy.mape, 15.0)
        self.assertEqual(accuracy.mae, 3.0)
        self.assertEqual(accuracy.rmse, 3.32)

    def test_mismatched_lengths_give_zeros(self):
        accuracy = self.engine.evaluate_forecast_accuracy([1, 2], [1])
        self.assertEqual((accuracy.mape, accuracy.mae, accuracy.rmse), (0.0, 0.0, 0.0))

    def test_perfect_forecast(self):
        accuracy = self.engine.evaluate_forecast_accuracy([3, 4], [3, 4])
        self.assertEqual(accuracy.mape, 0.0)
        self.assertEqual(accuracy.rmse, 0.0)


class ReorderSuggestionTest(ForecastEngineTestCase):

    def make_item(self, item_id, quantity):
        return Item(
            id=item_id, name=item_id, safety_stock=20, reorder_point=40, max_stock=500,
            lead_time_days=2, total_quantity=quantity, weighted_average_cost=2,
            average_daily_cost=10,
        )

    def history(self, *item_ids):
        movements = []
        for item_id in item_ids:
            movements.extend(daily_outflow(item_id, [10] * 90))
        return movements

    def test_suggestions_sorted_by_urgency(self):
        items = [self.make_item('LOW', 35), self.make_item('CRIT', 5), self.make_item('MED', 25)]

        suggestions = self.engine.generate_reorder_suggestions(
            items, self.history('LOW', 'CRIT', 'MED'),
        )

        self.assertEqual([s.item_id for s in suggestions], ['CRIT', 'MED', 'LOW'])
        self.assertEqual(
            [s.urgency for s in suggestions],
            [ReorderUrgency.CRITICAL, ReorderUrgency.MEDIUM, ReorderUrgency.LOW],
        )

    def test_critical_suggestion_details(self):
        suggestion = self.engine.generate_reorder_suggestions(
            [self.make_item('CRIT', 5)], self.history('CRIT'),
        )[0]

        self.assertEqual(suggestion.suggested_quantity, 955)
        self.assertEqual(suggestion.estimated_cost, 1910.0)
        self.assertEqual(suggestion.suggested_date, TODAY)
        self.assertEqual(suggestion.lead_time, 2)
        self.assertEqual(suggestion.safety_stock_buffer, 20.0)
        self.assertEqual(
            suggestion.reason,
            '35 units short of covering expected lead-time demand (20).',
        )

    def test_metrics_supply_order_quantity(self):
        metrics = {'CRIT': Mock(optimal_order_quantity=10)}
        suggestion = self.engine.generate_reorder_suggestions(
            [self.make_item('CRIT', 5)], self.history('CRIT'), metrics,
        )[0]
        self.assertEqual(suggestion.suggested_quantity, 55)
        self.assertEqual(suggestion.estimated_cost, 110.0)

    def test_suggested_date_leaves_lead_time(self):
        suggestion = self.engine.generate_reorder_suggestions(
            [self.make_item('LOW', 35)], self.history('LOW'),
        )[0]
        self.assertEqual(suggestion.suggested_date, TODAY + timedelta(days=1))

    def test_well_stocked_item_not_suggested(self):
        suggestions = self.engine.generate_reorder_suggestions(
            [self.make_item('FULL', 100)], self.history('FULL'),
        )
        self.assertEqual(suggestions, [])

    def test_no_demand_history_orders_today(self):
        suggestion = self.engine.generate_reorder_suggestions([self.make_item('NEW', 10)], [])[0]

        self.assertEqual(suggestion.urgency, ReorderUrgency.CRITICAL)
        self.assertEqual(suggestion.suggested_date, TODAY)

    def test_exhausted_stock_reason(self):
        suggestion = self.engine.generate_reorder_suggestions([self.make_item('OUT', 0)], [])[0]
        self.assertEqual(suggestion.reason, 'Stock is exhausted.')

    def test_urgency_rules(self):
        urgency = ForecastEngine.calculate_urgency
        self.assertEqual(urgency(10, 20, 5, 2), ReorderUrgency.CRITICAL)
        self.assertEqual(urgency(30, 20, 2, 2), ReorderUrgency.HIGH)
        self.assertEqual(urgency(30, 20, 3, 2), ReorderUrgency.MEDIUM)
        self.assertEqual(urgency(30, 20, 3.5, 2), ReorderUrgency.LOW)
