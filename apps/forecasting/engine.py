# apps/forecasting/engine.py
"""
Demand forecasting and reorder suggestions.

ForecastEngine is handed item snapshots and movement history and returns
pure computations; it never touches the ledger or the database.

Forecast per future day:
    predicted = 0.3 * MA7 + 0.5 * ES(alpha=0.3) + 0.2 * seasonal
    seasonal  = MA7 * weekday factor (or MA7 when seasonality is disabled)

Reorder suggestion per item, forecasting lead_time_days + 7 days ahead:
    lead_time_demand = sum of the first lead_time_days forecasts
    required_stock   = lead_time_demand + safety_stock
    suggest when current_stock <= required_stock
"""
import logging
import math
import threading
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List

from django.utils import timezone

from apps.inventory.domain import InventoryConfig, MovementType, round2
from apps.inventory.ledger import economic_order_quantity

logger = logging.getLogger(__name__)

MOVING_AVERAGE_WINDOW = 7
SMOOTHING_ALPHA = 0.3
REORDER_BUFFER_DAYS = 7
METHOD_SELECTION_DAYS = 90
SEASONALITY_LAG = 7

# Jan .. Dec
MONTHLY_SEASONALITY = [0.9, 0.85, 0.95, 1.0, 1.1, 1.2, 1.3, 1.25, 1.1, 1.0, 0.95, 1.05]


class ForecastMethod(str, Enum):
    MOVING_AVERAGE = 'MOVING_AVERAGE'
    EXPONENTIAL_SMOOTHING = 'EXPONENTIAL_SMOOTHING'
    ARIMA = 'ARIMA'
    ML = 'ML'


class ReorderUrgency(str, Enum):
    CRITICAL = 'CRITICAL'
    HIGH = 'HIGH'
    MEDIUM = 'MEDIUM'
    LOW = 'LOW'


URGENCY_ORDER = {
    ReorderUrgency.CRITICAL: 0,
    ReorderUrgency.HIGH: 1,
    ReorderUrgency.MEDIUM: 2,
    ReorderUrgency.LOW: 3,
}


@dataclass
class DemandForecast:
    item_id: str
    period: date
    predicted_demand: int
    confidence: float
    seasonality_factor: float
    trend_factor: float
    method: ForecastMethod


@dataclass
class ReorderSuggestion:
    item_id: str
    suggested_quantity: int
    suggested_date: date
    estimated_cost: float
    reason: str
    urgency: ReorderUrgency
    lead_time: int
    safety_stock_buffer: float


@dataclass(frozen=True)
class ForecastAccuracy:
    mape: float  # percent
    mae: float
    rmse: float


def _round_half_up(value):
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _mean(values):
    return sum(values) / len(values) if values else 0.0


def _std_dev(values):
    if not values:
        return 0.0
    mean = _mean(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


# ─── Estimators ─────────────────────────────────────────────────────────────────

def moving_average(demand, window=MOVING_AVERAGE_WINDOW):
    """Mean of the last `window` values (of all values when shorter)."""
    if not demand:
        return 0.0
    recent = demand[-window:]
    return sum(recent) / len(recent)


def exponential_smoothing(demand, alpha=SMOOTHING_ALPHA):
    """f_t = alpha * d_t + (1 - alpha) * f_(t-1), seeded with the first value."""
    if not demand:
        return 0.0
    forecast = demand[0]
    for value in demand[1:]:
        forecast = alpha * value + (1 - alpha) * forecast
    return forecast


def weekly_pattern(demand, start):
    """
    Mean demand per weekday divided by the overall mean.

    Args:
        demand: Daily series
        start: Date of demand[0]

    Returns:
        list: Seven factors indexed by date.weekday(), 1.0 when the mean is 0
    """
    totals = [0.0] * 7
    counts = [0] * 7
    for offset, value in enumerate(demand):
        weekday = (start + timedelta(days=offset)).weekday()
        totals[weekday] += value
        counts[weekday] += 1

    average = _mean(demand)
    if average <= 0:
        return [1.0] * 7
    return [
        (totals[day] / counts[day] if counts[day] else average) / average
        for day in range(7)
    ]


def trend_factor(demand):
    """1 + OLS slope / mean, 1.0 for fewer than 2 points or a zero mean."""
    n = len(demand)
    if n < 2:
        return 1.0

    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for x, y in enumerate(demand):
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_x2 += x * x

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    average = sum_y / n
    return 1 + slope / average if average > 0 else 1.0


def forecast_confidence(demand):
    """clamp(1 - CV) rounded to 2 decimals; 0 with no history, CV = 1 when the mean is 0."""
    if not demand:
        return 0.0
    average = _mean(demand)
    cv = _std_dev(demand) / average if average > 0 else 1.0
    return round2(max(0.0, min(1.0, 1 - cv)))


def coefficient_of_variation(demand):
    average = _mean(demand)
    return _std_dev(demand) / average if average > 0 else 0.0


def autocorrelation(demand, lag):
    if len(demand) <= lag:
        return 0.0
    average = _mean(demand)
    numerator = sum(
        (demand[i] - average) * (demand[i + lag] - average)
        for i in range(len(demand) - lag)
    )
    denominator = sum((v - average) ** 2 for v in demand)
    return numerator / denominator if denominator > 0 else 0.0


def seasonality_score(demand):
    """|lag-7 autocorrelation|, 0 with fewer than two weeks of data."""
    if len(demand) < 2 * SEASONALITY_LAG:
        return 0.0
    return abs(autocorrelation(demand, SEASONALITY_LAG))


def seasonality_factor(day):
    return MONTHLY_SEASONALITY[day.month - 1]


def evaluate_forecast_accuracy(actual, forecast) -> ForecastAccuracy:
    """
    MAPE (percent, over points where actual > 0), MAE and RMSE.

    Mismatched or empty inputs give all zeros.
    """
    if len(actual) != len(forecast) or not actual:
        return ForecastAccuracy(mape=0.0, mae=0.0, rmse=0.0)

    sum_ape = sum_ae = sum_se = 0.0
    valid = 0
    for a, f in zip(actual, forecast):
        error = a - f
        sum_ae += abs(error)
        sum_se += error * error
        if a > 0:
            sum_ape += abs(error / a)
            valid += 1

    n = len(actual)
    mape = (sum_ape / valid) * 100 if valid else 0.0
    return ForecastAccuracy(
        mape=round2(mape),
        mae=round2(sum_ae / n),
        rmse=round2(math.sqrt(sum_se / n)),
    )


# ─── Engine ─────────────────────────────────────────────────────────────────────

class ForecastEngine:
    """
    Demand forecasting and reorder suggestion engine.

    Usage:
        engine = ForecastEngine(config)
        forecasts = engine.generate_forecast('ITEM001', item, movements, 30)
        suggestions = engine.generate_reorder_suggestions(items, movements)
        method = engine.select_best_forecast_method('ITEM001', movements)
    """

    def __init__(self, config=None, clock=None):
        self.config = config or InventoryConfig.from_settings()
        self.clock = clock or timezone.now
        self._forecasts = {}
        self._lock = threading.Lock()

    def today(self):
        now = self.clock()
        if timezone.is_aware(now):
            return timezone.localtime(now).date()
        return now.date()

    # ===== HISTORY =====

    def collect_historical_demand(self, item_id, movements, period_days):
        """
        Daily OUT quantity for the `period_days` days ending today.

        Returns:
            tuple: (series, start_date), series[0] being start_date
        """
        today = self.today()
        start = today - timedelta(days=period_days - 1)
        daily = {}

        for m in movements:
            if m.item_id != item_id or m.movement_type != MovementType.OUT:
                continue
            performed_at = m.performed_at
            if timezone.is_aware(performed_at):
                performed_at = timezone.localtime(performed_at)
            day = performed_at.date()
            if start <= day <= today:
                daily[day] = daily.get(day, 0.0) + float(m.quantity)

        series = [
            daily.get(start + timedelta(days=offset), 0.0)
            for offset in range(max(period_days, 0))
        ]
        return series, start

    # ===== FORECASTING =====

    def generate_forecast(self, item_id, item, movements, forecast_days=30) -> List[DemandForecast]:
        """
        Forecast daily demand for the next `forecast_days` days, starting today.

        The item snapshot is accepted for symmetry with reorder analysis;
        only the movement history drives the estimate.
        """
        forecast_settings = self.config.forecast_settings
        demand, start = self.collect_historical_demand(
            item_id, movements, forecast_settings.historical_periods
        )

        ma = moving_average(demand)
        es = exponential_smoothing(demand)
        pattern = weekly_pattern(demand, start) if forecast_settings.seasonality_enabled else None
        confidence = forecast_confidence(demand)
        trend = trend_factor(demand)
        today = self.today()

        forecasts = []
        for offset in range(forecast_days):
            period = today + timedelta(days=offset)
            seasonal = ma * pattern[period.weekday()] if pattern else ma
            predicted = ma * 0.3 + es * 0.5 + seasonal * 0.2

            forecasts.append(DemandForecast(
                item_id=item_id,
                period=period,
                predicted_demand=max(0, _round_half_up(predicted)),
                confidence=confidence,
                seasonality_factor=seasonality_factor(period),
                trend_factor=trend,
                method=ForecastMethod.EXPONENTIAL_SMOOTHING,
            ))

        if forecasts and confidence < forecast_settings.confidence_threshold:
            logger.debug(
                f"Low confidence forecast for {item_id}: {confidence} "
                f"< {forecast_settings.confidence_threshold}"
            )

        with self._lock:
            self._forecasts[item_id] = forecasts
        return forecasts

    def get_cached_forecast(self, item_id):
        """Most recent forecast generated for the item, or None."""
        with self._lock:
            return self._forecasts.get(item_id)

    def select_best_forecast_method(self, item_id, movements) -> ForecastMethod:
        """
        Label the demand pattern of the last 90 days.

        Stable (CV < 0.2, |trend - 1| < 0.1) -> MOVING_AVERAGE
        Weekly seasonal (|lag-7 autocorrelation| > 0.3) -> ARIMA
        Trending (|trend - 1| > 0.2) -> EXPONENTIAL_SMOOTHING
        Anything else -> ML
        """
        demand, _ = self.collect_historical_demand(item_id, movements, METHOD_SELECTION_DAYS)
        cv = coefficient_of_variation(demand)
        trend = trend_factor(demand)

        if cv < 0.2 and abs(trend - 1) < 0.1:
            return ForecastMethod.MOVING_AVERAGE
        if seasonality_score(demand) > 0.3:
            return ForecastMethod.ARIMA
        if abs(trend - 1) > 0.2:
            return ForecastMethod.EXPONENTIAL_SMOOTHING
        return ForecastMethod.ML

    def evaluate_forecast_accuracy(self, actual, forecast) -> ForecastAccuracy:
        return evaluate_forecast_accuracy(actual, forecast)

    # ===== REORDER =====

    def generate_reorder_suggestions(self, items, movements, metrics=None) -> List[ReorderSuggestion]:
        """
        Suggest reorders, most urgent first.

        Args:
            items: Item snapshots (total_quantity and WAC are read from them)
            movements: Movement history for all items
            metrics: Optional mapping of item id to InventoryMetrics supplying EOQ
        """
        metrics = metrics or {}
        by_item = {}
        for m in movements:
            by_item.setdefault(m.item_id, []).append(m)

        suggestions = []
        for item in items:
            forecasts = self.generate_forecast(
                item.id,
                item,
                by_item.get(item.id, []),
                item.lead_time_days + REORDER_BUFFER_DAYS,
            )
            suggestion = self.analyze_reorder_need(item, forecasts, metrics.get(item.id))
            if suggestion:
                suggestions.append(suggestion)

        suggestions.sort(key=lambda s: URGENCY_ORDER[s.urgency])
        return suggestions

    def analyze_reorder_need(self, item, forecasts, metrics=None):
        current_stock = float(item.total_quantity)
        safety_stock = float(item.safety_stock)
        lead_time = item.lead_time_days

        lead_time_demand = sum(f.predicted_demand for f in forecasts[:lead_time])
        required_stock = lead_time_demand + safety_stock
        if current_stock > required_stock:
            return None

        if metrics is not None:
            eoq = metrics.optimal_order_quantity
        else:
            annual_demand = float(item.average_daily_cost) * 365
            eoq = economic_order_quantity(annual_demand, item.weighted_average_cost)

        suggested_quantity = _round_half_up(
            max(eoq, required_stock - current_stock + safety_stock)
        )
        estimated_cost = round2(suggested_quantity * float(item.weighted_average_cost))

        daily_demand = lead_time_demand / lead_time if lead_time > 0 else 0.0
        days_of_stock = current_stock / daily_demand if daily_demand > 0 else math.inf

        suggested_date = self.today()
        if math.isfinite(days_of_stock) and days_of_stock > lead_time:
            suggested_date += timedelta(days=math.floor(days_of_stock - lead_time))

        return ReorderSuggestion(
            item_id=item.id,
            suggested_quantity=suggested_quantity,
            suggested_date=suggested_date,
            estimated_cost=estimated_cost,
            reason=self.reorder_reason(current_stock, required_stock, lead_time_demand),
            urgency=self.calculate_urgency(current_stock, safety_stock, days_of_stock, lead_time),
            lead_time=lead_time,
            safety_stock_buffer=safety_stock,
        )

    @staticmethod
    def calculate_urgency(current_stock, safety_stock, days_of_stock, lead_time):
        if current_stock <= safety_stock:
            return ReorderUrgency.CRITICAL
        if days_of_stock <= lead_time:
            return ReorderUrgency.HIGH
        if days_of_stock <= lead_time * 1.5:
            return ReorderUrgency.MEDIUM
        return ReorderUrgency.LOW

    @staticmethod
    def reorder_reason(current_stock, required_stock, lead_time_demand):
        shortfall = required_stock - current_stock
        if current_stock == 0:
            return "Stock is exhausted."
        if shortfall > 0:
            return (
                f"{_round_half_up(shortfall)} units short of covering expected "
                f"lead-time demand ({_round_half_up(lead_time_demand)})."
            )
        return "Routine order to hold the safety stock level."
