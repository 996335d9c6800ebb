"""
Monthly revenue forecast.

Holt's linear exponential smoothing over the won-revenue series, projected
`forecast_months` ahead. With fewer than `min_history_months` points there is
nothing to smooth, so the last known month (or `default_monthly_revenue`) is
carried forward flat. That fallback is a placeholder, not a forecast, and is
reported as method='flat', confidence='low'.

Both paths multiply projected months by a small random jitter so dashboard
charts are not perfectly straight. The jitter carries no statistical meaning.
Set `fallback_jitter` / `forecast_jitter` to 0, or pass a seeded generator,
for reproducible output.
"""

import re
import logging

import numpy as np
import pandas as pd

from .config import resolve_assumptions
from .helpers import get_monthly_revenue, resolve_as_of

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r'^\s*([+-]?\d+)')


def parse_forecast_months(period):
    """'6-months' -> 6. Unparsable or negative input means 0 months."""
    if isinstance(period, (int, np.integer)):
        return max(0, int(period))
    match = _PERIOD_RE.match(str(period)) if period is not None else None
    if not match:
        return 0
    return max(0, int(match.group(1)))


def _jitter(rng, width, size):
    if width <= 0 or size == 0:
        return np.ones(size)
    return 1.0 + rng.uniform(-width, width, size)


def _month_label(period):
    return period.strftime('%b %Y')


def holt_smoothing(revenues, alpha, beta):
    """Return the final (level, trend) after smoothing the whole series."""
    level = float(revenues[0])
    trend = 0.0
    for value in revenues[1:]:
        prev_level = level
        level = alpha * value + (1 - alpha) * (level + trend)
        trend = beta * (level - prev_level) + (1 - beta) * trend
    return level, trend


def build_revenue_forecast(monthly_revenue, forecast_months, rng=None, assumptions=None, as_of=None):
    cfg = resolve_assumptions(assumptions)
    rng = np.random.default_rng(rng)
    horizon = parse_forecast_months(forecast_months)

    history = list(monthly_revenue or [])
    revenues = [float(p['revenue']) for p in history]
    n = len(revenues)

    if history:
        last_period = pd.Period(history[-1]['month'], freq='M')
    else:
        last_period = resolve_as_of(as_of).to_period('M')

    if n < cfg['min_history_months']:
        level = revenues[-1] if revenues else float(cfg['default_monthly_revenue'])
        trend = 0.0
        projected = np.full(horizon, level) * _jitter(rng, cfg['fallback_jitter'], horizon)
        method, confidence = 'flat', 'low'
        logger.info(f"Only {n} months of revenue history; using flat fallback at {level:,.0f}/month")
    else:
        level, trend = holt_smoothing(revenues, cfg['smoothing_alpha'], cfg['smoothing_beta'])
        steps = np.arange(1, horizon + 1)
        projected = np.maximum(0.0, level + trend * steps) * _jitter(rng, cfg['forecast_jitter'], horizon)
        method = 'holt'
        confidence = 'high' if n >= 12 else 'medium'

    points = [
        {'month': _month_label(pd.Period(p['month'], freq='M')), 'historical': float(p['revenue']), 'predicted': None}
        for p in history
    ]
    for i, value in enumerate(projected, start=1):
        points.append({
            'month': _month_label(last_period + i),
            'historical': None,
            'predicted': round(float(value), 2),
        })

    return {
        'points': points,
        'method': method,
        'confidence': confidence,
        'sample_size': n,
        'level': level,
        'trend': trend,
    }


def generate_revenue_forecast(opportunities, period, rng=None, assumptions=None, as_of=None):
    """Chart series: historical months followed by predicted months."""
    monthly = get_monthly_revenue(opportunities)
    forecast = build_revenue_forecast(monthly, period, rng=rng, assumptions=assumptions, as_of=as_of)
    return forecast['points']


def predict_revenue_advanced(monthly_revenue, forecast_months, rng=None, assumptions=None, as_of=None):
    """Total predicted revenue over the horizon."""
    forecast = build_revenue_forecast(monthly_revenue, forecast_months, rng=rng, assumptions=assumptions, as_of=as_of)
    return float(sum(p['predicted'] for p in forecast['points'] if p['predicted'] is not None))
