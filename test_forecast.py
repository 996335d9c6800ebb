import numpy as np
import pandas as pd
import pytest

from pipeline_predictive.forecast import (
    parse_forecast_months,
    holt_smoothing,
    build_revenue_forecast,
    generate_revenue_forecast,
    predict_revenue_advanced,
)


def _series(values, start='2024-07'):
    months = pd.period_range(start, periods=len(values), freq='M')
    return [{'month': str(m), 'revenue': float(v)} for m, v in zip(months, values)]


@pytest.mark.parametrize('period, expected', [
    ('6-months', 6),
    ('12-months', 12),
    (' 3-months', 3),
    (4, 4),
    ('-2-months', 0),
    ('months', 0),
    (None, 0),
])
def test_parse_forecast_months(period, expected):
    assert parse_forecast_months(period) == expected


def test_holt_smoothing_constant_series():
    level, trend = holt_smoothing([80000.0] * 6, 0.3, 0.1)
    assert level == pytest.approx(80000.0)
    assert trend == pytest.approx(0.0)


class TestFlatFallback:
    def test_short_history_carries_last_month_forward(self, no_jitter):
        result = build_revenue_forecast(_series([1000, 2000], start='2025-04'), 3, assumptions=no_jitter)
        assert result['method'] == 'flat'
        assert result['confidence'] == 'low'
        assert result['sample_size'] == 2
        predicted = [p for p in result['points'] if p['predicted'] is not None]
        assert [p['month'] for p in predicted] == ['Jun 2025', 'Jul 2025', 'Aug 2025']
        assert all(p['predicted'] == 2000.0 for p in predicted)

    def test_no_history_uses_default_revenue_after_as_of(self, no_jitter, as_of):
        result = build_revenue_forecast([], '2-months', assumptions=no_jitter, as_of=as_of)
        assert [p['month'] for p in result['points']] == ['Jul 2025', 'Aug 2025']
        assert [p['predicted'] for p in result['points']] == [100000.0, 100000.0]
        assert all(p['historical'] is None for p in result['points'])

    def test_jitter_stays_within_width(self, as_of):
        result = build_revenue_forecast([], 24, rng=3, as_of=as_of)
        predicted = np.array([p['predicted'] for p in result['points']])
        assert (predicted >= 90000).all() and (predicted <= 110000).all()
        assert len(set(predicted)) > 1


class TestHolt:
    def test_constant_series_projects_flat(self, no_jitter):
        result = build_revenue_forecast(_series([80000] * 12), 6, assumptions=no_jitter)
        assert result['method'] == 'holt'
        assert result['confidence'] == 'high'
        predicted = [p['predicted'] for p in result['points'] if p['predicted'] is not None]
        assert predicted == pytest.approx([80000.0] * 6)

    def test_medium_confidence_below_a_year(self, no_jitter):
        result = build_revenue_forecast(_series([100, 200, 300, 400]), 2, assumptions=no_jitter)
        assert result['confidence'] == 'medium'

    def test_growing_series_projects_growth(self, no_jitter):
        result = build_revenue_forecast(_series([1000 * i for i in range(1, 13)]), 3, assumptions=no_jitter)
        predicted = [p['predicted'] for p in result['points'] if p['predicted'] is not None]
        assert result['trend'] > 0
        assert predicted[0] < predicted[1] < predicted[2]

    def test_collapsing_series_never_goes_negative(self, no_jitter):
        result = build_revenue_forecast(_series([50000, 20000, 5000, 1000, 100, 10]), 12, assumptions=no_jitter)
        assert all(p['predicted'] >= 0 for p in result['points'] if p['predicted'] is not None)

    def test_history_points_come_first(self):
        result = build_revenue_forecast(_series([10, 20, 30]), 2, rng=1)
        points = result['points']
        assert len(points) == 5
        assert [p['month'] for p in points[:3]] == ['Jul 2024', 'Aug 2024', 'Sep 2024']
        assert all(p['predicted'] is None for p in points[:3])
        assert all(p['historical'] is None for p in points[3:])
        assert points[3]['month'] == 'Oct 2024'


def test_seeded_forecast_is_reproducible():
    series = _series([1000, 1500, 1300, 1800, 2100])
    first = build_revenue_forecast(series, 6, rng=11)
    second = build_revenue_forecast(series, 6, rng=11)
    assert first['points'] == second['points']


def test_zero_horizon_returns_history_only():
    result = build_revenue_forecast(_series([10, 20, 30]), 'soon', rng=1)
    assert all(p['predicted'] is None for p in result['points'])


def test_generate_revenue_forecast_from_opportunities(history, no_jitter):
    points = generate_revenue_forecast(history, '6-months', assumptions=no_jitter)
    assert len(points) == 18
    assert points[0] == {'month': 'Jul 2024', 'historical': 80000.0, 'predicted': None}
    assert points[-1]['month'] == 'Dec 2025'


def test_predict_revenue_advanced_sums_horizon(no_jitter):
    assert predict_revenue_advanced(_series([80000] * 12), 6, assumptions=no_jitter) == pytest.approx(480000.0)
    assert predict_revenue_advanced([], 0) == 0.0
