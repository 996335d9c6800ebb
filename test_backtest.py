import pandas as pd
import pytest

from pipeline_predictive.backtest import backtest_forecast, backtest_opportunities


def _series(values, start='2024-01'):
    months = pd.period_range(start, periods=len(values), freq='M')
    return [{'month': str(m), 'revenue': float(v)} for m, v in zip(months, values)]


def test_perfect_forecast():
    result = backtest_forecast(_series([80000] * 12), holdout_months=3)
    assert result['method'] == 'holt'
    assert result['train_months'] == 9
    assert result['mape'] == pytest.approx(0.0)
    assert result['bias'] == pytest.approx(0.0)
    assert result['hit_rate'] == 1.0
    assert list(result['results'].columns) == ['month', 'actual', 'forecast', 'var_abs', 'var_pct']
    assert result['results']['month'].tolist() == ['2024-10', '2024-11', '2024-12']


def test_overforecast_shows_positive_bias():
    result = backtest_forecast(_series([100] * 9 + [50] * 3), holdout_months=3)
    assert result['mape'] == pytest.approx(100.0)
    assert result['bias'] == pytest.approx(100.0)
    assert result['hit_rate'] == 0.0


@pytest.mark.parametrize('values, holdout', [
    ([100] * 5, 3),
    ([100] * 12, 0),
    ([], 3),
])
def test_not_enough_history(values, holdout):
    assert backtest_forecast(_series(values), holdout_months=holdout) is None


def test_backtest_opportunities(history):
    result = backtest_opportunities(history, holdout_months=3)
    assert result['mape'] == pytest.approx(0.0)
    assert result['train_months'] == 9
