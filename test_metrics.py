import pytest

from pipeline_predictive.metrics import calculate_revenue_growth, calculate_predictive_metrics


def test_revenue_growth():
    # 100/month predicted vs 80/month over the trailing quarter
    assert calculate_revenue_growth(600, 6, 240) == pytest.approx(25.0)
    assert calculate_revenue_growth(600, 6, 0) == 0.0
    assert calculate_revenue_growth(600, 0, 240) == 0.0


class TestPredictiveMetrics:
    def test_steady_history(self, history, make_opp, as_of, no_jitter):
        metrics = calculate_predictive_metrics(history + [make_opp('PROP')], '6-months',
                                               assumptions=no_jitter, as_of=as_of)
        assert metrics['predicted_revenue'] == pytest.approx(480000.0)
        assert metrics['revenue_growth'] == pytest.approx(0.0)
        assert metrics['expected_deals'] == pytest.approx(0.5)
        assert [i['title'] for i in metrics['insights']] == ['Strong Late-Stage Pipeline']
        assert [r['action'] for r in metrics['recommendations']] == ['Increase pipeline generation']
        assert metrics['confidence'] == {
            'forecast': 'high',
            'forecast_method': 'holt',
            'history_months': 12,
            'closed_deals': 36,
            'open_deals': 1,
            'probability_method': 'ensemble',
        }

    def test_empty_input(self, no_jitter, as_of):
        metrics = calculate_predictive_metrics([], '6-months', assumptions=no_jitter, as_of=as_of)
        assert metrics['predicted_revenue'] == pytest.approx(600000.0)
        assert metrics['revenue_growth'] == 0.0
        assert metrics['expected_deals'] == 0.0
        assert metrics['insights'] == []
        assert metrics['recommendations'] == []
        assert metrics['confidence']['forecast_method'] == 'flat'
        assert metrics['confidence']['forecast'] == 'low'
        assert metrics['confidence']['probability_method'] == 'basic'

    def test_malformed_period_forecasts_nothing(self, history, as_of):
        metrics = calculate_predictive_metrics(history, 'next quarter', as_of=as_of)
        assert metrics['predicted_revenue'] == 0.0

    def test_seeded_run_is_reproducible(self, mock_opportunities, as_of):
        first = calculate_predictive_metrics(mock_opportunities, '3-months', rng=9, as_of=as_of)
        second = calculate_predictive_metrics(mock_opportunities, '3-months', rng=9, as_of=as_of)
        assert first == second
