"""Predictive analytics over a sales-opportunity pipeline."""

from .helpers import (
    to_frame,
    partition_opportunities,
    get_monthly_revenue,
    calculate_quarterly_revenue,
    get_deal_age,
    calculate_trend_slope,
    validate_opportunities,
)
from .forecast import generate_revenue_forecast, predict_revenue_advanced, build_revenue_forecast
from .probability import (
    calculate_deal_probabilities,
    calculate_expected_deals_advanced,
    calculate_stage_probabilities,
    calculate_rep_performance_metrics,
    calculate_seasonal_factors,
)
from .health import analyze_pipeline_health, calculate_stage_velocity, calculate_conversion_rates
from .insights import generate_advanced_insights, generate_smart_recommendations
from .metrics import calculate_predictive_metrics
from .backtest import backtest_forecast

__version__ = '0.1.0'
