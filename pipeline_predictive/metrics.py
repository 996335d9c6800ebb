import logging

import numpy as np

from .config import CLOSED_STATUSES, resolve_assumptions
from .helpers import to_frame, get_monthly_revenue, calculate_quarterly_revenue
from .forecast import build_revenue_forecast, parse_forecast_months
from .probability import calculate_expected_deals_advanced
from .insights import generate_advanced_insights, generate_smart_recommendations

logger = logging.getLogger(__name__)


def calculate_revenue_growth(predicted_revenue, forecast_months, trailing_quarter_revenue):
    """Predicted monthly average vs trailing-quarter monthly average, in percent."""
    if forecast_months <= 0 or trailing_quarter_revenue <= 0:
        return 0.0
    predicted_monthly = predicted_revenue / forecast_months
    recent_monthly = trailing_quarter_revenue / 3
    return (predicted_monthly - recent_monthly) / recent_monthly * 100


def calculate_predictive_metrics(opportunities, period, rng=None, assumptions=None, as_of=None):
    """
    Headline numbers for the predictive dashboard.

    Returns predicted_revenue, revenue_growth, expected_deals, insights and
    recommendations, plus a confidence block naming which path (model or
    fallback) produced the forecast and probabilities and on how much data.
    """
    cfg = resolve_assumptions(assumptions)
    rng = np.random.default_rng(rng)
    months = parse_forecast_months(period)

    df = to_frame(opportunities)
    closed = df[df['status'].isin(CLOSED_STATUSES)].reset_index(drop=True)
    open_df = df[df['status'] == 'Open'].reset_index(drop=True)

    monthly = get_monthly_revenue(closed)
    forecast = build_revenue_forecast(monthly, months, rng=rng, assumptions=cfg, as_of=as_of)
    predicted_revenue = float(sum(p['predicted'] for p in forecast['points'] if p['predicted'] is not None))

    trailing = calculate_quarterly_revenue(closed, as_of=as_of)
    growth = calculate_revenue_growth(predicted_revenue, months, trailing)

    expected_deals = calculate_expected_deals_advanced(open_df, closed, rng=rng, assumptions=cfg, as_of=as_of)
    probability_method = 'ensemble' if len(closed) >= cfg['min_closed_deals'] else 'basic'

    logger.info(f"Predicted revenue over {months} months: ${predicted_revenue:,.0f} "
                f"({growth:+.1f}% vs trailing quarter), {expected_deals:.1f} expected deals")

    return {
        'predicted_revenue': round(predicted_revenue, 2),
        'revenue_growth': round(growth, 1),
        'expected_deals': round(float(expected_deals), 1),
        'insights': generate_advanced_insights(df, closed, assumptions=cfg),
        'recommendations': generate_smart_recommendations(df, closed, assumptions=cfg, as_of=as_of),
        'confidence': {
            'forecast': forecast['confidence'],
            'forecast_method': forecast['method'],
            'history_months': forecast['sample_size'],
            'closed_deals': int(len(closed)),
            'open_deals': int(len(open_df)),
            'probability_method': probability_method,
        },
    }
