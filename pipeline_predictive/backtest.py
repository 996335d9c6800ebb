import logging

import numpy as np
import pandas as pd

from .config import resolve_assumptions
from .forecast import build_revenue_forecast
from .helpers import get_monthly_revenue

# ==========================================
# FORECAST BACKTEST
# ==========================================
"""
Hold out the last N points of the monthly revenue series, forecast them from
the earlier points with jitter switched off, and compare.

Points are compared positionally: month i of the forecast against the i-th
held-out month, which matches how the series itself skips months without wins.
"""

logger = logging.getLogger(__name__)

HIT_TOLERANCE = 0.20


def backtest_forecast(monthly_revenue, holdout_months=3, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    cfg['forecast_jitter'] = 0.0
    cfg['fallback_jitter'] = 0.0

    series = list(monthly_revenue or [])
    if holdout_months <= 0 or len(series) < cfg['min_history_months'] + holdout_months:
        logger.warning(f"Backtest needs at least {cfg['min_history_months'] + max(holdout_months, 0)} "
                       f"months of history, got {len(series)}")
        return None

    train, test = series[:-holdout_months], series[-holdout_months:]
    forecast = build_revenue_forecast(train, holdout_months, assumptions=cfg)
    predicted = [p['predicted'] for p in forecast['points'] if p['predicted'] is not None]

    res = pd.DataFrame({
        'month': [p['month'] for p in test],
        'actual': [float(p['revenue']) for p in test],
        'forecast': predicted,
    })
    res['var_abs'] = res['forecast'] - res['actual']
    res['var_pct'] = res['var_abs'] / res['actual'].replace(0, np.nan) * 100

    nonzero = res[res['actual'] > 0]
    mape = float((nonzero['var_abs'].abs() / nonzero['actual']).mean() * 100) if not nonzero.empty else None
    total_actual = res['actual'].sum()
    bias = float((res['forecast'].sum() / total_actual - 1) * 100) if total_actual > 0 else None
    hit_rate = float((nonzero['var_abs'].abs() / nonzero['actual'] <= HIT_TOLERANCE).mean()) if not nonzero.empty else None

    if mape is not None:
        logger.info(f"Backtest over {holdout_months} months: MAPE {mape:.1f}%, bias {bias:+.1f}%, "
                    f"hit rate {hit_rate:.0%} (method={forecast['method']})")

    return {
        'results': res,
        'mape': mape,
        'bias': bias,
        'hit_rate': hit_rate,
        'method': forecast['method'],
        'train_months': len(train),
    }


def backtest_opportunities(opportunities, holdout_months=3, assumptions=None):
    return backtest_forecast(get_monthly_revenue(opportunities), holdout_months, assumptions)
