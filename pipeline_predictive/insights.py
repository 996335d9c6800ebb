"""
Pattern-detected insights and rule-based recommendations.

Each insight detector returns one {'type', 'title', 'description'} dict or
None; only findings that cross their threshold are surfaced. Recommendations
are fixed rules with enumerated priority / impact / effort labels.
"""

import logging

import numpy as np

from .config import CLOSED_STATUSES, EARLY_PHASES, LATE_PHASES, resolve_assumptions
from .helpers import to_frame, get_monthly_revenue, deal_ages, stage_phase
from .probability import calculate_rep_performance_metrics

logger = logging.getLogger(__name__)

QUARTER_NAMES = ['Q1', 'Q2', 'Q3', 'Q4']


def _split(opportunities, historical_data):
    df = to_frame(opportunities)
    if historical_data is None:
        hist = df[df['status'].isin(CLOSED_STATUSES)].reset_index(drop=True)
    else:
        hist = to_frame(historical_data)
    open_df = df[df['status'] == 'Open'].reset_index(drop=True)
    return df, hist, open_df

# ==========================================
# INSIGHT DETECTORS
# ==========================================

def analyze_revenue_momentum(historical_data, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    monthly = get_monthly_revenue(historical_data)
    if len(monthly) < 6:
        return None

    recent_avg = np.mean([m['revenue'] for m in monthly[-3:]])
    previous_avg = np.mean([m['revenue'] for m in monthly[-6:-3]])
    if previous_avg <= 0:
        return None

    momentum = (recent_avg - previous_avg) / previous_avg * 100
    if momentum > cfg['momentum_threshold']:
        return {
            'type': 'positive',
            'title': 'Strong Revenue Momentum',
            'description': f"Revenue has accelerated {momentum:.1f}% in recent months, indicating excellent sales execution."
        }
    if momentum < -cfg['momentum_threshold']:
        return {
            'type': 'warning',
            'title': 'Revenue Momentum Declining',
            'description': f"Revenue has decelerated {abs(momentum):.1f}% recently. Review sales strategy and pipeline quality."
        }
    return None


def analyze_pipeline_balance(open_opportunities, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    open_df = to_frame(open_opportunities)
    if open_df.empty:
        return None

    phases = open_df['stage'].map(stage_phase)
    late_ratio = phases.isin(LATE_PHASES).sum() / len(open_df)

    if late_ratio < cfg['late_stage_low']:
        return {
            'type': 'warning',
            'title': 'Pipeline Lacks Late-Stage Deals',
            'description': f"Only {late_ratio * 100:.0f}% of pipeline is in proposal/negotiation stages. Focus on advancing qualified opportunities."
        }
    if late_ratio > cfg['late_stage_high']:
        return {
            'type': 'positive',
            'title': 'Strong Late-Stage Pipeline',
            'description': f"{late_ratio * 100:.0f}% of pipeline is in advanced stages, indicating healthy deal progression."
        }
    return None


def analyze_rep_performance_variance(historical_data, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    reps = calculate_rep_performance_metrics(historical_data)
    win_rates = [r['win_rate'] for r in reps.values() if r['total'] >= cfg['rep_variance_min_deals']]
    if len(win_rates) < 2:
        return None

    std_dev = float(np.std(win_rates))
    if std_dev > cfg['rep_variance_threshold']:
        return {
            'type': 'warning',
            'title': 'High Rep Performance Variance',
            'description': f"Win rate standard deviation of {std_dev:.1f}% indicates inconsistent performance. Consider standardizing sales processes."
        }
    return None


def analyze_deal_size_trends(opportunities, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    df = to_frame(opportunities)
    won = df[(df['status'] == 'Won') & df['actual_close_date'].notna()]
    if len(won) < cfg['deal_size_min_won']:
        return None

    won = won.sort_values('actual_close_date', kind='stable')
    recent_count = min(10, int(len(won) * 0.3))
    recent_avg = won['amount'].iloc[-recent_count:].mean()
    historical_avg = won['amount'].iloc[:-recent_count].mean()
    if historical_avg <= 0:
        return None

    trend = (recent_avg - historical_avg) / historical_avg * 100
    if trend > cfg['deal_size_trend_threshold']:
        return {
            'type': 'positive',
            'title': 'Deal Size Trending Up',
            'description': f"Average deal size has increased {trend:.1f}% recently, indicating successful upselling or market expansion."
        }
    if trend < -cfg['deal_size_trend_threshold']:
        return {
            'type': 'warning',
            'title': 'Deal Size Declining',
            'description': f"Average deal size has decreased {abs(trend):.1f}% recently. Consider value proposition review."
        }
    return None


def analyze_seasonal_patterns(historical_data, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    df = to_frame(historical_data)
    df = df[df['actual_close_date'].notna()].copy()
    if df.empty:
        return None

    df['quarter'] = (df['actual_close_date'].dt.month - 1) // 3
    df['won_amount'] = df['amount'].where(df['status'] == 'Won', 0.0)
    revenue = df.groupby('quarter')['won_amount'].sum()
    if len(revenue) < 4:
        return None

    max_rev, min_rev = revenue.max(), revenue.min()
    if max_rev <= 0:
        return None

    variance = (max_rev - min_rev) / max_rev
    if variance > cfg['seasonal_variance_threshold']:
        best = QUARTER_NAMES[int(revenue.idxmax())]
        return {
            'type': 'positive',
            'title': 'Strong Seasonal Pattern Detected',
            'description': f"{best} shows {variance * 100:.0f}% higher revenue. Plan resource allocation accordingly."
        }
    return None


def generate_advanced_insights(opportunities, historical_data=None, assumptions=None):
    df, hist, open_df = _split(opportunities, historical_data)

    findings = [
        analyze_revenue_momentum(hist, assumptions),
        analyze_pipeline_balance(open_df, assumptions),
        analyze_rep_performance_variance(hist, assumptions),
        analyze_deal_size_trends(df, assumptions),
        analyze_seasonal_patterns(hist, assumptions),
    ]
    insights = [f for f in findings if f is not None]
    logger.debug(f"{len(insights)} insights from {len(hist)} closed deals")
    return insights

# ==========================================
# RECOMMENDATIONS
# ==========================================

def _recommendation(action, reason, priority, impact, effort):
    return {'action': action, 'reason': reason, 'priority': priority, 'impact': impact, 'effort': effort}


def recommend_stale_deal_review(open_df, cfg, as_of=None):
    if open_df.empty:
        return None
    stale = open_df[deal_ages(open_df, as_of) > cfg['stale_deal_days']]
    if stale.empty:
        return None
    return _recommendation(
        f"Review {len(stale)} stale deals",
        f"{len(stale)} open deals worth ${stale['amount'].sum():,.0f} have been open for more than "
        f"{cfg['stale_deal_days']} days. Re-qualify or close them out.",
        'High', 'High', 'Medium'
    )


def recommend_rep_coaching(hist, cfg):
    reps = calculate_rep_performance_metrics(hist)
    struggling = sorted(
        (r for r in reps.values()
         if r['total'] >= cfg['coaching_min_deals'] and r['win_rate'] < cfg['coaching_win_rate']),
        key=lambda r: r['win_rate']
    )
    if not struggling:
        return None
    names = ', '.join(f"{r['rep']} ({r['win_rate']:.0f}%)" for r in struggling)
    return _recommendation(
        f"Provide coaching for {len(struggling)} underperforming reps",
        f"Win rate below {cfg['coaching_win_rate']}% across at least {cfg['coaching_min_deals']} closed deals: {names}.",
        'Medium', 'High', 'Medium'
    )


def recommend_pipeline_generation(open_df, hist, cfg):
    monthly = get_monthly_revenue(hist)
    if not monthly:
        return None
    avg_quarterly = float(np.mean([m['revenue'] for m in monthly])) * 3
    if avg_quarterly <= 0:
        return None

    open_value = float(open_df['amount'].sum())
    coverage = open_value / avg_quarterly
    if coverage >= cfg['pipeline_coverage_ratio']:
        return None
    return _recommendation(
        "Increase pipeline generation",
        f"Open pipeline of ${open_value:,.0f} covers {coverage:.1f}x average quarterly revenue "
        f"(${avg_quarterly:,.0f}); target coverage is {cfg['pipeline_coverage_ratio']}x.",
        'High', 'High', 'High'
    )


def recommend_stage_progression(open_df, cfg):
    if open_df.empty:
        return None
    early_ratio = open_df['stage'].map(stage_phase).isin(EARLY_PHASES).sum() / len(open_df)
    if early_ratio <= cfg['early_stage_share']:
        return None
    return _recommendation(
        "Accelerate early-stage deal progression",
        f"{early_ratio * 100:.0f}% of open deals are still in prospecting/qualification. "
        f"Prioritise discovery meetings and demos to move them forward.",
        'Medium', 'Medium', 'Medium'
    )


def generate_smart_recommendations(opportunities, historical_data=None, assumptions=None, as_of=None):
    cfg = resolve_assumptions(assumptions)
    _, hist, open_df = _split(opportunities, historical_data)

    recommendations = [
        recommend_stale_deal_review(open_df, cfg, as_of),
        recommend_rep_coaching(hist, cfg),
        recommend_pipeline_generation(open_df, hist, cfg),
        recommend_stage_progression(open_df, cfg),
    ]
    return [r for r in recommendations if r is not None]
