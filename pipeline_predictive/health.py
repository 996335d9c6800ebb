import logging

import numpy as np

from .config import STAGES, CLOSED_STATUSES, resolve_assumptions
from .helpers import to_frame, deal_ages, days_to_close, stage_phase

logger = logging.getLogger(__name__)

HEALTH_STATUSES = [(40, 'Critical'), (60, 'At Risk'), (80, 'Good')]


def _stage_order(stage):
    return STAGES.index(stage) if stage in STAGES else len(STAGES)


def calculate_stage_velocity(closed):
    """Average days from creation to close per stage."""
    df = to_frame(closed)
    df = df[df['status'].isin(CLOSED_STATUSES) & df['stage'].notna()].copy()
    df['days_to_close'] = days_to_close(df)
    df = df[df['days_to_close'].notna() & (df['days_to_close'] >= 0)]
    if df.empty:
        return []

    velocity = df.groupby('stage')['days_to_close'].agg(['mean', 'count'])
    rows = [
        {'stage': stage, 'avg_days': round(float(r['mean']), 1), 'deals': int(r['count'])}
        for stage, r in velocity.iterrows()
    ]
    return sorted(rows, key=lambda r: _stage_order(r['stage']))


def calculate_conversion_rates(closed):
    """Win rate (%) per stage from closed deals."""
    df = to_frame(closed)
    df = df[df['status'].isin(CLOSED_STATUSES) & df['stage'].notna()].copy()
    if df.empty:
        return []

    df['is_won'] = df['status'] == 'Won'
    conv = df.groupby('stage')['is_won'].agg(['sum', 'count'])
    rows = [
        {'stage': stage, 'rate': round(float(r['sum'] / r['count'] * 100), 1),
         'won': int(r['sum']), 'total': int(r['count'])}
        for stage, r in conv.iterrows()
    ]
    return sorted(rows, key=lambda r: _stage_order(r['stage']))


def calculate_stage_balance(open_df, ideal_distribution):
    """Sum of absolute differences between actual and ideal phase shares (0 = ideal, 2 = disjoint)."""
    if open_df.empty:
        return None, {}
    phases = open_df['stage'].map(stage_phase)
    actual = (phases.value_counts() / len(open_df)).to_dict()
    keys = set(ideal_distribution) | {k for k in actual if k is not None}
    deviation = sum(abs(actual.get(k, 0.0) - ideal_distribution.get(k, 0.0)) for k in keys)
    # open deals with unrecognised stages count as pure deviation
    deviation += float(phases.isna().mean())
    return deviation, {k: round(float(v), 3) for k, v in actual.items() if k is not None}


def health_status(score):
    for upper, label in HEALTH_STATUSES:
        if score < upper:
            return label
    return 'Excellent'


def find_at_risk_deals(open_df, stage_velocity, assumptions=None, as_of=None):
    cfg = resolve_assumptions(assumptions)
    if open_df.empty:
        return []

    avg_days = {r['stage']: r['avg_days'] for r in stage_velocity}
    ages = deal_ages(open_df, as_of)
    stage_limit = open_df['stage'].map(avg_days).astype(float) * cfg['stale_velocity_multiple']

    slow = stage_limit.notna() & (ages > stage_limit)
    large_and_old = (open_df['amount'] > cfg['large_deal_amount']) & (ages > cfg['large_deal_max_age'])
    return open_df.loc[slow | large_and_old, 'id'].tolist()


def analyze_pipeline_health(opportunities, assumptions=None, as_of=None):
    cfg = resolve_assumptions(assumptions)
    df = to_frame(opportunities)
    closed = df[df['status'].isin(CLOSED_STATUSES)].reset_index(drop=True)
    open_df = df[df['status'] == 'Open'].reset_index(drop=True)

    stage_velocity = calculate_stage_velocity(closed)
    conversion_rates = calculate_conversion_rates(closed)

    # Pipeline size
    size_score = min(1.0, len(open_df) / cfg['target_pipeline_deals']) * 20

    # Conversion
    avg_conversion = float(np.mean([r['rate'] for r in conversion_rates])) if conversion_rates else None
    conversion_score = min(1.0, avg_conversion / cfg['target_conversion_rate']) * 20 if avg_conversion is not None else 0.0

    # Velocity
    avg_velocity = float(np.mean([r['avg_days'] for r in stage_velocity])) if stage_velocity else None
    velocity_score = 0.0
    if avg_velocity is not None:
        if avg_velocity < 30:
            velocity_score = 10.0
        elif avg_velocity < 60:
            velocity_score = 5.0
        elif avg_velocity > 120:
            velocity_score = -10.0
        elif avg_velocity > 90:
            velocity_score = -5.0

    # Stage balance
    deviation, distribution = calculate_stage_balance(open_df, cfg['ideal_stage_distribution'])
    balance_score = 0.0
    if deviation is not None:
        balance_score = max(-10.0, min(10.0, 10 - 20 * deviation))

    raw = cfg['base_health'] + size_score + conversion_score + velocity_score + balance_score
    score = int(np.floor(max(0.0, min(100.0, raw)) + 0.5))

    at_risk_ids = find_at_risk_deals(open_df, stage_velocity, cfg, as_of)
    if at_risk_ids:
        logger.debug(f"{len(at_risk_ids)} open deals flagged at risk")

    return {
        'health_score': score,
        'status': health_status(score),
        'at_risk_deals': len(at_risk_ids),
        'at_risk_deal_ids': at_risk_ids,
        'stage_velocity': stage_velocity,
        'conversion_rates': conversion_rates,
        'health_metrics': {
            'pipeline_size': int(len(open_df)),
            'pipeline_value': float(open_df['amount'].sum()),
            'avg_conversion_rate': round(avg_conversion, 1) if avg_conversion is not None else None,
            'avg_velocity_days': round(avg_velocity, 1) if avg_velocity is not None else None,
            'stage_distribution': distribution,
            'stage_balance_deviation': round(deviation, 3) if deviation is not None else None,
            'components': {
                'base': cfg['base_health'],
                'pipeline_size': round(size_score, 2),
                'conversion': round(conversion_score, 2),
                'velocity': velocity_score,
                'stage_balance': round(balance_score, 2),
            },
        },
        'sample_size': int(len(closed)),
        'confidence': round(min(1.0, len(closed) / cfg['stage_confidence_sample']), 2),
    }
