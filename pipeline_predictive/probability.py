"""
Deal win probability and risk scoring.

Each open deal starts from its stage's historical win rate, credibility-blended
with a prior table, and is then adjusted in a fixed order:

    rep performance -> deal size -> seasonality -> age decay -> competitive overlap

Only Won/Lost deals feed the base rates. Below `min_closed_deals` closed deals
there is not enough history for any of this and a flat stage table with noise
is used instead (method='basic', confidence=0).
"""

import math
import logging

import numpy as np
import pandas as pd

from .config import CLOSED_STATUSES, resolve_assumptions
from .helpers import to_frame, deal_ages, days_to_close, stage_phase

logger = logging.getLogger(__name__)


def _clip(value, lower, upper):
    return max(lower, min(upper, value))


def _round_half_up(value):
    return int(math.floor(value + 0.5))

# --- Historical base rates ---

def calculate_stage_statistics(closed):
    """Won / total / win rate / average size per stage, closed deals only."""
    df = to_frame(closed)
    df = df[df['status'].isin(CLOSED_STATUSES) & df['stage'].notna()].copy()
    cols = ['stage', 'won', 'total', 'win_rate', 'avg_deal_size', 'amounts']
    if df.empty:
        return pd.DataFrame(columns=cols)

    df['is_won'] = df['status'] == 'Won'
    stats = df.groupby('stage').agg(
        won=('is_won', 'sum'),
        total=('is_won', 'count'),
        avg_deal_size=('amount', 'mean'),
        amounts=('amount', list),
    ).reset_index()
    stats['won'] = stats['won'].astype(int)
    stats['win_rate'] = stats['won'] / stats['total'] * 100
    return stats[cols]


def calculate_stage_probabilities(closed, assumptions=None):
    """
    Stage probability = observed win rate blended toward the prior table.
    credibility = min(1, total / stage_confidence_sample), so a stage with few
    closed deals sits near its prior and a well-sampled stage uses its own rate.
    """
    cfg = resolve_assumptions(assumptions)
    stats = calculate_stage_statistics(closed)
    if stats.empty:
        return pd.DataFrame(columns=['stage', 'total', 'win_rate', 'confidence', 'base_probability', 'probability'])

    base_table = cfg['stage_base_probabilities']
    stats['confidence'] = (stats['total'] / cfg['stage_confidence_sample']).clip(upper=1.0)
    stats['base_probability'] = stats['stage'].map(lambda s: base_table.get(s, cfg['default_stage_probability']))
    stats['probability'] = (
        stats['win_rate'] * stats['confidence'] +
        stats['base_probability'] * (1 - stats['confidence'])
    ).clip(cfg['stage_probability_floor'], cfg['stage_probability_ceiling'])

    return stats[['stage', 'total', 'win_rate', 'confidence', 'base_probability', 'probability']]


def calculate_rep_performance_metrics(closed):
    """Per-rep record keyed by rep name, built from closed deals only."""
    df = to_frame(closed)
    df = df[df['status'].isin(CLOSED_STATUSES) & df['assigned_rep'].notna()].copy()
    if df.empty:
        return {}

    df['is_won'] = df['status'] == 'Won'
    df['won_value'] = df['amount'].where(df['is_won'], 0.0)
    df['velocity'] = days_to_close(df).where(df['is_won'])

    grouped = df.groupby('assigned_rep').agg(
        won=('is_won', 'sum'),
        total=('is_won', 'count'),
        total_value=('amount', 'sum'),
        won_value=('won_value', 'sum'),
        avg_velocity=('velocity', 'mean'),
    )
    grouped['avg_velocity'] = grouped['avg_velocity'].fillna(90.0)

    reps = {}
    for rep, row in grouped.iterrows():
        total = int(row['total'])
        reps[rep] = {
            'rep': rep,
            'won': int(row['won']),
            'total': total,
            'total_value': float(row['total_value']),
            'won_value': float(row['won_value']),
            'win_rate': row['won'] / total * 100 if total > 0 else 0.0,
            'avg_deal_size': row['total_value'] / total if total > 0 else 0.0,
            'avg_velocity': float(row['avg_velocity']),
        }
    return reps


def calculate_seasonal_factors(closed, assumptions=None):
    """Month-of-close win rate relative to the mean monthly win rate (months 1-12)."""
    cfg = resolve_assumptions(assumptions)
    df = to_frame(closed)
    df = df[df['status'].isin(CLOSED_STATUSES) & df['actual_close_date'].notna()].copy()
    factors = {month: 1.0 for month in range(1, 13)}
    if df.empty:
        return factors

    df['month'] = df['actual_close_date'].dt.month
    df['is_won'] = df['status'] == 'Won'
    monthly = df.groupby('month')['is_won'].agg(['sum', 'count'])
    monthly['rate'] = monthly['sum'] / monthly['count']

    avg_rate = monthly['rate'].mean()
    if not avg_rate:
        avg_rate = cfg['seasonal_fallback_win_rate']

    for month, row in monthly.iterrows():
        if row['count'] > cfg['seasonal_min_closes']:
            factors[int(month)] = row['rate'] / avg_rate
    return factors


def calculate_amount_quartiles(closed):
    amounts = sorted(to_frame(closed)['amount'].tolist())
    if not amounts:
        return None, None
    n = len(amounts)
    return amounts[int(n * 0.25)], amounts[int(n * 0.75)]

# --- Adjustments ---

def apply_rep_performance_adjustment(probability, rep, rep_performance, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    stats = rep_performance.get(rep) if rep else None
    if not stats or stats['total'] < cfg['min_rep_deals']:
        return probability

    avg_win_rate = np.mean([r['win_rate'] for r in rep_performance.values()])
    if avg_win_rate <= 0:
        return probability

    lower, upper = cfg['rep_multiplier_range']
    return probability * _clip(stats['win_rate'] / avg_win_rate, lower, upper)


def apply_deal_characteristics_adjustment(probability, amount, q1, q3):
    if q1 is None or q3 is None:
        return probability

    if amount > q3 * 3:
        multiplier = 0.4
    elif amount > q3 * 2:
        multiplier = 0.6
    elif amount > q3:
        multiplier = 0.8
    elif amount < q1 * 0.3:
        multiplier = 1.4
    elif amount < q1 * 0.5:
        multiplier = 1.25
    elif amount < q1:
        multiplier = 1.1
    else:
        multiplier = 1.0
    return probability * multiplier


def apply_seasonal_adjustment(probability, proj_close_date, seasonal_factors, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    if proj_close_date is None or pd.isna(proj_close_date):
        return probability

    factor = seasonal_factors.get(pd.Timestamp(proj_close_date).month, 1.0)
    lower, upper = cfg['seasonal_multiplier_range']
    return probability * _clip(factor, lower, upper)


def apply_age_decay_adjustment(probability, age):
    if age is None or pd.isna(age):
        return probability

    if age > 365:
        return probability * 0.2
    if age > 270:
        return probability * 0.3
    if age > 180:
        return probability * (1 - (age - 180) / 365 * 0.7)
    if age > 90:
        return probability * (1 - (age - 90) / 180 * 0.4)
    if age < 7:
        return probability * 1.2
    if age < 14:
        return probability * 1.1
    return probability


def apply_competitive_factors(probability, deal_id, company, open_ids_by_company, assumptions=None):
    """Penalise a deal when another open deal targets the same company."""
    cfg = resolve_assumptions(assumptions)
    if not company:
        return probability

    others = [i for i in open_ids_by_company.get(company, []) if i != deal_id]
    if others:
        return probability * cfg['competitive_penalty']
    return probability


def apply_demo_spread(probability, opp, index, rng, assumptions=None):
    """
    Legacy dashboard spread: random stage ranges, forced extremes on every
    7th / 11th deal, per-rep multipliers. Not a model signal; off unless
    assumptions['demo_spread'] is set.
    """
    cfg = resolve_assumptions(assumptions)
    variation = 1.0

    if opp['amount'] > 200_000:
        variation *= 1.4 if rng.random() > 0.5 else 0.6
    elif opp['amount'] > 100_000:
        variation *= 1.2 if rng.random() > 0.5 else 0.8

    spread = cfg['demo_stage_spread'].get(opp['stage'])
    if spread:
        low, width = spread
        variation *= low + rng.random() * width

    if index % 7 == 0:
        variation *= 0.4
    if index % 11 == 0:
        variation *= 1.6

    variation *= cfg['demo_rep_multipliers'].get(opp['assigned_rep'], 1.0)
    return probability * variation

# --- Risk ---

def calculate_risk_score(opp, age, avg_amount, rep_performance, assumptions=None):
    """0-100, higher is riskier."""
    cfg = resolve_assumptions(assumptions)
    risk = cfg['base_risk']

    if not pd.isna(age):
        if age > 180:
            risk += 25
        elif age > 90:
            risk += 15
        elif age < 30:
            risk -= 10

    if avg_amount > 0:
        if opp['amount'] > avg_amount * 3:
            risk += 20
        elif opp['amount'] > avg_amount * 1.5:
            risk += 10

    rep = rep_performance.get(opp['assigned_rep']) if opp['assigned_rep'] else None
    if rep:
        if rep['win_rate'] < 30:
            risk += 15
        elif rep['win_rate'] > 70:
            risk -= 15

    risk += cfg['stage_risk'].get(stage_phase(opp['stage']), cfg['default_stage_risk'])

    return _clip(risk, 0, 100)


def risk_level(risk_score, assumptions=None):
    cfg = resolve_assumptions(assumptions)
    if risk_score < cfg['low_risk_below']:
        return 'Low'
    if risk_score > cfg['high_risk_above']:
        return 'High'
    return 'Medium'

# --- Scoring ---

def _scored(opp, probability, risk, confidence, method, cfg):
    lower, upper = cfg['probability_range']
    record = dict(opp)
    record['probability'] = _clip(_round_half_up(probability), lower, upper)
    record['risk_score'] = _round_half_up(_clip(risk, 0, 100))
    record['risk_level'] = risk_level(record['risk_score'], cfg)
    record['confidence'] = round(float(confidence), 2)
    record['method'] = method
    return record


def calculate_basic_probabilities(open_df, closed_df, rng, cfg, as_of=None):
    table = cfg['basic_stage_probabilities']
    rep_perf = calculate_rep_performance_metrics(closed_df)
    avg_amount = closed_df['amount'].mean() if len(closed_df) > 0 else 0.0
    ages = deal_ages(open_df, as_of)

    results = []
    for i, opp in enumerate(open_df.to_dict('records')):
        probability = table.get(opp['stage'], cfg['default_basic_probability']) * (0.5 + rng.random())
        risk = calculate_risk_score(opp, ages.iloc[i], avg_amount, rep_perf, cfg)
        results.append(_scored(opp, probability, risk, 0.0, 'basic', cfg))
    return results


def calculate_deal_probabilities(opportunities, rng=None, assumptions=None, as_of=None):
    """Scored open deals, highest probability first."""
    cfg = resolve_assumptions(assumptions)
    rng = np.random.default_rng(rng)
    df = to_frame(opportunities)
    closed = df[df['status'].isin(CLOSED_STATUSES)].reset_index(drop=True)
    open_df = df[df['status'] == 'Open'].reset_index(drop=True)

    if open_df.empty:
        return []

    if len(closed) < cfg['min_closed_deals']:
        logger.info(f"Only {len(closed)} closed deals; using basic stage probabilities")
        results = calculate_basic_probabilities(open_df, closed, rng, cfg, as_of)
        return sorted(results, key=lambda r: r['probability'], reverse=True)

    stage_probs = calculate_stage_probabilities(closed, cfg).set_index('stage')
    rep_perf = calculate_rep_performance_metrics(closed)
    seasonal = calculate_seasonal_factors(closed, cfg)
    q1, q3 = calculate_amount_quartiles(closed)
    avg_amount = closed['amount'].mean()
    ages = deal_ages(open_df, as_of)

    open_ids_by_company = {}
    for deal_id, company in zip(open_df['id'], open_df['company_name']):
        if company:
            open_ids_by_company.setdefault(company, []).append(deal_id)

    results = []
    for i, opp in enumerate(open_df.to_dict('records')):
        age = ages.iloc[i]
        if opp['stage'] in stage_probs.index:
            probability = stage_probs.at[opp['stage'], 'probability']
            confidence = stage_probs.at[opp['stage'], 'confidence']
        else:
            probability = cfg['default_stage_probability']
            confidence = 0.0

        probability = apply_rep_performance_adjustment(probability, opp['assigned_rep'], rep_perf, cfg)
        probability = apply_deal_characteristics_adjustment(probability, opp['amount'], q1, q3)
        probability = apply_seasonal_adjustment(probability, opp['proj_close_date'], seasonal, cfg)
        probability = apply_age_decay_adjustment(probability, age)
        probability = apply_competitive_factors(probability, opp['id'], opp['company_name'], open_ids_by_company, cfg)
        if cfg['demo_spread']:
            probability = apply_demo_spread(probability, opp, i, rng, cfg)

        risk = calculate_risk_score(opp, age, avg_amount, rep_perf, cfg)
        results.append(_scored(opp, probability, risk, confidence, 'ensemble', cfg))

    return sorted(results, key=lambda r: r['probability'], reverse=True)


def calculate_expected_deals_advanced(open_opportunities, historical_data, rng=None, assumptions=None, as_of=None):
    """Expected number of open deals that close won."""
    cfg = resolve_assumptions(assumptions)
    open_df = to_frame(open_opportunities)
    hist_df = to_frame(historical_data)

    if len(hist_df) < cfg['min_closed_deals']:
        return len(open_df) * cfg['expected_deals_fallback_rate']

    scored = calculate_deal_probabilities(
        pd.concat([open_df, hist_df], ignore_index=True),
        rng=rng, assumptions=cfg, as_of=as_of
    )
    return sum(r['probability'] / 100 for r in scored)
