"""
Historical partitioning helpers shared by every analysis.

Opportunity records arrive from the dashboard API as camelCase dicts; they are
normalised here into one DataFrame shape (snake_case columns, canonical stage
names, parsed timestamps) so the rest of the package only deals with that.
"""

import logging

import numpy as np
import pandas as pd

from .config import STAGES, STAGE_ALIASES, STAGE_PHASES, STATUSES, CLOSED_STATUSES

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    'assignedRep': 'assigned_rep',
    'createdDate': 'created_date',
    'projCloseDate': 'proj_close_date',
    'actualCloseDate': 'actual_close_date',
    'companyName': 'company_name',
}

COLUMNS = ['id', 'status', 'stage', 'amount', 'assigned_rep', 'created_date',
           'proj_close_date', 'actual_close_date', 'company_name']
DATE_COLUMNS = ['created_date', 'proj_close_date', 'actual_close_date']

# --- Stage normalisation ---

_CANONICAL = {s.lower(): s for s in STAGES}


def normalize_stage(stage):
    if stage is None or pd.isna(stage):
        return None
    key = ' '.join(str(stage).split()).lower()
    if key in _CANONICAL:
        return _CANONICAL[key]
    if key in STAGE_ALIASES:
        return STAGE_ALIASES[key]
    return str(stage).strip()


def stage_phase(stage):
    return STAGE_PHASES.get(normalize_stage(stage))


def _normalize_status(status):
    if status is None or pd.isna(status):
        return None
    return str(status).strip().capitalize()


def _to_datetime(series):
    parsed = pd.to_datetime(series, errors='coerce', utc=True, format='mixed')
    return parsed.dt.tz_convert(None)


def resolve_as_of(as_of=None):
    ts = pd.Timestamp.now() if as_of is None else pd.Timestamp(as_of)
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts

# --- Frame construction ---

def to_frame(opportunities):
    """Normalise opportunity records (dicts or a DataFrame) into a fresh DataFrame."""
    if opportunities is None:
        df = pd.DataFrame(columns=COLUMNS)
    elif isinstance(opportunities, pd.DataFrame):
        df = opportunities.copy()
    else:
        df = pd.DataFrame([dict(o) for o in opportunities])

    df = df.rename(columns={k: v for k, v in COLUMN_ALIASES.items() if k in df.columns})
    for col in COLUMNS:
        if col not in df.columns:
            df[col] = None

    if df['id'].isna().all() and len(df) > 0:
        df['id'] = range(1, len(df) + 1)

    df['status'] = df['status'].map(_normalize_status).astype(object)
    df['stage'] = df['stage'].map(normalize_stage).astype(object)
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0).astype(float)
    for col in DATE_COLUMNS:
        df[col] = _to_datetime(df[col])
    for col in ['assigned_rep', 'company_name']:
        df[col] = df[col].astype(object).where(df[col].notna(), None)

    return df.reset_index(drop=True)


def partition_opportunities(opportunities):
    """Split into (closed, open) frames. Closed means Won or Lost."""
    df = to_frame(opportunities)
    closed = df[df['status'].isin(CLOSED_STATUSES)].reset_index(drop=True)
    open_ = df[df['status'] == 'Open'].reset_index(drop=True)
    return closed, open_

# --- Time-bucketed revenue ---

def get_monthly_revenue(opportunities):
    """One point per calendar month holding at least one won deal, ascending."""
    df = to_frame(opportunities)
    won = df[(df['status'] == 'Won') & df['actual_close_date'].notna()].copy()
    if won.empty:
        return []

    won['close_month'] = won['actual_close_date'].dt.to_period('M')
    monthly = won.groupby('close_month')['amount'].sum().sort_index()

    return [
        {'month': str(period), 'revenue': float(revenue), 'date': period.to_timestamp()}
        for period, revenue in monthly.items()
    ]


def calculate_quarterly_revenue(opportunities, as_of=None):
    """Won revenue closed within the trailing 3 calendar months."""
    as_of = resolve_as_of(as_of)
    df = to_frame(opportunities)
    cutoff = as_of - pd.DateOffset(months=3)
    mask = (
        (df['status'] == 'Won') &
        (df['actual_close_date'] >= cutoff) &
        (df['actual_close_date'] <= as_of)
    )
    return float(df.loc[mask, 'amount'].sum())

# --- Ages ---

def get_deal_age(created_date, as_of=None):
    """Days since creation; NaN when the creation date is unknown."""
    as_of = resolve_as_of(as_of)
    created = pd.to_datetime(created_date, errors='coerce')
    if pd.isna(created):
        return float('nan')
    if created.tzinfo is not None:
        created = created.tz_convert(None)
    return float((as_of - created).days)


def deal_ages(df, as_of=None):
    as_of = resolve_as_of(as_of)
    return (as_of - df['created_date']).dt.days.astype(float)


def days_to_close(df):
    return (df['actual_close_date'] - df['created_date']).dt.days.astype(float)

# --- Trend ---

def calculate_trend_slope(values):
    """Least-squares slope of a series against its index."""
    y = np.asarray([v['revenue'] if isinstance(v, dict) else v for v in values], dtype=float)
    if len(y) < 2:
        return 0.0
    slope, _ = np.polyfit(np.arange(len(y)), y, 1)
    return float(slope)

# --- Data quality ---

def validate_opportunities(opportunities):
    """Log data-quality problems. Never raises."""
    df = to_frame(opportunities)
    issues = 0

    bad_status = df[~df['status'].isin(STATUSES)]
    if len(bad_status) > 0:
        issues += len(bad_status)
        logger.warning(f"Found {len(bad_status)} records with unknown status: "
                       f"{sorted(set(map(str, bad_status['status'])))[:5]}")

    unknown_stage = df[df['stage'].notna() & ~df['stage'].isin(STAGES)]
    if len(unknown_stage) > 0:
        issues += len(unknown_stage)
        logger.warning(f"Found {len(unknown_stage)} records with unrecognised stage: "
                       f"{sorted(set(unknown_stage['stage']))[:5]}")

    neg = df[df['amount'] < 0]
    if len(neg) > 0:
        issues += len(neg)
        logger.warning(f"Found {len(neg)} records with negative amount")

    zombies = df[df['actual_close_date'] < df['created_date']]
    if len(zombies) > 0:
        issues += len(zombies)
        logger.warning(f"Found {len(zombies)} zombie records (actual_close_date < created_date). "
                       f"Sample ids: {list(zombies['id'])[:5]}")

    undated = df[(df['status'] == 'Won') & df['actual_close_date'].isna()]
    if len(undated) > 0:
        issues += len(undated)
        logger.warning(f"Found {len(undated)} won deals without actual_close_date; excluded from revenue series")

    return issues
