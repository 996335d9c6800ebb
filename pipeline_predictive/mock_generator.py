import os
import random
import logging
from datetime import datetime, timedelta

import pandas as pd

from .config import STAGES, DATA_PATH

# ==========================================
# CONFIGURATION
# ==========================================
"""
Mock opportunity generator for demos and tests.
- ~12 deals/month with monthly seasonality
- Segment-specific deal size, win rate and sales cycle
- Reps with distinct win-rate profiles
- Records use the dashboard API shape (camelCase keys, ISO date strings)
"""

logger = logging.getLogger(__name__)

DEALS_PER_MONTH = 12

SEGMENT_CONFIG = {
    'Large Market': {
        'pct_of_deals': 0.15,
        'revenue_min': 150000,
        'revenue_max': 600000,
        'win_rate': 0.25,
        'dso_mean': 120,
        'dso_std': 30
    },
    'Mid Market': {
        'pct_of_deals': 0.35,
        'revenue_min': 40000,
        'revenue_max': 149000,
        'win_rate': 0.35,
        'dso_mean': 75,
        'dso_std': 20
    },
    'Small Market': {
        'pct_of_deals': 0.50,
        'revenue_min': 5000,
        'revenue_max': 39000,
        'win_rate': 0.45,
        'dso_mean': 40,
        'dso_std': 12
    }
}

# Monthly multipliers (Q4 heavy, Q1 slow)
SEASONALITY = {
    1: 0.70,
    2: 0.80,
    3: 0.95,
    4: 1.00,
    5: 1.00,
    6: 1.10,
    7: 0.85,
    8: 0.85,
    9: 1.05,
    10: 1.15,
    11: 1.20,
    12: 1.35
}

# Win-rate multiplier per rep
REPS = {
    'Avery Chen': 1.35,
    'Jordan Patel': 1.10,
    'Riley Novak': 1.00,
    'Sam Okafor': 0.85,
    'Casey Lindqvist': 0.55,
}

# Stage a closed deal had reached when it was decided
WON_STAGE_WEIGHTS = [1, 2, 3, 4, 5, 8, 10]
LOST_STAGE_WEIGHTS = [10, 8, 6, 5, 4, 3, 2]

COMPANY_NAMES = ["CloudScale", "DataVantage", "Nexus", "Apex", "Synergy", "Vertex", "Quantum", "Beacon",
                 "IronGate", "SilverLine", "CoreTech", "Zenith", "Horizon", "Pinnacle", "Vanguard", "Catalyst",
                 "Hyperion", "Summit", "Helix", "Atlas", "Sentinel", "NorthStar", "Keystone", "Everest"]
COMPANY_SUFFIXES = ["Logistics", "Networks", "Industries", "Group", "Technologies", "Systems", "Solutions"]


# ==========================================
# DEAL GENERATION
# ==========================================

def generate_deal_id(year, index):
    return f"OPP-{year}-{index:04d}"


def get_segment_for_deal(rand):
    r = rand.random()
    cumulative = 0
    for segment, config in SEGMENT_CONFIG.items():
        cumulative += config['pct_of_deals']
        if r <= cumulative:
            return segment
    return 'Small Market'


def get_monthly_deal_count(rand, base_count, month):
    multiplier = SEASONALITY.get(month, 1.0)
    adjusted = base_count * multiplier * rand.uniform(0.85, 1.15)
    return max(1, int(round(adjusted)))


def _iso(dt):
    return dt.strftime('%Y-%m-%d') if dt is not None else None


def generate_deal(rand, deal_id, date_created, as_of):
    segment = get_segment_for_deal(rand)
    config = SEGMENT_CONFIG[segment]
    rep = rand.choice(list(REPS))

    close_days = max(7, int(rand.gauss(config['dso_mean'], config['dso_std'])))
    date_closed = date_created + timedelta(days=close_days)
    amount = rand.randint(config['revenue_min'], config['revenue_max'])
    company = f"{rand.choice(COMPANY_NAMES)} {rand.choice(COMPANY_SUFFIXES)}"

    if date_closed <= as_of:
        is_won = rand.random() < min(0.95, config['win_rate'] * REPS[rep])
        weights = WON_STAGE_WEIGHTS if is_won else LOST_STAGE_WEIGHTS
        stage = rand.choices(STAGES, weights=weights)[0]
        status = 'Won' if is_won else 'Lost'
        actual_close = date_closed
    else:
        # Stage follows how far through its expected cycle the deal is
        progress = (as_of - date_created).days / close_days
        stage = STAGES[min(len(STAGES) - 1, int(progress * len(STAGES)))]
        status = 'Open'
        actual_close = None

    return {
        'id': deal_id,
        'status': status,
        'stage': stage,
        'amount': amount,
        'assignedRep': rep,
        'createdDate': _iso(date_created),
        'projCloseDate': _iso(date_closed),
        'actualCloseDate': _iso(actual_close),
        'companyName': company,
        'segment': segment,
    }


def generate_opportunities(start='2024-01-01', months=24, deals_per_month=DEALS_PER_MONTH, as_of=None, seed=None):
    """Opportunities created monthly from `start`; anything closing after `as_of` is still open."""
    rand = random.Random(seed)
    start_dt = pd.Timestamp(start).to_pydatetime()
    periods = pd.period_range(start_dt, periods=months, freq='M')
    as_of_dt = pd.Timestamp(as_of).to_pydatetime() if as_of is not None else (periods[-1] + 1).start_time.to_pydatetime() - timedelta(days=1)

    deals = []
    counter = 1
    for period in periods:
        for _ in range(get_monthly_deal_count(rand, deals_per_month, period.month)):
            day = rand.randint(1, period.days_in_month)
            date_created = datetime(period.year, period.month, day)
            if date_created > as_of_dt:
                continue
            deals.append(generate_deal(rand, generate_deal_id(period.year, counter), date_created, as_of_dt))
            counter += 1

    return deals


# ==========================================
# MAIN EXECUTION
# ==========================================

def run_mock_generator(output_file=DATA_PATH, seed=None, **kwargs):
    print("=" * 70)
    print("MOCK OPPORTUNITY GENERATOR")
    print("=" * 70)

    deals = generate_opportunities(seed=seed, **kwargs)
    df = pd.DataFrame(deals)

    print(f"\n  Total opportunities: {len(df):,}")
    for status, count in df['status'].value_counts().items():
        print(f"    {status:6s}: {count:>5,}  ${df.loc[df['status'] == status, 'amount'].sum():>14,.0f}")

    print(f"\n  Open pipeline by stage:")
    open_df = df[df['status'] == 'Open']
    for stage in STAGES:
        count = int((open_df['stage'] == stage).sum())
        if count:
            print(f"    {stage:20s}: {count:>4}")

    closed = df[df['status'].isin(['Won', 'Lost'])]
    print(f"\n  Win rate by rep:")
    for rep, group in closed.groupby('assignedRep'):
        print(f"    {rep:20s}: {(group['status'] == 'Won').mean() * 100:5.1f}% of {len(group)}")

    os.makedirs(os.path.dirname(output_file) or '.', exist_ok=True)
    df.to_csv(output_file, index=False)
    print(f"\n  Saved: {output_file}")
    logger.info(f"Wrote {len(df)} mock opportunities to {output_file}")

    return deals


if __name__ == "__main__":
    run_mock_generator(seed=42)
