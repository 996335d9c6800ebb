import os
import logging

# --- Logging setup ---

def setup_logging(level=logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

# --- Paths ---

def _project_root():
    d = os.path.dirname(os.path.abspath(__file__))
    return os.path.dirname(d)

_ROOT = _project_root()
DATA_PATH = os.environ.get('PIPELINE_PREDICTIVE_DATA', os.path.join(_ROOT, 'data', 'opportunities.csv'))
EXPORT_DIR = os.environ.get('PIPELINE_PREDICTIVE_EXPORTS', os.path.join(_ROOT, 'exports'))

# --- Stages ---

STAGES = ['Lead', 'Qualified', '1st Demo', 'Discovery', 'Technical Review', 'Proposal', 'Negotiation']

STAGE_ALIASES = {
    'prospecting': 'Lead',
    'qualification': 'Qualified',
    'needs analysis': 'Discovery',
}

STAGE_PHASES = {
    'Lead':             'Prospecting',
    'Qualified':        'Qualification',
    '1st Demo':         'Needs Analysis',
    'Discovery':        'Needs Analysis',
    'Technical Review': 'Needs Analysis',
    'Proposal':         'Proposal',
    'Negotiation':      'Negotiation',
}

EARLY_PHASES = ['Prospecting', 'Qualification']
LATE_PHASES = ['Proposal', 'Negotiation']

STATUSES = ['Open', 'Won', 'Lost']
CLOSED_STATUSES = ['Won', 'Lost']

# --- Lookup tables ---

# Prior win probability (%) blended with observed stage win rates
STAGE_BASE_PROBABILITIES = {
    'Lead': 20,
    'Qualified': 35,
    '1st Demo': 45,
    'Discovery': 55,
    'Technical Review': 65,
    'Proposal': 75,
    'Negotiation': 85
}

# Used when there are too few closed deals to score
BASIC_STAGE_PROBABILITIES = {
    'Lead': 15,
    'Qualified': 30,
    '1st Demo': 45,
    'Discovery': 55,
    'Technical Review': 65,
    'Proposal': 75,
    'Negotiation': 85
}

IDEAL_STAGE_DISTRIBUTION = {
    'Prospecting':    0.25,
    'Qualification':  0.20,
    'Needs Analysis': 0.20,
    'Proposal':       0.20,
    'Negotiation':    0.15
}

STAGE_RISK = {
    'Prospecting':    40,
    'Qualification':  30,
    'Needs Analysis': 20,
    'Proposal':       15,
    'Negotiation':    10
}

# Legacy demo spread, only used when ASSUMPTIONS['demo_spread'] is on
DEMO_STAGE_SPREAD = {
    'Lead':             (0.3, 0.4),
    'Qualified':        (0.4, 0.6),
    '1st Demo':         (0.5, 0.8),
    'Discovery':        (0.6, 0.9),
    'Technical Review': (0.7, 0.8),
    'Proposal':         (0.8, 0.7),
    'Negotiation':      (0.9, 0.6)
}
DEMO_REP_MULTIPLIERS = {}

ASSUMPTIONS = {
    # Forecasting
    'smoothing_alpha': 0.3,
    'smoothing_beta': 0.1,
    'min_history_months': 3,
    'default_monthly_revenue': 100_000,
    'fallback_jitter': 0.10,            # +/- width on the flat fallback
    'forecast_jitter': 0.05,            # +/- width on Holt projections

    # Probability scoring
    'min_closed_deals': 5,
    'stage_confidence_sample': 10,
    'default_stage_probability': 50,
    'default_basic_probability': 40,
    'stage_probability_floor': 10,
    'stage_probability_ceiling': 90,
    'min_rep_deals': 3,
    'rep_multiplier_range': (0.4, 1.6),
    'seasonal_min_closes': 2,
    'seasonal_fallback_win_rate': 0.3,
    'seasonal_multiplier_range': (0.85, 1.15),
    'competitive_penalty': 0.9,
    'probability_range': (5, 95),
    'expected_deals_fallback_rate': 0.3,
    'demo_spread': False,

    # Risk
    'base_risk': 50,
    'default_stage_risk': 25,
    'low_risk_below': 30,
    'high_risk_above': 70,

    # Pipeline health
    'base_health': 50,
    'target_pipeline_deals': 40,
    'target_conversion_rate': 50,
    'stale_velocity_multiple': 1.8,
    'large_deal_amount': 500_000,
    'large_deal_max_age': 120,

    # Insights & recommendations
    'momentum_threshold': 15,
    'late_stage_low': 0.15,
    'late_stage_high': 0.40,
    'rep_variance_min_deals': 5,
    'rep_variance_threshold': 25,
    'deal_size_min_won': 10,
    'deal_size_trend_threshold': 20,
    'seasonal_variance_threshold': 0.40,
    'stale_deal_days': 90,
    'coaching_win_rate': 40,
    'coaching_min_deals': 5,
    'pipeline_coverage_ratio': 3,
    'early_stage_share': 0.60,

    # Tables
    'stage_base_probabilities': STAGE_BASE_PROBABILITIES,
    'basic_stage_probabilities': BASIC_STAGE_PROBABILITIES,
    'ideal_stage_distribution': IDEAL_STAGE_DISTRIBUTION,
    'stage_risk': STAGE_RISK,
    'demo_stage_spread': DEMO_STAGE_SPREAD,
    'demo_rep_multipliers': DEMO_REP_MULTIPLIERS,
}


def resolve_assumptions(assumptions=None):
    """Overlay a partial assumptions dict on the defaults."""
    resolved = dict(ASSUMPTIONS)
    if assumptions:
        unknown = set(assumptions) - set(ASSUMPTIONS)
        if unknown:
            logging.getLogger(__name__).warning(f"Ignoring unknown assumptions: {sorted(unknown)}")
        resolved.update({k: v for k, v in assumptions.items() if k in ASSUMPTIONS})
    return resolved
