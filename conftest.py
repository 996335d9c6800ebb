import numpy as np
import pandas as pd
import pytest

AS_OF = pd.Timestamp('2025-06-30')


def _make_opp(deal_id, status='Open', stage='Proposal', amount=40000, rep='Riley Novak',
              created='2025-05-01', proj_close='2025-08-15', closed=None, company=None):
    """Opportunity record in the dashboard API shape."""
    return {
        'id': deal_id,
        'status': status,
        'stage': stage,
        'amount': amount,
        'assignedRep': rep,
        'createdDate': created,
        'projCloseDate': proj_close,
        'actualCloseDate': closed,
        'companyName': company,
    }


def _steady_history():
    """
    Jul 2024 - Jun 2025: every month two $40k wins in Negotiation and one $40k
    loss in Qualified, all closing on the 15th, 45 days after creation.
    Reps alternate by month so both have identical win rates.
    """
    records = []
    for i, period in enumerate(pd.period_range('2024-07', periods=12, freq='M')):
        close = period.to_timestamp() + pd.Timedelta(days=14)
        created = close - pd.Timedelta(days=45)
        rep = 'Avery Chen' if i % 2 == 0 else 'Jordan Patel'
        for j, status in enumerate(['Won', 'Won', 'Lost']):
            records.append(_make_opp(
                f"H-{i:02d}-{j}",
                status=status,
                stage='Negotiation' if status == 'Won' else 'Qualified',
                rep=rep,
                created=created.strftime('%Y-%m-%d'),
                proj_close=close.strftime('%Y-%m-%d'),
                closed=close.strftime('%Y-%m-%d'),
            ))
    return records


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def make_opp():
    return _make_opp


@pytest.fixture
def rng():
    return np.random.default_rng(7)


@pytest.fixture
def history():
    return _steady_history()


@pytest.fixture
def no_jitter():
    return {'forecast_jitter': 0.0, 'fallback_jitter': 0.0}


@pytest.fixture
def mock_opportunities():
    from pipeline_predictive.mock_generator import generate_opportunities
    return generate_opportunities(start='2024-01-01', months=18, as_of='2025-06-30', seed=42)
