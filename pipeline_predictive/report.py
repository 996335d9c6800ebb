"""
Predictive Pipeline Report

Loads an opportunity extract, runs every analysis and exports:
- predictive_metrics.json  headline metrics, health report, forecast, insights
- deal_probabilities.csv   scored open deals
- revenue_forecast.csv     historical + predicted monthly revenue
- predictive_report.xlsx   formatted workbook for review

Run with `python -m pipeline_predictive.report`. Without a data file a mock
extract is generated first.
"""

import os
import json
import logging

import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side

from .config import DATA_PATH, EXPORT_DIR, setup_logging
from .helpers import COLUMN_ALIASES, to_frame, validate_opportunities, get_monthly_revenue, resolve_as_of
from .forecast import build_revenue_forecast
from .probability import calculate_deal_probabilities
from .health import analyze_pipeline_health
from .metrics import calculate_predictive_metrics
from .backtest import backtest_forecast
from .mock_generator import run_mock_generator

logger = logging.getLogger(__name__)

FORECAST_PERIOD = '6-months'
BACKTEST_HOLDOUT_MONTHS = 3
REQUIRED_COLUMNS = ['id', 'status', 'stage', 'amount', 'created_date']

# Styling
HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill('solid', fgColor='2F5496')
TITLE_FONT = Font(bold=True, size=12)
CURRENCY_FORMAT = '$#,##0'
PERCENT_FORMAT = '0.0"%"'
NUMBER_FORMAT = '#,##0.0'
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)

# =============================================================================
# DATA LOADING
# =============================================================================

def load_opportunities(path=DATA_PATH):
    df = pd.read_csv(path)
    df = df.rename(columns={k: v for k, v in COLUMN_ALIASES.items() if k in df.columns})

    missing = set(REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    df = to_frame(df)
    validate_opportunities(df)
    logger.info(f"Loaded {len(df):,} opportunities from {path}")
    return df

# =============================================================================
# EXCEL FORMATTING HELPERS
# =============================================================================

def style_header_row(ws, row_num, num_cols):
    for col in range(1, num_cols + 1):
        cell = ws.cell(row=row_num, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center', wrap_text=True)
        cell.border = THIN_BORDER


def auto_width(ws):
    for column_cells in ws.columns:
        lengths = [len(str(cell.value)) for cell in column_cells if cell.value is not None]
        if lengths:
            ws.column_dimensions[column_cells[0].column_letter].width = min(max(lengths) + 2, 60)


def _cell_value(value):
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    if pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    return value


def add_dataframe_to_sheet(ws, df, start_row=1, currency_cols=None, pct_cols=None, number_cols=None):
    currency_cols = currency_cols or []
    pct_cols = pct_cols or []
    number_cols = number_cols or []

    for c_idx, col_name in enumerate(df.columns, 1):
        ws.cell(row=start_row, column=c_idx, value=col_name)
    style_header_row(ws, start_row, len(df.columns))

    for r_idx, row in enumerate(df.itertuples(index=False), start_row + 1):
        for c_idx, value in enumerate(row, 1):
            cell = ws.cell(row=r_idx, column=c_idx, value=_cell_value(value))
            cell.border = THIN_BORDER

            col_name = df.columns[c_idx - 1]
            if col_name in currency_cols:
                cell.number_format = CURRENCY_FORMAT
            elif col_name in pct_cols:
                cell.number_format = PERCENT_FORMAT
            elif col_name in number_cols:
                cell.number_format = NUMBER_FORMAT


def build_summary_sheet(ws, metrics, health, backtest):
    ws.cell(row=1, column=1, value='PREDICTIVE PIPELINE SUMMARY').font = TITLE_FONT

    rows = [
        ('Predicted revenue', metrics['predicted_revenue'], CURRENCY_FORMAT),
        ('Revenue growth vs trailing quarter', metrics['revenue_growth'], PERCENT_FORMAT),
        ('Expected deals', metrics['expected_deals'], NUMBER_FORMAT),
        ('Pipeline health score', health['health_score'], None),
        ('Pipeline health status', health['status'], None),
        ('At-risk deals', health['at_risk_deals'], None),
        ('Forecast method', metrics['confidence']['forecast_method'], None),
        ('Forecast confidence', metrics['confidence']['forecast'], None),
        ('History months', metrics['confidence']['history_months'], None),
        ('Closed deals', metrics['confidence']['closed_deals'], None),
        ('Probability method', metrics['confidence']['probability_method'], None),
    ]
    if backtest is not None and backtest['mape'] is not None:
        rows += [
            ('Backtest MAPE', backtest['mape'], PERCENT_FORMAT),
            ('Backtest bias', backtest['bias'], PERCENT_FORMAT),
        ]

    for r, (label, value, fmt) in enumerate(rows, start=3):
        ws.cell(row=r, column=1, value=label).border = THIN_BORDER
        cell = ws.cell(row=r, column=2, value=_cell_value(value))
        cell.border = THIN_BORDER
        if fmt:
            cell.number_format = fmt
    auto_width(ws)

# =============================================================================
# EXPORT
# =============================================================================

def _json_default(o):
    if isinstance(o, pd.DataFrame):
        return o.to_dict('records')
    if pd.isna(o):
        return None
    if isinstance(o, pd.Timestamp):
        return o.isoformat()
    if isinstance(o, np.generic):
        return o.item()
    return str(o)


def export_report(bundle, export_dir=EXPORT_DIR):
    os.makedirs(export_dir, exist_ok=True)

    json_path = os.path.join(export_dir, 'predictive_metrics.json')
    with open(json_path, 'w') as f:
        json.dump(bundle, f, indent=4, default=_json_default)

    scored = pd.DataFrame(bundle['deal_probabilities'])
    forecast = pd.DataFrame(bundle['revenue_forecast']['points'])
    scored.to_csv(os.path.join(export_dir, 'deal_probabilities.csv'), index=False)
    forecast.to_csv(os.path.join(export_dir, 'revenue_forecast.csv'), index=False)

    health = bundle['pipeline_health']
    wb = Workbook()
    ws_summary = wb.active
    ws_summary.title = 'Summary'
    build_summary_sheet(ws_summary, bundle['predictive_metrics'], health, bundle.get('backtest'))

    ws_forecast = wb.create_sheet('Revenue_Forecast')
    add_dataframe_to_sheet(ws_forecast, forecast, currency_cols=['historical', 'predicted'])
    auto_width(ws_forecast)

    ws_deals = wb.create_sheet('Deal_Probabilities')
    deal_cols = [c for c in ['id', 'company_name', 'stage', 'assigned_rep', 'amount', 'probability',
                             'risk_score', 'risk_level', 'confidence', 'method'] if c in scored.columns]
    add_dataframe_to_sheet(ws_deals, scored[deal_cols] if deal_cols else scored,
                           currency_cols=['amount'], pct_cols=['probability'])
    auto_width(ws_deals)

    ws_velocity = wb.create_sheet('Stage_Velocity')
    add_dataframe_to_sheet(ws_velocity, pd.DataFrame(health['stage_velocity'], columns=['stage', 'avg_days', 'deals']),
                           number_cols=['avg_days'])
    auto_width(ws_velocity)

    ws_conv = wb.create_sheet('Conversion_Rates')
    add_dataframe_to_sheet(ws_conv, pd.DataFrame(health['conversion_rates'], columns=['stage', 'rate', 'won', 'total']),
                           pct_cols=['rate'])
    auto_width(ws_conv)

    ws_insights = wb.create_sheet('Insights')
    metrics = bundle['predictive_metrics']
    add_dataframe_to_sheet(ws_insights, pd.DataFrame(metrics['insights'], columns=['type', 'title', 'description']))
    auto_width(ws_insights)

    ws_recs = wb.create_sheet('Recommendations')
    add_dataframe_to_sheet(ws_recs, pd.DataFrame(metrics['recommendations'],
                                                 columns=['action', 'reason', 'priority', 'impact', 'effort']))
    auto_width(ws_recs)

    xlsx_path = os.path.join(export_dir, 'predictive_report.xlsx')
    wb.save(xlsx_path)
    logger.info(f"Exported report to {export_dir}")
    return {'json': json_path, 'xlsx': xlsx_path}

# =============================================================================
# MAIN
# =============================================================================

def build_report(opportunities, period=FORECAST_PERIOD, seed=None, as_of=None):
    rng = np.random.default_rng(seed)
    df = to_frame(opportunities)
    monthly = get_monthly_revenue(df)

    return {
        'period': period,
        'predictive_metrics': calculate_predictive_metrics(df, period, rng=rng, as_of=as_of),
        'revenue_forecast': build_revenue_forecast(monthly, period, rng=rng, as_of=as_of),
        'deal_probabilities': calculate_deal_probabilities(df, rng=rng, as_of=as_of),
        'pipeline_health': analyze_pipeline_health(df, as_of=as_of),
        'backtest': backtest_forecast(monthly, BACKTEST_HOLDOUT_MONTHS),
    }


def print_summary(bundle):
    metrics = bundle['predictive_metrics']
    health = bundle['pipeline_health']

    print("\n" + "=" * 60)
    print("PREDICTIVE PIPELINE SUMMARY")
    print("=" * 60)
    print(f"\nForecast ({bundle['period']}): ${metrics['predicted_revenue']:,.0f} "
          f"({metrics['revenue_growth']:+.1f}% vs trailing quarter)")
    print(f"  Method: {metrics['confidence']['forecast_method']} "
          f"({metrics['confidence']['forecast']} confidence, {metrics['confidence']['history_months']} months of history)")
    print(f"Expected deals: {metrics['expected_deals']:.1f} ({metrics['confidence']['probability_method']} scoring)")
    print(f"Pipeline health: {health['health_score']} ({health['status']}), {health['at_risk_deals']} at-risk deals")

    if bundle.get('backtest') and bundle['backtest']['mape'] is not None:
        print(f"Backtest MAPE: {bundle['backtest']['mape']:.1f}%")

    print(f"\nTop deals:")
    for deal in bundle['deal_probabilities'][:5]:
        print(f"  {str(deal['id']):15s} {str(deal['stage']):18s} ${deal['amount']:>12,.0f}  "
              f"{deal['probability']:>3}%  {deal['risk_level']}")

    print(f"\nInsights:")
    for insight in metrics['insights']:
        print(f"  [{insight['type']}] {insight['title']}")
    print(f"\nRecommendations:")
    for rec in metrics['recommendations']:
        print(f"  [{rec['priority']}] {rec['action']}")


def run_report(path=DATA_PATH, period=FORECAST_PERIOD, seed=None, as_of=None, export_dir=EXPORT_DIR):
    setup_logging()
    as_of = resolve_as_of(as_of).normalize()

    if not os.path.exists(path):
        logger.warning(f"No data at {path}; generating mock opportunities")
        start = (as_of - pd.DateOffset(months=24)).strftime('%Y-%m-01')
        run_mock_generator(path, seed=seed, start=start, months=25, as_of=as_of)

    opportunities = load_opportunities(path)
    bundle = build_report(opportunities, period=period, seed=seed, as_of=as_of)
    print_summary(bundle)
    export_report(bundle, export_dir)
    return bundle


if __name__ == "__main__":
    run_report()
