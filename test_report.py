import os
import json

import pandas as pd
import pytest
from openpyxl import load_workbook

from pipeline_predictive.report import load_opportunities, build_report, export_report, run_report

SHEETS = ['Summary', 'Revenue_Forecast', 'Deal_Probabilities', 'Stage_Velocity',
          'Conversion_Rates', 'Insights', 'Recommendations']


def test_load_opportunities_accepts_camel_case(tmp_path, mock_opportunities):
    path = tmp_path / 'opps.csv'
    pd.DataFrame(mock_opportunities).to_csv(path, index=False)
    df = load_opportunities(str(path))
    assert len(df) == len(mock_opportunities)
    assert {'assigned_rep', 'created_date', 'actual_close_date'} <= set(df.columns)
    assert df['created_date'].notna().all()


def test_load_opportunities_rejects_missing_columns(tmp_path):
    path = tmp_path / 'bad.csv'
    pd.DataFrame([{'id': 1, 'status': 'Open', 'stage': 'Lead'}]).to_csv(path, index=False)
    with pytest.raises(ValueError, match='amount'):
        load_opportunities(str(path))


@pytest.fixture
def bundle(mock_opportunities, as_of):
    return build_report(mock_opportunities, period='6-months', seed=4, as_of=as_of)


def test_build_report(bundle, mock_opportunities):
    assert set(bundle) == {'period', 'predictive_metrics', 'revenue_forecast', 'deal_probabilities',
                           'pipeline_health', 'backtest'}
    open_count = sum(1 for o in mock_opportunities if o['status'] == 'Open')
    assert len(bundle['deal_probabilities']) == open_count
    assert bundle['backtest'] is not None


def test_export_report(bundle, tmp_path):
    paths = export_report(bundle, str(tmp_path))

    with open(paths['json']) as f:
        exported = json.load(f)
    assert exported['predictive_metrics']['predicted_revenue'] == bundle['predictive_metrics']['predicted_revenue']
    assert len(exported['deal_probabilities']) == len(bundle['deal_probabilities'])

    assert os.path.exists(tmp_path / 'deal_probabilities.csv')
    forecast = pd.read_csv(tmp_path / 'revenue_forecast.csv')
    assert list(forecast.columns) == ['month', 'historical', 'predicted']

    wb = load_workbook(paths['xlsx'])
    assert wb.sheetnames == SHEETS
    assert wb['Summary']['A1'].value == 'PREDICTIVE PIPELINE SUMMARY'
    assert wb['Deal_Probabilities']['A1'].value == 'id'
    assert wb['Deal_Probabilities'].max_row == len(bundle['deal_probabilities']) + 1


def test_export_report_with_empty_pipeline(tmp_path, as_of):
    paths = export_report(build_report([], seed=1, as_of=as_of), str(tmp_path))
    assert load_workbook(paths['xlsx']).sheetnames == SHEETS


def test_run_report_generates_mock_data(tmp_path, capsys):
    data_path = tmp_path / 'data' / 'opportunities.csv'
    export_dir = tmp_path / 'exports'
    bundle = run_report(path=str(data_path), seed=3, as_of='2025-06-30', export_dir=str(export_dir))

    assert data_path.exists()
    assert (export_dir / 'predictive_report.xlsx').exists()
    assert 0 <= bundle['pipeline_health']['health_score'] <= 100
    assert 'PREDICTIVE PIPELINE SUMMARY' in capsys.readouterr().out
