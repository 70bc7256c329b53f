"""Tests for the reference data check report."""
import json
from pathlib import Path

from enrollment_pricing.config.settings import Settings
from enrollment_pricing.data.data_report import build_data_report

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def test_clean_data_passes(settings, tmp_path):
    output = tmp_path / 'outputs' / 'data_report.json'
    report = build_data_report(settings, verbose=False, output_path=output)

    assert report['status'] == 'success'
    assert report['metrics']['subjects_count'] == 6
    assert report['metrics']['free_subjects'] == 1
    assert report['metrics']['dangling_enrollments'] == 0
    assert report['input_files']['classes']['hash']
    assert json.loads(output.read_text())['status'] == 'success'


def test_problems_are_reported(settings):
    subjects = settings.subjects_csv
    subjects.write_text(
        subjects.read_text()
        + "MATH,C1,Duplicate Math,1.00,false,true\n"
        + "GEO,C9,Geography,200.00,false,true\n"
    )
    enrollments = settings.enrollments_csv
    enrollments.write_text(enrollments.read_text() + "S99,MATH,active\n")

    report = build_data_report(settings, verbose=False)

    assert report['status'] == 'success'
    assert report['metrics']['subjects_duplicates'] == 1
    assert report['metrics']['dangling_enrollments'] == 1
    assert any("unknown class: GEO" in w for w in report['warnings'])


def test_bad_price_fails(settings):
    settings.subjects_csv.write_text(
        settings.subjects_csv.read_text() + "BAD,C1,Broken,-5,false,true\n"
    )

    report = build_data_report(settings, verbose=False)

    assert report['status'] == 'failed'
    assert "BAD" in report['errors'][0]


def test_missing_required_file_fails(settings):
    settings.students_csv.unlink()

    report = build_data_report(settings, verbose=False)

    assert report['status'] == 'failed'
    assert report['errors']


def test_shipped_reference_data_is_clean():
    report = build_data_report(Settings.load(PROJECT_ROOT), verbose=False)

    assert report['status'] == 'success', report['errors']
    assert report['warnings'] == []


def test_price_book_problems_are_reported(settings):
    settings.subject_pricing_csv.write_text(
        "pricing_id,class_id,subject_id,base_price,valid_from,valid_to,is_active\n"
        "PRICE-OK,C1,MATH,650.00,2026-01-01,,true\n"
        "PRICE-NEG,C1,SCI,-10,2026-01-01,,true\n"
        "PRICE-ELSEWHERE,C2,MATH,650.00,2026-01-01,,true\n"
    )

    report = build_data_report(settings, verbose=False)

    assert report['status'] == 'failed'
    assert report['metrics']['subject_prices_count'] == 3
    assert any("PRICE-NEG" in e for e in report['errors'])
    assert any("PRICE-ELSEWHERE" in w for w in report['warnings'])
