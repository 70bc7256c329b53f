"""Tests for the discount rule compiler (CSV -> JSON)."""
import csv
import json
from pathlib import Path

import pytest

from enrollment_pricing.engine.discount_matcher import RuleMatcher
from enrollment_pricing.rules.compile_rules import CSV_COLUMNS, compile_rules

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def write_rules(path, rows):
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow({col: row.get(col, '') for col in CSV_COLUMNS})
    return path


def tier_row(rule_id="SIB", **overrides):
    row = {
        'rule_id': rule_id, 'name': 'Sibling', 'type': 'sibling', 'application': 'percentage',
        'active': 'true', 'priority': '10', 'stackable': 'true',
        'min_siblings': '1', 'discount_value': '10',
    }
    row.update(overrides)
    return row


def test_tiers_grouped_and_sorted(tmp_path):
    rules_csv = write_rules(tmp_path / 'rules.csv', [
        tier_row(min_siblings='2', discount_value='15'),
        tier_row(min_siblings='1', discount_value='10'),
        tier_row('VOL', name='Bundle', type='volume', priority='5', min_siblings='',
                 min_subjects='3', discount_value='5', max_discount='150'),
    ])
    output = tmp_path / 'compiled.json'

    success, rules, errors = compile_rules(rules_csv, output, verbose=False)

    assert success, errors
    assert [r['rule_id'] for r in rules] == ['VOL', 'SIB']
    sib = rules[1]
    assert [t['value'] for t in sib['tiers']] == ['10', '15']
    assert rules[0]['max_discount'] == '150'

    data = json.loads(output.read_text())
    assert data['total_rules'] == 2
    assert data['active_rules'] == 2

    matcher = RuleMatcher(output)
    assert [r.rule_id for r in matcher.rules] == ['VOL', 'SIB']


@pytest.mark.parametrize("overrides, message", [
    ({'type': 'loyalty'}, "invalid type"),
    ({'application': 'bogo'}, "invalid application"),
    ({'discount_value': '120'}, "cannot exceed 100"),
    ({'discount_value': '-5'}, "cannot be negative"),
    ({'discount_value': ''}, "discount_value is required"),
    ({'discount_value': 'ten'}, "must be numeric"),
    ({'priority': '0'}, "priority must be at least 1"),
    ({'max_discount': '-1'}, "max_discount cannot be negative"),
    ({'min_siblings': '-1'}, "min_siblings cannot be negative"),
    ({'valid_from': '2026-13-01'}, "valid_from must be"),
    ({'valid_from': '2026-04-01', 'valid_to': '2026-01-01'}, "valid_from must be before valid_to"),
    ({'registration_before': '2026-02-30'}, "registration_before must be YYYY-MM-DD"),
    ({'registration_before': '2026-02-01'}, "registration_before only applies to early_bird rules"),
    ({'season_start': '2026-06-01'}, "season_start only applies to seasonal rules"),
    ({'type': 'seasonal', 'season_start': '2026-09-01', 'season_end': '2026-06-01'},
     "season_start must be before season_end"),
])
def test_invalid_rows_are_reported(tmp_path, overrides, message):
    rules_csv = write_rules(tmp_path / 'rules.csv', [tier_row(**overrides)])
    output = tmp_path / 'compiled.json'

    success, _, errors = compile_rules(rules_csv, output, verbose=False)

    assert not success
    assert any(message in e for e in errors), errors
    assert not output.exists()


def test_tiers_must_agree_on_rule_fields(tmp_path):
    rules_csv = write_rules(tmp_path / 'rules.csv', [
        tier_row(min_siblings='1'),
        tier_row(min_siblings='2', priority='20'),
    ])

    success, _, errors = compile_rules(rules_csv, tmp_path / 'compiled.json', verbose=False)

    assert not success
    assert any("priority differs" in e for e in errors)


def test_duplicate_tier_thresholds_rejected(tmp_path):
    rules_csv = write_rules(tmp_path / 'rules.csv', [
        tier_row(discount_value='10'),
        tier_row(discount_value='12'),
    ])

    success, _, errors = compile_rules(rules_csv, tmp_path / 'compiled.json', verbose=False)

    assert not success
    assert any("identical thresholds" in e for e in errors)


def test_deadline_tiers_are_distinct_and_ordered(tmp_path):
    rules_csv = write_rules(tmp_path / 'rules.csv', [
        tier_row('EARLY', type='early_bird', min_siblings='', discount_value='10',
                 registration_before='2026-02-01'),
        tier_row('EARLY', type='early_bird', min_siblings='', discount_value='7',
                 registration_before='2026-04-01'),
    ])

    success, rules, errors = compile_rules(rules_csv, tmp_path / 'compiled.json', verbose=False)

    assert success, errors
    tiers = rules[0]['tiers']
    assert [t['registration_before'] for t in tiers] == ['2026-04-01', '2026-02-01']
    assert tiers[0]['season_start'] is None


def test_missing_rules_file(tmp_path):
    success, rules, errors = compile_rules(tmp_path / 'nope.csv', tmp_path / 'out.json', verbose=False)

    assert not success
    assert rules == []
    assert "not found" in errors[0]


def test_shipped_rules_match_compiled_file(tmp_path):
    """rules/compiled_discount_rules.json must be rebuilt whenever the CSV changes."""
    output = tmp_path / 'compiled.json'
    success, rules, errors = compile_rules(
        PROJECT_ROOT / 'rules' / 'discount_rules.csv', output, verbose=False
    )

    assert success, errors
    shipped = json.loads((PROJECT_ROOT / 'rules' / 'compiled_discount_rules.json').read_text())
    assert rules == shipped['rules']
    assert shipped['active_rules'] == sum(1 for r in rules if r['active'])
