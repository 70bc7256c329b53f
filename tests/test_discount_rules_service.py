"""Tests for discount rule CRUD and validation."""
import json

import pytest

from enrollment_pricing.engine.errors import NotFoundError, ValidationError
from enrollment_pricing.services.discount_rules_service import (
    DiscountRulesService, DiscountRuleRecord, TierRecord,
)


@pytest.fixture
def service(tmp_path):
    return DiscountRulesService(
        rules_csv_path=tmp_path / 'rules' / 'discount_rules.csv',
        compiled_rules_path=tmp_path / 'rules' / 'compiled_discount_rules.json',
    )


def sibling_rule(rule_id="SIB-FAMILY", **kwargs):
    kwargs.setdefault('tiers', [
        TierRecord(discount_value="10", min_siblings=1),
        TierRecord(discount_value="15", min_siblings=2, description="Two or more"),
    ])
    return DiscountRuleRecord(rule_id=rule_id, name="Sibling Discount", priority=10, **kwargs)


def test_create_writes_csv_and_compiles(service):
    service.create_rule(sibling_rule())

    rules = service.list_rules()
    assert [r.rule_id for r in rules] == ["SIB-FAMILY"]
    assert [(t.discount_value, t.min_siblings) for t in rules[0].tiers] == [("10", 1), ("15", 2)]
    assert rules[0].tiers[1].description == "Two or more"

    compiled = json.loads(service.compiled_rules_path.read_text())
    assert compiled['rules'][0]['rule_id'] == "SIB-FAMILY"
    assert len(compiled['rules'][0]['tiers']) == 2


def test_create_generates_rule_id(service):
    created = service.create_rule(DiscountRuleRecord(
        rule_id="", name="Spring Bundle", type="volume",
        tiers=[TierRecord(discount_value="5", min_subjects=3)],
    ))

    assert created.rule_id == "VOLUME-SPRINGBU"
    again = service.create_rule(DiscountRuleRecord(
        rule_id="", name="Spring Bundle", type="volume",
        tiers=[TierRecord(discount_value="6", min_subjects=4)],
    ))
    assert again.rule_id == "VOLUME-SPRINGBU-1"


def test_create_duplicate_id_rejected(service):
    service.create_rule(sibling_rule())

    with pytest.raises(ValidationError):
        service.create_rule(sibling_rule())


def test_update_replaces_fields_and_tiers(service):
    service.create_rule(sibling_rule())

    updated = service.update_rule("SIB-FAMILY", {
        'priority': 5,
        'max_discount': "250",
        'tiers': [{'discount_value': "12", 'min_siblings': 1}],
    })

    assert updated.priority == 5
    stored = service.get_rule("SIB-FAMILY")
    assert stored.max_discount == "250"
    assert [t.discount_value for t in stored.tiers] == ["12"]
    compiled = json.loads(service.compiled_rules_path.read_text())
    assert compiled['rules'][0]['priority'] == 5


def test_invalid_update_leaves_file_unchanged(service):
    service.create_rule(sibling_rule())
    before = service.rules_csv_path.read_text()

    with pytest.raises(ValidationError):
        service.update_rule("SIB-FAMILY", {'tiers': [{'discount_value': "150", 'min_siblings': 1}]})
    assert service.rules_csv_path.read_text() == before


def test_update_and_delete_unknown_rule(service):
    with pytest.raises(NotFoundError):
        service.update_rule("NOPE", {'priority': 1})
    with pytest.raises(NotFoundError):
        service.delete_rule("NOPE")


def test_delete_removes_all_tier_rows(service):
    service.create_rule(sibling_rule())
    service.create_rule(sibling_rule("SIB-OTHER", tiers=[TierRecord(discount_value="3", min_siblings=3)]))

    service.delete_rule("SIB-FAMILY")

    assert [r.rule_id for r in service.list_rules()] == ["SIB-OTHER"]
    assert "SIB-FAMILY" not in service.rules_csv_path.read_text()


def test_validate_reports_errors(service):
    result = service.validate_rule(DiscountRuleRecord(rule_id="X", name="", tiers=[]))

    assert not result.valid
    assert "Name is required" in result.errors
    assert "At least one tier is required" in result.errors

    result = service.validate_rule(sibling_rule(application="percentage", tiers=[
        TierRecord(discount_value="10", min_siblings=1),
        TierRecord(discount_value="20", min_siblings=1),
    ]))
    assert not result.valid
    assert any("identical thresholds" in e for e in result.errors)


def test_validate_warns_on_expiry_and_conflicts(service):
    service.create_rule(sibling_rule())

    result = service.validate_rule(sibling_rule(
        "SIB-NEW", stackable=False, valid_from="2020-01-01", valid_to="2021-01-01",
    ))

    assert result.valid
    assert any("expired" in w for w in result.warnings)
    assert any("same type and priority" in w for w in result.warnings)
    assert any("does not stack" in w for w in result.warnings)


def test_stats(service):
    service.create_rule(sibling_rule())
    service.create_rule(DiscountRuleRecord(
        rule_id="VOL", name="Bundle", type="volume", active=False,
        tiers=[TierRecord(discount_value="5", min_subjects=3)],
    ))

    stats = service.get_stats()

    assert stats['total'] == 2
    assert stats['active'] == 1
    assert stats['inactive'] == 1
    assert stats['by_type'] == {'sibling': 1, 'volume': 1}


def test_list_filters_inactive(service):
    service.create_rule(sibling_rule(active=False))

    assert service.list_rules(include_inactive=False) == []
    assert len(service.list_rules()) == 1


def test_tier_dates_survive_csv_and_compile(service):
    service.create_rule(DiscountRuleRecord(
        rule_id="SEASON", name="Summer", type="seasonal", application="fixed_amount",
        tiers=[
            TierRecord(discount_value="50", season_start="2026-06-01", season_end="2026-07-01"),
            TierRecord(discount_value="30", season_start="2026-07-01", season_end="2026-09-01"),
        ],
    ))

    tiers = service.get_rule("SEASON").tiers
    assert [(t.season_start, t.season_end) for t in tiers] == [
        ("2026-06-01", "2026-07-01"), ("2026-07-01", "2026-09-01"),
    ]
    assert tiers[0].registration_before is None

    compiled = json.loads(service.compiled_rules_path.read_text())
    assert [t['season_start'] for t in compiled['rules'][0]['tiers']] == ["2026-06-01", "2026-07-01"]
