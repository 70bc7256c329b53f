"""Tests for discount rule matching, tier selection and amount computation."""
import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from enrollment_pricing.engine.discount_matcher import (
    RuleMatcher, DiscountContext, MatchedDiscount, rule_from_json,
)
from enrollment_pricing.engine.models import DiscountTier, DiscountType, DiscountApplication, parse_timestamp

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def context(siblings=0, subjects=2, base="1000", siblings_total=None, at=NOW):
    return DiscountContext(
        calculated_at=at,
        sibling_count=siblings,
        subject_count=subjects,
        total_base_price=Decimal(base),
        total_siblings_price=Decimal(siblings_total) if siblings_total is not None else None,
    )


def test_rules_returned_in_priority_order(make_rule):
    matcher = RuleMatcher(rules=[
        make_rule("C", priority=30),
        make_rule("A", priority=10),
        make_rule("B", priority=10),
    ])
    matched = matcher.get_applicable_rules(context())

    assert [m.rule.rule_id for m in matched] == ["A", "B", "C"]


def test_inactive_rules_are_dropped(make_rule):
    matcher = RuleMatcher(rules=[make_rule("OFF", active=False), make_rule("ON")])

    assert [r.rule_id for r in matcher.rules] == ["ON"]


@pytest.mark.parametrize("rule_type, ctx, applies", [
    (DiscountType.SIBLING, context(siblings=0), False),
    (DiscountType.SIBLING, context(siblings=1), True),
    (DiscountType.VOLUME, context(subjects=1), False),
    (DiscountType.VOLUME, context(subjects=2), True),
    (DiscountType.EARLY_BIRD, context(subjects=1), True),
    (DiscountType.SEASONAL, context(subjects=1), True),
    (DiscountType.CUSTOM, context(subjects=1), True),
])
def test_type_gates(make_rule, rule_type, ctx, applies):
    matcher = RuleMatcher(rules=[make_rule("R", type=rule_type)])

    assert bool(matcher.get_applicable_rules(ctx)) is applies


def test_unknown_type_is_rejected():
    with pytest.raises(ValueError):
        RuleMatcher._type_gate("loyalty", context())


def test_highest_satisfied_tier_is_selected(make_rule):
    rule = make_rule("VOL", type=DiscountType.VOLUME, tiers=[
        DiscountTier(value=Decimal("8"), min_subjects=4),
        DiscountTier(value=Decimal("5"), min_subjects=3),
    ])
    matcher = RuleMatcher(rules=[rule])

    assert matcher.get_applicable_rules(context(subjects=2)) == []
    assert matcher.get_applicable_rules(context(subjects=3))[0].tier.value == Decimal("5")
    assert matcher.get_applicable_rules(context(subjects=7))[0].tier.value == Decimal("8")


def test_tier_needs_every_threshold(make_rule):
    rule = make_rule("FAMILY", type=DiscountType.SIBLING, tiers=[
        DiscountTier(value=Decimal("75"), min_siblings=1, min_family_total=Decimal("2000")),
    ])
    matcher = RuleMatcher(rules=[rule])

    assert matcher.get_applicable_rules(context(siblings=1, siblings_total="999.99")) == []
    matched = matcher.get_applicable_rules(context(siblings=1, siblings_total="1000"))
    assert len(matched) == 1
    assert "family_total>=2000" in matched[0].match_reason


def test_validity_window_is_half_open(make_rule):
    matcher = RuleMatcher(rules=[
        make_rule("STARTS-NOW", valid_from=NOW),
        make_rule("ENDS-NOW", valid_to=NOW),
    ])

    assert [r.rule_id for r in matcher.get_candidate_rules(NOW)] == ["STARTS-NOW"]


def test_requires_sibling_total(make_rule):
    matcher = RuleMatcher(rules=[make_rule("PLAIN"), make_rule("NEEDS", requires_sibling_total=True)])

    assert matcher.requires_sibling_total(NOW) is True
    assert RuleMatcher(rules=[make_rule("PLAIN")]).requires_sibling_total(NOW) is False


def test_percentage_amount_uses_running_price(make_rule):
    rule = make_rule("P", value="12.5")
    matched = MatchedDiscount(rule=rule, tier=rule.tiers[0], match_reason="")
    amount, traces = RuleMatcher(rules=[rule]).apply_rule_to_price(
        matched, Decimal("900.00"), Decimal("1000.00")
    )

    assert amount == Decimal("112.50")
    assert traces


def test_fixed_amount_capped_then_clamped(make_rule):
    rule = make_rule("F", value=500, application=DiscountApplication.FIXED_AMOUNT,
                     max_discount=Decimal("300"))
    matched = MatchedDiscount(rule=rule, tier=rule.tiers[0], match_reason="")
    matcher = RuleMatcher(rules=[rule])

    assert matcher.apply_rule_to_price(matched, Decimal("1000"), Decimal("1000"))[0] == Decimal("300.00")
    assert matcher.apply_rule_to_price(matched, Decimal("120"), Decimal("1000"))[0] == Decimal("120.00")


def test_description_falls_back_to_rule_name(make_rule):
    rule = make_rule("P", value=10, name="Bundle")
    matched = MatchedDiscount(rule=rule, tier=rule.tiers[0], match_reason="")

    assert matched.description == "Bundle: 10% off"


def test_loads_only_active_rules_from_compiled_file(tmp_path):
    compiled = tmp_path / 'compiled.json'
    compiled.write_text(json.dumps({"rules": [
        {"rule_id": "ON", "type": "sibling", "application": "percentage", "active": True,
         "priority": 10, "tiers": [{"value": "10", "min_siblings": 1}]},
        {"rule_id": "OFF", "type": "volume", "application": "fixed_amount", "active": False,
         "priority": 20, "tiers": [{"value": "50"}]},
    ]}))
    matcher = RuleMatcher(compiled)

    assert matcher.loaded is True
    assert [r.rule_id for r in matcher.rules] == ["ON"]
    assert matcher.rules[0].tiers[0].min_siblings == 1


def test_missing_compiled_file_disables_discounts(tmp_path):
    matcher = RuleMatcher(tmp_path / 'missing.json')

    assert matcher.loaded is False
    assert matcher.get_applicable_rules(context(siblings=3)) == []


def test_malformed_compiled_file_raises(tmp_path):
    compiled = tmp_path / 'compiled.json'
    compiled.write_text("{not json")

    with pytest.raises(ValueError):
        RuleMatcher(compiled)


def test_rule_from_json_parses_dates_and_caps():
    rule = rule_from_json({
        "rule_id": "EB", "type": "early_bird", "application": "percentage", "active": True,
        "max_discount": "250", "valid_from": "2026-01-01", "valid_to": "2026-04-01",
        "tiers": [{"value": "7"}],
    })

    assert rule.max_discount == Decimal("250")
    assert rule.valid_from == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert rule.tiers[0].min_family_total == Decimal("0")


def test_earliest_open_registration_deadline_wins(make_rule):
    rule = make_rule("EARLY", type=DiscountType.EARLY_BIRD, tiers=[
        DiscountTier(value=Decimal("7"), registration_before=parse_timestamp("2026-04-01")),
        DiscountTier(value=Decimal("10"), registration_before=parse_timestamp("2026-02-01")),
    ])
    matcher = RuleMatcher(rules=[rule])

    january = matcher.get_applicable_rules(context(at=parse_timestamp("2026-01-15")))
    assert january[0].tier.value == Decimal("10")
    assert "registered before 2026-02-01" in january[0].match_reason
    assert matcher.get_applicable_rules(context(at=parse_timestamp("2026-02-01")))[0].tier.value == Decimal("7")
    assert matcher.get_applicable_rules(context(at=parse_timestamp("2026-04-01"))) == []


def test_seasonal_tier_matches_its_window(make_rule):
    rule = make_rule("SUMMER", type=DiscountType.SEASONAL, application=DiscountApplication.FIXED_AMOUNT, tiers=[
        DiscountTier(value=Decimal("50"), season_start=parse_timestamp("2026-06-01"),
                     season_end=parse_timestamp("2026-07-01")),
        DiscountTier(value=Decimal("30"), season_start=parse_timestamp("2026-07-01"),
                     season_end=parse_timestamp("2026-09-01")),
    ])
    matcher = RuleMatcher(rules=[rule])

    june = matcher.get_applicable_rules(context(at=parse_timestamp("2026-06-30T23:59:59Z")))
    assert june[0].tier.value == Decimal("50")
    assert "season 2026-06-01 to 2026-07-01" in june[0].match_reason
    assert matcher.get_applicable_rules(context(at=parse_timestamp("2026-07-01")))[0].tier.value == Decimal("30")
    assert matcher.get_applicable_rules(context(at=parse_timestamp("2026-05-31"))) == []
    assert matcher.get_applicable_rules(context(at=parse_timestamp("2026-09-01"))) == []


def test_rule_from_json_parses_tier_dates():
    rule = rule_from_json({
        "rule_id": "MIX", "type": "seasonal", "application": "fixed_amount", "active": True,
        "tiers": [
            {"value": "20", "season_start": "2026-06-01", "season_end": None},
            {"value": "5", "registration_before": "2026-02-01"},
        ],
    })

    assert rule.tiers[0].season_start == datetime(2026, 6, 1, tzinfo=timezone.utc)
    assert rule.tiers[0].season_end is None
    assert rule.tiers[1].registration_before == datetime(2026, 2, 1, tzinfo=timezone.utc)
    assert rule.tiers[1].season_start is None
