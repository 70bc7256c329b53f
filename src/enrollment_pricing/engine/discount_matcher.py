"""
Discount Rule Matcher - Matches and applies discount rules to a running price.

Used by the pricing engine to select the discount rules that apply to a
calculation and to compute each rule's amount. Rules are loaded from
compiled_discount_rules.json, produced by rules/compile_rules.py.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from .models import (
    DiscountRule, DiscountTier, DiscountType, DiscountApplication,
    parse_timestamp, in_window,
)
from .money import to_decimal, round_money, ZERO, HUNDRED

logger = logging.getLogger(__name__)

# A volume discount needs at least this many chargeable subjects
MIN_VOLUME_SUBJECTS = 2


@dataclass
class DiscountContext:
    """Inputs that decide whether a discount rule applies."""
    calculated_at: datetime
    sibling_count: int
    subject_count: int
    total_base_price: Decimal
    total_siblings_price: Optional[Decimal] = None

    @property
    def family_total(self) -> Decimal:
        return self.total_base_price + (self.total_siblings_price or ZERO)


@dataclass
class MatchedDiscount:
    """A rule that matched, with the tier it matched on."""
    rule: DiscountRule
    tier: DiscountTier
    match_reason: str

    @property
    def description(self) -> str:
        if self.tier.description:
            return self.tier.description
        if self.rule.description:
            return self.rule.description
        if self.rule.application == DiscountApplication.PERCENTAGE:
            return f"{self.rule.name}: {self.tier.value}% off"
        return f"{self.rule.name}: {self.tier.value} off"


def rule_from_json(data: dict) -> DiscountRule:
    """Build a DiscountRule from one entry of compiled_discount_rules.json."""
    max_discount = data.get('max_discount')
    tiers = tuple(
        DiscountTier(
            value=to_decimal(t['value'], 'value'),
            min_siblings=int(t.get('min_siblings', 0)),
            min_subjects=int(t.get('min_subjects', 0)),
            min_family_total=to_decimal(t.get('min_family_total', '0'), 'min_family_total'),
            description=t.get('description', ''),
            registration_before=parse_timestamp(t.get('registration_before')),
            season_start=parse_timestamp(t.get('season_start')),
            season_end=parse_timestamp(t.get('season_end')),
        )
        for t in data.get('tiers', [])
    )
    return DiscountRule(
        rule_id=data['rule_id'],
        name=data.get('name', data['rule_id']),
        type=DiscountType(data['type']),
        application=DiscountApplication(data['application']),
        tiers=tiers,
        priority=int(data.get('priority', 50)),
        active=bool(data.get('active', False)),
        stackable=bool(data.get('stackable', True)),
        apply_to_original_base=bool(data.get('apply_to_original_base', False)),
        requires_sibling_total=bool(data.get('requires_sibling_total', False)),
        max_discount=to_decimal(max_discount, 'max_discount') if max_discount is not None else None,
        valid_from=parse_timestamp(data.get('valid_from')),
        valid_to=parse_timestamp(data.get('valid_to')),
        description=data.get('description', ''),
    )


class RuleMatcher:
    """
    Matches and applies discount rules.

    Rules are matched against the calculation context (siblings, subject
    count, family total, date) and returned in ascending priority order.
    """

    def __init__(self, compiled_rules_path: Optional[Path] = None, rules: Optional[list[DiscountRule]] = None):
        """Load compiled rules, or take an explicit rule list."""
        self.compiled_rules_path = compiled_rules_path
        self.rules: list[DiscountRule] = []
        self.loaded = False

        if rules is not None:
            self.rules = [r for r in rules if r.active]
            self.loaded = True
        elif compiled_rules_path and compiled_rules_path.exists():
            self._load_rules(compiled_rules_path)
        else:
            logger.warning("No compiled discount rules at %s; discounts disabled", compiled_rules_path)

    def _load_rules(self, path: Path):
        """Load rules from JSON file."""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        self.rules = [rule_from_json(r) for r in data.get('rules', []) if r.get('active', False)]
        self.loaded = True
        logger.info("Loaded %d active discount rules from %s", len(self.rules), path)

    def reload(self):
        if self.compiled_rules_path and self.compiled_rules_path.exists():
            self._load_rules(self.compiled_rules_path)

    def get_candidate_rules(self, at: datetime) -> list[DiscountRule]:
        """Active rules whose validity window contains `at`, by priority."""
        candidates = [r for r in self.rules if r.active and in_window(at, r.valid_from, r.valid_to)]
        candidates.sort(key=lambda r: (r.priority, r.rule_id))
        return candidates

    def requires_sibling_total(self, at: datetime) -> bool:
        return any(r.requires_sibling_total for r in self.get_candidate_rules(at))

    def get_applicable_rules(self, context: DiscountContext) -> list[MatchedDiscount]:
        """
        Find all rules that apply to the given context.

        Returns rules sorted by priority (lower = applied first).
        """
        if not self.loaded:
            return []

        matched = []
        for rule in self.get_candidate_rules(context.calculated_at):
            if not self._type_gate(rule.type, context):
                continue

            tier = self._select_tier(rule, context)
            if tier is None:
                logger.debug("Rule %s: no tier satisfied", rule.rule_id)
                continue

            matched.append(MatchedDiscount(
                rule=rule,
                tier=tier,
                match_reason=self._describe_match(rule, tier, context),
            ))

        return matched

    @staticmethod
    def _type_gate(rule_type: DiscountType, context: DiscountContext) -> bool:
        """Type-specific preconditions. Every DiscountType must be handled here."""
        if rule_type == DiscountType.SIBLING:
            return context.sibling_count >= 1
        elif rule_type == DiscountType.VOLUME:
            return context.subject_count >= MIN_VOLUME_SUBJECTS
        elif rule_type in (DiscountType.EARLY_BIRD, DiscountType.SEASONAL):
            # Date conditions are checked per tier
            return True
        elif rule_type == DiscountType.CUSTOM:
            return True
        raise ValueError(f"Unhandled discount type: {rule_type!r}")

    @staticmethod
    def _tier_satisfied(tier: DiscountTier, context: DiscountContext) -> bool:
        return (
            context.sibling_count >= tier.min_siblings
            and context.subject_count >= tier.min_subjects
            and context.family_total >= tier.min_family_total
            and (tier.registration_before is None or context.calculated_at < tier.registration_before)
            and in_window(context.calculated_at, tier.season_start, tier.season_end)
        )

    def _select_tier(self, rule: DiscountRule, context: DiscountContext) -> Optional[DiscountTier]:
        """Pick the highest tier whose thresholds are all met."""
        ordered = sorted(rule.tiers, key=lambda t: t.rank())
        selected = None
        for tier in ordered:
            if self._tier_satisfied(tier, context):
                selected = tier
        return selected

    @staticmethod
    def _describe_match(rule: DiscountRule, tier: DiscountTier, context: DiscountContext) -> str:
        reasons = [f"type={rule.type.value}"]
        if tier.min_siblings:
            reasons.append(f"siblings>={tier.min_siblings}")
        if tier.min_subjects:
            reasons.append(f"subjects>={tier.min_subjects}")
        if tier.min_family_total:
            reasons.append(f"family_total>={tier.min_family_total}")
        if tier.registration_before:
            reasons.append(f"registered before {tier.registration_before.date()}")
        if tier.season_start or tier.season_end:
            start = tier.season_start.date() if tier.season_start else "..."
            end = tier.season_end.date() if tier.season_end else "..."
            reasons.append(f"season {start} to {end}")
        return ", ".join(reasons)

    def apply_rule_to_price(
        self,
        matched: MatchedDiscount,
        running_price: Decimal,
        original_base: Decimal,
        rounding_mode: str = 'half_even',
    ) -> tuple[Decimal, list[str]]:
        """
        Compute one rule's discount amount.

        The amount is capped by the rule's max_discount and clamped so the
        running price cannot go below zero. Returns (amount, trace_messages).
        """
        rule, tier = matched.rule, matched.tier
        traces = []
        base = original_base if rule.apply_to_original_base else running_price

        if rule.application == DiscountApplication.PERCENTAGE:
            raw = base * tier.value / HUNDRED
            traces.append(f"Rule {rule.rule_id} applied {tier.value}% to {base:.2f}")
        elif rule.application == DiscountApplication.FIXED_AMOUNT:
            raw = tier.value
            traces.append(f"Rule {rule.rule_id} applied flat {tier.value:.2f}")
        else:
            raise ValueError(f"Unhandled discount application: {rule.application!r}")

        if rule.max_discount is not None and raw > rule.max_discount:
            traces.append(f"Rule {rule.rule_id} capped at {rule.max_discount:.2f}")
            raw = rule.max_discount

        if raw > running_price:
            traces.append(f"Rule {rule.rule_id} clamped to remaining {running_price:.2f}")
            raw = running_price

        amount = round_money(max(raw, ZERO), rounding_mode)
        return amount, traces
