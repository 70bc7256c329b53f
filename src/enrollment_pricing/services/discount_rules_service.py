"""
Discount Rules Service - CRUD operations for discount rules.
Handles reading/writing discount_rules.csv and auto-compiling to JSON.
"""
import csv
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass, field
import re

from ..engine.errors import NotFoundError, ValidationError
from ..rules.compile_rules import CSV_COLUMNS, compile_rules, validate_row, group_rules


@dataclass
class TierRecord:
    """One threshold band of a discount rule, as stored in the CSV."""
    discount_value: str
    min_siblings: int = 0
    min_subjects: int = 0
    min_family_total: str = "0"
    description: Optional[str] = None
    registration_before: Optional[str] = None
    season_start: Optional[str] = None
    season_end: Optional[str] = None


@dataclass
class DiscountRuleRecord:
    """Represents a discount rule."""
    rule_id: str
    name: str
    type: str = "sibling"
    application: str = "percentage"
    active: bool = True
    priority: int = 50
    stackable: bool = True
    apply_to_original_base: bool = False
    requires_sibling_total: bool = False
    max_discount: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    description: Optional[str] = None
    tiers: list[TierRecord] = field(default_factory=list)

    def to_csv_rows(self) -> list[dict]:
        """Convert to CSV rows, one per tier."""
        base = {
            'rule_id': self.rule_id,
            'name': self.name,
            'type': self.type,
            'application': self.application,
            'active': 'true' if self.active else 'false',
            'priority': str(self.priority),
            'stackable': 'true' if self.stackable else 'false',
            'apply_to_original_base': 'true' if self.apply_to_original_base else 'false',
            'requires_sibling_total': 'true' if self.requires_sibling_total else 'false',
            'max_discount': self.max_discount or '',
            'valid_from': self.valid_from or '',
            'valid_to': self.valid_to or '',
            'description': self.description or '',
        }
        rows = []
        for tier in self.tiers:
            row = dict(base)
            row.update({
                'min_siblings': str(tier.min_siblings) if tier.min_siblings else '',
                'min_subjects': str(tier.min_subjects) if tier.min_subjects else '',
                'min_family_total': tier.min_family_total if tier.min_family_total not in (None, '', '0') else '',
                'registration_before': tier.registration_before or '',
                'season_start': tier.season_start or '',
                'season_end': tier.season_end or '',
                'discount_value': str(tier.discount_value),
                'tier_description': tier.description or '',
            })
            rows.append(row)
        return rows

    @classmethod
    def from_csv_rows(cls, rows: list[dict]) -> 'DiscountRuleRecord':
        """Create a rule from its CSV rows (rule-level fields come from the first row)."""
        first = rows[0]
        return cls(
            rule_id=first.get('rule_id', ''),
            name=first.get('name', ''),
            type=first.get('type', 'sibling'),
            application=first.get('application', 'percentage'),
            active=(first.get('active') or 'true').lower() == 'true',
            priority=int(first.get('priority') or 50),
            stackable=(first.get('stackable') or 'true').lower() == 'true',
            apply_to_original_base=(first.get('apply_to_original_base') or 'false').lower() == 'true',
            requires_sibling_total=(first.get('requires_sibling_total') or 'false').lower() == 'true',
            max_discount=first.get('max_discount') or None,
            valid_from=first.get('valid_from') or None,
            valid_to=first.get('valid_to') or None,
            description=first.get('description') or None,
            tiers=[
                TierRecord(
                    discount_value=row.get('discount_value', ''),
                    min_siblings=int(row['min_siblings']) if row.get('min_siblings') else 0,
                    min_subjects=int(row['min_subjects']) if row.get('min_subjects') else 0,
                    min_family_total=row.get('min_family_total') or "0",
                    description=row.get('tier_description') or None,
                    registration_before=row.get('registration_before') or None,
                    season_start=row.get('season_start') or None,
                    season_end=row.get('season_end') or None,
                )
                for row in rows
            ],
        )


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class DiscountRulesService:
    """Service for managing discount rules."""

    def __init__(self, rules_csv_path: Path, compiled_rules_path: Path):
        self.rules_csv_path = rules_csv_path
        self.compiled_rules_path = compiled_rules_path

    def list_rules(self, include_inactive: bool = True) -> list[DiscountRuleRecord]:
        """List all rules from CSV."""
        if not self.rules_csv_path.exists():
            return []

        grouped: dict[str, list[dict]] = {}
        with open(self.rules_csv_path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f)
            for row in reader:
                if not row.get('rule_id'):
                    continue
                grouped.setdefault(row['rule_id'], []).append(row)

        rules = []
        for rows in grouped.values():
            rule = DiscountRuleRecord.from_csv_rows(rows)
            if include_inactive or rule.active:
                rules.append(rule)
        return rules

    def get_rule(self, rule_id: str) -> Optional[DiscountRuleRecord]:
        """Get a single rule by ID."""
        for rule in self.list_rules():
            if rule.rule_id == rule_id:
                return rule
        return None

    def create_rule(self, rule: DiscountRuleRecord, auto_compile: bool = True) -> DiscountRuleRecord:
        """Create a new rule."""
        # Generate rule_id if not provided
        if not rule.rule_id:
            rule.rule_id = self._generate_rule_id(rule)

        # Check for duplicate
        if self.get_rule(rule.rule_id):
            raise ValidationError(f"Rule with ID '{rule.rule_id}' already exists")

        rules = self.list_rules()
        rules.append(rule)
        self._write_rules(rules)

        if auto_compile:
            self.compile_rules()

        return rule

    def update_rule(self, rule_id: str, updates: dict, auto_compile: bool = True) -> DiscountRuleRecord:
        """Update an existing rule."""
        rules = self.list_rules()

        for i, rule in enumerate(rules):
            if rule.rule_id == rule_id:
                for key, value in updates.items():
                    if key == 'rule_id':
                        continue
                    if key == 'tiers' and value is not None:
                        value = [t if isinstance(t, TierRecord) else TierRecord(**t) for t in value]
                    if hasattr(rule, key):
                        setattr(rule, key, value)
                rules[i] = rule
                break
        else:
            raise NotFoundError(f"Rule with ID '{rule_id}' not found")

        validation = self.validate_rule(rules[i])
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))

        self._write_rules(rules)

        if auto_compile:
            self.compile_rules()

        return rules[i]

    def delete_rule(self, rule_id: str, auto_compile: bool = True) -> bool:
        """Delete a rule."""
        rules = self.list_rules()
        original_count = len(rules)
        rules = [r for r in rules if r.rule_id != rule_id]

        if len(rules) == original_count:
            raise NotFoundError(f"Rule with ID '{rule_id}' not found")

        self._write_rules(rules)

        if auto_compile:
            self.compile_rules()

        return True

    def validate_rule(self, rule: DiscountRuleRecord) -> ValidationResult:
        """Validate a rule before saving, using the compiler's row checks."""
        result = ValidationResult(valid=True)

        if not rule.name:
            result.errors.append("Name is required")
        if not rule.tiers:
            result.errors.append("At least one tier is required")

        parsed_rows = []
        candidate_id = rule.rule_id or "NEW-RULE"
        for index, row in enumerate(rule.to_csv_rows(), start=1):
            row['rule_id'] = candidate_id
            parsed, errors = validate_row(row, index)
            result.errors.extend(e.replace(f"Line {index}:", f"Tier {index}:") for e in errors)
            if parsed:
                parsed_rows.append((index, parsed))

        if not result.errors:
            _, group_errors = group_rules(parsed_rows)
            result.errors.extend(group_errors)

        result.valid = not result.errors

        # Warn if the rule has already expired
        today = datetime.now(timezone.utc).strftime('%Y-%m-%d')
        if rule.valid_to and rule.valid_to < today:
            result.warnings.append("Rule has expired (valid_to is in the past)")

        if result.valid:
            result.warnings.extend(self._check_conflicts(rule))

        return result

    def _check_conflicts(self, rule: DiscountRuleRecord) -> list[str]:
        """Check for rules that might conflict with this one."""
        warnings = []
        for existing in self.list_rules():
            if existing.rule_id == rule.rule_id or not existing.active:
                continue
            if existing.type == rule.type and existing.priority == rule.priority:
                warnings.append(
                    f"Rule '{existing.rule_id}' has the same type and priority ({rule.priority}); "
                    f"order between them falls back to rule id"
                )
            if existing.type == rule.type and not (existing.stackable and rule.stackable):
                warnings.append(
                    f"Rule '{existing.rule_id}' is also a {rule.type} discount and one of them does not stack"
                )
        return warnings

    def _generate_rule_id(self, rule: DiscountRuleRecord) -> str:
        """Generate a unique rule ID."""
        base = re.sub(r'[^A-Z0-9]+', '-', rule.type.upper()).strip('-') or "RULE"
        if rule.name:
            base += "-" + re.sub(r'[^A-Z0-9]+', '', rule.name.upper())[:8]

        # Ensure uniqueness
        existing_ids = {r.rule_id for r in self.list_rules()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1

        return candidate

    def _write_rules(self, rules: list[DiscountRuleRecord]):
        """Write rules back to CSV."""
        self.rules_csv_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.rules_csv_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for rule in rules:
                for row in rule.to_csv_rows():
                    writer.writerow(row)

    def compile_rules(self) -> tuple[bool, str]:
        """Compile the CSV into the JSON the rule matcher loads."""
        success, rules, errors = compile_rules(self.rules_csv_path, self.compiled_rules_path, verbose=False)
        if success:
            return True, f"Compiled {len(rules)} discount rules to {self.compiled_rules_path}"
        return False, "\n".join(errors)

    def get_stats(self) -> dict:
        """Get statistics about rules."""
        rules = self.list_rules()
        today = datetime.now(timezone.utc).strftime('%Y-%m-%d')

        active = [r for r in rules if r.active]
        expired = [r for r in rules if r.valid_to and r.valid_to < today]
        by_type = {}
        for r in rules:
            by_type[r.type] = by_type.get(r.type, 0) + 1

        return {
            'total': len(rules),
            'active': len(active),
            'inactive': len(rules) - len(active),
            'expired': len(expired),
            'by_type': by_type,
        }
