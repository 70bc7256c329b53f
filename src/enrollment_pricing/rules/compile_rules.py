"""
Rule Compiler - Validates and compiles discount rules from CSV to JSON.

Reads discount_rules.csv (one row per tier, rows grouped by rule_id),
validates against schema, and outputs compiled_discount_rules.json.
"""
import csv
import json
from collections import OrderedDict
from pathlib import Path
from typing import Optional
from datetime import datetime
from decimal import Decimal

from ..engine.models import DiscountType, DiscountApplication, parse_timestamp
from ..engine.money import ZERO, HUNDRED
from ..engine.parsing import (
    parse_bool, parse_optional_str, parse_optional_int, parse_optional_decimal,
)


CSV_COLUMNS = [
    'rule_id', 'name', 'type', 'application', 'active', 'priority', 'stackable',
    'apply_to_original_base', 'requires_sibling_total', 'max_discount',
    'valid_from', 'valid_to', 'min_siblings', 'min_subjects', 'min_family_total',
    'registration_before', 'season_start', 'season_end',
    'discount_value', 'tier_description', 'description',
]

# Columns that describe the rule itself; every tier row of a rule must agree on them
RULE_LEVEL_COLUMNS = [
    'name', 'type', 'application', 'active', 'priority', 'stackable',
    'apply_to_original_base', 'requires_sibling_total', 'max_discount',
    'valid_from', 'valid_to', 'description',
]

VALID_TYPES = {t.value for t in DiscountType}
VALID_APPLICATIONS = {a.value for a in DiscountApplication}

# Tier date conditions and the rule type each one belongs to
TIER_DATE_COLUMNS = {
    'registration_before': DiscountType.EARLY_BIRD.value,
    'season_start': DiscountType.SEASONAL.value,
    'season_end': DiscountType.SEASONAL.value,
}


def _fmt(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _tier_key(tier: dict) -> tuple:
    """Tier order used by the matcher: counts, family total, then date conditions."""
    deadline = parse_timestamp(tier['registration_before'])
    season_start = parse_timestamp(tier['season_start'])
    season_end = parse_timestamp(tier['season_end'])
    return (
        tier['min_siblings'],
        tier['min_subjects'],
        Decimal(tier['min_family_total']),
        (0, 0.0) if deadline is None else (1, -deadline.timestamp()),
        (0, 0.0) if season_start is None else (1, season_start.timestamp()),
        (0, 0.0) if season_end is None else (1, season_end.timestamp()),
    )


def validate_row(row: dict, line_num: int) -> tuple[Optional[dict], list[str]]:
    """
    Validate and parse one tier row from the CSV.

    Returns (parsed, errors) - parsed is None if validation failed.
    """
    errors = []

    rule_id = parse_optional_str(row.get('rule_id', ''))
    if not rule_id:
        errors.append(f"Line {line_num}: rule_id is required")
        return None, errors

    rule_type = (parse_optional_str(row.get('type', '')) or '').lower()
    if rule_type not in VALID_TYPES:
        errors.append(f"Line {line_num}: invalid type '{rule_type}', must be one of: {sorted(VALID_TYPES)}")

    application = (parse_optional_str(row.get('application', '')) or '').lower()
    if application not in VALID_APPLICATIONS:
        errors.append(
            f"Line {line_num}: invalid application '{application}', must be one of: {sorted(VALID_APPLICATIONS)}"
        )

    try:
        priority = int(row.get('priority') or '50')
        if priority < 1:
            errors.append(f"Line {line_num}: priority must be at least 1")
    except ValueError:
        errors.append(f"Line {line_num}: priority must be an integer")
        priority = None

    parsed_numbers = {}
    for column in ('discount_value', 'max_discount', 'min_family_total'):
        try:
            parsed_numbers[column] = parse_optional_decimal(row.get(column, ''), column)
        except ValueError:
            errors.append(f"Line {line_num}: {column} must be numeric")
            parsed_numbers[column] = None

    value = parsed_numbers['discount_value']
    if value is None and not any(e.startswith(f"Line {line_num}: discount_value") for e in errors):
        errors.append(f"Line {line_num}: discount_value is required")
    elif value is not None:
        if value < 0:
            errors.append(f"Line {line_num}: discount_value cannot be negative")
        if application == DiscountApplication.PERCENTAGE.value and value > HUNDRED:
            errors.append(f"Line {line_num}: percentage discount_value cannot exceed 100")

    max_discount = parsed_numbers['max_discount']
    if max_discount is not None and max_discount < 0:
        errors.append(f"Line {line_num}: max_discount cannot be negative")

    thresholds = {}
    for column in ('min_siblings', 'min_subjects'):
        try:
            thresholds[column] = parse_optional_int(row.get(column, '')) or 0
            if thresholds[column] < 0:
                errors.append(f"Line {line_num}: {column} cannot be negative")
        except ValueError:
            errors.append(f"Line {line_num}: {column} must be an integer")
            thresholds[column] = 0

    # Validate dates
    dates = {}
    for date_field in ('valid_from', 'valid_to'):
        date_val = parse_optional_str(row.get(date_field, ''))
        dates[date_field] = date_val
        if date_val:
            try:
                parse_timestamp(date_val)
            except ValueError:
                errors.append(f"Line {line_num}: {date_field} must be YYYY-MM-DD format")
    if not errors and dates['valid_from'] and dates['valid_to']:
        if parse_timestamp(dates['valid_from']) >= parse_timestamp(dates['valid_to']):
            errors.append(f"Line {line_num}: valid_from must be before valid_to")

    tier_dates = {}
    for date_field, owner_type in TIER_DATE_COLUMNS.items():
        date_val = parse_optional_str(row.get(date_field, ''))
        tier_dates[date_field] = date_val
        if not date_val:
            continue
        try:
            parse_timestamp(date_val)
        except ValueError:
            errors.append(f"Line {line_num}: {date_field} must be YYYY-MM-DD format")
            continue
        if rule_type in VALID_TYPES and rule_type != owner_type:
            errors.append(f"Line {line_num}: {date_field} only applies to {owner_type} rules")
    if not errors and tier_dates['season_start'] and tier_dates['season_end']:
        if parse_timestamp(tier_dates['season_start']) >= parse_timestamp(tier_dates['season_end']):
            errors.append(f"Line {line_num}: season_start must be before season_end")

    if errors:
        return None, errors

    return {
        "rule_id": rule_id,
        "name": parse_optional_str(row.get('name', '')) or rule_id,
        "type": rule_type,
        "application": application,
        "active": parse_bool(row.get('active', 'false')),
        "priority": priority,
        "stackable": parse_bool(row.get('stackable', 'true') or 'true'),
        "apply_to_original_base": parse_bool(row.get('apply_to_original_base', 'false') or 'false'),
        "requires_sibling_total": parse_bool(row.get('requires_sibling_total', 'false') or 'false'),
        "max_discount": _fmt(max_discount),
        "valid_from": dates['valid_from'],
        "valid_to": dates['valid_to'],
        "description": parse_optional_str(row.get('description', '')) or "",
        "tier": {
            "min_siblings": thresholds['min_siblings'],
            "min_subjects": thresholds['min_subjects'],
            "min_family_total": _fmt(parsed_numbers['min_family_total'] or ZERO),
            "registration_before": tier_dates['registration_before'],
            "season_start": tier_dates['season_start'],
            "season_end": tier_dates['season_end'],
            "value": _fmt(value),
            "description": parse_optional_str(row.get('tier_description', '')) or "",
        },
    }, []


def group_rules(rows: list[tuple[int, dict]]) -> tuple[list[dict], list[str]]:
    """Group parsed tier rows into rules, checking rule-level fields agree."""
    errors = []
    grouped: "OrderedDict[str, dict]" = OrderedDict()

    for line_num, parsed in rows:
        tier = parsed.pop('tier')
        existing = grouped.get(parsed['rule_id'])
        if existing is None:
            parsed['tiers'] = [tier]
            grouped[parsed['rule_id']] = parsed
            continue

        for column in RULE_LEVEL_COLUMNS:
            if existing[column] != parsed[column]:
                errors.append(
                    f"Line {line_num}: {column} differs from earlier rows of rule '{parsed['rule_id']}'"
                )
        existing['tiers'].append(tier)

    for rule in grouped.values():
        rule['tiers'].sort(key=_tier_key)
        keys = [_tier_key(t) for t in rule['tiers']]
        if len(keys) != len(set(keys)):
            errors.append(f"Rule '{rule['rule_id']}': two tiers have identical thresholds")

    return list(grouped.values()), errors


def compile_rules(
    rules_csv: Path,
    output_json: Path,
    verbose: bool = True
) -> tuple[bool, list[dict], list[str]]:
    """
    Compile rules from CSV to JSON.

    Returns (success, rules, errors).
    """
    all_errors = []
    parsed_rows = []

    if not rules_csv.exists():
        all_errors.append(f"Rules file not found: {rules_csv}")
        return False, [], all_errors

    with open(rules_csv, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)

        for line_num, row in enumerate(reader, start=2):  # +2 for 1-indexed header row
            if not any((v or '').strip() for v in row.values()):
                continue
            parsed, errors = validate_row(row, line_num)

            if errors:
                all_errors.extend(errors)
            elif parsed:
                parsed_rows.append((line_num, parsed))

    rules, group_errors = group_rules(parsed_rows)
    all_errors.extend(group_errors)

    if all_errors:
        if verbose:
            print("Validation errors:")
            for err in all_errors:
                print(f"  ❌ {err}")
        return False, rules, all_errors

    # Sort by priority (lower = applied first)
    rules.sort(key=lambda r: (r['priority'], r['rule_id']))

    # Write compiled JSON
    output_data = {
        "compiled_at": datetime.now().isoformat(),
        "source_file": str(rules_csv),
        "total_rules": len(rules),
        "active_rules": sum(1 for r in rules if r['active']),
        "rules": rules,
    }

    output_json.parent.mkdir(parents=True, exist_ok=True)
    with open(output_json, 'w', encoding='utf-8') as f:
        json.dump(output_data, f, indent=2)

    if verbose:
        print(f"✅ Compiled {len(rules)} discount rules ({output_data['active_rules']} active)")
        print(f"   Output: {output_json}")

    return True, rules, []


def main():
    """CLI entry point."""
    import sys
    from ..config.settings import get_settings

    settings = get_settings()

    print("Compiling discount rules...")
    success, rules, errors = compile_rules(settings.discount_rules_csv, settings.compiled_discount_rules)

    if not success:
        print(f"\n❌ Compilation failed with {len(errors)} errors")
        sys.exit(1)


if __name__ == "__main__":
    main()
