"""Parsers for the string cells found in rule and reference CSV files."""
from decimal import Decimal
from typing import Optional

from .money import to_decimal


def parse_bool(value: str) -> bool:
    """Parse a boolean from CSV string."""
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def parse_optional_str(value) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if value is None or str(value).strip() == '':
        return None
    return str(value).strip()


def parse_optional_int(value) -> Optional[int]:
    """Parse optional integer."""
    text = parse_optional_str(value)
    if text is None:
        return None
    return int(text)


def parse_optional_decimal(value, field_name: str = "value") -> Optional[Decimal]:
    """Parse optional decimal."""
    text = parse_optional_str(value)
    if text is None:
        return None
    return to_decimal(text, field_name)
