"""
Subject Pricing Service - CRUD operations for dated subject prices.
Handles reading/writing subject_pricing.csv.
"""
import csv
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..engine.errors import NotFoundError, ValidationError
from ..engine.models import in_window, parse_timestamp
from ..engine.parsing import parse_optional_decimal
from ..engine.subject_pricing import SUBJECT_PRICING_COLUMNS


@dataclass
class SubjectPriceRecord:
    """Represents a subject price row."""
    pricing_id: str
    class_id: str
    subject_id: str
    base_price: str = "0"
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    is_active: bool = True

    def to_csv_row(self) -> dict:
        return {
            'pricing_id': self.pricing_id,
            'class_id': self.class_id,
            'subject_id': self.subject_id,
            'base_price': str(self.base_price),
            'valid_from': self.valid_from or '',
            'valid_to': self.valid_to or '',
            'is_active': 'true' if self.is_active else 'false',
        }

    @classmethod
    def from_csv_row(cls, row: dict) -> 'SubjectPriceRecord':
        return cls(
            pricing_id=row.get('pricing_id', ''),
            class_id=row.get('class_id', ''),
            subject_id=row.get('subject_id', ''),
            base_price=row.get('base_price', '0'),
            valid_from=row.get('valid_from') or None,
            valid_to=row.get('valid_to') or None,
            is_active=(row.get('is_active') or 'true').lower() == 'true',
        )


@dataclass
class ValidationResult:
    """Result of subject price validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class SubjectPricingService:
    """Service for managing the subject price book."""

    def __init__(self, csv_path: Path):
        self.csv_path = csv_path

    def list_prices(self, class_id: Optional[str] = None, subject_id: Optional[str] = None,
                    include_inactive: bool = True) -> list[SubjectPriceRecord]:
        """List prices, optionally filtered, ordered by class, subject and start date."""
        records = []
        if not self.csv_path.exists():
            return records

        with open(self.csv_path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f)
            for row in reader:
                if not row.get('pricing_id'):
                    continue
                record = SubjectPriceRecord.from_csv_row(row)
                if class_id and record.class_id != class_id:
                    continue
                if subject_id and record.subject_id != subject_id:
                    continue
                if include_inactive or record.is_active:
                    records.append(record)

        records.sort(key=lambda r: (r.class_id, r.subject_id, r.valid_from or ''))
        return records

    def get_price(self, pricing_id: str) -> Optional[SubjectPriceRecord]:
        for record in self.list_prices():
            if record.pricing_id == pricing_id:
                return record
        return None

    def create_price(self, record: SubjectPriceRecord) -> SubjectPriceRecord:
        """Create a new subject price."""
        if not record.pricing_id:
            record.pricing_id = self._generate_pricing_id(record)

        if self.get_price(record.pricing_id):
            raise ValidationError(f"Subject price '{record.pricing_id}' already exists")

        validation = self.validate_price(record)
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))

        records = self.list_prices()
        records.append(record)
        self._write_records(records)
        return record

    def update_price(self, pricing_id: str, updates: dict) -> SubjectPriceRecord:
        """Update an existing subject price."""
        records = self.list_prices()

        for i, record in enumerate(records):
            if record.pricing_id == pricing_id:
                for key, value in updates.items():
                    if key != 'pricing_id' and hasattr(record, key):
                        setattr(record, key, value)
                break
        else:
            raise NotFoundError(f"Subject price '{pricing_id}' not found")

        validation = self.validate_price(records[i])
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))

        self._write_records(records)
        return records[i]

    def delete_price(self, pricing_id: str) -> bool:
        """Delete a subject price. Existing snapshots keep the price they used."""
        records = self.list_prices()
        remaining = [r for r in records if r.pricing_id != pricing_id]

        if len(remaining) == len(records):
            raise NotFoundError(f"Subject price '{pricing_id}' not found")

        self._write_records(remaining)
        return True

    def validate_price(self, record: SubjectPriceRecord) -> ValidationResult:
        """Validate a price before saving."""
        result = ValidationResult(valid=True)

        if not record.class_id:
            result.errors.append("Class is required")
        if not record.subject_id:
            result.errors.append("Subject is required")

        try:
            price = parse_optional_decimal(record.base_price, 'base_price')
            if price is None:
                result.errors.append("Base price is required")
            elif price < 0:
                result.errors.append("Price must be a positive number")
        except ValueError:
            result.errors.append("Price must be a number")

        valid_from = valid_to = None
        try:
            valid_from = parse_timestamp(record.valid_from)
            if valid_from is None:
                result.errors.append("Valid from date is required")
        except ValueError:
            result.errors.append("valid_from must be YYYY-MM-DD format")
        try:
            valid_to = parse_timestamp(record.valid_to)
        except ValueError:
            result.errors.append("valid_to must be YYYY-MM-DD format")
        if valid_from and valid_to and valid_to <= valid_from:
            result.errors.append("Valid to date must be after valid from date")

        # Two active prices for the same subject may not be in force at once
        if record.is_active and valid_from and not result.errors:
            for existing in self.list_prices(record.class_id, record.subject_id, include_inactive=False):
                if existing.pricing_id == record.pricing_id:
                    continue
                if self._overlaps(valid_from, valid_to, existing):
                    result.errors.append(
                        f"Overlaps '{existing.pricing_id}' for subject '{record.subject_id}' in class '{record.class_id}'"
                    )

        if not valid_to and not result.errors:
            result.warnings.append("No valid_to date; the price stays in force until replaced")

        result.valid = not result.errors
        return result

    @staticmethod
    def _overlaps(valid_from, valid_to, existing: SubjectPriceRecord) -> bool:
        other_from = parse_timestamp(existing.valid_from)
        other_to = parse_timestamp(existing.valid_to)
        if other_from is None:
            return False
        # Half-open windows overlap when each starts before the other ends
        return in_window(valid_from, None, other_to) and in_window(other_from, None, valid_to)

    def _generate_pricing_id(self, record: SubjectPriceRecord) -> str:
        base = "PRICE-" + "-".join(
            re.sub(r'[^A-Z0-9]+', '', part.upper()) for part in (record.class_id, record.subject_id)
        )
        existing_ids = {r.pricing_id for r in self.list_prices()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def _write_records(self, records: list[SubjectPriceRecord]):
        """Write prices back to CSV."""
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.csv_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=SUBJECT_PRICING_COLUMNS)
            writer.writeheader()
            for record in records:
                writer.writerow(record.to_csv_row())
