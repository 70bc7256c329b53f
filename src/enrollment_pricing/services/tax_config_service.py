"""
Tax Configuration Service - CRUD operations for tax configurations.
Handles reading/writing tax_configurations.csv.
"""
import csv
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..engine.errors import NotFoundError, ValidationError
from ..engine.models import TaxType, parse_timestamp
from ..engine.parsing import parse_optional_decimal
from ..engine.tax_resolver import TAX_COLUMNS

VALID_TAX_TYPES = {t.value for t in TaxType}


@dataclass
class TaxConfigRecord:
    """Represents a tax configuration row."""
    tax_id: str
    name: str
    type: str = "gst"
    rate: str = "0"
    code: str = ""
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    is_active: bool = True
    order: int = 1
    is_inclusive: bool = False
    description: Optional[str] = None

    def to_csv_row(self) -> dict:
        """Convert to CSV row format."""
        return {
            'tax_id': self.tax_id,
            'name': self.name,
            'type': self.type,
            'rate': str(self.rate),
            'code': self.code,
            'valid_from': self.valid_from or '',
            'valid_to': self.valid_to or '',
            'is_active': 'true' if self.is_active else 'false',
            'order': str(self.order),
            'is_inclusive': 'true' if self.is_inclusive else 'false',
            'description': self.description or '',
        }

    @classmethod
    def from_csv_row(cls, row: dict) -> 'TaxConfigRecord':
        """Create a record from a CSV row."""
        return cls(
            tax_id=row.get('tax_id', ''),
            name=row.get('name', ''),
            type=row.get('type', 'gst'),
            rate=row.get('rate', '0'),
            code=row.get('code', ''),
            valid_from=row.get('valid_from') or None,
            valid_to=row.get('valid_to') or None,
            is_active=(row.get('is_active') or 'true').lower() == 'true',
            order=int(row.get('order') or 1),
            is_inclusive=(row.get('is_inclusive') or 'false').lower() == 'true',
            description=row.get('description') or None,
        )


@dataclass
class ValidationResult:
    """Result of tax configuration validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class TaxConfigService:
    """Service for managing tax configurations."""

    def __init__(self, csv_path: Path):
        self.csv_path = csv_path

    def list_configurations(self, include_inactive: bool = True) -> list[TaxConfigRecord]:
        """List all configurations, in stacking order."""
        records = []
        if not self.csv_path.exists():
            return records

        with open(self.csv_path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f)
            for row in reader:
                if not row.get('tax_id'):
                    continue
                record = TaxConfigRecord.from_csv_row(row)
                if include_inactive or record.is_active:
                    records.append(record)

        records.sort(key=lambda r: (r.order, r.code))
        return records

    def get_configuration(self, tax_id: str) -> Optional[TaxConfigRecord]:
        for record in self.list_configurations():
            if record.tax_id == tax_id:
                return record
        return None

    def create_configuration(self, record: TaxConfigRecord) -> TaxConfigRecord:
        """Create a new tax configuration."""
        if not record.tax_id:
            record.tax_id = self._generate_tax_id(record)

        if self.get_configuration(record.tax_id):
            raise ValidationError(f"Tax configuration '{record.tax_id}' already exists")

        validation = self.validate_configuration(record)
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))

        records = self.list_configurations()
        records.append(record)
        self._write_records(records)
        return record

    def update_configuration(self, tax_id: str, updates: dict) -> TaxConfigRecord:
        """Update an existing tax configuration."""
        records = self.list_configurations()

        for i, record in enumerate(records):
            if record.tax_id == tax_id:
                for key, value in updates.items():
                    if key != 'tax_id' and hasattr(record, key):
                        setattr(record, key, value)
                break
        else:
            raise NotFoundError(f"Tax configuration '{tax_id}' not found")

        validation = self.validate_configuration(records[i])
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))

        self._write_records(records)
        return records[i]

    def delete_configuration(self, tax_id: str) -> bool:
        """Delete a tax configuration. Existing snapshots keep their taxes."""
        records = self.list_configurations()
        remaining = [r for r in records if r.tax_id != tax_id]

        if len(remaining) == len(records):
            raise NotFoundError(f"Tax configuration '{tax_id}' not found")

        self._write_records(remaining)
        return True

    def validate_configuration(self, record: TaxConfigRecord) -> ValidationResult:
        """Validate a configuration before saving."""
        result = ValidationResult(valid=True)

        if not record.name:
            result.errors.append("Name is required")
        if not record.code:
            result.errors.append("Tax code is required")
        if record.type not in VALID_TAX_TYPES:
            result.errors.append(f"Type must be one of: {sorted(VALID_TAX_TYPES)}")

        try:
            rate = parse_optional_decimal(record.rate, 'rate')
            if rate is None:
                result.errors.append("Rate is required")
            elif rate < 0:
                result.errors.append("Rate must be a positive number")
        except ValueError:
            result.errors.append("Rate must be a number")

        try:
            if int(record.order) < 1:
                result.errors.append("Order must be at least 1")
        except (TypeError, ValueError):
            result.errors.append("Order must be an integer")

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
            result.errors.append("valid_to must be after valid_from")

        # Code must be unique across configurations
        if record.code:
            for existing in self.list_configurations():
                if existing.tax_id != record.tax_id and existing.code.lower() == record.code.lower():
                    result.errors.append(f"Tax code '{record.code}' is already used by '{existing.tax_id}'")

        if record.is_active and not result.errors:
            for existing in self.list_configurations(include_inactive=False):
                if existing.tax_id != record.tax_id and int(existing.order) == int(record.order):
                    result.warnings.append(
                        f"'{existing.tax_id}' shares order {record.order}; ties are broken by code"
                    )

        result.valid = not result.errors
        return result

    def _generate_tax_id(self, record: TaxConfigRecord) -> str:
        base = "TAX-" + (re.sub(r'[^A-Z0-9]+', '-', record.code.upper()).strip('-') or record.type.upper())
        existing_ids = {r.tax_id for r in self.list_configurations()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def _write_records(self, records: list[TaxConfigRecord]):
        """Write configurations back to CSV."""
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.csv_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=TAX_COLUMNS)
            writer.writeheader()
            for record in records:
                writer.writerow(record.to_csv_row())
