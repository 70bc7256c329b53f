"""
Tax Resolver - Selects the tax configurations in force and computes each tax.

Configurations are read from tax_configurations.csv, the file maintained by
services/tax_config_service.py.
"""
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pandas as pd

from .models import TaxConfiguration, TaxType, parse_timestamp
from .money import to_decimal, round_money, HUNDRED
from .parsing import parse_bool

logger = logging.getLogger(__name__)

TAX_COLUMNS = [
    'tax_id', 'name', 'type', 'rate', 'code', 'valid_from', 'valid_to',
    'is_active', 'order', 'is_inclusive', 'description',
]


def row_to_tax_configuration(row) -> TaxConfiguration:
    """Build a TaxConfiguration from a CSV row (dict or pandas Series)."""
    rate = to_decimal(row['rate'], 'rate')
    if rate < 0:
        raise ValueError(f"Tax '{row['tax_id']}' has a negative rate ({rate})")
    return TaxConfiguration(
        tax_id=row['tax_id'],
        name=row['name'],
        type=TaxType(row['type']),
        rate=rate,
        code=row['code'],
        valid_from=parse_timestamp(row['valid_from']),
        valid_to=parse_timestamp(row.get('valid_to') or None),
        is_active=parse_bool(row.get('is_active') or 'true'),
        order=int(row.get('order') or 1),
        is_inclusive=parse_bool(row.get('is_inclusive') or 'false'),
        description=row.get('description') or '',
    )


class TaxConfigurationProvider:
    """Read model over the tax configuration file."""

    def __init__(self, csv_path: Optional[Path] = None, configurations: Optional[list[TaxConfiguration]] = None):
        self.csv_path = csv_path
        self.configurations: list[TaxConfiguration] = []

        if configurations is not None:
            self.configurations = list(configurations)
        else:
            self.reload()

    def reload(self):
        """Reload configurations from disk. A missing file means no taxes."""
        if self.csv_path is None or not self.csv_path.exists():
            logger.warning("No tax configurations at %s; taxes disabled", self.csv_path)
            self.configurations = []
            return

        df = pd.read_csv(self.csv_path, dtype=str).fillna('')
        df.columns = [c.strip() for c in df.columns]
        for col in df.columns:
            df[col] = df[col].astype(str).str.strip()

        self.configurations = [
            row_to_tax_configuration(row)
            for _, row in df.iterrows()
            if row.get('tax_id')
        ]
        logger.info("Loaded %d tax configurations from %s", len(self.configurations), self.csv_path)

    def get_active_configurations(self, at_time: datetime) -> list[TaxConfiguration]:
        """Configurations in force at `at_time`, in stacking order."""
        active = [c for c in self.configurations if c.is_effective(at_time)]
        active.sort(key=lambda c: (c.order, c.code))
        return active


def compute_tax(
    config: TaxConfiguration,
    running_amount: Decimal,
    rounding_mode: str = 'half_even',
) -> Decimal:
    """
    Compute one tax against `running_amount`.

    Inclusive taxes are extracted from the amount (rate / (100 + rate));
    exclusive taxes are added on top (rate / 100).
    """
    if config.is_inclusive:
        raw = running_amount * config.rate / (HUNDRED + config.rate)
    else:
        raw = running_amount * config.rate / HUNDRED
    return round_money(raw, rounding_mode)
