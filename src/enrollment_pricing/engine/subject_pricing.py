"""
Subject Price Book - Dated base prices that override the catalog price.

Prices are read from subject_pricing.csv, the file maintained by
services/subject_pricing_service.py. A subject with no price in force at the
calculation time keeps the base price from the reference catalog.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from .models import SubjectPrice, parse_timestamp
from .money import to_decimal
from .parsing import parse_bool

logger = logging.getLogger(__name__)

SUBJECT_PRICING_COLUMNS = [
    'pricing_id', 'class_id', 'subject_id', 'base_price', 'valid_from', 'valid_to', 'is_active',
]


def row_to_subject_price(row) -> SubjectPrice:
    """Build a SubjectPrice from a CSV row (dict or pandas Series)."""
    valid_from = parse_timestamp(row.get('valid_from') or None)
    if valid_from is None:
        raise ValueError(f"Subject price '{row['pricing_id']}' has no valid_from")
    return SubjectPrice(
        pricing_id=row['pricing_id'],
        class_id=row['class_id'],
        subject_id=row['subject_id'],
        base_price=to_decimal(row['base_price'], 'base_price'),
        valid_from=valid_from,
        valid_to=parse_timestamp(row.get('valid_to') or None),
        is_active=parse_bool(row.get('is_active') or 'true'),
    )


class SubjectPriceProvider:
    """Read model over the subject price book."""

    def __init__(self, csv_path: Optional[Path] = None, prices: Optional[list[SubjectPrice]] = None):
        self.csv_path = csv_path
        self.prices: list[SubjectPrice] = []

        if prices is not None:
            self.prices = list(prices)
        else:
            self.reload()

    def reload(self):
        """Reload the price book from disk. A missing file means catalog prices only."""
        if self.csv_path is None or not self.csv_path.exists():
            logger.info("No subject price book at %s; using catalog prices", self.csv_path)
            self.prices = []
            return

        df = pd.read_csv(self.csv_path, dtype=str).fillna('')
        df.columns = [c.strip() for c in df.columns]
        for col in df.columns:
            df[col] = df[col].astype(str).str.strip()

        self.prices = [
            row_to_subject_price(row)
            for _, row in df.iterrows()
            if row.get('pricing_id')
        ]
        logger.info("Loaded %d subject prices from %s", len(self.prices), self.csv_path)

    def get_price(self, class_id: str, subject_id: str, at_time: datetime) -> Optional[SubjectPrice]:
        """
        The price in force for a subject of a class at `at_time`, or None.

        Overlapping entries resolve to the latest valid_from, then pricing_id.
        """
        matches = [
            p for p in self.prices
            if p.class_id == class_id and p.subject_id == subject_id and p.is_effective(at_time)
        ]
        if not matches:
            return None
        return max(matches, key=lambda p: (p.valid_from, p.pricing_id))
