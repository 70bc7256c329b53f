"""
Shared fixtures: a throwaway data root with reference CSVs, and factories
for rules, taxes and engines wired to it.
"""
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from enrollment_pricing.config.settings import Settings
from enrollment_pricing.data.catalog import SubjectCatalog
from enrollment_pricing.engine import PricingEngine
from enrollment_pricing.engine.discount_matcher import RuleMatcher
from enrollment_pricing.engine.models import (
    DiscountRule, DiscountTier, DiscountType, DiscountApplication,
    SubjectPrice, TaxConfiguration, TaxType, parse_timestamp,
)
from enrollment_pricing.engine.snapshot_store import InMemorySnapshotStore
from enrollment_pricing.engine.subject_pricing import SubjectPriceProvider
from enrollment_pricing.engine.tax_resolver import TaxConfigurationProvider

FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

CLASSES_CSV = """class_id,name,is_active
C1,Grade 5,true
C2,Grade 6,true
C-OLD,Grade 4,false
"""

# MATH + SCI = 1000, MATH + SCI + ART = 1100
SUBJECTS_CSV = """subject_id,class_id,name,base_price,is_free,is_active
MATH,C1,Mathematics,600.00,false,true
SCI,C1,Science,400.00,false,true
ART,C1,Art,100.00,false,true
PE,C1,Physical Education,80.00,true,true
LAB,C1,Lab Practice,300.00,false,false
HIST,C2,History,500.00,false,true
"""

STUDENTS_CSV = """student_id,name,class_id,is_active
S1,Ava Martins,C1,true
S2,Leo Martins,C1,true
S3,Mia Martins,C2,true
S4,Noah Okafor,C1,false
"""

# S2 bills MATH + SCI (1000); S3 has nothing billable
ENROLLMENTS_CSV = """student_id,subject_id,status
S2,MATH,active
S2,SCI,pending
S2,PE,active
S3,HIST,cancelled
S3,ART,completed
"""


def write_reference_data(root):
    data_dir = root / 'data'
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / 'classes.csv').write_text(CLASSES_CSV)
    (data_dir / 'subjects.csv').write_text(SUBJECTS_CSV)
    (data_dir / 'students.csv').write_text(STUDENTS_CSV)
    (data_dir / 'enrollments.csv').write_text(ENROLLMENTS_CSV)
    return root


@pytest.fixture
def data_root(tmp_path):
    return write_reference_data(tmp_path)


@pytest.fixture
def settings(data_root):
    return Settings.load(
        data_root,
        snapshot_dir=None,
        currency='USD',
        rounding_mode='half_even',
        tax_stacking='cascading',
    )


@pytest.fixture
def make_rule():
    """Build a DiscountRule; `tiers` defaults to one unconditional tier of `value`."""
    def _make(rule_id, value=10, type=DiscountType.CUSTOM,
              application=DiscountApplication.PERCENTAGE, tiers=None, **kwargs):
        if tiers is None:
            tiers = (DiscountTier(value=Decimal(str(value))),)
        kwargs.setdefault('name', rule_id)
        return DiscountRule(
            rule_id=rule_id,
            type=type,
            application=application,
            tiers=tuple(tiers),
            **kwargs,
        )
    return _make


@pytest.fixture
def make_tax():
    def _make(tax_id, rate, order=1, is_inclusive=False, type=TaxType.GST, code=None, **kwargs):
        kwargs.setdefault('valid_from', datetime(2020, 1, 1, tzinfo=timezone.utc))
        kwargs.setdefault('name', tax_id)
        return TaxConfiguration(
            tax_id=tax_id,
            type=type,
            rate=Decimal(str(rate)),
            code=code or tax_id,
            order=order,
            is_inclusive=is_inclusive,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_price():
    def _make(pricing_id, subject_id, price, class_id="C1", valid_from="2020-01-01", valid_to=None, **kwargs):
        return SubjectPrice(
            pricing_id=pricing_id,
            class_id=class_id,
            subject_id=subject_id,
            base_price=Decimal(str(price)),
            valid_from=parse_timestamp(valid_from),
            valid_to=parse_timestamp(valid_to),
            **kwargs,
        )
    return _make


@pytest.fixture
def make_engine(settings):
    """Engine over the CSV catalog with in-memory rules, taxes, prices and snapshots."""
    def _make(rules=(), taxes=(), prices=(), store=None, clock=None, catalog=None, **overrides):
        engine_settings = replace(settings, **overrides) if overrides else settings
        return PricingEngine(
            settings=engine_settings,
            catalog=catalog or SubjectCatalog(engine_settings),
            discount_provider=RuleMatcher(rules=list(rules)),
            tax_provider=TaxConfigurationProvider(configurations=list(taxes)),
            subject_prices=SubjectPriceProvider(prices=list(prices)),
            snapshot_store=store if store is not None else InMemorySnapshotStore(),
            clock=clock or (lambda: FIXED_NOW),
        )
    return _make
