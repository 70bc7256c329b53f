"""
Shared API state: the engine and admin services, built on first use.

Tests swap them with `app.dependency_overrides`.
"""
from typing import Optional

from ..config.settings import get_settings
from ..engine import PricingEngine
from ..services.discount_rules_service import DiscountRulesService
from ..services.subject_pricing_service import SubjectPricingService
from ..services.tax_config_service import TaxConfigService

_engine: Optional[PricingEngine] = None


def get_engine() -> PricingEngine:
    global _engine
    if _engine is None:
        _engine = PricingEngine(get_settings())
    return _engine


def get_discount_service() -> DiscountRulesService:
    settings = get_settings()
    return DiscountRulesService(
        rules_csv_path=settings.discount_rules_csv,
        compiled_rules_path=settings.compiled_discount_rules,
    )


def get_tax_service() -> TaxConfigService:
    return TaxConfigService(get_settings().tax_configurations_csv)


def get_subject_pricing_service() -> SubjectPricingService:
    return SubjectPricingService(get_settings().subject_pricing_csv)
