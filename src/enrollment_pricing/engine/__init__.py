"""Engine subpackage - core pricing logic, rule matching and snapshots."""
from .pricing_engine import PricingEngine
from .models import PricingRequest, PricingResult, PricingBreakdown
from .errors import PricingError, ValidationError, NotFoundError, StateError, DependencyError

__all__ = [
    'PricingEngine', 'PricingRequest', 'PricingResult', 'PricingBreakdown',
    'PricingError', 'ValidationError', 'NotFoundError', 'StateError', 'DependencyError',
]
