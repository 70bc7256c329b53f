"""
Discounts API - FastAPI router for discount rule management.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional

from ..engine import PricingEngine
from ..engine.errors import NotFoundError, ValidationError
from ..services.discount_rules_service import (
    DiscountRulesService, DiscountRuleRecord, TierRecord,
)
from .state import get_engine, get_discount_service

router = APIRouter(prefix="/pricing/discounts", tags=["discounts"])


# Pydantic models for API
class TierModel(BaseModel):
    discount_value: str
    min_siblings: int = 0
    min_subjects: int = 0
    min_family_total: str = "0"
    description: Optional[str] = None
    registration_before: Optional[str] = None
    season_start: Optional[str] = None
    season_end: Optional[str] = None


class RuleCreate(BaseModel):
    """Request model for creating a discount rule."""
    rule_id: Optional[str] = None
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
    tiers: list[TierModel]

    def to_record(self) -> DiscountRuleRecord:
        data = self.model_dump()
        data['rule_id'] = data.get('rule_id') or ""
        data['tiers'] = [TierRecord(**t) for t in data['tiers']]
        return DiscountRuleRecord(**data)


class RuleUpdate(BaseModel):
    """Request model for updating a discount rule."""
    name: Optional[str] = None
    type: Optional[str] = None
    application: Optional[str] = None
    active: Optional[bool] = None
    priority: Optional[int] = None
    stackable: Optional[bool] = None
    apply_to_original_base: Optional[bool] = None
    requires_sibling_total: Optional[bool] = None
    max_discount: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    description: Optional[str] = None
    tiers: Optional[list[TierModel]] = None


class RuleResponse(BaseModel):
    """Response model for a discount rule."""
    rule_id: str
    name: str
    type: str
    application: str
    active: bool
    priority: int
    stackable: bool
    apply_to_original_base: bool
    requires_sibling_total: bool
    max_discount: Optional[str]
    valid_from: Optional[str]
    valid_to: Optional[str]
    description: Optional[str]
    tiers: list[TierModel]

    @classmethod
    def from_record(cls, record: DiscountRuleRecord) -> 'RuleResponse':
        data = dict(record.__dict__)
        data['tiers'] = [TierModel(**t.__dict__) for t in record.tiers]
        return cls(**data)


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]


# Endpoints

@router.get("", response_model=list[RuleResponse])
async def list_rules(include_inactive: bool = True,
                     service: DiscountRulesService = Depends(get_discount_service)):
    """List all discount rules."""
    return [RuleResponse.from_record(r) for r in service.list_rules(include_inactive=include_inactive)]


@router.get("/stats")
async def get_stats(service: DiscountRulesService = Depends(get_discount_service)):
    """Get rule statistics."""
    return service.get_stats()


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: str, service: DiscountRulesService = Depends(get_discount_service)):
    """Get a single rule by ID."""
    rule = service.get_rule(rule_id)
    if not rule:
        raise NotFoundError(f"Rule '{rule_id}' not found")
    return RuleResponse.from_record(rule)


@router.post("", response_model=RuleResponse)
async def create_rule(rule_data: RuleCreate,
                      service: DiscountRulesService = Depends(get_discount_service),
                      engine: PricingEngine = Depends(get_engine)):
    """Create a new discount rule."""
    rule = rule_data.to_record()

    # Validate first
    validation = service.validate_rule(rule)
    if not validation.valid:
        raise ValidationError("; ".join(validation.errors))

    created = service.create_rule(rule)
    engine.reload_data()
    return RuleResponse.from_record(created)


@router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(rule_id: str, updates: RuleUpdate,
                      service: DiscountRulesService = Depends(get_discount_service),
                      engine: PricingEngine = Depends(get_engine)):
    """Update an existing rule."""
    # Use exclude_unset=True to only update fields provided in the request body,
    # including those explicitly set to None (null).
    update_dict = updates.model_dump(exclude_unset=True)
    updated = service.update_rule(rule_id, update_dict)
    engine.reload_data()
    return RuleResponse.from_record(updated)


@router.delete("/{rule_id}")
async def delete_rule(rule_id: str,
                      service: DiscountRulesService = Depends(get_discount_service),
                      engine: PricingEngine = Depends(get_engine)):
    """Delete a rule."""
    service.delete_rule(rule_id)
    engine.reload_data()
    return {"success": True, "message": f"Rule '{rule_id}' deleted"}


@router.post("/validate", response_model=ValidationResponse)
async def validate_rule(rule_data: RuleCreate,
                        service: DiscountRulesService = Depends(get_discount_service)):
    """Validate a rule without saving."""
    result = service.validate_rule(rule_data.to_record())
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@router.post("/compile")
async def compile_rules(service: DiscountRulesService = Depends(get_discount_service),
                        engine: PricingEngine = Depends(get_engine)):
    """Force recompile of rules and reload engine."""
    success, output = service.compile_rules()
    if success:
        engine.reload_data()
    return {
        "success": success,
        "output": output
    }
