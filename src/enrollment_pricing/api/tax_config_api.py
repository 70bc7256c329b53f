"""
Tax Configurations API - FastAPI router for tax configuration management.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional

from ..engine import PricingEngine
from ..engine.errors import NotFoundError
from ..services.tax_config_service import TaxConfigService, TaxConfigRecord
from .state import get_engine, get_tax_service

router = APIRouter(prefix="/pricing/tax-configurations", tags=["tax-configurations"])


class TaxConfigCreate(BaseModel):
    tax_id: Optional[str] = None
    name: str
    type: str = "gst"
    rate: str
    code: str
    valid_from: str
    valid_to: Optional[str] = None
    is_active: bool = True
    order: int = 1
    is_inclusive: bool = False
    description: Optional[str] = None


class TaxConfigUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    rate: Optional[str] = None
    code: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None
    is_inclusive: Optional[bool] = None
    description: Optional[str] = None


class TaxConfigResponse(BaseModel):
    tax_id: str
    name: str
    type: str
    rate: str
    code: str
    valid_from: Optional[str]
    valid_to: Optional[str]
    is_active: bool
    order: int
    is_inclusive: bool
    description: Optional[str]


@router.get("", response_model=list[TaxConfigResponse])
async def list_configurations(include_inactive: bool = True,
                              service: TaxConfigService = Depends(get_tax_service)):
    """List tax configurations in stacking order."""
    return [TaxConfigResponse(**r.__dict__) for r in service.list_configurations(include_inactive)]


@router.get("/{tax_id}", response_model=TaxConfigResponse)
async def get_configuration(tax_id: str, service: TaxConfigService = Depends(get_tax_service)):
    record = service.get_configuration(tax_id)
    if not record:
        raise NotFoundError(f"Tax configuration '{tax_id}' not found")
    return TaxConfigResponse(**record.__dict__)


@router.post("", response_model=TaxConfigResponse)
async def create_configuration(data: TaxConfigCreate,
                               service: TaxConfigService = Depends(get_tax_service),
                               engine: PricingEngine = Depends(get_engine)):
    """Create a tax configuration and make it visible to new calculations."""
    values = data.model_dump()
    values['tax_id'] = values.get('tax_id') or ""
    created = service.create_configuration(TaxConfigRecord(**values))
    engine.reload_data()
    return TaxConfigResponse(**created.__dict__)


@router.put("/{tax_id}", response_model=TaxConfigResponse)
async def update_configuration(tax_id: str, updates: TaxConfigUpdate,
                               service: TaxConfigService = Depends(get_tax_service),
                               engine: PricingEngine = Depends(get_engine)):
    updated = service.update_configuration(tax_id, updates.model_dump(exclude_unset=True))
    engine.reload_data()
    return TaxConfigResponse(**updated.__dict__)


@router.delete("/{tax_id}")
async def delete_configuration(tax_id: str,
                               service: TaxConfigService = Depends(get_tax_service),
                               engine: PricingEngine = Depends(get_engine)):
    service.delete_configuration(tax_id)
    engine.reload_data()
    return {"success": True, "message": f"Tax configuration '{tax_id}' deleted"}
