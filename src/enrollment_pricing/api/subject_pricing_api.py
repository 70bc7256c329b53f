"""
Subject Pricing API - FastAPI router for the dated subject price book.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional

from ..engine import PricingEngine
from ..engine.errors import NotFoundError
from ..services.subject_pricing_service import SubjectPricingService, SubjectPriceRecord
from .state import get_engine, get_subject_pricing_service

router = APIRouter(prefix="/pricing/subject-pricing", tags=["subject-pricing"])


class SubjectPriceCreate(BaseModel):
    pricing_id: Optional[str] = None
    class_id: str
    subject_id: str
    base_price: str
    valid_from: str
    valid_to: Optional[str] = None
    is_active: bool = True


class SubjectPriceUpdate(BaseModel):
    class_id: Optional[str] = None
    subject_id: Optional[str] = None
    base_price: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    is_active: Optional[bool] = None


class SubjectPriceResponse(BaseModel):
    pricing_id: str
    class_id: str
    subject_id: str
    base_price: str
    valid_from: Optional[str]
    valid_to: Optional[str]
    is_active: bool


@router.get("", response_model=list[SubjectPriceResponse])
async def list_prices(class_id: Optional[str] = None, subject_id: Optional[str] = None,
                      include_inactive: bool = True,
                      service: SubjectPricingService = Depends(get_subject_pricing_service)):
    """List subject prices, optionally for one class or subject."""
    records = service.list_prices(class_id, subject_id, include_inactive)
    return [SubjectPriceResponse(**r.__dict__) for r in records]


@router.get("/{pricing_id}", response_model=SubjectPriceResponse)
async def get_price(pricing_id: str, service: SubjectPricingService = Depends(get_subject_pricing_service)):
    record = service.get_price(pricing_id)
    if not record:
        raise NotFoundError(f"Subject price '{pricing_id}' not found")
    return SubjectPriceResponse(**record.__dict__)


@router.post("", response_model=SubjectPriceResponse)
async def create_price(data: SubjectPriceCreate,
                       service: SubjectPricingService = Depends(get_subject_pricing_service),
                       engine: PricingEngine = Depends(get_engine)):
    """Create a subject price and make it visible to new calculations."""
    values = data.model_dump()
    values['pricing_id'] = values.get('pricing_id') or ""
    created = service.create_price(SubjectPriceRecord(**values))
    engine.reload_data()
    return SubjectPriceResponse(**created.__dict__)


@router.put("/{pricing_id}", response_model=SubjectPriceResponse)
async def update_price(pricing_id: str, updates: SubjectPriceUpdate,
                       service: SubjectPricingService = Depends(get_subject_pricing_service),
                       engine: PricingEngine = Depends(get_engine)):
    updated = service.update_price(pricing_id, updates.model_dump(exclude_unset=True))
    engine.reload_data()
    return SubjectPriceResponse(**updated.__dict__)


@router.delete("/{pricing_id}")
async def delete_price(pricing_id: str,
                       service: SubjectPricingService = Depends(get_subject_pricing_service),
                       engine: PricingEngine = Depends(get_engine)):
    service.delete_price(pricing_id)
    engine.reload_data()
    return {"success": True, "message": f"Subject price '{pricing_id}' deleted"}
