from decimal import Decimal

from fastapi import FastAPI, Depends, Request as HttpRequest
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from ..config.settings import get_settings
from ..engine import PricingEngine, PricingRequest
from ..engine.errors import (
    PricingError, ValidationError, NotFoundError, StateError, DependencyError,
)
from ..logging_config import setup_logging
from .discounts_api import router as discounts_router
from .subject_pricing_api import router as subject_pricing_router
from .tax_config_api import router as tax_config_router
from .state import get_engine

setup_logging(get_settings().log_level)

app = FastAPI(
    title="Enrollment Pricing API",
    description="Pricing calculation and snapshot service for class enrollments",
    version="1.0.0"
)

# Enable CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(discounts_router)
app.include_router(subject_pricing_router)
app.include_router(tax_config_router)

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    StateError: 409,
    DependencyError: 503,
}


@app.exception_handler(PricingError)
async def pricing_error_handler(request: HttpRequest, exc: PricingError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: HttpRequest, exc: RequestValidationError):
    messages = [
        f"{'.'.join(str(p) for p in err.get('loc', [])[1:])}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"kind": "validation", "message": "; ".join(messages)})


class CalcRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: str = Field(alias="studentId")
    class_id: str = Field(alias="classId")
    subject_ids: List[str] = Field(alias="subjectIds")
    sibling_ids: Optional[List[str]] = Field(default=None, alias="siblingIds")


def encode(data):
    """JSON-ready data with amounts as decimal strings, as stored in snapshots."""
    return jsonable_encoder(data, custom_encoder={Decimal: str})


@app.get("/")
async def root():
    return {"status": "online", "message": "Enrollment Pricing API Active"}


@app.post("/pricing/calculate")
async def calculate_pricing(req: CalcRequest, engine: PricingEngine = Depends(get_engine)):
    request = PricingRequest(
        student_id=req.student_id,
        class_id=req.class_id,
        subject_ids=req.subject_ids,
        sibling_ids=req.sibling_ids or [],
    )
    result = engine.calculate(request)
    return encode(result.to_dict())


@app.get("/pricing/calculate/snapshot/{snapshot_id}")
async def get_pricing_snapshot(snapshot_id: str, engine: PricingEngine = Depends(get_engine)):
    result = engine.get_snapshot(snapshot_id)
    return encode(result.to_dict())


@app.get("/catalog/classes")
async def list_classes(engine: PricingEngine = Depends(get_engine)):
    return encode([c.__dict__ for c in engine.catalog.list_classes()])


@app.get("/catalog/subjects")
async def list_subjects(class_id: Optional[str] = None, engine: PricingEngine = Depends(get_engine)):
    return encode([s.__dict__ for s in engine.catalog.list_subjects(class_id)])


@app.get("/catalog/students")
async def list_students(engine: PricingEngine = Depends(get_engine)):
    return encode([s.__dict__ for s in engine.catalog.list_students()])


@app.post("/system/reload")
async def reload_data(engine: PricingEngine = Depends(get_engine)):
    engine.reload_data()
    return {"success": True}


@app.get("/system/status")
async def get_status(engine: PricingEngine = Depends(get_engine)):
    settings = engine.settings
    return {
        "engine_active": True,
        "rules_loaded": engine.discount_provider.loaded,
        "rules_count": len(engine.discount_provider.rules),
        "tax_configurations": len(engine.tax_provider.configurations),
        "subject_prices": len(engine.subject_prices.prices),
        "snapshots_stored": engine.snapshot_store.count(),
        "currency": settings.currency,
        "rounding_mode": settings.rounding_mode,
        "tax_stacking": settings.tax_stacking,
    }
