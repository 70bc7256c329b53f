"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation. Monetary
amounts are Decimals; serialised results use the camelCase keys the
dashboard consumes.
"""
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from .money import to_decimal, ZERO


class DiscountType(str, Enum):
    SIBLING = "sibling"
    VOLUME = "volume"
    EARLY_BIRD = "early_bird"
    SEASONAL = "seasonal"
    CUSTOM = "custom"


class DiscountApplication(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class TaxType(str, Enum):
    GST = "gst"
    SERVICE_TAX = "service_tax"
    VAT = "vat"
    INCOME_TAX = "income_tax"
    CUSTOM = "custom"


class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO date or datetime into an aware UTC datetime.

    Date-only values mean midnight UTC. Naive datetimes are taken as UTC.
    Empty values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with a trailing Z."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def in_window(at: datetime, valid_from: Optional[datetime], valid_to: Optional[datetime]) -> bool:
    """True when valid_from <= at < valid_to (either bound may be open)."""
    if valid_from is not None and at < valid_from:
        return False
    if valid_to is not None and at >= valid_to:
        return False
    return True


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Subject:
    subject_id: str
    class_id: str
    base_price: Decimal
    is_free: bool = False
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class SubjectPrice:
    """A dated base price for a subject in a class, overriding the catalog price."""
    pricing_id: str
    class_id: str
    subject_id: str
    base_price: Decimal
    valid_from: datetime
    valid_to: Optional[datetime] = None
    is_active: bool = True

    def is_effective(self, at: datetime) -> bool:
        return self.is_active and in_window(at, self.valid_from, self.valid_to)


@dataclass(frozen=True)
class Student:
    student_id: str
    name: str = ""
    class_id: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class SchoolClass:
    class_id: str
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class Enrollment:
    student_id: str
    subject_id: str
    status: EnrollmentStatus


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DiscountTier:
    """
    One threshold band of a discount rule.

    Early-bird tiers may carry a registration deadline and seasonal tiers a
    season window; both are checked against the calculation time.
    """
    value: Decimal
    min_siblings: int = 0
    min_subjects: int = 0
    min_family_total: Decimal = ZERO
    description: str = ""
    registration_before: Optional[datetime] = None
    season_start: Optional[datetime] = None
    season_end: Optional[datetime] = None

    def rank(self) -> tuple:
        """Sort key for tier selection. An earlier registration deadline ranks higher."""
        deadline = (0, 0.0) if self.registration_before is None else (1, -self.registration_before.timestamp())
        season_start = (0, 0.0) if self.season_start is None else (1, self.season_start.timestamp())
        season_end = (0, 0.0) if self.season_end is None else (1, self.season_end.timestamp())
        return (self.min_siblings, self.min_subjects, self.min_family_total, deadline, season_start, season_end)


@dataclass(frozen=True)
class DiscountRule:
    rule_id: str
    name: str
    type: DiscountType
    application: DiscountApplication
    tiers: tuple[DiscountTier, ...]
    priority: int = 50
    active: bool = True
    stackable: bool = True
    apply_to_original_base: bool = False
    requires_sibling_total: bool = False
    max_discount: Optional[Decimal] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    description: str = ""


@dataclass(frozen=True)
class TaxConfiguration:
    tax_id: str
    name: str
    type: TaxType
    rate: Decimal
    code: str
    valid_from: datetime
    valid_to: Optional[datetime] = None
    is_active: bool = True
    order: int = 1
    is_inclusive: bool = False
    description: str = ""

    def is_effective(self, at: datetime) -> bool:
        return self.is_active and in_window(at, self.valid_from, self.valid_to)


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------

@dataclass
class PricingRequest:
    """A pricing request for one student enrolling in subjects of a class."""
    student_id: str
    class_id: str
    subject_ids: list[str]
    sibling_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'PricingRequest':
        return cls(
            student_id=data.get('studentId', ''),
            class_id=data.get('classId', ''),
            subject_ids=list(data.get('subjectIds') or []),
            sibling_ids=list(data.get('siblingIds') or []),
        )


@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None

    def to_dict(self) -> dict:
        return {"step": self.step, "description": self.description, "value": self.value}


@dataclass
class SubjectPricing:
    subject_id: str
    base_price: Decimal
    is_free: bool

    def to_dict(self) -> dict:
        return {"subjectId": self.subject_id, "basePrice": self.base_price, "isFree": self.is_free}

    @classmethod
    def from_dict(cls, data: dict) -> 'SubjectPricing':
        return cls(
            subject_id=data['subjectId'],
            base_price=to_decimal(data['basePrice']),
            is_free=bool(data['isFree']),
        )


@dataclass
class AppliedDiscount:
    discount_rule_id: str
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal
    description: str

    def to_dict(self) -> dict:
        return {
            "discountRuleId": self.discount_rule_id,
            "discountType": self.discount_type.value,
            "discountValue": self.discount_value,
            "discountAmount": self.discount_amount,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AppliedDiscount':
        return cls(
            discount_rule_id=data['discountRuleId'],
            discount_type=DiscountType(data['discountType']),
            discount_value=to_decimal(data['discountValue']),
            discount_amount=to_decimal(data['discountAmount']),
            description=data.get('description', ''),
        )


@dataclass
class AppliedTax:
    tax_configuration_id: str
    tax_type: TaxType
    tax_rate: Decimal
    tax_amount: Decimal
    is_inclusive: bool

    def to_dict(self) -> dict:
        return {
            "taxConfigurationId": self.tax_configuration_id,
            "taxType": self.tax_type.value,
            "taxRate": self.tax_rate,
            "taxAmount": self.tax_amount,
            "isInclusive": self.is_inclusive,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AppliedTax':
        return cls(
            tax_configuration_id=data['taxConfigurationId'],
            tax_type=TaxType(data['taxType']),
            tax_rate=to_decimal(data['taxRate']),
            tax_amount=to_decimal(data['taxAmount']),
            is_inclusive=bool(data['isInclusive']),
        )


@dataclass
class PricingBreakdown:
    subject_pricing: list[SubjectPricing]
    total_base_price: Decimal
    applied_discounts: list[AppliedDiscount]
    total_discount_amount: Decimal
    price_after_discount: Decimal
    applied_taxes: list[AppliedTax]
    total_tax_amount: Decimal
    final_amount: Decimal
    currency: str

    def to_dict(self) -> dict:
        return {
            "subjectPricing": [s.to_dict() for s in self.subject_pricing],
            "totalBasePrice": self.total_base_price,
            "appliedDiscounts": [d.to_dict() for d in self.applied_discounts],
            "totalDiscountAmount": self.total_discount_amount,
            "priceAfterDiscount": self.price_after_discount,
            "appliedTaxes": [t.to_dict() for t in self.applied_taxes],
            "totalTaxAmount": self.total_tax_amount,
            "finalAmount": self.final_amount,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PricingBreakdown':
        return cls(
            subject_pricing=[SubjectPricing.from_dict(s) for s in data['subjectPricing']],
            total_base_price=to_decimal(data['totalBasePrice']),
            applied_discounts=[AppliedDiscount.from_dict(d) for d in data['appliedDiscounts']],
            total_discount_amount=to_decimal(data['totalDiscountAmount']),
            price_after_discount=to_decimal(data['priceAfterDiscount']),
            applied_taxes=[AppliedTax.from_dict(t) for t in data['appliedTaxes']],
            total_tax_amount=to_decimal(data['totalTaxAmount']),
            final_amount=to_decimal(data['finalAmount']),
            currency=data['currency'],
        )


@dataclass
class SiblingInfo:
    sibling_count: int
    sibling_ids: list[str]
    total_siblings_price: Optional[Decimal] = None

    def to_dict(self) -> dict:
        data = {"siblingCount": self.sibling_count, "siblingIds": list(self.sibling_ids)}
        if self.total_siblings_price is not None:
            data["totalSiblingsPrice"] = self.total_siblings_price
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'SiblingInfo':
        total = data.get('totalSiblingsPrice')
        return cls(
            sibling_count=int(data['siblingCount']),
            sibling_ids=list(data['siblingIds']),
            total_siblings_price=to_decimal(total) if total is not None else None,
        )


@dataclass
class PricingResult:
    """Complete result of a pricing calculation, as stored in its snapshot."""
    pricing_breakdown: PricingBreakdown
    sibling_info: SiblingInfo
    calculated_at: str
    snapshot_id: str
    trace: list[TraceStep] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def get_trace_text(self) -> str:
        """Get human-readable result trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "pricingBreakdown": self.pricing_breakdown.to_dict(),
            "siblingInfo": self.sibling_info.to_dict(),
            "calculatedAt": self.calculated_at,
            "snapshotId": self.snapshot_id,
            "trace": [t.to_dict() for t in self.trace],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PricingResult':
        return cls(
            pricing_breakdown=PricingBreakdown.from_dict(data['pricingBreakdown']),
            sibling_info=SiblingInfo.from_dict(data['siblingInfo']),
            calculated_at=data['calculatedAt'],
            snapshot_id=data['snapshotId'],
            trace=[TraceStep(**t) for t in data.get('trace', [])],
        )
