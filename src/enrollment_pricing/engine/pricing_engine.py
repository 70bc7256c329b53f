"""
Enrollment Pricing Engine - Core pricing resolution logic with traceability.

Resolves the price of a student's enrollment in a set of subjects:
- Subject base prices, with free subjects excluded from the chargeable base
- Discount rules stacked in priority order on the running price
- Tax configurations stacked in order (inclusive or exclusive)
- An immutable snapshot persisted for every calculation
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from ..config.settings import get_settings, Settings
from .discount_matcher import RuleMatcher, DiscountContext
from .errors import PricingError, ValidationError, NotFoundError, StateError, DependencyError
from .models import (
    PricingRequest, PricingResult, PricingBreakdown, SubjectPricing,
    AppliedDiscount, AppliedTax, SiblingInfo, Subject, format_timestamp,
)
from .money import AmountOutOfRange, round_money, ZERO
from .snapshot_store import SnapshotStore, FileSnapshotStore, InMemorySnapshotStore
from .subject_pricing import SubjectPriceProvider
from .tax_resolver import TaxConfigurationProvider, compute_tax

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PricingEngine:
    """
    Core pricing engine: request → subjects → discounts → taxes → snapshot.

    Resolution order:
    1. Validate the request shape and resolve student, class and subjects
    2. Price each subject (price book, else catalog) and sum the non-free ones
    3. Resolve siblings (and their running total when a rule needs it)
    4. Apply matching discount rules in priority order to the running price
    5. Apply taxes in configured order (inclusive extracted, exclusive added)
    6. Persist the result under a fresh snapshot id and return it

    A calculation either returns a complete result that has been stored, or
    raises and stores nothing.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        catalog=None,
        discount_provider: Optional[RuleMatcher] = None,
        tax_provider: Optional[TaxConfigurationProvider] = None,
        subject_prices: Optional[SubjectPriceProvider] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize engine with reference data, rules, taxes and a snapshot store."""
        self.settings = settings or get_settings()

        if catalog is None:
            from ..data.catalog import SubjectCatalog
            catalog = SubjectCatalog(self.settings)
        self.catalog = catalog

        if discount_provider is None:
            discount_provider = RuleMatcher(self.settings.compiled_discount_rules)
        self.discount_provider = discount_provider

        if tax_provider is None:
            tax_provider = TaxConfigurationProvider(self.settings.tax_configurations_csv)
        self.tax_provider = tax_provider

        if subject_prices is None:
            subject_prices = SubjectPriceProvider(self.settings.subject_pricing_csv)
        self.subject_prices = subject_prices

        if snapshot_store is None:
            if self.settings.snapshot_dir:
                snapshot_store = FileSnapshotStore(self.settings.snapshot_dir)
            else:
                snapshot_store = InMemorySnapshotStore()
        self.snapshot_store = snapshot_store

        self.clock = clock or utc_now

    def reload_data(self):
        """Reload reference data, prices, discount rules and taxes. Snapshots are untouched."""
        self._dependency("subject catalog", self.catalog.reload)
        self._dependency("subject price book", self.subject_prices.reload)
        self._dependency("discount rules", self.discount_provider.reload)
        self._dependency("tax configurations", self.tax_provider.reload)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def calculate(self, request: PricingRequest) -> PricingResult:
        """
        Calculate pricing for a request and persist it as a snapshot.

        Raises ValidationError, NotFoundError, StateError or DependencyError.
        """
        subject_ids, sibling_ids = self._validate_request(request)
        rounding = self.settings.rounding_mode
        zero = round_money(ZERO, rounding)

        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        result = PricingResult(
            pricing_breakdown=None,
            sibling_info=SiblingInfo(sibling_count=0, sibling_ids=[]),
            calculated_at=format_timestamp(now),
            snapshot_id=str(uuid.uuid4()),
        )

        # 1. Student and class
        self._resolve_student_and_class(request, result)

        try:
            # 2. Subjects
            priced = self._resolve_subjects(request.class_id, subject_ids, now, result)
            subject_pricing = [
                SubjectPricing(
                    subject_id=subject.subject_id,
                    base_price=round_money(price, rounding),
                    is_free=subject.is_free,
                )
                for subject, price in priced
            ]
            total_base_price = sum((sp.base_price for sp in subject_pricing if not sp.is_free), zero)
            chargeable_count = sum(1 for sp in subject_pricing if not sp.is_free)
            result.add_trace("Base Price", f"{chargeable_count} chargeable of {len(subject_pricing)} subjects",
                             f"{total_base_price:.2f}")

            # 3. Siblings
            sibling_info = self._resolve_siblings(request.student_id, sibling_ids, now, result)
            result.sibling_info = sibling_info

            # 4. Discounts
            context = DiscountContext(
                calculated_at=now,
                sibling_count=sibling_info.sibling_count,
                subject_count=chargeable_count,
                total_base_price=total_base_price,
                total_siblings_price=sibling_info.total_siblings_price,
            )
            applied_discounts, price_after_discount = self._apply_discounts(context, result)
            total_discount_amount = sum((d.discount_amount for d in applied_discounts), zero)

            # 5. Taxes
            applied_taxes = self._apply_taxes(now, price_after_discount, result)
            total_tax_amount = sum((t.tax_amount for t in applied_taxes), zero)
            exclusive_total = sum((t.tax_amount for t in applied_taxes if not t.is_inclusive), zero)
            final_amount = round_money(price_after_discount + exclusive_total, rounding)
        except AmountOutOfRange as e:
            raise StateError(f"Prices for this request are out of range: {e}") from e

        result.pricing_breakdown = PricingBreakdown(
            subject_pricing=subject_pricing,
            total_base_price=total_base_price,
            applied_discounts=applied_discounts,
            total_discount_amount=total_discount_amount,
            price_after_discount=price_after_discount,
            applied_taxes=applied_taxes,
            total_tax_amount=total_tax_amount,
            final_amount=final_amount,
            currency=self.settings.currency,
        )
        result.add_trace("Final Amount", "Price after discount plus exclusive taxes", f"{final_amount:.2f}")

        # 6. Persist (only a complete result ever reaches the store)
        self._dependency("snapshot store", self.snapshot_store.put, result)
        logger.info(
            "Priced student %s class %s: final %s %s (snapshot %s)",
            request.student_id, request.class_id, final_amount, self.settings.currency, result.snapshot_id,
        )
        return result

    def get_snapshot(self, snapshot_id: str) -> PricingResult:
        """Return a stored result unchanged. Never recomputes."""
        if not isinstance(snapshot_id, str) or not snapshot_id.strip():
            raise NotFoundError(f"Snapshot '{snapshot_id}' not found")
        return self._dependency("snapshot store", self.snapshot_store.get, snapshot_id)

    # ------------------------------------------------------------------
    # Resolution steps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_request(request: PricingRequest) -> tuple[list[str], list[str]]:
        if not isinstance(request, PricingRequest):
            raise ValidationError("Request must be a PricingRequest")
        for field_name in ('student_id', 'class_id'):
            value = getattr(request, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{field_name} is required")

        if not isinstance(request.subject_ids, (list, tuple)) or not request.subject_ids:
            raise ValidationError("subject_ids must be a non-empty list")
        if any(not isinstance(s, str) or not s.strip() for s in request.subject_ids):
            raise ValidationError("subject_ids must contain non-empty strings")
        subject_ids = [s.strip() for s in request.subject_ids]
        duplicates = sorted({s for s in subject_ids if subject_ids.count(s) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate subject ids: {', '.join(duplicates)}")

        raw_siblings = request.sibling_ids or []
        if not isinstance(raw_siblings, (list, tuple)):
            raise ValidationError("sibling_ids must be a list")
        if any(not isinstance(s, str) or not s.strip() for s in raw_siblings):
            raise ValidationError("sibling_ids must contain non-empty strings")
        # Duplicates are collapsed, keeping first occurrence
        sibling_ids = list(dict.fromkeys(s.strip() for s in raw_siblings))
        if request.student_id.strip() in sibling_ids:
            raise ValidationError("A student cannot be their own sibling")

        return subject_ids, sibling_ids

    def _resolve_student_and_class(self, request: PricingRequest, result: PricingResult):
        student = self._dependency("subject catalog", self.catalog.get_student, request.student_id)
        if student is None:
            raise NotFoundError(f"Student '{request.student_id}' not found")
        if not student.is_active:
            raise StateError(f"Student '{request.student_id}' is not active")

        school_class = self._dependency("subject catalog", self.catalog.get_class, request.class_id)
        if school_class is None:
            raise NotFoundError(f"Class '{request.class_id}' not found")
        if not school_class.is_active:
            raise StateError(f"Class '{request.class_id}' is not active")

        result.add_trace("Student", f"Resolved student {student.student_id}", student.name or None)
        result.add_trace("Class", f"Resolved class {school_class.class_id}", school_class.name or None)

    def _resolve_subjects(self, class_id: str, subject_ids: list[str], now: datetime,
                          result: PricingResult) -> list[tuple[Subject, Decimal]]:
        subjects = self._dependency("subject catalog", self.catalog.get_subjects_by_ids, subject_ids)
        found = {s.subject_id: s for s in subjects}

        missing = [sid for sid in subject_ids if sid not in found]
        if missing:
            raise NotFoundError(f"Subject(s) not found: {', '.join(missing)}")

        priced = []
        for subject in (found[sid] for sid in subject_ids):
            if subject.class_id != class_id.strip():
                raise StateError(
                    f"Subject '{subject.subject_id}' belongs to class '{subject.class_id}', not '{class_id}'"
                )
            if not subject.is_active:
                raise StateError(f"Subject '{subject.subject_id}' is not active")
            price, source = self._price_subject(subject, now)
            if subject.is_free:
                label = "free"
            elif source:
                label = f"{price:.2f} ({source})"
            else:
                label = f"{price:.2f}"
            result.add_trace("Subject", f"Resolved subject {subject.subject_id}", label)
            priced.append((subject, price))
        return priced

    def _price_subject(self, subject: Subject, now: datetime) -> tuple[Decimal, Optional[str]]:
        """Base price in force for a subject: the price book entry, else the catalog price."""
        entry = self._dependency(
            "subject price book", self.subject_prices.get_price, subject.class_id, subject.subject_id, now
        )
        price = entry.base_price if entry else subject.base_price
        if price < ZERO:
            raise StateError(f"Subject '{subject.subject_id}' has a negative base price ({price})")
        return price, (entry.pricing_id if entry else None)

    def _resolve_siblings(self, student_id: str, sibling_ids: list[str], now: datetime,
                          result: PricingResult) -> SiblingInfo:
        for sibling_id in sibling_ids:
            sibling = self._dependency("subject catalog", self.catalog.get_student, sibling_id)
            if sibling is None:
                raise NotFoundError(f"Sibling '{sibling_id}' not found")

        info = SiblingInfo(sibling_count=len(sibling_ids), sibling_ids=list(sibling_ids))
        if not sibling_ids:
            return info

        needs_total = self._dependency(
            "discount rules", self.discount_provider.requires_sibling_total, now
        )
        if needs_total:
            total = ZERO
            for sibling_id in sibling_ids:
                billable = self._dependency("subject catalog", self.catalog.get_billable_subjects, sibling_id)
                for subject in billable:
                    if not subject.is_free:
                        total += self._price_subject(subject, now)[0]
            info.total_siblings_price = round_money(total, self.settings.rounding_mode)
            result.add_trace("Siblings", "Sibling running total", f"{info.total_siblings_price:.2f}")

        result.add_trace("Siblings", f"{info.sibling_count} sibling(s)", ", ".join(sibling_ids))
        return info

    def _apply_discounts(self, context: DiscountContext, result: PricingResult):
        matched = self._dependency("discount rules", self.discount_provider.get_applicable_rules, context)

        running = context.total_base_price
        applied: list[AppliedDiscount] = []
        for match in matched:
            rule = match.rule
            if running <= ZERO:
                result.add_trace("Discount", "Nothing left to discount", f"{running:.2f}")
                break
            if not rule.stackable and applied:
                result.add_trace("Discount Skipped", f"{rule.name} ({rule.rule_id}) does not stack")
                continue

            amount, traces = self.discount_provider.apply_rule_to_price(
                match, running, context.total_base_price, self.settings.rounding_mode
            )
            if amount <= ZERO:
                continue

            running -= amount
            applied.append(AppliedDiscount(
                discount_rule_id=rule.rule_id,
                discount_type=rule.type,
                discount_value=match.tier.value,
                discount_amount=amount,
                description=match.description,
            ))
            for message in traces:
                result.add_trace("Discount", message, f"{amount:.2f}")

            if not rule.stackable:
                result.add_trace("Discount", f"{rule.rule_id} is exclusive; stopping", None)
                break

        return applied, running

    def _apply_taxes(self, now: datetime, price_after_discount, result: PricingResult) -> list[AppliedTax]:
        configurations = self._dependency(
            "tax configurations", self.tax_provider.get_active_configurations, now
        )
        cascading = self.settings.tax_stacking == 'cascading'

        running = price_after_discount
        applied: list[AppliedTax] = []
        for config in configurations:
            # Inclusive taxes are always extracted from the current running amount
            base = running if (cascading or config.is_inclusive) else price_after_discount
            amount = compute_tax(config, base, self.settings.rounding_mode)
            if not config.is_inclusive and cascading:
                running += amount

            applied.append(AppliedTax(
                tax_configuration_id=config.tax_id,
                tax_type=config.type,
                tax_rate=config.rate,
                tax_amount=amount,
                is_inclusive=config.is_inclusive,
            ))
            mode = "inclusive" if config.is_inclusive else "exclusive"
            result.add_trace("Tax", f"{config.name} ({config.code}) {config.rate}% {mode} on {base:.2f}",
                             f"{amount:.2f}")
        return applied

    # ------------------------------------------------------------------

    @staticmethod
    def _dependency(name: str, fn, *args):
        """Call a collaborator, re-raising its infrastructure failures as DependencyError."""
        try:
            return fn(*args)
        except PricingError:
            raise
        except Exception as e:
            logger.error("%s failed: %s", name, e)
            raise DependencyError(f"{name} unavailable: {e}") from e
