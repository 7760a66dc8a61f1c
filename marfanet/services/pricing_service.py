"""Pricing Resolver for subscription lines.

Resolution order for one (service class, duration) cell:
1. The representative's own tier table (12 slots)
2. The system default table from Settings
3. PricingUnresolved

Pure table lookup so invoices are reproducible from the stored tables.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence
import logging

from marfanet.config import settings
from marfanet.core.exceptions import InvoiceValidationError, PricingUnresolved
from marfanet.db_types import quantize_money, quantize_quantity
from marfanet.models.representative import Representative, ServiceClass, DURATION_MONTHS
from marfanet.models.invoice import PriceSource

logger = logging.getLogger(__name__)


SERVICE_CLASS_LABELS = {
    ServiceClass.LIMITED.value: "محدود",
    ServiceClass.UNLIMITED.value: "نامحدود",
}


@dataclass(frozen=True)
class ResolvedPrice:
    unit_price: Decimal
    source: str  # representative_rate | default_rate


@dataclass(frozen=True)
class PricedLine:
    """A subscription line with its price resolved."""
    service_class: str
    duration_months: int
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    description: str
    source: str


def describe_line(service_class: str, duration_months: int) -> str:
    """Persian line description, e.g. 'اشتراک 3 ماهه محدود'."""
    return f"اشتراک {duration_months} ماهه {SERVICE_CLASS_LABELS[service_class]}"


def combine_price_sources(sources: Sequence[str]) -> str:
    """Invoice-level price source from its line sources."""
    distinct = set(sources)
    if len(distinct) == 1:
        return distinct.pop()
    if not distinct:
        return PriceSource.MANUAL.value
    return PriceSource.MIXED.value


class PricingService:
    """
    Resolves unit prices per subscription tier.

    Example:
    - limited_price_3_month = 900 on the representative
    - line: limited / 3 months / quantity 10
    - unit price 900, line total 9000
    """

    def __init__(
        self,
        default_limited: Optional[Sequence[Decimal]] = None,
        default_unlimited: Optional[Sequence[Decimal]] = None,
    ):
        self.default_tables = {
            ServiceClass.LIMITED.value: list(default_limited or settings.DEFAULT_LIMITED_PRICES),
            ServiceClass.UNLIMITED.value: list(default_unlimited or settings.DEFAULT_UNLIMITED_PRICES),
        }

    @staticmethod
    def _normalize_class(service_class) -> str:
        if isinstance(service_class, ServiceClass):
            return service_class.value
        return str(service_class).strip().lower() if service_class is not None else ""

    def _default_price(self, service_class: str, duration_months: int) -> Optional[Decimal]:
        table = self.default_tables.get(service_class) or []
        index = duration_months - 1
        if 0 <= index < len(table):
            return table[index]
        return None

    def resolve_unit_price(
        self,
        representative: Representative,
        service_class,
        duration_months: int,
    ) -> ResolvedPrice:
        """Unit price for one cell, falling back to the default table."""
        cls = self._normalize_class(service_class)
        if cls not in SERVICE_CLASS_LABELS:
            raise PricingUnresolved(
                service_class, duration_months, {"reason": "unknown service class"}
            )
        if not isinstance(duration_months, int) or duration_months not in DURATION_MONTHS:
            raise PricingUnresolved(
                cls, duration_months, {"reason": "duration must be 1-6 months"}
            )

        own = representative.price_cell(cls, duration_months)
        if own is not None and own > 0:
            return ResolvedPrice(unit_price=quantize_money(own), source=PriceSource.REPRESENTATIVE_RATE.value)

        default = self._default_price(cls, duration_months)
        if default is not None and default > 0:
            logger.debug(
                f"{representative.admin_username}: {cls}/{duration_months}m "
                f"falls back to default price {default}"
            )
            return ResolvedPrice(unit_price=quantize_money(default), source=PriceSource.DEFAULT_RATE.value)

        raise PricingUnresolved(
            cls,
            duration_months,
            {"representative_id": str(representative.id), "reason": "no representative or default price"},
        )

    def price_line(
        self,
        representative: Representative,
        service_class,
        duration_months: int,
        quantity,
        unit_price: Optional[Decimal] = None,
        description: Optional[str] = None,
    ) -> PricedLine:
        """
        Build a priced line. An explicit unit_price skips the lookup
        (price_source 'manual').
        """
        cls = self._normalize_class(service_class)
        quantity = quantize_quantity(quantity)
        if quantity <= 0:
            raise InvoiceValidationError(
                "Quantity must be positive", {"service_class": cls, "duration_months": duration_months}
            )

        if unit_price is None:
            resolved = self.resolve_unit_price(representative, cls, duration_months)
            price, source = resolved.unit_price, resolved.source
        else:
            if cls not in SERVICE_CLASS_LABELS or duration_months not in DURATION_MONTHS:
                raise PricingUnresolved(cls, duration_months, {"reason": "invalid line"})
            price, source = quantize_money(unit_price), PriceSource.MANUAL.value

        return PricedLine(
            service_class=cls,
            duration_months=duration_months,
            quantity=quantity,
            unit_price=price,
            line_total=quantize_money(quantity * price),
            description=description or describe_line(cls, duration_months),
            source=source,
        )
