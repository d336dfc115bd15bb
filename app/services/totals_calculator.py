# File: app/services/totals_calculator.py
"""
Sale totals calculation.

Totals are always derived from raw line-item quantities and prices plus the
optional promo code; totals supplied by a client are never trusted.

For every line ``total = quantity * unit_price - discount``. For a sale:

    subtotal       = sum(line.total)
    tax_total      = sum(line.tax)
    discount_total = sum(line.discount) + promo discount
    total          = subtotal + tax_total - discount_total

Return sales negate quantity, tax and discount (taking magnitudes first), so
applying the calculator to already-negated stored lines reproduces the same
values.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from app.core.exceptions import ValidationException
from app.db.models.enums import SaleType, PromoType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[int, float, str, Decimal]


def to_money(value: Optional[Number]) -> Decimal:
    """Convert a number to a Decimal rounded to cents (half up)."""
    if value is None:
        return ZERO
    try:
        # str() keeps floats such as 0.1 from dragging binary noise along
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as e:
        raise ValidationException(f"Invalid monetary amount: {value!r}") from e


def to_minor_units(amount: Number) -> int:
    """Amount in cents, as payment gateways expect it."""
    return int((to_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_money(amount: Number, symbol: str = "$") -> str:
    """Display string; negative amounts show the magnitude with a "-" affix."""
    value = to_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


@dataclass
class CalculatedLineItem:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "discount": self.discount,
            "tax": self.tax,
            "total": self.total,
        }


@dataclass
class SaleTotals:
    line_items: List[CalculatedLineItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    tax_total: Decimal = ZERO
    discount_total: Decimal = ZERO
    total: Decimal = ZERO
    promo_discount: Decimal = ZERO

    def as_columns(self) -> Dict[str, Decimal]:
        """Values for the Sale money columns."""
        return {
            "subtotal": self.subtotal,
            "tax_total": self.tax_total,
            "discount_total": self.discount_total,
            "total": self.total,
        }


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _calculate_line(item: Any, index: int, is_return: bool) -> CalculatedLineItem:
    errors: Dict[str, List[str]] = {}

    product_id = _field(item, "product_id")
    product_name = _field(item, "product_name")
    if product_id in (None, ""):
        errors.setdefault(f"line_items[{index}].product_id", []).append("Product ID is required")
    if not product_name:
        errors.setdefault(f"line_items[{index}].product_name", []).append("Product name is required")

    raw_quantity = _field(item, "quantity")
    try:
        quantity = int(raw_quantity)
        if Decimal(str(raw_quantity)) != quantity:
            raise ValueError(raw_quantity)
    except (TypeError, ValueError, InvalidOperation):
        errors.setdefault(f"line_items[{index}].quantity", []).append("Quantity must be a whole number")
        quantity = 0

    unit_price = to_money(_field(item, "unit_price"))
    discount = to_money(_field(item, "discount"))
    tax = to_money(_field(item, "tax"))

    if is_return:
        if quantity == 0 and not errors:
            errors.setdefault(f"line_items[{index}].quantity", []).append("Quantity must not be zero")
        # Magnitudes first so already-negated stored lines map onto themselves
        quantity = -abs(quantity)
        discount = -abs(discount)
        tax = -abs(tax)
        unit_price = abs(unit_price)
    else:
        if quantity < 1 and f"line_items[{index}].quantity" not in errors:
            errors.setdefault(f"line_items[{index}].quantity", []).append("Quantity must be at least 1")
        if unit_price < 0:
            errors.setdefault(f"line_items[{index}].unit_price", []).append("Unit price cannot be negative")
        if discount < 0:
            errors.setdefault(f"line_items[{index}].discount", []).append("Discount cannot be negative")
        if tax < 0:
            errors.setdefault(f"line_items[{index}].tax", []).append("Tax cannot be negative")

    if errors:
        raise ValidationException("Invalid line item", errors)

    total = to_money(quantity * unit_price - discount)
    return CalculatedLineItem(
        product_id=str(product_id),
        product_name=product_name,
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        tax=tax,
        total=total,
    )


def promo_discount_amount(subtotal: Decimal, promo_code: Optional[Any]) -> Decimal:
    """
    Extra discount produced by a promo code.

    Percentage promos take ``discount`` percent of the subtotal; fixed promos
    take ``discount`` as a flat amount.
    """
    if not promo_code:
        return ZERO

    discount = to_money(_field(promo_code, "discount"))
    promo_type = _field(promo_code, "type") or PromoType.FIXED
    promo_type = PromoType(promo_type)

    if discount < 0:
        raise ValidationException("Promo discount cannot be negative")

    if promo_type == PromoType.PERCENTAGE:
        if discount > 100:
            raise ValidationException("Percentage promo discount cannot exceed 100")
        return to_money(subtotal * discount / Decimal(100))
    return discount


def calculate_totals(
    line_items: Iterable[Any],
    sale_type: Union[SaleType, str] = SaleType.PURCHASE,
    promo_code: Optional[Any] = None,
) -> SaleTotals:
    """
    Calculate line and sale totals.

    Args:
        line_items: Dicts or objects with product_id, product_name, quantity,
            unit_price and optional discount and tax
        sale_type: Sale type; returns negate quantity, tax and discount
        promo_code: Optional ``{code, discount, type}`` dict or object

    Returns:
        SaleTotals with the normalized line items and money totals

    Raises:
        ValidationException: If a line item or the promo code is invalid
    """
    is_return = SaleType(sale_type) == SaleType.RETURN
    lines = [_calculate_line(item, i, is_return) for i, item in enumerate(line_items)]

    subtotal = to_money(sum((line.total for line in lines), ZERO))
    tax_total = to_money(sum((line.tax for line in lines), ZERO))
    discount_total = to_money(sum((line.discount for line in lines), ZERO))

    promo_discount = promo_discount_amount(subtotal, promo_code)
    discount_total = to_money(discount_total + promo_discount)

    return SaleTotals(
        line_items=lines,
        subtotal=subtotal,
        tax_total=tax_total,
        discount_total=discount_total,
        total=to_money(subtotal + tax_total - discount_total),
        promo_discount=promo_discount,
    )


def recalculate(sale: Any) -> SaleTotals:
    """Re-apply the calculator to a persisted sale's stored line items and promo."""
    return calculate_totals(sale.line_items, sale.type, sale.promo)
