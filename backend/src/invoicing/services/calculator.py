"""Invoice money and tax calculation.

All arithmetic is done in Decimal. Each line item's subtotal and tax are rounded to
cents on their own, and invoice totals are the plain sum of those rounded values.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from invoicing.utils.currency import Number, quantize_money, to_decimal

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ItemTotals:
    """Computed amounts for one line item."""

    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    """Computed amounts for a whole invoice."""

    sub_total: Decimal
    tax_amount: Decimal
    total: Decimal
    items: tuple[ItemTotals, ...]


def calculate_tax_amount(amount: Number, tax_rate: Optional[Number]) -> Decimal:
    """
    Calculate tax on an amount.

    Args:
        amount: Taxable amount in major units
        tax_rate: Percentage (7.25 means 7.25%); None or zero means untaxed

    Returns:
        Tax rounded to cents
    """
    if tax_rate is None:
        return ZERO
    rate = to_decimal(tax_rate)
    if rate == 0:
        return ZERO
    return quantize_money(to_decimal(amount) * rate / HUNDRED)


def calculate_item_total(quantity: int, unit_price: Number, tax_rate: Optional[Number] = None) -> ItemTotals:
    """
    Calculate subtotal, tax and total for a single line item.

    Args:
        quantity: Number of units
        unit_price: Price per unit in major units
        tax_rate: Optional tax percentage

    Returns:
        ItemTotals with each component rounded to cents
    """
    subtotal = quantize_money(to_decimal(unit_price) * int(quantity))
    tax_amount = calculate_tax_amount(subtotal, tax_rate)
    return ItemTotals(subtotal=subtotal, tax_amount=tax_amount, total=subtotal + tax_amount)


def _item_field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def calculate_invoice_totals(items: Iterable[Any]) -> InvoiceTotals:
    """
    Calculate invoice totals from line items.

    Items may be mappings or objects exposing quantity, unit_price and tax_rate.

    Returns:
        InvoiceTotals whose sub_total and tax_amount are sums of the per-item values
    """
    item_totals = tuple(
        calculate_item_total(
            quantity=_item_field(item, "quantity", 1),
            unit_price=_item_field(item, "unit_price", ZERO),
            tax_rate=_item_field(item, "tax_rate"),
        )
        for item in items
    )
    sub_total = sum((t.subtotal for t in item_totals), ZERO)
    tax_amount = sum((t.tax_amount for t in item_totals), ZERO)
    return InvoiceTotals(
        sub_total=sub_total,
        tax_amount=tax_amount,
        total=sub_total + tax_amount,
        items=item_totals,
    )
