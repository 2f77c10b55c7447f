"""Unit tests for invoice money and tax calculation."""
import random
from decimal import ROUND_HALF_UP, Decimal

import pytest

from invoicing.services.calculator import (
    calculate_invoice_totals,
    calculate_item_total,
    calculate_tax_amount,
)
from invoicing.utils.currency import format_money, from_minor_units, to_minor_units

CENT = Decimal("0.01")


def _reference_item_total(quantity: int, unit_price: Decimal, tax_rate: Decimal | None) -> Decimal:
    subtotal = (unit_price * quantity).quantize(CENT, rounding=ROUND_HALF_UP)
    tax = Decimal("0.00")
    if tax_rate:
        tax = (subtotal * tax_rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return subtotal + tax


def _random_item(rng: random.Random) -> dict:
    tax_rate = rng.choice([None, Decimal("0"), Decimal(rng.randint(1, 2500)) / 100])
    return {
        "quantity": rng.randint(0, 50),
        "unit_price": Decimal(rng.randint(0, 1_000_000)) / 100,
        "tax_rate": tax_rate,
    }


def test_scenario_single_taxed_item() -> None:
    """Test that 2 x 10.00 at 10% gives 20.00 + 2.00 = 22.00."""
    totals = calculate_invoice_totals([{"quantity": 2, "unit_price": Decimal("10.00"), "tax_rate": Decimal("10")}])

    assert totals.sub_total == Decimal("20.00")
    assert totals.tax_amount == Decimal("2.00")
    assert totals.total == Decimal("22.00")


def test_fractional_tax_rounds_half_up_per_item() -> None:
    """Test that 33.33 at 7.25% rounds tax 2.416425 up to 2.42."""
    item = calculate_item_total(1, Decimal("33.33"), Decimal("7.25"))

    assert item.subtotal == Decimal("33.33")
    assert item.tax_amount == Decimal("2.42")
    assert item.total == Decimal("35.75")


def test_float_inputs_do_not_drift() -> None:
    """Test that float prices are read through their decimal representation."""
    item = calculate_item_total(3, 0.1, 7.25)

    assert item.subtotal == Decimal("0.30")
    assert item.tax_amount == Decimal("0.02")
    assert item.total == Decimal("0.32")
    assert calculate_item_total(1, 33.33, 7.25).total == Decimal("35.75")


def test_randomized_totals_equal_sum_of_item_totals() -> None:
    """Test 200 random item sets: invoice total is the exact sum of per-item totals."""
    rng = random.Random(20240131)

    for _ in range(200):
        items = [_random_item(rng) for _ in range(rng.randint(1, 8))]
        items.append({"quantity": 1, "unit_price": Decimal("33.33"), "tax_rate": Decimal("7.25")})

        totals = calculate_invoice_totals(items)

        expected = sum(
            (_reference_item_total(i["quantity"], i["unit_price"], i["tax_rate"]) for i in items),
            Decimal("0.00"),
        )
        assert totals.total == expected
        assert totals.total == sum((t.total for t in totals.items), Decimal("0.00"))
        assert totals.total == totals.sub_total + totals.tax_amount
        assert totals.total.as_tuple().exponent == -2


@pytest.mark.parametrize("tax_rate", [None, 0, Decimal("0"), Decimal("0.00"), "0"])
def test_missing_or_zero_tax_rate_adds_no_tax(tax_rate) -> None:
    """Test that an omitted or zero tax rate contributes exactly zero tax."""
    for quantity, price in [(1, Decimal("0.01")), (7, Decimal("19.99")), (1000, Decimal("99999.99"))]:
        item = calculate_item_total(quantity, price, tax_rate)

        assert item.tax_amount == Decimal("0.00")
        assert item.total == item.subtotal


def test_tax_amount_of_zero_amount_is_zero() -> None:
    """Test that taxing nothing yields nothing."""
    assert calculate_tax_amount(Decimal("0"), Decimal("20")) == Decimal("0.00")


def test_empty_invoice_totals() -> None:
    """Test that an invoice without items totals zero."""
    totals = calculate_invoice_totals([])

    assert totals.sub_total == Decimal("0.00")
    assert totals.tax_amount == Decimal("0.00")
    assert totals.total == Decimal("0.00")
    assert totals.items == ()


def test_items_may_be_objects() -> None:
    """Test that items exposing attributes (pydantic models, ORM rows) are accepted."""

    class Item:
        quantity = 4
        unit_price = Decimal("2.50")
        tax_rate = Decimal("5")

    totals = calculate_invoice_totals([Item()])

    assert totals.sub_total == Decimal("10.00")
    assert totals.tax_amount == Decimal("0.50")
    assert totals.total == Decimal("10.50")


def test_minor_unit_conversion() -> None:
    """Test conversion to and from Stripe minor units."""
    assert to_minor_units(Decimal("100.00"), "USD") == 10000
    assert to_minor_units(Decimal("35.75"), "usd") == 3575
    assert to_minor_units(Decimal("1000"), "JPY") == 1000
    assert from_minor_units(2500, "USD") == Decimal("25.00")
    assert from_minor_units(1000, "JPY") == Decimal("1000.00")


def test_format_money() -> None:
    """Test display formatting."""
    assert format_money(Decimal("1234.5"), "USD") == "$1,234.50"
