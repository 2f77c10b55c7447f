"""Currency helpers for exact decimal money handling."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# ISO 4217 currency codes accepted on invoices and schedules
supported_currencies = [
    "USD",
    "EUR",
    "GBP",
    "CAD",
    "AUD",
    "NZD",
    "JPY",
    "CHF",
    "SEK",
    "NOK",
    "DKK",
    "SGD",
    "HKD",
    "MXN",
    "BRL",
    "INR",
    "ZAR",
    "PLN",
]

# Currencies whose smallest unit is the whole currency (no cents)
zero_decimal_currencies = ["JPY", "KRW", "VND", "CLP", "ISK"]

currency_symbols = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "CAD": "CA$",
    "AUD": "A$",
    "NZD": "NZ$",
    "CHF": "CHF",
    "SEK": "kr",
    "NOK": "kr",
    "DKK": "kr",
    "BRL": "R$",
    "MXN": "MX$",
    "SGD": "S$",
    "HKD": "HK$",
    "ZAR": "R",
    "PLN": "zł",
}

CENT = Decimal("0.01")

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    """
    Coerce a numeric value to Decimal without binary floating point artifacts.

    Floats are converted through their shortest string representation, so 33.33 becomes
    Decimal("33.33") rather than Decimal(33.329999...).
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    """Round a money value to two decimal places (half up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_currency(currency: str) -> bool:
    """
    Validate if a currency code is supported.

    Example:
        >>> validate_currency("usd")
        True
        >>> validate_currency("XYZ")
        False
    """
    if not currency:
        return False

    return currency.upper() in supported_currencies


def to_minor_units(amount: Number, currency: str) -> int:
    """
    Convert a major-unit amount to the provider's smallest unit.

    Args:
        amount: Amount in major units (e.g. Decimal("50.00") dollars)
        currency: ISO 4217 currency code

    Returns:
        Integer amount in cents (or whole units for zero-decimal currencies)

    Examples:
        >>> to_minor_units(Decimal("50.00"), "USD")
        5000
        >>> to_minor_units(Decimal("1000"), "JPY")
        1000
    """
    value = to_decimal(amount)
    if currency.upper() in zero_decimal_currencies:
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    """
    Convert an amount in the provider's smallest unit back to major units.

    Examples:
        >>> from_minor_units(10000, "USD")
        Decimal('100.00')
        >>> from_minor_units(1000, "JPY")
        Decimal('1000.00')
    """
    value = Decimal(int(amount or 0))
    if currency.upper() in zero_decimal_currencies:
        return quantize_money(value)
    return quantize_money(value / 100)


def format_money(amount: Number, currency: str) -> str:
    """
    Format a major-unit amount for display.

    Examples:
        >>> format_money(Decimal("1234.5"), "USD")
        '$1,234.50'
        >>> format_money(Decimal("1000"), "JPY")
        '¥1,000'
    """
    currency_upper = (currency or "USD").upper()
    symbol = currency_symbols.get(currency_upper, currency_upper + " ")
    value = to_decimal(amount)
    if currency_upper in zero_decimal_currencies:
        return f"{symbol}{int(value):,}"
    return f"{symbol}{quantize_money(value):,.2f}"
