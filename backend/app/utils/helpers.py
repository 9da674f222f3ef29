"""
Helper utilities for the application.
"""
import math
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping


def to_float(value: Any) -> float:
    """
    Coerce a result cell to float.

    Args:
        value: Cell value (number, Decimal, numeric string, None)

    Returns:
        The float value, 0.0 when missing or unparseable
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        if isinstance(value, Decimal):
            number = float(value)
        else:
            number = float(str(value).replace(",", "").strip())
    except (TypeError, ValueError, InvalidOperation):
        return 0.0
    # NaN marks a missing cell
    return 0.0 if math.isnan(number) else number


def format_currency(value: float) -> str:
    """
    Format a value as whole dollars with thousands separators.

    Args:
        value: Numeric value

    Returns:
        Formatted string (e.g., "$1,250")
    """
    if value < 0:
        return f"-${abs(value):,.0f}"
    return f"${value:,.0f}"


def format_number(value: float) -> str:
    """Grouped number with at most two decimals ("1,234", "0.15")."""
    text = f"{value:,.2f}"
    return text.rstrip("0").rstrip(".")


def title_case(text: str) -> str:
    """Capitalize each word, lower-casing the rest ("new YORK" -> "New York")."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def clean_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Make a result row JSON friendly (Decimal -> float, dates -> ISO strings)."""
    cleaned = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        cleaned[key] = value
    return cleaned
