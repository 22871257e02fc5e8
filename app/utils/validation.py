"""
Coercion of caller-supplied values into the types the ledger stores.
"""
from typing import Any, Optional

from .exceptions import ValidationError


def parse_int(value: Any, field: str, minimum: Optional[int] = None) -> int:
    """
    Coerce an id or count from JSON/CLI input to int.

    Accepts ints, integral floats and digit strings. Booleans, lists, dicts
    and anything else raise ValidationError naming the field.
    """
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer', field)
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f'{field} must be an integer', field)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field)

    if minimum is not None and parsed < minimum:
        raise ValidationError(f'{field} must be at least {minimum}', field)
    return parsed
