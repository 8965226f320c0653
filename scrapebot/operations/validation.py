"""Argument checks shared by the operations.

All of these raise ``ValidationError`` before any I/O happens.
"""

from __future__ import annotations

import numbers
from typing import Any, Iterable, Optional

from scrapebot.domain.exceptions import ValidationError


def _is_integral(value: Any) -> bool:
    # bool is an int subclass; True as an identifier is always a mistake.
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Integral):
        return True
    return isinstance(value, numbers.Real) and float(value).is_integer()


def as_id(value: Any, name: str) -> int:
    """Return ``value`` as an int identifier.

    Raises:
        ValidationError: Not an integer (floats with a fractional part, bools,
            strings and None are all rejected).
    """
    if not _is_integral(value):
        raise ValidationError(f"{name} needs to be an integer identifier.")
    return int(value)


def as_id_list(value: Any, name: str) -> Optional[list[int]]:
    """Normalise an optional filter to a list of unique ints, preserving order.

    ``None`` means "no constraint" and is returned unchanged. A scalar becomes
    a one-element list.

    Raises:
        ValidationError: Any element is not an integer, or the value is a
            string/mapping rather than a scalar or iterable of ids.
    """
    if value is None:
        return None
    if _is_integral(value):
        return [int(value)]
    if isinstance(value, (str, bytes, dict)) or not isinstance(value, Iterable):
        raise ValidationError(f"{name} needs to be an integer identifier or a collection of them.")

    ids: list[int] = []
    seen: set[int] = set()
    for item in value:
        if not _is_integral(item):
            raise ValidationError(f"{name} needs to be an integer identifier or a collection of them.")
        if int(item) not in seen:
            seen.add(int(item))
            ids.append(int(item))
    return ids


def require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} needs to be a non-empty character string.")
    return value


def require_flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} needs to be either True or False.")
    return value
