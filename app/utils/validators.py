import re
from typing import Any, Optional

from app.errors import ValidationError

# Simple, pragmatic patterns
_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


def clean_str(val: Optional[str], max_len: int = 255) -> Optional[str]:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]


def is_valid_url(val: Optional[str]) -> bool:
    if not val:
        return True
    return bool(_URL_RE.match(val))


def parse_int(value: Any, field: str, *, required: bool = True, minimum: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)
    if minimum is not None and parsed < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    return parsed
