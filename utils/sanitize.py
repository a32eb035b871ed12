import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from utils.errors import BadRequest

MAX_COST_CENTS = 2_147_483_647
MIN_VEHICLE_YEAR = 1886
_COST_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")
_USERNAME_PATTERN = re.compile(r"^[a-z0-9_]{3,30}$")


def optional_text(value, label: str = "Value", max_length: Optional[int] = None) -> Optional[str]:
    """
    Strip a free-text field. Empty strings become None.
    Raises BadRequest when the value is longer than `max_length`.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise BadRequest(f"{label} must be {max_length} characters or fewer.")
    return text


def required_text(value, label: str, max_length: Optional[int] = None) -> str:
    text = optional_text(value, label, max_length)
    if text is None:
        raise BadRequest(f"{label} is required.")
    return text


def optional_int(value, label: str) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise BadRequest(f"Invalid {label}.")
    try:
        return int(str(value).strip())
    except ValueError:
        raise BadRequest(f"Invalid {label}.")


def vehicle_year(value) -> Optional[int]:
    year = optional_int(value, "year")
    if year is None:
        return None
    max_year = datetime.now(timezone.utc).year + 1
    if year < MIN_VEHICLE_YEAR or year > max_year:
        raise BadRequest(f"Year must be between {MIN_VEHICLE_YEAR} and {max_year}.")
    return year


def cost_cents(value) -> Optional[int]:
    """'$1,249.99' -> 124999. Exact decimal arithmetic, never floats."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        text = str(value)
    else:
        text = re.sub(r"[$,\s]", "", str(value))
    if not text:
        return None
    if not _COST_PATTERN.match(text):
        raise BadRequest("Cost must be a valid amount, like 249.99.")
    cents = int(Decimal(text) * 100)
    if cents > MAX_COST_CENTS:
        raise BadRequest("Cost is too large.")
    return cents


def optional_date(value) -> Optional[date]:
    text = optional_text(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise BadRequest("Invalid installation date.")


def normalize_username(value) -> Optional[str]:
    text = (value or "").strip().lower() if isinstance(value, str) else ""
    return text or None


def is_valid_username(username: str) -> bool:
    return bool(_USERNAME_PATTERN.match(username or ""))


def safe_next_path(value, fallback: str = "/dashboard") -> str:
    """Relative in-site redirect target; anything that could leave the site yields `fallback`."""
    text = value.strip() if isinstance(value, str) else ""
    if not text or not text.startswith("/") or text.startswith("//"):
        return fallback
    if "\\" in text or "://" in text:
        return fallback
    if re.search(r"[\x00-\x1f\x7f]", text):
        return fallback
    if re.match(r"^[a-z][a-z0-9+.-]*:", text[1:], re.IGNORECASE):
        return fallback
    return text
