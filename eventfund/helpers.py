import time
import math
from datetime import datetime, timezone, date
import hmac
from typing import Any, Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


# largest id a signed 64-bit primary key can hold
MAX_ROW_ID = 2**63 - 1


def is_row_id(value: int) -> bool:
    return 0 < value <= MAX_ROW_ID


# ----------------------------
# Input validation
# ----------------------------
def is_positive_number(value: Any) -> bool:
    # bool is an int subclass; JSON true must not pass as 1
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value) and value > 0
    except OverflowError:
        # ints beyond float range are not amounts
        return False


def is_non_blank(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def parse_amount(value: Any) -> Optional[float]:
    """Accept a JSON number or a numeric string (form input), else None."""
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not is_positive_number(value):
        return None
    return value


def parse_iso_date(value: Any) -> Optional[date]:
    if not is_non_blank(value):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None
