import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import hmac
from typing import Optional

# fits Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def human_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return (
        datetime.fromtimestamp(ts, tz=timezone.utc)
        .strftime("%Y-%m-%d %H:%M UTC")
    )


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """Form text -> Decimal in major units, None if blank, not a number or
    too large to store."""
    if raw is None:
        return None
    raw = str(raw).strip()
    if not raw:
        return None
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        return None
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        return None
    return amount


def to_minor_units(amount: Decimal) -> int:
    # rupees -> paise
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())
