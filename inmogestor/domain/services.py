from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]

_BASE36 = string.digits + string.ascii_lowercase
_RANDOM_SUFFIX_LEN = 11


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Formato ISO-8601 en UTC con milisegundos y sufijo Z (compatible con JS)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso(clock: Clock = utc_now) -> str:
    return to_iso(clock())


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id(clock: Clock = utc_now) -> str:
    """Timestamp en milisegundos (base 36) + sufijo aleatorio."""
    millis = int(clock().timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(_RANDOM_SUFFIX_LEN))
    return _to_base36(millis) + suffix
