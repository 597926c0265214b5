"""UTC helpers.

The pipeline works with timezone-aware UTC datetimes; SQLite stores naive
values, so the persistence layer converts at its boundary with ``to_db`` and
``from_db``.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(value)


def parse_timestamp(text: str | None) -> datetime | None:
    """Parse the timestamp formats found in Security log exports.

    Handles ISO-8601 (``2024-05-01T10:00:00.1234567Z`` with 7 fractional
    digits, as wevtutil emits), WMI DMTF (``20240501100000.000000-000``)
    and ``M/D/YYYY h:mm:ss AM`` text renderings. Returns None when nothing
    matches.
    """
    if not text:
        return None
    text = text.strip()

    dmtf = _parse_dmtf(text)
    if dmtf is not None:
        return dmtf

    iso = text.replace("Z", "+00:00")
    # Python accepts at most 6 fractional digits
    if "." in iso:
        head, _, tail = iso.partition(".")
        digits = ""
        rest = tail
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        iso = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else f"{head}{rest}"
    try:
        return ensure_utc(datetime.fromisoformat(iso))
    except ValueError:
        pass

    for fmt in (
        "%m/%d/%Y %I:%M:%S %p",
        "%m/%d/%Y %H:%M:%S",
        "%d/%m/%Y %H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
    ):
        try:
            return ensure_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def _parse_dmtf(text: str) -> datetime | None:
    """WMI CIM_DATETIME: ``yyyymmddHHMMSS.mmmmmmsUUU`` (UUU = UTC offset in minutes)."""
    if len(text) != 25 or text[14] != "." or text[21] not in "+-":
        return None
    try:
        base = datetime.strptime(text[:14], "%Y%m%d%H%M%S")
        micros = int(text[15:21])
        offset = int(text[22:25])
    except ValueError:
        return None
    sign = 1 if text[21] == "+" else -1
    local = base.replace(microsecond=micros)
    return (local - sign * timedelta(minutes=offset)).replace(tzinfo=timezone.utc)
