from datetime import datetime, timezone
from zoneinfo import ZoneInfo

# Fixed-width so stored timestamps sort lexicographically in range queries
STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return to_storage(utc_now())


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> str:
    return ensure_aware(value).strftime(STORAGE_FORMAT)


def format_for_display(value: datetime, tz_name: str = "UTC") -> str:
    local = ensure_aware(value).astimezone(ZoneInfo(tz_name))
    return local.strftime("%A, %B %d, %Y at %I:%M %p %Z")
