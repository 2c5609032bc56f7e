from datetime import datetime, timezone
from typing import Any, Optional


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database columns are stored"""
    return datetime.utcnow()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse provider timestamps into naive UTC datetimes.
    Accepts ISO-8601 strings and epoch seconds or milliseconds (as numbers or
    digit strings). Returns None for anything unparseable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())

    if isinstance(value, (int, float)):
        seconds = float(value)
        # 13-digit values are milliseconds
        if seconds > 1e11:
            seconds = seconds / 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    return None


def get_all_keys(d, parent_key=''):
    keys = []
    if isinstance(d, dict):
        for k, v in d.items():
            full_key = f"{parent_key}.{k}" if parent_key else k
            keys.append(full_key)
            keys.extend(get_all_keys(v, full_key))
    elif isinstance(d, list):
        for i, item in enumerate(d):
            full_key = f"{parent_key}[{i}]"
            keys.extend(get_all_keys(item, full_key))
    return keys
