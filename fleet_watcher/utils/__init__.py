import datetime
import re
from typing import Optional, Union


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def parse_timestamp(value: Union[str, datetime.datetime, None]) -> Optional[datetime.datetime]:
    """
    Parse a Kubernetes RFC3339 timestamp ('2025-01-01T10:00:00Z') into an aware datetime.
    Returns None for empty or unparsable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.datetime.fromisoformat(s)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def format_age(created: Optional[datetime.datetime], now: Optional[datetime.datetime] = None) -> str:
    """Format the age of a resource the way kubectl does: 42m, 5h, 3d."""
    if created is None:
        return ""
    now = now or utcnow()
    age = now - created
    if age < datetime.timedelta(hours=1):
        return f"{max(int(age.total_seconds() // 60), 0)}m"
    if age < datetime.timedelta(hours=24):
        return f"{int(age.total_seconds() // 3600)}h"
    return f"{int(age.total_seconds() // 86400)}d"


def parse_memory(mem_str: str) -> int:
    """
    Parse Kubernetes memory strings into integer bytes.
    Handles binary (Ki,Mi,Gi...) and SI (K,M,G...) and plain numbers (bytes).
    Examples:
    '4745676Ki' -> 4745676 * 1024 bytes
    '128Mi'     -> 134217728
    '512M'      -> 512_000_000
    '1024'      -> 1024
    """
    _mem_power2 = {
        "Ki": 1024,
        "Mi": 1024**2,
        "Gi": 1024**3,
        "Ti": 1024**4,
        "Pi": 1024**5,
        "Ei": 1024**6,
    }
    _mem_power10 = {
        "k": 1000,
        "K": 1000,
        "M": 1000**2,
        "G": 1000**3,
        "T": 1000**4,
        "P": 1000**5,
        "E": 1000**6,
    }

    if mem_str is None:
        return 0
    s = str(mem_str).strip()
    if re.fullmatch(r"^\d+(\.\d+)?$", s):
        return int(float(s))
    m = re.fullmatch(r"^([0-9.]+)\s*([a-zA-Z]+)$", s)
    if not m:
        raise ValueError(f"Unable to parse memory string: {s}")
    val = float(m.group(1))
    unit = m.group(2)
    if unit in _mem_power2:
        return int(val * _mem_power2[unit])
    if unit in _mem_power10:
        return int(val * _mem_power10[unit])
    raise ValueError(f"Unknown memory unit: {unit}")
