from __future__ import annotations

import math
from typing import Any, Dict, Optional

from .constants import SENSITIVE_KEYS


def scrub_sensitive(value: Any) -> Any:
    if isinstance(value, dict):
        sanitized: Dict[str, Any] = {}
        for key, val in value.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS:
                sanitized[key] = "***"
            else:
                sanitized[key] = scrub_sensitive(val)
        return sanitized
    if isinstance(value, list):
        return [scrub_sensitive(item) for item in value]
    return value


def coerce_text(value: Any) -> str:
    """Render any JSON scalar as stripped text; ``None`` becomes ``""``."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # 42.0 from a loosely typed backend should still read "42"
        return str(int(value))
    return str(value).strip()


def coerce_optional_text(value: Any) -> Optional[str]:
    text = coerce_text(value)
    return text or None


def coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    # "nan" and "inf" parse as floats but are not usable numbers
    return number if math.isfinite(number) else None
