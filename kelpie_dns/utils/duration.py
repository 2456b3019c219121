"""
Duration parsing for Kelpie-DNS.
"""

import re
from typing import Union

from kelpie_dns.exceptions import ConfigError

DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h|d)?$")
UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 60 * 60, "d": 60 * 60 * 24}


def parse_duration(duration: Union[str, int, float, None], default: float = 60) -> float:
    """
    Parse a duration like '15m', '30s' or a plain number of seconds.

    Args:
        duration: Duration string or number of seconds
        default: Value used when duration is empty

    Returns:
        float: Duration in seconds

    Raises:
        ConfigError: If the duration cannot be parsed
    """
    if duration is None or duration == "":
        return float(default)
    if isinstance(duration, (int, float)):
        return float(duration)

    match = DURATION_PATTERN.match(duration.strip())
    if not match:
        raise ConfigError(f"Invalid duration '{duration}', expected e.g. 30s, 5m or 1h")

    value, unit = match.groups()
    return float(value) * UNIT_SECONDS[unit or "s"]
