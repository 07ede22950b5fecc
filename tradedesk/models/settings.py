"""User settings supplied per request — validated at the boundary."""

from __future__ import annotations

from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MIN_ACCOUNT_SIZE = 100.0
MAX_ACCOUNT_SIZE = 1_000_000.0
MIN_RISK_PERCENT = 0.1
MAX_RISK_PERCENT = 5.0
STYLES = ("intraday", "swing")


@dataclass(frozen=True)
class UserSettings:
    """Account and trading preferences for one evaluation request.

    Raises ``ValueError`` on construction when any value is out of range;
    values are never clamped or coerced.
    """

    account_size: float
    risk_percent: float
    style: str = "intraday"
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if not MIN_ACCOUNT_SIZE <= self.account_size <= MAX_ACCOUNT_SIZE:
            raise ValueError(
                f"account_size must be between {MIN_ACCOUNT_SIZE:,.0f} and "
                f"{MAX_ACCOUNT_SIZE:,.0f}, got {self.account_size}"
            )
        if not MIN_RISK_PERCENT <= self.risk_percent <= MAX_RISK_PERCENT:
            raise ValueError(
                f"risk_percent must be between {MIN_RISK_PERCENT} and "
                f"{MAX_RISK_PERCENT}, got {self.risk_percent}"
            )
        if self.style not in STYLES:
            raise ValueError(
                f"style must be one of {', '.join(STYLES)}, got {self.style!r}"
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone {self.timezone!r}") from None
