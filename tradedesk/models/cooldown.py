"""Cooldown entry model."""

from dataclasses import dataclass
from datetime import datetime


def cooldown_key(symbol: str, style: str, strategy_id: str) -> str:
    """Composite key; always includes the strategy so strategies never collide."""
    return f"{symbol}:{style}:{strategy_id}"


@dataclass(frozen=True)
class CooldownEntry:
    """The last signal emitted for one symbol/style/strategy."""

    symbol: str
    style: str
    strategy_id: str
    direction: str
    grade: str
    created_at: datetime
    expires_at: datetime

    @property
    def key(self) -> str:
        return cooldown_key(self.symbol, self.style, self.strategy_id)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "symbol": self.symbol,
            "style": self.style,
            "strategy_id": self.strategy_id,
            "direction": self.direction,
            "grade": self.grade,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
