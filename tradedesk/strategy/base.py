"""Strategy protocol and metadata.

Defines the interface that all strategies must implement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from tradedesk.models.decision import Decision
from tradedesk.models.market import IndicatorData
from tradedesk.models.settings import UserSettings


@dataclass(frozen=True)
class StrategyMeta:
    """Static description of a strategy.

    ``required_indicators`` names entry-timeframe series; the engine
    reports a missing one as an error before calling ``analyze``.
    """

    id: str
    name: str
    description: str
    style: str
    trend_timeframe: str
    entry_timeframe: str
    archetype: str
    required_indicators: tuple[str, ...]
    min_bars: int
    version: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "style": self.style,
            "timeframes": {
                "trend": self.trend_timeframe,
                "entry": self.entry_timeframe,
            },
            "archetype": self.archetype,
            "required_indicators": list(self.required_indicators),
            "min_bars": self.min_bars,
            "version": self.version,
        }


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all trading strategies must satisfy."""

    meta: StrategyMeta

    def analyze(
        self,
        data: IndicatorData,
        settings: UserSettings,
        now: Optional[datetime] = None,
    ) -> Optional[Decision]:
        """Evaluate the signal bar and return a candidate Decision or None.

        Must be free of side effects.
        """
        ...
