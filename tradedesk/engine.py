"""TradeDesk — decision engine (scan orchestration).

Runs one strategy across a list of symbols.  Per symbol:

    cache → indicators → strategy → sizing → volatility gate
          → cooldown gate → cooldown record → promotion → cache

A failure on one symbol becomes a no-trade Decision carrying the error;
the rest of the scan continues.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from tradedesk.cache import DecisionCache
from tradedesk.detection.service import DetectionService
from tradedesk.market.instruments import StaticInstrumentProvider
from tradedesk.market.provider import IndicatorProvider
from tradedesk.models.decision import Decision, no_trade
from tradedesk.models.market import IndicatorData
from tradedesk.models.settings import UserSettings
from tradedesk.risk.cooldown import CooldownTracker
from tradedesk.risk.position_sizer import size_position
from tradedesk.risk.volatility_gate import AVERAGE_PERIOD, check_volatility
from tradedesk.scan_lock import ScanLockController
from tradedesk.strategy.base import StrategyProtocol
from tradedesk.strategy.registry import get_strategy

logger = logging.getLogger("tradedesk.engine")


@dataclass(frozen=True)
class ScanOptions:
    force: bool = False
    skip_cache: bool = False
    skip_cooldown: bool = False
    skip_volatility: bool = False
    promote: bool = True


class StyleMismatchError(ValueError):
    """Raised when the requested trading style differs from the strategy's."""

    def __init__(self, strategy_id: str, strategy_style: str, requested: str) -> None:
        self.strategy_id = strategy_id
        super().__init__(
            f"Strategy {strategy_id} trades {strategy_style}, not {requested}"
        )


@dataclass(frozen=True)
class GradeUpgrade:
    """A signal that passed cooldown only because its grade improved."""

    symbol: str
    strategy_id: str
    direction: str
    previous_grade: str
    new_grade: str

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "strategy_id": self.strategy_id,
            "direction": self.direction,
            "previous_grade": self.previous_grade,
            "new_grade": self.new_grade,
        }


@dataclass
class ScanResult:
    strategy_id: str
    display_timezone: str = "UTC"
    decisions: list[Decision] = field(default_factory=list)
    upgrades: list[GradeUpgrade] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    stats: dict[str, int] = field(
        default_factory=lambda: {
            "total": 0, "trades": 0, "no_trades": 0, "blocked": 0, "cache_hits": 0,
        }
    )

    def to_dict(self) -> dict:
        return {
            "strategy_id": self.strategy_id,
            "timezone": self.display_timezone,
            "decisions": [self._decision_dict(d) for d in self.decisions],
            "upgrades": [u.to_dict() for u in self.upgrades],
            "errors": dict(self.errors),
            "stats": dict(self.stats),
        }

    def _decision_dict(self, decision: Decision) -> dict:
        """Decision payload plus its times rendered in the caller's zone."""
        zone = ZoneInfo(self.display_timezone)
        payload = decision.to_dict()
        local = {"timestamp": decision.timestamp.astimezone(zone).isoformat()}
        if decision.validity is not None:
            local["optimal_until"] = decision.validity.optimal_until.astimezone(zone).isoformat()
            local["expires_at"] = decision.validity.expires_at.astimezone(zone).isoformat()
        payload["local_times"] = local
        return payload


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _atr_history(data: IndicatorData, signal_idx: int) -> list[float]:
    """Up to ``AVERAGE_PERIOD`` present ATR readings before the signal bar."""
    atr = data.series.get("atr", [])
    prior = [v for v in atr[:max(signal_idx, 0)] if v is not None]
    return prior[-AVERAGE_PERIOD:]


class DecisionEngine:
    """Evaluates a strategy over symbols with every safety gate applied.

    Args:
        provider: Source of bars and indicator series.
        instruments: Contract facts for sizing.
        cooldowns: Per-key signal dedup.
        cache: Short-lived result memo.
        scan_lock: Per-strategy scan exclusivity.
        detections: Promotion target; ``None`` disables promotion.
        strategy_factory: Resolves a strategy id (registry by default).
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        provider: IndicatorProvider,
        instruments: StaticInstrumentProvider,
        cooldowns: CooldownTracker,
        cache: DecisionCache,
        scan_lock: ScanLockController,
        detections: Optional[DetectionService] = None,
        strategy_factory: Callable[[str], StrategyProtocol] = get_strategy,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._provider = provider
        self._instruments = instruments
        self._cooldowns = cooldowns
        self._cache = cache
        self._scan_lock = scan_lock
        self._detections = detections
        self._strategy_factory = strategy_factory
        self._now = clock or _utc_now

    async def evaluate(
        self,
        symbols: Sequence[str],
        strategy_id: str,
        settings: UserSettings,
        options: Optional[ScanOptions] = None,
    ) -> ScanResult:
        """Scan *symbols* with *strategy_id*.

        Raises:
            KeyError: Unknown strategy.
            StyleMismatchError: *settings* asks for a style the strategy
                does not trade.
            ScanLockError: The strategy is already scanning or the
                concurrency ceiling is reached.
        """
        options = options or ScanOptions()
        strategy = self._strategy_factory(strategy_id)
        if settings.style != strategy.meta.style:
            raise StyleMismatchError(strategy.meta.id, strategy.meta.style, settings.style)
        result = ScanResult(strategy_id=strategy_id, display_timezone=settings.timezone)

        async with self._scan_lock.scan(strategy_id, len(symbols), force=options.force):
            logger.info("Scan started: %s over %d symbol(s)", strategy_id, len(symbols))
            for done, symbol in enumerate(symbols, start=1):
                try:
                    decision, cached = await self._evaluate_symbol(
                        symbol, strategy, settings, options, result
                    )
                except Exception as exc:
                    logger.error("Scan %s failed for %s: %s", strategy_id, symbol, exc)
                    result.errors[symbol] = str(exc)
                    decision, cached = no_trade(
                        symbol, strategy.meta.id, strategy.meta.name,
                        strategy.meta.style, self._now(),
                        "Evaluation failed", error=str(exc),
                    ), False
                self._tally(result, decision, cached)
                result.decisions.append(decision)
                self._scan_lock.update_progress(strategy_id, done)

        logger.info(
            "Scan finished: %s total=%d trades=%d blocked=%d errors=%d",
            strategy_id, result.stats["total"], result.stats["trades"],
            result.stats["blocked"], len(result.errors),
        )
        return result

    @staticmethod
    def _tally(result: ScanResult, decision: Decision, cached: bool) -> None:
        stats = result.stats
        stats["total"] += 1
        if cached:
            stats["cache_hits"] += 1
        if decision.is_actionable:
            stats["trades"] += 1
        else:
            stats["no_trades"] += 1
        if decision.gating.cooldown_blocked or decision.gating.volatility_blocked:
            stats["blocked"] += 1

    async def _evaluate_symbol(
        self,
        symbol: str,
        strategy: StrategyProtocol,
        settings: UserSettings,
        options: ScanOptions,
        result: ScanResult,
    ) -> tuple[Decision, bool]:
        meta = strategy.meta

        if not options.skip_cache:
            cached = self._cache.get(symbol, meta.id)
            if cached is not None:
                if cached.error:
                    result.errors[symbol] = cached.error
                return cached, True

        now = self._now()
        data = await self._provider.get_indicators(symbol, meta.style)
        if data.errors:
            result.errors[symbol] = "; ".join(data.errors)

        missing = [name for name in meta.required_indicators if name not in data.series]
        if missing:
            message = f"Missing indicators: {', '.join(missing)}"
            result.errors[symbol] = message
            decision = no_trade(
                symbol, meta.id, meta.name, meta.style, now, message, error=message
            )
            self._cache.put(decision)
            return decision, False

        decision = strategy.analyze(data, settings, now)
        if decision is None:
            decision = no_trade(
                symbol, meta.id, meta.name, meta.style, now, "No qualifying setup"
            )
            self._cache.put(decision)
            return decision, False

        decision = self._apply_sizing(decision, settings)
        if decision.is_actionable and not options.skip_volatility:
            decision = self._apply_volatility(decision, data)
        if decision.is_actionable and not options.skip_cooldown:
            decision = self._apply_cooldown(decision, result)

        if decision.is_actionable:
            if not options.skip_cooldown:
                self._cooldowns.record(
                    decision.symbol, decision.style, decision.strategy_id,
                    decision.direction, decision.grade,
                    expires_at=decision.validity.expires_at if decision.validity else None,
                )
            if options.promote and self._detections is not None:
                self._promote(decision)

        self._cache.put(decision)
        return decision, False

    def _promote(self, decision: Decision) -> None:
        """Hand a passing Decision to the detection lifecycle.

        The Decision itself is already final; a promotion failure is logged
        and never turns it into a no-trade.
        """
        try:
            self._detections.process_decision(decision)
        except Exception:
            logger.exception(
                "Detection promotion failed for %s %s",
                decision.strategy_id, decision.symbol,
            )

    # ── Gates ────────────────────────────────────────────────────────────

    def _apply_sizing(self, decision: Decision, settings: UserSettings) -> Decision:
        if not decision.is_actionable:
            return decision
        position = size_position(
            decision.entry_price,
            decision.stop_loss,
            settings.account_size,
            settings.risk_percent,
            self._instruments.get_spec(decision.symbol),
        )
        if position is None:
            return decision.suppressed("Position sizing unavailable: unknown instrument")
        if not position.is_valid:
            return replace(decision, position=position).suppressed(
                "Position sizing unavailable: " + "; ".join(position.warnings)
            )
        return replace(decision, position=position)

    def _apply_volatility(self, decision: Decision, data: IndicatorData) -> Decision:
        sig = data.signal_index
        current = data.value("atr", sig)
        if current is None:
            return decision
        check = check_volatility(decision.symbol, current, _atr_history(data, sig))
        if not check.allowed:
            return decision.suppressed(
                check.reason,
                volatility_blocked=True,
                volatility_level=check.level,
                volatility_reason=check.reason,
            )
        return replace(
            decision,
            gating=replace(
                decision.gating,
                volatility_level=check.level,
                volatility_reason=check.reason,
            ),
        )

    def _apply_cooldown(self, decision: Decision, result: ScanResult) -> Decision:
        check = self._cooldowns.check(
            decision.symbol, decision.style, decision.strategy_id,
            decision.direction, decision.grade,
        )
        if not check.allowed:
            logger.warning(
                "Signal blocked %s %s: %s", decision.strategy_id, decision.symbol, check.reason
            )
            return decision.suppressed(
                check.reason, cooldown_blocked=True, cooldown_reason=check.reason
            )
        existing = check.existing
        if (
            existing is not None
            and existing.direction == decision.direction
            and existing.grade != decision.grade
        ):
            result.upgrades.append(
                GradeUpgrade(
                    symbol=decision.symbol,
                    strategy_id=decision.strategy_id,
                    direction=decision.direction,
                    previous_grade=existing.grade,
                    new_grade=decision.grade,
                )
            )
        return decision
