"""Tests for the decision engine — full per-symbol pipeline with fakes."""

from datetime import timedelta

import pytest

from scenarios import NOW, FakeProvider, rsi_bounce_data
from tradedesk.cache import DecisionCache
from tradedesk.detection.memory_store import InMemoryDetectionStore
from tradedesk.config import load_config
from tradedesk.detection.service import DetectionService
from tradedesk.engine import DecisionEngine, ScanOptions, StyleMismatchError
from tradedesk.market.instruments import StaticInstrumentProvider
from tradedesk.models.settings import UserSettings
from tradedesk.repos.detection_repo import SqliteDetectionStore
from tradedesk.risk.cooldown import CooldownTracker
from tradedesk.scan_lock import ScanInProgressError, ScanLockController
from tradedesk.services import build_services

SETTINGS = UserSettings(account_size=10_000, risk_percent=0.5)


def _clock():
    return NOW


class _MovingClock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _make_engine(data: dict, failures: dict | None = None) -> DecisionEngine:
    cooldowns = CooldownTracker(clock=_clock)
    cooldowns.init()
    return DecisionEngine(
        provider=FakeProvider(data, failures),
        instruments=StaticInstrumentProvider(),
        cooldowns=cooldowns,
        cache=DecisionCache(clock=_clock),
        scan_lock=ScanLockController(clock=_clock),
        detections=DetectionService(InMemoryDetectionStore(), clock=_clock),
        clock=_clock,
    )


class TestEngineHappyPath:
    @pytest.mark.asyncio
    async def test_signal_is_sized_recorded_and_promoted(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)

        decision = result.decisions[0]
        assert decision.direction == "long"
        assert decision.grade == "A+"
        assert decision.position.lots == pytest.approx(0.40)
        assert decision.gating.volatility_level == "normal"
        assert result.stats == {
            "total": 1, "trades": 1, "no_trades": 0, "blocked": 0, "cache_hits": 0,
        }

        entry = engine._cooldowns.get("EURUSD", "intraday", "rsi-bounce")
        assert entry.grade == "A+"
        assert entry.expires_at == decision.validity.expires_at

        detection = engine._detections.find_active("rsi-bounce", "EURUSD", "long")
        assert detection is not None
        assert detection.status == "cooling_down"

    @pytest.mark.asyncio
    async def test_rerun_served_from_cache(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert result.stats["cache_hits"] == 1
        assert result.decisions[0].direction == "long"
        assert len(engine._provider.calls) == 1

    @pytest.mark.asyncio
    async def test_rerun_without_cache_hits_cooldown(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        result = await engine.evaluate(
            ["EURUSD"], "rsi-bounce", SETTINGS, ScanOptions(skip_cache=True)
        )
        decision = result.decisions[0]
        assert decision.direction == "none"
        assert decision.grade == "no-trade"
        assert decision.gating.cooldown_blocked
        assert decision.gating.cooldown_reason.startswith("Cooldown active")
        # Levels are kept for display.
        assert decision.entry_price == pytest.approx(1.0850)
        assert result.stats["blocked"] == 1

    @pytest.mark.asyncio
    async def test_skip_cooldown_neither_checks_nor_records(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        options = ScanOptions(skip_cache=True, skip_cooldown=True)
        await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS, options)
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS, options)
        assert result.decisions[0].direction == "long"
        assert engine._cooldowns.active_entries() == []

    @pytest.mark.asyncio
    async def test_grade_upgrade_reported(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        engine._cooldowns.record("EURUSD", "intraday", "rsi-bounce", "long", "B")
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert result.decisions[0].direction == "long"
        assert len(result.upgrades) == 1
        upgrade = result.upgrades[0]
        assert (upgrade.previous_grade, upgrade.new_grade) == ("B", "A+")

    @pytest.mark.asyncio
    async def test_promotion_can_be_disabled(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        await engine.evaluate(
            ["EURUSD"], "rsi-bounce", SETTINGS, ScanOptions(promote=False)
        )
        assert engine._detections.summary()["total"] == 0


class TestEngineGates:
    @pytest.mark.asyncio
    async def test_extreme_volatility_blocks_without_cooldown(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data(atr_history=0.0003)})
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        decision = result.decisions[0]
        assert decision.direction == "none"
        assert decision.gating.volatility_blocked
        assert decision.gating.volatility_level == "extreme"
        assert engine._cooldowns.active_entries() == []
        assert engine._detections.summary()["total"] == 0

    @pytest.mark.asyncio
    async def test_skip_volatility(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data(atr_history=0.0003)})
        result = await engine.evaluate(
            ["EURUSD"], "rsi-bounce", SETTINGS, ScanOptions(skip_volatility=True)
        )
        assert result.decisions[0].direction == "long"

    @pytest.mark.asyncio
    async def test_unknown_instrument_is_not_sized(self):
        engine = _make_engine({"FOOBAR": rsi_bounce_data(symbol="FOOBAR")})
        result = await engine.evaluate(["FOOBAR"], "rsi-bounce", SETTINGS)
        decision = result.decisions[0]
        assert decision.direction == "none"
        assert "Position sizing unavailable" in decision.reasons[-1]
        assert engine._cooldowns.active_entries() == []

    @pytest.mark.asyncio
    async def test_missing_indicator_reported(self):
        data = rsi_bounce_data()
        del data.series["bb_lower"]
        engine = _make_engine({"EURUSD": data})
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert result.decisions[0].direction == "none"
        assert "bb_lower" in result.errors["EURUSD"]


class TestEngineFailures:
    @pytest.mark.asyncio
    async def test_one_symbol_failing_does_not_abort_scan(self):
        engine = _make_engine(
            {"EURUSD": rsi_bounce_data(), "GBPUSD": rsi_bounce_data(symbol="GBPUSD")},
            failures={"EURUSD": RuntimeError("candle fetch timed out")},
        )
        result = await engine.evaluate(["EURUSD", "GBPUSD"], "rsi-bounce", SETTINGS)
        failed, ok = result.decisions
        assert failed.direction == "none"
        assert failed.error == "candle fetch timed out"
        assert result.errors == {"EURUSD": "candle fetch timed out"}
        assert ok.direction == "long"
        assert result.stats["total"] == 2

    @pytest.mark.asyncio
    async def test_unknown_strategy(self):
        engine = _make_engine({})
        with pytest.raises(KeyError):
            await engine.evaluate(["EURUSD"], "nope", SETTINGS)
        assert engine._scan_lock.status()["active"] == 0

    @pytest.mark.asyncio
    async def test_lock_released_after_scan(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert not engine._scan_lock.is_scan_in_progress("rsi-bounce")

    @pytest.mark.asyncio
    async def test_concurrent_scan_refused(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        engine._scan_lock.acquire("rsi-bounce", 1)
        with pytest.raises(ScanInProgressError):
            await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        result = await engine.evaluate(
            ["EURUSD"], "rsi-bounce", SETTINGS, ScanOptions(force=True)
        )
        assert result.stats["total"] == 1

    @pytest.mark.asyncio
    async def test_style_mismatch_refused(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        swing = UserSettings(account_size=10_000, risk_percent=0.5, style="swing")
        with pytest.raises(StyleMismatchError, match="trades intraday"):
            await engine.evaluate(["EURUSD"], "rsi-bounce", swing)
        assert engine._provider.calls == []
        assert engine._scan_lock.status()["active"] == 0


class TestEngineReporting:
    @pytest.mark.asyncio
    async def test_provider_gaps_reported(self):
        data = rsi_bounce_data()
        data.errors.append("adx: Need at least 28 candles for ADX(14), got 20")
        engine = _make_engine({"EURUSD": data})
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert result.decisions[0].direction == "long"
        assert "ADX(14)" in result.errors["EURUSD"]

    @pytest.mark.asyncio
    async def test_cached_failure_still_reported(self):
        data = rsi_bounce_data()
        del data.series["bb_lower"]
        engine = _make_engine({"EURUSD": data})
        await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert result.stats["cache_hits"] == 1
        assert "bb_lower" in result.errors["EURUSD"]

    @pytest.mark.asyncio
    async def test_times_rendered_in_requested_zone(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})
        settings = UserSettings(account_size=10_000, risk_percent=0.5, timezone="America/New_York")
        payload = (await engine.evaluate(["EURUSD"], "rsi-bounce", settings)).to_dict()
        assert payload["timezone"] == "America/New_York"
        local = payload["decisions"][0]["local_times"]
        # 14:10 UTC on 10 March 2026 is 10:10 EDT.
        assert local["timestamp"] == "2026-03-10T10:10:00-04:00"
        assert local["expires_at"] == "2026-03-10T11:10:00-04:00"


class TestEngineDetectionStorage:
    @pytest.mark.asyncio
    async def test_detection_store_failure_keeps_decision(self, tmp_path):
        cooldowns = CooldownTracker(clock=_clock)
        cooldowns.init()
        detections = DetectionService(
            SqliteDetectionStore(str(tmp_path / "no_tables.db")), clock=_clock
        )
        engine = DecisionEngine(
            provider=FakeProvider({"EURUSD": rsi_bounce_data()}),
            instruments=StaticInstrumentProvider(),
            cooldowns=cooldowns,
            cache=DecisionCache(clock=_clock),
            scan_lock=ScanLockController(clock=_clock),
            detections=detections,
            clock=_clock,
        )

        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)

        decision = result.decisions[0]
        assert decision.direction == "long"
        assert result.errors == {}
        assert cooldowns.get("EURUSD", "intraday", "rsi-bounce").direction == "long"
        assert detections.degraded
        assert detections.find_active("rsi-bounce", "EURUSD", "long") is not None

    @pytest.mark.asyncio
    async def test_unexpected_promotion_error_keeps_decision(self):
        engine = _make_engine({"EURUSD": rsi_bounce_data()})

        def boom(decision):
            raise RuntimeError("detection backend exploded")

        engine._detections.process_decision = boom
        result = await engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        assert result.decisions[0].direction == "long"
        assert result.errors == {}


class TestDetectionLifecycleWithDefaults:
    @pytest.mark.asyncio
    async def test_detection_reaches_eligible_before_expiring(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OANDA_API_TOKEN", "test-token")
        monkeypatch.setenv("DB_PATH", str(tmp_path / "lifecycle.db"))
        for var in ("DETECTION_COOLDOWN_MINUTES", "DETECTION_MIN_GRADE", "SWEEP_INTERVAL_SECONDS"):
            monkeypatch.delenv(var, raising=False)
        config = load_config(env_path=str(tmp_path / "missing.env"))
        clock = _MovingClock()
        services = build_services(
            config, provider=FakeProvider({"EURUSD": rsi_bounce_data()}), clock=clock
        )
        services.init()

        await services.engine.evaluate(["EURUSD"], "rsi-bounce", SETTINGS)
        det_id = services.detections.list()["detections"][0].id

        seen = []
        for _ in range(int(2 * 3600 // config.sweep_interval_seconds)):
            clock.advance(seconds=config.sweep_interval_seconds)
            services.sweeper.sweep_once()
            seen.append(services.detections.get(det_id).status)

        assert seen.index("eligible") == seen.index("cooling_down") + 11
        assert seen[-1] == "expired"
        assert seen.count("eligible") == 12
