"""Service wiring — builds every stateful component from ``Config``.

All state lives on the returned :class:`Services`; nothing is held in
module globals.  When the database cannot be initialised the detection
store falls back to memory and the cooldown tracker runs degraded.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from tradedesk.cache import DecisionCache
from tradedesk.config import Config
from tradedesk.detection.memory_store import InMemoryDetectionStore
from tradedesk.detection.service import DetectionService
from tradedesk.detection.store import DetectionStore
from tradedesk.engine import DecisionEngine
from tradedesk.market.candle_client import CandleClient
from tradedesk.market.instruments import StaticInstrumentProvider
from tradedesk.market.provider import CandleIndicatorProvider, IndicatorProvider
from tradedesk.repos.cooldown_repo import CooldownRepo
from tradedesk.repos.db import init_db
from tradedesk.repos.detection_repo import SqliteDetectionStore
from tradedesk.risk.cooldown import CooldownTracker
from tradedesk.scan_lock import ScanLockController
from tradedesk.sweeper import LifecycleSweeper

logger = logging.getLogger("tradedesk")


@dataclass
class Services:
    config: Config
    instruments: StaticInstrumentProvider
    provider: IndicatorProvider
    cooldowns: CooldownTracker
    cache: DecisionCache
    scan_lock: ScanLockController
    detections: DetectionService
    engine: DecisionEngine
    sweeper: LifecycleSweeper

    def init(self) -> None:
        """Restore persisted state."""
        self.cooldowns.init()

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        logger.info("Services shut down.")


def build_services(
    config: Config,
    provider: Optional[IndicatorProvider] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    """Construct and wire every component.

    Args:
        config: Loaded configuration.
        provider: Indicator source; defaults to the OANDA candle provider.
        clock: Shared UTC clock for every component (tests inject one).
    """
    instruments = StaticInstrumentProvider()
    if provider is None:
        provider = CandleIndicatorProvider(CandleClient(config), instruments)

    store: DetectionStore
    cooldown_repo: Optional[CooldownRepo]
    try:
        init_db(config.db_path)
    except (sqlite3.Error, OSError) as exc:
        logger.warning(
            "Database %s unavailable (%s), using in-memory stores", config.db_path, exc
        )
        store = InMemoryDetectionStore(max_entries=config.memory_store_max_entries)
        cooldown_repo = None
    else:
        store = SqliteDetectionStore(config.db_path)
        cooldown_repo = CooldownRepo(config.db_path)

    cooldowns = CooldownTracker(repo=cooldown_repo, clock=clock)
    cache = DecisionCache(
        ttl_seconds=config.cache_ttl_seconds,
        no_trade_ttl_seconds=config.no_trade_cache_ttl_seconds,
        clock=clock,
    )
    scan_lock = ScanLockController(
        max_concurrent=config.max_concurrent_scans,
        timeout_seconds=config.scan_timeout_seconds,
        clock=clock,
    )
    detections = DetectionService(
        store,
        cooldown_minutes=config.detection_cooldown_minutes,
        min_grade=config.detection_min_grade,
        memory_max_entries=config.memory_store_max_entries,
        clock=clock,
    )
    engine = DecisionEngine(
        provider=provider,
        instruments=instruments,
        cooldowns=cooldowns,
        cache=cache,
        scan_lock=scan_lock,
        detections=detections,
        clock=clock,
    )
    sweeper = LifecycleSweeper(
        detections=detections,
        cooldowns=cooldowns,
        cache=cache,
        scan_lock=scan_lock,
        interval_seconds=config.sweep_interval_seconds,
        clock=clock,
    )
    return Services(
        config=config,
        instruments=instruments,
        provider=provider,
        cooldowns=cooldowns,
        cache=cache,
        scan_lock=scan_lock,
        detections=detections,
        engine=engine,
        sweeper=sweeper,
    )
