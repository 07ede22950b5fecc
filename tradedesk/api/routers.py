"""Internal API routers — /strategies, /scan, /detections, /cache, /cooldowns, /scans.

No business logic, no DB access. Delegates to the services built at startup.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from tradedesk.detection.service import DetectionNotFoundError
from tradedesk.engine import ScanOptions, StyleMismatchError
from tradedesk.models.detection import (
    ALL_STATUSES,
    DetectionFilters,
    InvalidTransitionError,
)
from tradedesk.models.settings import UserSettings
from tradedesk.scan_lock import ScanInProgressError, TooManyScansError
from tradedesk.strategy.registry import list_strategies

logger = logging.getLogger("tradedesk.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_services = None  # Set via configure_routers()


def configure_routers(services) -> None:
    """Inject dependencies from the application startup.

    Args:
        services: A ``Services`` bundle (or duck-type for tests).
    """
    global _services  # noqa: PLW0603
    _services = services


def _require_services():
    if _services is None:
        raise HTTPException(status_code=503, detail="Services not configured")
    return _services


def _parse_settings(raw: Optional[dict]) -> UserSettings:
    raw = raw or {}
    try:
        return UserSettings(
            account_size=float(raw.get("account_size", 10000)),
            risk_percent=float(raw.get("risk_percent", 0.5)),
            style=raw.get("style", "intraday"),
            timezone=raw.get("timezone", "UTC"),
        )
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None


# ── Strategies ───────────────────────────────────────────────────────────


@router.get("/strategies")
async def get_strategies():
    """List every registered strategy."""
    strategies = [meta.to_dict() for meta in list_strategies()]
    return {"strategies": strategies, "total": len(strategies)}


# ── Scan ─────────────────────────────────────────────────────────────────


@router.post("/scan")
async def post_scan(body: dict):
    """Run one strategy over a symbol list.

    Body keys: ``strategy_id`` (required), ``symbols`` (defaults to the
    configured list), ``settings``, ``force``, ``skip_cache``,
    ``skip_cooldown``, ``skip_volatility``.
    """
    services = _require_services()
    strategy_id = body.get("strategy_id")
    if not strategy_id:
        raise HTTPException(status_code=422, detail="strategy_id is required")

    symbols = body.get("symbols") or list(services.config.default_symbols)
    if isinstance(symbols, str):
        symbols = [s for s in symbols.split(",") if s]
    symbols = [str(s).strip().upper() for s in symbols]

    settings = _parse_settings(body.get("settings"))
    options = ScanOptions(
        force=bool(body.get("force", False)),
        skip_cache=bool(body.get("skip_cache", False)),
        skip_cooldown=bool(body.get("skip_cooldown", False)),
        skip_volatility=bool(body.get("skip_volatility", False)),
    )

    try:
        result = await services.engine.evaluate(symbols, strategy_id, settings, options)
    except ScanInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None
    except TooManyScansError as exc:
        raise HTTPException(status_code=429, detail=str(exc)) from None
    except StyleMismatchError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from None
    return result.to_dict()


# ── Detections ───────────────────────────────────────────────────────────


@router.get("/detections")
async def get_detections(
    status: Optional[str] = Query(default=None),
    strategy_id: Optional[str] = Query(default=None),
    symbol: Optional[str] = Query(default=None),
    grade: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    """List detections, newest first.  ``status`` may be comma-separated."""
    services = _require_services()
    statuses = None
    if status:
        statuses = [s.strip() for s in status.split(",") if s.strip()]
        unknown = [s for s in statuses if s not in ALL_STATUSES]
        if unknown:
            raise HTTPException(
                status_code=422, detail=f"Unknown status: {', '.join(unknown)}"
            )
    filters = DetectionFilters(
        status=statuses,
        strategy_id=strategy_id,
        symbol=symbol.upper() if symbol else None,
        grade=grade,
        limit=limit,
        offset=offset,
    )
    result = services.detections.list(filters)
    return {
        "detections": [d.to_dict() for d in result["detections"]],
        "total": result["total"],
    }


@router.get("/detections/summary")
async def get_detection_summary():
    return _require_services().detections.summary()


@router.get("/detections/{detection_id}")
async def get_detection(detection_id: str):
    services = _require_services()
    try:
        return services.detections.get(detection_id).to_dict()
    except DetectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from None


def _transition(detection_id: str, action: str, reason: Optional[str]) -> dict:
    services = _require_services()
    handler = getattr(services.detections, action)
    try:
        return handler(detection_id, reason).to_dict()
    except DetectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from None
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None


@router.post("/detections/{detection_id}/execute")
async def post_execute(detection_id: str, body: Optional[dict] = None):
    return _transition(detection_id, "execute", (body or {}).get("reason"))


@router.post("/detections/{detection_id}/dismiss")
async def post_dismiss(detection_id: str, body: Optional[dict] = None):
    return _transition(detection_id, "dismiss", (body or {}).get("reason"))


@router.post("/detections/{detection_id}/invalidate")
async def post_invalidate(detection_id: str, body: Optional[dict] = None):
    reason = (body or {}).get("reason") or "Manually invalidated"
    return _transition(detection_id, "invalidate", reason)


# ── Cache ────────────────────────────────────────────────────────────────


@router.get("/cache/stats")
async def get_cache_stats():
    return _require_services().cache.stats()


@router.delete("/cache")
async def delete_cache(strategy_id: Optional[str] = Query(default=None)):
    cleared = _require_services().cache.clear(strategy_id)
    return {"status": "ok", "cleared": cleared}


# ── Cooldowns ────────────────────────────────────────────────────────────


@router.get("/cooldowns")
async def get_cooldowns():
    cooldowns = _require_services().cooldowns
    entries = [e.to_dict() for e in cooldowns.active_entries()]
    return {"cooldowns": entries, "stats": cooldowns.stats()}


@router.delete("/cooldowns")
async def delete_cooldowns():
    cleared = _require_services().cooldowns.clear_all()
    return {"status": "ok", "cleared": cleared}


# ── Scans ────────────────────────────────────────────────────────────────


@router.get("/scans/active")
async def get_active_scans():
    return _require_services().scan_lock.status()
