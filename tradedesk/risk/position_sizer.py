"""Position sizing — pure math, no I/O.

Turns an entry/stop pair and the account's risk budget into a lot size,
respecting each instrument's contract size, leverage and lot limits.
"""

import logging
import math
from typing import Optional

from tradedesk.market.instruments import InstrumentSpec
from tradedesk.models.decision import PositionSizeResult

logger = logging.getLogger("tradedesk.sizing")

MIN_LOT = 0.01
LOT_STEP = 0.01


def _floor_to_step(lots: float) -> float:
    # Small epsilon keeps 0.29999999 from flooring to 0.28.
    return math.floor(lots / LOT_STEP + 1e-9) * LOT_STEP


def size_position(
    entry: float,
    stop: float,
    account_balance: float,
    risk_percent: float,
    spec: Optional[InstrumentSpec],
    include_spread: bool = False,
) -> Optional[PositionSizeResult]:
    """Calculate the lot size that risks *risk_percent* of the account.

    Formula::

        risk_amount = balance × (risk_percent / 100)
        crypto      lots = risk_amount / (stop_distance × contract_size)
        otherwise   lots = risk_amount / (stop_pips × pip_value)

    The result is capped by margin (``balance × leverage / (entry ×
    contract_size)``) and by the instrument's max lot, then floored to
    the 0.01 lot step.  A size under the minimum lot is reported as
    invalid with zero lots; it is never rounded up.

    Args:
        entry: Planned entry price.
        stop: Stop-loss price.
        account_balance: Account size in account currency.
        risk_percent: Percent of the balance to risk (e.g. 0.5).
        spec: Instrument contract facts; ``None`` for an unknown symbol.
        include_spread: Add the average spread to the stop distance.

    Returns:
        ``PositionSizeResult``, or ``None`` when *spec* is ``None``.

    Raises:
        ValueError: If any numeric input is non-positive or entry equals stop.
    """
    if spec is None:
        logger.error("Position sizing refused: unknown instrument")
        return None
    if account_balance <= 0:
        raise ValueError(f"account_balance must be positive, got {account_balance}")
    if risk_percent <= 0:
        raise ValueError(f"risk_percent must be positive, got {risk_percent}")
    if entry <= 0:
        raise ValueError(f"entry must be positive, got {entry}")
    stop_distance = abs(entry - stop)
    if stop_distance == 0:
        raise ValueError("stop distance must be positive, entry equals stop")

    risk_amount = account_balance * (risk_percent / 100.0)
    if include_spread:
        stop_distance += spec.avg_spread_pips * spec.pip_size
    stop_pips = stop_distance / spec.pip_size

    if spec.is_crypto:
        raw_lots = risk_amount / (stop_distance * spec.contract_size)
    else:
        raw_lots = risk_amount / (stop_pips * spec.pip_value)

    warnings: list[str] = []

    max_lots_by_margin = account_balance * spec.leverage / (entry * spec.contract_size)
    margin_limited = raw_lots > max_lots_by_margin
    lots = min(raw_lots, max_lots_by_margin)
    if margin_limited:
        warnings.append(
            f"Margin-limited: risk size {raw_lots:.2f} lots capped at "
            f"{max_lots_by_margin:.2f} lots ({spec.leverage:g}:1 leverage)"
        )

    max_lot_limited = lots > spec.max_lot
    if max_lot_limited:
        warnings.append(f"Capped at instrument max lot {spec.max_lot:g}")
        lots = spec.max_lot

    lots = round(_floor_to_step(lots), 2)
    is_valid = lots >= MIN_LOT
    if not is_valid:
        warnings.append(
            f"Size {raw_lots:.4f} lots is below the minimum {MIN_LOT} lot; "
            f"reduce the stop distance or raise risk"
        )
        lots = 0.0

    units = lots * spec.contract_size
    margin_required = units * entry / spec.leverage
    spread_cost = lots * spec.avg_spread_pips * spec.pip_value
    if spec.commission_percent is not None:
        # Charged on open and close.
        commission_cost = units * entry * (spec.commission_percent / 100.0) * 2
    else:
        commission_cost = lots * spec.commission_per_lot

    return PositionSizeResult(
        lots=lots,
        units=units,
        risk_amount=risk_amount,
        stop_distance=stop_distance,
        stop_pips=stop_pips,
        margin_required=margin_required,
        margin_limited=margin_limited,
        max_lot_limited=max_lot_limited,
        is_valid=is_valid,
        spread_cost=spread_cost,
        commission_cost=commission_cost,
        warnings=tuple(warnings),
    )
