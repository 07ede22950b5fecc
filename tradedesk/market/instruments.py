"""Instrument specifications — static lookup table.

Per-symbol contract facts used by the position sizer and the candle
client.  Unknown symbols resolve to ``None``; callers must treat that as
"cannot size", never substitute defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

AssetClass = Literal["forex", "metal", "index", "commodity", "crypto"]


@dataclass(frozen=True)
class InstrumentSpec:
    """Contract facts for one tradable symbol."""

    symbol: str
    asset_class: AssetClass
    data_symbol: str  # candle-source name, e.g. "EUR_USD"
    pip_size: float
    pip_value: float  # account currency per pip per lot
    contract_size: float  # units per lot
    leverage: float
    max_lot: float
    avg_spread_pips: float
    commission_per_lot: float = 0.0
    commission_percent: Optional[float] = None

    @property
    def is_crypto(self) -> bool:
        return self.asset_class == "crypto"


def _fx(symbol: str, pip_size: float, pip_value: float, spread: float) -> InstrumentSpec:
    return InstrumentSpec(
        symbol=symbol,
        asset_class="forex",
        data_symbol=f"{symbol[:3]}_{symbol[3:]}",
        pip_size=pip_size,
        pip_value=pip_value,
        contract_size=100_000,
        leverage=30,
        max_lot=50,
        avg_spread_pips=spread,
    )


def _crypto(
    symbol: str,
    contract_size: float,
    pip_size: float,
    pip_value: float,
    spread: float,
    max_lot: float,
) -> InstrumentSpec:
    return InstrumentSpec(
        symbol=symbol,
        asset_class="crypto",
        data_symbol=f"{symbol[:3]}_{symbol[3:]}",
        pip_size=pip_size,
        pip_value=pip_value,
        contract_size=contract_size,
        leverage=1,
        max_lot=max_lot,
        avg_spread_pips=spread,
        commission_percent=0.035,
    )


_SPECS: list[InstrumentSpec] = [
    _fx("EURUSD", 0.0001, 10.0, 0.5),
    _fx("GBPUSD", 0.0001, 10.0, 0.5),
    _fx("AUDUSD", 0.0001, 10.0, 0.6),
    _fx("NZDUSD", 0.0001, 10.0, 0.8),
    _fx("USDJPY", 0.01, 6.41, 0.6),
    _fx("EURJPY", 0.01, 6.41, 0.9),
    _fx("GBPJPY", 0.01, 6.41, 1.4),
    _fx("USDCAD", 0.0001, 7.30, 0.9),
    _fx("USDCHF", 0.0001, 12.65, 0.9),
    _fx("EURGBP", 0.0001, 13.48, 0.5),
    _fx("EURAUD", 0.0001, 6.70, 1.0),
    InstrumentSpec(
        symbol="XAUUSD", asset_class="metal", data_symbol="XAU_USD",
        pip_size=0.01, pip_value=1.0, contract_size=100, leverage=15,
        max_lot=20, avg_spread_pips=34, commission_per_lot=6.0,
    ),
    InstrumentSpec(
        symbol="XAGUSD", asset_class="metal", data_symbol="XAG_USD",
        pip_size=0.01, pip_value=50.0, contract_size=5000, leverage=15,
        max_lot=50, avg_spread_pips=5.4, commission_per_lot=6.0,
    ),
    InstrumentSpec(
        symbol="SP", asset_class="index", data_symbol="SPX500_USD",
        pip_size=1.0, pip_value=20.0, contract_size=20, leverage=15,
        max_lot=50, avg_spread_pips=0.9, commission_per_lot=6.0,
    ),
    InstrumentSpec(
        symbol="WTI", asset_class="commodity", data_symbol="WTICO_USD",
        pip_size=0.01, pip_value=10.0, contract_size=1000, leverage=15,
        max_lot=50, avg_spread_pips=3.0, commission_per_lot=6.0,
    ),
    _crypto("BTCUSD", 2, 1.0, 2.0, 12, 10),
    _crypto("ETHUSD", 20, 0.01, 0.2, 59, 100),
    _crypto("XRPUSD", 100_000, 0.00001, 1.0, 3, 50),
    _crypto("SOLUSD", 500, 0.01, 5.0, 1, 1000),
    _crypto("LTCUSD", 500, 0.01, 5.0, 15, 500),
]

INSTRUMENTS: dict[str, InstrumentSpec] = {spec.symbol: spec for spec in _SPECS}


class StaticInstrumentProvider:
    """Instrument lookup backed by an in-process table.

    Args:
        specs: Optional replacement table (tests inject small ones).
    """

    def __init__(self, specs: Optional[dict[str, InstrumentSpec]] = None) -> None:
        self._specs = dict(INSTRUMENTS if specs is None else specs)

    def get_spec(self, symbol: str) -> Optional[InstrumentSpec]:
        """Return the spec for *symbol* or ``None`` when unknown."""
        return self._specs.get(symbol.upper())

    def symbols(self, asset_class: Optional[str] = None) -> list[str]:
        return [
            s.symbol for s in self._specs.values()
            if asset_class is None or s.asset_class == asset_class
        ]


def session_class(symbol: str) -> str:
    """Return ``"crypto"`` or ``"fx"`` for session-quality scoring."""
    spec = INSTRUMENTS.get(symbol.upper())
    if spec is not None and spec.is_crypto:
        return "crypto"
    return "fx"
