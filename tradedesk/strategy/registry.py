"""Strategy registry — maps strategy ids to classes.

Used by the decision engine to resolve the strategy named in a scan
request.
"""

from tradedesk.strategy.base import StrategyMeta, StrategyProtocol
from tradedesk.strategy.bollinger_mr import BollingerMRStrategy
from tradedesk.strategy.break_retest import BreakRetestStrategy
from tradedesk.strategy.cci_zero import CciZeroStrategy
from tradedesk.strategy.ema_pullback import EmaPullbackStrategy
from tradedesk.strategy.preflight import DEFAULT_POLICY, PreflightPolicy
from tradedesk.strategy.rsi_bounce import RsiBounceStrategy
from tradedesk.strategy.stoch_oversold import StochOversoldStrategy
from tradedesk.strategy.triple_ema import TripleEmaStrategy
from tradedesk.strategy.williams_ema import WilliamsEmaStrategy


STRATEGY_REGISTRY: dict[str, type] = {
    "rsi-bounce": RsiBounceStrategy,
    "stoch-oversold": StochOversoldStrategy,
    "bollinger-mr": BollingerMRStrategy,
    "ema-pullback": EmaPullbackStrategy,
    "cci-zero": CciZeroStrategy,
    "break-retest": BreakRetestStrategy,
    "triple-ema": TripleEmaStrategy,
    "williams-ema": WilliamsEmaStrategy,
}


def get_strategy(
    name: str,
    policy: PreflightPolicy = DEFAULT_POLICY,
) -> StrategyProtocol:
    """Look up and instantiate a strategy by registry key.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name](policy=policy)


def list_strategies() -> list[StrategyMeta]:
    """Metadata for every registered strategy, in registry order."""
    return [cls.meta for cls in STRATEGY_REGISTRY.values()]
