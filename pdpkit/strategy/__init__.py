"""
Plan resolution strategies and the router that selects them.
"""

from pdpkit.strategy.base import Strategy, StrategyContext, StrategyId
from pdpkit.strategy.generator import GeneratorStrategy
from pdpkit.strategy.heuristics import HeuristicsStrategy
from pdpkit.strategy.navigation import NavigationDebouncer
from pdpkit.strategy.router import ResolveOutcome, StrategyRouter, TabPhase
from pdpkit.strategy.structured_data import StructuredDataStrategy
from pdpkit.strategy.vision import CaptureResult, ElementBox, ScreenCapture, VisionStrategy

__all__ = [
    # Base
    "Strategy",
    "StrategyContext",
    "StrategyId",
    # Router
    "StrategyRouter",
    "ResolveOutcome",
    "TabPhase",
    "NavigationDebouncer",
    # Strategies
    "HeuristicsStrategy",
    "GeneratorStrategy",
    "StructuredDataStrategy",
    "VisionStrategy",
    "ScreenCapture",
    "CaptureResult",
    "ElementBox",
]
