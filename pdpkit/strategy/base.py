"""
Strategy identifiers and the resolver interface.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from pdpkit.utils.schemas import PagePayload, Plan

DEFAULT_STRATEGY_ID = "heuristics"

# Accepted spellings from older settings files
_ALIASES = {
    "heuristicsstrategy": "heuristics",
    "llm": "generator",
    "llmstrategy": "generator",
    "webllm": "generator",
    "webllmstrategy": "generator",
    "jsonld": "structured_data",
    "jsonldstrategy": "structured_data",
    "ocr": "vision",
    "ocrstrategy": "vision",
}


class StrategyId(str, Enum):
    """Plan resolution backends."""

    HEURISTICS = "heuristics"
    GENERATOR = "generator"
    STRUCTURED_DATA = "structured_data"
    VISION = "vision"

    @property
    def is_costly(self) -> bool:
        """Strategies that call a remote model and are worth prefiltering."""
        return self in (StrategyId.GENERATOR, StrategyId.VISION)

    @classmethod
    def parse(cls, value: str | None, default: "StrategyId | None" = None) -> "StrategyId":
        """Parse a configured id, falling back to `default` (heuristics) when unknown."""
        fallback = default or cls(DEFAULT_STRATEGY_ID)
        if not value:
            return fallback
        key = value.strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return fallback


@dataclass(frozen=True)
class StrategyContext:
    """Per-call context handed to a strategy."""

    strategy_id: StrategyId
    tab_id: int | None = None
    trace_id: str | None = None


Strategy = Callable[[PagePayload, StrategyContext], Awaitable[Plan]]
