"""
Strategy router.

Resolves which strategy handles a page, runs it and keeps the per-tab
plan/error state:

    IDLE -> PROCESSING -> PLAN_READY | ERROR_READY -> (navigation) -> IDLE

Strategy selection: the first `perDomain` rule whose host pattern matches the
page hostname, else the global id. Unknown or unregistered ids fall back to
the default strategy.

Costly strategies (remote model calls) are skipped when the signal
classifier says the page is unlikely to be a PDP; the router then returns a
short-circuit plan with `is_pdp=False`.

Resolves for one tab are serialized by a per-tab lock; the later call's plan
wins. Every navigation bumps the tab's generation; a resolve that started
before the navigation is stale and leaves the tab state untouched.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pdpkit.extractor.signals import SignalClassifier, get_signal_classifier
from pdpkit.strategy.base import DEFAULT_STRATEGY_ID, Strategy, StrategyContext, StrategyId
from pdpkit.utils.cache import TabCache
from pdpkit.utils.config import get_settings
from pdpkit.utils.domain_pattern import hostname_of, make_trace_id, match_host, should_run
from pdpkit.utils.logging import LogContext, get_logger
from pdpkit.utils.schemas import ApplySummary, PagePayload, Plan, StrategySettings

logger = get_logger(__name__)

NS_PLAN = "plan"
NS_SUMMARY = "summary"
NS_ERROR = "error"
NS_PROCESSING = "processing"

ERROR_STALE = "tab navigated while resolving"


class TabPhase(str, Enum):
    """Per-tab resolution state."""

    IDLE = "idle"
    PROCESSING = "processing"
    PLAN_READY = "plan_ready"
    ERROR_READY = "error_ready"


@dataclass
class ResolveOutcome:
    """Result of StrategyRouter.resolve(): a plan or an error string."""

    strategy_id: StrategyId
    plan: Plan | None = None
    error: str | None = None
    # The tab navigated while this resolve was running
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.plan is not None

    @property
    def short_circuit(self) -> bool:
        return self.plan is not None and bool(self.plan.meta.get("short_circuit"))


class StrategyRouter:
    """Dispatches pages to strategies and owns per-tab plan state."""

    def __init__(
        self,
        settings: Callable[[], StrategySettings],
        cache: TabCache | None = None,
        classifier: SignalClassifier | None = None,
        default_id: str | None = None,
        threshold: int | None = None,
        prefilter_costly: bool | None = None,
    ):
        """Initialize the router.

        Args:
            settings: Accessor returning the current StrategySettings.
            cache: Per-tab cache. A memory-only cache is created if None.
            classifier: Signal classifier for the costly-strategy prefilter.
            default_id: Fallback strategy id. Uses config if None.
            threshold: Prefilter score threshold. Uses config if None.
            prefilter_costly: Enable the prefilter. Uses config if None.
        """
        config = get_settings()
        self._settings = settings
        self._cache = cache or TabCache(durable=False)
        self._classifier = classifier or get_signal_classifier()
        self.default_id = StrategyId.parse(
            default_id or config.strategy.default_id, StrategyId(DEFAULT_STRATEGY_ID)
        )
        self.threshold = (
            config.signals.min_score_to_continue if threshold is None else threshold
        )
        self.prefilter_costly = (
            config.strategy.prefilter_costly if prefilter_costly is None else prefilter_costly
        )

        self._registry: dict[StrategyId, Strategy] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._phases: dict[int, TabPhase] = {}
        self._generations: dict[int, int] = {}

    # -------------------------------------------------------------------------
    # registry
    # -------------------------------------------------------------------------

    def register(self, strategy_id: StrategyId, handler: Strategy) -> None:
        """Register (or replace) the handler for a strategy id."""
        self._registry[strategy_id] = handler
        logger.info("Strategy registered", strategy_id=strategy_id.value)

    def unregister(self, strategy_id: StrategyId) -> Strategy | None:
        return self._registry.pop(strategy_id, None)

    def registered(self) -> list[StrategyId]:
        return list(self._registry)

    # -------------------------------------------------------------------------
    # selection
    # -------------------------------------------------------------------------

    def configured_id(self, url: str) -> str:
        """Raw strategy id configured for `url` (per-domain rule or global)."""
        settings = self._settings()
        host = hostname_of(url)
        if host is not None:
            for rule in settings.per_domain:
                if match_host(host, rule.pattern):
                    return rule.strategy_id
        return settings.global_id

    def resolve_strategy_id(self, url: str) -> StrategyId:
        """Strategy to run for `url`; never raises."""
        raw = self.configured_id(url)
        strategy_id = StrategyId.parse(raw, self.default_id)
        if strategy_id not in self._registry:
            if strategy_id != self.default_id:
                logger.info(
                    "Strategy not registered, using default",
                    configured=raw,
                    default=self.default_id.value,
                )
            strategy_id = self.default_id
        elif strategy_id.value != raw:
            logger.debug("Strategy id normalized", configured=raw, strategy_id=strategy_id.value)
        return strategy_id

    def should_run(self, url: str) -> bool:
        """Whether the allowlist enables processing for `url`."""
        return should_run(url, self._settings().allowlist)

    # -------------------------------------------------------------------------
    # per-tab state
    # -------------------------------------------------------------------------

    def _lock_for(self, tab_id: int) -> asyncio.Lock:
        lock = self._locks.get(tab_id)
        if lock is None:
            lock = self._locks[tab_id] = asyncio.Lock()
        return lock

    def phase(self, tab_id: int) -> TabPhase:
        return self._phases.get(tab_id, TabPhase.IDLE)

    def is_processing(self, tab_id: int) -> bool:
        return bool(self._cache.get(NS_PROCESSING, tab_id, False))

    def get_plan(self, tab_id: int) -> Plan | None:
        return self._cache.get(NS_PLAN, tab_id)

    def get_error(self, tab_id: int) -> str | None:
        return self._cache.get(NS_ERROR, tab_id)

    def get_summary(self, tab_id: int) -> ApplySummary | None:
        return self._cache.get(NS_SUMMARY, tab_id)

    def store_plan(self, tab_id: int, plan: Plan) -> None:
        self._cache.set(NS_PLAN, tab_id, plan)

    def store_summary(self, tab_id: int, summary: ApplySummary) -> None:
        self._cache.set(NS_SUMMARY, tab_id, summary)

    def generation(self, tab_id: int) -> int:
        """Navigation counter of a tab."""
        return self._generations.get(tab_id, 0)

    def on_navigation(self, tab_id: int, url: str = "") -> None:
        """Forget the tab's plan, summary and error and invalidate running resolves."""
        self._generations[tab_id] = self.generation(tab_id) + 1
        for namespace in (NS_PLAN, NS_SUMMARY, NS_ERROR):
            self._cache.clear(namespace, tab_id)
        self._phases[tab_id] = TabPhase.IDLE
        logger.debug("Tab state cleared", tab_id=tab_id, url=url)

    def forget_tab(self, tab_id: int) -> None:
        """Drop all state for a closed tab."""
        self.on_navigation(tab_id)
        self._phases.pop(tab_id, None)
        self._locks.pop(tab_id, None)

    # -------------------------------------------------------------------------
    # resolution
    # -------------------------------------------------------------------------

    def _short_circuit_plan(self, payload: PagePayload) -> Plan | None:
        signals = self._classifier.evaluate(payload.url, payload.signal_html)
        if signals.passes_gate(self.threshold):
            return None
        logger.info(
            "Costly strategy skipped by prefilter",
            url=payload.url,
            score=signals.score,
            threshold=self.threshold,
        )
        return Plan(
            is_pdp=False,
            score=signals.score,
            meta={"short_circuit": True, "url": payload.url, "signals": signals.to_dict()},
        )

    def _normalize(self, result: Any, strategy_id: StrategyId, elapsed_ms: float) -> Plan:
        plan = result if isinstance(result, Plan) else Plan.model_validate(result)
        meta = {
            **plan.meta,
            "process_ms": round(elapsed_ms),
            "strategy_id": strategy_id.value,
        }
        update: dict[str, Any] = {"meta": meta}
        if not plan.patch:
            update["is_pdp"] = False
        return plan.model_copy(update=update)

    async def resolve(self, payload: PagePayload, tab_id: int) -> ResolveOutcome:
        """Resolve a plan for the page loaded in `tab_id`.

        Strategy failures are returned as `ResolveOutcome.error` and stored as
        the tab error; the previously cached plan is left in place. When the
        tab navigates before the resolve finishes, the outcome is stale and
        nothing is cached.
        """
        generation = self.generation(tab_id)
        strategy_id = self.resolve_strategy_id(payload.url)

        async with self._lock_for(tab_id):
            if self.generation(tab_id) != generation:
                logger.info("Resolve dropped after navigation", tab_id=tab_id, url=payload.url)
                return ResolveOutcome(strategy_id=strategy_id, error=ERROR_STALE, stale=True)

            trace_id = make_trace_id()
            self._phases[tab_id] = TabPhase.PROCESSING
            self._cache.set(NS_PROCESSING, tab_id, True)

            with LogContext(tab_id=tab_id, trace_id=trace_id, strategy_id=strategy_id.value):
                started = time.perf_counter()
                try:
                    result = None
                    if self.prefilter_costly and strategy_id.is_costly:
                        result = self._short_circuit_plan(payload)
                    if result is None:
                        handler = self._registry.get(strategy_id)
                        if handler is None:
                            raise LookupError(f"No strategy registered for {strategy_id.value}")
                        ctx = StrategyContext(
                            strategy_id=strategy_id, tab_id=tab_id, trace_id=trace_id
                        )
                        result = await handler(payload, ctx)

                    if self.generation(tab_id) != generation:
                        logger.info("Stale plan discarded", url=payload.url)
                        return ResolveOutcome(
                            strategy_id=strategy_id, error=ERROR_STALE, stale=True
                        )

                    elapsed_ms = (time.perf_counter() - started) * 1000
                    plan = self._normalize(result, strategy_id, elapsed_ms)
                    self._cache.set(NS_PLAN, tab_id, plan)
                    self._cache.clear(NS_ERROR, tab_id)
                    self._phases[tab_id] = TabPhase.PLAN_READY
                    logger.info(
                        "Plan resolved",
                        url=payload.url,
                        is_pdp=plan.is_pdp,
                        steps=len(plan.patch),
                        process_ms=plan.meta["process_ms"],
                    )
                    return ResolveOutcome(strategy_id=strategy_id, plan=plan)

                except Exception as e:
                    error = str(e) or type(e).__name__
                    if self.generation(tab_id) != generation:
                        logger.info("Stale error discarded", url=payload.url, error=error)
                        return ResolveOutcome(
                            strategy_id=strategy_id, error=ERROR_STALE, stale=True
                        )
                    self._cache.set(NS_ERROR, tab_id, error)
                    self._phases[tab_id] = TabPhase.ERROR_READY
                    logger.error("Strategy failed", url=payload.url, error=error)
                    return ResolveOutcome(strategy_id=strategy_id, error=error)

                finally:
                    self._cache.clear(NS_PROCESSING, tab_id)
