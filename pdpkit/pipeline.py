"""
Tab pipeline for pdpkit.

Ties the pieces together for one page per tab:

    load page -> allowlist check -> payload -> router.resolve
              -> enrich originals -> PatchApplier.apply -> summary cached

and offers revert/reapply of the last applied plan. Navigation events are
debounced; the debounced handler re-runs the pipeline on the page loaded
for the tab at that moment.
"""

from dataclasses import dataclass, field
from typing import Any

from pdpkit.extractor.payload import build_payload
from pdpkit.generator_client import GeneratorClient
from pdpkit.page.context import DocumentPageContext
from pdpkit.patch.applier import PatchApplier
from pdpkit.strategy.base import StrategyId
from pdpkit.strategy.generator import GeneratorStrategy
from pdpkit.strategy.heuristics import HeuristicsStrategy
from pdpkit.strategy.navigation import NavigationDebouncer
from pdpkit.strategy.router import ResolveOutcome, StrategyRouter
from pdpkit.strategy.structured_data import StructuredDataStrategy
from pdpkit.strategy.vision import ScreenCapture, VisionStrategy
from pdpkit.utils.cache import TabCache
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import ApplySummary, Plan
from pdpkit.utils.strategy_settings import StrategySettingsStore

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    """Outcome of processing one page."""

    tab_id: int
    url: str
    status: str = "pending"  # skipped|not_pdp|applied|stale|error
    strategy_id: str | None = None
    plan: Plan | None = None
    summary: ApplySummary | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "tab_id": self.tab_id,
            "url": self.url,
            "status": self.status,
            "strategy_id": self.strategy_id,
        }
        if self.plan is not None:
            result["plan"] = self.plan.to_wire()
        if self.summary is not None:
            result["summary"] = self.summary.model_dump(mode="json")
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class TabPipeline:
    """Per-process pipeline over a DocumentPageContext."""

    router: StrategyRouter
    context: DocumentPageContext = field(default_factory=DocumentPageContext)
    applier: PatchApplier | None = None
    debouncer: NavigationDebouncer | None = None

    def __post_init__(self) -> None:
        if self.applier is None:
            self.applier = PatchApplier(self.context)
        if self.debouncer is None:
            self.debouncer = NavigationDebouncer(self._on_debounced_navigation)

    async def process(self, tab_id: int, html: str, url: str) -> PipelineResult:
        """Load `html` into the tab and run the full pipeline."""
        self.context.load(tab_id, html, url)
        return await self.process_loaded(tab_id)

    async def process_loaded(self, tab_id: int) -> PipelineResult:
        """Run the pipeline on the page currently loaded in the tab."""
        assert self.applier is not None
        url = self.context.url(tab_id)
        generation = self.router.generation(tab_id)
        result = PipelineResult(tab_id=tab_id, url=url)

        if not self.router.should_run(url):
            result.status = "skipped"
            logger.info("Page not in allowlist", tab_id=tab_id, url=url)
            return result

        payload = build_payload(self.context.html(tab_id), url)
        outcome: ResolveOutcome = await self.router.resolve(payload, tab_id)
        result.strategy_id = outcome.strategy_id.value
        if outcome.stale or not self._is_current(tab_id, url, generation):
            result.status = "stale"
            result.error = outcome.error
            logger.info("Tab navigated, plan not applied", tab_id=tab_id, url=url)
            return result
        if outcome.plan is None:
            result.status = "error"
            result.error = outcome.error
            return result

        plan = outcome.plan
        if not plan.is_pdp:
            result.status = "not_pdp"
            result.plan = plan
            return result

        plan = await self.applier.enrich_originals(tab_id, plan)
        if not self._is_current(tab_id, url, generation):
            result.status = "stale"
            logger.info("Tab navigated, plan not applied", tab_id=tab_id, url=url)
            return result
        self.router.store_plan(tab_id, plan)
        summary = await self.applier.apply(tab_id, plan)
        self.router.store_summary(tab_id, summary)

        result.status = "applied"
        result.plan = plan
        result.summary = summary
        return result

    def _is_current(self, tab_id: int, url: str, generation: int) -> bool:
        """Whether the tab still shows the page a plan was resolved for."""
        return (
            self.router.generation(tab_id) == generation and self.context.url(tab_id) == url
        )

    async def revert(self, tab_id: int) -> ApplySummary | None:
        """Undo the last applied plan of a tab."""
        assert self.applier is not None
        plan = self.router.get_plan(tab_id)
        summary = self.router.get_summary(tab_id)
        if plan is None or summary is None:
            logger.info("Nothing to revert", tab_id=tab_id)
            return None
        inverse = self.applier.engine.build_inverse(plan, summary)
        return await self.applier.apply(tab_id, inverse)

    async def reapply(self, tab_id: int) -> ApplySummary | None:
        """Redo the last applied plan of a tab after a revert."""
        assert self.applier is not None
        plan = self.router.get_plan(tab_id)
        summary = self.router.get_summary(tab_id)
        if plan is None or summary is None:
            logger.info("Nothing to reapply", tab_id=tab_id)
            return None
        forward = self.applier.engine.build_reapply(plan, summary)
        return await self.applier.apply(tab_id, forward)

    def navigate(self, tab_id: int, html: str, url: str) -> None:
        """Record a navigation: the page is swapped now, recompute is debounced."""
        assert self.debouncer is not None
        self.context.load(tab_id, html, url)
        self.router.on_navigation(tab_id, url)
        self.debouncer.notify(tab_id, url)

    async def _on_debounced_navigation(self, tab_id: int, url: str) -> None:
        result = await self.process_loaded(tab_id)
        logger.info("Navigation processed", tab_id=tab_id, url=url, status=result.status)


def build_router(
    settings_store: StrategySettingsStore,
    context: DocumentPageContext,
    generator: GeneratorClient | None = None,
    capture: ScreenCapture | None = None,
    cache: TabCache | None = None,
) -> StrategyRouter:
    """Create a router with every built-in strategy registered."""
    router = StrategyRouter(settings_store, cache=cache)
    router.register(StrategyId.HEURISTICS, HeuristicsStrategy(page=context, generator=generator))
    router.register(StrategyId.GENERATOR, GeneratorStrategy(client=generator))
    router.register(
        StrategyId.STRUCTURED_DATA, StructuredDataStrategy(page=context, generator=generator)
    )
    router.register(StrategyId.VISION, VisionStrategy(capture=capture, client=generator))
    return router
