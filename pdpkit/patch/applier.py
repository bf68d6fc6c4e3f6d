"""
Whole-patch application with bounded retry across execution worlds.

Content that renders asynchronously may not exist yet when a plan is first
applied. When a non-empty patch applies zero steps:

    attempt 1  isolated world
    attempt 2  isolated world, after retry_delay_seconds
    attempt 3  main world

Steps are never retried individually; every attempt re-runs the whole patch.
"""

import asyncio
from collections.abc import Sequence

from bs4 import Tag

from pdpkit.page.context import ExecutionWorld, PageContext
from pdpkit.patch.engine import PatchEngine, get_patch_engine
from pdpkit.utils.config import get_settings
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import ApplySummary, PatchStep, Plan

logger = get_logger(__name__)

RETRY_SCHEDULE: tuple[ExecutionWorld, ...] = (
    ExecutionWorld.ISOLATED,
    ExecutionWorld.ISOLATED,
    ExecutionWorld.MAIN,
)


class PatchApplier:
    """Applies plans in a tab through a PageContext."""

    def __init__(
        self,
        context: PageContext,
        engine: PatchEngine | None = None,
        retry_delay: float | None = None,
        max_attempts: int | None = None,
    ):
        settings = get_settings().patch
        self._context = context
        self._engine = engine or get_patch_engine()
        self.retry_delay = settings.retry_delay_seconds if retry_delay is None else retry_delay
        attempts = settings.max_attempts if max_attempts is None else max_attempts
        self.max_attempts = max(1, min(attempts, len(RETRY_SCHEDULE)))

    @property
    def engine(self) -> PatchEngine:
        return self._engine

    def _apply_in_page(self, root: Tag, steps: Sequence[PatchStep]) -> ApplySummary:
        return self._engine.apply(steps, root)

    def _enrich_in_page(self, root: Tag, plan: Plan) -> Plan:
        return self._engine.enrich_originals(plan, root)

    async def apply(self, tab_id: int, plan: Plan) -> ApplySummary:
        """Apply `plan.patch` in a tab, retrying while nothing applies.

        Args:
            tab_id: Target tab.
            plan: Plan whose patch is applied.

        Returns:
            Summary of the last attempt, with `world` and `attempts` set.
        """
        steps = list(plan.patch)
        summary: ApplySummary | None = None

        for attempt, world in enumerate(RETRY_SCHEDULE[: self.max_attempts], start=1):
            if attempt > 1 and world == ExecutionWorld.ISOLATED and self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)

            result = await self._context.execute(tab_id, self._apply_in_page, steps, world=world)
            summary = result.model_copy(update={"world": world.value, "attempts": attempt})

            if not steps or summary.steps_applied > 0:
                break
            logger.info(
                "Patch applied no steps",
                tab_id=tab_id,
                attempt=attempt,
                world=world.value,
                steps=len(steps),
            )

        assert summary is not None
        logger.info(
            "Plan applied",
            tab_id=tab_id,
            applied=summary.steps_applied,
            total=summary.steps_total,
            attempts=summary.attempts,
            world=summary.world,
        )
        return summary

    async def enrich_originals(self, tab_id: int, plan: Plan) -> Plan:
        """Fill missing Field.original values from the page."""
        return await self._context.execute(tab_id, self._enrich_in_page, plan)
