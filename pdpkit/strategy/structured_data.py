"""
Structured-data strategy.

Uses the first JSON-LD Product on the page as ground truth for the region
texts, locates them in the page with the selector matcher and asks the
generator for rewritten values. Without a generator (or when it fails) the
extracted texts themselves are proposed.
"""

from typing import Any

from pdpkit.errors import PdpKitError
from pdpkit.extractor.jsonld import extract_product_texts, pick_first_product
from pdpkit.extractor.selector_matcher import match_targets
from pdpkit.filter.content_policy import sanitize_generated_values
from pdpkit.generator_client import GeneratorClient
from pdpkit.page.context import PageContext
from pdpkit.strategy.base import StrategyContext
from pdpkit.utils.domain_pattern import make_trace_id
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import FIELD_KEYS, PagePayload, PatchOp, PatchStep, Plan, PlanField

logger = get_logger(__name__)

SOURCE = "structured_data"


class StructuredDataStrategy:
    """JSON-LD Product driven plan resolution."""

    def __init__(self, page: PageContext | None = None, generator: GeneratorClient | None = None):
        self._page = page
        self._generator = generator

    async def __call__(self, payload: PagePayload, ctx: StrategyContext) -> Plan:
        meta = {"strategy": SOURCE, "source": SOURCE, "url": payload.url}
        product = pick_first_product(payload.jsonld)
        if product is None:
            logger.debug("No JSON-LD Product", url=payload.url)
            return Plan(is_pdp=False, meta=meta)

        extracted = extract_product_texts(product)
        targets = {key: text for key, text in extracted.items() if text}
        matches = await self._match(targets, ctx.tab_id)
        generated = await self._generate(payload, ctx, targets)

        fields: dict[str, PlanField] = {}
        patch: list[PatchStep] = []
        for key in FIELD_KEYS:
            selector = matches.get(key, {}).get("selector")
            raw = generated.get(key) or targets.get(key, "")
            if not (isinstance(selector, str) and selector and raw):
                continue
            is_html = key != "title"
            fields[key] = PlanField(
                selector=selector,
                html=is_html,
                extracted=targets.get(key),
                proposed=raw,
            )
            op = PatchOp.SET_HTML if is_html else PatchOp.SET_TEXT
            patch.append(PatchStep(selector=selector, op=op.value, value=raw))

        logger.info(
            "Structured data plan built",
            url=payload.url,
            targets=sorted(targets),
            fields=sorted(fields),
        )
        return Plan(is_pdp=True, fields=fields, patch=patch, meta=meta)

    async def _match(self, targets: dict[str, str], tab_id: int | None) -> dict[str, Any]:
        if self._page is None or tab_id is None or not targets:
            return {}
        try:
            return await self._page.execute(tab_id, match_targets, targets)
        except PdpKitError as e:
            logger.warning("Target matching failed", tab_id=tab_id, error=str(e))
            return {}

    async def _generate(
        self,
        payload: PagePayload,
        ctx: StrategyContext,
        targets: dict[str, str],
    ) -> dict[str, str]:
        if self._generator is None or not targets:
            return {}
        try:
            generated = await self._generator.generate(
                targets,
                trace_id=ctx.trace_id or make_trace_id(),
                url=payload.url,
                language=payload.language,
            )
        except PdpKitError as e:
            logger.warning("Structured data generation failed", url=payload.url, error=str(e))
            return {}
        return sanitize_generated_values(generated)
