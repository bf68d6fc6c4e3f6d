"""
Heuristics strategy.

Scores the page with the signal classifier, then discovers the title,
description, shipping and returns regions in the page. When the page is a
PDP and a generator is configured, the region texts are rewritten and turned
into a patch; otherwise the plan carries selectors only (empty patch).

Verdict:
    gate   = score > threshold or strong_product
    is_pdp = gate and score >= pdp_min_score and strong_product
"""

from typing import Any

from bs4 import Tag

from pdpkit.errors import PdpKitError
from pdpkit.extractor.panels import discover_field_selectors
from pdpkit.extractor.selector_matcher import safe_select
from pdpkit.extractor.signals import SignalClassifier, get_signal_classifier
from pdpkit.filter.content_policy import sanitize_generated_values
from pdpkit.generator_client import GeneratorClient
from pdpkit.page.context import PageContext
from pdpkit.patch.engine import read_html, read_text
from pdpkit.strategy.base import StrategyContext
from pdpkit.utils.config import get_settings
from pdpkit.utils.domain_pattern import make_trace_id
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import PagePayload, PatchOp, PatchStep, Plan, PlanField

logger = get_logger(__name__)

HTML_FIELDS = frozenset({"description", "shipping", "returns"})


def read_field_texts(root: Tag, selectors: dict[str, str]) -> dict[str, dict[str, str]]:
    """Page-side: current text and markup of each selected region."""
    out = {}
    for key, selector in selectors.items():
        nodes = safe_select(root, selector)
        if not nodes:
            continue
        out[key] = {"text": read_text(nodes[0]).strip(), "html": read_html(nodes[0])}
    return out


class HeuristicsStrategy:
    """Rule-based PDP detection and region discovery."""

    def __init__(
        self,
        page: PageContext | None = None,
        generator: GeneratorClient | None = None,
        classifier: SignalClassifier | None = None,
        threshold: int | None = None,
        pdp_min_score: int | None = None,
        generate: bool | None = None,
    ):
        settings = get_settings()
        self._page = page
        self._generator = generator
        self._classifier = classifier or get_signal_classifier()
        self.threshold = settings.signals.min_score_to_continue if threshold is None else threshold
        self.pdp_min_score = (
            settings.signals.pdp_min_score if pdp_min_score is None else pdp_min_score
        )
        self.generate = settings.strategy.heuristics_generate if generate is None else generate

    async def __call__(self, payload: PagePayload, ctx: StrategyContext) -> Plan:
        signals = self._classifier.evaluate(payload.url, payload.signal_html)
        gate = signals.passes_gate(self.threshold)
        is_pdp = gate and signals.score >= self.pdp_min_score and signals.strong_product

        fields = await self._discover_fields(ctx.tab_id)
        patch: list[PatchStep] = []
        if is_pdp and fields and self.generate and self._generator is not None:
            patch = await self._rewrite(payload, ctx, fields)

        logger.info(
            "Heuristics verdict",
            url=payload.url,
            score=signals.score,
            strong=signals.strong_product,
            vendor=signals.vendor,
            is_pdp=is_pdp,
            fields=sorted(fields),
            steps=len(patch),
        )
        return Plan(
            is_pdp=is_pdp,
            score=signals.score,
            fields=fields,
            patch=patch,
            meta={"strategy": "heuristics", "url": payload.url, "signals": signals.to_dict()},
        )

    async def _discover_fields(self, tab_id: int | None) -> dict[str, PlanField]:
        if self._page is None or tab_id is None:
            return {}
        try:
            selectors = await self._page.execute(tab_id, discover_field_selectors)
        except PdpKitError as e:
            logger.warning("Field discovery failed", tab_id=tab_id, error=str(e))
            return {}
        return {
            key: PlanField(selector=selector, html=key in HTML_FIELDS)
            for key, selector in selectors.items()
        }

    async def _rewrite(
        self,
        payload: PagePayload,
        ctx: StrategyContext,
        fields: dict[str, PlanField],
    ) -> list[PatchStep]:
        assert self._page is not None and self._generator is not None and ctx.tab_id is not None
        selectors = {key: f.selector for key, f in fields.items()}
        current: dict[str, Any] = await self._page.execute(ctx.tab_id, read_field_texts, selectors)

        for key, texts in current.items():
            fields[key].extracted = texts["text"]
            fields[key].original = texts["html"] if fields[key].html else texts["text"]

        try:
            generated = await self._generator.generate(
                {key: texts["text"] for key, texts in current.items()},
                trace_id=ctx.trace_id or make_trace_id(),
                url=payload.url,
                language=payload.language,
            )
        except PdpKitError as e:
            logger.warning("Heuristics generation failed", url=payload.url, error=str(e))
            return []

        values = sanitize_generated_values(generated)
        patch = []
        for key, plan_field in fields.items():
            value = values.get(key)
            if not value:
                continue
            plan_field.proposed = value
            op = PatchOp.SET_HTML if plan_field.html else PatchOp.SET_TEXT
            patch.append(PatchStep(selector=plan_field.selector, op=op.value, value=value))
        return patch
