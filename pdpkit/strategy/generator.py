"""
Generator strategy: the backend analyzes the page payload and returns a plan.

The response is validated before use (boolean is_pdp, patch filtered to
supported ops, denylisted proposals blanked).
"""

from pdpkit.filter.content_policy import validate_generator_plan
from pdpkit.generator_client import GeneratorClient, get_generator_client
from pdpkit.strategy.base import StrategyContext
from pdpkit.utils.domain_pattern import make_trace_id
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import PagePayload, Plan

logger = get_logger(__name__)


class GeneratorStrategy:
    """Plan resolution delegated to the generator backend."""

    def __init__(self, client: GeneratorClient | None = None):
        self._client = client

    @property
    def client(self) -> GeneratorClient:
        if self._client is None:
            self._client = get_generator_client()
        return self._client

    async def __call__(self, payload: PagePayload, ctx: StrategyContext) -> Plan:
        trace_id = ctx.trace_id or make_trace_id()
        raw = await self.client.analyze(payload, trace_id)
        plan = validate_generator_plan(raw)

        meta = {"strategy": "generator", "url": payload.url, **plan.meta, "trace_id": trace_id}
        logger.info(
            "Generator plan received",
            url=payload.url,
            is_pdp=plan.is_pdp,
            steps=len(plan.patch),
            trace_id=trace_id,
        )
        return plan.model_copy(update={"meta": meta})
