"""
Patch engine for pdpkit.

Applies a list of PatchSteps to a parsed document and records, per step,
what was there before and what was written. The ApplySummary is the only
input needed to undo (build_inverse) or redo (build_reapply) a patch.

Step pipeline (each step is isolated; a failure never aborts the rest):
1. resolve selector (first match, or every match with allMatches)
2. value must be a string
3. empty value skipped unless allowEmpty
4. denylisted value skipped ("value denied by policy")
5. capture prev (text for setText, inner HTML for setHTML)
6. write, optionally wrapped in the highlight container
"""

import time
from collections.abc import Callable, Sequence
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

from pdpkit.filter.content_policy import is_denied
from pdpkit.utils.config import get_settings
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import (
    ApplySummary,
    PatchOp,
    PatchStep,
    Plan,
    StepResult,
    StepStatus,
)

logger = get_logger(__name__)

NOTE_SELECTOR_NOT_FOUND = "selector not found"
NOTE_VALUE_NOT_STRING = "value not string"
NOTE_EMPTY_VALUE = "empty value"
NOTE_DENIED = "value denied by policy"
NOTE_UNKNOWN_OP = "unknown op"
NOTE_VALUES_MISMATCH = "values count mismatch"

WRAP_ATTR = "data-pdp"

# Receives markup about to be parsed into the page; returns the markup to use
MarkupPolicy = Callable[[str], str]


class _StepSkipped(Exception):
    def __init__(self, note: str):
        self.note = note
        super().__init__(note)


def _parse_fragment(markup: str) -> list[Any]:
    fragment = BeautifulSoup(markup, "html.parser")
    return [child.extract() for child in list(fragment.contents)]


def read_text(node: Tag) -> str:
    """textContent of a node."""
    return node.get_text()


def read_html(node: Tag) -> str:
    """innerHTML of a node."""
    return node.decode_contents()


class PatchEngine:
    """Applies patches to a BeautifulSoup tree and synthesizes undo/redo patches."""

    def __init__(
        self,
        wrap_values: bool | None = None,
        wrap_style: str | None = None,
        markup_policy: MarkupPolicy | None = None,
    ):
        """Initialize the engine.

        Args:
            wrap_values: Wrap written values in the highlight container.
                Uses settings if None.
            wrap_style: Inline style of the highlight container.
            markup_policy: Hook every setHTML markup passes through before
                it is parsed into the page (trusted-markup path).
        """
        settings = get_settings().patch
        self.wrap_values = settings.wrap_values if wrap_values is None else wrap_values
        self.wrap_style = settings.wrap_style if wrap_style is None else wrap_style
        self._markup_policy = markup_policy

    # -------------------------------------------------------------------------
    # apply
    # -------------------------------------------------------------------------

    def apply(self, patch: Sequence[PatchStep | dict[str, Any]], root: Tag) -> ApplySummary:
        """Apply patch steps in order.

        Args:
            patch: Steps to apply.
            root: Document (or subtree) the selectors are resolved against.

        Returns:
            ApplySummary with one result per step, in input order.
        """
        started = time.perf_counter()
        results: list[StepResult] = []

        for index, raw_step in enumerate(patch):
            step = raw_step if isinstance(raw_step, PatchStep) else PatchStep.model_validate(raw_step)
            results.append(self._apply_step(index, step, root))

        summary = ApplySummary(
            steps_total=len(results),
            steps_applied=sum(1 for r in results if r.status == StepStatus.APPLIED),
            steps_skipped=sum(1 for r in results if r.status == StepStatus.SKIPPED),
            steps_error=sum(1 for r in results if r.status == StepStatus.ERROR),
            took_ms=round((time.perf_counter() - started) * 1000, 3),
            results=results,
        )
        logger.debug(
            "Patch applied",
            total=summary.steps_total,
            applied=summary.steps_applied,
            skipped=summary.steps_skipped,
            errors=summary.steps_error,
            took_ms=summary.took_ms,
        )
        return summary

    def _apply_step(self, index: int, step: PatchStep, root: Tag) -> StepResult:
        base = {"index": index, "selector": step.selector, "op": step.op}
        try:
            nodes = self._resolve(step, root)
            values = self._values_for(step, nodes)
            for value in values:
                self._check_value(value, step)
            for value in values:
                if is_denied(value):
                    logger.info("Patch step denied by content policy", index=index, selector=step.selector)
                    raise _StepSkipped(NOTE_DENIED)
            if step.op not in (PatchOp.SET_TEXT.value, PatchOp.SET_HTML.value):
                raise _StepSkipped(NOTE_UNKNOWN_OP)

            wrapped = self.wrap_values and not step.no_prefix
            prevs: list[str] = []
            written: list[str] = []
            for node, value in zip(nodes, values):
                if step.op == PatchOp.SET_TEXT.value:
                    prevs.append(read_text(node))
                    self._set_text(node, value, wrapped)
                    written.append(value)
                else:
                    prevs.append(read_html(node))
                    written.append(self._set_html(node, value, wrapped))
        except _StepSkipped as skip:
            return StepResult(**base, status=StepStatus.SKIPPED, note=skip.note)
        except Exception as e:
            logger.warning("Patch step failed", index=index, selector=step.selector, error=str(e))
            return StepResult(**base, status=StepStatus.ERROR, note=str(e))

        return StepResult(
            **base,
            status=StepStatus.APPLIED,
            prev=prevs[0],
            value=written[0],
            wrapped=wrapped,
            matched=len(nodes),
            prev_all=prevs if step.all_matches else None,
            value_all=written if step.all_matches else None,
        )

    def _resolve(self, step: PatchStep, root: Tag) -> list[Tag]:
        if step.all_matches:
            nodes = root.select(step.selector)
        else:
            node = root.select_one(step.selector)
            nodes = [node] if node is not None else []
        if not nodes:
            raise _StepSkipped(NOTE_SELECTOR_NOT_FOUND)
        return nodes

    def _values_for(self, step: PatchStep, nodes: list[Tag]) -> list[Any]:
        if step.all_matches and step.values is not None:
            if len(step.values) != len(nodes):
                raise _StepSkipped(NOTE_VALUES_MISMATCH)
            return list(step.values)
        return [step.value] * len(nodes)

    def _check_value(self, value: Any, step: PatchStep) -> None:
        if not isinstance(value, str):
            raise _StepSkipped(NOTE_VALUE_NOT_STRING)
        if value == "" and not step.allow_empty:
            raise _StepSkipped(NOTE_EMPTY_VALUE)

    def _set_text(self, node: Tag, value: str, wrapped: bool) -> None:
        node.clear()
        if wrapped:
            factory = BeautifulSoup("", "html.parser")
            note = factory.new_tag(
                "div", attrs={WRAP_ATTR: "1", "role": "note", "style": self.wrap_style}
            )
            note.append(NavigableString(value))
            node.append(note)
        elif value:
            node.append(NavigableString(value))

    def _set_html(self, node: Tag, value: str, wrapped: bool) -> str:
        markup = value
        if wrapped:
            markup = f'<div {WRAP_ATTR}="1" style="{self.wrap_style}">{value}</div>'
        trusted = self._markup_policy(markup) if self._markup_policy else markup
        node.clear()
        for child in _parse_fragment(trusted):
            node.append(child)
        return markup

    # -------------------------------------------------------------------------
    # undo / redo synthesis
    # -------------------------------------------------------------------------

    def build_inverse(self, plan: Plan, summary: ApplySummary) -> Plan:
        """Build a patch that restores the content replaced by `summary`'s applied steps."""
        steps: list[PatchStep] = []
        for result in summary.results:
            if result.status != StepStatus.APPLIED or not result.selector or not result.op:
                continue
            if result.prev_all is not None:
                steps.append(
                    PatchStep(
                        selector=result.selector,
                        op=result.op,
                        value=result.prev,
                        values=list(result.prev_all),
                        all_matches=True,
                        no_prefix=True,
                        allow_empty=True,
                    )
                )
            elif result.prev is not None:
                steps.append(
                    PatchStep(
                        selector=result.selector,
                        op=result.op,
                        value=result.prev,
                        no_prefix=True,
                        allow_empty=True,
                    )
                )
            else:
                plan_field = plan.field_for_selector(result.selector)
                if plan_field is None:
                    continue
                steps.append(
                    PatchStep(
                        selector=plan_field.selector,
                        op=PatchOp.SET_HTML.value if plan_field.html else PatchOp.SET_TEXT.value,
                        value=plan_field.original or "",
                        no_prefix=True,
                        allow_empty=True,
                    )
                )
        return plan.model_copy(update={"patch": steps}, deep=True)

    def build_reapply(self, plan: Plan, summary: ApplySummary) -> Plan:
        """Build a patch that writes `summary`'s applied values again.

        setHTML results recorded the written markup (already wrapped), so
        they are replayed verbatim. setText results recorded the raw value
        and are re-wrapped the same way they were the first time.
        """
        steps: list[PatchStep] = []
        for result in summary.results:
            if result.status != StepStatus.APPLIED or not result.selector or not result.op:
                continue
            if result.value is not None:
                verbatim = result.op == PatchOp.SET_HTML.value or not result.wrapped
                steps.append(
                    PatchStep(
                        selector=result.selector,
                        op=result.op,
                        value=result.value,
                        values=list(result.value_all) if result.value_all is not None else None,
                        all_matches=result.value_all is not None,
                        no_prefix=verbatim,
                    )
                )
            else:
                plan_field = plan.field_for_selector(result.selector)
                if plan_field is None:
                    continue
                steps.append(
                    PatchStep(
                        selector=plan_field.selector,
                        op=PatchOp.SET_HTML.value if plan_field.html else PatchOp.SET_TEXT.value,
                        value=plan_field.proposed,
                    )
                )
        return plan.model_copy(update={"patch": steps}, deep=True)

    def enrich_originals(self, plan: Plan, root: Tag) -> Plan:
        """Fill Field.original from the document where it is missing."""
        enriched = plan.model_copy(deep=True)
        for plan_field in enriched.fields.values():
            if plan_field.original is not None or not plan_field.selector:
                continue
            try:
                node = root.select_one(plan_field.selector)
            except Exception as e:
                logger.debug("Field selector failed", selector=plan_field.selector, error=str(e))
                continue
            if node is not None:
                plan_field.original = read_html(node) if plan_field.html else read_text(node)
        return enriched


_engine: PatchEngine | None = None


def get_patch_engine() -> PatchEngine:
    """Get or create the global PatchEngine instance."""
    global _engine
    if _engine is None:
        _engine = PatchEngine()
    return _engine
