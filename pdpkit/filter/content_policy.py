"""
Content-injection policy for pdpkit.

A narrow denylist, not an HTML sanitizer:
- DENIED_CONTENT_PATTERNS guard every patch value at apply time
- GENERATOR_DENIED_PATTERNS additionally screen proposals coming back from
  the generator backend (script-capable APIs and browser globals)

Also validates raw generator output into a Plan.
"""

import re
from typing import Any

from pdpkit.errors import PlanValidationError
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import FIELD_KEYS, PatchOp, PatchStep, Plan, PlanField

logger = get_logger(__name__)


# ============================================================================
# Constants
# ============================================================================

DENIED_CONTENT_PATTERNS = [
    r"<script",
    r"javascript:",
    r"on\w+=",  # inline event handlers
    r"<iframe",
    r"<object",
]

GENERATOR_DENIED_PATTERNS = DENIED_CONTENT_PATTERNS + [
    r"fetch\(",
    r"XMLHttpRequest",
    r"WebSocket",
    r"eval",
    r"Function",
    r"import\(",
    r"window\.",
    r"document\.write",
    r"chrome\.",
    r"browser\.",
]

_DENIED_REGEX = re.compile("|".join(f"(?:{p})" for p in DENIED_CONTENT_PATTERNS), re.IGNORECASE)
_GENERATOR_DENIED_REGEX = re.compile(
    "|".join(f"(?:{p})" for p in GENERATOR_DENIED_PATTERNS), re.IGNORECASE
)

_PLAN_FIELD_STRINGS = ("selector", "selector_note", "original", "extracted", "proposed")


def is_denied(value: str) -> bool:
    """Check a patch value against the content-injection denylist."""
    return bool(_DENIED_REGEX.search(value))


def is_generator_denied(value: str) -> bool:
    """Check a generator proposal against the extended denylist."""
    return bool(_GENERATOR_DENIED_REGEX.search(value))


def _coerce_field(raw: dict[str, Any]) -> PlanField:
    data: dict[str, Any] = {}
    for name in _PLAN_FIELD_STRINGS:
        value = raw.get(name)
        if isinstance(value, str):
            data[name] = value
    data["html"] = raw.get("html") is True
    return PlanField(**data)


def _filter_patch(raw_patch: Any) -> tuple[list[PatchStep], int]:
    if not isinstance(raw_patch, list):
        return [], 0
    allowed = {op.value for op in PatchOp}
    steps = []
    dropped = 0
    for item in raw_patch:
        if (
            isinstance(item, dict)
            and isinstance(item.get("selector"), str)
            and item.get("op") in allowed
        ):
            steps.append(PatchStep.model_validate(item))
        else:
            dropped += 1
    return steps, dropped


def validate_generator_plan(raw: Any) -> Plan:
    """Turn a backend response into a Plan.

    - `is_pdp` must be a boolean, otherwise PlanValidationError
    - patch entries without a string selector or a supported op are dropped
    - field proposals matching the extended denylist are blanked

    Args:
        raw: Parsed JSON response.

    Returns:
        Validated Plan.

    Raises:
        PlanValidationError: If the response has no boolean is_pdp.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("is_pdp"), bool):
        raise PlanValidationError("Invalid plan: is_pdp must be a boolean")

    fields: dict[str, PlanField] = {}
    blanked = []
    raw_fields = raw.get("fields") if isinstance(raw.get("fields"), dict) else {}
    for key in FIELD_KEYS:
        raw_field = raw_fields.get(key)
        if not isinstance(raw_field, dict):
            continue
        plan_field = _coerce_field(raw_field)
        if plan_field.proposed and is_generator_denied(plan_field.proposed):
            plan_field.proposed = ""
            blanked.append(key)
        fields[key] = plan_field

    patch, dropped = _filter_patch(raw.get("patch"))

    if blanked or dropped:
        logger.info(
            "Generator plan filtered",
            blanked_fields=blanked,
            dropped_steps=dropped,
        )

    meta = dict(raw["meta"]) if isinstance(raw.get("meta"), dict) else {}
    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None
    warnings = raw.get("warnings") if isinstance(raw.get("warnings"), list) else []
    echoed = {k: raw[k] for k in ("language", "url", "trace_id") if isinstance(raw.get(k), str)}
    return Plan(
        is_pdp=raw["is_pdp"],
        confidence=confidence,
        fields=fields,
        patch=patch,
        meta=meta,
        warnings=[w for w in warnings if isinstance(w, str)],
        **echoed,
    )


def sanitize_generated_values(values: Any) -> dict[str, str]:
    """Keep string values for known fields, dropping denied ones."""
    if not isinstance(values, dict):
        return {}
    out = {}
    for key in FIELD_KEYS:
        value = values.get(key)
        if isinstance(value, str) and value and not is_generator_denied(value):
            out[key] = value
    return out
