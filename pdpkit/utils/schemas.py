"""
Pydantic schemas for data exchanged between pdpkit modules.

Wire names follow the JSON shapes used by strategies and the generator
backend (camelCase aliases such as `allowEmpty`, `perDomain`, `strategyId`).
Dump with `model_dump(by_alias=True, exclude_none=True)` for the wire form.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

FIELD_KEYS = ("title", "description", "shipping", "returns")


class PatchOp(str, Enum):
    """Supported patch operations."""

    SET_TEXT = "setText"
    SET_HTML = "setHTML"


class StepStatus(str, Enum):
    """Outcome of a single patch step."""

    PENDING = "pending"
    APPLIED = "applied"
    SKIPPED = "skipped"
    ERROR = "error"


class PatchStep(BaseModel):
    """One DOM mutation instruction.

    `value` is untyped: a non-string value is skipped at apply time with
    note "value not string" instead of failing plan validation.
    """

    model_config = ConfigDict(populate_by_name=True)

    selector: str
    op: str
    value: Any = None
    allow_empty: bool = Field(default=False, alias="allowEmpty")
    no_prefix: bool = Field(default=False, alias="noPrefix")
    all_matches: bool = Field(default=False, alias="allMatches")
    # Per-node values for all-matches steps (node order of select())
    values: list[str] | None = None


class PlanField(BaseModel):
    """Extraction/rewrite data for one content region."""

    model_config = ConfigDict(populate_by_name=True)

    selector: str = ""
    selector_note: str = ""
    original: str | None = None
    extracted: str | None = None
    proposed: str = ""
    html: bool = False


class Plan(BaseModel):
    """Canonical output of a strategy."""

    model_config = ConfigDict(populate_by_name=True)

    is_pdp: bool = False
    confidence: float | None = None
    score: float | None = None
    fields: dict[str, PlanField] = Field(default_factory=dict)
    patch: list[PatchStep] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    # Echoed back by generator backends
    language: str | None = None
    url: str | None = None
    trace_id: str | None = None

    @field_validator("fields")
    @classmethod
    def validate_field_keys(cls, v: dict[str, PlanField]) -> dict[str, PlanField]:
        unknown = set(v) - set(FIELD_KEYS)
        if unknown:
            raise ValueError(f"Unknown plan field(s): {sorted(unknown)}")
        return v

    @field_validator("patch")
    @classmethod
    def validate_patch_ops(cls, v: list[PatchStep]) -> list[PatchStep]:
        allowed = {op.value for op in PatchOp}
        for step in v:
            if step.op not in allowed:
                raise ValueError(f"Unsupported patch op: {step.op}")
        return v

    def field_for_selector(self, selector: str) -> PlanField | None:
        """Return the first field whose selector equals `selector`."""
        for plan_field in self.fields.values():
            if plan_field.selector and plan_field.selector == selector:
                return plan_field
        return None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StepResult(BaseModel):
    """Recorded outcome of one patch step."""

    model_config = ConfigDict(frozen=True)

    index: int
    selector: str
    op: str
    status: StepStatus = StepStatus.PENDING
    note: str = ""
    prev: str | None = None
    value: str | None = None
    # Whether the written value is the engine's highlight container
    wrapped: bool = False
    matched: int = 0
    prev_all: list[str] | None = None
    value_all: list[str] | None = None


class ApplySummary(BaseModel):
    """Result of one PatchEngine.apply() call. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    steps_total: int = 0
    steps_applied: int = 0
    steps_skipped: int = 0
    steps_error: int = 0
    took_ms: float = 0.0
    results: list[StepResult] = Field(default_factory=list)
    world: str | None = None
    attempts: int = 1


class DomainStrategyRule(BaseModel):
    """Host pattern to strategy id mapping."""

    model_config = ConfigDict(populate_by_name=True)

    pattern: str
    strategy_id: str = Field(alias="strategyId")


class StrategySettings(BaseModel):
    """Strategy selection settings, persisted by StrategySettingsStore."""

    model_config = ConfigDict(populate_by_name=True)

    global_id: str = Field(default="heuristics", alias="global")
    per_domain: list[DomainStrategyRule] = Field(default_factory=list, alias="perDomain")
    # Host patterns where processing runs at all (empty = everywhere)
    allowlist: list[str] = Field(default_factory=list)


class PagePayload(BaseModel):
    """Page snapshot handed to strategies."""

    url: str
    title: str = ""
    meta: dict[str, str] = Field(default_factory=dict)
    html_excerpt: str = ""
    language: str = ""
    jsonld: list[Any] = Field(default_factory=list)
    # Unreduced markup; local only, never serialized to a backend
    html_raw: str | None = Field(default=None, exclude=True)

    @property
    def signal_html(self) -> str:
        """Markup the signal classifier scores."""
        return self.html_raw if self.html_raw is not None else self.html_excerpt
