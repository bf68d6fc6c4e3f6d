"""
Vision strategy.

A full-page screenshot is sent to the backend OCR endpoint, which returns
region detections with bounding boxes in image pixels. Each detection is
mapped to the page element whose CSS-pixel box overlaps it best (IoU).

Per field type the proposal is the shortest non-empty one for the title and
the longest for the other fields; the field selector is the one of the
largest detection. Every mapped detection also gets its own patch step so
repeated regions are covered.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from pdpkit.errors import CaptureError, GeneratorError
from pdpkit.generator_client import GeneratorClient, get_generator_client
from pdpkit.strategy.base import StrategyContext
from pdpkit.utils.domain_pattern import make_trace_id
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import FIELD_KEYS, PagePayload, PatchOp, PatchStep, Plan, PlanField

logger = get_logger(__name__)

SOURCE = "vision"

WARN_NO_TAB = "No tabId for OCR"
WARN_CAPTURE_FAILED = "Screenshot capture failed"
WARN_EMPTY_CAPTURE = "Empty screenshot"
WARN_BACKEND_ERROR = "OCR backend error"


@dataclass
class CaptureResult:
    """Screenshot as a data URL plus its geometry."""

    image_data_url: str
    # image_pixel_width/height, device_pixel_ratio, page_width_css/height_css
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ElementBox:
    """Page element with its box in CSS pixels (page coordinates)."""

    selector: str
    x: float
    y: float
    width: float
    height: float


class ScreenCapture(Protocol):
    """Screenshot and layout provider for a tab."""

    async def capture(self, tab_id: int) -> CaptureResult: ...

    async def element_boxes(self, tab_id: int) -> list[ElementBox]: ...


def detection_key(detection: dict[str, Any]) -> str:
    """Identity of a detection: its id, else `type:x,y`."""
    if detection.get("id"):
        return str(detection["id"])
    bbox = detection.get("bbox") or {}
    return f"{detection.get('type')}:{bbox.get('x')},{bbox.get('y')}"


def iou(a: tuple[float, float, float, float], b: tuple[float, float, float, float]) -> float:
    """Intersection over union of two (x, y, w, h) boxes."""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    iw = max(0.0, min(ax + aw, bx + bw) - max(ax, bx))
    ih = max(0.0, min(ay + ah, by + bh) - max(ay, by))
    inter = iw * ih
    union = aw * ah + bw * bh - inter
    return inter / union if union > 0 else 0.0


def selectors_from_detections(
    detections: list[dict[str, Any]],
    image_meta: dict[str, Any],
    boxes: list[ElementBox],
) -> dict[str, dict[str, Any]]:
    """Map detections to element selectors by best IoU.

    Image-pixel boxes are scaled to CSS pixels with image_pixel_width /
    page_width_css (device_pixel_ratio when either is missing). A detection
    overlapping nothing leaves an empty entry under its type.
    """
    pixel_width = image_meta.get("image_pixel_width")
    page_width = image_meta.get("page_width_css")
    if pixel_width and page_width:
        scale = pixel_width / page_width
    else:
        scale = image_meta.get("device_pixel_ratio") or 1

    out: dict[str, dict[str, Any]] = {}
    for detection in detections:
        bbox = detection.get("bbox") or {}
        try:
            rect = tuple(float(bbox.get(k) or 0) / scale for k in ("x", "y", "width", "height"))
        except (TypeError, ValueError):
            continue

        best: ElementBox | None = None
        best_score = 0.0
        for box in boxes:
            score = iou((box.x, box.y, box.width, box.height), rect)
            if score > best_score:
                best, best_score = box, score

        if best is not None:
            out[detection_key(detection)] = {"selector": best.selector, "score": best_score}
        elif detection.get("type") and detection["type"] not in out:
            out[detection["type"]] = {"selector": "", "score": 0}
    return out


def _pick_proposals(detections: list[dict[str, Any]]) -> dict[str, str]:
    proposals: dict[str, str] = {}
    for detection in detections:
        kind = detection.get("type")
        if not isinstance(kind, str) or not kind:
            continue
        proposed = detection.get("proposed")
        proposed = proposed if isinstance(proposed, str) else ""
        if kind not in proposals:
            proposals[kind] = proposed
        elif proposed and kind == "title":
            if not proposals[kind] or len(proposed) < len(proposals[kind]):
                proposals[kind] = proposed
        elif proposed and len(proposed) > len(proposals[kind]):
            proposals[kind] = proposed
    return proposals


def _selector_for(detection: dict[str, Any], selector_map: dict[str, dict[str, Any]]) -> str:
    entry = selector_map.get(detection_key(detection)) or selector_map.get(detection["type"]) or {}
    return entry.get("selector") or ""


def build_vision_plan(
    detections: list[dict[str, Any]],
    selector_map: dict[str, dict[str, Any]],
    url: str,
) -> Plan:
    """Assemble fields and patch from mapped detections."""
    proposals = _pick_proposals(detections)
    typed = [d for d in detections if isinstance(d.get("type"), str) and d["type"] in FIELD_KEYS]

    primary: dict[str, tuple[str, float]] = {}
    for detection in typed:
        selector = _selector_for(detection, selector_map)
        if not selector:
            continue
        bbox = detection.get("bbox") or {}
        area = max(1.0, float(bbox.get("width") or 0) * float(bbox.get("height") or 0))
        current = primary.get(detection["type"])
        if current is None or area > current[1]:
            primary[detection["type"]] = (selector, area)

    fields: dict[str, PlanField] = {}
    for key in FIELD_KEYS:
        proposed = proposals.get(key, "")
        if key in primary and proposed:
            fields[key] = PlanField(selector=primary[key][0], html=key != "title", proposed=proposed)

    patch: list[PatchStep] = []
    for detection in typed:
        selector = _selector_for(detection, selector_map)
        proposed = proposals.get(detection["type"], "")
        if not selector or not proposed:
            continue
        op = PatchOp.SET_TEXT if detection["type"] == "title" else PatchOp.SET_HTML
        patch.append(PatchStep(selector=selector, op=op.value, value=proposed))

    return Plan(
        is_pdp=bool(fields),
        fields=fields,
        patch=patch,
        meta={"strategy": SOURCE, "source": SOURCE, "url": url},
    )


class VisionStrategy:
    """Screenshot and OCR driven plan resolution."""

    def __init__(self, capture: ScreenCapture | None = None, client: GeneratorClient | None = None):
        self._capture = capture
        self._client = client

    @property
    def client(self) -> GeneratorClient:
        if self._client is None:
            self._client = get_generator_client()
        return self._client

    def _empty(self, url: str, warning: str) -> Plan:
        return Plan(
            is_pdp=False,
            warnings=[warning],
            meta={"strategy": SOURCE, "source": SOURCE, "url": url},
        )

    async def __call__(self, payload: PagePayload, ctx: StrategyContext) -> Plan:
        if ctx.tab_id is None or self._capture is None:
            return self._empty(payload.url, WARN_NO_TAB)

        try:
            capture = await self._capture.capture(ctx.tab_id)
        except CaptureError as e:
            logger.warning("Screenshot capture failed", tab_id=ctx.tab_id, error=str(e))
            return self._empty(payload.url, WARN_CAPTURE_FAILED)
        if not capture.image_data_url:
            return self._empty(payload.url, WARN_EMPTY_CAPTURE)

        trace_id = ctx.trace_id or make_trace_id()
        try:
            detections = await self.client.ocr(
                capture.image_data_url,
                capture.meta,
                trace_id=trace_id,
                url=payload.url,
                language=payload.language,
            )
        except GeneratorError as e:
            logger.warning("OCR backend error", url=payload.url, error=str(e), trace_id=trace_id)
            return self._empty(payload.url, WARN_BACKEND_ERROR)

        try:
            boxes = await self._capture.element_boxes(ctx.tab_id)
        except CaptureError as e:
            logger.warning("Element boxes unavailable", tab_id=ctx.tab_id, error=str(e))
            boxes = []

        selector_map = selectors_from_detections(detections, capture.meta, boxes)
        plan = build_vision_plan(detections, selector_map, payload.url)
        logger.info(
            "Vision plan built",
            url=payload.url,
            detections=len(detections),
            fields=sorted(plan.fields),
            steps=len(plan.patch),
            trace_id=trace_id,
        )
        return plan
