"""
Tests for the plan resolution strategies and StrategyId parsing.

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-ID-01 | Canonical and alias ids | Equivalence – parse | Canonical StrategyId | - |
| TC-ID-02 | Unknown / empty id | Boundary – fallback | Default | - |
| TC-ID-03 | is_costly | Equivalence – classification | generator, vision only | - |
| TC-HS-01 | Sample PDP with generator | Equivalence – rewrite | is_pdp, 3 steps, denied value dropped | - |
| TC-HS-02 | Sample PDP, no generator | Equivalence – detect only | Fields, empty patch | - |
| TC-HS-03 | Root URL | Equivalence – not PDP | is_pdp False, no generate call | - |
| TC-HS-04 | Generator error | Equivalence – degraded | Empty patch, no raise | - |
| TC-HS-05 | No tab | Boundary – no page | No fields | - |
| TC-GS-01 | Valid backend plan | Equivalence – passthrough | Plan with meta.strategy, trace id | - |
| TC-GS-02 | Invalid backend plan | Equivalence – error | PlanValidationError raised | - |
| TC-SD-01 | Sample PDP, no generator | Equivalence – extracted values | Title step with JSON-LD name | - |
| TC-SD-02 | Sample PDP with generator | Equivalence – generated values | Generated title proposed | - |
| TC-SD-03 | No JSON-LD Product | Boundary – none | is_pdp False | - |
| TC-VI-01 | No capture provider | Boundary – missing | Warning "No tabId for OCR" | - |
| TC-VI-02 | Capture fails | Equivalence – error | Warning | - |
| TC-VI-03 | Empty screenshot | Boundary – empty | Warning | - |
| TC-VI-04 | OCR backend error | Equivalence – error | Warning | - |
| TC-VI-05 | Detections over element boxes | Equivalence – mapping | Fields and per-detection steps | - |
| TC-VI-06 | Detection overlapping nothing | Boundary – no overlap | Empty selector entry | - |
| TC-VI-07 | iou | Equivalence – geometry | 1 / 0 / partial | - |
"""

from unittest.mock import AsyncMock

import pytest

pytestmark = pytest.mark.unit

from pdpkit.errors import CaptureError, GeneratorError, PlanValidationError
from pdpkit.extractor.payload import build_payload
from pdpkit.strategy.base import StrategyContext, StrategyId
from pdpkit.strategy.generator import GeneratorStrategy
from pdpkit.strategy.heuristics import HeuristicsStrategy
from pdpkit.strategy.structured_data import StructuredDataStrategy
from pdpkit.strategy.vision import (
    WARN_BACKEND_ERROR,
    WARN_CAPTURE_FAILED,
    WARN_EMPTY_CAPTURE,
    WARN_NO_TAB,
    CaptureResult,
    ElementBox,
    VisionStrategy,
    iou,
    selectors_from_detections,
)

PDP_URL = "https://shop.example.com/products/red-running-shoes"
TAB = 1


@pytest.fixture
def loaded_context(page_context, pdp_html):
    page_context.load(TAB, pdp_html, PDP_URL)
    return page_context


def _ctx(strategy_id: StrategyId, tab_id: int | None = TAB) -> StrategyContext:
    return StrategyContext(strategy_id=strategy_id, tab_id=tab_id, trace_id="pdp-test")


# =============================================================================
# StrategyId
# =============================================================================


class TestStrategyId:
    """Id parsing and classification."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("heuristics", StrategyId.HEURISTICS),
            (" Structured_Data ", StrategyId.STRUCTURED_DATA),
            ("jsonld", StrategyId.STRUCTURED_DATA),
            ("LLMStrategy", StrategyId.GENERATOR),
            ("webllm", StrategyId.GENERATOR),
            ("ocr", StrategyId.VISION),
        ],
    )
    def test_parse(self, raw, expected):
        """TC-ID-01"""
        assert StrategyId.parse(raw) == expected

    def test_fallback(self):
        """TC-ID-02"""
        assert StrategyId.parse("teleport") == StrategyId.HEURISTICS
        assert StrategyId.parse(None) == StrategyId.HEURISTICS
        assert StrategyId.parse("", StrategyId.VISION) == StrategyId.VISION

    def test_is_costly(self):
        """TC-ID-03"""
        assert {s for s in StrategyId if s.is_costly} == {StrategyId.GENERATOR, StrategyId.VISION}


# =============================================================================
# Heuristics
# =============================================================================


class TestHeuristicsStrategy:
    """Signal verdict plus region discovery."""

    @pytest.mark.asyncio
    async def test_rewrite(self, loaded_context, pdp_html, mock_generator):
        """
        TC-HS-01: Detected PDP with generated values.

        Given: The sample PDP loaded in a tab and a generator returning one denied value
        When: The heuristics strategy runs
        Then: The plan is a PDP with steps for the three clean values only
        """
        # Given:
        mock_generator.generate.return_value = {
            "title": "Fast Red Shoes",
            "description": "<p>Light and quick.</p>",
            "shipping": "Ships free in 3 days.",
            "returns": "<script>x</script>",
        }
        strategy = HeuristicsStrategy(page=loaded_context, generator=mock_generator, generate=True)

        # When:
        plan = await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.HEURISTICS))

        # Then:
        assert plan.is_pdp is True
        assert plan.meta["strategy"] == "heuristics"
        assert {(s.selector, s.op) for s in plan.patch} == {
            ("#title", "setText"),
            (plan.fields["description"].selector, "setHTML"),
            ("#shipping-panel", "setHTML"),
        }
        assert plan.fields["title"].original == "Red Running Shoes"
        assert plan.fields["title"].proposed == "Fast Red Shoes"
        assert plan.fields["returns"].proposed == ""
        texts = mock_generator.generate.await_args.args[0]
        assert texts["title"] == "Red Running Shoes"
        assert mock_generator.generate.await_args.kwargs["trace_id"] == "pdp-test"

    @pytest.mark.asyncio
    async def test_detect_only(self, loaded_context, pdp_html):
        """TC-HS-02: Without a generator only selectors are produced."""
        strategy = HeuristicsStrategy(page=loaded_context, generator=None)

        plan = await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.HEURISTICS))

        assert plan.is_pdp is True
        assert plan.patch == []
        assert set(plan.fields) == {"title", "description", "shipping", "returns"}
        assert plan.fields["description"].html is True
        assert plan.fields["title"].html is False

    @pytest.mark.asyncio
    async def test_not_pdp(self, page_context, pdp_html, mock_generator):
        """TC-HS-03: Root URLs are never PDPs."""
        page_context.load(TAB, pdp_html, "https://shop.example.com/")
        strategy = HeuristicsStrategy(page=page_context, generator=mock_generator, generate=True)

        plan = await strategy(
            build_payload(pdp_html, "https://shop.example.com/"), _ctx(StrategyId.HEURISTICS)
        )

        assert plan.is_pdp is False
        assert plan.score == -10
        mock_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generator_error(self, loaded_context, pdp_html, mock_generator):
        """TC-HS-04: Generation failures degrade to detection only."""
        mock_generator.generate.side_effect = GeneratorError("down", "generate")
        strategy = HeuristicsStrategy(page=loaded_context, generator=mock_generator, generate=True)

        plan = await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.HEURISTICS))

        assert plan.patch == []
        assert plan.is_pdp is True

    @pytest.mark.asyncio
    async def test_no_tab(self, loaded_context, pdp_html):
        """TC-HS-05"""
        strategy = HeuristicsStrategy(page=loaded_context)

        plan = await strategy(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.HEURISTICS, tab_id=None)
        )

        assert plan.fields == {}


# =============================================================================
# Generator
# =============================================================================


class TestGeneratorStrategy:
    """Backend-provided plans."""

    @pytest.mark.asyncio
    async def test_valid_plan(self, pdp_html, mock_generator):
        """TC-GS-01"""
        mock_generator.analyze.return_value = {
            "is_pdp": True,
            "fields": {"title": {"selector": "#title", "proposed": "Fast Red Shoes"}},
            "patch": [{"selector": "#title", "op": "setText", "value": "Fast Red Shoes"}],
            "meta": {"model": "m1"},
        }
        strategy = GeneratorStrategy(client=mock_generator)

        plan = await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.GENERATOR))

        assert plan.is_pdp is True
        assert plan.patch[0].value == "Fast Red Shoes"
        assert plan.meta["strategy"] == "generator"
        assert plan.meta["model"] == "m1"
        assert plan.meta["trace_id"] == "pdp-test"
        payload_arg, trace_arg = mock_generator.analyze.await_args.args
        assert payload_arg.url == PDP_URL
        assert trace_arg == "pdp-test"

    @pytest.mark.asyncio
    async def test_invalid_plan(self, pdp_html, mock_generator):
        """TC-GS-02"""
        mock_generator.analyze.return_value = {"fields": {}}
        strategy = GeneratorStrategy(client=mock_generator)

        with pytest.raises(PlanValidationError):
            await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.GENERATOR))


# =============================================================================
# Structured data
# =============================================================================


class TestStructuredDataStrategy:
    """JSON-LD driven plans."""

    @pytest.mark.asyncio
    async def test_extracted_values(self, loaded_context, pdp_html):
        """
        TC-SD-01: Extracted texts are proposed without a generator.

        Given: The sample PDP with a JSON-LD Product
        When: The structured-data strategy runs without a generator
        Then: The title step writes the JSON-LD name to the matched heading
        """
        # Given:
        strategy = StructuredDataStrategy(page=loaded_context)

        # When:
        plan = await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.STRUCTURED_DATA))

        # Then:
        assert plan.is_pdp is True
        assert plan.meta["source"] == "structured_data"
        title_steps = [s for s in plan.patch if s.selector == "#title"]
        assert len(title_steps) == 1
        assert title_steps[0].op == "setText"
        assert title_steps[0].value == "Red Running Shoes"
        assert plan.fields["title"].extracted == "Red Running Shoes"
        assert "shipping" not in plan.fields

    @pytest.mark.asyncio
    async def test_generated_values(self, loaded_context, pdp_html, mock_generator):
        """TC-SD-02"""
        mock_generator.generate.return_value = {
            "title": "Fast Red Shoes",
            "description": "",
            "shipping": "",
            "returns": "",
        }
        strategy = StructuredDataStrategy(page=loaded_context, generator=mock_generator)

        plan = await strategy(build_payload(pdp_html, PDP_URL), _ctx(StrategyId.STRUCTURED_DATA))

        assert plan.fields["title"].proposed == "Fast Red Shoes"
        assert plan.fields["description"].proposed.startswith("Lightweight running shoes")
        targets = mock_generator.generate.await_args.args[0]
        assert set(targets) == {"title", "description"}

    @pytest.mark.asyncio
    async def test_no_product(self, page_context):
        """TC-SD-03"""
        html = "<html><body><h1>Blog</h1></body></html>"
        page_context.load(TAB, html, "https://blog.example.com/post")

        plan = await StructuredDataStrategy(page=page_context)(
            build_payload(html, "https://blog.example.com/post"),
            _ctx(StrategyId.STRUCTURED_DATA),
        )

        assert plan.is_pdp is False
        assert plan.patch == []


# =============================================================================
# Vision
# =============================================================================


DETECTIONS = [
    {"id": "d1", "type": "title", "bbox": {"x": 0, "y": 0, "width": 400, "height": 100},
     "proposed": "Short"},
    {"id": "d2", "type": "title", "bbox": {"x": 0, "y": 200, "width": 400, "height": 100},
     "proposed": "Much longer title"},
    {"id": "d3", "type": "description", "bbox": {"x": 0, "y": 400, "width": 1000, "height": 400},
     "proposed": "<p>Desc</p>"},
]
BOXES = [
    ElementBox(selector="#t1", x=0, y=0, width=200, height=50),
    ElementBox(selector="#t2", x=0, y=100, width=200, height=50),
    ElementBox(selector="#d", x=0, y=200, width=500, height=200),
]
IMAGE_META = {"image_pixel_width": 2000, "page_width_css": 1000, "device_pixel_ratio": 2}


@pytest.fixture
def capture() -> AsyncMock:
    provider = AsyncMock()
    provider.capture.return_value = CaptureResult(
        image_data_url="data:image/png;base64,AAAA", meta=IMAGE_META
    )
    provider.element_boxes.return_value = BOXES
    return provider


class TestVisionStrategy:
    """Screenshot to plan."""

    @pytest.mark.asyncio
    async def test_no_capture(self, pdp_html, mock_generator):
        """TC-VI-01"""
        plan = await VisionStrategy(capture=None, client=mock_generator)(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.VISION)
        )

        assert plan.is_pdp is False
        assert plan.warnings == [WARN_NO_TAB]

    @pytest.mark.asyncio
    async def test_capture_failed(self, pdp_html, capture, mock_generator):
        """TC-VI-02"""
        capture.capture.side_effect = CaptureError("tab hidden")

        plan = await VisionStrategy(capture=capture, client=mock_generator)(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.VISION)
        )

        assert plan.warnings == [WARN_CAPTURE_FAILED]

    @pytest.mark.asyncio
    async def test_empty_capture(self, pdp_html, capture, mock_generator):
        """TC-VI-03"""
        capture.capture.return_value = CaptureResult(image_data_url="")

        plan = await VisionStrategy(capture=capture, client=mock_generator)(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.VISION)
        )

        assert plan.warnings == [WARN_EMPTY_CAPTURE]
        mock_generator.ocr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backend_error(self, pdp_html, capture, mock_generator):
        """TC-VI-04"""
        mock_generator.ocr.side_effect = GeneratorError("Invalid OCR response", "ocr")

        plan = await VisionStrategy(capture=capture, client=mock_generator)(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.VISION)
        )

        assert plan.warnings == [WARN_BACKEND_ERROR]

    @pytest.mark.asyncio
    async def test_detections_to_plan(self, pdp_html, capture, mock_generator):
        """
        TC-VI-05: Detections mapped onto element boxes.

        Given: Two title detections and one description detection at 2x scale
        When: The vision strategy runs
        Then: Fields use the largest detection, the shortest title and one step per detection
        """
        # Given:
        mock_generator.ocr.return_value = DETECTIONS

        # When:
        plan = await VisionStrategy(capture=capture, client=mock_generator)(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.VISION)
        )

        # Then:
        assert plan.is_pdp is True
        assert plan.fields["title"].selector == "#t1"
        assert plan.fields["title"].proposed == "Short"
        assert plan.fields["description"].selector == "#d"
        assert plan.fields["description"].html is True
        assert [(s.selector, s.op, s.value) for s in plan.patch] == [
            ("#t1", "setText", "Short"),
            ("#t2", "setText", "Short"),
            ("#d", "setHTML", "<p>Desc</p>"),
        ]
        image_url, meta = mock_generator.ocr.await_args.args
        assert image_url.startswith("data:image/png")
        assert meta == IMAGE_META

    @pytest.mark.asyncio
    async def test_boxes_unavailable(self, pdp_html, capture, mock_generator):
        """Missing layout boxes leave every detection unmapped."""
        mock_generator.ocr.return_value = DETECTIONS
        capture.element_boxes.side_effect = CaptureError("no layout")

        plan = await VisionStrategy(capture=capture, client=mock_generator)(
            build_payload(pdp_html, PDP_URL), _ctx(StrategyId.VISION)
        )

        assert plan.is_pdp is False
        assert plan.patch == []


class TestVisionGeometry:
    """Pure mapping helpers."""

    def test_no_overlap(self):
        """TC-VI-06: An unmatched detection leaves an empty entry under its type."""
        detections = [{"type": "returns", "bbox": {"x": 5000, "y": 5000, "width": 10, "height": 10}}]

        mapped = selectors_from_detections(detections, {"device_pixel_ratio": 1}, BOXES)

        assert mapped == {"returns": {"selector": "", "score": 0}}

    def test_dpr_fallback(self):
        """Without page width the device pixel ratio scales boxes."""
        detections = [{"id": "a", "type": "title", "bbox": {"x": 0, "y": 0, "width": 400, "height": 100}}]

        mapped = selectors_from_detections(detections, {"device_pixel_ratio": 2}, BOXES)

        assert mapped["a"]["selector"] == "#t1"
        assert mapped["a"]["score"] == pytest.approx(1.0)

    def test_iou(self):
        """TC-VI-07"""
        assert iou((0, 0, 10, 10), (0, 0, 10, 10)) == 1.0
        assert iou((0, 0, 10, 10), (20, 20, 10, 10)) == 0.0
        assert iou((0, 0, 10, 10), (5, 0, 10, 10)) == pytest.approx(50 / 150)
        assert iou((0, 0, 0, 0), (0, 0, 0, 0)) == 0.0
