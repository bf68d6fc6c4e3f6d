"""
Pytest fixtures and configuration for pdpkit tests.

Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  (DEFAULT: tests without a marker are classified as unit)
- @pytest.mark.integration: Multiple components wired together, external
  services (generator backend, screen capture) mocked

The generator backend is never contacted: httpx responses are mocked with
`MagicMock(spec=httpx.Response)` and strategies receive AsyncMock clients.
"""

import os
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Test configuration: repository config dir, no retry sleeps, no durable cache
os.environ["PDPKIT_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["PDPKIT_GENERAL__LOG_LEVEL"] = "DEBUG"
os.environ["PDPKIT_GENERATOR__RETRY_DELAY"] = "0.0"
os.environ["PDPKIT_PATCH__RETRY_DELAY_SECONDS"] = "0.0"
os.environ["PDPKIT_CACHE__DURABLE_ENABLED"] = "false"

from pdpkit.page.context import DocumentPageContext  # noqa: E402
from pdpkit.utils.schemas import StrategySettings  # noqa: E402

# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line("markers", "unit: Unit tests with no external dependencies")
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked external dependencies"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit classification marker are unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Sample Pages
# =============================================================================

PDP_HTML = """
<html lang="en">
<head>
  <title>Red Running Shoes | Example Shop</title>
  <meta property="og:type" content="product">
  <meta property="og:title" content="Red Running Shoes">
  <script type="application/ld+json">
  {"@context": "https://schema.org", "@type": "Product", "name": "Red Running Shoes",
   "description": "Lightweight running shoes with a breathable mesh upper.",
   "offers": {"@type": "Offer", "price": "59.99", "priceCurrency": "USD"}}
  </script>
</head>
<body>
  <header><nav><a href="/returns">Returns</a></nav></header>
  <main>
    <h1 id="title">Red Running Shoes</h1>
    <span class="price">$59.99</span>
    <button id="add-to-cart">Add to cart</button>
    <div class="product-description">Lightweight running shoes with a breathable mesh upper
      and a cushioned sole for long distance training on road and track.</div>
    <h3>Shipping</h3>
    <div id="shipping-panel">Free shipping on orders over $50. Standard delivery takes 3-5 days
      and express delivery is available at checkout for a small fee.</div>
    <h3>Returns</h3>
    <div id="returns-panel">Returns are accepted within 30 days of delivery. Refund is issued to
      the original payment method once the item is received.</div>
  </main>
  <footer class="footer">Unrelated Footer Text</footer>
</body>
</html>
"""


@pytest.fixture
def pdp_html() -> str:
    """A small product detail page."""
    return PDP_HTML


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Temporary directory for test files."""
    return tmp_path


@pytest.fixture
def page_context() -> DocumentPageContext:
    """Empty in-process page context."""
    return DocumentPageContext()


@pytest.fixture
def make_settings():
    """Factory for StrategySettings accessors."""

    def _make(global_id: str = "heuristics", per_domain=None, allowlist=None):
        settings = StrategySettings.model_validate(
            {
                "global": global_id,
                "perDomain": per_domain or [],
                "allowlist": allowlist or [],
            }
        )
        return lambda: settings

    return _make


@pytest.fixture
def mock_generator() -> AsyncMock:
    """Generator client mock with empty default responses."""
    generator = AsyncMock()
    generator.analyze.return_value = {"is_pdp": False, "fields": {}, "patch": []}
    generator.generate.return_value = {"title": "", "description": "", "shipping": "", "returns": ""}
    generator.ocr.return_value = []
    return generator


@pytest.fixture
def make_mock_response():
    """Factory for httpx.Response mocks."""
    import httpx

    def _make(json_data, status: int = 200):
        response = MagicMock(spec=httpx.Response)
        response.status_code = status
        response.json.return_value = json_data
        if status >= 400:
            request = httpx.Request("POST", "http://generator.test")
            real = httpx.Response(status, request=request)
            response.raise_for_status.side_effect = httpx.HTTPStatusError(
                f"HTTP {status}", request=request, response=real
            )
        else:
            response.raise_for_status.return_value = None
        return response

    return _make


# =============================================================================
# Singleton Reset Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset settings cache and module singletons between tests."""
    from pdpkit import generator_client
    from pdpkit.utils.config import get_settings
    from pdpkit.utils.strategy_settings import reset_strategy_settings_store

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    reset_strategy_settings_store()
    # Synchronous reset; clients created in tests are closed by the tests
    generator_client._client = None
