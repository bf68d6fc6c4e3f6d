"""
JSON-LD helpers: block extraction and Product text extraction.
"""

import json
import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_PRODUCT_TYPE = re.compile(r"Product$", re.IGNORECASE)


def parse_jsonld_text(text: str) -> Any | None:
    """Parse one JSON-LD block, retrying once with trailing commas stripped."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_TRAILING_COMMA.sub(r"\1", text))
    except json.JSONDecodeError as e:
        logger.debug("Unparseable JSON-LD block", error=str(e), length=len(text))
        return None


def extract_jsonld(root: BeautifulSoup | Tag) -> list[Any]:
    """Parse every `<script type="application/ld+json">` block under `root`."""
    blocks = []
    for script in root.find_all("script", attrs={"type": "application/ld+json"}):
        parsed = parse_jsonld_text(script.string or script.get_text())
        if parsed is not None:
            blocks.append(parsed)
    return blocks


def _is_product_type(value: Any) -> bool:
    if isinstance(value, str):
        return bool(_PRODUCT_TYPE.search(value))
    if isinstance(value, list):
        return any(isinstance(v, str) and _PRODUCT_TYPE.search(v) for v in value)
    return False


def pick_first_product(jsonld: list[Any]) -> dict[str, Any] | None:
    """Return the first node typed `...Product`, looking inside @graph arrays."""
    for item in jsonld:
        candidates = item if isinstance(item, list) else [item]
        for block in candidates:
            if not isinstance(block, dict):
                continue
            graph = block.get("@graph")
            nodes = graph if isinstance(graph, list) else [block]
            for node in nodes:
                if isinstance(node, dict) and _is_product_type(node.get("@type")):
                    return node
    return None


def _first_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return next((v for v in value if isinstance(v, str)), "")
    if isinstance(value, dict) and isinstance(value.get("@value"), str):
        return value["@value"]
    return ""


def _first_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, list):
        value = value[0] if value else None
    return value if isinstance(value, dict) else {}


def extract_product_texts(product: dict[str, Any]) -> dict[str, str]:
    """Pull title/description/shipping/returns texts out of a Product node.

    Shipping comes from offers.shippingDetails (or hasDeliveryMethod), returns
    from hasMerchantReturnPolicy (or returnPolicy / merchantReturnPolicy).
    """
    title = _first_string(product.get("name")) or _first_string(product.get("title"))
    description = _first_string(product.get("description"))

    offers = _first_dict(product.get("offers"))
    shipping_details = _first_dict(offers.get("shippingDetails") or offers.get("hasDeliveryMethod"))
    shipping = (
        _first_string(shipping_details.get("shippingLabel"))
        or _first_string(shipping_details.get("transitTime"))
        or _first_string(shipping_details.get("name"))
    )

    policy = _first_dict(
        product.get("hasMerchantReturnPolicy")
        or product.get("returnPolicy")
        or product.get("merchantReturnPolicy")
    )
    returns = (
        _first_string(policy.get("returnPolicyCategory"))
        or _first_string(policy.get("name"))
        or _first_string(policy.get("returnPolicySeasonalOverride"))
    )

    return {
        "title": title,
        "description": description,
        "shipping": shipping,
        "returns": returns,
    }
