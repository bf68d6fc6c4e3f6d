"""
PDP Signal Classifier for pdpkit.

Scores a (URL, HTML excerpt) pair for "Product Detail Page" likelihood.

The score is a signed sum of positive evidence minus an anti-score:
- URL guards: root, /ref= and account/cart-like routes short-circuit negative
- Vendor profiles: canonical PDP URL shapes of large marketplaces
- Structured data: JSON-LD Product/Offer/AggregateRating, og:type, microdata
- Page shape: headline, SKU/variants, call-to-action density
- List-page markers: grid density gated by facets/pagination/sort controls

The classifier is pure and deterministic. It never raises; malformed input
degrades to whatever score was accumulated before the failure.
"""

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from pdpkit.utils.config import get_settings
from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

HTML_MAX_CHARS = 320_000
DEFAULT_ANTI_CEILING = 6

# Vendors whose pages legitimately carry several Product nodes and rel=next links
_CAROUSEL_VENDORS = ("Amazon", "eBay")


@dataclass(frozen=True)
class VendorProfile:
    """Fingerprint of a known e-commerce site."""

    name: str
    host: re.Pattern[str] | None  # None = host-agnostic, gated by fingerprint
    pdp_path: re.Pattern[str]
    buybox: re.Pattern[str]
    boost: int
    anti_cap: int
    extra: re.Pattern[str] | None = None
    fingerprint: re.Pattern[str] | None = None

    @property
    def is_marketplace(self) -> bool:
        return self.host is not None


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


VENDOR_PROFILES: tuple[VendorProfile, ...] = (
    VendorProfile(
        name="Amazon",
        host=_rx(r"(^|\.)amazon\."),
        pdp_path=_rx(r"/(dp|gp/product)/"),
        buybox=_rx(
            r"\b(add-to-cart-button|buy-now-button|buybox"
            r"|data-feature-name=[\"']?(buybox|addToCart)|id=[\"']?twister)\b"
        ),
        boost=3,
        anti_cap=5,
    ),
    VendorProfile(
        name="eBay",
        host=_rx(r"(^|\.)ebay\."),
        pdp_path=_rx(r"/itm(/|$)"),
        buybox=_rx(
            r"\b(id|name)=[\"']?(isCartBtn_btn|binBtn_btn|atcRedesignId_btn"
            r"|vi_.*?(Cart|Bin)|isCartBtn)\b"
        ),
        extra=_rx(r"\baria-label=[\"']?(Add to cart|Buy it now)"),
        boost=3,
        anti_cap=5,
    ),
    VendorProfile(
        name="Walmart",
        host=_rx(r"(^|\.)walmart\."),
        pdp_path=_rx(r"/ip/|/seller/|/product/|/browse/product"),
        buybox=_rx(
            r"\b(data-automation-id|id)=[\"']?(add-to-cart|cta-button|buybox|add-to-cart-button)\b"
        ),
        extra=_rx(r"\bitemprop=[\"']?sku\b"),
        boost=2,
        anti_cap=6,
    ),
    VendorProfile(
        name="Target",
        host=_rx(r"(^|\.)target\."),
        pdp_path=_rx(r"/p/|/product/"),
        buybox=_rx(r"\bdata-test=[\"']?(addToCartButton|addToCart|buyNowButton)\b"),
        extra=_rx(r"\bitemprop=[\"']?(sku|brand|name)\b"),
        boost=2,
        anti_cap=6,
    ),
    VendorProfile(
        name="BestBuy",
        host=_rx(r"(^|\.)bestbuy\."),
        pdp_path=_rx(r"/site/.+/\d+\.p"),
        buybox=_rx(r"\bdata-sku-id=|\bclass=[\"'][^\"']*\badd-to-cart-button\b"),
        boost=2,
        anti_cap=6,
    ),
    VendorProfile(
        name="MercadoLibre",
        host=_rx(r"(^|\.)mercadolibre\."),
        pdp_path=_rx(r"/p/|/item/|/ML[A-Z]-\d+"),
        buybox=_rx(
            r"\b(id|data-testid)=[\"']?(buy-now|add-to-cart|vip-buy-box|vip-action-primary)\b"
        ),
        extra=_rx(r"\bitemprop=[\"']?(sku|brand|name)\b"),
        boost=2,
        anti_cap=6,
    ),
    VendorProfile(
        name="AliExpress",
        host=_rx(r"(^|\.)aliexpress\."),
        pdp_path=_rx(r"/item/|/i/\d+.html"),
        buybox=_rx(r"\b(add-to-cart|buy-now|product-buy|buy-now-btn)\b"),
        boost=2,
        anti_cap=6,
    ),
    VendorProfile(
        name="Etsy",
        host=_rx(r"(^|\.)etsy\."),
        pdp_path=_rx(r"/listing/\d+"),
        buybox=_rx(r"\b(add-to-cart|add-to-basket|buy-it-now|data-buy-box)\b"),
        extra=_rx(r"\bitemprop=[\"']?(sku|name)\b"),
        boost=2,
        anti_cap=6,
    ),
    VendorProfile(
        name="ShopifyGeneric",
        host=None,
        # /products/<handle>; collections live under /collections/
        pdp_path=_rx(r"/products/[^/?#]+(?:$|[?#])"),
        buybox=_rx(r"\b(name|id)=[\"']?(add|Add)To(Cart|Bag)\b|form[^>]+action=\"/cart/add\""),
        fingerprint=_rx(r"(Shopify|shopify)\b|x-shopid|x-shopify|cdn\.shopify\.com"),
        boost=2,
        anti_cap=6,
    ),
)


# URL guards
_REF_PATH = re.compile(r"^/ref=")
_ROUTE_KEYWORDS = _rx(
    r"\b(cart|checkout|basket|account|orders?|login|register|help|support|search|wishlist)\b"
)
_CATEGORY_PATH = _rx(
    r"\b(collections?|categories?|category|catalog|tienda|shop|brand|tags?|list|offers?)\b"
)

# Structured data / meta
_JSONLD_PRODUCT = _rx(r"\"@type\"\s*:\s*\"Product\"")
_JSONLD_ITEM_LIST = _rx(r"\"@type\"\s*:\s*\"(ItemList|CollectionPage)\"")
_JSONLD_OFFER = _rx(r"\"@type\"\s*:\s*\"Offer\"")
_JSONLD_NESTED_OFFER = _rx(r"\"offers\"\s*:\s*{[^}]*\"@type\"\s*:\s*\"Offer\"")
_JSONLD_AGG_RATING = _rx(r"\"@type\"\s*:\s*\"AggregateRating\"")
_OG_PRODUCT = _rx(r"property=\"og:type\"[^>]*content=\"product(\.group)?\"")
_MICRODATA_PRODUCT = _rx(r"itemtype\s*=\s*\"[^\"]*schema\.org/Product")
_PRICE_META = _rx(r"property=\"(product:price:amount|og:price:amount)\"")

# Headline
_H1_TAG = _rx(r"<h1\b[^>]*>")
_HEADLINE = _rx(r"(<h1[\s>]|itemprop=\"name\"|data-(test|qa)[^>]*title|aria-label=\"[^\"]{5,200}\")")

# SKU / variants
_SKU_TOKEN = _rx(r"\b(sku|mpn|model|ref\.?)\s*[:#\-\s]")
_SKU_ITEMPROP = _rx(r"itemprop=\"sku\"")
_VARIANTS = _rx(
    r"(select[^>]+name=\"[^\"]*(size|color)\b|aria-label=\"[^\"]*\b(Size|Color)\b|id=[\"']?twister)"
)

# Calls to action (EN/ES) and marketplace button ids
_CTA_COMMON = _rx(
    r"\b(add to (cart|bag)|buy now|comprar(?: ahora| ya)?"
    r"|añadir al (carrito|cesta|bolsa)|agregar al (carrito|cesta|bolsa))\b"
)
_CTA_VENDOR_IDS = _rx(
    r"\b(add-to-cart-button|buy-now-button|isCartBtn_btn|binBtn_btn|atcRedesignId_btn)\b"
)

# Grid density
_PRICE_TOKEN = _rx(r"(?:[$€£]\s?\d[\d.,]*)|(?:\b\d[\d.,]*\s?(?:USD|EUR|GBP)\b)")
_PRODUCT_CARD = _rx(
    r"(data-product-card|class=\"[^\"]*\b(product-card|grid__item|product-tile)\b|data-sku=)"
)
_THUMBNAIL = _rx(r"class=\"[^\"]*\b(product(-)?image|thumb|thumbnail)\b")

# List-page markers
_FACETS = _rx(r"(data-facet|class=\"[^\"]*\b(facet|filters)\b|aria-label=\"[^\"]*\bFilter\b)")
_PAGINATION = (_rx(r"class=\"[^\"]*\bpagination\b"), _rx(r"aria-label=\"[^\"]*\bPagination\b"))
_SORT_BY = (
    _rx(r"\bSort\s+by\b"),
    _rx(r"aria-label=\"[^\"]*\bSort\b"),
    _rx(r"id=[\"']?s-result-sort"),
)
_REL_PAGING = (_rx(r"<link[^>]+rel=\"next\""), _rx(r"<link[^>]+rel=\"prev\""))

# Weak positives
_SHIPPING = _rx(r"(shipping|env[ií]o|delivery|entrega|despacho)")
_RETURNS = _rx(r"(returns?|devoluci[oó]n(?:es)?|cambios?|reembolsos?)")
_REVIEW_COUNT = (_rx(r"\b\d{1,4}\s*(reviews?|reseñas)\b"), _rx(r"itemprop=\"reviewCount\""))


@dataclass
class SignalResult:
    """Outcome of a signal evaluation."""

    score: int
    strong_product: bool
    vendor: str | None = None
    anti: int = 0

    def passes_gate(self, threshold: int) -> bool:
        """Whether a costly strategy is worth running for this page."""
        return self.score > threshold or self.strong_product

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "strong_product": self.strong_product,
            "vendor": self.vendor,
            "anti": self.anti,
        }


def _count(pattern: re.Pattern[str], text: str) -> int:
    return sum(1 for _ in pattern.finditer(text))


def _any(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


class SignalClassifier:
    """Heuristic PDP scorer over raw HTML text."""

    def __init__(self, html_max_chars: int = HTML_MAX_CHARS):
        self.html_max_chars = html_max_chars
        self.vendor_profiles = VENDOR_PROFILES

    def evaluate(self, url: str | None, html_excerpt: str | None) -> SignalResult:
        """Score a page for PDP likelihood.

        Args:
            url: Page URL.
            html_excerpt: Raw or sanitized HTML.

        Returns:
            SignalResult with the signed score and strong_product flag.
        """
        state = _ScoreState()
        url = url or ""
        try:
            html = (html_excerpt or "")[: self.html_max_chars]
            guard = self._apply_url_guards(url, state)
            if guard is not None:
                return guard
            self._score(url, html, state)
        except Exception as e:
            logger.debug("Signal evaluation failed", url=url, error=str(e))

        result = SignalResult(
            score=state.score - state.anti,
            strong_product=state.strong,
            vendor=state.vendor.name if state.vendor else None,
            anti=state.anti,
        )
        logger.debug(
            "Signal evaluation complete",
            url=url,
            score=result.score,
            anti=result.anti,
            vendor=result.vendor,
            strong_product=result.strong_product,
        )
        return result

    def _apply_url_guards(self, url: str, state: "_ScoreState") -> SignalResult | None:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            # Unparseable URL: no guards, no vendor match
            return None

        state.host = parsed.hostname or ""
        state.path = parsed.path or ""

        if state.path in ("", "/"):
            logger.debug("Anti signal: root path", url=url)
            return SignalResult(score=-10, strong_product=False)
        if _REF_PATH.search(state.path):
            logger.debug("Anti signal: ref path", url=url)
            return SignalResult(score=-8, strong_product=False)
        if _ROUTE_KEYWORDS.search(url):
            logger.debug("Anti signal: route keyword", url=url)
            return SignalResult(score=-10, strong_product=False)
        if _CATEGORY_PATH.search(state.path):
            state.anti += 2
            logger.debug("Anti signal: category-ish path", path=state.path)
        return None

    def _match_vendor(self, html: str, state: "_ScoreState") -> None:
        for profile in self.vendor_profiles:
            if profile.host is not None and not profile.host.search(state.host):
                continue
            if not profile.pdp_path.search(state.path):
                continue
            if profile.fingerprint is not None and not profile.fingerprint.search(html):
                continue

            state.vendor = profile
            state.score += profile.boost
            state.strong = True
            has_buybox = bool(profile.buybox.search(html))
            has_extra = bool(profile.extra and profile.extra.search(html))
            if has_buybox:
                state.score += 2
            if has_extra:
                state.score += 1
            # Vendor pages tolerate more density before looking like a list
            state.anti = max(0, state.anti - 2)
            logger.debug(
                "Vendor PDP match",
                vendor=profile.name,
                boost=profile.boost,
                buybox=has_buybox,
                extra=has_extra,
            )
            return

    def _score(self, url: str, html: str, state: "_ScoreState") -> None:
        self._match_vendor(html, state)
        vendor = state.vendor
        carousel_vendor = vendor is not None and vendor.name in _CAROUSEL_VENDORS

        # Structured data / meta
        product_count = _count(_JSONLD_PRODUCT, html)
        has_offer = bool(_JSONLD_OFFER.search(html) or _JSONLD_NESTED_OFFER.search(html))
        has_agg_rating = bool(_JSONLD_AGG_RATING.search(html))
        has_price_meta = bool(_PRICE_META.search(html))

        if product_count == 1:
            state.score += 3
            state.strong = True
        elif product_count > 1 and not carousel_vendor:
            state.anti += min(4, max(1, product_count - 1))
            logger.debug("Anti signal: multiple Product nodes", count=product_count)
        if _JSONLD_ITEM_LIST.search(html) and not (vendor and vendor.is_marketplace):
            state.anti += 3
            logger.debug("Anti signal: ItemList/CollectionPage")
        if has_offer:
            state.score += 2
        if has_agg_rating:
            state.score += 2
        if _OG_PRODUCT.search(html):
            state.score += 2
            state.strong = True
        if _MICRODATA_PRODUCT.search(html):
            state.score += 2
            state.strong = True
        if has_price_meta:
            state.score += 1

        # Headline
        h1_count = _count(_H1_TAG, html)
        if h1_count == 1:
            state.score += 1
        elif h1_count >= 3:
            state.anti += 2
            logger.debug("Anti signal: many h1", count=h1_count)
        has_headline = bool(_HEADLINE.search(html))

        # SKU / variants
        has_sku = bool(_SKU_TOKEN.search(html) or _SKU_ITEMPROP.search(html))
        has_variants = bool(_VARIANTS.search(html))
        if has_sku:
            state.score += 2
        if has_variants:
            state.score += 2

        # CTA density
        cta_count = _count(_CTA_COMMON, html) + _count(_CTA_VENDOR_IDS, html)
        if cta_count > 0:
            state.score += 2
        if vendor is None:
            if cta_count >= 3:
                state.anti += 2
            if cta_count >= 8:
                state.anti += 2

        # Grid density, penalized hard only on pages with list controls
        price_count = _count(_PRICE_TOKEN, html)
        card_hints = _count(_PRODUCT_CARD, html)
        thumb_hints = _count(_THUMBNAIL, html)
        has_list_markers = (
            bool(_FACETS.search(html)) or _any(_PAGINATION, html) or _any(_SORT_BY, html)
        )
        looks_like_list = has_list_markers and vendor is None
        list_density = card_hints + thumb_hints + price_count // 12
        if looks_like_list and (card_hints >= 6 or price_count >= 28 or list_density >= 12):
            state.anti += 4
            logger.debug(
                "Anti signal: gated list density",
                cards=card_hints,
                prices=price_count,
                thumbs=thumb_hints,
                density=list_density,
            )
        elif not looks_like_list and card_hints >= 20 and price_count >= 60 and vendor is None:
            state.anti += 2
            logger.debug("Anti signal: extreme density", cards=card_hints, prices=price_count)

        if _any(_REL_PAGING, html) and not carousel_vendor:
            state.anti += 2

        # Weak positives
        if _SHIPPING.search(html):
            state.score += 1
        if _RETURNS.search(html):
            state.score += 1
        has_price = price_count > 0 or has_price_meta
        if has_headline and has_price:
            state.score += 2
        if _any(_REVIEW_COUNT, html):
            state.score += 1

        if vendor is not None and has_price:
            state.anti = min(state.anti, vendor.anti_cap)

        ceiling = vendor.anti_cap if vendor is not None else DEFAULT_ANTI_CEILING
        path_a = (
            state.strong
            and (has_offer or has_agg_rating or h1_count == 1)
            and state.anti <= ceiling
        )
        path_b = has_headline and has_price and (has_sku or has_variants) and state.anti <= ceiling - 1
        if path_a:
            state.score += 3
        if path_b:
            state.score += 2


@dataclass
class _ScoreState:
    score: int = 0
    anti: int = 0
    strong: bool = False
    host: str = ""
    path: str = ""
    vendor: VendorProfile | None = None


_classifier: SignalClassifier | None = None


def get_signal_classifier() -> SignalClassifier:
    """Get or create the global SignalClassifier instance."""
    global _classifier
    if _classifier is None:
        _classifier = SignalClassifier(html_max_chars=get_settings().signals.html_max_chars)
    return _classifier


def evaluate_pdp_signals(url: str | None, html_excerpt: str | None) -> SignalResult:
    """Convenience function to score a page with the global classifier."""
    return get_signal_classifier().evaluate(url, html_excerpt)
