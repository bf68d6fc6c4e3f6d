"""
Page payload builder.

Produces the PagePayload strategies receive:
- url, document title, og/twitter meta
- html_excerpt: reduced HTML (no scripts/media, only id/class attributes,
  no empty elements, minified whitespace) suitable for a generator backend
- language from <html lang>, JSON-LD blocks
- html_raw: the unreduced markup, kept local for signal scoring
"""

import re

from bs4 import BeautifulSoup, Comment, Tag

from pdpkit.extractor.jsonld import extract_jsonld
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import PagePayload

logger = get_logger(__name__)

FORBIDDEN_TAGS = (
    "script",
    "style",
    "noscript",
    "template",
    "iframe",
    "object",
    "embed",
    "svg",
    "canvas",
    "picture",
    "source",
)
KEPT_ATTRIBUTES = frozenset({"id", "class"})
DEFAULT_LANGUAGE = "en"

_META_KEYS = {
    "ogTitle": "og:title",
    "ogDescription": "og:description",
    "twTitle": "twitter:title",
    "twDescription": "twitter:description",
}
_BETWEEN_TAGS = re.compile(r">\s+<")
_MULTI_SPACE = re.compile(r"\s{2,}")
_NO_SPACE = re.compile(r"\s+")


def _meta_content(soup: BeautifulSoup, key: str) -> str | None:
    tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
    if isinstance(tag, Tag):
        content = tag.get("content")
        if isinstance(content, str) and content:
            return content
    return None


def extract_meta(soup: BeautifulSoup) -> dict[str, str]:
    """og/twitter title and description, omitting absent ones."""
    meta = {}
    for name, key in _META_KEYS.items():
        value = _meta_content(soup, key)
        if value is not None:
            meta[name] = value
    return meta


def sanitize_html(html: str) -> str:
    """Reduce a page to a compact, script-free body excerpt."""
    soup = BeautifulSoup(html, "html.parser")
    body = soup.body or soup

    for tag in body.find_all(list(FORBIDDEN_TAGS)):
        tag.decompose()

    for comment in body.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    elements = [body, *body.find_all(True)] if isinstance(body, Tag) else body.find_all(True)
    for el in elements:
        el.attrs = {k: v for k, v in el.attrs.items() if k.lower() in KEPT_ATTRIBUTES}

    # bottom-up so parents emptied by this pass are removed too
    for el in reversed(body.find_all(True)):
        has_children = any(isinstance(c, Tag) for c in el.children)
        if not has_children and not _NO_SPACE.sub("", el.get_text()):
            el.decompose()

    reduced = _BETWEEN_TAGS.sub("><", str(body))
    return _MULTI_SPACE.sub(" ", reduced)


def build_payload(html: str, url: str, language: str | None = None) -> PagePayload:
    """Build the strategy payload for a page.

    Args:
        html: Full page HTML.
        url: Page URL.
        language: Override for the document language.

    Returns:
        PagePayload.
    """
    soup = BeautifulSoup(html, "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text().strip() if isinstance(title_tag, Tag) else ""

    if language is None:
        html_tag = soup.find("html")
        lang = html_tag.get("lang") if isinstance(html_tag, Tag) else None
        language = lang if isinstance(lang, str) and lang else DEFAULT_LANGUAGE

    payload = PagePayload(
        url=url,
        title=title,
        meta=extract_meta(soup),
        html_excerpt=sanitize_html(html),
        language=language,
        jsonld=extract_jsonld(soup),
        html_raw=html,
    )
    logger.debug(
        "Payload built",
        url=url,
        html_len=len(html),
        excerpt_len=len(payload.html_excerpt),
        jsonld_blocks=len(payload.jsonld),
    )
    return payload
