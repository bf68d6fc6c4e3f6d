"""
Heuristic discovery of PDP content regions.

Finds selectors for the title, description, shipping and returns regions
of a product page without any target text:

- title: first heading-like element (h1/h2, itemprop=name, *title test ids)
- description: longest known description container, else the best text
  block near the title (boosted by "About this item"-style headings), else
  the block following such a heading
- shipping/returns: trigger elements (headings, tabs, buttons, summaries)
  whose text names the topic, resolved to their panel and scored by
  EN/ES keyword evidence; page chrome (header/nav/footer) is excluded
"""

import re

from bs4 import BeautifulSoup, Tag

from pdpkit.extractor.selector_matcher import build_stable_selector, is_visible, safe_select
from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

TITLE_QUERY = 'h1, h2, [itemprop="name"], [data-test*="title"], [data-qa*="title"]'
DESCRIPTION_QUERY = ", ".join(
    [
        '[itemprop="description"]',
        ".product-description",
        ".product__description",
        "#description",
        '[id*="description" i]',
        '[class*="description" i]',
        "#descripcion",
        '[id*="descripci" i]',
        '[class*="descripci" i]',
        '[id*="about" i]',
        '[class*="about" i]',
        '[id*="details" i]',
        '[class*="details" i]',
        '[id*="overview" i]',
        '[class*="overview" i]',
        '[id*="specifications" i]',
        '[class*="specifications" i]',
    ]
)
TRIGGER_QUERY = 'h1, h2, h3, h4, h5, button, [role="tab"], a, summary, [aria-controls]'

MIN_BLOCK_TEXT = 120
MIN_PANEL_TEXT = 60
MIN_PANEL_SCORE = 4

_STRONG_HEADING = re.compile(r"(about\s+this\s+item|product\s+details|key\s+features)", re.I)
_DESCRIPTION_HEADING = re.compile(
    r"(description|details|about|product|overview|specifications)"
    r"|(descripci[oó]n|detalles|acerca|resumen|caracter[ií]sticas|especificaciones)",
    re.I,
)
_FALLBACK_HEADING = re.compile(
    r"(about\s+this\s+item|product\s+details|key\s+features|overview|specifications)", re.I
)
_HEADING_TAG = re.compile(r"^(h[1-6]|summary|button)$", re.I)
_DECORATIVE_TAG = re.compile(r"^(svg|img|picture)$", re.I)
_PANEL_CLASS = re.compile(r"panel|content|section|tab|accordion", re.I)
_FOOTER_CLASS = re.compile(r"\bfooter\b")

_PANEL_KEYWORDS = {
    "shipping": {
        "trigger": re.compile(r"shipping|env[ií]o|envios|env[íi]os|delivery|entrega|despacho", re.I),
        "core": re.compile(r"(shipping|env[ií]o|envios|env[íi]os|delivery|entrega|despacho)", re.I),
        "extra": re.compile(
            r"(free|gratis|cost|costo|precio|fee|tarifa|times?|tiempo|d[ií]as|days|method"
            r"|m[eé]todo|carrier|courier|polic[yí]a|pol[ií]tica)",
            re.I,
        ),
        "hint": re.compile(r"(ship|envio|delivery|entrega|despacho)", re.I),
    },
    "returns": {
        "trigger": re.compile(r"returns?|devoluci[oó]n(?:es)?|cambios?|reembolsos?", re.I),
        "core": re.compile(r"(returns?|devoluci[oó]n(?:es)?|cambios?|reembolsos?)", re.I),
        "extra": re.compile(
            r"(policy|pol[ií]tica|period|plazo|days|d[ií]as|refund|exchange|replace|cambio|reembolso)",
            re.I,
        ),
        "hint": re.compile(r"(return|devolu|reembolso|cambio)", re.I),
    },
}


def _text(el: Tag | None) -> str:
    return el.get_text().strip() if el is not None else ""


def _class_string(el: Tag) -> str:
    classes = el.get("class") or []
    return " ".join(classes) if isinstance(classes, list) else str(classes)


def _previous_elements(el: Tag, limit: int):
    prev = el.find_previous_sibling()
    hops = 0
    while prev is not None and hops < limit:
        yield prev
        prev = prev.find_previous_sibling()
        hops += 1


def _next_content_sibling(el: Tag) -> Tag | None:
    sibling = el.find_next_sibling()
    while sibling is not None and _DECORATIVE_TAG.match(sibling.name or ""):
        sibling = sibling.find_next_sibling()
    return sibling


def _heading_hint(el: Tag) -> int:
    for prev in _previous_elements(el, 4):
        if _HEADING_TAG.match(prev.name or ""):
            text = _text(prev).lower()
            if _STRONG_HEADING.search(text):
                return 5
            if _DESCRIPTION_HEADING.search(text):
                return 3
    return 0


def _longest_visible(nodes: list[Tag]) -> Tag | None:
    best, best_len = None, 0
    for node in nodes:
        if not is_visible(node):
            continue
        length = len(_text(node))
        if length > best_len:
            best, best_len = node, length
    return best


def _in_page_chrome(el: Tag) -> bool:
    node = el
    for _ in range(6):
        if not isinstance(node, Tag) or isinstance(node, BeautifulSoup):
            return False
        if node.name in ("footer", "nav", "header"):
            return True
        if node.get("role") == "navigation":
            return True
        if _FOOTER_CLASS.search(_class_string(node).lower()):
            return True
        node = node.parent
    return False


def find_title(root: Tag) -> Tag | None:
    title = root.select_one(TITLE_QUERY)
    if title is not None and is_visible(title):
        return title
    return None


def find_description(root: Tag, title: Tag | None) -> Tag | None:
    description = _longest_visible(safe_select(root, DESCRIPTION_QUERY))

    if description is None and title is not None:
        scope = title.find_parent(["section", "main", "article"]) or root.find("body") or root
        best, best_score = None, 0
        for block in scope.find_all(["p", "div", "section", "ul"]):
            if not is_visible(block):
                continue
            is_list = block.name == "ul"
            length = len(_text(block))
            if not ((is_list and len(block.find_all("li")) >= 3) or length >= MIN_BLOCK_TEXT):
                continue
            bonus = _heading_hint(block)
            list_boost = 400 if is_list and bonus >= 3 else 0
            score = length + bonus * 200 + list_boost
            if score > best_score:
                best, best_score = block, score
        description = best

    if description is None:
        for heading in root.find_all(["h1", "h2", "h3", "h4", "h5", "summary", "button"]):
            if _FALLBACK_HEADING.search(_text(heading).lower()):
                sibling = _next_content_sibling(heading)
                if sibling is not None and is_visible(sibling):
                    description = sibling
                break

    return description


def find_panel_for_trigger(root: Tag, trigger: Tag) -> Tag | None:
    """Resolve the content panel a trigger element controls."""
    controls = trigger.get("aria-controls")
    if isinstance(controls, str) and controls:
        panel = root.find(id=controls)
        if isinstance(panel, Tag):
            return panel

    sibling = _next_content_sibling(trigger)
    if sibling is not None:
        return sibling

    parent = trigger.parent
    for _ in range(4):
        if not isinstance(parent, Tag) or isinstance(parent, BeautifulSoup):
            break
        if _PANEL_CLASS.search(_class_string(parent)):
            return parent
        parent = parent.parent
    return None


def score_panel(el: Tag | None, kind: str) -> int:
    """Evidence that `el` is a shipping/returns panel; -1 when unusable."""
    if el is None or not is_visible(el) or _in_page_chrome(el):
        return -1
    text = _text(el).lower()
    if len(text) < MIN_PANEL_TEXT:
        return -1

    keywords = _PANEL_KEYWORDS[kind]
    id_and_class = f"{el.get('id') or ''} {_class_string(el)}".lower()
    score = 0
    if keywords["core"].search(text):
        score += 3
    if keywords["extra"].search(text):
        score += 2
    if keywords["hint"].search(id_and_class):
        score += 2
    score += min(3, len(text) // 400)
    return score


def find_panel(root: Tag, kind: str) -> Tag | None:
    trigger_pattern = _PANEL_KEYWORDS[kind]["trigger"]
    best, best_score = None, -1
    for trigger in root.select(TRIGGER_QUERY):
        if not trigger_pattern.search(_text(trigger)) or _in_page_chrome(trigger):
            continue
        panel = find_panel_for_trigger(root, trigger)
        score = score_panel(panel, kind)
        if score > best_score:
            best, best_score = panel, score
    if best is not None and best_score >= MIN_PANEL_SCORE:
        return best
    return None


def discover_field_selectors(root: Tag) -> dict[str, str]:
    """Page-side entry point: selectors for the PDP regions found in `root`."""
    found: dict[str, Tag | None] = {}
    title = find_title(root)
    found["title"] = title
    found["description"] = find_description(root, title)
    found["shipping"] = find_panel(root, "shipping")
    found["returns"] = find_panel(root, "returns")

    selectors = {key: build_stable_selector(el) for key, el in found.items() if el is not None}
    logger.debug("Field selectors discovered", fields=sorted(selectors))
    return selectors
