"""
Fuzzy selector matching for pdpkit.

Maps free-text targets (a product title taken from JSON-LD, a shipping
blurb, ...) onto the visible page element whose text matches best, and
builds a stable CSS selector for that element.

Score per (candidate text c, target text t):
    0.5 * exact + 0.2 * jaccard + 0.2 * trigram_cosine + 0.1 * lev_score

- exact: normalized c contains normalized t
- jaccard: token-set Jaccard on non-alphanumeric splits
- trigram_cosine: cosine of padded character trigram counts
- lev_score: 1 - min(1, levenshtein(c, t) / max(len(c), len(t)))

The scoring functions are pure. Candidate collection and selector
construction need the parsed document (BeautifulSoup tree).
"""

import math
import re
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup, Tag

from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

CANDIDATE_TAGS = ("h1", "h2", "h3", "p", "div", "span", "li", "dd", "dt", "strong", "em")
MIN_CANDIDATE_TEXT = 2
MAX_CHAIN_DEPTH = 5
MAX_CHAIN_CLASSES = 3

_WHITESPACE = re.compile(r"\s+")
_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_HIDDEN_STYLE = re.compile(
    r"(display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0*(?:\.0+)?\s*(?:;|$|!))",
    re.IGNORECASE,
)
_NON_RENDERED = frozenset({"head", "script", "style", "template", "noscript"})


# =============================================================================
# Scoring math
# =============================================================================


def normalize(text: str | None) -> str:
    """Lower-case, collapse whitespace, trim."""
    return _WHITESPACE.sub(" ", text or "").strip().lower()


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two already-normalized strings."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def _tokens(normalized: str) -> frozenset[str]:
    return frozenset(t for t in _TOKEN_SPLIT.split(normalized) if t)


def _trigrams(normalized: str) -> Counter[str]:
    padded = f"  {normalized}  "
    return Counter(padded[i : i + 3] for i in range(len(padded) - 2))


def jaccard_tokens(a: str, b: str) -> float:
    """Token-set Jaccard similarity. Two token-less strings are identical."""
    return _jaccard(_tokens(normalize(a)), _tokens(normalize(b)))


def _jaccard(ta: frozenset[str], tb: frozenset[str]) -> float:
    if not ta and not tb:
        return 1.0
    inter = len(ta & tb)
    union = len(ta) + len(tb) - inter
    return inter / union if union else 0.0


def trigram_cosine(a: str, b: str) -> float:
    """Cosine similarity of padded character trigram frequency vectors."""
    return _cosine(_trigrams(normalize(a)), _trigrams(normalize(b)))


def _cosine(ga: Counter[str], gb: Counter[str]) -> float:
    a2 = sum(c * c for c in ga.values())
    b2 = sum(c * c for c in gb.values())
    if not a2 or not b2:
        return 0.0
    dot = sum(c * gb[g] for g, c in ga.items() if g in gb)
    return dot / math.sqrt(a2 * b2)


@dataclass(frozen=True)
class _Prepared:
    """Normalized text with its token set and trigram vector."""

    text: str
    tokens: frozenset[str]
    grams: Counter[str]

    @classmethod
    def of(cls, raw: str | None) -> "_Prepared":
        text = normalize(raw)
        return cls(text=text, tokens=_tokens(text), grams=_trigrams(text))


def _score_prepared(source: _Prepared, target: _Prepared) -> float:
    if not source.text or not target.text:
        return 0.0
    exact = 1.0 if target.text in source.text else 0.0
    jac = _jaccard(source.tokens, target.tokens)
    cos = _cosine(source.grams, target.grams)
    distance = levenshtein(source.text, target.text)
    lev_score = 1 - min(1.0, distance / max(len(source.text), len(target.text)))
    return exact * 0.5 + jac * 0.2 + cos * 0.2 + lev_score * 0.1


def score_match(source: str | None, target: str | None) -> float:
    """Similarity of candidate text `source` to target text `target` in [0, 1]."""
    return _score_prepared(_Prepared.of(source), _Prepared.of(target))


# =============================================================================
# Candidates and selectors
# =============================================================================


@dataclass
class Candidate:
    """A visible, text-bearing element and its trimmed text."""

    node: Any
    text: str


@dataclass
class SelectorMatch:
    """Best selector found for one target."""

    selector: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"selector": self.selector, "score": self.score}


def css_escape(ident: str) -> str:
    """Escape a string for use as a CSS identifier (same rules as CSS.escape)."""
    out: list[str] = []
    length = len(ident)
    for i, ch in enumerate(ident):
        code = ord(ch)
        if code == 0:
            out.append("\ufffd")
        elif (
            0x01 <= code <= 0x1F
            or code == 0x7F
            or (i == 0 and ch.isdigit() and ch.isascii())
            or (i == 1 and ch.isdigit() and ch.isascii() and ident[0] == "-")
        ):
            out.append(f"\\{code:x} ")
        elif i == 0 and ch == "-" and length == 1:
            out.append("\\-")
        elif code >= 0x80 or ch in "-_" or (ch.isascii() and ch.isalnum()):
            out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


def css_string(value: str) -> str:
    """Quote a value for a CSS attribute selector."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\a ")
    return f'"{escaped}"'


def safe_select(root: Tag, selector: str) -> list[Tag]:
    """Run select() and treat invalid selectors as matching nothing."""
    try:
        return root.select(selector)
    except Exception as e:
        logger.debug("CSS selector failed", selector=selector, error=str(e))
        return []


def is_visible(el: Tag) -> bool:
    """Static visibility: no hidden attribute, hiding inline style or non-rendered ancestor."""
    node: Any = el
    while isinstance(node, Tag) and not isinstance(node, BeautifulSoup):
        if node.name in _NON_RENDERED:
            return False
        if node.has_attr("hidden"):
            return False
        if str(node.get("aria-hidden", "")).strip().lower() == "true":
            return False
        style = node.get("style")
        if isinstance(style, str) and _HIDDEN_STYLE.search(style):
            return False
        node = node.parent
    return True


def _document_root(el: Tag) -> Tag:
    node = el
    while node.parent is not None:
        node = node.parent
    return node


def _nth_of_type(node: Tag, parent: Tag) -> int | None:
    siblings = parent.find_all(node.name, recursive=False)
    if len(siblings) <= 1:
        return None
    for index, sibling in enumerate(siblings, start=1):
        if sibling is node:
            return index
    return None


def build_stable_selector(el: Tag) -> str:
    """Build a best-effort stable selector for `el`.

    Preference: `#id`, then `tag[data-*="v"]` when that is unique in the
    document, then an ancestor chain of at most five parts.
    """
    el_id = el.get("id")
    if isinstance(el_id, str) and el_id:
        return f"#{css_escape(el_id)}"

    for name, value in el.attrs.items():
        if not name.lower().startswith("data-") or not isinstance(value, str):
            continue
        selector = f"{el.name}[{name}={css_string(value)}]"
        if len(safe_select(_document_root(el), selector)) == 1:
            return selector
        break

    parts: list[str] = []
    node: Any = el
    while isinstance(node, Tag) and not isinstance(node, BeautifulSoup) and len(parts) < MAX_CHAIN_DEPTH:
        part = node.name
        classes = node.get("class") or []
        if 0 < len(classes) <= MAX_CHAIN_CLASSES:
            part += "".join(f".{css_escape(c)}" for c in classes)
        parent = node.parent
        if isinstance(parent, Tag):
            index = _nth_of_type(node, parent)
            if index is not None:
                part += f":nth-of-type({index})"
        parts.insert(0, part)
        node = parent
    return " > ".join(parts)


def collect_candidates(root: Tag, tags: Sequence[str] = CANDIDATE_TAGS) -> list[Candidate]:
    """Collect visible elements of the allowlisted tags with at least two characters of text."""
    candidates = []
    for el in root.find_all(list(tags)):
        text = el.get_text().strip()
        if len(text) < MIN_CANDIDATE_TEXT or not is_visible(el):
            continue
        candidates.append(Candidate(node=el, text=text))
    return candidates


def find_best_selectors(
    targets: Mapping[str, str],
    candidates: Sequence[Candidate],
    selector_builder: Callable[[Any], str] = build_stable_selector,
) -> dict[str, SelectorMatch]:
    """Find the best matching candidate selector per target.

    Ties keep the first candidate encountered. Targets with no candidate
    scoring above zero are omitted.
    """
    prepared = [(c, _Prepared.of(c.text)) for c in candidates]
    matches: dict[str, SelectorMatch] = {}

    for key, target_text in targets.items():
        target = _Prepared.of(target_text)
        if not target.text:
            continue
        best: Candidate | None = None
        best_score = 0.0
        for candidate, source in prepared:
            score = _score_prepared(source, target)
            if score > best_score:
                best, best_score = candidate, score
        if best is None:
            continue
        selector = selector_builder(best.node)
        if selector:
            matches[key] = SelectorMatch(selector=selector, score=best_score)

    logger.debug(
        "Selector matching complete",
        targets=list(targets.keys()),
        matched={k: round(m.score, 3) for k, m in matches.items()},
        candidates=len(candidates),
    )
    return matches


def match_targets(root: Tag, targets: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    """Page-side entry point: collect candidates from `root` and match `targets`.

    Returns plain dicts so the result can cross an execution-context boundary.
    """
    matches = find_best_selectors(targets, collect_candidates(root))
    return {key: match.to_dict() for key, match in matches.items()}
