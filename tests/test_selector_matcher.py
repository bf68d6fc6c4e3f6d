"""
Tests for fuzzy selector matching.

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-SM-01 | normalize() with mixed case/whitespace | Equivalence – normalization | Lower-case, collapsed | - |
| TC-SM-02 | levenshtein kitten/sitting | Equivalence – distance | 3 | - |
| TC-SM-03 | levenshtein with empty side | Boundary – empty | Length of other | - |
| TC-SM-04 | jaccard of two token-less strings | Boundary – empty | 1.0 | - |
| TC-SM-05 | score_match identical strings | Boundary – max | ~1.0 | - |
| TC-SM-06 | score_match with empty side | Boundary – empty | 0.0 | - |
| TC-SM-07 | Target inside longer candidate | Equivalence – containment | score > 0.4 | - |
| TC-CE-01 | css_escape leading digit / dot | Equivalence – escaping | CSS.escape output | - |
| TC-CE-02 | css_string with quote | Equivalence – quoting | Escaped quote | - |
| TC-VS-01 | display:none ancestor | Equivalence – hidden | Not visible | - |
| TC-VS-02 | hidden attribute | Equivalence – hidden | Not visible | - |
| TC-BS-01 | Element with id | Equivalence – id | #id | - |
| TC-BS-02 | Element with unique data-* attr | Equivalence – data attr | tag[data-x="v"] | - |
| TC-BS-03 | Anonymous list item | Equivalence – chain | nth-of-type chain resolving to it | - |
| TC-SS-01 | Invalid selector | Boundary – syntax error | [] | - |
| TC-CC-01 | collect_candidates with hidden / tiny nodes | Equivalence – filtering | Excluded | - |
| TC-FB-01 | Best candidate among several | Equivalence – ranking | "Buy Red Running Shoes Now" chosen | - |
| TC-FB-02 | Empty target text | Boundary – empty | Target omitted | - |
| TC-FB-03 | No candidate scores above zero | Boundary – no match | Target omitted | - |
| TC-MT-01 | match_targets on a document | Equivalence – page-side | Plain dicts | - |
"""

import pytest
from bs4 import BeautifulSoup

pytestmark = pytest.mark.unit

from pdpkit.extractor.selector_matcher import (
    Candidate,
    build_stable_selector,
    collect_candidates,
    css_escape,
    css_string,
    find_best_selectors,
    is_visible,
    jaccard_tokens,
    levenshtein,
    match_targets,
    normalize,
    safe_select,
    score_match,
    trigram_cosine,
)

MATCH_HTML = """
<div id="wrap">
  <h2 id="headline">Buy Red Running Shoes Now</h2>
  <p id="other">Blue Hiking Boots</p>
  <span style="display:none">Red Running Shoes</span>
</div>
"""


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


# =============================================================================
# Scoring math
# =============================================================================


class TestScoringMath:
    """Pure similarity functions."""

    def test_normalize(self):
        """TC-SM-01: Lower-case, collapse whitespace and trim."""
        assert normalize("  Red \n Running\tShoes  ") == "red running shoes"
        assert normalize(None) == ""

    def test_levenshtein(self):
        """TC-SM-02: Classic edit distance."""
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("same", "same") == 0

    def test_levenshtein_empty(self):
        """TC-SM-03: Distance to an empty string is the other length."""
        assert levenshtein("", "abc") == 3
        assert levenshtein("abcd", "") == 4

    def test_jaccard(self):
        """TC-SM-04: Token sets, with token-less inputs treated as identical."""
        assert jaccard_tokens("red shoes", "shoes red") == 1.0
        assert jaccard_tokens("red shoes", "blue boots") == 0.0
        assert jaccard_tokens("", "---") == 1.0

    def test_trigram_cosine(self):
        """Identical strings have cosine 1, disjoint ones 0."""
        assert trigram_cosine("running", "running") == pytest.approx(1.0)
        assert trigram_cosine("aaa", "zzz") == 0.0

    def test_identical_scores_one(self):
        """TC-SM-05: Identical texts score the maximum."""
        assert score_match("Red Running Shoes", "red  running shoes") == pytest.approx(1.0)

    def test_empty_scores_zero(self):
        """TC-SM-06: An empty side scores zero."""
        assert score_match("", "Red Running Shoes") == 0.0
        assert score_match("Red Running Shoes", None) == 0.0

    def test_containment_scores_high(self):
        """
        TC-SM-07: Target contained in candidate.

        Given: A candidate containing the whole target text
        When: score_match() is computed
        Then: The exact-containment term pushes the score above 0.4
        """
        # Given:
        candidate = "Buy Red Running Shoes Now"

        # When:
        score = score_match(candidate, "Red Running Shoes")

        # Then:
        assert score > 0.4
        assert score > score_match("Blue Hiking Boots", "Red Running Shoes")


# =============================================================================
# CSS helpers
# =============================================================================


class TestCssHelpers:
    """Identifier escaping, quoting and safe selection."""

    def test_css_escape(self):
        """TC-CE-01: Same output as CSS.escape for common cases."""
        assert css_escape("title") == "title"
        assert css_escape("1abc") == "\\31 abc"
        assert css_escape("a.b") == "a\\.b"
        assert css_escape("-") == "\\-"

    def test_css_string(self):
        """TC-CE-02: Quotes and backslashes are escaped."""
        assert css_string('say "hi"') == '"say \\"hi\\""'

    def test_safe_select_invalid(self):
        """TC-SS-01: Invalid selectors match nothing instead of raising."""
        soup = _soup("<div>x</div>")

        assert safe_select(soup, "div[") == []

    def test_hidden_by_ancestor_style(self):
        """TC-VS-01: display:none on an ancestor hides the element."""
        soup = _soup('<div style="display: none"><p id="p">text</p></div>')

        assert is_visible(soup.find(id="p")) is False

    def test_hidden_attribute(self):
        """TC-VS-02: The hidden attribute hides the element."""
        soup = _soup('<p id="p" hidden>text</p><p id="q">text</p>')

        assert is_visible(soup.find(id="p")) is False
        assert is_visible(soup.find(id="q")) is True


class TestBuildStableSelector:
    """Selector construction preference order."""

    def test_prefers_id(self):
        """TC-BS-01: An id wins."""
        soup = _soup('<div id="price" data-testid="price">1</div>')

        assert build_stable_selector(soup.find("div")) == "#price"

    def test_unique_data_attribute(self):
        """TC-BS-02: A unique data-* attribute is used when there is no id."""
        soup = _soup('<div data-testid="price">1</div><div data-testid="name">2</div>')
        el = soup.find(attrs={"data-testid": "price"})

        selector = build_stable_selector(el)

        assert selector == 'div[data-testid="price"]'
        assert soup.select(selector) == [el]

    def test_ancestor_chain(self):
        """
        TC-BS-03: Anonymous element falls back to an ancestor chain.

        Given: The second <li> of a list with no ids or data attributes
        When: A selector is built
        Then: The chain uses classes and nth-of-type and selects exactly that <li>
        """
        # Given:
        soup = _soup('<main><ul class="list"><li>One</li><li>Two</li></ul></main>')
        el = soup.find_all("li")[1]

        # When:
        selector = build_stable_selector(el)

        # Then:
        assert selector == "main > ul.list > li:nth-of-type(2)"
        assert soup.select(selector) == [el]


# =============================================================================
# Candidates and matching
# =============================================================================


class TestMatching:
    """Candidate collection and best-selector search."""

    def test_collect_candidates_filters(self):
        """TC-CC-01: Hidden elements and single characters are excluded."""
        soup = _soup(MATCH_HTML + "<p>x</p>")

        texts = [c.text for c in collect_candidates(soup)]

        assert "Buy Red Running Shoes Now" in texts
        assert "Red Running Shoes" not in texts
        assert "x" not in texts

    def test_picks_best_candidate(self):
        """
        TC-FB-01: Best match wins.

        Given: A heading containing the title and an unrelated paragraph
        When: find_best_selectors() runs for the title
        Then: The heading's selector is chosen with score > 0.4
        """
        # Given:
        soup = _soup(MATCH_HTML)
        candidates = collect_candidates(soup)

        # When:
        matches = find_best_selectors({"title": "Red Running Shoes"}, candidates)

        # Then:
        assert matches["title"].selector == "#headline"
        assert matches["title"].score > 0.4

    def test_empty_target_omitted(self):
        """TC-FB-02: Targets with no text are skipped."""
        candidates = collect_candidates(_soup(MATCH_HTML))

        assert find_best_selectors({"title": "   "}, candidates) == {}

    def test_no_candidates(self):
        """TC-FB-03: Nothing to match against yields no entry."""
        assert find_best_selectors({"title": "Red Running Shoes"}, []) == {}

    def test_custom_selector_builder(self):
        """The selector builder is injectable."""
        candidates = [Candidate(node="node-a", text="Red Running Shoes")]

        matches = find_best_selectors(
            {"title": "Red Running Shoes"}, candidates, selector_builder=lambda n: f"sel-{n}"
        )

        assert matches["title"].selector == "sel-node-a"

    def test_match_targets_returns_dicts(self):
        """TC-MT-01: Page-side entry point returns plain dicts."""
        soup = _soup(MATCH_HTML)

        result = match_targets(soup, {"title": "Red Running Shoes", "returns": ""})

        assert set(result) == {"title"}
        assert result["title"]["selector"] == "#headline"
        assert isinstance(result["title"]["score"], float)
