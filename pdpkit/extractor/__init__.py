"""
Page analysis: PDP signals, selector matching, region discovery and payloads.
"""

from pdpkit.extractor.jsonld import extract_jsonld, extract_product_texts, pick_first_product
from pdpkit.extractor.panels import discover_field_selectors
from pdpkit.extractor.payload import build_payload, sanitize_html
from pdpkit.extractor.selector_matcher import (
    Candidate,
    SelectorMatch,
    build_stable_selector,
    collect_candidates,
    find_best_selectors,
    match_targets,
    score_match,
)
from pdpkit.extractor.signals import (
    SignalClassifier,
    SignalResult,
    evaluate_pdp_signals,
    get_signal_classifier,
)

__all__ = [
    # Signals
    "SignalClassifier",
    "SignalResult",
    "evaluate_pdp_signals",
    "get_signal_classifier",
    # Selector matching
    "Candidate",
    "SelectorMatch",
    "build_stable_selector",
    "collect_candidates",
    "find_best_selectors",
    "match_targets",
    "score_match",
    # Region discovery
    "discover_field_selectors",
    # Payload
    "build_payload",
    "sanitize_html",
    "extract_jsonld",
    "extract_product_texts",
    "pick_first_product",
]
