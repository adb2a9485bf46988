"""
Element matching cascade for coordinate-click replay.

Decides whether the element now under a recorded coordinate is the element
that was clicked when the step was recorded. Strategies run in a fixed order
and the first that accepts wins:

1. stable_id     - identical id / data-testid / name
2. text          - case-insensitive containment, either direction
3. iframe        - iframe vs. form-adjacent tag (cross-origin payment fields
                   expose no reliable text)
4. tag_group     - equivalent tag group plus keyword overlap
5. keywords      - keyword overlap alone

Each strategy is a plain predicate over two ``ExpectedElement`` snapshots so
it can be tested on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from quest_runner.schemas.quest_schema import ExpectedElement

MIN_CONTAINED_TEXT = 3  # contained text must be longer than this
MIN_KEYWORD_LENGTH = 2  # keywords must be longer than this
KEYWORD_OVERLAP_THRESHOLD = 0.5

TAG_GROUPS: dict[str, frozenset[str]] = {
    "clickable": frozenset({"button", "a", "span", "div"}),
    "list": frozenset({"ul", "ol", "li"}),
    "form": frozenset({"input", "select", "textarea", "label", "option", "form"}),
    "heading": frozenset({"h1", "h2", "h3", "h4", "h5", "h6"}),
    "table": frozenset({"table", "thead", "tbody", "tr", "td", "th"}),
}

IFRAME_COMPATIBLE_TAGS = frozenset({"iframe", "input", "div", "span", "label", "form"})


@dataclass
class VerificationResult:
    matches: bool
    actual: str
    expected: str
    strategy: str | None = None
    note: str | None = None


def keywords(text: str) -> set[str]:
    return {t for t in re.findall(r"[a-z0-9]+", text.lower()) if len(t) > MIN_KEYWORD_LENGTH}


def keyword_overlap(expected_text: str, actual_text: str) -> float:
    """Share of expected keywords present in the actual text's keywords."""
    expected_words = keywords(expected_text)
    if not expected_words:
        return 0.0
    return len(expected_words & keywords(actual_text)) / len(expected_words)


def tag_group(tag: str) -> str | None:
    tag = tag.lower()
    for name, tags in TAG_GROUPS.items():
        if tag in tags:
            return name
    return None


def match_stable_identifier(expected: ExpectedElement, actual: ExpectedElement) -> bool:
    return bool(expected.stable_id) and expected.stable_id == actual.stable_id


def match_text_containment(expected: ExpectedElement, actual: ExpectedElement) -> bool:
    want = expected.text.strip().lower()
    have = actual.text.strip().lower()
    if len(want) > MIN_CONTAINED_TEXT and want in have:
        return True
    return len(have) > MIN_CONTAINED_TEXT and have in want


def match_iframe_relaxation(expected: ExpectedElement, actual: ExpectedElement) -> bool:
    tags = {expected.tag.lower(), actual.tag.lower()}
    return "iframe" in tags and tags <= IFRAME_COMPATIBLE_TAGS


def match_tag_group(expected: ExpectedElement, actual: ExpectedElement) -> bool:
    group = tag_group(expected.tag)
    if group is None or group != tag_group(actual.tag):
        return False
    return keyword_overlap(expected.text, actual.text) >= KEYWORD_OVERLAP_THRESHOLD


def match_keyword_overlap(expected: ExpectedElement, actual: ExpectedElement) -> bool:
    return keyword_overlap(expected.text, actual.text) >= KEYWORD_OVERLAP_THRESHOLD


STRATEGIES: list[tuple[str, Callable[[ExpectedElement, ExpectedElement], bool]]] = [
    ("stable_id", match_stable_identifier),
    ("text", match_text_containment),
    ("iframe", match_iframe_relaxation),
    ("tag_group", match_tag_group),
    ("keywords", match_keyword_overlap),
]


def match_element(expected: ExpectedElement, actual: ExpectedElement) -> str | None:
    """Return the name of the first strategy that accepts, or None."""
    for name, strategy in STRATEGIES:
        if strategy(expected, actual):
            return name
    return None
