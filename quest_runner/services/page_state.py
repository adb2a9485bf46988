"""
Page-state fingerprinting and element verification.

A fingerprint is a hash of what a user would notice changing: URL, title,
focused element, form values and visible text. It is only compared for
equality and is recomputed every time it is needed.
"""

from __future__ import annotations

import hashlib
import json
import logging

from quest_runner.schemas.quest_schema import ChangeType, ExpectedElement
from quest_runner.services.browser import BrowserCapability
from quest_runner.services.element_matching import MIN_CONTAINED_TEXT, VerificationResult, match_element

logger = logging.getLogger(__name__)

MAX_FIELD_CHARS = 64
MAX_BODY_CHARS = 5000

# Focus is identified by tag + id/name/test-id only; generated class names
# change between builds.
_SNAPSHOT_JS = """
([maxField, maxBody]) => {
    const active = document.activeElement;
    let focused = '';
    if (active && active !== document.body) {
        const ident = active.id || active.getAttribute('name') || active.getAttribute('data-testid') || '';
        focused = active.tagName.toLowerCase() + '|' + ident;
    }
    const fields = [];
    document.querySelectorAll('input, select, textarea').forEach((el, i) => {
        const key = el.id || el.getAttribute('name') || el.getAttribute('data-testid') || String(i);
        const type = (el.getAttribute('type') || '').toLowerCase();
        if (type === 'checkbox' || type === 'radio') {
            fields.push([key, !!el.checked]);
        } else {
            fields.push([key, String(el.value || '').slice(0, maxField)]);
        }
    });
    const text = document.body ? (document.body.innerText || '').slice(0, maxBody) : '';
    return {url: location.href, title: document.title, focused, fields, text};
}
"""

_ELEMENT_AT_JS = """
([x, y]) => {
    const el = document.elementFromPoint(x, y);
    if (!el) return null;
    const text = (el.innerText || el.value || el.getAttribute('aria-label') || el.getAttribute('title') || '').trim();
    return {
        tag: el.tagName.toLowerCase(),
        text: text.slice(0, 100),
        stableId: el.id || el.getAttribute('data-testid') || el.getAttribute('name') || null,
    };
}
"""

_HIERARCHY_SEARCH_JS = """
([x, y, tag, text]) => {
    const origin = document.elementFromPoint(x, y);
    if (!origin) return null;
    const needle = (text || '').trim().toLowerCase();
    const describe = (el, relation) => ({
        tag: el.tagName.toLowerCase(),
        text: (el.innerText || '').trim().slice(0, 100),
        stableId: el.id || el.getAttribute('data-testid') || el.getAttribute('name') || null,
        relation,
    });
    const fits = (el) => el.tagName.toLowerCase() === tag
        && (el.innerText || '').toLowerCase().includes(needle);
    for (const el of origin.querySelectorAll(tag)) {
        if (fits(el)) return describe(el, 'descendant');
    }
    let node = origin;
    for (let i = 0; i < 3 && node.parentElement; i++) {
        node = node.parentElement;
        if (fits(node)) return describe(node, 'ancestor');
    }
    return null;
}
"""


def _mask_value(value):
    """Reduce a text field value to length + short hash so PII stays out of the signal."""
    if isinstance(value, str):
        digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]
        return f"{len(value)}:{digest}"
    return value


def compute_fingerprint(snapshot: dict) -> str:
    """Hash a page snapshot produced by the in-page snapshot script."""
    fields = [[key, _mask_value(value)] for key, value in snapshot.get("fields", [])]
    payload = {
        "url": snapshot.get("url", ""),
        "title": snapshot.get("title", ""),
        "focused": snapshot.get("focused", ""),
        "fields": fields,
        "text": snapshot.get("text", ""),
    }
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


async def fingerprint(browser: BrowserCapability) -> str:
    snapshot = await browser.evaluate(_SNAPSHOT_JS, [MAX_FIELD_CHARS, MAX_BODY_CHARS])
    return compute_fingerprint(snapshot or {})


async def wait_for_change(
    browser: BrowserCapability,
    previous: str,
    timeout_ms: int = 3000,
    poll_ms: int = 250,
) -> bool:
    """Poll the fingerprint until it differs from ``previous`` or time runs out."""
    attempts = max(1, timeout_ms // max(1, poll_ms))
    for _ in range(attempts):
        await browser.wait_for_timeout(poll_ms)
        try:
            current = await fingerprint(browser)
        except Exception as exc:
            # Evaluation fails while a navigation replaces the document.
            logger.debug("Fingerprint unavailable during poll: %s", exc)
            return True
        if current != previous:
            return True
    return False


async def detect_change(
    browser: BrowserCapability,
    pre_url: str,
    pre_fingerprint: str,
    timeout_ms: int = 3000,
    poll_ms: int = 250,
) -> ChangeType:
    """Classify what an action changed: the URL, the DOM, or nothing."""
    if await browser.current_url() != pre_url:
        return "url"
    if await wait_for_change(browser, pre_fingerprint, timeout_ms, poll_ms):
        if await browser.current_url() != pre_url:
            return "url"
        return "dom"
    return "none"


async def element_at(browser: BrowserCapability, x: float, y: float) -> ExpectedElement | None:
    data = await browser.evaluate(_ELEMENT_AT_JS, [x, y])
    if not data:
        return None
    return ExpectedElement.model_validate(data)


async def verify_element_at(
    browser: BrowserCapability, x: float, y: float, expected: ExpectedElement
) -> VerificationResult:
    """Check the element under (x, y) against the recorded one. Never raises."""
    try:
        actual = await element_at(browser, x, y)
    except Exception as exc:
        logger.warning("Element capture at (%s, %s) failed: %s", x, y, exc)
        return VerificationResult(matches=False, actual=f"unavailable ({exc})", expected=expected.describe())

    if actual is None:
        return VerificationResult(matches=False, actual="no element", expected=expected.describe())

    strategy = match_element(expected, actual)
    return VerificationResult(
        matches=strategy is not None,
        actual=actual.describe(),
        expected=expected.describe(),
        strategy=strategy,
    )


async def verify_element_with_fallback(
    browser: BrowserCapability, x: float, y: float, expected: ExpectedElement
) -> VerificationResult:
    """Like ``verify_element_at`` but also searches near the point.

    Small layout shifts move content a few pixels without removing it, so a
    matching tag+text in the subtree under the point or up to three ancestors
    above it counts as a match.

    The element under the point itself was already judged by the direct
    strategies, and short expected text is too weak to search on.
    """
    result = await verify_element_at(browser, x, y, expected)
    if result.matches:
        return result
    if len(expected.text.strip()) <= MIN_CONTAINED_TEXT:
        return result

    try:
        hit = await browser.evaluate(_HIERARCHY_SEARCH_JS, [x, y, expected.tag.lower(), expected.text])
    except Exception as exc:
        logger.warning("Hierarchy search at (%s, %s) failed: %s", x, y, exc)
        return result

    if not hit:
        return result

    relation = hit.pop("relation", "nearby")
    found = ExpectedElement.model_validate(hit)
    return VerificationResult(
        matches=True,
        actual=found.describe(),
        expected=result.expected,
        strategy="hierarchy",
        note=f"found in hierarchy ({relation})",
    )
