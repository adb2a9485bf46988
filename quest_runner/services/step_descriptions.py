"""Short human-readable descriptions of steps for logs and history."""

from __future__ import annotations

import json
import re

_HAS_TEXT = re.compile(r"has-text\('(.+?)'\)")


def _selector_label(selector: str) -> str:
    if "text=" in selector:
        return f'"{selector.replace("text=", "")}"'
    match = _HAS_TEXT.search(selector)
    if match:
        return f'"{match.group(1)}"'
    return selector


def describe_action(kind: str, params: dict, scroll_amount: int = 384) -> str:
    if kind == "navigate":
        return params.get("url") or "unknown URL"
    if kind == "click_at_coordinates":
        return params.get("description") or f"({params.get('x')}, {params.get('y')})"
    if kind == "click":
        selector = params.get("selector")
        return _selector_label(selector) if selector else "unknown selector"
    if kind == "type_text":
        text = params.get("text") or ""
        if len(text) > 30:
            text = f"{text[:30]}..."
        selector = params.get("selector")
        return f'"{text}" into {selector}' if selector else f'"{text}"'
    if kind == "scroll":
        return f"{params.get('direction', 'down')} {params.get('amount') or scroll_amount}px"
    if kind == "press_key":
        return params.get("key") or "unknown key"
    if kind in ("wait", "random_wait"):
        return f"{params.get('duration') or params.get('min') or 500}ms"
    return json.dumps(params)[:50]


def agent_step_description(kind: str, params: dict) -> str:
    """Description stored on steps the agent performed."""
    if kind == "click_at_coordinates":
        return f"AI Action: click at ({params.get('x')}, {params.get('y')}) - {params.get('description') or 'element'}"
    if kind == "click":
        label = _selector_label(params.get("selector", ""))
        return f"AI Action: click {label}"
    if kind == "type_text":
        return f'AI Action: type "{params.get("text", "")}"'
    return f"AI Action: {kind}"
