"""Tool catalogue published to the agent model."""

from __future__ import annotations

BROWSER_TOOLS: list[dict] = [
    {
        "name": "navigate",
        "description": "Navigate the browser to a specific URL",
        "input_schema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to navigate to (e.g., https://www.google.com)"},
            },
            "required": ["url"],
        },
    },
    {
        "name": "type_text",
        "description": "Type text into an input field, or into the focused element when no selector is given",
        "input_schema": {
            "type": "object",
            "properties": {
                "selector": {"type": "string", "description": "CSS selector for the input element (e.g., 'textarea[name=q]')"},
                "iframe_selector": {
                    "type": "string",
                    "description": "Optional: CSS selector for the iframe containing the element (e.g., 'iframe[title=\"secure-payment\"]')",
                },
                "text": {"type": "string", "description": "The text to type"},
            },
            "required": ["text"],
        },
    },
    {
        "name": "click",
        "description": "Click an element on the page by CSS selector",
        "input_schema": {
            "type": "object",
            "properties": {
                "selector": {"type": "string", "description": "CSS selector for the element to click"},
                "iframe_selector": {"type": "string", "description": "Optional: CSS selector for the iframe containing the element"},
            },
            "required": ["selector"],
        },
    },
    {
        "name": "click_at_coordinates",
        "description": "Click at a point in the 1024x768 viewport",
        "input_schema": {
            "type": "object",
            "properties": {
                "x": {"type": "number", "description": "X coordinate of the element center"},
                "y": {"type": "number", "description": "Y coordinate of the element center"},
                "description": {"type": "string", "description": "What is being clicked, for the log"},
            },
            "required": ["x", "y"],
        },
    },
    {
        "name": "scroll",
        "description": "Scroll the page up or down",
        "input_schema": {
            "type": "object",
            "properties": {
                "direction": {"type": "string", "enum": ["up", "down"]},
                "amount": {"type": "number", "description": "Pixels to scroll (default: half the viewport)"},
            },
            "required": ["direction"],
        },
    },
    {
        "name": "press_key",
        "description": "Press a specific key (like Enter or Tab)",
        "input_schema": {
            "type": "object",
            "properties": {"key": {"type": "string", "description": "Key to press (e.g., 'Enter')"}},
            "required": ["key"],
        },
    },
    {
        "name": "wait",
        "description": "Wait for a fixed amount of time",
        "input_schema": {
            "type": "object",
            "properties": {"duration": {"type": "number", "description": "Milliseconds to wait (default: 1000)"}},
            "required": [],
        },
    },
    {
        "name": "random_wait",
        "description": "Wait for a random amount of time (useful for simulating human behavior)",
        "input_schema": {
            "type": "object",
            "properties": {
                "min": {"type": "number", "description": "Minimum wait time in milliseconds (default: 500)"},
                "max": {"type": "number", "description": "Maximum wait time in milliseconds (default: 2000)"},
            },
            "required": [],
        },
    },
]

# Tools whose effect shows up on screen; only these get a screenshot back.
PAGE_CHANGING_TOOLS = frozenset({"navigate", "click", "click_at_coordinates", "type_text", "scroll", "press_key"})
