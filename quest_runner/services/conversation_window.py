"""
Sliding window over the agent's tool-use conversation.

Turns are dicts in content-block form: ``{"role": ..., "content": [blocks]}``
with blocks of type ``text``, ``image``, ``tool_use`` or ``tool_result``.
The first turn is the fixed instruction turn and is always kept. Every
``tool_result`` must sit in the turn directly after the assistant turn that
issued the matching ``tool_use``; the model API rejects anything else.
"""

from __future__ import annotations

import logging

from quest_runner.errors import ConversationInvariantError

logger = logging.getLogger(__name__)

SCREENSHOT_REMOVED = "(Screenshot removed to save context)"


def trimmed_notice(count: int) -> str:
    return (
        f"(Context: {count} earlier messages trimmed. You have been navigating and interacting "
        "with the page. Continue from the current state shown in the screenshot.)"
    )


def _blocks(message: dict) -> list:
    content = message.get("content")
    return content if isinstance(content, list) else []


def is_tool_result_turn(message: dict) -> bool:
    return message.get("role") == "user" and any(b.get("type") == "tool_result" for b in _blocks(message))


def tool_use_ids(message: dict) -> set[str]:
    if message.get("role") != "assistant":
        return set()
    return {b["id"] for b in _blocks(message) if b.get("type") == "tool_use"}


def tool_result_ids(message: dict) -> set[str]:
    return {b["tool_use_id"] for b in _blocks(message) if b.get("type") == "tool_result"}


def ensure_tool_pairing(messages: list[dict]) -> None:
    """Raise ConversationInvariantError if any tool result lost its tool call."""
    for i, message in enumerate(messages):
        if not is_tool_result_turn(message):
            continue
        previous = messages[i - 1] if i > 0 else {}
        missing = tool_result_ids(message) - tool_use_ids(previous)
        if missing:
            raise ConversationInvariantError(
                f"Tool results {sorted(missing)} at turn {i} have no matching tool call in turn {i - 1}"
            )


def prune_screenshots(messages: list[dict]) -> None:
    """Replace images inside tool results with a text stub, except in the last turn."""
    for message in messages[:-1]:
        for block in _blocks(message):
            if block.get("type") != "tool_result" or not isinstance(block.get("content"), list):
                continue
            for part in block["content"]:
                if part.get("type") == "image":
                    part.pop("source", None)
                    part["type"] = "text"
                    part["text"] = SCREENSHOT_REMOVED


class ConversationWindow:
    """Keep the instruction turn plus roughly the last ``window`` turns."""

    def __init__(self, window: int = 10):
        # At least the latest turn is kept after the instruction.
        self.window = max(1, window)

    def trim(self, messages: list[dict]) -> list[dict]:
        if len(messages) <= self.window + 1:
            return messages

        keep_from = len(messages) - self.window
        # A tool result must keep the assistant turn that called the tool.
        while keep_from > 1 and is_tool_result_turn(messages[keep_from]):
            keep_from -= 1
        keep_from = max(1, keep_from)

        trimmed_count = keep_from - 1
        if trimmed_count <= 0:
            return messages

        summary = {"role": "user", "content": [{"type": "text", "text": trimmed_notice(trimmed_count)}]}
        result = [messages[0], summary, *messages[keep_from:]]
        ensure_tool_pairing(result)
        logger.debug("Trimmed %d turns from conversation", trimmed_count)
        return result
