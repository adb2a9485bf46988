"""
LLM capability consumed by the runner.

The runner speaks content blocks (``text``, ``image``, ``tool_use``,
``tool_result``). ``DspyLlmClient`` translates them to the OpenAI-style chat
format LiteLLM accepts, calls the model through ``dspy.LM``, and translates
the reply back into blocks.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import dspy

from quest_runner.llm_config import LlmConfig, build_lm, get_config

logger = logging.getLogger(__name__)


@dataclass
class LlmUsage:
    input_tokens: int
    output_tokens: int


@dataclass
class LlmResponse:
    content: list[dict]
    usage: LlmUsage | None = None

    @property
    def text(self) -> str:
        return "\n".join(b.get("text", "") for b in self.content if b.get("type") == "text")

    @property
    def tool_uses(self) -> list[dict]:
        return [b for b in self.content if b.get("type") == "tool_use"]


class LlmCapability(Protocol):
    async def invoke(
        self,
        messages: list[dict],
        model_id: str,
        max_tokens: int,
        tools: list[dict] | None = None,
    ) -> LlmResponse: ...


# ── block <-> chat format translation ─────────────

def _image_part(block: dict) -> dict:
    source = block.get("source", {})
    url = f"data:{source.get('media_type', 'image/jpeg')};base64,{source.get('data', '')}"
    return {"type": "image_url", "image_url": {"url": url}}


def _user_parts(blocks: list[dict]) -> list[dict]:
    parts = []
    for block in blocks:
        if block.get("type") == "text":
            parts.append({"type": "text", "text": block.get("text", "")})
        elif block.get("type") == "image":
            parts.append(_image_part(block))
    return parts


def to_chat_messages(messages: list[dict]) -> list[dict]:
    """Translate content-block turns to chat-completion messages."""
    chat: list[dict] = []
    for message in messages:
        role = message.get("role", "user")
        blocks = message.get("content")
        if isinstance(blocks, str):
            chat.append({"role": role, "content": blocks})
            continue

        if role == "assistant":
            text = "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            calls = [
                {
                    "id": b["id"],
                    "type": "function",
                    "function": {"name": b["name"], "arguments": json.dumps(b.get("input", {}))},
                }
                for b in blocks
                if b.get("type") == "tool_use"
            ]
            if calls:
                entry["tool_calls"] = calls
            chat.append(entry)
            continue

        results = [b for b in blocks if b.get("type") == "tool_result"]
        if not results:
            chat.append({"role": role, "content": _user_parts(blocks)})
            continue

        # Tool messages carry text only; screenshots follow as one user turn.
        images: list[dict] = []
        for result in results:
            content = result.get("content", [])
            if isinstance(content, str):
                text = content
            else:
                text = "\n".join(p.get("text", "") for p in content if p.get("type") == "text")
                images.extend(_image_part(p) for p in content if p.get("type") == "image")
            chat.append({"role": "tool", "tool_call_id": result["tool_use_id"], "content": text})
        extra = _user_parts([b for b in blocks if b.get("type") != "tool_result"])
        if images or extra:
            chat.append({"role": "user", "content": [{"type": "text", "text": "Current page:"}, *images, *extra]})
    return chat


def to_chat_tools(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for tool in tools
    ]


def from_chat_response(response: Any) -> LlmResponse:
    """Translate a LiteLLM ModelResponse into content blocks."""
    message = response.choices[0].message
    content: list[dict] = []
    if getattr(message, "content", None):
        content.append({"type": "text", "text": message.content})
    for call in getattr(message, "tool_calls", None) or []:
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError:
            logger.warning("Tool call %s has unparseable arguments: %s", call.function.name, call.function.arguments)
            arguments = {}
        content.append({"type": "tool_use", "id": call.id, "name": call.function.name, "input": arguments})

    usage = None
    raw_usage = getattr(response, "usage", None)
    if raw_usage is not None:
        usage = LlmUsage(
            input_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
        )
    return LlmResponse(content=content, usage=usage)


class DspyLlmClient:
    """LLM capability backed by ``dspy.LM`` (LiteLLM underneath)."""

    def __init__(self, config: LlmConfig | None = None):
        self.config = config or get_config()
        self._lms: dict[str, dspy.LM] = {}

    def _lm(self, model_id: str) -> dspy.LM:
        if model_id not in self._lms:
            self._lms[model_id] = build_lm(model_id, self.config.api_key_for(model_id))
        return self._lms[model_id]

    async def invoke(
        self,
        messages: list[dict],
        model_id: str,
        max_tokens: int,
        tools: list[dict] | None = None,
    ) -> LlmResponse:
        kwargs: dict[str, Any] = {"max_tokens": max_tokens}
        if tools:
            kwargs["tools"] = to_chat_tools(tools)
        response = await self._lm(model_id).aforward(messages=to_chat_messages(messages), **kwargs)
        return from_chat_response(response)
