"""
LLM configuration module.

Tracks the selected model and provider keys; ``build_lm`` turns them into DSPy LMs.
Supports Anthropic, OpenAI and Gemini providers. Keys and the default model are
seeded from the environment and can be changed at runtime through the API.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import dspy

logger = logging.getLogger(__name__)

AVAILABLE_MODELS = {
    "anthropic": [
        {"id": "anthropic/claude-sonnet-4-5", "name": "Claude Sonnet 4.5", "description": "Strong tool use and vision"},
        {"id": "anthropic/claude-haiku-4-5", "name": "Claude Haiku 4.5", "description": "Fast and affordable"},
    ],
    "openai": [
        {"id": "openai/gpt-4o", "name": "GPT-4o", "description": "Flagship multimodal model"},
        {"id": "openai/gpt-4o-mini", "name": "GPT-4o Mini", "description": "Fast and affordable"},
    ],
    "gemini": [
        {"id": "gemini/gemini-2.5-flash", "name": "Gemini 2.5 Flash", "description": "Fastest Gemini"},
        {"id": "gemini/gemini-2.5-pro", "name": "Gemini 2.5 Pro", "description": "Best quality"},
    ],
}

DEFAULT_MODELS = {
    "anthropic": "anthropic/claude-sonnet-4-5",
    "openai": "openai/gpt-4o",
    "gemini": "gemini/gemini-2.5-flash",
}


def _mask_key(key: str) -> str:
    """Mask API key for display, showing only last 4 chars."""
    if not key or len(key) < 8:
        return "****"
    return f"{key[:3]}...{key[-4:]}"


@dataclass
class LlmConfig:
    """In-memory LLM configuration state."""
    model: str | None = None
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    is_configured: bool = False
    provider: str | None = None

    def api_key_for(self, model: str) -> str | None:
        provider = model.split("/")[0]
        if provider == "anthropic":
            return self.anthropic_api_key
        if provider == "openai":
            return self.openai_api_key
        if provider == "gemini":
            return self.gemini_api_key
        return self.anthropic_api_key or self.openai_api_key or self.gemini_api_key

    def to_safe_dict(self) -> dict:
        """Return config dict with masked API keys."""
        return {
            "model": self.model,
            "provider": self.provider,
            "isConfigured": self.is_configured,
            "anthropicKeySet": bool(self.anthropic_api_key),
            "openaiKeySet": bool(self.openai_api_key),
            "geminiKeySet": bool(self.gemini_api_key),
            "anthropicKeyMasked": _mask_key(self.anthropic_api_key) if self.anthropic_api_key else None,
            "openaiKeyMasked": _mask_key(self.openai_api_key) if self.openai_api_key else None,
            "geminiKeyMasked": _mask_key(self.gemini_api_key) if self.gemini_api_key else None,
        }


# Module-level singleton
_config = LlmConfig(
    model=os.environ.get("QUEST_RUNNER_MODEL") or None,
    anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
    openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
    gemini_api_key=os.environ.get("GEMINI_API_KEY") or None,
)


def get_config() -> LlmConfig:
    """Return current LLM configuration."""
    return _config


def build_lm(model: str, api_key: str | None, max_tokens: int = 3000) -> dspy.LM:
    """Create an uncached DSPy LM for a LiteLLM model string."""
    return dspy.LM(model, api_key=api_key, max_tokens=max_tokens, cache=False)


def configure_llm(
    model: str | None = None,
    anthropic_api_key: str | None = None,
    openai_api_key: str | None = None,
    gemini_api_key: str | None = None,
) -> LlmConfig:
    """
    Select the model and provider keys used for agent and review calls.

    Language models are built per call by ``build_lm``; this only records the choice.

    If model not specified, auto-selects: Anthropic first, then OpenAI, then Gemini.
    """
    global _config

    # Update stored keys (keep existing if not provided)
    if anthropic_api_key is not None:
        _config.anthropic_api_key = anthropic_api_key if anthropic_api_key else None
    if openai_api_key is not None:
        _config.openai_api_key = openai_api_key if openai_api_key else None
    if gemini_api_key is not None:
        _config.gemini_api_key = gemini_api_key if gemini_api_key else None

    if model:
        if "/" not in model:
            raise ValueError(f"Model must be a provider-prefixed LiteLLM id, got '{model}'")
        selected_model = model
    elif _config.anthropic_api_key:
        selected_model = DEFAULT_MODELS["anthropic"]
    elif _config.openai_api_key:
        selected_model = DEFAULT_MODELS["openai"]
    elif _config.gemini_api_key:
        selected_model = DEFAULT_MODELS["gemini"]
    else:
        _config.model = None
        _config.provider = None
        _config.is_configured = False
        logger.info("LLM unconfigured: no API keys provided")
        return _config

    provider = selected_model.split("/")[0]
    api_key = _config.api_key_for(selected_model)

    if not api_key:
        logger.warning("No API key for provider %s", provider)
        _config.model = None
        _config.provider = None
        _config.is_configured = False
        return _config

    _config.model = selected_model
    _config.provider = provider
    _config.is_configured = True
    logger.info("LLM configured: model=%s provider=%s", selected_model, provider)

    return _config
