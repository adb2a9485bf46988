"""API endpoints for LLM configuration."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from quest_runner.llm_config import AVAILABLE_MODELS, configure_llm, get_config

router = APIRouter()


class LlmSettingsRequest(BaseModel):
    """Request body for updating LLM settings."""
    model: str | None = None
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None

    model_config = {"populate_by_name": True}


@router.get("")
async def get_llm_settings():
    """Return current LLM configuration (with masked keys)."""
    return get_config().to_safe_dict()


@router.post("")
async def set_llm_settings(req: LlmSettingsRequest):
    """Update the model and provider keys used for agent and review calls."""
    try:
        config = configure_llm(
            model=req.model,
            anthropic_api_key=req.anthropic_api_key,
            openai_api_key=req.openai_api_key,
            gemini_api_key=req.gemini_api_key,
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return config.to_safe_dict()


@router.get("/models")
async def get_available_models():
    """Return available models grouped by provider."""
    config = get_config()
    keys = {
        "anthropic": config.anthropic_api_key,
        "openai": config.openai_api_key,
        "gemini": config.gemini_api_key,
    }
    return {
        provider: {"models": models, "available": bool(keys.get(provider))}
        for provider, models in AVAILABLE_MODELS.items()
    }
