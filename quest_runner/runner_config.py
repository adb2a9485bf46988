"""
Runner configuration.

Timing, budget and storage settings for quest runs, read once from
QUEST_* environment variables.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RunnerConfig:
    """Settings shared by every quest run. All durations are milliseconds."""
    data_dir: Path = Path("data")
    max_steps: int = 30
    budget_extension: int = 10
    message_window: int = 10
    max_consecutive_waits: int = 3
    step_retry_backoff_ms: int = 3000
    settle_ms: int = 2000
    element_timeout_ms: int = 5000
    change_timeout_ms: int = 3000
    fingerprint_poll_ms: int = 250
    click_retry_delay_ms: int = 1000
    navigation_grace_ms: int = 2000
    navigation_timeout_ms: int = 30000
    final_wait_ms: int = 2000
    scroll_amount: int = 384
    viewport_width: int = 1024
    viewport_height: int = 768
    headless: bool = True
    agent_max_tokens: int = 3000
    review_max_tokens: int = 2000
    email_local_part: str = "quest.runner"
    email_domain: str = "example.com"

    @property
    def scripts_dir(self) -> Path:
        return self.data_dir / "scripts"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def knowledge_file(self) -> Path:
        return self.data_dir / "selector-knowledge.json"

    @property
    def definitions_file(self) -> Path:
        return self.data_dir / "quest-definitions.json"


def load_runner_config() -> RunnerConfig:
    """Build a RunnerConfig from the environment, falling back to defaults."""
    defaults = RunnerConfig()
    return RunnerConfig(
        data_dir=Path(os.environ.get("QUEST_DATA_DIR") or defaults.data_dir),
        max_steps=_env_int("QUEST_MAX_STEPS", defaults.max_steps),
        message_window=_env_int("QUEST_MESSAGE_WINDOW", defaults.message_window),
        max_consecutive_waits=_env_int("QUEST_MAX_CONSECUTIVE_WAITS", defaults.max_consecutive_waits),
        navigation_timeout_ms=_env_int("QUEST_NAVIGATION_TIMEOUT_MS", defaults.navigation_timeout_ms),
        headless=_env_bool("QUEST_HEADLESS", defaults.headless),
        email_local_part=os.environ.get("QUEST_EMAIL_LOCAL_PART") or defaults.email_local_part,
        email_domain=os.environ.get("QUEST_EMAIL_DOMAIN") or defaults.email_domain,
    )


# Module-level singleton
_runner_config: RunnerConfig | None = None


def get_runner_config() -> RunnerConfig:
    """Return the process-wide runner configuration."""
    global _runner_config
    if _runner_config is None:
        _runner_config = load_runner_config()
    return _runner_config
