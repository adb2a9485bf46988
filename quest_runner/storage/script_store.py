"""File-based storage for replayable quest scripts."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from quest_runner.schemas.quest_schema import QuestScript
from quest_runner.storage.quest_definitions_repo import QuestDefinitionsRepo

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 14


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ScriptStore:
    """One JSON file per quest: ``{base_dir}/{quest_id}.json``.

    Scripts expire after the quest's retention window; an expired script is
    deleted the first time it is read. Last write wins.
    """

    def __init__(
        self,
        base_dir: str | Path | None = None,
        definitions: QuestDefinitionsRepo | None = None,
        default_retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if base_dir is None:
            base_dir = Path("data/scripts")
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.definitions = definitions
        self.default_retention_days = default_retention_days
        self.clock = clock

    def _path(self, quest_id: str) -> Path:
        return self.base_dir / f"{quest_id}.json"

    def retention_days(self, quest_id: str) -> int:
        if self.definitions is not None:
            definition = self.definitions.get(quest_id)
            if definition is not None and definition.script_expiration_days:
                return definition.script_expiration_days
        return self.default_retention_days

    def get(self, quest_id: str) -> QuestScript | None:
        """Load a script. Returns None if missing, unreadable or expired."""
        path = self._path(quest_id)
        if not path.exists():
            return None
        try:
            script = QuestScript.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, OSError, ValidationError) as exc:
            logger.warning("Failed to read script for %s: %s", quest_id, exc)
            return None

        if script.expires_at and self.clock() > _parse_timestamp(script.expires_at):
            logger.info("Script for %s has expired. Deleting...", quest_id)
            path.unlink(missing_ok=True)
            return None
        return script

    def save(self, quest_id: str, script: QuestScript) -> QuestScript:
        """Stamp the expiry and overwrite the stored script atomically."""
        expires_at = self.clock() + timedelta(days=self.retention_days(quest_id))
        stamped = script.model_copy(update={"expires_at": expires_at.isoformat()})
        payload = json.dumps(stamped.model_dump(by_alias=True, exclude_none=True), indent=2, ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=f".{quest_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._path(quest_id))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return stamped

    def delete(self, quest_id: str) -> bool:
        """Delete a script. Returns True if deleted, False if not found."""
        path = self._path(quest_id)
        if path.exists():
            path.unlink()
            return True
        return False
