"""File-based storage for quest definitions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from quest_runner.schemas.quest_schema import QuestDefinition

logger = logging.getLogger(__name__)


class QuestDefinitionsRepo:
    """All quest definitions in one JSON file: ``{"quests": [...], "lastUpdated": ...}``."""

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = Path("data/quest-definitions.json")
        self.path = Path(path)

    def _load(self) -> list[QuestDefinition]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return [QuestDefinition.model_validate(q) for q in data.get("quests", [])]
        except (json.JSONDecodeError, OSError, ValueError) as exc:
            logger.warning("Failed to read quest definitions %s: %s", self.path, exc)
            return []

    def _write(self, quests: list[QuestDefinition]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "quests": [q.model_dump(by_alias=True, exclude_none=True) for q in quests],
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    def list(self) -> list[QuestDefinition]:
        return self._load()

    def get(self, quest_id: str) -> QuestDefinition | None:
        return next((q for q in self._load() if q.id == quest_id), None)

    def exists(self, quest_id: str) -> bool:
        return self.get(quest_id) is not None

    def save(self, definition: QuestDefinition) -> None:
        """Insert or replace the definition with the same id."""
        quests = self._load()
        for i, existing in enumerate(quests):
            if existing.id == definition.id:
                quests[i] = definition
                break
        else:
            quests.append(definition)
        self._write(quests)

    def delete(self, quest_id: str) -> bool:
        """Delete a definition. Returns True if deleted, False if not found."""
        quests = self._load()
        remaining = [q for q in quests if q.id != quest_id]
        if len(remaining) == len(quests):
            return False
        self._write(remaining)
        return True
