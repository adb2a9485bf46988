"""File-based selector knowledge base."""

from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Strip the query string so a page matches across visits."""
    return url.split("?", 1)[0]


class KnowledgeBase:
    """Per-URL selectors that have worked before.

    Stored as one JSON file mapping normalized URL to an ordered list of
    selectors. Entries are only ever appended; they are offered to the agent
    as hints, so stale ones cost nothing.
    """

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = Path("data/selector-knowledge.json")
        self.path = Path(path)

    def _load(self) -> dict[str, list[str]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load knowledge base %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get_proven_selectors(self, url: str) -> list[str]:
        """Selectors learned for this page, in the order they were learned."""
        return list(self._load().get(normalize_url(url), []))

    def learn(self, url: str, selector: str) -> bool:
        """Record a working selector. Returns True if it was new."""
        if not selector:
            return False
        data = self._load()
        selectors = data.setdefault(normalize_url(url), [])
        if selector in selectors:
            return False
        selectors.append(selector)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        return True
