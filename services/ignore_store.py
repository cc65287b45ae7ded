from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List

LOGGER = logging.getLogger(__name__)


class IgnorePatternStore:
    """Append-only JSON list of sender substrings that are always treated as spam."""

    def __init__(self, patterns_file: Path):
        self._patterns_file = patterns_file

    @property
    def path(self) -> Path:
        return self._patterns_file

    def load(self) -> List[str]:
        if not self._patterns_file.exists():
            return []
        try:
            data = json.loads(self._patterns_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.error("Ignore pattern file %s is not valid JSON; ignoring it", self._patterns_file)
            return []
        if not isinstance(data, list):
            LOGGER.error("Ignore pattern file %s must contain a JSON list", self._patterns_file)
            return []
        return [str(item) for item in data if str(item).strip()]

    def add(self, patterns: Iterable[str]) -> List[str]:
        current = self.load()
        updated = list(dict.fromkeys([*current, *(p.strip() for p in patterns if p and p.strip())]))
        if updated != current or not self._patterns_file.exists():
            self._patterns_file.parent.mkdir(parents=True, exist_ok=True)
            self._patterns_file.write_text(json.dumps(updated, indent=2), encoding="utf-8")
            LOGGER.info("Ignore patterns updated (%s entries)", len(updated))
        return updated

    def matches(self, sender: str) -> str | None:
        lowered = (sender or "").lower()
        for pattern in self.load():
            if pattern.lower() in lowered:
                return pattern
        return None
