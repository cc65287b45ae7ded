from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict


@dataclass(slots=True)
class RunStatistics:
    """Counters accumulated across one polling cycle."""

    total_processed: int = 0
    pre_filtered: int = 0
    ai_analyzed: int = 0
    spam_filtered: int = 0
    drafts_created: int = 0
    drafts_skipped: int = 0
    errors: int = 0
    categories: Counter = field(default_factory=Counter)

    @property
    def api_calls_saved(self) -> int:
        return self.pre_filtered + self.spam_filtered

    def reset(self) -> None:
        self.total_processed = 0
        self.pre_filtered = 0
        self.ai_analyzed = 0
        self.spam_filtered = 0
        self.drafts_created = 0
        self.drafts_skipped = 0
        self.errors = 0
        self.categories = Counter()

    def as_dict(self) -> Dict:
        data = asdict(self)
        data["categories"] = dict(self.categories)
        return data
