from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Dict, Mapping

from models.run_statistics import RunStatistics

LOGGER = logging.getLogger(__name__)

CYCLE_COUNTERS = (
    "total_processed",
    "pre_filtered",
    "ai_analyzed",
    "spam_filtered",
    "drafts_created",
    "drafts_skipped",
    "errors",
)


class StatisticsService:
    """Very small JSON-backed stats store with cumulative per-account counters."""

    def __init__(self, stats_file: Path):
        self._stats_file = stats_file
        self._stats_file.parent.mkdir(parents=True, exist_ok=True)
        self._stats_file.touch(exist_ok=True)
        if not self._stats_file.read_text(encoding="utf-8").strip():
            self._stats_file.write_text(json.dumps({}), encoding="utf-8")

    def _read(self) -> Dict:
        try:
            return json.loads(self._stats_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Stats file was corrupt, resetting %s", self._stats_file)
            self._stats_file.write_text(json.dumps({}), encoding="utf-8")
            return {}

    def _write(self, payload: Dict) -> None:
        self._stats_file.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    def record_cycle(self, account: str, run: RunStatistics) -> None:
        stats = self._read()
        _accumulate(stats, run)
        _accumulate(self._account_bucket(stats, account), run)
        self._write(stats)

    def record_cleanup(self, account: str, deleted: int, protected: int) -> None:
        stats = self._read()
        for bucket in (stats, self._account_bucket(stats, account)):
            bucket["cleanup_runs"] = bucket.get("cleanup_runs", 0) + 1
            bucket["garbage_deleted"] = bucket.get("garbage_deleted", 0) + deleted
            bucket["garbage_protected"] = bucket.get("garbage_protected", 0) + protected
        self._write(stats)

    def snapshot(self) -> Dict:
        return self._read()

    def _account_bucket(self, stats: Dict, account: str) -> Dict:
        accounts = stats.setdefault("accounts", {})
        return accounts.setdefault(account, {})


def _accumulate(bucket: Dict, run: RunStatistics) -> None:
    bucket["cycles"] = bucket.get("cycles", 0) + 1
    for name in CYCLE_COUNTERS:
        bucket[name] = bucket.get(name, 0) + getattr(run, name)
    bucket["api_calls_saved"] = bucket.get("api_calls_saved", 0) + run.api_calls_saved
    bucket["categories"] = _merge_counts(bucket.get("categories", {}), run.categories)


def _merge_counts(existing: Mapping[str, int], new: Mapping[str, int]) -> Dict[str, int]:
    merged = Counter(existing)
    for key, count in new.items():
        merged[key] += count
    return dict(merged)
