from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class GarbageCategory(str, Enum):
    OBVIOUS_SPAM = "obvious_spam"
    PROMOTIONAL_OLD = "promotional_old"
    SUSPICIOUS_DOMAIN = "suspicious_domain"
    IMPORTANT = "important"
    SAFE = "safe"


class Recommendation(str, Enum):
    DELETE = "delete"
    KEEP = "keep"
    REVIEW = "review"


class SafetyCheck(str, Enum):
    PASSED = "passed"
    FAILED_IMPORTANT_DETECTED = "failed_important_detected"
    FAILED_BUSINESS_DETECTED = "failed_business_detected"


@dataclass(slots=True)
class GarbageAnalysis:
    """Verdict of the garbage detector for a single message."""

    is_garbage: bool
    confidence: int
    reasons: List[str] = field(default_factory=list)
    category: GarbageCategory = GarbageCategory.SAFE
    recommendation: Recommendation = Recommendation.KEEP
    safety_check: SafetyCheck = SafetyCheck.PASSED

    def __post_init__(self) -> None:
        self.confidence = int(max(0, min(100, self.confidence)))

    @property
    def vetoed(self) -> bool:
        return self.safety_check is not SafetyCheck.PASSED

    @property
    def deletable(self) -> bool:
        return (
            self.is_garbage
            and self.recommendation is Recommendation.DELETE
            and self.safety_check is SafetyCheck.PASSED
        )


@dataclass(slots=True)
class GarbageCleanupResult:
    total_analyzed: int = 0
    marked_for_deletion: int = 0
    actually_deleted: int = 0
    skipped_important: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = True
    report: str = ""
