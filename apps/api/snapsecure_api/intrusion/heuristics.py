"""Threshold-based intrusion scoring.

This component only decides. Executing the returned action (blocking an
IP, asking for re-verification) is the caller's job.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from snapsecure_api.audit.service import AuditTrailService
from snapsecure_api.firewall.state import FirewallState
from snapsecure_api.utils.metrics import intrusion_detections

logger = logging.getLogger(__name__)

RAPID_ACTIVITY = "rapid_activity"
UNUSUAL_PERMISSION_PATTERN = "unusual_permission_pattern"
FILE_ACCESS_ANOMALY = "file_access_anomaly"


class ThreatLevel(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ThreatAction(str, Enum):
    CONTINUE = "continue"
    MONITOR = "monitor"
    REQUIRE_VERIFICATION = "require_verification"
    BLOCK_USER = "block_user"


@dataclass(frozen=True)
class ThreatAssessment:
    """Result of an intrusion evaluation."""

    threat: bool
    level: ThreatLevel
    action: ThreatAction
    signals: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "threat": self.threat,
            "level": self.level.value,
            "action": self.action.value,
            "signals": list(self.signals),
        }


class ThreatStrategy(ABC):
    """Maps matched signals to a level and action."""

    @abstractmethod
    def score(self, signals: list[str]) -> tuple[ThreatLevel, ThreatAction]:
        pass


class ThresholdStrategy(ThreatStrategy):
    """Level by number of matched signals: 0 none, 1 medium, 2 high, 3+ critical."""

    ACTIONS = {
        ThreatLevel.NONE: ThreatAction.CONTINUE,
        ThreatLevel.MEDIUM: ThreatAction.MONITOR,
        ThreatLevel.HIGH: ThreatAction.REQUIRE_VERIFICATION,
        ThreatLevel.CRITICAL: ThreatAction.BLOCK_USER,
    }

    def score(self, signals: list[str]) -> tuple[ThreatLevel, ThreatAction]:
        matched = len(signals)
        if matched == 0:
            level = ThreatLevel.NONE
        elif matched == 1:
            level = ThreatLevel.MEDIUM
        elif matched == 2:
            level = ThreatLevel.HIGH
        else:
            level = ThreatLevel.CRITICAL
        return level, self.ACTIONS[level]


class IntrusionHeuristics:
    """Stateful per-user counters feeding a pluggable scoring strategy."""

    def __init__(
        self,
        state: FirewallState,
        audit: AuditTrailService,
        strategy: Optional[ThreatStrategy] = None,
        rapid_activity_threshold: int = 20,
        activity_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize heuristics."""
        self.state = state
        self.audit = audit
        self.strategy = strategy or ThresholdStrategy()
        self.rapid_activity_threshold = rapid_activity_threshold
        self.activity_window = activity_window
        self._clock = clock

    def _activity_key(self, user_id) -> tuple[str, str]:
        return (RAPID_ACTIVITY, str(user_id))

    def note_activity(self, user_id) -> int:
        """Count one action by user in the current activity window."""
        _, count = self.state.hit_window(
            self._activity_key(user_id), self._clock(), self.activity_window, None
        )
        return count

    def activity_count(self, user_id) -> int:
        return self.state.window_count(self._activity_key(user_id), self._clock())

    def evaluate(self, user_id, activity: str, metadata: Optional[dict] = None) -> ThreatAssessment:
        """Score an activity. Audits whenever at least one signal matched."""
        metadata = metadata or {}
        signals: list[str] = []

        if self.activity_count(user_id) > self.rapid_activity_threshold:
            signals.append(RAPID_ACTIVITY)
        if "permission" in activity and metadata.get("unusual_pattern"):
            signals.append(UNUSUAL_PERMISSION_PATTERN)
        if "file_access" in activity and metadata.get("suspicious_size"):
            signals.append(FILE_ACCESS_ANOMALY)

        level, action = self.strategy.score(signals)
        assessment = ThreatAssessment(
            threat=bool(signals),
            level=level,
            action=action,
            signals=tuple(signals),
        )
        if not signals:
            return assessment

        intrusion_detections.labels(level=level.value).inc()
        logger.warning(
            "Intrusion detected",
            extra={
                "user_id": user_id,
                "activity": activity,
                "signals": signals,
                "level": level.value,
                "action": action.value,
            },
        )
        self.audit.record(
            user_id if isinstance(user_id, int) else None,
            "intrusion_detected",
            f"Intrusion detected: {', '.join(signals)}",
            level.value,
        )
        return assessment
