"""Threat scoring: cumulative failed attempts for an IP -> coarse severity bucket."""

from enum import Enum


class ThreatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {
    ThreatLevel.LOW: 0,
    ThreatLevel.MEDIUM: 1,
    ThreatLevel.HIGH: 2,
    ThreatLevel.CRITICAL: 3,
}


class ThreatScorer:
    """Pure, monotonic mapping from attempt count to ``ThreatLevel``.

    Thresholds are read from config if available, otherwise use defaults.
    """

    def __init__(self, medium: int = 10, high: int = 20, critical: int = 50):
        if not 0 < medium < high < critical:
            raise ValueError("threat thresholds must satisfy 0 < medium < high < critical")
        self.medium = medium
        self.high = high
        self.critical = critical

    @classmethod
    def from_config(cls, config) -> "ThreatScorer":
        return cls(
            medium=config.threat_medium_threshold,
            high=config.threat_high_threshold,
            critical=config.threat_critical_threshold,
        )

    def score(self, attempts: int) -> ThreatLevel:
        if attempts >= self.critical:
            return ThreatLevel.CRITICAL
        if attempts >= self.high:
            return ThreatLevel.HIGH
        if attempts >= self.medium:
            return ThreatLevel.MEDIUM
        return ThreatLevel.LOW
