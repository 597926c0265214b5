"""Tests for ThreatScorer thresholds and monotonicity."""

import pytest

from bastion.detection.scorer import ThreatLevel, ThreatScorer


@pytest.mark.parametrize("attempts,level", [
    (1, ThreatLevel.LOW),
    (9, ThreatLevel.LOW),
    (10, ThreatLevel.MEDIUM),
    (19, ThreatLevel.MEDIUM),
    (20, ThreatLevel.HIGH),
    (49, ThreatLevel.HIGH),
    (50, ThreatLevel.CRITICAL),
    (10_000, ThreatLevel.CRITICAL),
])
def test_default_thresholds(attempts, level):
    assert ThreatScorer().score(attempts) == level


def test_monotonic():
    scorer = ThreatScorer()
    ranks = [scorer.score(n).rank for n in range(0, 200)]
    assert ranks == sorted(ranks)


def test_custom_thresholds_from_config(config):
    config.threat_medium_threshold = 3
    config.threat_high_threshold = 5
    config.threat_critical_threshold = 8
    scorer = ThreatScorer.from_config(config)
    assert scorer.score(3) == ThreatLevel.MEDIUM
    assert scorer.score(8) == ThreatLevel.CRITICAL


@pytest.mark.parametrize("medium,high,critical", [(10, 10, 50), (20, 10, 50), (0, 5, 10)])
def test_rejects_non_increasing_thresholds(medium, high, critical):
    with pytest.raises(ValueError):
        ThreatScorer(medium, high, critical)


def test_config_rejects_non_increasing_thresholds():
    from pydantic import ValidationError

    from bastion.config import BastionConfig

    with pytest.raises(ValidationError):
        BastionConfig(_env_file=None, threat_medium_threshold=30, threat_high_threshold=20)
