import pytest

from compliance_engine.config import AnalysisTuning, Settings


def test_analysis_tuning_defaults_keep_tier_order() -> None:
    tuning = AnalysisTuning()

    assert [tier.score for tier in tuning.coverage_tiers] == [98, 92, 87, 82, 75, 60, 40]
    assert [tier.min_specific_matches for tier in tuning.coverage_tiers[:3]] == [5, 3, 2]
    assert [tier.min_total_length for tier in tuning.coverage_tiers[:4]] == [800, 500, 300, 200]
    assert [bonus.ceiling for bonus in tuning.content_bonuses] == [95, 92, 90]


def test_analysis_tuning_reads_nested_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANALYSIS__MAX_SEGMENTS", "4")
    monkeypatch.setenv("ANALYSIS__AUDIT_COVERAGE_BONUSES", "[[0.5, 9]]")

    tuning = Settings(_env_file=None).analysis

    assert tuning.max_segments == 4
    assert tuning.audit_coverage_bonuses == ((0.5, 9),)
    assert tuning.relevance_threshold == 60
