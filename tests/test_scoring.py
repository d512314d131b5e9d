"""
Tests for the deterministic monthly risk scorer.
"""

import pytest

from core.config import RiskLimits
from risk.aggregator import MonthlyStats
from risk.scoring import capacity_score, risk_level, score_months, velocity_score


def stats(month_index, demand_p50=50.0, demand_p80=60.0, shortfall_prob=0.0):
    return MonthlyStats(
        month=f"2025-{month_index + 1:02d}",
        month_index=month_index,
        planned_allocation=0.0,
        planned_outflow=demand_p50,
        realizable_inflow_p10=0.0,
        realizable_inflow_p20=0.0,
        realizable_inflow_p50=0.0,
        realizable_inflow_p80=0.0,
        realizable_inflow_p90=0.0,
        demand_p10=demand_p50,
        demand_p50=demand_p50,
        demand_p80=demand_p80,
        demand_p90=demand_p80,
        shortfall_p10=0.0,
        shortfall_p50=0.0,
        shortfall_p80=0.0,
        shortfall_p90=0.0,
        shortfall_expected=0.0,
        shortfall_prob=shortfall_prob,
        coverage_prob=1.0 - shortfall_prob,
        safe_spend_limit=0.0,
        gap_to_fix=0.0,
        cap_bound_prob=0.0,
    )


class TestFactors:

    def test_velocity(self):
        assert velocity_score(150.0, 100.0, 1.5) == 0.0
        assert velocity_score(175.0, 100.0, 1.5) == pytest.approx(50.0)
        assert velocity_score(300.0, 100.0, 1.5) == 100.0
        assert velocity_score(50.0, 0.0, 1.5) == 0.0

    def test_capacity(self):
        assert capacity_score(100.0, 100.0) == 0.0
        assert capacity_score(110.0, 100.0) == pytest.approx(50.0)
        assert capacity_score(500.0, 100.0) == 100.0

    def test_non_positive_burn_limit_disables_capacity(self):
        assert capacity_score(500.0, 0.0) == 0.0
        assert capacity_score(500.0, -1.0) == 0.0

    def test_levels(self):
        assert risk_level(20.0) == "LOW"
        assert risk_level(20.5) == "MED"
        assert risk_level(50.0) == "MED"
        assert risk_level(80.0) == "HIGH"
        assert risk_level(80.1) == "CRITICAL"


class TestScoreMonths:

    def test_one_score_per_month(self):
        scores = score_months([stats(0), stats(1), stats(2)], RiskLimits())
        assert [s.month for s in scores] == [1, 2, 3]
        assert [s.month_label for s in scores] == ["2025-01", "2025-02", "2025-03"]

    def test_all_zero_defaults_to_velocity_low(self):
        [score] = score_months([stats(0)], RiskLimits())
        assert score.score == 0.0
        assert score.level == "LOW"
        assert score.primary_factor == "VELOCITY"

    def test_max_factor_wins(self):
        scores = score_months(
            [stats(0, demand_p50=40.0), stats(1, demand_p50=70.0, demand_p80=115.0, shortfall_prob=0.9)],
            RiskLimits(max_monthly_burn=100.0, max_velocity_change=1.5),
        )
        second = scores[1]
        # velocity 1.75x -> 50, capacity 15 / 20 -> 75, liquidity 90
        assert second.breakdown["VELOCITY"] == pytest.approx(50.0)
        assert second.breakdown["CAPACITY"] == pytest.approx(75.0)
        assert second.breakdown["LIQUIDITY"] == pytest.approx(90.0)
        assert second.primary_factor == "LIQUIDITY"
        assert second.level == "CRITICAL"

    def test_ties_follow_priority(self):
        # capacity 10 / 20 -> 50 and liquidity 0.5 -> 50
        [score] = score_months([stats(0, demand_p80=110.0, shortfall_prob=0.5)], RiskLimits())
        assert score.primary_factor == "CAPACITY"

    def test_liquidity_threshold(self):
        low = score_months([stats(0, shortfall_prob=0.1)], RiskLimits())[0]
        high = score_months([stats(0, shortfall_prob=0.15)], RiskLimits())[0]
        assert low.breakdown["LIQUIDITY"] == 0.0
        assert high.breakdown["LIQUIDITY"] == pytest.approx(15.0)

    def test_scores_are_whole_points_rounded_half_up(self):
        [score] = score_months([stats(0, shortfall_prob=0.125)], RiskLimits())
        assert score.breakdown["LIQUIDITY"] == 13
        assert isinstance(score.score, int)

    def test_level_uses_unrounded_score(self):
        # velocity 1.602x -> 20.4: reported as 20 but already above the MED boundary
        scores = score_months(
            [stats(0, demand_p50=100.0), stats(1, demand_p50=160.2)],
            RiskLimits(max_velocity_change=1.5),
        )
        assert scores[1].score == 20
        assert scores[1].level == "MED"
