"""
Tests for configuration objects and the core data model.
"""

import numpy as np
import pytest
from pydantic import ValidationError

from core.config import KillChainThresholds, RunRequest, SimulationConfig
from core.model import NEUTRAL, ProjectDataset, ProjectMeta, UncertaintyParam
from core.schema import LAPSE
from core.utils import month_labels, percentile


class TestSimulationConfig:

    @pytest.mark.parametrize("kwargs", [
        {"iterations": 0},
        {"seed": -1},
        {"volatility_factor": -0.1},
        {"corr_strength": 1.2},
        {"n_workers": 0},
        {"chunk_size": 0},
        {"sensitivity_iterations": 0},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            SimulationConfig(**kwargs)

    def test_with_overrides(self):
        config = SimulationConfig(seed=3).with_overrides(iterations=10)
        assert (config.iterations, config.seed) == (10, 3)


class TestRunRequest:

    def test_validation(self):
        with pytest.raises(ValidationError):
            RunRequest(iterations=0)
        with pytest.raises(ValidationError):
            RunRequest(corr_strength=1.5)
        with pytest.raises(ValidationError):
            RunRequest(seed=-1)
        assert RunRequest(seed=0).to_config().seed == 0

    def test_to_config_keeps_base_settings(self):
        base = SimulationConfig(n_workers=4, run_sensitivity=False)
        config = RunRequest(iterations=200, seed=9, volatility_factor=1.3).to_config(base)
        assert config.iterations == 200
        assert config.seed == 9
        assert config.volatility_factor == 1.3
        assert config.n_workers == 4
        assert config.run_sensitivity is False


class TestKillChainThresholds:

    def test_tiers(self):
        t = KillChainThresholds()
        assert [t.tier(m) for m in (0.5, 1.0, 7.0, 10.0)] == ["LOW", "MED", "HIGH", "CRITICAL"]


class TestUncertaintyParam:

    def test_scaled(self):
        p = UncertaintyParam(0.8, 1.0, 1.4, ramp_pct=0.05).scaled(0.5)
        assert (p.low, p.mode, p.high) == pytest.approx((0.9, 1.0, 1.2))
        assert p.ramp_pct == 0.05
        assert UncertaintyParam(0.8, 1.0, 1.4).scaled(0.0).spread == 0.0

    def test_widened(self):
        p = UncertaintyParam(0.9, 1.0, 1.2).widened(1.5)
        assert (p.low, p.mode, p.high) == pytest.approx((0.85, 1.0, 1.3))
        assert UncertaintyParam(0.9, 1.0, 1.2).widened(1.0) == UncertaintyParam(0.9, 1.0, 1.2)

    def test_neutral(self):
        assert NEUTRAL.is_neutral
        assert not UncertaintyParam(1.0, 1.0, 1.0, ramp_pct=0.1).is_neutral


class TestProjectModel:

    def test_meta_validation(self):
        with pytest.raises(ValueError):
            ProjectMeta("P", 100.0, 12, underspend_policy="SPEND_IT_ALL")
        with pytest.raises(ValueError):
            ProjectMeta("P", 100.0, -1)
        assert not ProjectMeta("P", 100.0, 12, underspend_policy=LAPSE).rollover

    def test_series_length_mismatch(self):
        meta = ProjectMeta("P", 100.0, 2)
        with pytest.raises(ValueError, match="length mismatch"):
            ProjectDataset(
                meta=meta,
                months=("2025-01", "2025-02"),
                demand=np.array([1.0, 2.0, 3.0]),
                eng_planned=np.array([1.0, 2.0]),
                buckets=(),
                bucket_shares={},
                component_shares={},
            )

    def test_other_planned_defaults_to_empty_matrix(self):
        ds = ProjectDataset(
            meta=ProjectMeta("P", 100.0, 1),
            months=("2025-01",),
            demand=np.array([1.0]),
            eng_planned=np.array([1.0]),
            buckets=(),
            bucket_shares={},
            component_shares={},
        )
        assert ds.other_planned.shape == (1, 0)


class TestUtils:

    def test_month_labels_cross_year(self):
        assert month_labels("2025-11", 3) == ["2025-11", "2025-12", "2026-01"]

    def test_percentile_is_order_statistic(self):
        values = np.arange(10, dtype=float)[::-1]
        assert percentile(values, 0.5) == 5.0
        assert percentile(values, 0.8) == 8.0
        assert percentile(values, 1.0) == 9.0
        assert percentile(np.array([]), 0.5) == 0.0
