"""
Tests for the month-by-month iteration walk.
"""

import numpy as np
import pytest

from core.model import UncertaintyParam
from core.schema import ENG_BUCKET, LAPSE
from distributions.sampler import CorrelatedUniformSampler
from engine.iteration import (
    DrawMultipliers,
    compile_layout,
    run_iteration,
    walk_months,
)


def neutral_walk(dataset, **kwargs):
    layout = compile_layout(dataset)
    return walk_months(dataset, layout, DrawMultipliers.neutral(layout, dataset.horizon), **kwargs)


class TestLayout:
    """Bucket x component slices."""

    def test_slices_and_shares(self, two_bucket_dataset):
        layout = compile_layout(two_bucket_dataset)
        assert layout.slice_keys == ("CIVIL:MATERIAL", "CIVIL:SERVICE", "MEP:MATERIAL", "MEP:SERVICE")
        assert layout.slice_share.tolist() == pytest.approx([0.3, 0.3, 0.2, 0.2])

    def test_bucket_without_components_is_one_slice(self, make_dataset):
        ds = make_dataset([50.0], [50.0], buckets={"SITE": 1.0}, components={})
        layout = compile_layout(ds)
        assert layout.slice_keys == ("SITE:ALL",)
        assert layout.slice_share.tolist() == [1.0]


class TestDeterministicWalk:
    """Walks with forced (neutral or chosen) multipliers."""

    def test_one_month_two_buckets(self, two_bucket_dataset):
        res = neutral_walk(two_bucket_dataset)
        assert res.monthly_demand[0] == pytest.approx(100.0, abs=1e-12)
        assert res.monthly_inflow[0] == pytest.approx(100.0, abs=1e-12)
        assert res.monthly_shortfall[0] == 0.0
        assert res.total_inflow == pytest.approx(100.0, abs=1e-12)
        assert not res.has_shortfall
        assert res.first_breach_month == -1
        assert res.is_reliable
        assert all(v == pytest.approx(0.0, abs=1e-12) for v in res.driver_impacts.values())

    def test_shortfall_when_demand_exceeds_plan(self, make_dataset):
        res = neutral_walk(make_dataset([150.0], [120.0]))
        assert res.monthly_inflow[0] == pytest.approx(120.0)
        assert res.monthly_shortfall[0] == pytest.approx(30.0)
        assert res.has_shortfall
        assert res.first_breach_month == 0

    def test_forced_bucket_multiplier_recorded_as_driver_delta(self, two_bucket_dataset):
        layout = compile_layout(two_bucket_dataset)
        mult = DrawMultipliers(
            bucket=np.array([[1.2, 1.0]]),
            component=np.ones((1, 4)),
            dept=np.ones((1, 0)),
        )
        res = walk_months(two_bucket_dataset, layout, mult)
        assert res.monthly_demand[0] == pytest.approx(112.0)
        impacts = res.driver_impacts
        assert impacts["CIVIL:MATERIAL"] == pytest.approx(6.0)
        assert impacts["CIVIL:SERVICE"] == pytest.approx(6.0)
        assert impacts["MEP:MATERIAL"] == pytest.approx(0.0)

    def test_rollover_carries_underspend(self, make_dataset):
        ds = make_dataset([60.0, 80.0], [100.0, 50.0])
        res = neutral_walk(ds)
        assert res.monthly_available.tolist() == pytest.approx([100.0, 90.0])
        assert res.monthly_shortfall.tolist() == pytest.approx([0.0, 0.0])

    def test_lapse_discards_underspend(self, lapse_dataset):
        res = neutral_walk(lapse_dataset)
        assert lapse_dataset.meta.underspend_policy == LAPSE
        assert res.monthly_available.tolist() == pytest.approx([100.0, 50.0])
        assert res.monthly_shortfall.tolist() == pytest.approx([0.0, 30.0])

    def test_first_month_has_no_rollover(self, make_dataset):
        res = neutral_walk(make_dataset([10.0], [40.0]))
        assert res.monthly_available[0] == pytest.approx(40.0)

    def test_cap_protects_engineering(self, make_dataset):
        ds = make_dataset([80.0], [100.0], cap_total=100.0, protect_engineering=True,
                          other_planned=np.array([[50.0]]), other_depts=("OPS",))
        res = neutral_walk(ds)
        assert res.cap_bound[0]
        assert res.monthly_inflow[0] == pytest.approx(80.0)
        assert res.monthly_shortfall[0] == pytest.approx(0.0)
        assert res.monthly_other_spend[0] == pytest.approx(20.0)

    def test_protected_engineering_short_on_budget_keeps_priority(self, make_dataset):
        # engineering's own plan (50) is below the headroom (80) and below its demand (100)
        ds = make_dataset([100.0], [50.0], cap_total=80.0, protect_engineering=True,
                          other_planned=np.array([[50.0]]), other_depts=("OPS",))
        res = neutral_walk(ds)
        assert res.cap_bound[0]
        assert res.monthly_inflow[0] == pytest.approx(50.0)
        eng_frac = res.monthly_inflow[0] / 100.0
        other_frac = res.monthly_other_spend[0] / 50.0
        assert eng_frac >= other_frac
        assert res.monthly_other_spend[0] == pytest.approx(25.0)

    def test_cap_scales_everyone_without_protection(self, make_dataset):
        ds = make_dataset([80.0], [100.0], cap_total=100.0, protect_engineering=False,
                          other_planned=np.array([[50.0]]), other_depts=("OPS",))
        res = neutral_walk(ds)
        ratio = 100.0 / 130.0
        assert res.cap_bound[0]
        assert res.monthly_inflow[0] == pytest.approx(80.0 * ratio)
        assert res.monthly_other_spend[0] == pytest.approx(50.0 * ratio)
        assert res.monthly_shortfall[0] == pytest.approx(80.0 * (1 - ratio))
        assert res.monthly_inflow[0] + res.monthly_other_spend[0] == pytest.approx(100.0)

    def test_exhausted_cap_starves_later_months(self, make_dataset):
        ds = make_dataset([60.0, 60.0], [100.0, 100.0], cap_total=60.0)
        res = neutral_walk(ds)
        assert res.monthly_inflow.tolist() == pytest.approx([60.0, 0.0])
        assert res.monthly_shortfall.tolist() == pytest.approx([0.0, 60.0])
        assert res.is_reliable

    def test_final_quarter_flag(self, make_dataset):
        early = neutral_walk(make_dataset([50.0, 10.0, 10.0, 10.0], [20.0, 50.0, 50.0, 50.0]))
        late = neutral_walk(make_dataset([10.0, 10.0, 10.0, 50.0], [50.0, 0.0, 0.0, 0.0],
                                         policy=LAPSE))
        assert early.first_breach_month == 0
        assert not early.final_quarter_breach
        assert late.final_quarter_breach

    def test_zero_horizon(self, make_dataset):
        res = neutral_walk(make_dataset([], []))
        assert res.monthly_inflow.size == 0
        assert res.monthly_shortfall.size == 0
        assert res.total_inflow == 0.0
        assert res.first_breach_month == -1
        assert not res.has_shortfall


class TestSampledIteration:
    """Randomised draws keep the per-month identities."""

    def test_identities_hold(self, risky_dataset):
        layout = compile_layout(risky_dataset)
        sampler = CorrelatedUniformSampler.constant(len(layout.bucket_ids), 0.3)
        for seed in range(20):
            res = run_iteration(risky_dataset, layout, np.random.default_rng(seed), sampler,
                                volatility=1.5)
            assert np.all(res.monthly_shortfall >= 0.0)
            assert np.all(res.monthly_inflow <= res.monthly_demand + 1e-9)
            assert np.all(res.monthly_inflow <= res.monthly_available + 1e-9)
            assert np.allclose(res.monthly_inflow + res.monthly_shortfall, res.monthly_demand)
            spend = np.cumsum(res.monthly_inflow + res.monthly_other_spend)
            assert spend[-1] <= risky_dataset.meta.cap_total + 0.1
            assert res.is_reliable

    def test_same_generator_state_same_draw(self, risky_dataset):
        layout = compile_layout(risky_dataset)
        sampler = CorrelatedUniformSampler.constant(2, 0.3)
        a = run_iteration(risky_dataset, layout, np.random.default_rng(7), sampler)
        b = run_iteration(risky_dataset, layout, np.random.default_rng(7), sampler)
        assert np.array_equal(a.monthly_demand, b.monthly_demand)
        assert np.array_equal(a.monthly_shortfall, b.monthly_shortfall)

    def test_neutral_uncertainty_reproduces_baseline(self, make_dataset):
        ds = make_dataset([30.0, 40.0], [50.0, 50.0],
                          uncertainty={(ENG_BUCKET, "CIVIL"): UncertaintyParam()})
        layout = compile_layout(ds)
        sampler = CorrelatedUniformSampler.constant(2, 0.3)
        res = run_iteration(ds, layout, np.random.default_rng(0), sampler)
        assert res.monthly_demand.tolist() == pytest.approx([30.0, 40.0])
