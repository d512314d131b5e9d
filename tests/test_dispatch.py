"""
Tests for cancellable dispatch with latest-generation publishing.
"""

import threading

import pytest

from core.config import RunRequest, SimulationConfig
from engine.dispatch import SimulationDispatcher
from engine.draws import SimulationCancelled

TIMEOUT = 10


class FakeRunner:
    """Runner stand-in: "slow" waits until cancelled, "gated" waits on a gate, anything else returns."""

    def __init__(self):
        self.started = threading.Event()
        self.gate = threading.Event()
        self.calls = []

    def __call__(self, dataset, config, cancel_event=None, **kwargs):
        self.calls.append((dataset, config, kwargs))
        self.started.set()
        if dataset == "slow":
            if cancel_event.wait(TIMEOUT):
                raise SimulationCancelled("cancelled")
        if dataset == "gated":
            self.gate.wait(TIMEOUT)
        return f"result:{dataset}"


class TestDispatcher:

    def test_newer_submission_cancels_older(self):
        runner = FakeRunner()
        published = []
        with SimulationDispatcher(published.append, runner=runner) as dispatcher:
            first = dispatcher.submit("slow")
            assert runner.started.wait(TIMEOUT)
            second = dispatcher.submit("fast")
            assert first.cancelled
            assert second.future.result(timeout=TIMEOUT) == "result:fast"
            assert isinstance(first.future.exception(timeout=TIMEOUT), SimulationCancelled)
        assert published == ["result:fast"]
        assert (first.generation, second.generation) == (1, 2)

    def test_stale_result_is_not_published(self):
        runner = FakeRunner()
        published = []
        with SimulationDispatcher(published.append, runner=runner) as dispatcher:
            first = dispatcher.submit("gated")
            assert runner.started.wait(TIMEOUT)
            second = dispatcher.submit("fast")
            runner.gate.set()
            # the gated run ignores its cancel event and completes anyway
            assert first.future.result(timeout=TIMEOUT) == "result:gated"
            assert second.future.result(timeout=TIMEOUT) == "result:fast"
            assert not dispatcher.is_current(first)
            assert dispatcher.is_current(second)
        assert published == ["result:fast"]

    def test_submit_request_passes_config_and_levers(self):
        runner = FakeRunner()
        with SimulationDispatcher(runner=runner) as dispatcher:
            request = RunRequest(iterations=10, seed=5, active_levers=["scope_cap"])
            ticket = dispatcher.submit_request("fast", request)
            ticket.future.result(timeout=TIMEOUT)
        _, config, kwargs = runner.calls[0]
        assert config.iterations == 10
        assert config.seed == 5
        assert kwargs["active_levers"] == ["scope_cap"]

    def test_real_run_is_published(self, risky_dataset):
        published = []
        with SimulationDispatcher(published.append) as dispatcher:
            ticket = dispatcher.submit(
                risky_dataset, SimulationConfig(iterations=50, seed=2, run_sensitivity=False)
            )
            results = ticket.future.result(timeout=60)
        assert published == [results]
        assert results.diagnostics.seed == 2
        assert dispatcher.latest_generation == 1

    def test_runner_errors_surface_on_the_future(self):
        def broken(dataset, config, cancel_event=None, **kwargs):
            raise ValueError("bad input")

        published = []
        with SimulationDispatcher(published.append, runner=broken) as dispatcher:
            ticket = dispatcher.submit("anything")
            with pytest.raises(ValueError):
                ticket.future.result(timeout=TIMEOUT)
        assert published == []
