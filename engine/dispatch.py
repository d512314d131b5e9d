"""
Cancellable dispatch of simulation runs.

The calling layer (UI, API handler) re-submits whenever inputs change. Each
submission gets a generation number; submitting again cancels the previous run
and only the latest generation is allowed to publish its result.

    dispatcher = SimulationDispatcher(on_result=store.save)
    ticket = dispatcher.submit(dataset, config)
    ...
    dispatcher.submit(dataset, config2)   # ticket.cancel_event is now set
    ticket.future.exception()             # SimulationCancelled (or None if it had finished)

Runs execute on a single worker thread, one at a time, in submission order.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from core.config import RunRequest, SimulationConfig
from core.model import ProjectDataset

from .draws import SimulationCancelled
from .runner import SimulationResults, run_simulation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationTicket:
    generation: int
    future: Future
    cancel_event: threading.Event

    def cancel(self) -> None:
        self.cancel_event.set()
        self.future.cancel()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class SimulationDispatcher:
    """
    Single-worker executor with latest-generation-wins publishing.

    Parameters
    ----------
    on_result : callable, optional
        Called with the SimulationResults of the latest generation only.
    runner : callable
        Defaults to engine.runner.run_simulation.
    """

    def __init__(
        self,
        on_result: Optional[Callable[[SimulationResults], None]] = None,
        *,
        runner: Callable[..., SimulationResults] = run_simulation,
    ):
        self._on_result = on_result
        self._runner = runner
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="simulation")
        self._lock = threading.RLock()
        self._generation = 0
        self._current: Optional[SimulationTicket] = None

    @property
    def latest_generation(self) -> int:
        return self._generation

    def is_current(self, ticket: SimulationTicket) -> bool:
        return ticket.generation == self._generation

    def submit(
        self,
        dataset: ProjectDataset,
        config: Optional[SimulationConfig] = None,
        **run_kwargs,
    ) -> SimulationTicket:
        """Cancel the in-flight run (if any) and queue a new one."""
        with self._lock:
            if self._current is not None:
                self._current.cancel()
            self._generation += 1
            generation = self._generation
            cancel_event = threading.Event()
            future = self._executor.submit(
                self._run, generation, cancel_event, dataset, config, run_kwargs
            )
            self._current = SimulationTicket(generation, future, cancel_event)
            return self._current

    def submit_request(
        self,
        dataset: ProjectDataset,
        request: RunRequest,
        base_config: Optional[SimulationConfig] = None,
        **run_kwargs,
    ) -> SimulationTicket:
        """Submit from the boundary model: config and active levers come from `request`."""
        return self.submit(
            dataset,
            request.to_config(base_config),
            active_levers=request.active_levers,
            **run_kwargs,
        )

    def _run(
        self,
        generation: int,
        cancel_event: threading.Event,
        dataset: ProjectDataset,
        config: Optional[SimulationConfig],
        run_kwargs: dict,
    ) -> SimulationResults:
        try:
            results = self._runner(dataset, config, cancel_event=cancel_event, **run_kwargs)
        except SimulationCancelled:
            logger.info("Simulation generation %d cancelled", generation)
            raise
        self._publish(generation, results)
        return results

    def _publish(self, generation: int, results: SimulationResults) -> bool:
        with self._lock:
            if generation != self._generation:
                logger.info(
                    "Discarding result of generation %d (latest is %d)",
                    generation, self._generation,
                )
                return False
            if self._on_result is not None:
                self._on_result(results)
            return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._current is not None:
                self._current.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "SimulationDispatcher":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
