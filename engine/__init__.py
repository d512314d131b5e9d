"""
Simulation engine — iteration walk, draw pool, mitigation levers, runner and dispatch.
"""

from .draws import DrawSet, SimulationCancelled, simulate_draws
from .iteration import IterationResult, compile_layout, run_iteration, walk_months
from .mitigation import DEFAULT_LEVERS, MitigationLever, apply_levers
from .runner import SimulationResults, run_simulation
from .dispatch import SimulationDispatcher, SimulationTicket

__all__ = [
    "DrawSet",
    "SimulationCancelled",
    "simulate_draws",
    "IterationResult",
    "compile_layout",
    "run_iteration",
    "walk_months",
    "DEFAULT_LEVERS",
    "MitigationLever",
    "apply_levers",
    "SimulationResults",
    "run_simulation",
    "SimulationDispatcher",
    "SimulationTicket",
]
