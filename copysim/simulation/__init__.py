from copysim.simulation.monte_carlo import MonteCarloSimulator
from copysim.simulation.runner import TrialContext, run_trial
from copysim.simulation.delay import DelayModel, EntryQuote
from copysim.simulation.cache import ReferenceCache, build_reference_cache

__all__ = [
    "MonteCarloSimulator",
    "TrialContext",
    "run_trial",
    "DelayModel",
    "EntryQuote",
    "ReferenceCache",
    "build_reference_cache",
]
