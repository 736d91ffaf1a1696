# agents/workers/__init__.py
"""
Capability workers.

Each worker takes (WorkerInput, WorkerDeps) and returns a WorkerResult;
failures are reported in the result, never raised.
"""

from concierge.agents.workers.base import WorkerDeps, WorkerInput, run_worker
from concierge.agents.workers.search_worker import execute_search, build_search_params
from concierge.agents.workers.availability_worker import execute_availability, titles_from_phrasing
from concierge.agents.workers.preferences_worker import execute_preferences, stated_preferences
from concierge.agents.workers.recommendations_worker import execute_recommendations

__all__ = [
    "WorkerDeps",
    "WorkerInput",
    "run_worker",
    "execute_search",
    "build_search_params",
    "execute_availability",
    "titles_from_phrasing",
    "execute_preferences",
    "stated_preferences",
    "execute_recommendations",
]
