"""Mutation engine: admission, pacing, flushing and cancellation."""

from roomflush.engine.deadline import DeadlineController
from roomflush.engine.flush import FlushScheduler
from roomflush.engine.limiter import ConcurrencyLimiter, Permit
from roomflush.engine.orchestrator import MutationOrchestrator, mass_mutate, mutate_one
from roomflush.engine.task import MutationContext, run_mutation_task

__all__ = [
    "ConcurrencyLimiter",
    "DeadlineController",
    "FlushScheduler",
    "MutationContext",
    "MutationOrchestrator",
    "Permit",
    "mass_mutate",
    "mutate_one",
    "run_mutation_task",
]
