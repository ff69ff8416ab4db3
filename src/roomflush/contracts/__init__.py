"""Shared contracts: data types, results, errors and collaborator protocols."""

from roomflush.contracts.documents import DocumentHandle, Mutation, apply_mutations
from roomflush.contracts.enums import DocumentOutcome, FlushState, StopReason
from roomflush.contracts.errors import (
    ConfigError,
    FlushError,
    FlushFailedError,
    MutationCancelledError,
    PermitReleasedError,
    RoomflushError,
    SchedulerClosedError,
)
from roomflush.contracts.protocols import (
    DocumentPredicate,
    DocumentSource,
    MutationFn,
    PersistenceBackend,
)
from roomflush.contracts.results import DocumentResult, RunResult

__all__ = [
    "ConfigError",
    "DocumentHandle",
    "DocumentOutcome",
    "DocumentPredicate",
    "DocumentResult",
    "DocumentSource",
    "FlushError",
    "FlushFailedError",
    "FlushState",
    "Mutation",
    "MutationCancelledError",
    "MutationFn",
    "PermitReleasedError",
    "PersistenceBackend",
    "RoomflushError",
    "RunResult",
    "SchedulerClosedError",
    "StopReason",
    "apply_mutations",
]
