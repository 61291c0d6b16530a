"""Fetching observed state and computing drift."""

from .diff import DiffEngine, DriftClassification, DriftRecord, FieldDiff, FieldOrigin, values_equal
from .fetcher import CancellationToken, FetchResult, ObservedStateFetcher

__all__ = [
    "CancellationToken",
    "FetchResult",
    "ObservedStateFetcher",
    "DiffEngine",
    "DriftClassification",
    "DriftRecord",
    "FieldDiff",
    "FieldOrigin",
    "values_equal",
]
