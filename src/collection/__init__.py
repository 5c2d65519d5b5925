"""Source collection module - collectors, schemas, fetcher and cache."""

from src.collection.schemas import (
    CollectionReport,
    CollectorOptions,
    DateRange,
    RecordKind,
    SourceDiagnostic,
    SourceKind,
    SourceRecord,
)

__all__ = [
    "SourceKind",
    "RecordKind",
    "SourceRecord",
    "DateRange",
    "CollectorOptions",
    "SourceDiagnostic",
    "CollectionReport",
]
