"""Store, merge engine and the three ingestion paths."""

from streamsync.sync.coordinator import ConsumerCallbacks, ReconciliationCoordinator
from streamsync.sync.loader import BulkLoader, LoadResult
from streamsync.sync.merge import MergeResult, RecordStore, merge
from streamsync.sync.reconciler import CatchUpReconciler, ReconcileResult

__all__ = [
    "BulkLoader",
    "CatchUpReconciler",
    "ConsumerCallbacks",
    "LoadResult",
    "MergeResult",
    "ReconcileResult",
    "ReconciliationCoordinator",
    "RecordStore",
    "merge",
]
