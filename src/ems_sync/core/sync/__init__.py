"""
Synchronization between local state and the remote store.

Public API:
    - SyncEngine: facade used by collaborators
    - AppState: process-scoped state container
    - Reconciler / merge_canonical: optimistic writes and their confirmation
    - SyncScheduler: foreground and periodic refreshes
    - WriteResult / RefreshResult / SyncIndicator: structured outcomes
    - Clock / SystemClock: injectable time source
"""

from ems_sync.core.sync.clock import Clock, SystemClock
from ems_sync.core.sync.engine import SyncEngine
from ems_sync.core.sync.models import RefreshResult, SyncIndicator, WriteResult
from ems_sync.core.sync.reconcile import Reconciler, merge_canonical
from ems_sync.core.sync.scheduler import SyncScheduler
from ems_sync.core.sync.state import AppState

__all__ = [
    "AppState",
    "Clock",
    "RefreshResult",
    "Reconciler",
    "SyncEngine",
    "SyncIndicator",
    "SyncScheduler",
    "SystemClock",
    "WriteResult",
    "merge_canonical",
]
