"""
Sync pipeline.

Jobs:
- DiscoveryJob: nightly, adds new animals around each hub
- QuickScanJob: every few minutes, listings published since the last scan
- RefreshJob: hourly, keeps stored records alive or proves them gone
- JanitorJob: drops records past the staleness threshold
- DuplicateCleanupJob: collapses re-listed duplicates
"""

from pawreels.sync.base import SCAN_CURSOR_KEY, HubScanner, SyncJob, SyncStats
from pawreels.sync.dedup import DuplicateCleanupJob
from pawreels.sync.discovery import DiscoveryJob
from pawreels.sync.janitor import JanitorJob
from pawreels.sync.quick_scan import QuickScanJob
from pawreels.sync.refresh import RefreshJob

__all__ = [
    "SCAN_CURSOR_KEY",
    "SyncJob",
    "SyncStats",
    "HubScanner",
    "DiscoveryJob",
    "QuickScanJob",
    "RefreshJob",
    "JanitorJob",
    "DuplicateCleanupJob",
]
