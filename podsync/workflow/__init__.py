"""Sync workflow for podcast subscriptions.

Runs every subscription through the pipeline:
fetch → select → download → tag → rename → ledger → hook.
"""

from podsync.workflow.events import SyncEvent, SyncEventType
from podsync.workflow.orchestrator import SubscriptionResult, SyncOrchestrator
from podsync.workflow.post_processor import EpisodeJob, PostProcessor

__all__ = [
    "SyncEvent",
    "SyncEventType",
    "SubscriptionResult",
    "SyncOrchestrator",
    "EpisodeJob",
    "PostProcessor",
]
