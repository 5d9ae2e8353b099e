"""Remote store synchronization: subscriptions, snapshots and writes."""

from stableflow.sync.observable import Observable
from stableflow.sync.service import (
    EXPENSES,
    USERS,
    SyncService,
    account_path,
    claim_path,
    parse_claims,
    sort_claims,
)
from stableflow.sync.stats import compute_stats
from stableflow.sync.subscription import SnapshotSubscription

__all__ = [
    "EXPENSES",
    "USERS",
    "Observable",
    "SnapshotSubscription",
    "SyncService",
    "account_path",
    "claim_path",
    "compute_stats",
    "parse_claims",
    "sort_claims",
]
