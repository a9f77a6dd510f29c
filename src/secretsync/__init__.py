from secretsync.client import SecretSync, SecretSyncSettings, SnapshotSettings, secretsync
from secretsync.schema.models import DestinationType, Granularity, SyncStatus

__all__ = [
    "DestinationType",
    "Granularity",
    "SecretSync",
    "SecretSyncSettings",
    "SnapshotSettings",
    "SyncStatus",
    "secretsync",
]
