"""Sync engine for cmissync - replication between a local folder and a CMIS folder."""

from .activity import ActivityListener, NullActivityListener, activity
from .config import SyncConfigError, load_sync_folders_from_json
from .detector import ChangeDetector
from .downloader import RemoteToLocalReplicator
from .engine import SyncEngine
from .folder import SyncFolder
from .paths import PathMapper, suffix_if_exists
from .rules import RuleFilter, RulesType
from .session import SessionManager
from .state import CacheRecord, SyncDatabase
from .uploader import LocalToRemoteReplicator

__all__ = [
    "SyncEngine",
    "SyncFolder",
    "SyncConfigError",
    "load_sync_folders_from_json",
    "SessionManager",
    "ChangeDetector",
    "RemoteToLocalReplicator",
    "LocalToRemoteReplicator",
    "RuleFilter",
    "RulesType",
    "PathMapper",
    "suffix_if_exists",
    "SyncDatabase",
    "CacheRecord",
    "ActivityListener",
    "NullActivityListener",
    "activity",
]
