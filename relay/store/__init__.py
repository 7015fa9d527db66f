from relay.store.base import ProgressStore
from relay.store.log_store import FileProgressStore
from relay.store.memory import MemoryProgressStore
from relay.store.snapshot import SnapshotStore

__all__ = ["ProgressStore", "FileProgressStore", "MemoryProgressStore", "SnapshotStore"]
