"""Error taxonomy for a dispatch run."""


class RelayError(Exception):
    """Base class for every error raised by relay."""


class ConfigurationError(RelayError):
    """Invalid task count, pool size or other run setting. Fatal before any dispatch."""


class ProgressStoreError(RelayError):
    """The progress store could not be read or durably written."""


class StoreLockedError(ProgressStoreError):
    """Another live scheduler already owns the progress store."""

    def __init__(self, path: str, lock_path: str):
        super().__init__(f"progress store {path} is locked by another scheduler ({lock_path})")
        self.path = path
        self.lock_path = lock_path


class ChannelError(RelayError):
    """A message could not be delivered to a worker."""


class ProtocolError(RelayError):
    """A peer sent something that is not a valid protocol message."""
