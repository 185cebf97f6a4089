"""Exception types raised by faceroster."""


class ConfigurationError(ValueError):
    """Caller passed an invalid tuning value (negative threshold, bad weights...)."""


class EmbeddingDecodeError(ValueError):
    """An embedding blob could not be turned into a vector."""


class ClusteringCancelled(Exception):
    """A clustering run was stopped through its ``should_cancel`` callback."""


class RosterArchiveError(Exception):
    """A known-people export archive is missing required entries or is unreadable."""
