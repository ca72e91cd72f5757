from __future__ import annotations


class FollowerError(RuntimeError):
    """Base class for errors raised by the follower."""


class ConfigError(FollowerError):
    """Required configuration is missing or invalid. Never retried."""


class TransportError(FollowerError):
    """The file-service could not be reached or answered with something unusable."""


class LedgerError(FollowerError):
    """The local event ledger could not be read or written."""


class LedgerCorruptionError(LedgerError):
    """The ledger holds more than one un-acked event."""


class ApplyError(FollowerError):
    """An event could not be materialized on the local filesystem."""


class ExclusionLostError(FollowerError):
    """The sync lock was lost while a pass still held work in progress."""
