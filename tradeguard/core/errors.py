"""Exceptions raised at the caller-facing edges of tradeguard.

Engine computations never raise for data-shape reasons; these cover the
surrounding layers (snapshot loading).
"""


class TradeGuardError(Exception):
    """Base class for tradeguard errors."""


class SnapshotLoadError(TradeGuardError):
    """A ledger snapshot file could not be read or validated."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load snapshot '{path}': {reason}")
