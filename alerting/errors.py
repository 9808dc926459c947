"""
BinWatch — Error Taxonomy
Validation and not-found errors are never retried. Store errors are
transient and rely on redelivery of the triggering event.
"""


class BinWatchError(Exception):
    """Base class for every error raised by the core."""


class ValidationError(BinWatchError):
    """Bad input shape or type. Surfaced to the caller immediately."""


class NotFoundError(BinWatchError):
    """A referenced bin, alert or user does not exist."""


class TransientStoreError(BinWatchError):
    """The document store could not complete a read or write."""


class InvariantViolation(BinWatchError):
    """More than one unacknowledged alert was found for a bin."""

    def __init__(self, bin_id, alert_ids):
        self.bin_id = bin_id
        self.alert_ids = list(alert_ids)
        super().__init__(
            f"{len(self.alert_ids)} unacknowledged alerts for bin {bin_id}: {', '.join(self.alert_ids)}"
        )
