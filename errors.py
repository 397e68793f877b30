class ValidationError(ValueError):
    """Malformed allocation or matching input. Never retried."""


class PreconditionNotMetError(ValueError):
    """Required calendar periods or period instances do not exist yet."""


class TransientStorageError(RuntimeError):
    """A single read or write failed; safe to retry because writers are idempotent."""


class AggregationDegradation(RuntimeError):
    """A non-critical recompute failed after the core mutation succeeded."""
