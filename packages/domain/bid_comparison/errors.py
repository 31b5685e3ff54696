"""
Error taxonomy for the reconciliation engine

Only ConfigurationError and DimensionMismatchError are meant to reach the
caller. Transient and malformed-response errors are converted to a
no-match or deterministic fallback where they are caught.
"""


class ReconciliationError(Exception):
    """Base class for engine errors"""


class ConfigurationError(ReconciliationError):
    """A required provider is not configured (fatal, non-retryable)"""


class DimensionMismatchError(ReconciliationError):
    """Embedding provider returned vectors of the wrong size"""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding dimension mismatch. Expected {expected}, got {actual}")


class ProviderTransientError(ReconciliationError):
    """Network, timeout or rate-limit failure from a provider call"""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class MalformedResponseError(ReconciliationError):
    """Reasoning output failed JSON extraction or schema validation"""
