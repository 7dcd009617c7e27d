# trustgraph/errors.py
"""
Exception taxonomy.

Only UnavailableCapabilityError is meant to reach the user. Network
timeouts, cache write failures and malformed payloads degrade to reduced
data and are logged where they happen.
"""


class TrustGraphError(Exception):
    """Base exception for trustgraph errors."""
    pass


class UnavailableCapabilityError(TrustGraphError):
    """Raised when a required external provider is missing or not ready."""

    def __init__(self, capability: str, message: str = ""):
        self.capability = capability
        super().__init__(message or f"{capability} is not available")


class ProviderUnavailableError(TrustGraphError):
    """
    Raised by a trust provider that is not installed or not ready.

    Distinguishes "cannot answer" from an empty answer.
    """
    pass


class ProviderDataError(TrustGraphError):
    """
    A data call to a ready provider failed.

    Never surfaced: the caller logs it and degrades.
    """
    pass


class ProviderRequestError(ProviderDataError):
    """Raised when a provider request fails after it was reachable."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class ProviderNetworkError(ProviderDataError):
    """Timeout or transport failure during a data call."""
    pass


class ProviderPayloadError(ProviderDataError):
    """Response body could not be decoded."""
    pass
