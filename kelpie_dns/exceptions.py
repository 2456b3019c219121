"""
Exception classes used across Kelpie-DNS.
"""


class KelpieDNSError(Exception):
    """Base class for every error raised by Kelpie-DNS."""


class ConfigError(KelpieDNSError):
    """
    Raised when the configuration is invalid, e.g. mutually exclusive options
    are both set. Always fatal at startup.
    """


class SourceError(KelpieDNSError):
    """Raised by a source that cannot enumerate its desired endpoints."""


class ProviderError(KelpieDNSError):
    """
    Raised by a provider when reading or applying records fails.

    A failed apply means nothing in the batch may be assumed applied.
    """


class OwnershipError(KelpieDNSError):
    """
    Raised (or collected) by the registry when an ownership record cannot be
    written, for instance because its name is taken by another record type.
    """

    def __init__(self, message: str, endpoint_id: str = ""):
        super().__init__(message)
        self.endpoint_id = endpoint_id


class InvalidEndpointError(KelpieDNSError):
    """Describes a desired endpoint that was dropped from a plan."""

    def __init__(self, message: str, endpoint_id: str = ""):
        super().__init__(message)
        self.endpoint_id = endpoint_id


class ReconcileError(KelpieDNSError):
    """Raised when a reconciliation cycle fails."""
