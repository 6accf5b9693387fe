"""
Error taxonomy for the exporter.

Provider errors are caught at the provider boundary by the scheduler;
configuration errors abort startup.
"""

from typing import Optional


class ExporterError(Exception):
    """Base class for all exporter errors."""
    kind = "exporter"


class ConfigError(ExporterError):
    """Missing/invalid configuration or a failed credential exchange."""
    kind = "config"


class ProviderError(ExporterError):
    """A single provider poll failed.

    Subclasses set ``kind``, which is also used as the ``kind`` label of the
    poll error counter.
    """
    kind = "provider"

    def __init__(self, message: str, provider_name: Optional[str] = None):
        super().__init__(message)
        self.provider_name = provider_name


class NetworkError(ProviderError):
    """Transport failure, timeout or unexpected HTTP status."""
    kind = "network"


class AuthError(ProviderError):
    """Credential or token rejected by the provider."""
    kind = "auth"


class DecodeError(ProviderError):
    """Response body does not match the expected shape."""
    kind = "decode"
