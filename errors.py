"""
Exception types raised by the OmniSales services.

The app maps these onto HTTP status codes (see routes/__init__.py).
"""


class OmniSalesError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, message: str = "", details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(OmniSalesError):
    status_code = 400


class NotFoundError(OmniSalesError):
    status_code = 404


class RateLimitError(OmniSalesError):
    status_code = 429


class DatabaseError(OmniSalesError):
    status_code = 500


class ProviderNotConfiguredError(OmniSalesError):
    """A known carrier was requested but has no credentials."""

    status_code = 400


class UnsupportedProviderError(OmniSalesError):
    status_code = 400


class CarrierAPIError(OmniSalesError):
    """Carrier HTTP failure or API-level error code."""

    status_code = 502

    def __init__(self, provider: str, message: str, status: int = None):
        super().__init__(f"{provider} API error: {message}", {"provider": provider, "status": status})
        self.provider = provider
        self.status = status


class LLMError(OmniSalesError):
    status_code = 502
