"""
Error taxonomy for the wallet web service.

Every error carries the HTTP status the protocol router answers with.
Only a short message reaches the response body.
"""


class WalletServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(WalletServiceError):
    """Missing or mismatched ApplePass token."""

    status_code = 401


class ValidationError(WalletServiceError):
    """A required request field is missing."""

    status_code = 400


class NotFoundError(WalletServiceError):
    """Unknown pass, customer or configuration record."""

    status_code = 404


class UpstreamDataError(WalletServiceError):
    """The data store is unreachable or returned an error."""

    status_code = 500


class AssetRetrievalError(WalletServiceError):
    """An image referenced by the pass configuration could not be fetched."""

    status_code = 500


class ProviderConfigurationError(WalletServiceError):
    """A provider the request depends on (push channel, pass type) is unconfigured or unusable."""

    status_code = 500


class DeliveryError(WalletServiceError):
    """A single push send failed. Recorded per device, never returned to callers."""

    def __init__(self, message: str, push_token: str, status: str | None = None):
        super().__init__(message)
        self.push_token = push_token
        self.status = status
