"""Exception types raised by the CCP client."""
import asyncio


class CCPClientError(Exception):
    """Base class for every error raised by the CCP client.

    Carries enough context to diagnose a failure without re-running
    with verbose logging.

    Attributes:
        error_code: CCP error code (e.g. APPAP004E) when the server sent one
        http_status_code: HTTP status of the failed response, 0 if none
        response_content: Raw response body, empty if none
        application_id: Application ID the request was made with
    """

    def __init__(
        self,
        message: str,
        error_code: str = "",
        http_status_code: int = 0,
        response_content: str = "",
        application_id: str = "",
    ):
        super().__init__(message)
        self.error_code = error_code
        self.http_status_code = http_status_code
        self.response_content = response_content
        self.application_id = application_id


class InvalidRequestError(CCPClientError):
    """Request is missing a required field."""


class MissingConfigurationError(CCPClientError):
    """Required configuration (base URL, application ID) is not set."""


class InvalidCertificateConfigError(CCPClientError):
    """Certificate config sets both file and thumbprint, or neither."""


class CertificateLoadError(CCPClientError):
    """Client certificate could not be loaded."""


class CertificateNotFoundError(CertificateLoadError):
    """No certificate with the requested thumbprint exists in the store."""


class CCPError(CCPClientError):
    """CCP answered with a non-success status."""


class DeserializationError(CCPError):
    """CCP answered with success but the body is not a valid secret."""


class NetworkError(CCPClientError):
    """Transport-level failure (DNS, refused connection, TLS handshake)."""


class RequestTimeoutError(CCPClientError):
    """The configured timeout elapsed before CCP answered."""


class RequestCancelledError(CCPClientError, asyncio.CancelledError):
    """The caller cancelled the request.

    Also an ``asyncio.CancelledError`` so task cancellation keeps
    propagating through code that only knows about asyncio.
    """
