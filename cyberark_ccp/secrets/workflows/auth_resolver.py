"""Resolve the application ID and client certificate for a request."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..domains.errors import MissingConfigurationError
from ..domains.models import SecretRequest
from ..domains.options import CCPOptions, CertificateConfig


class CertificateSource(Enum):
    """Which rule selected the certificate."""
    REQUEST = "request"
    APPLICATION_ID = "application_id"
    DEFAULT = "default"
    NONE = "none"


@dataclass(frozen=True)
class ResolvedAuthentication:
    application_id: str
    certificate: Optional[CertificateConfig]
    certificate_source: CertificateSource


def effective_application_id(request: SecretRequest, options: CCPOptions) -> str:
    """
    Application ID from the request, else the options default.

    Raises:
        MissingConfigurationError: If neither is set
    """
    if request.application_id and request.application_id.strip():
        return request.application_id
    if options.default_application_id and options.default_application_id.strip():
        return options.default_application_id
    raise MissingConfigurationError(
        "Application ID must be specified either in the request or in options.default_application_id"
    )


def resolve_authentication(request: SecretRequest, options: CCPOptions) -> ResolvedAuthentication:
    """
    Select application ID and certificate for a request.

    Certificate priority, first configured one wins:
    1. Certificate on the request
    2. Certificate mapped to the effective application ID
    3. Options default certificate
    4. None (application ID only)

    Raises:
        MissingConfigurationError: If no application ID is resolvable
    """
    application_id = effective_application_id(request, options)

    if request.certificate is not None and request.certificate.is_configured:
        return ResolvedAuthentication(application_id, request.certificate, CertificateSource.REQUEST)

    # Keyed off the effective ID, which may be the options default
    mapped = options.certificates_by_application_id.get(application_id)
    if mapped is not None and mapped.is_configured:
        return ResolvedAuthentication(application_id, mapped, CertificateSource.APPLICATION_ID)

    if options.default_certificate.is_configured:
        return ResolvedAuthentication(application_id, options.default_certificate, CertificateSource.DEFAULT)

    return ResolvedAuthentication(application_id, None, CertificateSource.NONE)
