"""CyberArk CCP client with a process-wide instance configured from the config file."""
import logging
import threading
from typing import Optional

from .secrets.domains.config_loader import ConfigError, load_config  # noqa: F401
from .secrets.domains.errors import (  # noqa: F401
    CCPClientError,
    CCPError,
    CertificateLoadError,
    CertificateNotFoundError,
    DeserializationError,
    InvalidCertificateConfigError,
    InvalidRequestError,
    MissingConfigurationError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
)
from .secrets.domains.models import CCPSecret, SecretRequest  # noqa: F401
from .secrets.domains.options import CCPOptions, CertificateConfig, StoreLocation, StoreName  # noqa: F401
from .secrets.workflows.secret_operations import CCPClient

logger = logging.getLogger(__name__)

# Built from the config file on first use, shared by the whole process
_client: Optional[CCPClient] = None
_client_lock = threading.Lock()


def get_client() -> CCPClient:
    """
    Return the process-wide client, creating it from the config file.

    Raises:
        FileNotFoundError: If no config file can be located
        ConfigError: If the config file is invalid
    """
    global _client

    with _client_lock:
        if _client is None or _client.closed:
            _client = CCPClient(load_config())
            logger.debug(f"Created process-wide CCP client for {_client.options.base_url}")
        return _client


def reset_client() -> None:
    """Close and forget the process-wide client."""
    global _client

    with _client_lock:
        client, _client = _client, None
    if client is not None:
        client.close()


def get_password(object_name: str, safe: Optional[str] = None, application_id: Optional[str] = None) -> str:
    """
    Fetch a password from CCP using the configured client.

    Args:
        object_name: CCP object (account) name
        safe: Safe containing the object
        application_id: Overrides the configured default application ID

    Returns:
        Secret content

    Behavior:
        - Loads the config file on first call (see config_loader)
        - Reuses one client, and its certificate-bound connections, per process
        - Errors propagate as CCPClientError subclasses
    """
    request = SecretRequest(object=object_name, safe=safe or "", application_id=application_id or "")
    return get_client().get_password_only(request)
