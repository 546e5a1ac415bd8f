"""HTTP transport construction and the certificate-keyed client cache."""
import ssl
import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional

import httpx

from .certificates import load_certificate
from .errors import CertificateLoadError
from .options import CCPOptions, CertificateConfig

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
USER_AGENT = f"cyberark-ccp/{VERSION}"

ClientFactory = Callable[..., httpx.AsyncClient]


class TransportFactory:
    """Builds httpx clients configured from CCPOptions.

    Args:
        options: Validated client options
        client_factory: Called with httpx.AsyncClient keyword arguments,
            defaults to httpx.AsyncClient itself
    """

    def __init__(self, options: CCPOptions, client_factory: Optional[ClientFactory] = None):
        self.options = options
        self.client_factory = client_factory or httpx.AsyncClient

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.options.verify_ssl:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            logger.warning(
                "SSL certificate verification is disabled. This exposes you to security risks "
                "and is not recommended for use in production."
            )
        return context

    def _build(self, context: ssl.SSLContext) -> httpx.AsyncClient:
        return self.client_factory(
            verify=context,
            timeout=httpx.Timeout(self.options.timeout_seconds),
            headers={"User-Agent": USER_AGENT},
        )

    def create_default(self) -> httpx.AsyncClient:
        """Client without a client certificate."""
        return self._build(self._ssl_context())

    def create_with_certificate(self, config: CertificateConfig) -> httpx.AsyncClient:
        """
        Client presenting the given certificate for mutual TLS.

        Raises:
            CertificateLoadError: If the certificate cannot be loaded or
                installed (CertificateNotFoundError for a store miss)
            InvalidCertificateConfigError: If config is not configured
        """
        context = self._ssl_context()
        certificate = load_certificate(config)
        try:
            certificate.install(context)
        except (ssl.SSLError, OSError) as e:
            raise CertificateLoadError(f"Failed to load certificate: {e}") from e

        logger.debug(f"Created HTTP client with certificate: {certificate.subject}")
        return self._build(context)


class TransportCache:
    """Concurrent get-or-create cache of certificate-bound clients.

    At most one client is retained per certificate identity. Clients are
    built in the default executor, off the event loop, so a first-use race
    can build twice; the first one inserted wins and the duplicate is closed.
    """

    def __init__(self, build: Callable[[CertificateConfig], httpx.AsyncClient]):
        self._build = build
        self._clients: Dict[tuple, httpx.AsyncClient] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, config: CertificateConfig) -> bool:
        return config.identity in self._clients

    async def get_or_create(self, config: CertificateConfig) -> httpx.AsyncClient:
        key = config.identity
        existing = self._clients.get(key)
        if existing is not None:
            return existing

        client = await asyncio.get_running_loop().run_in_executor(None, self._build, config)
        with self._lock:
            winner = self._clients.setdefault(key, client)

        if winner is not client:
            logger.debug("Concurrent client construction for the same certificate, discarding duplicate")
            await client.aclose()
        return winner

    def drain(self) -> List[httpx.AsyncClient]:
        """Remove and return every cached client."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        return clients


async def close_clients(clients: List[httpx.AsyncClient]) -> int:
    """
    Close every client, logging failures instead of raising.

    Returns:
        Number of clients that failed to close
    """
    failures = 0
    for client in clients:
        try:
            await client.aclose()
        except Exception as e:
            failures += 1
            logger.warning(f"Error disposing certificate HTTP client: {e}")
    return failures
