"""Workflow for retrieving secrets from the CyberArk Central Credential Provider."""
import asyncio
import json
import logging
import threading
from concurrent.futures import CancelledError as FutureCancelledError, Future
from typing import Optional, Tuple
from urllib.parse import urlencode, urlsplit

import httpx

from ..domains.errors import (
    CCPClientError,
    CCPError,
    DeserializationError,
    InvalidRequestError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
)
from ..domains.models import CCPSecret, SecretRequest
from ..domains.options import CCPOptions, CertificateConfig
from ..domains.transport import ClientFactory, TransportCache, TransportFactory, close_clients
from .auth_resolver import resolve_authentication

logger = logging.getLogger(__name__)

# Statuses meaning CCP itself is unreachable; anything else proves connectivity
UNAVAILABLE_STATUSES = frozenset({502, 503, 504})
CONNECTION_TEST_OBJECT = "test"


def build_query_string(request: SecretRequest, application_id: str) -> str:
    """
    Build the form-encoded CCP query string.

    AppID and Object always come first, then the optional filters in a
    fixed order, then custom parameters in mapping order. Blank values
    are omitted.
    """
    parameters = [("AppID", application_id), ("Object", request.object)]

    optional = (
        ("Safe", request.safe),
        ("Folder", request.folder),
        ("UserName", request.username),
        ("Address", request.address),
        ("Database", request.database),
        ("PolicyID", request.policy_id),
    )
    for name, value in optional:
        if value and value.strip():
            parameters.append((name, value))

    for key, value in request.custom_parameters.items():
        if key and key.strip() and value is not None and str(value).strip():
            parameters.append((key, str(value)))

    return urlencode(parameters)


def build_request_url(options: CCPOptions, query: str) -> str:
    return f"{options.base_url.rstrip('/')}{options.endpoint}?{query}"


def sanitize_url_for_logging(url: str) -> str:
    """Strip the query (application ID, object names) from a URL."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        return "[Invalid URL]"
    return f"{parts.scheme}://{parts.hostname}{parts.path}?[QUERY_PARAMETERS]"


def _read_body(response: httpx.Response) -> str:
    try:
        return response.text
    except (httpx.HTTPError, ValueError, LookupError):
        return ""


def _error_code(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return ""
    if isinstance(payload, dict) and payload.get("ErrorCode"):
        return str(payload["ErrorCode"])
    return ""


class _EventLoopThread:
    """Event loop running forever in a daemon thread.

    Every network call of a CCPClient runs here, so pooled connections are
    only ever used from the loop that opened them.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name="ccp-client-loop", daemon=True)
        self._thread.start()

    def submit(self, coro) -> Future:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join()
        self.loop.close()


class CCPClient:
    """CyberArk Central Credential Provider client.

    Thread-safe; one instance may serve many threads and event loops.
    Every operation has a blocking form and an ``_async`` form that run
    the same coroutine.

    Args:
        options: Client configuration, validated here
        client_factory: Builds the underlying httpx.AsyncClient from keyword
            arguments (verify, timeout, headers); defaults to httpx.AsyncClient

    Example:
        with CCPClient(CCPOptions(base_url="https://ccp.example.com",
                                  default_application_id="MyApp")) as client:
            password = client.get_password_only_for("MyApp", "ProdSafe", "DBAcct")
    """

    def __init__(self, options: CCPOptions, client_factory: Optional[ClientFactory] = None):
        if options is None:
            raise ValueError("options are required")
        options.validate()

        self.options = options
        self._transports = TransportFactory(options, client_factory)
        self._default_client = self._transports.create_default()
        self._cache = TransportCache(self._transports.create_with_certificate)
        self._runner = _EventLoopThread()
        self._closed = False
        self._close_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Core operation
    # ------------------------------------------------------------------

    async def _client_for(self, certificate: Optional[CertificateConfig]) -> httpx.AsyncClient:
        if certificate is None:
            return self._default_client
        return await self._cache.get_or_create(certificate)

    async def _send(self, request: SecretRequest) -> Tuple[httpx.Response, str]:
        """Validate, resolve authentication and issue the GET."""
        if not request.object or not request.object.strip():
            raise InvalidRequestError("Object name is required")

        auth = resolve_authentication(request, self.options)
        application_id = auth.application_id
        logger.debug(
            f"Retrieving secret for object: {request.object} using Application ID: {application_id} "
            f"(certificate: {auth.certificate_source.value})"
        )

        try:
            client = await self._client_for(auth.certificate)
        except CCPClientError as e:
            if not e.application_id:
                e.application_id = application_id
            raise

        url = build_request_url(self.options, build_query_string(request, application_id))
        logger.debug(f"Making CCP request to: {sanitize_url_for_logging(url)}")

        try:
            # httpx timeouts apply per phase; wait_for bounds the whole request
            response = await asyncio.wait_for(client.get(url), self.options.timeout_seconds)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.error(f"Request timeout while retrieving secret for object: {request.object}")
            raise RequestTimeoutError(
                f"Request timeout while retrieving secret '{request.object}'",
                application_id=application_id,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"HTTP request exception while retrieving secret for object: {request.object}: {e}")
            raise NetworkError(
                f"Network error while retrieving secret '{request.object}': {e}",
                application_id=application_id,
            ) from e

        return response, application_id

    async def _retrieve(self, request: SecretRequest) -> CCPSecret:
        response, application_id = await self._send(request)

        if not response.is_success:
            body = _read_body(response)
            logger.error(f"CCP request failed with status {response.status_code}: {body}")
            raise CCPError(
                f"Failed to retrieve secret '{request.object}' using Application ID '{application_id}'. "
                f"Status: {response.status_code}",
                error_code=_error_code(body),
                http_status_code=response.status_code,
                response_content=body,
                application_id=application_id,
            )

        try:
            secret = CCPSecret.from_dict(response.json())
        except ValueError as e:
            raise DeserializationError(
                f"Failed to deserialize CCP response for object '{request.object}': {e}",
                http_status_code=response.status_code,
                response_content=_read_body(response),
                application_id=application_id,
            ) from e

        logger.info(
            f"Successfully retrieved secret for object: {secret.name or request.object}, "
            f"Safe: {secret.safe}, Application ID: {application_id}"
        )
        return secret

    async def _probe(self) -> bool:
        if not (self.options.default_application_id or "").strip():
            logger.warning("Cannot test connection: no default Application ID configured")
            return False

        logger.debug("Testing connection to CyberArk CCP")
        try:
            response, _ = await self._send(SecretRequest.for_object(CONNECTION_TEST_OBJECT))
        except CCPClientError as e:
            logger.error(f"Connection test failed: {e}")
            return False

        is_connected = response.status_code not in UNAVAILABLE_STATUSES
        logger.debug(f"Connection test result: {is_connected} (Status: {response.status_code})")
        return is_connected

    # ------------------------------------------------------------------
    # Execution on the private loop
    # ------------------------------------------------------------------

    async def _guarded(self, coro):
        try:
            return await coro
        except asyncio.CancelledError as e:
            if self._closed:
                raise CCPClientError("CCPClient was closed while the request was in flight") from e
            raise

    def _submit(self, coro) -> Future:
        if self._closed:
            coro.close()
            raise CCPClientError("CCPClient is closed")
        return self._runner.submit(self._guarded(coro))

    def _run(self, coro):
        """Block until the coroutine completes on the private loop."""
        future = self._submit(coro)
        try:
            return future.result()
        except FutureCancelledError as e:
            raise CCPClientError("CCPClient was closed while the request was in flight") from e
        except KeyboardInterrupt:
            future.cancel()
            raise

    async def _await(self, coro, object_name: str, application_id: str):
        future = self._submit(coro)
        try:
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError as e:
            future.cancel()
            logger.error(f"Request cancelled while retrieving secret for object: {object_name}")
            raise RequestCancelledError(
                f"Request cancelled while retrieving secret '{object_name}'",
                application_id=application_id,
            ) from e

    def _application_id_hint(self, request: SecretRequest) -> str:
        return request.application_id or self.options.default_application_id or ""

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def get_secret_async(self, request: SecretRequest) -> CCPSecret:
        """
        Retrieve a secret from CCP.

        Args:
            request: What to retrieve and, optionally, how to authenticate

        Returns:
            CCPSecret

        Raises:
            InvalidRequestError: If the object name is blank
            MissingConfigurationError: If no application ID is resolvable
            CertificateLoadError: If the selected certificate cannot be loaded
            CCPError: If CCP answers with a non-success status or an
                unparsable body (DeserializationError)
            NetworkError: On transport failure
            RequestTimeoutError: If the configured timeout elapses
            RequestCancelledError: If the calling task is cancelled
        """
        return await self._await(self._retrieve(request), request.object, self._application_id_hint(request))

    async def get_secret_for_async(self, application_id: str, safe: str, object_name: str) -> CCPSecret:
        """Retrieve a secret by application ID, safe and object name."""
        return await self.get_secret_async(_request_for(application_id, safe, object_name))

    async def get_password_only_async(self, request: SecretRequest) -> str:
        secret = await self.get_secret_async(request)
        return secret.content

    async def get_password_only_for_async(self, application_id: str, safe: str, object_name: str) -> str:
        secret = await self.get_secret_for_async(application_id, safe, object_name)
        return secret.content

    async def test_connection_async(self) -> bool:
        """
        Probe CCP with the default application ID.

        Returns:
            False if no default application ID is configured, the request
            fails, or CCP answers 502/503/504; True otherwise
        """
        return await self._await(self._probe(), CONNECTION_TEST_OBJECT, self.options.default_application_id or "")

    # ------------------------------------------------------------------
    # Blocking API
    # ------------------------------------------------------------------

    def get_secret(self, request: SecretRequest) -> CCPSecret:
        """Blocking form of get_secret_async."""
        return self._run(self._retrieve(request))

    def get_secret_for(self, application_id: str, safe: str, object_name: str) -> CCPSecret:
        return self.get_secret(_request_for(application_id, safe, object_name))

    def get_password_only(self, request: SecretRequest) -> str:
        return self.get_secret(request).content

    def get_password_only_for(self, application_id: str, safe: str, object_name: str) -> str:
        return self.get_secret_for(application_id, safe, object_name).content

    def test_connection(self) -> bool:
        return self._run(self._probe())

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def _begin_close(self) -> Optional[list]:
        with self._close_lock:
            if self._closed:
                return None
            self._closed = True
        clients = self._cache.drain()
        clients.append(self._default_client)
        return clients

    async def _shutdown(self, clients: list) -> int:
        """Cancel in-flight requests, then close every transport client."""
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(f"Cancelling {len(pending)} in-flight request(s)")
            await asyncio.gather(*pending, return_exceptions=True)
        return await close_clients(clients)

    def _finish_close(self, failures: int) -> None:
        self._runner.stop()
        if failures:
            logger.warning(f"{failures} HTTP client(s) failed to close cleanly")
        logger.debug("CCPClient closed")

    def close(self) -> None:
        """Release every transport client. Safe to call more than once."""
        clients = self._begin_close()
        if clients is None:
            return
        failures = self._runner.submit(self._shutdown(clients)).result()
        self._finish_close(failures)

    async def aclose(self) -> None:
        clients = self._begin_close()
        if clients is None:
            return
        failures = await asyncio.wrap_future(self._runner.submit(self._shutdown(clients)))
        self._finish_close(failures)

    def __enter__(self) -> "CCPClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "CCPClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _request_for(application_id: str, safe: str, object_name: str) -> SecretRequest:
    if not object_name or not object_name.strip():
        raise InvalidRequestError("Object name cannot be empty")
    return SecretRequest.for_object_in_safe(object_name, safe or "", application_id or "")
