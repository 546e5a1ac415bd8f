"""Shared fixtures: generated client certificates and a simulated CCP endpoint."""
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from cyberark_ccp.secrets.domains import preferences
from cyberark_ccp.secrets.domains.options import CCPOptions
from cyberark_ccp.secrets.workflows.secret_operations import CCPClient

BASE_URL = "https://ccp.example.com"


def make_certificate(common_name: str = "ccp-test-client"):
    """Self-signed client certificate and its RSA key."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return certificate, private_key


def write_pem(path: Path, certificate, private_key, password: Optional[str] = None) -> Path:
    encryption = (
        serialization.BestAvailableEncryption(password.encode())
        if password else serialization.NoEncryption()
    )
    path.write_bytes(
        certificate.public_bytes(serialization.Encoding.PEM)
        + private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            encryption,
        )
    )
    return path


def write_pfx(path: Path, certificate, private_key, password: Optional[str] = None) -> Path:
    encryption = (
        serialization.BestAvailableEncryption(password.encode())
        if password else serialization.NoEncryption()
    )
    path.write_bytes(pkcs12.serialize_key_and_certificates(b"client", private_key, certificate, None, encryption))
    return path


def thumbprint_of(certificate) -> str:
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


@pytest.fixture(scope="session")
def client_certificate():
    return make_certificate("ccp-test-client")


@pytest.fixture(scope="session")
def other_certificate():
    return make_certificate("ccp-other-client")


@pytest.fixture
def pem_file(tmp_path, client_certificate):
    return write_pem(tmp_path / "client.pem", *client_certificate)


@pytest.fixture
def other_pem_file(tmp_path, other_certificate):
    return write_pem(tmp_path / "other.pem", *other_certificate)


@pytest.fixture
def pfx_file(tmp_path, client_certificate):
    return write_pfx(tmp_path / "client.pfx", *client_certificate, password="changeit")


@pytest.fixture
def temp_home(tmp_path, monkeypatch):
    """Fixture to create a temporary home directory for testing."""
    fake_home = tmp_path / "home"
    fake_home.mkdir()
    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setattr(Path, "home", lambda: fake_home)
    monkeypatch.delenv("CCP_APPLICATION_ID", raising=False)
    monkeypatch.delenv("CCP_CERTSTORE_DIR", raising=False)

    fake_config_dir = fake_home / ".config" / "cyberark-ccp"
    monkeypatch.setattr(preferences, "PREFERENCES_DIR", fake_config_dir)
    monkeypatch.setattr(preferences, "PREFERENCES_FILE", fake_config_dir / "preferences.json")

    return fake_home


class MockCCP:
    """Simulated CCP endpoint for httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.body: Dict = {"Content": "s3cr3t", "UserName": "svc", "Safe": "ProdSafe", "Name": "DBAcct"}
        self.raw_body: Optional[str] = None
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.raw_body is not None:
            return httpx.Response(self.status_code, text=self.raw_body)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_params(self) -> Dict[str, str]:
        return dict(self.requests[-1].url.params)


class CountingFactory:
    """httpx.AsyncClient factory recording every construction."""

    def __init__(self, handler: Callable) -> None:
        self.handler = handler
        self.created: List[Dict] = []
        self.clients: List[httpx.AsyncClient] = []

    def __call__(self, **kwargs) -> httpx.AsyncClient:
        self.created.append(kwargs)
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler), **kwargs)
        self.clients.append(client)
        return client


@pytest.fixture
def mock_ccp():
    return MockCCP()


@pytest.fixture
def factory(mock_ccp):
    return CountingFactory(mock_ccp.handler)


@pytest.fixture
def make_client(factory):
    """Build CCPClients against the mock endpoint and close them afterwards."""
    clients = []

    def _make(**overrides) -> CCPClient:
        settings = {"base_url": BASE_URL, "default_application_id": "MyApp"}
        settings.update(overrides)
        client = CCPClient(CCPOptions(**settings), client_factory=factory)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()
