"""Client certificate locator.

Materializes a CertificateConfig into a loaded certificate that can be
installed into an SSL context, either from a certificate file or from a
directory-backed certificate store.

Store layout:
    CurrentUser:  ~/.config/cyberark-ccp/certstore/<StoreName>/
    LocalMachine: /etc/cyberark-ccp/certstore/<StoreName>/
    CCP_CERTSTORE_DIR set: $CCP_CERTSTORE_DIR/<StoreLocation>/<StoreName>/

Each store entry is a PEM file (certificate plus unencrypted key) or a
passwordless PKCS#12 file.
"""
import os
import re
import secrets
import ssl
import tempfile
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import (
    CertificateLoadError,
    CertificateNotFoundError,
    InvalidCertificateConfigError,
)
from .options import CertificateConfig, StoreLocation, StoreName

logger = logging.getLogger(__name__)

CERTSTORE_ENV_VAR = "CCP_CERTSTORE_DIR"
STORE_ENTRY_SUFFIXES = (".pem", ".crt", ".pfx", ".p12")

_PRIVATE_KEY_PEM = re.compile(
    rb"-----BEGIN ((?:[A-Z]+ )*)PRIVATE KEY-----.+?-----END \1PRIVATE KEY-----",
    re.DOTALL,
)


def normalize_thumbprint(thumbprint: str) -> str:
    """Uppercase hex with separators and whitespace removed."""
    return re.sub(r"[^0-9A-Fa-f]", "", thumbprint or "").upper()


@dataclass
class LoadedCertificate:
    """A client certificate with its private key and optional chain."""
    certificate: x509.Certificate
    private_key: object = field(repr=False)
    chain: List[x509.Certificate] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def thumbprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA1()).hex().upper()

    def install(self, context: ssl.SSLContext) -> None:
        """
        Load this certificate as the client certificate of an SSL context.

        ssl only loads key material from files, so the chain and key are
        written to a private temp file (key encrypted with a one-off
        passphrase) that is removed before returning.
        """
        passphrase = secrets.token_bytes(32)
        pem = self.certificate.public_bytes(serialization.Encoding.PEM)
        for extra in self.chain:
            pem += extra.public_bytes(serialization.Encoding.PEM)
        pem += self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase),
        )

        fd, path = tempfile.mkstemp(prefix="ccp-client-", suffix=".pem")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(pem)
            context.load_cert_chain(certfile=path, password=passphrase)
        finally:
            os.unlink(path)


def _load_pem(data: bytes, password: Optional[bytes]) -> LoadedCertificate:
    certificates = x509.load_pem_x509_certificates(data)
    match = _PRIVATE_KEY_PEM.search(data)
    if match is None:
        raise ValueError("PEM data does not contain a private key")
    private_key = serialization.load_pem_private_key(match.group(0), password=password)
    return LoadedCertificate(certificates[0], private_key, list(certificates[1:]))


def _load_pkcs12(data: bytes, password: Optional[bytes]) -> LoadedCertificate:
    private_key, certificate, additional = pkcs12.load_key_and_certificates(data, password)
    if certificate is None or private_key is None:
        raise ValueError("PKCS#12 data must contain a certificate and its private key")
    return LoadedCertificate(certificate, private_key, list(additional or []))


def _load_bytes(data: bytes, password: Optional[bytes]) -> LoadedCertificate:
    if b"-----BEGIN" in data:
        return _load_pem(data, password)
    return _load_pkcs12(data, password)


def load_certificate_file(file_path: str, password: Optional[str] = None) -> LoadedCertificate:
    """
    Load a client certificate from a PEM or PKCS#12 file.

    Args:
        file_path: Path to the certificate file
        password: Password for the key (passwordless load if empty)

    Returns:
        LoadedCertificate

    Raises:
        CertificateLoadError: If the file is missing, unreadable, malformed
            or the password is wrong
    """
    secret = password.encode("utf-8") if password else None
    try:
        data = Path(file_path).expanduser().read_bytes()
        loaded = _load_bytes(data, secret)
    except (OSError, ValueError, TypeError) as e:
        raise CertificateLoadError(f"Failed to load certificate from '{file_path}': {e}") from e

    logger.debug(f"Loaded certificate {loaded.subject} from {file_path}")
    return loaded


def store_directory(location: StoreLocation, name: StoreName) -> Path:
    """Directory backing the given certificate store."""
    override = os.getenv(CERTSTORE_ENV_VAR)
    if override:
        return Path(override).expanduser() / location.value / name.value
    if location is StoreLocation.LOCAL_MACHINE:
        return Path("/etc") / "cyberark-ccp" / "certstore" / name.value
    return Path.home() / ".config" / "cyberark-ccp" / "certstore" / name.value


class CertificateStore:
    """Read-only view of a certificate store.

    Use as a context manager so the store is released on every exit path:

        with CertificateStore(StoreName.MY, StoreLocation.CURRENT_USER) as store:
            matches = store.find_by_thumbprint("0123ABCD...")
    """

    def __init__(self, name: StoreName, location: StoreLocation):
        self.name = name
        self.location = location
        self.path = store_directory(location, name)
        self._entries: Optional[List[Path]] = None

    @property
    def is_open(self) -> bool:
        return self._entries is not None

    def open(self) -> None:
        if not self.path.is_dir():
            raise CertificateLoadError(
                f"Certificate store '{self.name.value}' at location '{self.location.value}' "
                f"does not exist ({self.path})"
            )
        self._entries = sorted(
            p for p in self.path.iterdir()
            if p.is_file() and p.suffix.lower() in STORE_ENTRY_SUFFIXES
        )
        logger.debug(f"Opened certificate store {self.path} ({len(self._entries)} entries)")

    def close(self) -> None:
        self._entries = None

    def __enter__(self) -> "CertificateStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def find_by_thumbprint(self, thumbprint: str) -> List[LoadedCertificate]:
        """Return every store entry whose SHA-1 thumbprint matches exactly."""
        if self._entries is None:
            raise CertificateLoadError("Certificate store is not open")

        wanted = normalize_thumbprint(thumbprint)
        matches = []
        for entry in self._entries:
            try:
                loaded = _load_bytes(entry.read_bytes(), None)
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable certificate store entry {entry}: {e}")
                continue
            if loaded.thumbprint == wanted:
                matches.append(loaded)
        return matches


def load_certificate(config: CertificateConfig) -> LoadedCertificate:
    """
    Materialize a certificate configuration.

    File mode is used when file_path is set, otherwise store mode when
    thumbprint is set.

    Raises:
        CertificateLoadError: If the file or store cannot be read
        CertificateNotFoundError: If no store entry matches the thumbprint
        InvalidCertificateConfigError: If both modes or neither are configured
    """
    config.validate()

    if config.file_path and config.file_path.strip():
        return load_certificate_file(config.file_path, config.password)

    if config.thumbprint and config.thumbprint.strip():
        with CertificateStore(config.store_name, config.store_location) as store:
            matches = store.find_by_thumbprint(config.thumbprint)

        if not matches:
            raise CertificateNotFoundError(
                f"Certificate with thumbprint '{config.thumbprint}' not found in store "
                f"'{config.store_name.value}' at location '{config.store_location.value}'"
            )
        if len(matches) > 1:
            logger.debug(f"{len(matches)} certificates match thumbprint {config.thumbprint}, using the first")
        return matches[0]

    raise InvalidCertificateConfigError("Invalid certificate configuration: neither file_path nor thumbprint is set")
