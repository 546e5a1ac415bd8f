"""Client options and certificate configuration."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidCertificateConfigError, MissingConfigurationError

DEFAULT_ENDPOINT = "/AIMWebService/api/Accounts"
DEFAULT_TIMEOUT_SECONDS = 30


class StoreLocation(Enum):
    """Location of a certificate store."""
    CURRENT_USER = "CurrentUser"
    LOCAL_MACHINE = "LocalMachine"


class StoreName(Enum):
    """Name of a certificate store."""
    ADDRESS_BOOK = "AddressBook"
    AUTH_ROOT = "AuthRoot"
    CERTIFICATE_AUTHORITY = "CertificateAuthority"
    DISALLOWED = "Disallowed"
    MY = "My"
    ROOT = "Root"
    TRUSTED_PEOPLE = "TrustedPeople"
    TRUSTED_PUBLISHER = "TrustedPublisher"


def _parse_enum(enum_cls, value):
    """Accept an enum member, its value or its name, case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    wanted = str(value).strip().replace("_", "").lower()
    for member in enum_cls:
        if wanted in (member.value.lower(), member.name.replace("_", "").lower()):
            return member
    allowed = ", ".join(member.value for member in enum_cls)
    raise InvalidCertificateConfigError(
        f"Unknown {enum_cls.__name__} '{value}'. Allowed values: {allowed}"
    )


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


@dataclass(frozen=True)
class CertificateConfig:
    """One client-certificate identity.

    Either a certificate file (PEM or PKCS#12) with an optional password,
    or a thumbprint looked up in a certificate store.
    """
    file_path: str = ""
    password: str = field(default="", repr=False)
    thumbprint: str = ""
    store_location: StoreLocation = StoreLocation.CURRENT_USER
    store_name: StoreName = StoreName.MY

    @property
    def is_configured(self) -> bool:
        return not _is_blank(self.file_path) or not _is_blank(self.thumbprint)

    @property
    def is_file(self) -> bool:
        return not _is_blank(self.file_path)

    @property
    def identity(self) -> tuple:
        """Cache identity: one transport client is kept per distinct value."""
        if self.is_file:
            return ("file", self.file_path, self.password or "")
        return ("store", self.thumbprint, self.store_location, self.store_name)

    def validate(self) -> None:
        if not _is_blank(self.file_path) and not _is_blank(self.thumbprint):
            raise InvalidCertificateConfigError(
                "Cannot specify both file_path and thumbprint in certificate configuration"
            )

    @classmethod
    def from_file(cls, file_path: str, password: Optional[str] = None) -> "CertificateConfig":
        return cls(file_path=file_path, password=password or "")

    @classmethod
    def from_store(
        cls,
        thumbprint: str,
        store_location: StoreLocation = StoreLocation.CURRENT_USER,
        store_name: StoreName = StoreName.MY,
    ) -> "CertificateConfig":
        return cls(
            thumbprint=thumbprint,
            store_location=_parse_enum(StoreLocation, store_location),
            store_name=_parse_enum(StoreName, store_name),
        )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CertificateConfig":
        """
        Build a certificate config from a config-file mapping.

        Args:
            data: Mapping with file_path/password or
                thumbprint/store_location/store_name keys

        Returns:
            CertificateConfig (unconfigured if data is empty)

        Raises:
            InvalidCertificateConfigError: If data is not a mapping or an
                enum value is unknown
        """
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise InvalidCertificateConfigError(
                f"Certificate configuration must be a mapping, got {type(data).__name__}"
            )
        return cls(
            file_path=str(data.get("file_path") or ""),
            password=str(data.get("password") or ""),
            thumbprint=str(data.get("thumbprint") or ""),
            store_location=_parse_enum(StoreLocation, data.get("store_location") or StoreLocation.CURRENT_USER),
            store_name=_parse_enum(StoreName, data.get("store_name") or StoreName.MY),
        )


@dataclass
class CCPOptions:
    """Process-wide CCP client configuration.

    Validated once by the client that owns it and treated as read-only
    afterwards.
    """
    base_url: str = ""
    default_application_id: str = ""
    endpoint: str = DEFAULT_ENDPOINT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    verify_ssl: bool = True
    default_certificate: CertificateConfig = field(default_factory=CertificateConfig)
    certificates_by_application_id: Dict[str, CertificateConfig] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Fail fast on configuration that can never work.

        Raises:
            MissingConfigurationError: If base_url is empty
            InvalidCertificateConfigError: If any configured certificate
                sets both file_path and thumbprint
        """
        if _is_blank(self.base_url):
            raise MissingConfigurationError("base_url is required")

        # Application ID is optional here, requests may carry their own
        if self.default_certificate.is_configured:
            self.default_certificate.validate()

        for application_id, certificate in self.certificates_by_application_id.items():
            if certificate.is_configured:
                try:
                    certificate.validate()
                except InvalidCertificateConfigError as e:
                    raise InvalidCertificateConfigError(
                        f"Certificate for application ID '{application_id}': {e}",
                        application_id=application_id,
                    ) from e
