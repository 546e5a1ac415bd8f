"""Domain models for CCP secret retrieval."""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .options import CertificateConfig, StoreLocation, StoreName


@dataclass(frozen=True)
class SecretRequest:
    """Request for fetching a secret from CCP.

    Immutable; every builder method returns a new request:

        request = (
            SecretRequest.for_object("DBAcct")
            .using_application_id("MyApp")
            .in_safe("ProdSafe")
        )
    """
    object: str
    safe: str = ""
    folder: str = ""
    application_id: str = ""
    certificate: Optional[CertificateConfig] = None
    username: str = ""
    address: str = ""
    database: str = ""
    policy_id: str = ""
    custom_parameters: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "custom_parameters", MappingProxyType(dict(self.custom_parameters)))

    @classmethod
    def for_object(cls, object_name: str) -> "SecretRequest":
        return cls(object=object_name)

    @classmethod
    def for_object_with_app_id(cls, object_name: str, application_id: str) -> "SecretRequest":
        return cls(object=object_name, application_id=application_id)

    @classmethod
    def for_object_in_safe(cls, object_name: str, safe: str, application_id: str = "") -> "SecretRequest":
        return cls(object=object_name, safe=safe, application_id=application_id)

    @classmethod
    def with_certificate(
        cls,
        application_id: str,
        safe: str,
        object_name: str,
        certificate: Optional[CertificateConfig] = None,
    ) -> "SecretRequest":
        return cls(object=object_name, safe=safe, application_id=application_id, certificate=certificate)

    def using_application_id(self, application_id: str) -> "SecretRequest":
        return replace(self, application_id=application_id)

    def in_safe(self, safe: str) -> "SecretRequest":
        return replace(self, safe=safe)

    def in_folder(self, folder: str) -> "SecretRequest":
        return replace(self, folder=folder)

    def with_username(self, username: str) -> "SecretRequest":
        return replace(self, username=username)

    def at_address(self, address: str) -> "SecretRequest":
        return replace(self, address=address)

    def in_database(self, database: str) -> "SecretRequest":
        return replace(self, database=database)

    def with_policy_id(self, policy_id: str) -> "SecretRequest":
        return replace(self, policy_id=policy_id)

    def with_parameter(self, key: str, value: str) -> "SecretRequest":
        parameters = dict(self.custom_parameters)
        parameters[key] = value
        return replace(self, custom_parameters=parameters)

    def using_certificate(self, certificate: CertificateConfig) -> "SecretRequest":
        return replace(self, certificate=certificate)

    def using_certificate_file(self, file_path: str, password: Optional[str] = None) -> "SecretRequest":
        return replace(self, certificate=CertificateConfig.from_file(file_path, password))

    def using_certificate_store(
        self,
        thumbprint: str,
        store_location: StoreLocation = StoreLocation.CURRENT_USER,
        store_name: StoreName = StoreName.MY,
    ) -> "SecretRequest":
        return replace(self, certificate=CertificateConfig.from_store(thumbprint, store_location, store_name))


# Wire name -> CCPSecret attribute, in response order
_SECRET_FIELDS = {
    "Content": "content",
    "UserName": "username",
    "Address": "address",
    "Database": "database",
    "PlatformID": "platform_id",
    "Safe": "safe",
    "Folder": "folder",
    "Name": "name",
    "PolicyID": "policy_id",
    "CPMLastChangeTime": "last_change_time",
    "CPMNextChangeTime": "next_change_time",
    "CreationMethod": "creation_method",
}
_TIMESTAMP_FIELDS = ("last_change_time", "next_change_time")

# .NET emits up to 7 fractional digits; fromisoformat before 3.11 takes 3 or 6
_FRACTION = re.compile(r"\.(\d+)")


def _from_epoch(seconds) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Timestamp out of range: {seconds!r}") from e


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings and epoch seconds (number or digit string)."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return _from_epoch(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], text, count=1)
        return datetime.fromisoformat(text)
    raise ValueError(f"Invalid timestamp: {value!r}")


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class CCPSecret:
    """Secret returned by CCP.

    Response fields without a dedicated attribute are kept verbatim in
    additional_properties.
    """
    content: str = ""
    username: str = ""
    address: str = ""
    database: str = ""
    platform_id: str = ""
    safe: str = ""
    folder: str = ""
    name: str = ""
    policy_id: str = ""
    last_change_time: Optional[datetime] = None
    next_change_time: Optional[datetime] = None
    creation_method: str = ""
    additional_properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def password(self) -> str:
        return self.content

    def __repr__(self) -> str:
        return (
            f"CCPSecret(name={self.name!r}, safe={self.safe!r}, folder={self.folder!r}, "
            f"username={self.username!r}, address={self.address!r}, content='***')"
        )

    @classmethod
    def from_dict(cls, payload: Any) -> "CCPSecret":
        """
        Build a secret from a decoded CCP response body.

        Args:
            payload: Decoded JSON body

        Returns:
            CCPSecret

        Raises:
            ValueError: If payload is not an object or a timestamp is invalid
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")

        values: Dict[str, Any] = {}
        additional: Dict[str, Any] = {}
        for key, value in payload.items():
            attribute = _SECRET_FIELDS.get(key)
            if attribute is None:
                additional[key] = value
            elif attribute in _TIMESTAMP_FIELDS:
                values[attribute] = _parse_timestamp(value)
            else:
                values[attribute] = _as_text(value)

        return cls(additional_properties=additional, **values)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation, including additional_properties."""
        data: Dict[str, Any] = {}
        for key, attribute in _SECRET_FIELDS.items():
            value = getattr(self, attribute)
            if attribute in _TIMESTAMP_FIELDS:
                value = value.isoformat() if value is not None else None
            data[key] = value
        data.update(self.additional_properties)
        return data
