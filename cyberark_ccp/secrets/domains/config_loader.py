"""Configuration loader for cyberark-ccp."""
import os
import logging
from pathlib import Path
from typing import Any, Dict, Mapping
import yaml

from .errors import CCPClientError
from .options import CCPOptions, CertificateConfig, DEFAULT_ENDPOINT, DEFAULT_TIMEOUT_SECONDS
from .preferences import CONFIG_PATH_KEY, get_preference

logger = logging.getLogger(__name__)

APPLICATION_ID_ENV_VAR = "CCP_APPLICATION_ID"


class ConfigError(CCPClientError):
    """Configuration error exception."""
    pass


def default_config_path() -> Path:
    return Path.home() / ".config" / "cyberark-ccp" / "config.yml"


def _get_config_path() -> str:
    """
    Get config file path using XDG Base Directory standard.

    Priority order:
    1. User preference (stored in ~/.config/cyberark-ccp/preferences.json)
    2. Default location: ~/.config/cyberark-ccp/config.yml

    Returns:
        Absolute path to config file

    Raises:
        FileNotFoundError: If config file doesn't exist in any location
    """
    # 1. Check user preference
    config_path_pref = get_preference(CONFIG_PATH_KEY)
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return str(config_path)
        else:
            logger.warning(f"Config path from preference doesn't exist: {config_path}")

    # 2. Check default location
    default_config = default_config_path()
    if default_config.exists():
        logger.info(f"Using default config location: {default_config}")
        return str(default_config)

    raise FileNotFoundError(
        "Configuration file not found. Please set up your config file using one of these methods:\n\n"
        "1. Use the default location:\n"
        f"   mkdir -p {default_config.parent}\n"
        f"   cp /path/to/your/config.yml {default_config}\n\n"
        "2. Point to an existing config file:\n"
        "   ccp config set-path /path/to/your/config.yml\n"
    )


def _parse_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'ccp.timeout_seconds' must be a number, got: {value!r}") from e
    if timeout <= 0:
        raise ConfigError(f"'ccp.timeout_seconds' must be positive, got: {timeout}")
    return timeout


def _parse_verify_ssl(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'ccp.verify_ssl' must be true or false, got: {value!r}")
    return value


def _parse_certificates(section: Any) -> Dict[str, CertificateConfig]:
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigError("'ccp.certificates_by_application_id' must map application IDs to certificates")
    return {str(app_id): CertificateConfig.from_dict(cert) for app_id, cert in section.items()}


def options_from_dict(config: Mapping[str, Any]) -> CCPOptions:
    """
    Build validated CCPOptions from a parsed config mapping.

    Args:
        config: Mapping with a 'ccp' section

    Returns:
        Validated CCPOptions

    Raises:
        ConfigError: If the 'ccp' section is missing or malformed
        MissingConfigurationError: If base_url is empty
        InvalidCertificateConfigError: If a certificate is invalid
    """
    if 'ccp' not in config or not isinstance(config['ccp'], Mapping):
        raise ConfigError(
            "Missing 'ccp' section in config\n"
            "Required format:\n"
            "ccp:\n"
            "  base_url: https://ccp.example.com\n"
            "  default_application_id: MyApp"
        )

    section = config['ccp']
    if not section.get('base_url'):
        raise ConfigError("Missing 'ccp.base_url' in config")

    options = CCPOptions(
        base_url=str(section['base_url']),
        default_application_id=str(section.get('default_application_id') or ""),
        endpoint=str(section.get('endpoint') or DEFAULT_ENDPOINT),
        timeout_seconds=_parse_timeout(section.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS)),
        verify_ssl=_parse_verify_ssl(section.get('verify_ssl', True)),
        default_certificate=CertificateConfig.from_dict(section.get('default_certificate')),
        certificates_by_application_id=_parse_certificates(section.get('certificates_by_application_id')),
    )

    # Environment variable overrides the configured default application ID
    app_id_env = os.getenv(APPLICATION_ID_ENV_VAR)
    if app_id_env:
        logger.debug(f"Using {APPLICATION_ID_ENV_VAR} from environment: {app_id_env}")
        options.default_application_id = app_id_env

    options.validate()
    return options


def load_config() -> CCPOptions:
    """
    Load and validate configuration from YAML file.

    Returns:
        Validated CCPOptions

    Raises:
        FileNotFoundError: If no config file can be located
        ConfigError: If the config file is unreadable, empty or malformed
    """
    # Resolved on every call so preference changes apply without a restart
    config_path = _get_config_path()

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}") from e

    if not config:
        raise ConfigError(f"Config file at {config_path} is empty")

    if not isinstance(config, Mapping):
        raise ConfigError(f"Config file at {config_path} must contain a mapping")

    options = options_from_dict(config)

    logger.info(f"Configuration loaded successfully from {config_path}")
    logger.debug(f"Using CCP base URL: {options.base_url}")
    logger.debug(f"Default application ID: {options.default_application_id or '(none)'}")

    return options
