"""CLI entrypoint for cyberark-ccp."""
import sys
import json
import argparse
import logging
from pathlib import Path

from .validators import parse_parameters, validate_certificate_args, validate_object_name
from ..secrets.domains.options import StoreLocation, StoreName
from ..secrets.domains.transport import VERSION

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def cmd_version(args):
    """Show version information."""
    print(f"cyberark-ccp {VERSION}")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from cyberark_ccp.secrets.domains.preferences import CONFIG_PATH_KEY, set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    set_preference(CONFIG_PATH_KEY, str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show current config file path."""
    from cyberark_ccp.secrets.domains.config_loader import default_config_path
    from cyberark_ccp.secrets.domains.preferences import CONFIG_PATH_KEY, get_preference

    config_path_pref = get_preference(CONFIG_PATH_KEY)

    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            print(f"Config path: {config_path}")
        else:
            print(f"Config path (from preference, but file not found): {config_path}")
        print("Source: preference")
    else:
        default_config = default_config_path()
        print(f"Config path: {default_config}")
        if default_config.exists():
            print("Source: default")
        else:
            print("Source: default (file not found)")


def cmd_config_clear(args):
    """Clear config path preference."""
    from cyberark_ccp.secrets.domains.config_loader import default_config_path
    from cyberark_ccp.secrets.domains.preferences import CONFIG_PATH_KEY, clear_preference

    if clear_preference(CONFIG_PATH_KEY):
        print(f"Config path preference cleared. Will use default: {default_config_path()}")
    else:
        print(f"No config path preference set. Using default: {default_config_path()}")


def _build_request(args):
    from cyberark_ccp.secrets.domains.models import SecretRequest

    validate_object_name(args.object_name)
    parameters = parse_parameters(args.param)
    uses_file, uses_store = validate_certificate_args(args.cert_file, args.thumbprint)

    request = SecretRequest(
        object=args.object_name,
        safe=args.safe or "",
        folder=args.folder or "",
        application_id=args.app_id or "",
        username=args.username or "",
        address=args.address or "",
        database=args.database or "",
        policy_id=args.policy_id or "",
        custom_parameters=parameters,
    )
    if uses_file:
        request = request.using_certificate_file(args.cert_file, args.cert_password)
    elif uses_store:
        request = request.using_certificate_store(args.thumbprint, args.store_location, args.store_name)
    return request


def cmd_secrets_get(args):
    """Get a secret from CCP."""
    from cyberark_ccp.client import get_client, reset_client
    from cyberark_ccp.secrets.domains.errors import CCPClientError

    request = _build_request(args)

    try:
        secret = get_client().get_secret(request)
    except CCPClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.error_code:
            print(f"CCP error code: {e.error_code}", file=sys.stderr)
        sys.exit(1)
    finally:
        reset_client()

    if args.json:
        print(json.dumps(secret.to_dict(), indent=2, default=str))
    elif args.quiet:
        # Quiet mode: output only value, no formatting
        print(secret.content)
    else:
        print(f"Secret '{secret.name or request.object}' (safe '{secret.safe}'): {secret.content}")
    sys.exit(0)


def cmd_test_connection(args):
    """Probe CCP with the default application ID."""
    from cyberark_ccp.client import get_client, reset_client

    try:
        connected = get_client().test_connection()
    finally:
        reset_client()

    if connected:
        print("Success: CCP is reachable")
        sys.exit(0)
    print("Error: CCP is not reachable (see log output for details)", file=sys.stderr)
    sys.exit(1)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="ccp",
        description="cyberark-ccp CLI - retrieve secrets from CyberArk Central Credential Provider",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (authentication, network, secret not found, etc.)
  2 - Usage error (invalid arguments, empty object name, etc.)

Environment variables:
  CCP_APPLICATION_ID - default Application ID (overrides config file)
  CCP_CERTSTORE_DIR  - root directory of the certificate stores

Configuration:
  Default location: ~/.config/cyberark-ccp/config.yml
  Custom path: Set with 'ccp config set-path <path>'
  View current: Run 'ccp config show'
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging on stderr"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of cyberark-ccp"
    )

    subparsers.add_parser(
        "test-connection",
        help="Check that CCP is reachable",
        description="""
Request the object 'test' with the default Application ID.

Any answer other than 502/503/504 counts as reachable, including
authorization errors, since those still come from CCP.
        """
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage cyberark-ccp configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="""
Set the configuration file path preference.

This stores the absolute path to your config file in:
~/.config/cyberark-ccp/preferences.json
        """
    )
    config_set_path_parser.add_argument("path", help="Path to config file")

    config_subparsers.add_parser(
        "show",
        help="Show current config path",
        description="Display the current configuration file path and its source (preference or default)"
    )
    config_subparsers.add_parser(
        "clear",
        help="Clear config path preference",
        description="Remove the config path preference; ~/.config/cyberark-ccp/config.yml is used afterwards"
    )

    # secrets command
    secrets_parser = subparsers.add_parser(
        "secrets",
        help="Secret operations",
        description="Retrieve secrets from CyberArk CCP"
    )
    secrets_subparsers = secrets_parser.add_subparsers(dest="secrets_command")

    get_parser = secrets_subparsers.add_parser(
        "get",
        help="Get a secret value",
        description="""
Fetch a secret from CCP.

The client certificate is chosen in this order: --cert-file/--thumbprint,
the certificate configured for the Application ID, the default certificate.

Exit codes:
  0 - Secret found and printed
  1 - CCP or connection error
  2 - Invalid arguments
        """
    )
    get_parser.add_argument("object_name", help="CCP object (account) name")
    get_parser.add_argument("--app-id", help="Application ID (defaults to the configured one)")
    get_parser.add_argument("--safe", help="Safe containing the object")
    get_parser.add_argument("--folder", help="Folder within the safe")
    get_parser.add_argument("--username", help="Filter by account user name")
    get_parser.add_argument("--address", help="Filter by account address")
    get_parser.add_argument("--database", help="Filter by database name")
    get_parser.add_argument("--policy-id", help="Filter by platform policy ID")
    get_parser.add_argument(
        "--param",
        action="append",
        metavar="KEY=VALUE",
        help="Additional query parameter (repeatable)"
    )
    get_parser.add_argument("--cert-file", help="Client certificate file (PEM or PKCS#12)")
    get_parser.add_argument("--cert-password", help="Password for --cert-file")
    get_parser.add_argument("--thumbprint", help="Client certificate thumbprint in a certificate store")
    get_parser.add_argument(
        "--store-location",
        choices=[location.value for location in StoreLocation],
        default=StoreLocation.CURRENT_USER.value,
        help="Certificate store location for --thumbprint"
    )
    get_parser.add_argument(
        "--store-name",
        choices=[name.value for name in StoreName],
        default=StoreName.MY.value,
        help="Certificate store name for --thumbprint"
    )
    output_group = get_parser.add_mutually_exclusive_group()
    output_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Output only the secret value (useful for scripts)"
    )
    output_group.add_argument(
        "--json",
        action="store_true",
        help="Output the full CCP response as JSON"
    )

    return parser, config_parser, secrets_parser


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (authentication, network, secret not found, etc.)
        2 - Usage errors (invalid arguments, empty object name, etc.)
    """
    parser, config_parser, secrets_parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # If no command provided, show help and exit with usage error code
    if not args.command:
        parser.print_help()
        sys.exit(2)

    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "test-connection":
            cmd_test_connection(args)
        elif args.command == "config":
            if args.config_command == "set-path":
                cmd_config_set_path(args)
            elif args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "clear":
                cmd_config_clear(args)
            else:
                config_parser.print_help()
                sys.exit(2)
        elif args.command == "secrets":
            if args.secrets_command == "get":
                cmd_secrets_get(args)
            else:
                secrets_parser.print_help()
                sys.exit(2)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
