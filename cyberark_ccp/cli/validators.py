"""Input validation for CLI arguments."""
import sys
from typing import Dict, List, Optional, Tuple


def validate_object_name(name: str) -> None:
    """
    Validate the CCP object name is not blank.

    Args:
        name: Object name to validate

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name or not name.strip():
        print("Error: Object name cannot be empty", file=sys.stderr)
        print("\nPass the CCP account object name, e.g.: ccp secrets get DBAcct --safe ProdSafe", file=sys.stderr)
        sys.exit(2)


def parse_parameters(values: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse repeated KEY=VALUE arguments into a dict.

    Args:
        values: Raw --param values

    Returns:
        Mapping of parameter names to values, in argument order

    Raises:
        SystemExit with code 2 if an argument is not KEY=VALUE
    """
    parameters: Dict[str, str] = {}
    for raw in values or []:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            print(f"Error: Invalid parameter '{raw}'", file=sys.stderr)
            print("\nParameters must be given as KEY=VALUE, e.g.: --param Reason=Deploy", file=sys.stderr)
            sys.exit(2)
        parameters[key.strip()] = value
    return parameters


def validate_certificate_args(cert_file: Optional[str], thumbprint: Optional[str]) -> Tuple[bool, bool]:
    """
    Ensure at most one certificate source was given.

    Returns:
        (uses_file, uses_store)

    Raises:
        SystemExit with code 2 if both --cert-file and --thumbprint are set
    """
    if cert_file and thumbprint:
        print("Error: --cert-file and --thumbprint cannot be used together", file=sys.stderr)
        sys.exit(2)
    return bool(cert_file), bool(thumbprint)
