# Maintenance entry point
#
# Non-interactive commands against the environment-configured credential
# store. Secrets are never printed except by ``export-env``, which writes
# them to a file.

import argparse
import json
import sys

from . import __version__
from .errors import ValidationError
from .manager import default_credential_manager
from .vault.encryption import generate_secure_passphrase, score_passphrase


def _print_result(result) -> int:
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mcp-credentials",
        description="Encrypted credential storage for MCP tool orchestration",
        epilog="Configured via MCP_CREDENTIALS_* environment variables or a .env file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mcp-credentials v{__version__}",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate-key", help="Generate a strong encryption passphrase")
    generate.add_argument("--length", type=int, default=64, help="Passphrase length (16-128)")

    commands.add_parser("list", help="List stored credentials (names and metadata only)")

    audit = commands.add_parser("audit", help="Show the most recent audit entries")
    audit.add_argument("--limit", type=int, default=20)

    commands.add_parser("validate", help="Check storage integrity")

    export = commands.add_parser("export-env", help="Write all credentials to a dotenv file")
    export.add_argument("path", help="Destination .env file")

    args = parser.parse_args(argv)

    if args.command == "generate-key":
        try:
            passphrase = generate_secure_passphrase(args.length)
        except ValidationError as e:
            parser.error(str(e))
        strength = score_passphrase(passphrase)
        print(passphrase)
        print(f"# strength score: {strength.score}/5", file=sys.stderr)
        print("# set it as MCP_CREDENTIALS_KEY and keep it out of version control", file=sys.stderr)
        return 0

    manager = default_credential_manager()
    if args.command == "list":
        return _print_result(manager.list_credentials())
    if args.command == "audit":
        return _print_result(manager.get_audit_log(args.limit))
    if args.command == "validate":
        return _print_result(manager.validate_storage())
    if args.command == "export-env":
        return _print_result(manager.export_env_file(args.path))
    return 2


if __name__ == "__main__":
    sys.exit(main())
