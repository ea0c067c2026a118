# accvault - Operator command line
#
#   accvault init-db                 Create the SQLite schema
#   accvault export [--out FILE]     Dump users and wire records as JSON
#   accvault import FILE [--truncate]
#   accvault hash-password           Print a PBKDF2 hash for a password
#
# Import and export run as a local operator (no bearer session); the admin
# check is only applied to API callers.

import argparse
import getpass
import json
import sys
from pathlib import Path

from . import __version__
from .auth.passwords import PasswordHasher
from .auth.service import UserSummary
from .config import get_settings
from .exceptions import ValidationError, VaultError
from .storage.database import VaultDatabase
from .storage.transfer import export_data, import_data

# Identity recorded in the audit log for CLI imports
OPERATOR = UserSummary(id=0, username="operator", email="operator@localhost", role="admin")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accvault",
        description="accvault - Zero-Trust secrets manager (operator tools)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Database path (default: ACCVAULT_DB_PATH or data/accvault.db)",
    )
    parser.add_argument("--version", action="version", version=f"accvault {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create the database schema")

    export_cmd = sub.add_parser("export", help="Export users and wire records as JSON")
    export_cmd.add_argument("--out", type=Path, default=None, help="Output file (default: stdout)")

    import_cmd = sub.add_parser("import", help="Import an export document")
    import_cmd.add_argument("file", type=Path)
    import_cmd.add_argument(
        "--truncate",
        action="store_true",
        help="Wipe users, sessions, tokens and records before importing",
    )

    sub.add_parser("hash-password", help="Hash a password read from the terminal")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    try:
        if args.command == "hash-password":
            password = getpass.getpass("Password: ")
            print(PasswordHasher(settings.server_hash_iterations).hash(password))
            return 0

        db = VaultDatabase(args.db or settings.db_path)

        if args.command == "init-db":
            print(f"Database ready: {db.db_path}")
        elif args.command == "export":
            document = json.dumps(export_data(db), indent=2)
            if args.out:
                args.out.write_text(document, encoding="utf-8")
            else:
                print(document)
        elif args.command == "import":
            try:
                payload = json.loads(args.file.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise ValidationError(f"{args.file} is not valid JSON: {exc.msg}") from None
            if not isinstance(payload, dict):
                raise ValidationError("import document must be a JSON object")
            if args.truncate:
                payload["truncate"] = True
            counts = import_data(db, payload, OPERATOR)
            print(json.dumps(counts))
    except VaultError as exc:
        print(f"error: {exc.message} ({exc.kind})", file=sys.stderr)
        if exc.details:
            print(json.dumps(exc.details, indent=2), file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
