#!/usr/bin/env python3
"""
otps - command-line HOTP/TOTP manager
Usage:
    otps add <name> [<secret>] [--counter N]
    otps get <name> [--clip] [--increment] [--verbose]
    otps check <name> <code>
    otps list
    otps remove <name>
    otps export <name>
    otps import <uri>
    otps backup <file>
    otps restore <file>
"""

import argparse
import os
import sys
from getpass import getpass
from pathlib import Path

import pyperclip

from otps_backup import read_backup, write_backup
from otps_codec import decode_base32, normalize_secret
from otps_debug import debug_log, enable_debug
from otps_engine import Hotp, engine_for
from otps_errors import (
    BackupError,
    CredentialNotFound,
    InvalidSecretEncoding,
    OtpError,
    UnsupportedEntry,
)
from otps_store import Credential, CredentialStore, Kind
from otps_uri import entry_to_credential, format_otpauth_uri, parse_any_uri


# ==================== Configuration ====================

def get_vault_path(override: str = None) -> Path:
    """Resolve the vault file: --vault, then $OTPS_VAULT, then XDG data dir"""
    if override:
        return Path(override).expanduser()
    if os.environ.get("OTPS_VAULT"):
        return Path(os.environ["OTPS_VAULT"]).expanduser()
    xdg_data = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(xdg_data) / "otps" / "vault"


def open_store(args) -> CredentialStore:
    path = get_vault_path(getattr(args, "vault", None))
    debug_log(f"Using vault {path}")
    return CredentialStore(path)


def fail(message: str):
    print(f"Error: {message}")
    sys.exit(1)


def confirm(question: str) -> bool:
    return input(f"{question} [y/N]: ").lower() == "y"


def prompt_secret(name: str) -> str:
    """Ask for a secret until something non-empty is entered"""
    while True:
        try:
            secret = getpass(f">> secret key for {name}: ")
        except (KeyboardInterrupt, EOFError):
            print()
            fail("Cancelled")
        if secret.strip():
            return secret


def copy_to_clipboard(code: str) -> bool:
    try:
        pyperclip.copy(code)
    except pyperclip.PyperclipException as e:
        print(f"Warning: could not copy to clipboard: {e}")
        return False
    return True


def get_credential(store: CredentialStore, name: str) -> Credential:
    if not store.exists():
        fail(f"Vault {store.path} does not exist, add a secret first")
    try:
        return store.get(name)
    except CredentialNotFound:
        print(f"Error: There is no endpoint named '{name}'")
        print("Use 'otps list' to see available endpoints")
        sys.exit(1)


def save_counter(store: CredentialStore, credential: Credential, engine: Hotp):
    """Advance the HOTP counter and write it back to the vault"""
    counter = engine.increment_counter()
    store.alter(credential.name, credential.with_counter(counter).to_line())


# ==================== Commands ====================

def cmd_add(args):
    """Add or replace an OTP secret"""
    name = args.name
    if not name or any(c.isspace() for c in name):
        fail("Name must be non-empty and contain no whitespace")

    secret = normalize_secret(args.secret or prompt_secret(name))
    try:
        decode_base32(secret)
    except InvalidSecretEncoding as e:
        fail(str(e))

    kind = Kind.TOTP if args.counter is None else Kind.HOTP
    credential = Credential(name, secret, kind, args.counter)
    store = open_store(args)

    if not store.exists():
        store.set(credential.to_line())
    elif name in store.list():
        if not args.force and not confirm(f"Endpoint '{name}' already exists. Overwrite?"):
            print("Cancelled")
            return
        store.alter(name, credential.to_line())
    else:
        store.append(credential.to_line())

    print(f"✓ Added {kind} '{name}'")


def cmd_get(args):
    """Get OTP code for an endpoint"""
    store = open_store(args)
    credential = get_credential(store, args.name)
    engine = engine_for(credential)
    code = engine.generate()

    if credential.kind is Kind.HOTP and args.increment:
        save_counter(store, credential, engine)

    clipboard_msg = ""
    if args.clip and copy_to_clipboard(code):
        clipboard_msg = " (copied to clipboard)"

    print(f"{credential.kind} for {credential.name}: {code}{clipboard_msg}")

    if args.verbose:
        if credential.kind is Kind.HOTP:
            print(f"Counter: {engine.get_counter()}")
        else:
            print(f"Valid for {engine.remaining()}s")


def cmd_check(args):
    """Check a code; a matching HOTP code advances the counter"""
    store = open_store(args)
    credential = get_credential(store, args.name)
    engine = engine_for(credential)

    if not engine.validate(args.code.strip()):
        print(f"✗ Code is not valid for '{credential.name}'")
        sys.exit(1)

    if credential.kind is Kind.HOTP:
        save_counter(store, credential, engine)
    print(f"✓ Code is valid for '{credential.name}'")


def cmd_list(args):
    """List all stored endpoints"""
    store = open_store(args)
    records = store.records() if store.exists() else []

    if not records:
        print("There is no available endpoint.")
        print("Add one with: otps add <name> [<secret>]")
        return

    name_width = max(len("Name"), max(len(r.name) for r in records)) + 4
    print(f"{'Name':<{name_width}}{'Type':<8}Counter")
    print("-" * (name_width + 15))
    for record in records:
        counter = "-" if record.counter is None else record.counter
        print(f"{record.name:<{name_width}}{str(record.kind):<8}{counter}")


def cmd_remove(args):
    """Remove an OTP secret"""
    store = open_store(args)
    get_credential(store, args.name)

    if not args.force and not confirm(f"Remove '{args.name}'?"):
        print("Cancelled")
        return

    store.remove(args.name)
    print(f"✓ Removed '{args.name}'")


def cmd_export(args):
    """Export secret for an endpoint (for backup)"""
    store = open_store(args)
    credential = get_credential(store, args.name)

    print(f"Secret: {credential.secret}")
    print(f"URI: {format_otpauth_uri(credential, args.issuer)}")


def import_entries(store: CredentialStore, entries) -> int:
    """Store parsed URI entries under fresh names; returns how many were imported"""
    taken = store.list() if store.exists() else []
    imported = 0

    for entry in entries:
        try:
            credential = entry_to_credential(entry, taken)
        except UnsupportedEntry as e:
            print(f"  Skipping '{entry.get('name', 'unknown')}': {e}")
            continue

        store.append(credential.to_line())
        taken.append(credential.name)
        imported += 1
        print(f"✓ Imported '{credential.name}' ({entry.get('issuer') or '-'})")

    return imported


def show_entries(entries):
    print(f"Found {len(entries)} OTP entries:\n")
    for i, entry in enumerate(entries, 1):
        print(f"{i}. {entry.get('issuer', '')} - {entry.get('name', 'Unknown')}")
        print(f"   Type: {entry.get('type', 'TOTP')}, Digits: {entry.get('digits', 6)}")
        print()


def run_import(args, entries):
    """Shared tail of 'import' and otps-scan: show, confirm, store"""
    if not entries:
        fail("No OTP entries found")

    show_entries(entries)

    if args.dry_run:
        print("Dry run - no secrets were imported")
        return

    if not confirm("Import all entries?"):
        print("Cancelled")
        return

    imported = import_entries(open_store(args), entries)
    print(f"\n✓ Imported {imported} entries")


def cmd_import(args):
    """Import from an otpauth:// or Google Authenticator export URI"""
    try:
        entries = parse_any_uri(args.uri)
    except ValueError as e:
        fail(str(e))
    run_import(args, entries)


def cmd_backup(args):
    """Write an encrypted backup of the vault"""
    store = open_store(args)
    if not store.exists():
        fail(f"Vault {store.path} does not exist")

    password = getpass("Create backup password: ")
    if password != getpass("Confirm backup password: "):
        fail("Passwords don't match")

    write_backup(store, args.file, password)
    print(f"✓ Backup written to {args.file}")


def cmd_restore(args):
    """Replace the vault with the contents of an encrypted backup"""
    if not os.path.exists(args.file):
        fail(f"File not found: {args.file}")

    try:
        text = read_backup(args.file, getpass("Backup password: "))
    except BackupError as e:
        fail(str(e))

    store = open_store(args)
    if store.exists() and not args.force and not confirm(f"Overwrite {store.path}?"):
        print("Cancelled")
        return

    store.set(text)
    print(f"✓ Restored {len(store.list())} endpoints to {store.path}")


# ==================== Main ====================

def add_common_options(parser):
    parser.add_argument("--vault", help="Path to the vault file (default: $OTPS_VAULT or ~/.local/share/otps/vault)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging with timing")


def counter_type(value: str) -> int:
    counter = int(value)
    if counter < 0:
        raise argparse.ArgumentTypeError("counter must be non-negative")
    return counter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="otps",
        description="otps - command-line HOTP/TOTP manager",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    add_common_options(parser)
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Add command
    add_parser = subparsers.add_parser("add", help="Add a new endpoint (TOTP unless --counter is given)")
    add_parser.add_argument("name", help="Endpoint name")
    add_parser.add_argument("secret", nargs="?", help="Base32 secret (prompted when omitted)")
    add_parser.add_argument("--counter", "-c", type=counter_type, help="Initial counter, creates an HOTP endpoint")
    add_parser.add_argument("--force", "-f", action="store_true", help="Overwrite without confirmation")

    # Get command
    get_parser = subparsers.add_parser("get", help="Get one-time password")
    get_parser.add_argument("name", help="Endpoint name")
    get_parser.add_argument("--clip", "-c", action="store_true", help="Copy code to clipboard")
    get_parser.add_argument("--increment", "-i", action="store_true", help="Advance the HOTP counter after generating")
    get_parser.add_argument("--verbose", "-v", action="store_true", help="Show time remaining or counter")

    # Check command
    check_parser = subparsers.add_parser("check", help="Check a one-time password")
    check_parser.add_argument("name", help="Endpoint name")
    check_parser.add_argument("code", help="Code to check")

    # List command
    subparsers.add_parser("list", help="List all available endpoints")

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Remove an endpoint")
    remove_parser.add_argument("name", help="Endpoint to remove")
    remove_parser.add_argument("--force", "-f", action="store_true", help="Skip confirmation")

    # Export command
    export_parser = subparsers.add_parser("export", help="Export secret and otpauth URI")
    export_parser.add_argument("name", help="Endpoint to export")
    export_parser.add_argument("--issuer", "-i", help="Issuer to put in the URI")

    # Import command
    import_parser = subparsers.add_parser("import", help="Import from otpauth:// or otpauth-migration:// URI")
    import_parser.add_argument("uri", help="URI to import")
    import_parser.add_argument("--dry-run", "-n", action="store_true", help="Show what would be imported without saving")

    # Backup / restore
    backup_parser = subparsers.add_parser("backup", help="Write an encrypted backup of the vault")
    backup_parser.add_argument("file", help="Backup file to write")

    restore_parser = subparsers.add_parser("restore", help="Restore the vault from an encrypted backup")
    restore_parser.add_argument("file", help="Backup file to read")
    restore_parser.add_argument("--force", "-f", action="store_true", help="Overwrite without confirmation")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        enable_debug()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    commands = {
        "add": cmd_add,
        "get": cmd_get,
        "check": cmd_check,
        "list": cmd_list,
        "remove": cmd_remove,
        "export": cmd_export,
        "import": cmd_import,
        "backup": cmd_backup,
        "restore": cmd_restore,
    }

    debug_log(f"Running '{args.command}'")
    try:
        commands[args.command](args)
    except OtpError as e:
        fail(str(e))
    except OSError as e:
        fail(f"{e.strerror or e} ({e.filename})" if e.filename else str(e))


if __name__ == "__main__":
    main()
