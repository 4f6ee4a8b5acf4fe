"""
Command line interface.

Each invocation loads the master record and the store once, runs exactly
one command, and persists the store once if the command changed it.
"""
import os
import sys
import getpass
import logging
import argparse
from collections.abc import Callable
from typing import Optional, TextIO

from .conf import VaultConfig
from .exceptions import UsageError, VaultError
from .importer import import_file
from .master import MasterPasswordManager
from .persistence import (
    commit_rotation,
    load_master,
    load_store,
    recover_rotation,
    save_master,
    save_store,
)
from .reveal import TimedReveal
from .store import CredentialStore
from .version import __version__

logger = logging.getLogger("pwvault")

Prompt = Callable[[str], str]

MASTER_PASSWORD_ENV = "PWVAULT_MASTER_PASSWORD"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pwvault", description="Encrypted per-site credential manager",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-r", "--raw-file", dest="raw_file", metavar="RAW_FILE",
        help="import credentials from a raw text file, replacing the store",
    )
    parser.add_argument("-d", "--db-file", dest="db_file", metavar="DB_FILE")
    parser.add_argument("-m", "--master-file", dest="master_file", metavar="MASTER_FILE")
    parser.add_argument(
        "-t", "--timeout", dest="timeout", type=float, metavar="SECONDS",
        help="seconds a revealed password stays on screen",
    )
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    p_add = sub.add_parser("add", help="add a new credential")
    p_add.add_argument("site")
    p_add.add_argument("user")
    p_add.add_argument("username")
    p_add.add_argument("password", nargs="?")

    p_get = sub.add_parser("get", aliases=["retrieve"], help="reveal a password")
    p_get.add_argument("site")
    p_get.add_argument("user")

    p_update = sub.add_parser("update", help="replace username and password")
    p_update.add_argument("site")
    p_update.add_argument("user")
    p_update.add_argument("username")
    p_update.add_argument("password", nargs="?")

    p_delete = sub.add_parser("delete", help="remove a credential")
    p_delete.add_argument("site")
    p_delete.add_argument("user")

    sub.add_parser("list", help="list sites, users and usernames")

    p_show = sub.add_parser("show", help="list the users of one site")
    p_show.add_argument("site")

    sub.add_parser("set-master-password", help="create or rotate the master password")
    return parser


# ---------------------------------------------------------------------------
# Password prompts
# ---------------------------------------------------------------------------

def _ask(prompt: Prompt, label: str) -> str:
    value = prompt(label)
    if not value:
        raise UsageError(f"{label.rstrip(': ')} cannot be empty")
    return value


def _ask_new(prompt: Prompt, label: str) -> str:
    first = _ask(prompt, f"{label}: ")
    second = prompt(f"Confirm {label}: ")
    if first != second:
        raise UsageError("Passwords do not match")
    return first


def _master_password(prompt: Prompt) -> str:
    from_env = os.environ.get(MASTER_PASSWORD_ENV)
    if from_env:
        return from_env
    return _ask(prompt, "Enter Master Password: ")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_add(
    args: argparse.Namespace,
    store: CredentialStore,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> bool:
    password = args.password or _ask(prompt, "Enter Password: ")
    store.add(args.site, args.user, args.username, password)
    print(f"Added credentials for Site: {args.site} User: {args.user}", file=out)
    return True


def _cmd_get(
    args: argparse.Namespace,
    store: CredentialStore,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> bool:
    cred = store.entry(args.site, args.user)
    print(
        f"Credentials for Site: {args.site} User: {args.user} "
        f"Username: {cred.username}",
        file=out,
    )
    print("(press any key to hide the password)", file=out)
    TimedReveal(store, timeout=config.reveal_timeout, stream=out).reveal_sync(
        args.site, args.user,
    )
    print(file=out)
    return False


def _cmd_update(
    args: argparse.Namespace,
    store: CredentialStore,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> bool:
    store.entry(args.site, args.user)
    password = args.password or _ask(prompt, "Enter Password: ")
    store.update(args.site, args.user, args.username, password)
    print(f"Updated credentials for Site: {args.site} User: {args.user}", file=out)
    return True


def _cmd_delete(
    args: argparse.Namespace,
    store: CredentialStore,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> bool:
    store.delete(args.site, args.user)
    print(f"Removed credentials for Site: {args.site} User: {args.user}", file=out)
    return True


def _cmd_list(
    args: argparse.Namespace,
    store: CredentialStore,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> bool:
    current = None
    for site, user, username in store.list():
        if site != current:
            print(f"Site: {site}", file=out)
            current = site
        print(f"    User: {user} Username: {username}", file=out)
    print(f"Total: {len(store)}", file=out)
    return False


def _cmd_show(
    args: argparse.Namespace,
    store: CredentialStore,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> bool:
    print(f"Site: {args.site}", file=out)
    for user, username in store.show(args.site):
        print(f"    User: {user} Username: {username}", file=out)
    return False


COMMANDS = {
    "add": _cmd_add,
    "get": _cmd_get,
    "retrieve": _cmd_get,
    "update": _cmd_update,
    "delete": _cmd_delete,
    "list": _cmd_list,
    "show": _cmd_show,
}


def _set_master_password(
    args: argparse.Namespace,
    config: VaultConfig,
    prompt: Prompt,
    out: TextIO,
) -> None:
    if args.raw_file:
        raise UsageError("set-master-password cannot be combined with -r")
    record = load_master(config.master_file)
    if record is None:
        new_password = _ask_new(prompt, "New Master Password")
        manager = MasterPasswordManager.create(new_password, config)
        save_master(config.master_file, manager.record)
        print("Master password set.", file=out)
        return
    manager = MasterPasswordManager(record)
    old_password = _ask(prompt, "Current Master Password: ")
    key = manager.unlock(old_password)
    new_password = _ask_new(prompt, "New Master Password")
    store = load_store(config.store_file, key, record.cipher)
    new_record = manager.rotate(store, old_password, new_password, config)
    commit_rotation(config.store_file, config.master_file, store, new_record)
    print(f"Master password changed; {len(store)} credential(s) re-encrypted.", file=out)


def _unlock(config: VaultConfig, prompt: Prompt, out: TextIO) -> tuple[bytes, str]:
    """Return the active key and the cipher backend it is used with."""
    record = load_master(config.master_file)
    if record is None:
        print("No master password set yet; creating one.", file=out)
        password = _ask_new(prompt, "New Master Password")
        manager = MasterPasswordManager.create(password, config)
        save_master(config.master_file, manager.record)
        return manager.derive_key(password), manager.record.cipher
    key = MasterPasswordManager(record).unlock(_master_password(prompt))
    return key, record.cipher


def run(
    args: argparse.Namespace,
    prompt: Optional[Prompt] = None,
    out: Optional[TextIO] = None,
) -> None:
    """Execute one parsed command against the configured vault files."""
    prompt = prompt or getpass.getpass
    out = out or sys.stdout
    config = VaultConfig.from_env(
        store_file=args.db_file,
        master_file=args.master_file,
        reveal_timeout=args.timeout,
    )
    recover_rotation(config.store_file, config.master_file)

    if args.command == "set-master-password":
        _set_master_password(args, config, prompt, out)
        return

    key, cipher = _unlock(config, prompt, out)
    mutated = False
    if args.raw_file:
        if config.store_file.exists():
            logger.warning("Import replaces the existing store at %s", config.store_file)
        store = import_file(args.raw_file, key, cipher)
        print(f"Imported {len(store)} credential(s) from {args.raw_file}", file=out)
        mutated = True
    else:
        store = load_store(config.store_file, key, cipher)

    handler = COMMANDS[args.command]
    if handler(args, store, config, prompt, out):
        mutated = True
    if mutated:
        save_store(config.store_file, store)


def main(
    argv: Optional[list[str]] = None,
    prompt: Optional[Prompt] = None,
    out: Optional[TextIO] = None,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    if out is None and sys.stdin.isatty():
        print("Welcome to Credential manager!")
        print("==============================")
    try:
        run(args, prompt=prompt, out=out)
    except VaultError as err:
        logger.debug("Command %s failed: %s", args.command, err)
        print(f"Error: {err}", file=sys.stderr)
        return err.exit_code
    except KeyboardInterrupt:
        print("Aborted.", file=sys.stderr)
        return 130
    return 0
