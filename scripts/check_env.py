"""Pre-flight checks for a broker deployment.

``settings`` loads ``AppSettings`` from an env file and reports every invalid
or missing field by name. ``keys`` does the same, then opens the credential
store named by ``DB_URL`` and confirms that ``TOKEN_ENCRYPTION_KEY`` still
decrypts every stored Google refresh token. Rows written under another key
cannot be recovered; their subjects have to link their mailbox again.

Example usages::

    python -m scripts.check_env settings --env-file /opt/mail-broker/.env
    python -m scripts.check_env keys --env-file /opt/mail-broker/.env
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List

from pydantic import ValidationError

from mail_broker.clients import StoreUnavailableError, TokenStore
from mail_broker.core.config import AppSettings, _load_env_file
from mail_broker.dependencies.clients import IN_MEMORY_DB_URL, build_token_store
from mail_broker.services.token_cipher import DecryptionError, TokenCipherService

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_KEY_MISMATCH = 3
EXIT_RUNTIME_ERROR = 5


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _undecryptable_subjects(store: TokenStore, cipher: TokenCipherService) -> List[str]:
    failures = []
    for credential in store.list_credentials():
        try:
            cipher.decrypt(credential.refresh_token)
        except DecryptionError:
            failures.append(credential.subject)
    return failures


def _check_keys(settings: AppSettings) -> int:
    db_url = settings.storage.db_url
    if db_url == IN_MEMORY_DB_URL or not Path(db_url).exists():
        print(f"No credential store at {db_url}; nothing to decrypt.")
        return EXIT_OK

    store = build_token_store(settings)
    cipher = TokenCipherService(secret=settings.security.token_encryption_key)
    try:
        total = len(store.list_credentials())
        failures = _undecryptable_subjects(store, cipher)
    except StoreUnavailableError as exc:
        print(f"Cannot read credential store {db_url}: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    finally:
        store.close()

    if failures:
        print(
            f"TOKEN_ENCRYPTION_KEY cannot decrypt {len(failures)} of {total} stored "
            "refresh tokens. These subjects must link their mailbox again:\n"
            + "\n".join(f"  {subject}" for subject in failures),
            file=sys.stderr,
        )
        return EXIT_KEY_MISMATCH

    print(f"TOKEN_ENCRYPTION_KEY decrypts all {total} stored refresh tokens.")
    print("Note: rotating JWT_SECRET invalidates every issued session token.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate broker settings and the stored credential encryption."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("settings", "Validate settings only."),
        ("keys", "Validate settings and decrypt every stored refresh token."),
    ):
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the working directory).",
        )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(
            f"Environment file {env_file} does not exist. "
            "Run scripts/generate_secrets.py --write to create one.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        # Field names only; the rejected values may be secrets.
        problems = "\n".join(
            f"  {'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        print(f"Settings validation failed:\n{problems}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    if args.command == "keys":
        return _check_keys(settings)
    print("Settings OK.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
