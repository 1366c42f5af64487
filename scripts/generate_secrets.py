"""Generate the broker's TOKEN_ENCRYPTION_KEY and JWT_SECRET.

Prints fresh values and, with ``--write``, stores them in a ``.env`` file
(created from ``.env.example`` when one exists). Existing values are kept
unless ``--force`` is given, since replacing them orphans every encrypted
refresh token and invalidates every issued session token.
"""

from __future__ import annotations

import argparse
import base64
import re
import secrets
import sys
from pathlib import Path
from typing import Dict

from mail_broker.utils.pkce import generate_encryption_key

SECRET_KEYS = ("TOKEN_ENCRYPTION_KEY", "JWT_SECRET")


def generate_secrets() -> Dict[str, str]:
    return {
        "TOKEN_ENCRYPTION_KEY": generate_encryption_key(),
        "JWT_SECRET": base64.b64encode(secrets.token_bytes(48)).decode("ascii"),
    }


def apply_secrets(content: str, values: Dict[str, str], *, force: bool) -> tuple[str, bool]:
    """Return ``content`` with ``values`` set, and whether anything changed."""
    changed = False
    appended = []
    for key, value in values.items():
        pattern = re.compile(rf"^{key}=(.*)$", re.MULTILINE)
        match = pattern.search(content)
        if match is None:
            appended.append(f"{key}={value}")
            changed = True
        elif force or not match.group(1).strip():
            content = pattern.sub(lambda _: f"{key}={value}", content, count=1)
            changed = True
    if appended:
        if content and not content.endswith("\n"):
            content += "\n"
        content += "\n# Generated secrets\n" + "\n".join(appended) + "\n"
    return content, changed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--write", action="store_true", help="Store the secrets in --env-file.")
    parser.add_argument("--force", action="store_true", help="Overwrite existing secrets.")
    parser.add_argument("--env-file", default=".env", type=Path)
    parser.add_argument("--example-file", default=".env.example", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    values = generate_secrets()

    print("Generated secrets:\n")
    for key in SECRET_KEYS:
        print(f"{key}={values[key]}")
    print()

    if not args.write:
        print("Copy the secrets above into your environment configuration.")
        return 0

    env_file: Path = args.env_file
    if env_file.exists():
        content = env_file.read_text(encoding="utf-8")
    elif args.example_file.exists():
        content = args.example_file.read_text(encoding="utf-8")
    else:
        content = ""

    # Placeholders copied from the example file are always replaced.
    force = args.force or not env_file.exists()
    content, changed = apply_secrets(content, values, force=force)
    if not changed:
        print(f"Secrets already present in {env_file}; re-run with --force to replace them.")
        return 0

    env_file.write_text(content, encoding="utf-8")
    print(f"Wrote secrets to {env_file}")
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
