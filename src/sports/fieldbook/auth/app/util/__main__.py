import argparse
import asyncio
import getpass
import logging
import secrets
from typing import Optional

import bcrypt

from sports.fieldbook.auth.security.passwords import PasswordHasher

logger = logging.getLogger(__name__)


async def genSecret(size: int) -> None:
    print(secrets.token_urlsafe(size))


async def genSalt(rounds: int) -> None:
    print(bcrypt.gensalt(rounds=rounds).decode("ascii"))


async def hashPassword(password: Optional[str], salt_or_rounds: str) -> None:
    if password is None:
        password = getpass.getpass("Password: ")
    hasher = PasswordHasher(
        int(salt_or_rounds) if salt_or_rounds.isdigit() else salt_or_rounds
    )
    print(await hasher.hash(password))


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="fieldbookutil", description="Fieldbook auth utilities"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    gen_secret = subparsers.add_parser(
        "gen-secret", help="Generate a JWT_ACCESS_SECRET value"
    )
    gen_secret.add_argument(
        "--size", type=int, default=48, help="Number of random bytes to encode."
    )

    gen_salt = subparsers.add_parser(
        "gen-salt", help="Generate a BCRYPT_SALT_OR_ROUNDS salt value"
    )
    gen_salt.add_argument("--rounds", type=int, default=10, help="bcrypt cost factor.")

    hash_password = subparsers.add_parser(
        "hash-password", help="Hash a password the way the service stores it"
    )
    hash_password.add_argument(
        "password", nargs="?", default=None, help="Prompted for when omitted."
    )
    hash_password.add_argument(
        "--salt-or-rounds", default="10", help="bcrypt rounds or pre-encoded salt."
    )

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-secret":
        await genSecret(args["size"])
    elif command == "gen-salt":
        await genSalt(args["rounds"])
    elif command == "hash-password":
        await hashPassword(args["password"], args["salt_or_rounds"])


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
