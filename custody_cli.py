# Copyright (c) 2026 Emiliano G Solazzi
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licenses available. Contact: emiliano.arlington@gmail.com
"""
Command line entry point.

    custody-audit dice -f 20 -b 128 -k cold1 -l 3 17 5 ...
    custody-audit print tx.psbt --wallets wallets.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from bitcoin_protocol import NETWORKS
from custody_errors import CustodyError
from dice_keys import DiceOptions, DieShape, EntropyTarget, roll
from psbt_audit import start

log = logging.getLogger("custody_cli")
log.addHandler(logging.NullHandler())

_LOGGERS = ("custody_cli", "dice_keys", "psbt_audit")


def setup_logging(log_file: str = "custody_audit.log") -> None:
    """
    Configure rotating file + console logging for every module logger.

    Call once at startup; safe to call multiple times (idempotent).
    """
    if getattr(setup_logging, "_done", False):
        return

    fmt = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    file_handler = RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=5,
    )
    file_handler.setFormatter(fmt)
    file_handler.setLevel(logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(fmt)
    console_handler.setLevel(logging.WARNING)

    for name in _LOGGERS:
        logger = logging.getLogger(name)
        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.setLevel(logging.INFO)

    setup_logging._done = True  # type: ignore[attr-defined]


def _dice(args: argparse.Namespace) -> str:
    bits = EntropyTarget.parse(args.bits) if args.bits else DiceOptions.DEFAULT_BITS
    opt = DiceOptions(
        faces=DieShape.parse(args.faces),
        bits=bits,
        key_name=args.key_name,
        launches=tuple(args.launches),
    )
    output = roll(args.network, opt)
    if args.output:
        if args.password is not None:
            output.save_encrypted(args.output, args.password)
        else:
            output.save(args.output)
    return json.dumps(output.to_dict(), indent=2)


def _print(args: argparse.Namespace) -> str:
    return start(args.psbt_file, args.network, args.wallets).to_json()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="custody-audit",
        epilog="For more help, include a subcommand, e.g. `custody-audit dice --help`",
    )
    parser.add_argument(
        "-n", "--network", default="mainnet",
        choices=sorted(NETWORKS) + ["bitcoin"],
        help="Bitcoin network (default: mainnet)",
    )
    parser.add_argument("--log-file", help="Write a rotating log to this file")

    subs = parser.add_subparsers(title="Subcommands", dest="program", required=True)

    parser_dice = subs.add_parser(
        "dice", help="Generate a BIP-32 master key from dice launches",
    )
    parser_dice.add_argument(
        "-f", "--faces", required=True,
        help="Faces of the die, only platonic solids (4, 6, 8, 12, 20) or a coin (2)",
    )
    parser_dice.add_argument(
        "-b", "--bits", help="Bits of entropy: 128, 192 or 256 (default: 256)",
    )
    parser_dice.add_argument("-k", "--key-name", required=True, help="Name of the key")
    parser_dice.add_argument(
        "-l", "--launches", type=int, nargs="+", required=True,
        help="Value of each die launch, in order",
    )
    parser_dice.add_argument("--output", help="Write the key file here")
    parser_dice.add_argument(
        "--password", help="Encrypt the key file (AES-256-GCM) with this password",
    )
    parser_dice.set_defaults(handler=_dice)

    parser_print = subs.add_parser(
        "print", help="Audit a PSBT before signing it",
    )
    parser_print.add_argument("psbt_file", help="PSBT file (binary, base64 or JSON)")
    parser_print.add_argument(
        "--wallets", help="JSON list of wallets (name + fingerprints)",
    )
    parser_print.set_defaults(handler=_print)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_file:
        setup_logging(args.log_file)

    try:
        print(args.handler(args))
    except (CustodyError, OSError) as exc:
        log.warning("%s failed: %s", args.program, exc)
        print(str(exc), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
