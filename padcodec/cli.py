from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from typing import Optional

from . import core
from .errors import PadCodecError
from .keystore import DEFAULT_KEY_SIZE, KeyDir, random_source_for
from .keystore.keygen import SOURCES
from .sealing import DEFAULT_STRENGTH, SCRYPT_PRESETS

logger = logging.getLogger(__name__)

PASSPHRASE_ENV = "PADCODEC_PASSPHRASE"


def _passphrase(args: argparse.Namespace) -> Optional[str]:
    if not args.sealed:
        return None
    passphrase = os.environ.get(PASSPHRASE_ENV)
    if passphrase is None:
        passphrase = getpass.getpass("Key directory passphrase: ")
    return passphrase


def _key_dir(args: argparse.Namespace, required: bool = False) -> Optional[KeyDir]:
    if args.key_dir is None:
        if required:
            raise SystemExit(f"{args.cmd}: --key-dir is required")
        return None
    return KeyDir(
        args.key_dir,
        passphrase=_passphrase(args),
        scrypt_strength=getattr(args, "strength", None),
        burn=not args.keep_keys,
    )


def _next_names(existing: list[str], prefix: str, count: int) -> list[str]:
    taken = set(existing)
    names = []
    i = 0
    while len(names) < count:
        name = f"{prefix}{i}"
        if name not in taken:
            names.append(name)
        i += 1
    return names


def cmd_gen_keys(args: argparse.Namespace) -> int:
    store = _key_dir(args, required=True)
    source = random_source_for(args.source, args.seed)
    with store:
        for name in _next_names(store.names(), args.name, args.count):
            store.generate(name, args.size, source)
            print(name)
    return 0


def cmd_encrypt(args: argparse.Namespace) -> int:
    msg = args.message if args.message is not None else sys.stdin.read()
    store = _key_dir(args)
    options = dict(crc=args.crc, content_type=args.content_type, filename=args.filename, group=True)
    if store is None:
        print(core.encode(msg, **options))
        return 0
    with store:
        print(core.encode(msg, store, **options))
    return 0


def cmd_decrypt(args: argparse.Namespace) -> int:
    text = args.cipher if args.cipher is not None else sys.stdin.read()
    store = _key_dir(args)
    if store is None:
        messages = core.decode(text)
    else:
        with store:
            messages = core.decode(text, store)
    status = 0
    for i, msg in enumerate(messages, 1):
        if len(messages) > 1 or msg.header:
            header = " ".join(f"{k}={v}" for k, v in sorted(msg.header.items()))
            print(f"--- message {i} {header}".rstrip())
        print(msg.text)
        if msg.checksum_ok is False:
            print(f"message {i}: checksum mismatch", file=sys.stderr)
            status = 1
        for err in msg.errors:
            print(f"message {i}: {err}", file=sys.stderr)
            status = 1
    return status


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="padcodec",
        description="One-time-pad message codec: A-Z only output, sent in 5-letter groups.",
    )
    ap.add_argument("--key-dir", help="Directory of <name>.key files (omit for unenciphered encoding)")
    ap.add_argument("--sealed", action="store_true", help=f"Key files are sealed with a passphrase (${PASSPHRASE_ENV} or prompt)")
    ap.add_argument("--keep-keys", action="store_true", help="Do not burn key files after use (testing only)")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    gen = sub.add_parser("gen-keys", help="Generate key files")
    gen.add_argument("--name", default="", help="Key name prefix; names are numbered from 0")
    gen.add_argument("--size", type=int, default=DEFAULT_KEY_SIZE, help="Symbols per key")
    gen.add_argument("--count", type=int, default=1, help="Number of keys to generate")
    gen.add_argument("--source", choices=SOURCES, default="system", help="Random source")
    gen.add_argument("--seed", type=int, default=None, help="Seed for the mt source")
    gen.add_argument("--strength", choices=sorted(SCRYPT_PRESETS), default=DEFAULT_STRENGTH, help="Scrypt cost for sealed keys")
    gen.set_defaults(func=cmd_gen_keys)

    enc = sub.add_parser("encrypt", help="Encode (and encipher) a message")
    enc.add_argument("--message", help="Message to encode (default: read stdin)")
    enc.add_argument("--crc", action="store_true", help="Append a CRC-32 checksum")
    enc.add_argument("--content-type", help="Content type header, e.g. TXT or IMAGE/PNG")
    enc.add_argument("--filename", help="Filename header")
    enc.set_defaults(func=cmd_encrypt)

    dec = sub.add_parser("decrypt", help="Decode (and decipher) a transmission")
    dec.add_argument("--cipher", help="Transmission text, grouping spaces allowed (default: read stdin)")
    dec.set_defaults(func=cmd_decrypt)
    return ap


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except (PadCodecError, FileExistsError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
