#!/usr/bin/env python3
"""
save_codec.py - Decode, encode and round-trip save strings with a format file

Usage:
    # Save string to JSON
    python tools/save_codec.py decode save.yaml save.txt
    python tools/save_codec.py decode save.yaml save.txt --checksum

    # JSON to save string
    python tools/save_codec.py encode save.yaml record.json --version 3 --checksum

    # Decode, re-encode, decode again and compare
    python tools/save_codec.py roundtrip save.yaml save.txt --checksum

The envelope version of ``encode`` defaults to the record's ``save_version``
field when the format has one, otherwise 0.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Tuple

sys.path.insert(0, str(Path(__file__).parent))
from generate_codec import Codec
from log_setup import setup_logging
from save_envelope import EnvelopeError, append_checksum, parse_envelope, split_checksum, wrap
from schema_errors import SchemaError

logger = logging.getLogger(__name__)

VERSION_FIELD = 'save_version'


class SaveCodecError(Exception):
    pass


def decode_save(codec: Codec, save: str, checksum: bool = False) -> Tuple[int, Any]:
    """
    Decode a save string into a root record.

    Returns: (envelope version, record)
    """
    version, raw = parse_envelope(save)
    if checksum:
        raw, valid = split_checksum(raw)
        if not valid:
            raise SaveCodecError("checksum mismatch")

    result = codec.decode(raw)
    if not result.success:
        raise SaveCodecError('; '.join(result.errors))
    for warning in result.warnings:
        logger.warning(warning)
    return version, result.value


def encode_save(codec: Codec, record: Any, version: Optional[int] = None,
                checksum: bool = False) -> str:
    """Encode a root record (or plain mapping) as a save string."""
    result = codec.encode(record)
    if not result.success:
        raise SaveCodecError('; '.join(result.errors))

    if version is None:
        if isinstance(record, dict):
            version = record.get(VERSION_FIELD, 0)
        else:
            version = getattr(record, VERSION_FIELD, 0)

    raw = append_checksum(result.payload) if checksum else result.payload
    return wrap(raw, version)


def roundtrip(codec: Codec, save: str, checksum: bool = False) -> bool:
    """Check that decoding the re-encoded save gives the same record."""
    version, first = decode_save(codec, save, checksum)
    again = encode_save(codec, first, version, checksum)
    _, second = decode_save(codec, again, checksum)
    return first == second


def read_text(path: str) -> str:
    if path == '-':
        return sys.stdin.read()
    return Path(path).read_text(encoding='utf-8')


def main():
    parser = argparse.ArgumentParser(description='Decode and encode save strings using a format file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--root-name', default='Root', help='Class name of the top-level record')
    subparsers = parser.add_subparsers(dest='command', required=True)

    dec = subparsers.add_parser('decode', help='Decode a save string to JSON')
    dec.add_argument('schema', help='Path to format YAML file')
    dec.add_argument('save', help="Save file ('-' for stdin)")
    dec.add_argument('--checksum', action='store_true', help='Verify and strip the CRC32 trailer')

    enc = subparsers.add_parser('encode', help='Encode a JSON record to a save string')
    enc.add_argument('schema', help='Path to format YAML file')
    enc.add_argument('record', help="JSON file ('-' for stdin)")
    enc.add_argument('--version', type=int, help=f"Envelope version (default: the '{VERSION_FIELD}' field or 0)")
    enc.add_argument('--checksum', action='store_true', help='Append the CRC32 trailer')

    rt = subparsers.add_parser('roundtrip', help='Decode, re-encode and compare')
    rt.add_argument('schema', help='Path to format YAML file')
    rt.add_argument('save', help="Save file ('-' for stdin)")
    rt.add_argument('--checksum', action='store_true', help='Verify and append the CRC32 trailer')

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        codec = Codec.from_file(args.schema, args.root_name)

        if args.command == 'decode':
            version, record = decode_save(codec, read_text(args.save), args.checksum)
            logger.info("Envelope version %02d", version)
            print(json.dumps(codec.to_dict(record), indent=2))

        elif args.command == 'encode':
            record = json.loads(read_text(args.record))
            print(encode_save(codec, record, args.version, args.checksum))

        else:
            same = roundtrip(codec, read_text(args.save), args.checksum)
            print(same)
            sys.exit(0 if same else 1)

    except (SchemaError, EnvelopeError, SaveCodecError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
