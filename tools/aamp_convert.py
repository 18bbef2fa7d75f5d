#!/usr/bin/env python3
"""
AAMP <-> YAML Converter
=======================

Converts AAMP v2 parameter archives to tagged YAML and back.
The direction is detected from the input (AAMP magic or YAML text).

Usage:
    # Convert an archive to YAML
    python aamp_convert.py Enemy_Lizalfos.bxml -o Enemy_Lizalfos.yml

    # Resolve key names from dictionaries, guessing numbered children
    python aamp_convert.py Enemy_Lizalfos.bxml -o out.yml --names botw_names.txt \
        --numbered-names botw_numbered_names.txt --guess-names

    # Convert YAML back to binary
    python aamp_convert.py Enemy_Lizalfos.yml -o Enemy_Lizalfos.bxml
"""

import sys
import os
import argparse
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aamp_errors import AampError
from aamp_names import NameTable
from aamp_parser import MAGIC, count_nodes, decode_binary
from aamp_serializer import encode_binary
from aamp_yaml import from_text, to_text

logger = logging.getLogger(__name__)

TO_YAML = 'yaml'
TO_BINARY = 'binary'


# =============================================================================
# FORMAT DETECTION
# =============================================================================

def detect_format(data: bytes) -> str:
    """
    Decide which way a file converts.

    Returns:
        TO_YAML for AAMP archives, TO_BINARY for anything else (YAML text)
    """
    if data[:4] == MAGIC:
        return TO_YAML
    return TO_BINARY


# =============================================================================
# CONVERSION
# =============================================================================

def convert(data: bytes, direction: str, names: NameTable = None, guess_names: bool = False) -> bytes:
    """
    Convert file contents in the given direction.

    Args:
        data: Input file contents
        direction: TO_YAML or TO_BINARY
        names: Name dictionary used when writing YAML
        guess_names: Guess numbered key names when writing YAML

    Returns:
        Output file contents
    """
    if direction == TO_YAML:
        pio = decode_binary(data)
        counts = count_nodes(pio)
        logger.debug("Decoded %d lists, %d objects, %d parameters",
                     counts['lists'], counts['objects'], counts['params'])
        return to_text(pio, names=names, guess_names=guess_names).encode('utf-8')

    try:
        text = data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise AampError(f"Input is neither an AAMP archive nor UTF-8 YAML: {e}") from e
    return encode_binary(from_text(text))


def convert_file(input_file: str, output_file: str, direction: str = None,
                 names: NameTable = None, guess_names: bool = False) -> str:
    """
    Convert one file, detecting the direction when none is given.

    Returns:
        The direction used
    """
    with open(input_file, 'rb') as f:
        data = f.read()

    if direction is None:
        direction = detect_format(data)

    output = convert(data, direction, names, guess_names)

    with open(output_file, 'wb') as f:
        f.write(output)
    return direction


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Convert AAMP parameter archives to/from YAML',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Convert an archive to YAML (direction is auto-detected)
  python aamp_convert.py Enemy_Lizalfos.bxml -o Enemy_Lizalfos.yml

  # Use a name dictionary for readable keys
  python aamp_convert.py Enemy_Lizalfos.bxml -o out.yml --names botw_names.txt

  # Convert YAML back to binary
  python aamp_convert.py Enemy_Lizalfos.yml -o Enemy_Lizalfos.bxml
        """
    )

    parser.add_argument('input', help='Input file (AAMP binary or YAML)')
    parser.add_argument('-o', '--output', required=True, help='Output file')
    direction = parser.add_mutually_exclusive_group()
    direction.add_argument('--to-yaml', dest='direction', action='store_const', const=TO_YAML,
                           help='Force AAMP to YAML conversion')
    direction.add_argument('--to-binary', dest='direction', action='store_const', const=TO_BINARY,
                           help='Force YAML to AAMP conversion')
    parser.add_argument('--names', '-n', action='append', default=[],
                        help='Name dictionary file (one name per line), may be repeated')
    parser.add_argument('--numbered-names', action='append', default=[],
                        help='Numbered name templates, e.g. Item_{:02d}, may be repeated')
    parser.add_argument('--guess-names', action='store_true',
                        help='Guess indexed key names from their parent names')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    names = None
    if args.names or args.numbered_names:
        names = NameTable.load(*args.names, numbered_paths=args.numbered_names)

    print("Converting AAMP file")
    print(f"  Input: {args.input}")

    try:
        used = convert_file(args.input, args.output, args.direction, names, args.guess_names)
    except AampError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"  Direction: {'AAMP -> YAML' if used == TO_YAML else 'YAML -> AAMP'}")
    print(f"  Output: {args.output}")
    print(f"  Size: {os.path.getsize(args.output)} bytes")
    print("Done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
